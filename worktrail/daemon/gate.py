"""Working-hours gate and scheduled stop times."""

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .config import ScheduleConfig, WEEKDAYS


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


class ScheduleGate:
    """Answers whether the tiers may run now, per ``schedule`` config."""

    def __init__(self, schedule: ScheduleConfig, clock: Optional[Callable[[], datetime]] = None):
        self.schedule = schedule
        self.clock = clock or datetime.now

    def is_allowed_now(self) -> bool:
        if not self.schedule.enabled:
            return True

        now = self.clock()
        if WEEKDAYS[now.weekday()] not in self.schedule.days:
            return False

        current = now.hour * 60 + now.minute
        return _minutes(self.schedule.start_time) <= current <= _minutes(self.schedule.end_time)

    def next_stop_time(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """The next configured stop time strictly after ``now``.

        ``days`` only restricts stop times when the schedule is enabled.
        """
        if not self.schedule.stop_times:
            return None

        now = now or self.clock()
        days: List[str] = self.schedule.days if self.schedule.enabled else []
        for offset in range(8):
            day = now + timedelta(days=offset)
            if days and WEEKDAYS[day.weekday()] not in days:
                continue
            for stop in self.schedule.stop_times:
                minutes = _minutes(stop)
                target = day.replace(hour=minutes // 60, minute=minutes % 60, second=0, microsecond=0)
                if target > now:
                    return target
        return None
