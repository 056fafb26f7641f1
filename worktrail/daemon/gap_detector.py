"""Service-interruption detection for the base tier."""

import math
from datetime import datetime
from typing import Optional, Sequence

from .models import GapInfo, SummaryRecord


class GapDetector:
    """Flags a gap when the newest record is older than ``multiplier`` intervals.

    A gap means the process was not running continuously, so the analyzer
    must not treat history as contiguous or keep accumulating durations.
    """

    def __init__(self, multiplier: int = 2):
        self.multiplier = multiplier

    def detect_gap(
        self,
        history: Sequence[SummaryRecord],
        now: datetime,
        expected_interval_minutes: int,
    ) -> Optional[GapInfo]:
        if not history:
            return None

        last = history[-1]
        if last.timestamp is None:
            return None

        diff_seconds = (now - last.timestamp).total_seconds()
        # half-up rounding
        diff_minutes = int(math.floor(diff_seconds / 60 + 0.5))

        if diff_minutes > expected_interval_minutes * self.multiplier:
            return GapInfo(gap_minutes=diff_minutes, last_record_time=last.timestamp)
        return None
