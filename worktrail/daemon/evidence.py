"""Screenshot evidence source.

Screenshots are written by a separate capture process as
``<directory>/<YYYY-MM-DD>/<YYYY-MM-DD>_<HH-mm-ss>_<monitor>.<ext>``.
"""

import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import aiofiles
from loguru import logger

from .models import Evidence


_FILE_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})_(\d{2})-(\d{2})-(\d{2})_\d+\.(\w+)$")


def parse_screenshot_name(name: str) -> Optional[datetime]:
    match = _FILE_PATTERN.match(name)
    if not match:
        return None
    date_str, hours, minutes, seconds, _ = match.groups()
    try:
        return datetime.strptime(f"{date_str} {hours}:{minutes}:{seconds}", "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None


class ScreenshotEvidenceSource:
    """Reads the most recent screenshots as ``Evidence``."""

    def __init__(
        self,
        directory: Path,
        format: str = "jpeg",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.directory = Path(directory)
        self.format = format
        self.extension = "png" if format == "png" else "jpeg"
        self.mime_type = "image/png" if format == "png" else "image/jpeg"
        self.clock = clock or datetime.now

    def list_in_range(self, start: datetime, end: datetime) -> List[Tuple[Path, datetime]]:
        """Screenshot files with ``start <= timestamp <= end``, ascending."""
        found: List[Tuple[Path, datetime]] = []
        day = start.date()
        while day <= end.date():
            date_dir = self.directory / day.strftime("%Y-%m-%d")
            day += timedelta(days=1)
            if not date_dir.is_dir():
                continue
            for path in date_dir.glob(f"*.{self.extension}"):
                timestamp = parse_screenshot_name(path.name)
                if timestamp is not None and start <= timestamp <= end:
                    found.append((path, timestamp))

        if not found:
            logger.warning(f"No screenshots between {start:%H:%M:%S} and {end:%H:%M:%S} in {self.directory}")
        return sorted(found, key=lambda item: (item[1], item[0].name))

    async def get_recent_evidence(self, window_minutes: int, max_count: int) -> List[Evidence]:
        """Newest ``max_count`` screenshots of the last ``window_minutes``, oldest first."""
        end = self.clock()
        start = end - timedelta(minutes=window_minutes)
        selected = self.list_in_range(start, end)[-max_count:] if max_count > 0 else []

        evidence = []
        for path, timestamp in selected:
            try:
                async with aiofiles.open(path, 'rb') as f:
                    payload = await f.read()
            except OSError as e:
                logger.error(f"Failed to read screenshot {path}: {e}")
                continue
            evidence.append(Evidence(payload=payload, timestamp=timestamp, mime_type=self.mime_type))

        if 0 < len(evidence) < max_count:
            logger.debug(f"Fewer screenshots than expected: wanted {max_count}, got {len(evidence)}")
        return evidence
