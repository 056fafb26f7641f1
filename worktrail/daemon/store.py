"""JSON file store for summary records.

Layout: ``<directory>/<YYYY-MM-DD>/<tier>/<HH-MM>.json``. The file name is
the window end floored to the minute, so a record is identified by
(tier, window end) and a repeated save for the same window replaces it.
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import aiofiles
from loguru import logger

from .models import SummaryRecord, Tier, record_from_dict


_DATE_FORMAT = "%Y-%m-%d"
_KEY_FORMAT = "%H-%M"


class JsonRecordStore:
    """Reads and writes one JSON file per tier per window."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, tier: Tier, timestamp: datetime) -> Path:
        return (
            self.directory
            / timestamp.strftime(_DATE_FORMAT)
            / tier.value
            / f"{timestamp.strftime(_KEY_FORMAT)}.json"
        )

    async def save(self, tier: Tier, timestamp: datetime, record: SummaryRecord) -> Path:
        """Persist ``record`` atomically; raises ``OSError`` on failure."""
        path = self.path_for(tier, timestamp)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = path.with_suffix(".json.tmp")
        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(record.to_dict(), ensure_ascii=False, indent=2))
        os.replace(tmp_path, path)

        logger.info(f"{tier.tag} Saved {path.parent.parent.name}/{tier.value}/{path.name}")
        return path

    async def get_recent(self, tier: Tier, count: int) -> List[SummaryRecord]:
        """The newest ``count`` records, oldest first."""
        if count <= 0:
            return []
        files = self._files(tier, limit=count)
        return await self._load(tier, files[-count:])

    async def get_earlier(self, tier: Tier, count: int, skip: int) -> List[SummaryRecord]:
        """``count`` records preceding the newest ``skip``, oldest first."""
        if count <= 0:
            return []
        files = self._files(tier, limit=count + skip)
        end = max(0, len(files) - skip)
        return await self._load(tier, files[max(0, end - count):end])

    async def get_since(self, tier: Tier, since: datetime) -> List[SummaryRecord]:
        """Every record whose window end is at or after ``since``, oldest first."""
        files = [
            path for path in self._files(tier, since=since)
            if (self._key_time(path) or since) >= since.replace(second=0, microsecond=0)
        ]
        records = await self._load(tier, files)
        return [r for r in records if r.timestamp is None or r.timestamp >= since]

    def _date_dirs(self) -> List[Path]:
        if not self.directory.is_dir():
            logger.debug(f"Summary directory does not exist: {self.directory}")
            return []
        dirs = []
        for child in self.directory.iterdir():
            if not child.is_dir():
                continue
            try:
                datetime.strptime(child.name, _DATE_FORMAT)
            except ValueError:
                continue
            dirs.append(child)
        return sorted(dirs, key=lambda d: d.name, reverse=True)

    def _files(
        self, tier: Tier, limit: Optional[int] = None, since: Optional[datetime] = None
    ) -> List[Path]:
        """Record files for ``tier`` in ascending order.

        Date directories are walked newest first and the walk stops once
        ``limit`` files are collected or a directory predates ``since``.
        """
        collected: List[Path] = []
        for date_dir in self._date_dirs():
            if since is not None and date_dir.name < since.strftime(_DATE_FORMAT):
                break
            tier_dir = date_dir / tier.value
            if not tier_dir.is_dir():
                continue
            collected = sorted(tier_dir.glob("*.json")) + collected
            if limit is not None and len(collected) >= limit:
                break
        return collected

    def _key_time(self, path: Path) -> Optional[datetime]:
        try:
            return datetime.strptime(f"{path.parent.parent.name} {path.stem}", f"{_DATE_FORMAT} {_KEY_FORMAT}")
        except ValueError:
            return None

    async def _load(self, tier: Tier, files: List[Path]) -> List[SummaryRecord]:
        records = []
        for path in files:
            try:
                async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                    data = json.loads(await f.read())
                if not isinstance(data, dict):
                    raise ValueError("record is not a JSON object")
                record = record_from_dict(data, tier)
            except (OSError, ValueError, TypeError, KeyError) as e:
                logger.error(f"{tier.tag} Failed to read summary {path}: {e}")
                continue
            if record.timestamp is None:
                record.timestamp = self._key_time(path)
            records.append(record)
        return records
