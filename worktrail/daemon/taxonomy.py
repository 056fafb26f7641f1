"""JSON-backed task and behavior directory.

``tasks.json`` holds tasks with nested ``children`` subtasks and
``behaviors.json`` holds behavior names. Entries are created either by the
user (``source: "user"``) or proposed by the analyzer (``source: "ai"``).
"""

import asyncio
import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import aiofiles
import ulid
from loguru import logger


EntryKind = Literal["task", "subtask", "behavior"]
EntrySource = Literal["user", "ai"]


@dataclass
class Taxonomy:
    """Snapshot of the task and behavior directory."""
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    behaviors: List[Dict[str, Any]] = field(default_factory=list)

    def find_task(self, title: str) -> Optional[Dict[str, Any]]:
        for task in self.tasks:
            if task.get("title") == title:
                return task
        return None

    def has_behavior(self, name: str) -> bool:
        return any(b.get("name") == name for b in self.behaviors)


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _new_entry(source: EntrySource, **fields: Any) -> Dict[str, Any]:
    now = _now()
    entry = {"id": str(ulid.ULID())}
    entry.update(fields)
    entry.update({"created_at": now, "updated_at": now, "source": source})
    return entry


class JsonTaxonomyStore:
    """Reads and updates ``tasks.json`` / ``behaviors.json`` in one directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.tasks_file = self.directory / "tasks.json"
        self.behaviors_file = self.directory / "behaviors.json"
        self._lock = asyncio.Lock()

    async def read_taxonomy(self) -> Taxonomy:
        return Taxonomy(
            tasks=await self._read(self.tasks_file),
            behaviors=await self._read(self.behaviors_file),
        )

    async def propose_entry(
        self,
        kind: EntryKind,
        name: str,
        parent: Optional[str] = None,
        source: EntrySource = "ai",
    ) -> bool:
        """Create an entry unless one with the same name exists.

        Subtasks are only created under an existing parent task.

        Returns:
            True if something was written
        """
        name = (name or "").strip()
        if not name:
            return False

        async with self._lock:
            if kind == "behavior":
                return await self._ensure_behavior(name, source)
            if kind == "task":
                return await self._ensure_task(name, source)
            if kind == "subtask":
                return await self._ensure_subtask((parent or "").strip(), name, source)
        raise ValueError(f"Unknown taxonomy entry kind: {kind}")

    async def _ensure_task(self, title: str, source: EntrySource) -> bool:
        tasks = await self._read(self.tasks_file)
        if any(t.get("title") == title for t in tasks):
            return False
        tasks.append(_new_entry(
            source, title=title, description="", completed=False, children=[],
        ))
        await self._write(self.tasks_file, tasks)
        logger.info(f"[taxonomy] Created task: {title}")
        return True

    async def _ensure_subtask(self, parent: str, title: str, source: EntrySource) -> bool:
        if not parent:
            return False
        tasks = await self._read(self.tasks_file)
        task = next((t for t in tasks if t.get("title") == parent), None)
        if task is None:
            logger.debug(f"[taxonomy] No task named {parent!r}, subtask {title!r} not created")
            return False

        children = task.setdefault("children", [])
        if any(c.get("title") == title for c in children):
            return False
        children.append(_new_entry(source, title=title, completed=False))
        task["updated_at"] = _now()
        await self._write(self.tasks_file, tasks)
        logger.info(f"[taxonomy] Created subtask under {parent!r}: {title}")
        return True

    async def _ensure_behavior(self, name: str, source: EntrySource) -> bool:
        behaviors = await self._read(self.behaviors_file)
        if any(b.get("name") == name for b in behaviors):
            return False
        behaviors.append(_new_entry(source, name=name, description=""))
        await self._write(self.behaviors_file, behaviors)
        logger.info(f"[taxonomy] Created behavior: {name}")
        return True

    async def _read(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        try:
            async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[taxonomy] Failed to read {path}: {e}")
            return []
        if not isinstance(data, list):
            logger.warning(f"[taxonomy] {path} does not hold a list, ignoring")
            return []
        return [item for item in data if isinstance(item, dict)]

    async def _write(self, path: Path, data: List[Dict[str, Any]]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(data, ensure_ascii=False, indent=2))
        os.replace(tmp_path, path)
