"""Token usage accounting.

Every analyzer call's ``usageMetadata`` is added to a per-tier bucket for the
session and appended to ``<summary dir>/token-stats/<YYYY-MM-DD>.json``,
grouped by session.
"""

import asyncio
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import aiofiles
from loguru import logger

from .models import Tier


_COUNTERS = (
    "prompt_tokens",
    "candidates_tokens",
    "thoughts_tokens",
    "total_tokens",
    "prompt_text_tokens",
    "prompt_image_tokens",
)


def _empty_bucket() -> Dict[str, int]:
    bucket = {"count": 0}
    bucket.update({name: 0 for name in _COUNTERS})
    return bucket


def usage_record(usage: Dict[str, Any]) -> Dict[str, int]:
    """Flatten Gemini ``usageMetadata`` into counters."""
    text_tokens = image_tokens = 0
    for detail in usage.get("promptTokensDetails") or []:
        if detail.get("modality") == "TEXT":
            text_tokens = detail.get("tokenCount", 0)
        elif detail.get("modality") == "IMAGE":
            image_tokens = detail.get("tokenCount", 0)

    return {
        "prompt_tokens": usage.get("promptTokenCount", 0),
        "candidates_tokens": usage.get("candidatesTokenCount", 0),
        "thoughts_tokens": usage.get("thoughtsTokenCount", 0),
        "total_tokens": usage.get("totalTokenCount", 0),
        "prompt_text_tokens": text_tokens,
        "prompt_image_tokens": image_tokens,
    }


class UsageTracker:
    def __init__(self, summary_directory: Path, clock: Optional[Callable[[], datetime]] = None):
        self.stats_directory = Path(summary_directory) / "token-stats"
        self.clock = clock or datetime.now
        self.session_id = self.clock().isoformat(timespec="seconds")
        self.buckets: Dict[str, Dict[str, int]] = {tier.value: _empty_bucket() for tier in Tier}
        self._lock = asyncio.Lock()

    async def record(self, tier: Tier, usage: Optional[Dict[str, Any]]) -> None:
        if not usage:
            logger.debug(f"{tier.tag} No usage metadata, not recorded")
            return

        now = self.clock()
        counters = usage_record(usage)
        bucket = self.buckets[tier.value]
        bucket["count"] += 1
        for name, value in counters.items():
            bucket[name] += value

        logger.debug(
            f"{tier.tag} Tokens: prompt={counters['prompt_tokens']} "
            f"(text={counters['prompt_text_tokens']}, image={counters['prompt_image_tokens']}), "
            f"output={counters['candidates_tokens']}, thoughts={counters['thoughts_tokens']}, "
            f"total={counters['total_tokens']}"
        )

        entry = {"time": now.isoformat(timespec="seconds"), "tier": tier.value}
        entry.update(counters)
        try:
            await self._persist(now, entry)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to persist token usage: {e}")

    def summary(self) -> Dict[str, Dict[str, int]]:
        return {tier: dict(bucket) for tier, bucket in self.buckets.items()}

    async def _persist(self, now: datetime, entry: Dict[str, Any]) -> None:
        date_str = now.strftime("%Y-%m-%d")
        path = self.stats_directory / f"{date_str}.json"

        async with self._lock:
            self.stats_directory.mkdir(parents=True, exist_ok=True)
            data: Any = None
            if path.exists():
                async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                    text = await f.read()
                try:
                    data = json.loads(text)
                except json.JSONDecodeError as e:
                    logger.warning(f"Token stats file {path} is unreadable, starting it over: {e}")
                else:
                    if not isinstance(data, dict):
                        logger.warning(f"Token stats file {path} is not a JSON object, starting it over")
            if not isinstance(data, dict):
                data = {"date": date_str, "sessions": []}

            if not isinstance(data.get("sessions"), list):
                data["sessions"] = []
            sessions = [s for s in data["sessions"] if isinstance(s, dict)]
            data["sessions"] = sessions
            session = next((s for s in sessions if s.get("session_id") == self.session_id), None)
            if session is None:
                session = {"session_id": self.session_id, "records": []}
                sessions.append(session)
            if not isinstance(session.get("records"), list):
                session["records"] = []
            session["records"].append(entry)

            tmp_path = path.with_suffix(".json.tmp")
            async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
                await f.write(json.dumps(data, ensure_ascii=False, indent=2))
            os.replace(tmp_path, path)
