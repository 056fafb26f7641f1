"""Tier, evidence and summary record types.

Summary records are a tagged union keyed by tier: ``BaseSummary`` (2min,
ranked activity claims), ``MidSummary`` (10min, merged activity timeline)
and ``TopSummary`` (1h, time distribution). All three serialize to a flat
JSON object so tier-specific fields returned by the analyzer (core_action,
key_progress, ...) are preserved verbatim under ``details``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, List, NamedTuple, Optional, Set, Type


class Tier(Enum):
    """Aggregation level; the value doubles as the on-disk directory name."""
    BASE = "2min"
    MID = "10min"
    TOP = "1h"

    @property
    def window_minutes(self) -> int:
        return _WINDOW_MINUTES[self]

    @property
    def child(self) -> Optional["Tier"]:
        return _CHILD_TIER.get(self)

    @property
    def tag(self) -> str:
        return f"[{self.value}]"

    @classmethod
    def parse(cls, value: str) -> "Tier":
        for tier in cls:
            if value in (tier.value, tier.name.lower()):
                return tier
        raise ValueError(f"Unknown tier: {value}")


_WINDOW_MINUTES = {Tier.BASE: 2, Tier.MID: 10, Tier.TOP: 60}
_CHILD_TIER = {Tier.MID: Tier.BASE, Tier.TOP: Tier.MID}


class CategoryType(Enum):
    """How an activity relates to the taxonomy."""
    TASK = "task"
    BEHAVIOR = "behavior"
    NEW_TASK = "new_task"
    NEW_BEHAVIOR = "new_behavior"

    @property
    def is_proposed(self) -> bool:
        return self in (CategoryType.NEW_TASK, CategoryType.NEW_BEHAVIOR)

    @property
    def settled(self) -> "CategoryType":
        """The type this category will have once its proposal is written back."""
        if self is CategoryType.NEW_TASK:
            return CategoryType.TASK
        if self is CategoryType.NEW_BEHAVIOR:
            return CategoryType.BEHAVIOR
        return self

    @classmethod
    def parse(cls, value: Any) -> "CategoryType":
        if isinstance(value, CategoryType):
            return value
        text = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
        for member in cls:
            if member.value == text:
                return member
        return cls.BEHAVIOR


class CategoryKey(NamedTuple):
    """Composite grouping key for merging activity across windows."""
    category_type: CategoryType
    label: str

    @classmethod
    def of(cls, category_type: CategoryType, label: str) -> "CategoryKey":
        return cls(category_type.settled, label.strip())


@dataclass
class Evidence:
    """One captured frame: an opaque payload compared byte for byte."""
    payload: bytes
    timestamp: datetime
    mime_type: str = "image/jpeg"


@dataclass
class GapInfo:
    """A service interruption detected between the last record and now."""
    gap_minutes: int
    last_record_time: datetime


@dataclass(frozen=True)
class ActivityClaim:
    category_type: CategoryType
    category_name: str
    subtask_name: str = ""

    @property
    def key(self) -> CategoryKey:
        return CategoryKey.of(self.category_type, self.category_name)

    def to_dict(self) -> Dict[str, str]:
        return {
            "category_type": self.category_type.value,
            "category_name": self.category_name,
            "subtask_name": self.subtask_name,
        }


@dataclass
class TimelineEntry:
    """A merged run of one labelled activity inside a mid or top window."""
    label: str
    category_type: CategoryType
    start: Optional[datetime]
    end: Optional[datetime]
    minutes: int
    subtasks: Set[str] = field(default_factory=set)

    @property
    def key(self) -> CategoryKey:
        return CategoryKey.of(self.category_type, self.label)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "category_type": self.category_type.value,
            "start": _format_minute(self.start),
            "end": _format_minute(self.end),
            "minutes": self.minutes,
            "subtasks": sorted(self.subtasks),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimelineEntry":
        subtasks = data.get("subtasks") or []
        if isinstance(subtasks, str):
            subtasks = [subtasks]
        elif not isinstance(subtasks, list):
            subtasks = []
        return cls(
            label=str(data.get("label", "")).strip(),
            category_type=CategoryType.parse(data.get("category_type")),
            start=parse_timestamp(data.get("start")),
            end=parse_timestamp(data.get("end")),
            minutes=_as_int(data.get("minutes"), 0),
            subtasks={str(s).strip() for s in subtasks if str(s).strip()},
        )


MAX_CLAIMS = 3


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp, returning None for anything unusable."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _format_minute(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="minutes") if value else None


def _as_int(value: Any, default: Optional[int]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_list(value: Any) -> List[str]:
    """Normalize a list-or-string field to a list of stripped strings."""
    if isinstance(value, list):
        return [v.strip() if isinstance(v, str) else "" for v in value]
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    return []


def _entries(data: Dict[str, Any], key: str) -> List[TimelineEntry]:
    """Timeline entries under ``key``; anything but a list of objects is ignored."""
    value = data.get(key)
    if not isinstance(value, list):
        return []
    return [TimelineEntry.from_dict(e) for e in value if isinstance(e, dict)]


def claims_from_fields(data: Dict[str, Any]) -> List[ActivityClaim]:
    """Build ranked claims from either a ``claims`` list or the parallel
    ``category_type`` / ``category_name`` / ``subtask_name`` lists the
    analyzer emits."""
    claims: List[ActivityClaim] = []

    if isinstance(data.get("claims"), list):
        for item in data["claims"]:
            if not isinstance(item, dict):
                continue
            name = str(item.get("category_name", "")).strip()
            if name:
                claims.append(ActivityClaim(
                    category_type=CategoryType.parse(item.get("category_type")),
                    category_name=name,
                    subtask_name=str(item.get("subtask_name") or "").strip(),
                ))
        return claims[:MAX_CLAIMS]

    types = _as_list(data.get("category_type"))
    names = _as_list(data.get("category_name"))
    subtasks = _as_list(data.get("subtask_name"))
    for i, name in enumerate(names):
        if not name:
            continue
        claims.append(ActivityClaim(
            category_type=CategoryType.parse(types[i] if i < len(types) else None),
            category_name=name,
            subtask_name=subtasks[i] if i < len(subtasks) else "",
        ))
    return claims[:MAX_CLAIMS]


@dataclass
class SummaryRecord:
    """Fields shared by every tier's record."""
    tier: ClassVar[Tier]
    reserved: ClassVar[FrozenSet[str]] = frozenset(
        {"timestamp", "tier", "granularity", "no_change", "skip_reason", "raw_response"}
    )

    timestamp: Optional[datetime]
    no_change: bool = False
    skip_reason: Optional[str] = None
    raw_response: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def window_start(self) -> Optional[datetime]:
        if self.timestamp is None:
            return None
        return self.timestamp - timedelta(minutes=self.tier.window_minutes)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(timespec="seconds") if self.timestamp else None,
            "tier": self.tier.value,
            "no_change": self.no_change,
        }
        if self.skip_reason:
            data["skip_reason"] = self.skip_reason
        data.update(self._payload())
        if self.raw_response is not None:
            data["raw_response"] = self.raw_response
        for key, value in self.details.items():
            data.setdefault(key, value)
        return data

    def _payload(self) -> Dict[str, Any]:
        return {}

    @classmethod
    def _common(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        raw = data.get("raw_response")
        return {
            "timestamp": parse_timestamp(data.get("timestamp")),
            "no_change": data.get("no_change") is True,
            "skip_reason": data.get("skip_reason"),
            "raw_response": raw if isinstance(raw, str) else None,
            "details": {k: v for k, v in data.items() if k not in cls.reserved},
        }


@dataclass
class BaseSummary(SummaryRecord):
    tier: ClassVar[Tier] = Tier.BASE
    reserved: ClassVar[FrozenSet[str]] = SummaryRecord.reserved | {
        "claims", "category_type", "category_name", "subtask_name", "duration_minutes",
    }

    claims: List[ActivityClaim] = field(default_factory=list)
    duration_minutes: Optional[int] = None

    def _payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"claims": [c.to_dict() for c in self.claims]}
        if self.duration_minutes is not None:
            payload["duration_minutes"] = self.duration_minutes
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BaseSummary":
        duration = _as_int(data.get("duration_minutes"), None)
        return cls(
            claims=claims_from_fields(data),
            duration_minutes=duration if duration and duration > 0 else None,
            **cls._common(data),
        )

    @classmethod
    def from_analysis(cls, timestamp: datetime, parsed: Dict[str, Any]) -> "BaseSummary":
        record = cls.from_dict(parsed)
        record.timestamp = timestamp
        record.no_change = False
        return record


@dataclass
class MidSummary(SummaryRecord):
    tier: ClassVar[Tier] = Tier.MID
    reserved: ClassVar[FrozenSet[str]] = SummaryRecord.reserved | {
        "activity_timeline", "no_change_child_count",
    }

    timeline: List[TimelineEntry] = field(default_factory=list)
    no_change_child_count: Optional[int] = None

    def _payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"activity_timeline": [e.to_dict() for e in self.timeline]}
        if self.no_change_child_count is not None:
            payload["no_change_child_count"] = self.no_change_child_count
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MidSummary":
        return cls(
            timeline=_entries(data, "activity_timeline"),
            no_change_child_count=_as_int(data.get("no_change_child_count"), None),
            **cls._common(data),
        )

    @classmethod
    def from_analysis(
        cls, timestamp: datetime, parsed: Dict[str, Any], timeline: List[TimelineEntry]
    ) -> "MidSummary":
        record = cls.from_dict(parsed)
        record.timestamp = timestamp
        record.no_change = False
        record.timeline = timeline
        return record


@dataclass
class TopSummary(SummaryRecord):
    tier: ClassVar[Tier] = Tier.TOP
    reserved: ClassVar[FrozenSet[str]] = SummaryRecord.reserved | {
        "time_distribution", "miscellaneous", "no_change_child_count",
    }

    distribution: List[TimelineEntry] = field(default_factory=list)
    miscellaneous: List[TimelineEntry] = field(default_factory=list)
    no_change_child_count: Optional[int] = None

    def _payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "time_distribution": [e.to_dict() for e in self.distribution],
            "miscellaneous": [e.to_dict() for e in self.miscellaneous],
        }
        if self.no_change_child_count is not None:
            payload["no_change_child_count"] = self.no_change_child_count
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TopSummary":
        return cls(
            distribution=_entries(data, "time_distribution"),
            miscellaneous=_entries(data, "miscellaneous"),
            no_change_child_count=_as_int(data.get("no_change_child_count"), None),
            **cls._common(data),
        )

    @classmethod
    def from_analysis(
        cls,
        timestamp: datetime,
        parsed: Dict[str, Any],
        distribution: List[TimelineEntry],
        miscellaneous: List[TimelineEntry],
    ) -> "TopSummary":
        record = cls.from_dict(parsed)
        record.timestamp = timestamp
        record.no_change = False
        record.distribution = distribution
        record.miscellaneous = miscellaneous
        return record


RECORD_TYPES: Dict[Tier, Type[SummaryRecord]] = {
    Tier.BASE: BaseSummary,
    Tier.MID: MidSummary,
    Tier.TOP: TopSummary,
}


def record_from_dict(data: Dict[str, Any], tier: Optional[Tier] = None) -> SummaryRecord:
    """Rebuild the tier-specific record from its persisted JSON form."""
    if tier is None:
        tier = Tier.parse(str(data.get("tier") or data.get("granularity") or ""))
    return RECORD_TYPES[tier].from_dict(data)  # type: ignore[attr-defined]
