"""Merge child-tier activity into parent-tier timelines.

Each child claim (2min records) or timeline entry (10min records) is
expanded into a span, spans sharing a ``CategoryKey`` are merged when they
touch or sit within the policy's tolerance, and short runs are filtered
out as noise. A label seen in a single 2min window (2 minutes) never makes
it into the 10min timeline; seen in two consecutive windows it does.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .models import (
    BaseSummary, CategoryKey, MidSummary, Tier, TimelineEntry,
)


@dataclass(frozen=True)
class MergePolicy:
    """How one parent tier merges and filters its children's spans."""
    tolerance_minutes: float
    min_minutes: float
    keep_miscellaneous: bool = False


# 2min windows are contiguous, so only touching spans merge.
BASE_TO_MID = MergePolicy(tolerance_minutes=0, min_minutes=3)
MID_TO_TOP = MergePolicy(tolerance_minutes=4, min_minutes=5, keep_miscellaneous=True)

_BOUNDARY_SLACK = timedelta(minutes=1)


@dataclass
class Span:
    key: CategoryKey
    start: datetime
    end: datetime
    minutes: float
    subtasks: Set[str] = field(default_factory=set)


@dataclass
class Segment:
    """An open or closed run of one key."""
    key: CategoryKey
    start: datetime
    end: datetime
    minutes: float
    subtasks: Set[str]

    @classmethod
    def open(cls, span: Span) -> "Segment":
        return cls(span.key, span.start, span.end, span.minutes, set(span.subtasks))

    def absorb(self, span: Span) -> None:
        # Count only the part of the span not already covered.
        if span.start >= self.end:
            added = span.minutes
        else:
            uncovered = (span.end - self.end).total_seconds() / 60
            added = min(span.minutes, max(0.0, uncovered))
        self.minutes += added
        self.end = max(self.end, span.end)
        self.subtasks |= span.subtasks

    def to_entry(self) -> TimelineEntry:
        return TimelineEntry(
            label=self.key.label,
            category_type=self.key.category_type,
            start=self.start,
            end=self.end,
            minutes=int(round(self.minutes)),
            subtasks=set(self.subtasks),
        )


def _order(segment) -> Tuple:
    return (segment.start, segment.key.label, segment.key.category_type.value)


class TimelineAggregator:
    """Builds the 10min ``activity_timeline`` and the 1h ``time_distribution``."""

    def __init__(self, mid_policy: MergePolicy = BASE_TO_MID, top_policy: MergePolicy = MID_TO_TOP):
        self.mid_policy = mid_policy
        self.top_policy = top_policy

    def expand_claims(self, children: Iterable[BaseSummary]) -> List[Span]:
        spans = []
        width = Tier.BASE.window_minutes
        for record in children:
            if record.timestamp is None:
                continue
            start = record.timestamp - timedelta(minutes=width)
            for claim in record.claims:
                spans.append(Span(
                    key=claim.key,
                    start=start,
                    end=record.timestamp,
                    minutes=width,
                    subtasks={claim.subtask_name} if claim.subtask_name else set(),
                ))
        return spans

    def expand_entries(self, children: Iterable[MidSummary]) -> List[Span]:
        """Expand 10min timeline entries, falling back to the record's own
        window when an entry carries no start/end."""
        spans = []
        width = Tier.MID.window_minutes
        for record in children:
            if record.timestamp is None:
                continue
            spans.extend(self.entries_to_spans(
                record.timeline,
                default_start=record.timestamp - timedelta(minutes=width),
                default_end=record.timestamp,
            ))
        return spans

    def entries_to_spans(
        self,
        entries: Iterable[TimelineEntry],
        default_start: Optional[datetime] = None,
        default_end: Optional[datetime] = None,
    ) -> List[Span]:
        spans = []
        for entry in entries:
            start = entry.start or default_start
            end = entry.end or default_end
            if start is None or end is None or end < start or not entry.label:
                continue
            span_minutes = (end - start).total_seconds() / 60
            minutes = entry.minutes if entry.minutes > 0 else span_minutes
            spans.append(Span(entry.key, start, end, min(minutes, span_minutes), set(entry.subtasks)))
        return spans

    def merge(self, spans: Sequence[Span], tolerance_minutes: float) -> List[Segment]:
        """Merge spans per key in start order; a span further than the
        tolerance from its key's open segment closes it and opens a new one.

        Window boundaries are compared at minute resolution: a gap shorter
        than a minute past the tolerance still merges, so ticks that land a
        few seconds late do not split a run.
        """
        reach = timedelta(minutes=tolerance_minutes) + _BOUNDARY_SLACK
        open_segments: Dict[CategoryKey, Segment] = {}
        closed: List[Segment] = []

        for span in sorted(spans, key=_order):
            segment = open_segments.get(span.key)
            if segment is not None and span.start < segment.end + reach:
                segment.absorb(span)
                continue
            if segment is not None:
                closed.append(segment)
            open_segments[span.key] = Segment.open(span)

        closed.extend(open_segments.values())
        return sorted(closed, key=_order)

    def aggregate_mid(self, children: Sequence[BaseSummary]) -> List[TimelineEntry]:
        segments = self.merge(self.expand_claims(children), self.mid_policy.tolerance_minutes)
        return [
            segment.to_entry() for segment in segments
            if segment.minutes >= self.mid_policy.min_minutes
        ]

    def aggregate_top(
        self, children: Sequence[MidSummary]
    ) -> Tuple[List[TimelineEntry], List[TimelineEntry]]:
        """Return ``(distribution, miscellaneous)`` for a 1h record."""
        segments = self.merge(self.expand_entries(children), self.top_policy.tolerance_minutes)
        return self._distribute(segments, self.top_policy)

    def remerge(self, entries: Sequence[TimelineEntry], policy: MergePolicy) -> List[TimelineEntry]:
        """Run already-merged entries through the merge step again."""
        segments = self.merge(self.entries_to_spans(entries), policy.tolerance_minutes)
        return [s.to_entry() for s in segments if s.minutes >= policy.min_minutes]

    def _distribute(
        self, segments: Sequence[Segment], policy: MergePolicy
    ) -> Tuple[List[TimelineEntry], List[TimelineEntry]]:
        totals: Dict[CategoryKey, TimelineEntry] = {}
        minutes: Dict[CategoryKey, float] = {}
        for segment in segments:
            entry = totals.get(segment.key)
            if entry is None:
                totals[segment.key] = segment.to_entry()
                minutes[segment.key] = segment.minutes
                continue
            minutes[segment.key] += segment.minutes
            entry.start = min(entry.start, segment.start)
            entry.end = max(entry.end, segment.end)
            entry.subtasks |= segment.subtasks

        distribution: List[TimelineEntry] = []
        miscellaneous: List[TimelineEntry] = []
        for key, entry in totals.items():
            entry.minutes = int(round(minutes[key]))
            if minutes[key] >= policy.min_minutes:
                distribution.append(entry)
            elif policy.keep_miscellaneous:
                miscellaneous.append(entry)

        by_minutes = lambda e: (-e.minutes, e.label)
        return sorted(distribution, key=by_minutes), sorted(miscellaneous, key=by_minutes)
