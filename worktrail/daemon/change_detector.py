"""No-change detection and placeholder records.

When every screenshot in a base window is byte-identical the screen did not
change, so the analyzer is skipped and a placeholder record is written
instead. Placeholders carry the same fields as analyzed records so parent
tiers can aggregate them without special cases; a parent whose children are
all placeholders is itself written as a placeholder.
"""

from datetime import datetime
from typing import Any, Dict, Sequence, Union

from loguru import logger

from .models import (
    ActivityClaim, BaseSummary, CategoryType, Evidence, MidSummary,
    SummaryRecord, Tier, TopSummary,
)


NO_ACTIVITY_LABEL = "No screen change"
UNKNOWN = "unknown"


class ChangeDetector:
    """Decides when a tier can skip analysis and builds its placeholder."""

    def all_identical(self, evidence: Sequence[Evidence]) -> bool:
        """True only when there are at least two frames and all match the first."""
        if not evidence or len(evidence) <= 1:
            return False

        first = evidence[0].payload
        for item in evidence[1:]:
            if item.payload != first:
                return False

        logger.info(f"[compare] {len(evidence)} screenshots are identical, no screen change")
        return True

    def all_no_change(self, records: Sequence[SummaryRecord]) -> bool:
        if not records:
            return False
        return all(record.no_change for record in records)

    def build_no_change_record(
        self,
        tier: Tier,
        items: Sequence[Union[Evidence, SummaryRecord]],
        timestamp: datetime,
        context: str = "",
    ) -> SummaryRecord:
        """Build the placeholder record for ``tier``.

        Args:
            tier: Tier the record belongs to
            items: Evidence (base tier) or child records (mid/top tiers)
            timestamp: Window end
            context: Focus-window text for the window, if any
        """
        if tier is Tier.BASE:
            return self._base_record(items, timestamp, context)
        if tier is Tier.MID:
            return self._mid_record(items, timestamp)
        return self._top_record(items, timestamp)

    def _base_record(self, evidence, timestamp: datetime, context: str) -> BaseSummary:
        details: Dict[str, Any] = {
            "task_status": "continue",
            "interaction_mode": "idle",
            "browse_content": UNKNOWN,
            "operate_action": "none",
            "core_action": NO_ACTIVITY_LABEL,
            "context": window_name(context) if context else UNKNOWN,
            "content_change": "none",
            "progress": "none",
            "blockers": "none",
            "next_intent": UNKNOWN,
            "confidence": "high",
            "evidence_compared": len(evidence),
        }
        return BaseSummary(
            timestamp=timestamp,
            no_change=True,
            skip_reason="All screenshots identical, screen unchanged",
            claims=[ActivityClaim(CategoryType.BEHAVIOR, NO_ACTIVITY_LABEL)],
            duration_minutes=Tier.BASE.window_minutes,
            details=details,
        )

    def _mid_record(self, children, timestamp: datetime) -> MidSummary:
        contexts = []
        for child in children:
            ctx = child.details.get("context")
            if ctx and ctx != UNKNOWN and ctx not in contexts:
                contexts.append(ctx)

        return MidSummary(
            timestamp=timestamp,
            no_change=True,
            skip_reason="All 2min children unchanged, analysis skipped",
            timeline=[],
            no_change_child_count=len(children),
            details={
                "task_main": "No activity: screen unchanged",
                "key_progress": "none",
                "key_objects": ", ".join(contexts) if contexts else UNKNOWN,
                "content_change": "none",
                "blockers": "none",
                "next_step": UNKNOWN,
                "confidence": "high",
            },
        )

    def _top_record(self, children, timestamp: datetime) -> TopSummary:
        return TopSummary(
            timestamp=timestamp,
            no_change=True,
            skip_reason="All 10min children unchanged, analysis skipped",
            distribution=[],
            miscellaneous=[],
            no_change_child_count=len(children),
            details={
                "achievements": [],
                "task_chain": "No activity: screen unchanged",
                "key_output": "none",
                "blockers": "none",
                "next_direction": UNKNOWN,
                "confidence": "high",
            },
        )


def window_name(focus_text: str) -> str:
    """First focused window name from rendered focus-timeline text.

    Lines look like ``"code - main.py" 10:02:56-10:03:17``.
    """
    first_line = focus_text.split("\n")[0].strip()
    if first_line.startswith('"'):
        end = first_line.find('"', 1)
        if end > 1:
            return first_line[1:end]
    return first_line or UNKNOWN
