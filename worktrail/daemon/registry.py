"""Taxonomy access for the analysis pipeline.

The read path renders the task/behavior directory into the request context.
Behaviors the analyzer proposed itself are only shown while they are still
in use, i.e. classified at least once in the recent 2min records, so one-off
suggestions drop out instead of growing the directory without bound.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional, Set

from loguru import logger

from .models import BaseSummary, CategoryType, Tier
from .store import JsonRecordStore
from .taxonomy import JsonTaxonomyStore, Taxonomy


class ClassificationRegistry:
    def __init__(
        self,
        taxonomy_store: Optional[JsonTaxonomyStore],
        record_store: JsonRecordStore,
        behavior_recent_days: int = 7,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.taxonomy_store = taxonomy_store
        self.record_store = record_store
        self.behavior_recent_days = behavior_recent_days
        self.clock = clock or datetime.now

    @property
    def enabled(self) -> bool:
        return self.taxonomy_store is not None

    async def render_context(self) -> str:
        """Render the taxonomy as indented text; empty when there is none."""
        if self.taxonomy_store is None:
            return ""

        try:
            taxonomy = await self.taxonomy_store.read_taxonomy()
            recent: Set[str] = set()
            # Only AI-proposed behaviors depend on recent records.
            if any(b.get("source") == "ai" for b in taxonomy.behaviors):
                recent = await self._recent_behavior_names()
        except Exception as e:
            logger.warning(f"[taxonomy] Failed to load taxonomy, continuing without it: {e}")
            return ""

        return self.render(taxonomy, recent)

    def render(self, taxonomy: Taxonomy, recent_behaviors: Set[str]) -> str:
        lines: List[str] = []

        active_tasks = [t for t in taxonomy.tasks if not t.get("completed")]
        if active_tasks:
            lines.append("Tasks")
            for task in active_tasks:
                lines.append(f"  {task.get('title', '')}")
                if task.get("description"):
                    lines.append(f"  {task['description']}")
                for child in task.get("children") or []:
                    if not child.get("completed"):
                        lines.append(f"    {child.get('title', '')}")

        behaviors = [
            b for b in taxonomy.behaviors
            if b.get("source") != "ai" or b.get("name") in recent_behaviors
        ]
        if behaviors:
            lines.append("Behaviors")
            for behavior in behaviors:
                lines.append(f"  {behavior.get('name', '')}")

        return "\n".join(lines)

    async def _recent_behavior_names(self) -> Set[str]:
        since = self.clock() - timedelta(days=self.behavior_recent_days)
        names: Set[str] = set()
        for record in await self.record_store.get_since(Tier.BASE, since):
            if record.no_change or not isinstance(record, BaseSummary):
                continue
            for claim in record.claims:
                if claim.category_type.settled is CategoryType.BEHAVIOR:
                    names.add(claim.category_name)
        return names

    async def write_back(self, record: BaseSummary) -> int:
        """Create taxonomy entries the record proposes.

        Failures are logged; the record is already persisted either way.

        Returns:
            Number of entries created
        """
        if self.taxonomy_store is None or record.no_change:
            return 0

        created = 0
        try:
            for claim in record.claims:
                name = claim.category_name
                subtask = claim.subtask_name
                if claim.category_type is CategoryType.NEW_TASK:
                    created += await self.taxonomy_store.propose_entry("task", name)
                    if subtask:
                        created += await self.taxonomy_store.propose_entry("subtask", subtask, parent=name)
                elif claim.category_type is CategoryType.NEW_BEHAVIOR:
                    created += await self.taxonomy_store.propose_entry("behavior", name)
                elif claim.category_type is CategoryType.TASK and subtask:
                    created += await self.taxonomy_store.propose_entry("subtask", subtask, parent=name)
        except Exception as e:
            logger.warning(f"{Tier.BASE.tag} Taxonomy write-back failed: {e}")
        return created
