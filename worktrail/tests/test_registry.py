"""Tests for the taxonomy store and the classification registry."""

import json
from datetime import datetime, timedelta

import pytest

from worktrail.daemon.models import ActivityClaim, BaseSummary, CategoryType, Tier
from worktrail.daemon.registry import ClassificationRegistry
from worktrail.daemon.store import JsonRecordStore
from worktrail.daemon.taxonomy import JsonTaxonomyStore


NOW = datetime(2026, 3, 2, 10, 0, 0)


def write_json(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


def record(*claims, at=NOW, no_change=False) -> BaseSummary:
    return BaseSummary(timestamp=at, claims=list(claims), no_change=no_change)


@pytest.fixture
def taxonomy_store(tmp_path):
    return JsonTaxonomyStore(tmp_path / "taxonomy")


@pytest.fixture
def record_store(tmp_path):
    return JsonRecordStore(tmp_path / "summaries")


class TestTaxonomyStore:
    """Idempotent entry creation."""

    @pytest.mark.asyncio
    async def test_propose_task_once(self, taxonomy_store):
        assert await taxonomy_store.propose_entry("task", "Write report") is True
        assert await taxonomy_store.propose_entry("task", "Write report") is False

        taxonomy = await taxonomy_store.read_taxonomy()
        assert len(taxonomy.tasks) == 1
        task = taxonomy.tasks[0]
        assert task["title"] == "Write report"
        assert task["source"] == "ai"
        assert task["children"] == []
        assert len(task["id"]) == 26

    @pytest.mark.asyncio
    async def test_subtask_needs_parent(self, taxonomy_store):
        assert await taxonomy_store.propose_entry("subtask", "Draft intro", parent="Missing") is False

        await taxonomy_store.propose_entry("task", "Write report", source="user")
        assert await taxonomy_store.propose_entry("subtask", "Draft intro", parent="Write report") is True
        assert await taxonomy_store.propose_entry("subtask", "Draft intro", parent="Write report") is False

        task = (await taxonomy_store.read_taxonomy()).find_task("Write report")
        assert [c["title"] for c in task["children"]] == ["Draft intro"]
        assert task["source"] == "user"

    @pytest.mark.asyncio
    async def test_propose_behavior(self, taxonomy_store):
        assert await taxonomy_store.propose_entry("behavior", "Asking ChatGPT") is True
        assert await taxonomy_store.propose_entry("behavior", "  ") is False

        taxonomy = await taxonomy_store.read_taxonomy()
        assert taxonomy.has_behavior("Asking ChatGPT")
        assert not taxonomy.has_behavior("Browsing")

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_as_empty(self, taxonomy_store):
        taxonomy_store.directory.mkdir(parents=True)
        taxonomy_store.tasks_file.write_text("{broken", encoding="utf-8")

        taxonomy = await taxonomy_store.read_taxonomy()
        assert taxonomy.tasks == []

    @pytest.mark.asyncio
    async def test_unknown_kind(self, taxonomy_store):
        with pytest.raises(ValueError):
            await taxonomy_store.propose_entry("project", "Anything")


class TestWriteBack:
    """Analyzer proposals are written to the taxonomy."""

    @pytest.mark.asyncio
    async def test_new_task_with_subtask(self, taxonomy_store, record_store):
        registry = ClassificationRegistry(taxonomy_store, record_store, clock=lambda: NOW)
        created = await registry.write_back(record(
            ActivityClaim(CategoryType.NEW_TASK, "Write report", "Draft intro"),
        ))

        assert created == 2
        task = (await taxonomy_store.read_taxonomy()).find_task("Write report")
        assert [c["title"] for c in task["children"]] == ["Draft intro"]

    @pytest.mark.asyncio
    async def test_new_behavior(self, taxonomy_store, record_store):
        registry = ClassificationRegistry(taxonomy_store, record_store, clock=lambda: NOW)
        await registry.write_back(record(ActivityClaim(CategoryType.NEW_BEHAVIOR, "Asking ChatGPT")))

        assert (await taxonomy_store.read_taxonomy()).has_behavior("Asking ChatGPT")

    @pytest.mark.asyncio
    async def test_existing_task_gets_new_subtask(self, taxonomy_store, record_store):
        await taxonomy_store.propose_entry("task", "Write report", source="user")
        registry = ClassificationRegistry(taxonomy_store, record_store, clock=lambda: NOW)

        created = await registry.write_back(record(
            ActivityClaim(CategoryType.TASK, "Write report", "Add charts"),
            ActivityClaim(CategoryType.TASK, "Unknown task", "Ignored"),
            ActivityClaim(CategoryType.BEHAVIOR, "Music"),
        ))

        assert created == 1
        taxonomy = await taxonomy_store.read_taxonomy()
        assert [t["title"] for t in taxonomy.tasks] == ["Write report"]
        assert taxonomy.behaviors == []

    @pytest.mark.asyncio
    async def test_placeholder_is_not_written_back(self, taxonomy_store, record_store):
        registry = ClassificationRegistry(taxonomy_store, record_store, clock=lambda: NOW)
        created = await registry.write_back(record(
            ActivityClaim(CategoryType.NEW_BEHAVIOR, "Idle"), no_change=True,
        ))

        assert created == 0
        assert (await taxonomy_store.read_taxonomy()).behaviors == []

    @pytest.mark.asyncio
    async def test_without_taxonomy(self, record_store):
        registry = ClassificationRegistry(None, record_store)

        assert not registry.enabled
        assert await registry.render_context() == ""
        assert await registry.write_back(record(ActivityClaim(CategoryType.NEW_TASK, "X"))) == 0


class TestRenderContext:
    """Taxonomy text sent with analysis requests."""

    @pytest.mark.asyncio
    async def test_renders_active_tasks_and_behaviors(self, taxonomy_store, record_store):
        write_json(taxonomy_store.tasks_file, [
            {"title": "Write report", "description": "Q3 numbers", "completed": False, "children": [
                {"title": "Draft intro", "completed": False},
                {"title": "Old step", "completed": True},
            ]},
            {"title": "Done task", "completed": True, "children": []},
        ])
        write_json(taxonomy_store.behaviors_file, [{"name": "Email", "source": "user"}])
        registry = ClassificationRegistry(taxonomy_store, record_store, clock=lambda: NOW)

        text = await registry.render_context()

        assert text == "\n".join([
            "Tasks",
            "  Write report",
            "  Q3 numbers",
            "    Draft intro",
            "Behaviors",
            "  Email",
        ])

    @pytest.mark.asyncio
    async def test_stale_ai_behaviors_are_hidden(self, taxonomy_store, record_store):
        write_json(taxonomy_store.behaviors_file, [
            {"name": "Email", "source": "user"},
            {"name": "Asking ChatGPT", "source": "ai"},
            {"name": "One-off thing", "source": "ai"},
            {"name": "Ancient habit", "source": "ai"},
        ])
        recent = NOW - timedelta(days=2)
        old = NOW - timedelta(days=9)
        await record_store.save(Tier.BASE, recent, record(
            ActivityClaim(CategoryType.NEW_BEHAVIOR, "Asking ChatGPT"), at=recent,
        ))
        await record_store.save(Tier.BASE, old, record(
            ActivityClaim(CategoryType.BEHAVIOR, "Ancient habit"), at=old,
        ))
        registry = ClassificationRegistry(taxonomy_store, record_store, behavior_recent_days=7, clock=lambda: NOW)

        text = await registry.render_context()

        assert "Email" in text
        assert "Asking ChatGPT" in text
        assert "One-off thing" not in text
        assert "Ancient habit" not in text

    @pytest.mark.asyncio
    async def test_records_read_only_for_ai_behaviors(self, taxonomy_store, record_store):
        reads = []
        get_since = record_store.get_since

        async def counting_get_since(tier, since):
            reads.append(tier)
            return await get_since(tier, since)

        record_store.get_since = counting_get_since
        write_json(taxonomy_store.behaviors_file, [{"name": "Email", "source": "user"}])
        registry = ClassificationRegistry(taxonomy_store, record_store, clock=lambda: NOW)

        assert await registry.render_context() == "Behaviors\n  Email"
        assert reads == []

        await taxonomy_store.propose_entry("behavior", "Asking ChatGPT")
        await registry.render_context()
        assert reads == [Tier.BASE]
