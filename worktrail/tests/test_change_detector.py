"""Tests for no-change detection and placeholder records."""

from datetime import datetime

from worktrail.daemon.change_detector import NO_ACTIVITY_LABEL, ChangeDetector, window_name
from worktrail.daemon.models import (
    BaseSummary, CategoryType, Evidence, MidSummary, Tier, TopSummary, record_from_dict,
)


NOW = datetime(2026, 3, 2, 10, 2, 0)


def frames(*payloads):
    return [Evidence(payload=p, timestamp=NOW) for p in payloads]


class TestAllIdentical:
    """Byte comparison of screenshots."""

    def test_too_few_items_count_as_changed(self):
        detector = ChangeDetector()
        assert detector.all_identical([]) is False
        assert detector.all_identical(frames(b"a")) is False

    def test_identical_payloads(self):
        assert ChangeDetector().all_identical(frames(b"a", b"a", b"a")) is True

    def test_one_different_payload(self):
        assert ChangeDetector().all_identical(frames(b"a", b"a", b"b")) is False
        assert ChangeDetector().all_identical(frames(b"b", b"a", b"a")) is False


class TestAllNoChange:
    """Propagation of no-change through tiers."""

    def test_empty_is_false(self):
        assert ChangeDetector().all_no_change([]) is False

    def test_all_placeholders(self):
        records = [BaseSummary(timestamp=NOW, no_change=True) for _ in range(3)]
        assert ChangeDetector().all_no_change(records) is True

    def test_one_analyzed_child(self):
        records = [BaseSummary(timestamp=NOW, no_change=True) for _ in range(3)]
        records.append(BaseSummary(timestamp=NOW, no_change=False))
        assert ChangeDetector().all_no_change(records) is False


class TestPlaceholderRecords:
    """Placeholders have the same shape as analyzed records."""

    def test_base_placeholder(self):
        record = ChangeDetector().build_no_change_record(
            Tier.BASE, frames(b"a", b"a"), NOW, '"code - main.py" 10:00:01-10:01:59'
        )

        assert isinstance(record, BaseSummary)
        assert record.no_change is True
        assert record.skip_reason
        assert len(record.claims) == 1
        assert record.claims[0].category_type is CategoryType.BEHAVIOR
        assert record.claims[0].category_name == NO_ACTIVITY_LABEL
        assert record.duration_minutes == 2
        assert record.details["context"] == "code - main.py"
        assert record.details["evidence_compared"] == 2

    def test_base_placeholder_survives_persistence(self):
        record = ChangeDetector().build_no_change_record(Tier.BASE, frames(b"a", b"a"), NOW)
        restored = record_from_dict(record.to_dict())

        assert isinstance(restored, BaseSummary)
        assert restored.no_change is True
        assert restored.timestamp == NOW
        assert restored.claims == record.claims

    def test_mid_placeholder(self):
        children = [BaseSummary(timestamp=NOW, no_change=True) for _ in range(5)]
        record = ChangeDetector().build_no_change_record(Tier.MID, children, NOW)

        assert isinstance(record, MidSummary)
        assert record.no_change is True
        assert record.timeline == []
        assert record.no_change_child_count == 5
        assert record.to_dict()["activity_timeline"] == []

    def test_top_placeholder(self):
        children = [MidSummary(timestamp=NOW, no_change=True) for _ in range(6)]
        record = ChangeDetector().build_no_change_record(Tier.TOP, children, NOW)

        assert isinstance(record, TopSummary)
        assert record.distribution == []
        assert record.miscellaneous == []
        assert record.no_change_child_count == 6
        data = record.to_dict()
        assert data["time_distribution"] == []
        assert data["miscellaneous"] == []


def test_window_name():
    assert window_name('"firefox - Docs" 10:00:00-10:01:00\n"code" 10:01:00-10:02:00') == "firefox - Docs"
    assert window_name("plain text") == "plain text"
    assert window_name("") == "unknown"
