"""Tests for service-interruption detection."""

from datetime import datetime, timedelta

from worktrail.daemon.gap_detector import GapDetector
from worktrail.daemon.models import BaseSummary


NOW = datetime(2026, 3, 2, 10, 30, 0)


def history(*ages):
    """Records ``ages`` before NOW, oldest first."""
    return [BaseSummary(timestamp=NOW - age) for age in ages]


def test_no_history():
    assert GapDetector().detect_gap([], NOW, 2) is None


def test_unparseable_timestamp():
    assert GapDetector().detect_gap([BaseSummary(timestamp=None)], NOW, 2) is None


def test_two_intervals_is_not_a_gap():
    assert GapDetector().detect_gap(history(timedelta(minutes=4)), NOW, 2) is None


def test_more_than_two_intervals_is_a_gap():
    gap = GapDetector().detect_gap(history(timedelta(minutes=5)), NOW, 2)

    assert gap is not None
    assert gap.gap_minutes == 5
    assert gap.last_record_time == NOW - timedelta(minutes=5)


def test_uses_newest_record():
    records = history(timedelta(minutes=30), timedelta(minutes=2))
    assert GapDetector().detect_gap(records, NOW, 2) is None


def test_minutes_round_half_up():
    detector = GapDetector()
    assert detector.detect_gap(history(timedelta(minutes=4, seconds=29)), NOW, 2) is None

    gap = detector.detect_gap(history(timedelta(minutes=4, seconds=30)), NOW, 2)
    assert gap is not None
    assert gap.gap_minutes == 5
