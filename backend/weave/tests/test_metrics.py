"""
Test: Story metrics
"""
from datetime import datetime, timedelta, timezone

import pytest

from models.domain import Signal, SignalType, StoryMembership, StoryStatus
from weave.metrics import (
    compute_story_metrics,
    recency_score,
    story_energy,
    story_status,
    velocity_score,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _signal(signal_id, signal_type, url, age_days=0):
    return Signal(
        id=signal_id,
        signal_type=signal_type,
        title=signal_id,
        source_url=url,
        created_at=NOW - timedelta(days=age_days),
    )


class TestStatus:

    def test_single_type_repeated_is_echo(self):
        assert story_status(type_diversity=1, source_domain_count=4, signal_count=5) is StoryStatus.ECHO

    def test_two_sources_two_types_is_confirmed(self):
        assert story_status(type_diversity=2, source_domain_count=2, signal_count=2) is StoryStatus.CONFIRMED

    def test_otherwise_emerging(self):
        assert story_status(type_diversity=1, source_domain_count=2, signal_count=2) is StoryStatus.EMERGING
        assert story_status(type_diversity=3, source_domain_count=1, signal_count=3) is StoryStatus.EMERGING


class TestEnergy:

    def test_recency_falls_off_over_two_weeks(self):
        assert recency_score(NOW, NOW) == 1.0
        assert recency_score(NOW - timedelta(days=7), NOW) == pytest.approx(0.5)
        assert recency_score(NOW - timedelta(days=30), NOW) == 0.0
        assert recency_score(None, NOW) == 0.0

    def test_velocity_counts_last_week(self):
        recent = [NOW - timedelta(days=1)] * 3 + [NOW - timedelta(days=10)]
        assert velocity_score(recent, NOW) == pytest.approx(3 / 7)
        assert velocity_score([NOW] * 20, NOW) == 1.0

    def test_weights(self):
        assert story_energy(1, 1, 1, 1, 1) == pytest.approx(1.0)
        assert story_energy(1, 0, 0, 0, 0) == pytest.approx(0.4)
        assert story_energy(0, 0, 0, 1, 0) == pytest.approx(0.2)

    def test_compute_story_metrics(self):
        signals = [
            _signal("sg_1", SignalType.AID, "https://a.example.org/1"),
            _signal("sg_2", SignalType.GATHERING, "https://b.example.org/1", age_days=7),
        ]
        memberships = [
            StoryMembership(story_id="st_1", signal_id=s.id, run_seq=1, linked_at=NOW) for s in signals
        ]

        metrics = compute_story_metrics(signals, memberships, NOW)

        assert metrics.signal_count == 2
        assert metrics.type_diversity == 2
        assert metrics.source_domain_count == 2
        assert metrics.status is StoryStatus.CONFIRMED
        assert metrics.last_activity == NOW
        expected = story_energy(2 / 7, 1.0, 2 / 5, 2 / 5, 2 / 10)
        assert metrics.energy == pytest.approx(expected)
        assert 0.0 <= metrics.energy <= 1.0
