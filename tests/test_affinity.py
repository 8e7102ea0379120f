"""Unit tests for affinity learning and the decay job."""

import math
import random
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from trendscope.affinity import AffinityLearner, outcome_label, outcome_signal, performance_vs_baseline
from trendscope.errors import DecayJobError, PersistenceError
from trendscope.models import AffinitySource, CampaignOutcome, OrgTopicAffinity
from trendscope.settings import AffinitySettings
from trendscope.store import TrendStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def store(tmp_path: Path) -> TrendStore:
    return TrendStore(db_path=tmp_path / "trends.db")


def _seed(
    store: TrendStore,
    topic: str,
    score: float,
    days_unused: int,
    source: AffinitySource = AffinitySource.LEARNED_OUTCOME,
) -> None:
    aff = OrgTopicAffinity(
        organization_id="org-1",
        topic=topic,
        affinity_score=score,
        source=source,
        times_used=3,
        last_used_at=NOW - timedelta(days=days_unused),
    )
    store.save_affinity(aff, old_score=score, signal=None, reason="seed", at=aff.last_used_at)


class TestOutcomeSignal:
    def test_email_blend(self) -> None:
        outcome = CampaignOutcome(campaign_type="email", open_rate=0.25, click_rate=0.05, conversion_rate=0.02)
        pct = performance_vs_baseline(outcome, AffinitySettings())
        assert pct == pytest.approx(56.0)
        assert outcome_label(pct) == "high_performer"
        assert outcome_signal(outcome) == 1.0

    def test_sms_uses_click_rate(self) -> None:
        outcome = CampaignOutcome(campaign_type="sms", click_rate=0.1)
        assert outcome_signal(outcome) == pytest.approx(0.75)
        assert outcome_label(25.0) == "performer"

    def test_underperformer(self) -> None:
        outcome = CampaignOutcome(campaign_type="push", click_rate=0.0)
        assert outcome_signal(outcome) == 0.0
        assert outcome_label(-100.0) == "underperformer"


class TestUpdateAffinity:
    def test_new_topic_starts_at_initial(self, store: TrendStore) -> None:
        learner = AffinityLearner(store)
        aff = learner.update_affinity("org-1", "Housing", 1.0, NOW)
        assert aff.affinity_score == pytest.approx(0.65)
        assert aff.times_used == 1
        assert aff.avg_performance == 1.0
        assert store.get_affinity("org-1", "Housing") == aff

        audit = store.affinity_audit("org-1", "Housing")
        assert len(audit) == 1
        assert audit[0]["old_score"] == 0.5
        assert audit[0]["signal"] == 1.0
        assert audit[0]["reason"] == "outcome"

    def test_stays_within_bounds(self, store: TrendStore) -> None:
        learner = AffinityLearner(store)
        for _ in range(30):
            high = learner.update_affinity("org-1", "Housing", 1.0, NOW)
            low = learner.update_affinity("org-1", "Tariffs", 0.0, NOW)
        assert high.affinity_score == pytest.approx(0.95)
        assert low.affinity_score == pytest.approx(0.2)

    def test_random_signals_stay_within_bounds(self, store: TrendStore) -> None:
        learner = AffinityLearner(store)
        rng = random.Random(7)
        for _ in range(200):
            aff = learner.update_affinity("org-1", "Housing", rng.random(), NOW)
            assert 0.2 <= aff.affinity_score <= 0.95
        assert aff.times_used == 200

    def test_self_declared_score_unchanged(self, store: TrendStore) -> None:
        _seed(store, "Housing", 0.9, days_unused=1, source=AffinitySource.SELF_DECLARED)
        aff = AffinityLearner(store).update_affinity("org-1", "Housing", 0.0, NOW)
        assert aff.affinity_score == 0.9
        assert aff.times_used == 4
        assert aff.source == AffinitySource.SELF_DECLARED

    @pytest.mark.parametrize("signal", [1.5, -0.1, math.nan])
    def test_rejects_bad_signal(self, store: TrendStore, signal: float) -> None:
        with pytest.raises(ValueError):
            AffinityLearner(store).update_affinity("org-1", "Housing", signal, NOW)
        assert store.get_affinity("org-1", "Housing") is None

    def test_report_campaign(self, store: TrendStore) -> None:
        outcome = CampaignOutcome(campaign_type="sms", click_rate=0.1)
        aff = AffinityLearner(store).report_campaign("org-1", "Housing", outcome, NOW)
        assert aff.affinity_score == pytest.approx(0.3 * 0.75 + 0.7 * 0.5)

    def test_concurrent_updates_are_not_lost(self, store: TrendStore) -> None:
        learner = AffinityLearner(store)
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: learner.update_affinity("org-1", "Housing", 1.0, NOW), range(20)))

        aff = store.get_affinity("org-1", "Housing")
        assert aff.times_used == 20
        assert aff.avg_performance == 1.0
        assert aff.affinity_score == pytest.approx(0.95)
        audit = store.affinity_audit("org-1", "Housing")
        assert len(audit) == 20
        assert [a["old_score"] for a in audit[:2]] == [0.5, 0.65]


class TestDecay:
    def test_decays_only_stale_learned_entries(self, store: TrendStore) -> None:
        _seed(store, "stale", 0.8, days_unused=40)
        _seed(store, "fresh", 0.8, days_unused=5)
        _seed(store, "floor", 0.3, days_unused=40)
        _seed(store, "near_floor", 0.31, days_unused=40)
        _seed(store, "declared", 0.9, days_unused=40, source=AffinitySource.SELF_DECLARED)

        decayed = AffinityLearner(store).decay_stale(NOW)
        assert {a.topic for a in decayed} == {"stale", "near_floor"}
        assert store.get_affinity("org-1", "stale").affinity_score == pytest.approx(0.76)
        assert store.get_affinity("org-1", "near_floor").affinity_score == 0.3
        assert store.get_affinity("org-1", "fresh").affinity_score == 0.8
        assert store.get_affinity("org-1", "declared").affinity_score == 0.9
        assert store.affinity_audit("org-1", "stale")[-1]["reason"] == "decay"

    def test_second_run_same_week_is_noop(self, store: TrendStore) -> None:
        _seed(store, "stale", 0.8, days_unused=40)
        learner = AffinityLearner(store)
        learner.decay_stale(NOW)
        assert learner.decay_stale(NOW + timedelta(days=3)) == []
        assert store.get_affinity("org-1", "stale").affinity_score == pytest.approx(0.76)
        assert len(learner.decay_stale(NOW + timedelta(days=8))) == 1

    def test_failures_reported_after_the_rest(self, store: TrendStore, monkeypatch: pytest.MonkeyPatch) -> None:
        _seed(store, "a", 0.8, days_unused=40)
        _seed(store, "b", 0.8, days_unused=40)
        real_save = store.save_affinity

        def flaky_save(affinity: OrgTopicAffinity, **kwargs: object) -> None:
            if affinity.topic == "a":
                raise PersistenceError("locked", record="org-1/a")
            real_save(affinity, **kwargs)

        monkeypatch.setattr(store, "save_affinity", flaky_save)
        with pytest.raises(DecayJobError) as excinfo:
            AffinityLearner(store).decay_stale(NOW)
        assert excinfo.value.failed == ["org-1/a"]
        assert store.get_affinity("org-1", "b").affinity_score == pytest.approx(0.76)
        assert store.get_affinity("org-1", "a").affinity_score == 0.8
