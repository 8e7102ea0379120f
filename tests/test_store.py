"""Unit tests for the SQLite trend store."""

import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from trendscope.errors import PersistenceError
from trendscope.models import (
    DailyBaseline,
    Mention,
    OrgProfile,
    OrgRelevanceScore,
    ScoreBreakdown,
    SourceType,
    TrendEvent,
    trend_event_id,
)
from trendscope.store import TrendStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def store(tmp_path: Path) -> TrendStore:
    return TrendStore(db_path=tmp_path / "trends.db")


def _mention(n: int, minutes_ago: int = 10) -> Mention:
    return Mention(
        content_hash=f"h{n}",
        canonical_url=f"https://s{n}.com/story",
        source_domain=f"s{n}.com",
        source_type=SourceType.NEWS,
        title=f"story {n}",
        published_at=NOW - timedelta(minutes=minutes_ago),
    )


def _make(key: str = "bill_passes_senate", mentions: list[Mention] | None = None, **kwargs: object) -> TrendEvent:
    mentions = mentions if mentions is not None else [_mention(1), _mention(2)]
    return TrendEvent(
        id=trend_event_id(key),
        event_key=key,
        event_title="Senate Passes Bill",
        mentions=mentions,
        confidence_score=kwargs.pop("confidence_score", 55.0),
        is_trending=kwargs.pop("is_trending", True),
        first_seen_at=min(m.published_at for m in mentions) if mentions else None,
        last_seen_at=max(m.published_at for m in mentions) if mentions else None,
        cluster_id=trend_event_id(key),
        breakdown=ScoreBreakdown(velocity=25.0, raw_score=25.0, final_score=25.0),
        **kwargs,
    )


class TestUpsertTrend:
    def test_round_trip(self, store: TrendStore) -> None:
        store.upsert_trend(_make(policy_domains=["Housing"]), pass_id="p1", computed_at=NOW)
        got = store.get_trend("bill_passes_senate")
        assert got is not None
        assert got.id == trend_event_id("bill_passes_senate")
        assert got.policy_domains == ["Housing"]
        assert got.evidence_count == 2
        assert got.breakdown.velocity == 25.0
        assert got.first_seen_at == NOW - timedelta(minutes=10)

    def test_rerun_is_idempotent(self, store: TrendStore) -> None:
        event = _make()
        store.upsert_trend(event, pass_id="p1", computed_at=NOW)
        first = store.get_trend(event.event_key)
        store.upsert_trend(event, pass_id="p2", computed_at=NOW)
        assert store.get_trend(event.event_key) == first
        assert store.evidence_count(event.event_key) == 2
        assert len(store.score_history(event.id)) == 1

    def test_merge_widens_and_accumulates(self, store: TrendStore) -> None:
        store.upsert_trend(
            _make(mentions=[_mention(1, minutes_ago=300)], merged_from=["x"]), pass_id="p1", computed_at=NOW
        )
        later = NOW + timedelta(hours=1)
        store.upsert_trend(
            _make(mentions=[_mention(1, minutes_ago=300), _mention(3)], merged_from=["y"]),
            pass_id="p2",
            computed_at=later,
        )
        got = store.get_trend("bill_passes_senate")
        assert got.first_seen_at == NOW - timedelta(minutes=300)
        assert got.merged_from == ["x", "y"]
        assert got.evidence_count == 2
        assert len(store.score_history(got.id)) == 2

    def test_first_seen_lookup(self, store: TrendStore) -> None:
        store.upsert_trend(_make(), pass_id="p1", computed_at=NOW)
        seen = store.first_seen(["bill_passes_senate", "missing"])
        assert seen == {"bill_passes_senate": NOW - timedelta(minutes=10)}
        assert store.first_seen([]) == {}

    def test_trending_snapshot_only_representatives(self, store: TrendStore) -> None:
        store.upsert_trend(_make("a", confidence_score=40.0), pass_id="p1", computed_at=NOW)
        store.upsert_trend(_make("b", confidence_score=80.0), pass_id="p1", computed_at=NOW)
        store.upsert_trend(_make("c", is_cluster_representative=False), pass_id="p1", computed_at=NOW)
        store.upsert_trend(_make("d", is_trending=False), pass_id="p1", computed_at=NOW)
        assert [t.event_key for t in store.trending_snapshot()] == ["b", "a"]
        assert len(store.all_trends()) == 4

    def test_trending_snapshot_since(self, store: TrendStore) -> None:
        store.upsert_trend(_make("fresh"), pass_id="p1", computed_at=NOW)
        store.upsert_trend(_make("old", mentions=[_mention(3, minutes_ago=30 * 60)]), pass_id="p1", computed_at=NOW)
        since = NOW - timedelta(hours=24)
        assert [t.event_key for t in store.trending_snapshot(since=since)] == ["fresh"]
        assert len(store.trending_snapshot()) == 2

    def test_retire_trends(self, store: TrendStore) -> None:
        later = NOW + timedelta(hours=1)
        store.upsert_trend(_make("dropped"), pass_id="p1", computed_at=NOW)
        store.upsert_trend(_make("kept"), pass_id="p2", computed_at=later)
        store.upsert_trend(_make("quiet"), pass_id="p2", computed_at=later)
        stale = [_mention(4, minutes_ago=30 * 60)]
        store.upsert_trend(_make("stale", mentions=stale), pass_id="p2", computed_at=later)
        store.upsert_trend(_make("deferred", mentions=stale), pass_id="p1", computed_at=NOW)

        keep = {trend_event_id("kept"), trend_event_id("deferred")}
        retired = store.retire_trends(keep, computed_at=later, stale_before=later - timedelta(hours=24))
        assert retired == 2
        assert {t.event_key for t in store.trending_snapshot()} == {"kept", "quiet", "deferred"}
        assert not store.get_trend("dropped").is_trending
        assert store.get_trend("dropped").confidence_score == 55.0
        assert store.retire_trends(keep, computed_at=later, stale_before=later - timedelta(hours=24)) == 0

    def test_newer_pass_takes_scores_and_keeps_counts(self, store: TrendStore) -> None:
        store.upsert_trend(_make(), pass_id="p1", computed_at=NOW)
        later = NOW + timedelta(hours=1)
        store.upsert_trend(_make(mentions=[_mention(1)], confidence_score=70.0), pass_id="p2", computed_at=later)

        got = store.get_trend("bill_passes_senate")
        assert got.confidence_score == 70.0
        assert got.current_24h == 2
        assert got.source_count == 2
        assert got.evidence_count == 2

    def test_older_pass_does_not_overwrite_scores(self, store: TrendStore) -> None:
        later = NOW + timedelta(hours=1)
        store.upsert_trend(_make(confidence_score=70.0), pass_id="p2", computed_at=later)
        store.upsert_trend(
            _make(mentions=[_mention(3, minutes_ago=90)], confidence_score=90.0), pass_id="p1", computed_at=NOW
        )

        got = store.get_trend("bill_passes_senate")
        assert got.confidence_score == 70.0
        assert got.current_24h == 3
        assert got.source_count == 3
        assert got.first_seen_at == NOW - timedelta(minutes=90)
        assert len(store.score_history(got.id)) == 2

    def test_same_time_passes_keep_higher_confidence(self, store: TrendStore) -> None:
        store.upsert_trend(_make(confidence_score=70.0), pass_id="p1", computed_at=NOW)
        store.upsert_trend(_make(mentions=[_mention(1)], confidence_score=30.0), pass_id="p2", computed_at=NOW)
        got = store.get_trend("bill_passes_senate")
        assert got.confidence_score == 70.0
        assert got.current_24h == 2

    def test_write_failure_raises_persistence_error(
        self, store: TrendStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def locked() -> sqlite3.Connection:
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(store, "_connect", locked)
        with pytest.raises(PersistenceError) as excinfo:
            store.upsert_trend(_make(), pass_id="p1", computed_at=NOW)
        assert excinfo.value.record == "bill_passes_senate"


class TestBaselines:
    def test_save_and_range(self, store: TrendStore) -> None:
        records = [
            DailyBaseline(event_key="k", baseline_date=f"2026-03-0{d}", hourly_average=float(d)) for d in range(1, 6)
        ]
        store.save_baselines(records)
        store.save_baselines([DailyBaseline(event_key="k", baseline_date="2026-03-02", hourly_average=9.0)])
        got = store.baselines("k", "2026-03-02", "2026-03-04")
        assert [r.hourly_average for r in got] == [9.0, 3.0, 4.0]


class TestOrgs:
    def test_profiles(self, store: TrendStore) -> None:
        store.save_org_profile(OrgProfile(organization_id="b", policy_domains=["Housing"]))
        store.save_org_profile(OrgProfile(organization_id="a", org_type="labor"))
        assert [p.organization_id for p in store.list_org_profiles()] == ["a", "b"]
        assert store.get_org_profile("b").policy_domains == ["Housing"]
        assert store.get_org_profile("zzz") is None

    def test_relevance_scores_replaced(self, store: TrendStore) -> None:
        first = [OrgRelevanceScore(organization_id="a", trend_event_id=t, relevance_score=50.0) for t in "xyz"]
        store.replace_relevance_scores("a", first)
        second = [
            OrgRelevanceScore(organization_id="a", trend_event_id="q", relevance_score=70.0, reasons=["Watchlist"])
        ]
        store.replace_relevance_scores("a", second)
        got = store.relevance_scores("a")
        assert [s.trend_event_id for s in got] == ["q"]
        assert got[0].reasons == ["Watchlist"]
        assert store.relevance_scores("a", limit=0) == []
