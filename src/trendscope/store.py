"""SQLite-backed store for trend events, baselines, affinities and relevance."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, TypeVar

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from trendscope.errors import PersistenceError
from trendscope.models import (
    AffinitySource,
    DailyBaseline,
    LabelQuality,
    OrgProfile,
    OrgRelevanceScore,
    OrgTopicAffinity,
    PriorityBucket,
    ScoreBreakdown,
    SourceType,
    TrendEvent,
    TrendStage,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Maps the stored affinity (None when absent) to the updated one and its old score.
AffinityStep = Callable[[OrgTopicAffinity | None], tuple[OrgTopicAffinity, float]]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS trend_events (
    id                TEXT PRIMARY KEY,
    event_key         TEXT NOT NULL UNIQUE,
    event_title       TEXT NOT NULL,
    is_event_phrase   INTEGER NOT NULL DEFAULT 0,
    label_quality     TEXT NOT NULL DEFAULT 'unknown',
    source_count      INTEGER NOT NULL DEFAULT 0,
    current_1h        INTEGER NOT NULL DEFAULT 0,
    current_6h        INTEGER NOT NULL DEFAULT 0,
    current_24h       INTEGER NOT NULL DEFAULT 0,
    news_count        INTEGER NOT NULL DEFAULT 0,
    social_count      INTEGER NOT NULL DEFAULT 0,
    tier12_count      INTEGER NOT NULL DEFAULT 0,
    baseline_7d       REAL NOT NULL DEFAULT 0.0,
    baseline_30d      REAL NOT NULL DEFAULT 0.0,
    z_score           REAL NOT NULL DEFAULT 0.0,
    confidence_score  REAL NOT NULL DEFAULT 0.0,
    is_trending       INTEGER NOT NULL DEFAULT 0,
    is_breaking       INTEGER NOT NULL DEFAULT 0,
    breaking_path     TEXT,
    trend_stage       TEXT NOT NULL DEFAULT 'stable',
    first_seen_at     TEXT,
    last_seen_at      TEXT,
    cluster_id        TEXT,
    is_cluster_representative INTEGER NOT NULL DEFAULT 1,
    merged_from       TEXT NOT NULL DEFAULT '[]',
    related_entities  TEXT NOT NULL DEFAULT '[]',
    policy_domains    TEXT NOT NULL DEFAULT '[]',
    geographies       TEXT NOT NULL DEFAULT '[]',
    passes_quality_gate INTEGER NOT NULL DEFAULT 1,
    gate_reason       TEXT,
    breakdown         TEXT NOT NULL DEFAULT '{}',
    evidence_count    INTEGER NOT NULL DEFAULT 0,
    top_headline      TEXT NOT NULL DEFAULT '',
    updated_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS trend_evidence (
    event_key     TEXT NOT NULL,
    content_hash  TEXT NOT NULL,
    source_domain TEXT NOT NULL,
    canonical_url TEXT NOT NULL,
    title         TEXT NOT NULL,
    source_type   TEXT NOT NULL DEFAULT 'news',
    source_tier   INTEGER,
    published_at  TEXT NOT NULL,
    PRIMARY KEY (event_key, content_hash)
);

CREATE TABLE IF NOT EXISTS score_audit (
    trend_event_id   TEXT NOT NULL,
    computed_at      TEXT NOT NULL,
    pass_id          TEXT NOT NULL,
    confidence_score REAL NOT NULL,
    breakdown        TEXT NOT NULL,
    PRIMARY KEY (trend_event_id, computed_at)
);

CREATE TABLE IF NOT EXISTS trend_baselines (
    event_key        TEXT NOT NULL,
    baseline_date    TEXT NOT NULL,
    hourly_average   REAL NOT NULL DEFAULT 0.0,
    hourly_std_dev   REAL NOT NULL DEFAULT 0.0,
    relative_std_dev REAL NOT NULL DEFAULT 0.0,
    PRIMARY KEY (event_key, baseline_date)
);

CREATE TABLE IF NOT EXISTS org_profiles (
    organization_id TEXT PRIMARY KEY,
    profile         TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS org_topic_affinities (
    organization_id TEXT NOT NULL,
    topic           TEXT NOT NULL,
    affinity_score  REAL NOT NULL DEFAULT 0.5,
    source          TEXT NOT NULL DEFAULT 'learned_outcome',
    times_used      INTEGER NOT NULL DEFAULT 0,
    avg_performance REAL NOT NULL DEFAULT 0.0,
    last_used_at    TEXT,
    last_decayed_at TEXT,
    PRIMARY KEY (organization_id, topic)
);

CREATE TABLE IF NOT EXISTS affinity_audit (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id TEXT NOT NULL,
    topic           TEXT NOT NULL,
    old_score       REAL NOT NULL,
    new_score       REAL NOT NULL,
    signal          REAL,
    reason          TEXT NOT NULL,
    logged_at       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS org_relevance_scores (
    organization_id       TEXT NOT NULL,
    trend_event_id        TEXT NOT NULL,
    rank                  INTEGER NOT NULL,
    relevance_score       REAL NOT NULL,
    profile_component     REAL NOT NULL,
    affinity_component    REAL NOT NULL,
    exploration_component REAL NOT NULL,
    is_new_opportunity    INTEGER NOT NULL DEFAULT 0,
    is_proven_topic       INTEGER NOT NULL DEFAULT 0,
    reasons               TEXT NOT NULL DEFAULT '[]',
    matched_domains       TEXT NOT NULL DEFAULT '[]',
    matched_watchlist     TEXT NOT NULL DEFAULT '[]',
    priority_bucket       TEXT NOT NULL DEFAULT 'low',
    computed_at           TEXT,
    PRIMARY KEY (organization_id, trend_event_id)
);
"""

_TREND_COLUMNS = (
    "id", "event_key", "event_title", "is_event_phrase", "label_quality", "source_count",
    "current_1h", "current_6h", "current_24h", "news_count", "social_count", "tier12_count",
    "baseline_7d", "baseline_30d", "z_score", "confidence_score", "is_trending", "is_breaking",
    "breaking_path", "trend_stage", "first_seen_at", "last_seen_at", "cluster_id",
    "is_cluster_representative", "merged_from", "related_entities", "policy_domains",
    "geographies", "passes_quality_gate", "gate_reason", "breakdown", "evidence_count",
    "top_headline", "updated_at",
)

# Columns merged across passes rather than taken from the latest writer.
_MERGED_COLUMNS = (
    "source_count", "current_1h", "current_6h", "current_24h", "news_count", "social_count",
    "tier12_count", "first_seen_at", "last_seen_at", "merged_from", "evidence_count",
)

_retry_locked = retry(
    retry=retry_if_exception_type(sqlite3.OperationalError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _supersedes(existing: sqlite3.Row, event: TrendEvent, computed_at: datetime) -> bool:
    """Whether *event* scored at *computed_at* replaces the stored scores."""
    stored_at = datetime.fromisoformat(existing["updated_at"])
    if computed_at != stored_at:
        return computed_at > stored_at
    return event.confidence_score >= existing["confidence_score"]


class TrendStore:
    """Trend events with append-only evidence and audit logs, backed by SQLite.

    Every record is written in its own transaction; locked-database errors are
    retried with backoff and then surface as :class:`PersistenceError`.
    """

    def __init__(self, db_path: Path) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._init_db()

    # ── trend events ────────────────────────────────────────────────────

    def upsert_trend(self, event: TrendEvent, *, pass_id: str, computed_at: datetime) -> None:
        """Merge *event* into the stored row for its ``event_key``.

        First/last-seen widen, ``merged_from`` is unioned, evidence rows are only
        ever added and window counts are recounted from all stored evidence, so
        an overlapping pass never shrinks them. Scores come from the most recent
        pass; between two passes at the same ``computed_at`` the higher
        confidence wins. Re-running a window leaves the row unchanged.
        """
        self._guard(event.event_key, self._upsert_trend, event, pass_id, computed_at)

    def retire_trends(self, keep: set[str], *, computed_at: datetime, stale_before: datetime) -> int:
        """Flip ``is_trending`` off for trends a pass no longer asserts.

        A trending row whose id is not in *keep* is retired when its newest
        evidence is at or before *stale_before*, or when it was last written by
        an earlier pass. Returns the number of retired rows.
        """
        return self._guard("retire", self._retire_trends, keep, computed_at, stale_before)

    def get_trend(self, event_key: str) -> TrendEvent | None:
        con = self._connect()
        try:
            row = con.execute("SELECT * FROM trend_events WHERE event_key = ?", (event_key,)).fetchone()
        finally:
            con.close()
        return self._row_to_event(row) if row else None

    def first_seen(self, event_keys: list[str]) -> dict[str, datetime]:
        """Persisted first-seen timestamps for *event_keys*."""
        if not event_keys:
            return {}
        con = self._connect()
        try:
            out: dict[str, datetime] = {}
            for start in range(0, len(event_keys), 500):
                chunk = event_keys[start : start + 500]
                marks = ",".join("?" * len(chunk))
                rows = con.execute(
                    f"SELECT event_key, first_seen_at FROM trend_events WHERE event_key IN ({marks})",
                    chunk,
                ).fetchall()
                out.update({r["event_key"]: _dt(r["first_seen_at"]) for r in rows if r["first_seen_at"]})
        finally:
            con.close()
        return out

    def trending_snapshot(self, since: datetime | None = None) -> list[TrendEvent]:
        """Current trending cluster representatives, read in one transaction.

        With *since*, trends whose newest evidence is older are left out.
        """
        con = self._connect()
        try:
            rows = con.execute(
                "SELECT * FROM trend_events WHERE is_trending = 1 AND is_cluster_representative = 1 "
                "ORDER BY confidence_score DESC, id"
            ).fetchall()
        finally:
            con.close()
        events = [self._row_to_event(r) for r in rows]
        if since is None:
            return events
        return [e for e in events if e.last_seen_at is not None and e.last_seen_at > since]

    def all_trends(self) -> list[TrendEvent]:
        con = self._connect()
        try:
            rows = con.execute("SELECT * FROM trend_events ORDER BY event_key").fetchall()
        finally:
            con.close()
        return [self._row_to_event(r) for r in rows]

    def evidence_count(self, event_key: str) -> int:
        con = self._connect()
        try:
            cur = con.execute("SELECT COUNT(*) FROM trend_evidence WHERE event_key = ?", (event_key,))
            return cur.fetchone()[0]  # type: ignore[no-any-return]
        finally:
            con.close()

    def score_history(self, trend_event_id: str) -> list[ScoreBreakdown]:
        """Every breakdown recorded for a trend, oldest first."""
        con = self._connect()
        try:
            rows = con.execute(
                "SELECT breakdown FROM score_audit WHERE trend_event_id = ? ORDER BY computed_at",
                (trend_event_id,),
            ).fetchall()
        finally:
            con.close()
        return [ScoreBreakdown.model_validate_json(r["breakdown"]) for r in rows]

    # ── baselines ───────────────────────────────────────────────────────

    def save_baselines(self, records: list[DailyBaseline]) -> None:
        self._guard("baselines", self._save_baselines, records)

    def baselines(self, event_key: str, since: str, until: str) -> list[DailyBaseline]:
        con = self._connect()
        try:
            rows = con.execute(
                "SELECT * FROM trend_baselines WHERE event_key = ? AND baseline_date BETWEEN ? AND ? "
                "ORDER BY baseline_date",
                (event_key, since, until),
            ).fetchall()
        finally:
            con.close()
        return [DailyBaseline(**dict(r)) for r in rows]

    # ── organizations ───────────────────────────────────────────────────

    def save_org_profile(self, profile: OrgProfile) -> None:
        self._guard(profile.organization_id, self._save_org_profile, profile)

    def get_org_profile(self, organization_id: str) -> OrgProfile | None:
        con = self._connect()
        try:
            row = con.execute(
                "SELECT profile FROM org_profiles WHERE organization_id = ?", (organization_id,)
            ).fetchone()
        finally:
            con.close()
        return OrgProfile.model_validate_json(row["profile"]) if row else None

    def list_org_profiles(self) -> list[OrgProfile]:
        con = self._connect()
        try:
            rows = con.execute("SELECT profile FROM org_profiles ORDER BY organization_id").fetchall()
        finally:
            con.close()
        return [OrgProfile.model_validate_json(r["profile"]) for r in rows]

    # ── affinities ──────────────────────────────────────────────────────

    def get_affinity(self, organization_id: str, topic: str) -> OrgTopicAffinity | None:
        con = self._connect()
        try:
            row = con.execute(
                "SELECT * FROM org_topic_affinities WHERE organization_id = ? AND topic = ?",
                (organization_id, topic),
            ).fetchone()
        finally:
            con.close()
        return self._row_to_affinity(row) if row else None

    def list_affinities(
        self, organization_id: str | None = None, source: AffinitySource | None = None
    ) -> list[OrgTopicAffinity]:
        clauses: list[str] = []
        params: list[Any] = []
        if organization_id is not None:
            clauses.append("organization_id = ?")
            params.append(organization_id)
        if source is not None:
            clauses.append("source = ?")
            params.append(source.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        con = self._connect()
        try:
            rows = con.execute(
                f"SELECT * FROM org_topic_affinities {where} ORDER BY organization_id, topic", params
            ).fetchall()
        finally:
            con.close()
        return [self._row_to_affinity(r) for r in rows]

    def save_affinity(
        self,
        affinity: OrgTopicAffinity,
        *,
        old_score: float,
        signal: float | None,
        reason: str,
        at: datetime,
    ) -> None:
        """Upsert *affinity* and append its audit record in one transaction."""
        record = f"{affinity.organization_id}/{affinity.topic}"
        self._guard(record, self._save_affinity, affinity, old_score, signal, reason, at)

    def apply_affinity(
        self,
        organization_id: str,
        topic: str,
        step: AffinityStep,
        *,
        signal: float | None,
        reason: str,
        at: datetime,
    ) -> OrgTopicAffinity:
        """Read, update and write one affinity plus its audit record under a single write lock.

        Concurrent updates to the same (org, topic) are applied one after the
        other, each seeing the previous result.
        """
        record = f"{organization_id}/{topic}"
        return self._guard(record, self._apply_affinity, organization_id, topic, step, signal, reason, at)

    def affinity_audit(self, organization_id: str, topic: str) -> list[dict[str, Any]]:
        con = self._connect()
        try:
            rows = con.execute(
                "SELECT * FROM affinity_audit WHERE organization_id = ? AND topic = ? ORDER BY id",
                (organization_id, topic),
            ).fetchall()
        finally:
            con.close()
        return [dict(r) for r in rows]

    # ── relevance ───────────────────────────────────────────────────────

    def replace_relevance_scores(self, organization_id: str, scores: list[OrgRelevanceScore]) -> None:
        """Supersede the org's previous ranking with *scores* (in rank order)."""
        self._guard(organization_id, self._replace_relevance_scores, organization_id, scores)

    def relevance_scores(self, organization_id: str, limit: int | None = None) -> list[OrgRelevanceScore]:
        con = self._connect()
        try:
            sql = "SELECT * FROM org_relevance_scores WHERE organization_id = ? ORDER BY rank"
            params: list[Any] = [organization_id]
            if limit is not None:
                sql += " LIMIT ?"
                params.append(limit)
            rows = con.execute(sql, params).fetchall()
        finally:
            con.close()
        return [
            OrgRelevanceScore(
                organization_id=r["organization_id"],
                trend_event_id=r["trend_event_id"],
                relevance_score=r["relevance_score"],
                profile_component=r["profile_component"],
                affinity_component=r["affinity_component"],
                exploration_component=r["exploration_component"],
                is_new_opportunity=bool(r["is_new_opportunity"]),
                is_proven_topic=bool(r["is_proven_topic"]),
                reasons=json.loads(r["reasons"]),
                matched_domains=json.loads(r["matched_domains"]),
                matched_watchlist=json.loads(r["matched_watchlist"]),
                priority_bucket=PriorityBucket(r["priority_bucket"]),
                computed_at=_dt(r["computed_at"]),
            )
            for r in rows
        ]

    # ── private: writes ─────────────────────────────────────────────────

    def _guard(self, record: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return fn(*args)
        except sqlite3.Error as exc:
            logger.error("Persistence failed for %s: %s", record, exc)
            raise PersistenceError(f"could not persist {record}: {exc}", record=record) from exc

    @_retry_locked
    def _upsert_trend(self, event: TrendEvent, pass_id: str, computed_at: datetime) -> None:
        con = self._connect()
        try:
            with con:
                # Take the write lock before reading so concurrent passes merge serially.
                con.execute("BEGIN IMMEDIATE")
                existing = con.execute(
                    "SELECT first_seen_at, last_seen_at, merged_from, confidence_score, updated_at "
                    "FROM trend_events WHERE event_key = ?",
                    (event.event_key,),
                ).fetchone()
                con.executemany(
                    """
                    INSERT OR IGNORE INTO trend_evidence
                        (event_key, content_hash, source_domain, canonical_url, title,
                         source_type, source_tier, published_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (event.event_key, m.content_hash, m.source_domain, m.canonical_url, m.title,
                         m.source_type.value, m.source_tier, m.published_at.isoformat())
                        for m in event.mentions
                    ],
                )

                first, last = event.first_seen_at, event.last_seen_at
                merged = set(event.merged_from)
                if existing:
                    prev_first, prev_last = _dt(existing["first_seen_at"]), _dt(existing["last_seen_at"])
                    first = min(filter(None, [first, prev_first]), default=None)
                    last = max(filter(None, [last, prev_last]), default=None)
                    merged |= set(json.loads(existing["merged_from"]))
                merged.discard(event.id)

                supersede = existing is None or _supersedes(existing, event, computed_at)
                row = self._event_row(event, computed_at)
                if supersede:
                    for name, value in self._evidence_counts(con, event.event_key, computed_at).items():
                        row[name] = max(row[name], value)
                else:
                    # counts stay anchored to the pass whose scores are kept
                    stored_at = datetime.fromisoformat(existing["updated_at"])
                    row.update(self._evidence_counts(con, event.event_key, stored_at))
                row.update(first_seen_at=_iso(first), last_seen_at=_iso(last), merged_from=json.dumps(sorted(merged)))

                if not supersede:
                    # A later (or stronger concurrent) pass already scored this topic;
                    # keep its scores and only fold in the accumulated evidence.
                    logger.debug("Keeping newer scores for %s; merging evidence only", event.event_key)
                    con.execute(
                        f"UPDATE trend_events SET {', '.join(f'{c} = ?' for c in _MERGED_COLUMNS)} "
                        "WHERE event_key = ?",
                        [row[c] for c in _MERGED_COLUMNS] + [event.event_key],
                    )
                else:
                    updates = ", ".join(
                        f"{c} = excluded.{c}" for c in _TREND_COLUMNS if c not in ("id", "event_key")
                    )
                    con.execute(
                        f"INSERT INTO trend_events ({', '.join(_TREND_COLUMNS)}) "
                        f"VALUES ({', '.join('?' * len(_TREND_COLUMNS))}) "
                        f"ON CONFLICT(event_key) DO UPDATE SET {updates}",
                        [row[c] for c in _TREND_COLUMNS],
                    )
                con.execute(
                    """
                    INSERT OR IGNORE INTO score_audit
                        (trend_event_id, computed_at, pass_id, confidence_score, breakdown)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (event.id, computed_at.isoformat(), pass_id, event.confidence_score,
                     event.breakdown.model_dump_json()),
                )
        finally:
            con.close()

    @staticmethod
    def _evidence_counts(con: sqlite3.Connection, event_key: str, as_of: datetime) -> dict[str, int]:
        """Window counts over every stored evidence row for *event_key*."""
        rows = con.execute(
            "SELECT source_domain, source_type, source_tier, published_at FROM trend_evidence WHERE event_key = ?",
            (event_key,),
        ).fetchall()
        day = as_of - timedelta(hours=24)
        recent = [r for r in rows if day < datetime.fromisoformat(r["published_at"]) <= as_of]

        def within(hours: int) -> int:
            cutoff = as_of - timedelta(hours=hours)
            return sum(1 for r in recent if datetime.fromisoformat(r["published_at"]) > cutoff)

        return {
            "evidence_count": len(rows),
            "source_count": len({r["source_domain"] for r in recent}),
            "current_1h": within(1),
            "current_6h": within(6),
            "current_24h": len(recent),
            "news_count": sum(1 for r in recent if r["source_type"] != SourceType.SOCIAL.value),
            "social_count": sum(1 for r in recent if r["source_type"] == SourceType.SOCIAL.value),
            "tier12_count": sum(1 for r in recent if r["source_tier"] in (1, 2)),
        }

    @staticmethod
    def _event_row(event: TrendEvent, computed_at: datetime) -> dict[str, Any]:
        return {
            "id": event.id,
            "event_key": event.event_key,
            "event_title": event.event_title,
            "is_event_phrase": int(event.is_event_phrase),
            "label_quality": event.label_quality.value,
            "source_count": event.source_count,
            "current_1h": event.current_1h,
            "current_6h": event.current_6h,
            "current_24h": event.current_24h,
            "news_count": event.news_count,
            "social_count": event.social_count,
            "tier12_count": event.tier12_count,
            "baseline_7d": event.baseline_7d,
            "baseline_30d": event.baseline_30d,
            "z_score": event.z_score,
            "confidence_score": event.confidence_score,
            "is_trending": int(event.is_trending),
            "is_breaking": int(event.is_breaking),
            "breaking_path": event.breaking_path,
            "trend_stage": event.trend_stage.value,
            "first_seen_at": _iso(event.first_seen_at),
            "last_seen_at": _iso(event.last_seen_at),
            "cluster_id": event.cluster_id,
            "is_cluster_representative": int(event.is_cluster_representative),
            "merged_from": json.dumps(sorted(event.merged_from)),
            "related_entities": json.dumps(event.related_entities),
            "policy_domains": json.dumps(event.policy_domains),
            "geographies": json.dumps(event.geographies),
            "passes_quality_gate": int(event.passes_quality_gate),
            "gate_reason": event.gate_reason,
            "breakdown": event.breakdown.model_dump_json(),
            "evidence_count": event.evidence_count,
            "top_headline": event.top_headline,
            "updated_at": computed_at.isoformat(),
        }

    @_retry_locked
    def _retire_trends(self, keep: set[str], computed_at: datetime, stale_before: datetime) -> int:
        con = self._connect()
        try:
            with con:
                con.execute("BEGIN IMMEDIATE")
                rows = con.execute(
                    "SELECT id, last_seen_at, updated_at FROM trend_events WHERE is_trending = 1"
                ).fetchall()
                retired = [
                    r["id"]
                    for r in rows
                    if r["id"] not in keep
                    and (
                        (_dt(r["last_seen_at"]) or stale_before) <= stale_before
                        or datetime.fromisoformat(r["updated_at"]) < computed_at
                    )
                ]
                con.executemany("UPDATE trend_events SET is_trending = 0 WHERE id = ?", [(i,) for i in retired])
        finally:
            con.close()
        return len(retired)

    @_retry_locked
    def _save_baselines(self, records: list[DailyBaseline]) -> None:
        con = self._connect()
        try:
            with con:
                con.executemany(
                    """
                    INSERT INTO trend_baselines
                        (event_key, baseline_date, hourly_average, hourly_std_dev, relative_std_dev)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(event_key, baseline_date) DO UPDATE SET
                        hourly_average = excluded.hourly_average,
                        hourly_std_dev = excluded.hourly_std_dev,
                        relative_std_dev = excluded.relative_std_dev
                    """,
                    [
                        (r.event_key, r.baseline_date, r.hourly_average, r.hourly_std_dev, r.relative_std_dev)
                        for r in records
                    ],
                )
        finally:
            con.close()

    @_retry_locked
    def _save_org_profile(self, profile: OrgProfile) -> None:
        con = self._connect()
        try:
            with con:
                con.execute(
                    "INSERT OR REPLACE INTO org_profiles (organization_id, profile) VALUES (?, ?)",
                    (profile.organization_id, profile.model_dump_json()),
                )
        finally:
            con.close()

    @_retry_locked
    def _save_affinity(
        self, aff: OrgTopicAffinity, old_score: float, signal: float | None, reason: str, at: datetime
    ) -> None:
        con = self._connect()
        try:
            with con:
                self._write_affinity(con, aff, old_score, signal, reason, at)
        finally:
            con.close()

    @_retry_locked
    def _apply_affinity(
        self,
        organization_id: str,
        topic: str,
        step: AffinityStep,
        signal: float | None,
        reason: str,
        at: datetime,
    ) -> OrgTopicAffinity:
        con = self._connect()
        try:
            with con:
                con.execute("BEGIN IMMEDIATE")
                row = con.execute(
                    "SELECT * FROM org_topic_affinities WHERE organization_id = ? AND topic = ?",
                    (organization_id, topic),
                ).fetchone()
                updated, old_score = step(self._row_to_affinity(row) if row else None)
                self._write_affinity(con, updated, old_score, signal, reason, at)
        finally:
            con.close()
        return updated

    @staticmethod
    def _write_affinity(
        con: sqlite3.Connection,
        aff: OrgTopicAffinity,
        old_score: float,
        signal: float | None,
        reason: str,
        at: datetime,
    ) -> None:
        con.execute(
            """
            INSERT INTO org_topic_affinities
                (organization_id, topic, affinity_score, source, times_used,
                 avg_performance, last_used_at, last_decayed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(organization_id, topic) DO UPDATE SET
                affinity_score = excluded.affinity_score,
                source = excluded.source,
                times_used = excluded.times_used,
                avg_performance = excluded.avg_performance,
                last_used_at = excluded.last_used_at,
                last_decayed_at = excluded.last_decayed_at
            """,
            (
                aff.organization_id, aff.topic, aff.affinity_score, aff.source.value,
                aff.times_used, aff.avg_performance, _iso(aff.last_used_at), _iso(aff.last_decayed_at),
            ),
        )
        con.execute(
            """
            INSERT INTO affinity_audit
                (organization_id, topic, old_score, new_score, signal, reason, logged_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (aff.organization_id, aff.topic, old_score, aff.affinity_score, signal, reason, at.isoformat()),
        )

    @_retry_locked
    def _replace_relevance_scores(self, organization_id: str, scores: list[OrgRelevanceScore]) -> None:
        con = self._connect()
        try:
            with con:
                con.execute("DELETE FROM org_relevance_scores WHERE organization_id = ?", (organization_id,))
                con.executemany(
                    """
                    INSERT INTO org_relevance_scores
                        (organization_id, trend_event_id, rank, relevance_score, profile_component,
                         affinity_component, exploration_component, is_new_opportunity, is_proven_topic,
                         reasons, matched_domains, matched_watchlist, priority_bucket, computed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            s.organization_id, s.trend_event_id, rank, s.relevance_score, s.profile_component,
                            s.affinity_component, s.exploration_component, int(s.is_new_opportunity),
                            int(s.is_proven_topic), json.dumps(s.reasons), json.dumps(s.matched_domains),
                            json.dumps(s.matched_watchlist), s.priority_bucket.value, _iso(s.computed_at),
                        )
                        for rank, s in enumerate(scores)
                    ],
                )
        finally:
            con.close()

    # ── private: plumbing ───────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(str(self._db_path), timeout=5)
        con.row_factory = sqlite3.Row
        return con

    def _init_db(self) -> None:
        con = self._connect()
        con.executescript(_SCHEMA)
        con.close()

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> TrendEvent:
        return TrendEvent(
            id=row["id"],
            event_key=row["event_key"],
            event_title=row["event_title"],
            is_event_phrase=bool(row["is_event_phrase"]),
            label_quality=LabelQuality(row["label_quality"]),
            source_count=row["source_count"],
            current_1h=row["current_1h"],
            current_6h=row["current_6h"],
            current_24h=row["current_24h"],
            news_count=row["news_count"],
            social_count=row["social_count"],
            tier12_count=row["tier12_count"],
            baseline_7d=row["baseline_7d"],
            baseline_30d=row["baseline_30d"],
            z_score=row["z_score"],
            confidence_score=row["confidence_score"],
            is_trending=bool(row["is_trending"]),
            is_breaking=bool(row["is_breaking"]),
            breaking_path=row["breaking_path"],
            trend_stage=TrendStage(row["trend_stage"]),
            first_seen_at=_dt(row["first_seen_at"]),
            last_seen_at=_dt(row["last_seen_at"]),
            cluster_id=row["cluster_id"],
            is_cluster_representative=bool(row["is_cluster_representative"]),
            merged_from=json.loads(row["merged_from"]),
            related_entities=json.loads(row["related_entities"]),
            policy_domains=json.loads(row["policy_domains"]),
            geographies=json.loads(row["geographies"]),
            passes_quality_gate=bool(row["passes_quality_gate"]),
            gate_reason=row["gate_reason"],
            breakdown=ScoreBreakdown.model_validate_json(row["breakdown"]),
            evidence_count=row["evidence_count"],
            top_headline=row["top_headline"],
        )

    @staticmethod
    def _row_to_affinity(row: sqlite3.Row) -> OrgTopicAffinity:
        return OrgTopicAffinity(
            organization_id=row["organization_id"],
            topic=row["topic"],
            affinity_score=row["affinity_score"],
            source=AffinitySource(row["source"]),
            times_used=row["times_used"],
            avg_performance=row["avg_performance"],
            last_used_at=_dt(row["last_used_at"]),
            last_decayed_at=_dt(row["last_decayed_at"]),
        )
