"""Pass orchestration: detection → clustering → persistence, relevance, and decay."""

from __future__ import annotations

import logging
import sqlite3
import sys
import time
import uuid
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, as_completed, wait
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from trendscope import config as app_config
from trendscope.affinity import AffinityLearner
from trendscope.aggregate import aggregate
from trendscope.cluster import cluster_topics
from trendscope.dedupe import dedupe
from trendscope.errors import NlpClientError, PersistenceError, ScoringInconsistencyError
from trendscope.models import (
    ClusteredBatch,
    OrgProfile,
    PassReport,
    RawMention,
    TopicAggregate,
    TrendEvent,
    Window,
    trend_event_id,
)
from trendscope.nlp_client import EntityExtractionClient, attach
from trendscope.normalize import normalize_batch
from trendscope.relevance import fairness_report, rank_for_org
from trendscope.scoring import evaluate
from trendscope.settings import EngineConfig
from trendscope.store import TrendStore
from trendscope.velocity import compute_velocity, daily_record, history_window, rollup

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def load_mentions(path: Path) -> list[RawMention]:
    """Read raw mentions from a JSON-lines file, skipping lines that do not parse."""
    raws: list[RawMention] = []
    with open(path, encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                raws.append(RawMention.model_validate_json(line))
            except ValidationError as exc:
                logger.warning("Skipping %s:%d: %s", path.name, lineno, exc.errors()[0].get("msg", exc))
    logger.info("Loaded %d raw mentions from %s", len(raws), path)
    return raws


def persist(
    store: TrendStore,
    batch: ClusteredBatch,
    stale_before: datetime,
    deferred_keys: set[str] | None = None,
) -> tuple[int, list[str], int]:
    """Write every event of a clustered batch, then retire trends the batch no longer asserts.

    Failed records are logged and skipped. Trending representatives of this
    batch, topics deferred by the deadline and failed records are never retired.
    Returns (written, failed keys, retired count).
    """
    written = 0
    failed: list[str] = []
    for event in batch.events():
        try:
            store.upsert_trend(event, pass_id=batch.pass_id, computed_at=batch.computed_at)
        except PersistenceError as exc:
            logger.error("Skipping %s in pass %s: %s", exc.record, batch.pass_id, exc)
            failed.append(exc.record)
            continue
        written += 1

    keep_keys = {e.event_key for e in batch.events() if e.is_trending and e.is_cluster_representative}
    keep_keys |= (deferred_keys or set()) | set(failed)
    try:
        retired = store.retire_trends(
            {trend_event_id(k) for k in keep_keys}, computed_at=batch.computed_at, stale_before=stale_before
        )
    except PersistenceError:
        logger.exception("Could not retire stale trends in pass %s", batch.pass_id)
        retired = 0
    else:
        if retired:
            logger.info("Retired %d trends no longer trending in pass %s", retired, batch.pass_id)
    return written, failed, retired


class DetectionPipeline:
    """One detection pass over a window of raw mentions."""

    def __init__(
        self,
        store: TrendStore,
        config: EngineConfig | None = None,
        nlp: EntityExtractionClient | None = None,
        max_workers: int = 4,
    ) -> None:
        self._store = store
        self._config = config or EngineConfig()
        self._nlp = nlp
        self._max_workers = max(1, max_workers)

    def run(
        self,
        raws: list[RawMention],
        window: Window,
        deadline_seconds: float | None = None,
        pass_id: str | None = None,
    ) -> PassReport:
        """Detect, score, cluster and persist trends for *window*.

        Topics still being scored when the deadline passes are left for the
        next cycle. A :class:`ScoringInconsistencyError` fails the whole pass.
        """
        started = time.monotonic()
        pass_id = pass_id or uuid.uuid4().hex
        now = window.end
        stale_before = now - timedelta(hours=self._config.scoring.trending_window_hours)
        report = PassReport(pass_id=pass_id, computed_at=now, mentions_in=len(raws))
        logger.info("=== detection pass %s start [%s → %s] ===", pass_id, window.start, window.end)

        # ── 1. Normalize & dedupe ─────────────────────────────────────────
        mentions = dedupe(normalize_batch(raws, self._config))
        report.mentions_kept = len(mentions)
        if not mentions:
            logger.warning("No usable mentions in pass %s", pass_id)
            empty = ClusteredBatch(pass_id=pass_id, computed_at=now)
            _, _, report.retired = persist(self._store, empty, stale_before)
            return report

        # ── 2. Enrich mentions lacking extraction ───────────────────────
        missing = [m for m in mentions if not m.has_extraction]
        if self._nlp is not None and missing:
            try:
                mentions = attach(mentions, self._nlp.extract(missing))
            except NlpClientError:
                logger.exception("Entity extraction failed; continuing with headline labels")

        # ── 3. Aggregate ────────────────────────────────────────────────
        topics = aggregate(mentions, window, self._config)
        report.topics = len(topics)

        # ── 4. Velocity & scoring (bounded pool) ────────────────────────
        deadline = started + deadline_seconds if deadline_seconds is not None else None
        events, deferred = self._score_all(topics, now, deadline, report)

        # ── 5. Cluster ──────────────────────────────────────────────────
        batch = cluster_topics(events, pass_id=pass_id, computed_at=now, config=self._config)
        report.clusters = len(batch.clusters)

        # ── 6. Persist ──────────────────────────────────────────────────
        report.persisted, report.failed_records, report.retired = persist(
            self._store, batch, stale_before, deferred
        )
        reps = [c.representative for c in batch.clusters]
        report.trending = sum(1 for e in reps if e.is_trending)
        report.breaking = sum(1 for e in reps if e.is_breaking)

        # ── 7. Baseline roll-up ─────────────────────────────────────────
        scored_keys = {e.event_key for e in events}
        records = [
            daily_record(t.event_key, now.date(), t.hourly_mean, t.hourly_std_dev)
            for t in topics
            if t.event_key in scored_keys
        ]
        try:
            self._store.save_baselines(records)
        except PersistenceError:
            logger.exception("Baseline roll-up failed for pass %s", pass_id)

        logger.info(
            "=== detection pass %s done: %d topics, %d clusters, %d trending, %d breaking ===",
            pass_id, report.topics, report.clusters, report.trending, report.breaking,
        )
        return report

    # ── private ─────────────────────────────────────────────────────────

    def _score_topic(self, topic: TopicAggregate, now: datetime, first_seen: datetime | None) -> TrendEvent:
        today = now.date()
        since, until = history_window(today)
        records = self._store.baselines(topic.event_key, since, until)
        history = rollup(records, today) if records else None
        velocity = compute_velocity(topic.event_key, topic.current_1h, topic.current_24h, history, self._config)
        return evaluate(topic, velocity, history, now, first_seen_at=first_seen, config=self._config)

    def _score_all(
        self, topics: list[TopicAggregate], now: datetime, deadline: float | None, report: PassReport
    ) -> tuple[list[TrendEvent], set[str]]:
        first_seen = self._store.first_seen([t.event_key for t in topics])
        pool = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="score")
        try:
            futures: dict[Future[TrendEvent], TopicAggregate] = {
                pool.submit(self._score_topic, t, now, first_seen.get(t.event_key)): t for t in topics
            }
            timeout = max(0.0, deadline - time.monotonic()) if deadline is not None else None
            done, not_done = wait(futures, timeout=timeout)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        if not_done:
            logger.warning("Deadline reached: %d topics deferred to the next cycle", len(not_done))
        events: list[TrendEvent] = []
        for fut in done:
            topic = futures[fut]
            try:
                events.append(fut.result())
            except ScoringInconsistencyError:
                logger.exception("Inconsistent score for %s; failing pass %s", topic.event_key, report.pass_id)
                raise
            except sqlite3.Error:
                logger.exception("Could not load baselines for %s; skipping", topic.event_key)
        report.topics_scored = len(events)
        report.topics_skipped = len(topics) - len(events)
        return events, {futures[fut].event_key for fut in not_done}


def run_relevance_pass(
    store: TrendStore,
    config: EngineConfig | None = None,
    now: datetime | None = None,
    limit: int = 50,
    max_workers: int = 4,
) -> dict[str, int]:
    """Rank the current trending snapshot for every organization.

    Organizations are independent; one org's persistence failure does not stop
    the others. Returns ranked-trend counts per organization.
    """
    config = config or EngineConfig()
    now = now or datetime.now(UTC)
    snapshot = store.trending_snapshot(since=now - timedelta(hours=config.scoring.trending_window_hours))
    orgs = store.list_org_profiles()
    logger.info("Relevance pass: %d trends × %d organizations", len(snapshot), len(orgs))

    def _one(org: OrgProfile) -> list[float]:
        affinities = store.list_affinities(org.organization_id)
        ranked = rank_for_org(org, snapshot, affinities, limit, config, now)
        store.replace_relevance_scores(org.organization_id, ranked)
        return [s.relevance_score for s in ranked]

    counts: dict[str, int] = {}
    by_type: dict[str, list[float]] = defaultdict(list)
    with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="relevance") as pool:
        futures = {pool.submit(_one, org): org for org in orgs}
        for fut in as_completed(futures):
            org = futures[fut]
            try:
                scores = fut.result()
            except PersistenceError as exc:
                logger.error("Relevance for %s not saved: %s", org.organization_id, exc)
                continue
            counts[org.organization_id] = len(scores)
            if scores:
                by_type[org.org_type or "unspecified"].append(sum(scores) / len(scores))

    fairness_report(dict(by_type), config)
    return counts


def run_decay_pass(store: TrendStore, config: EngineConfig | None = None, now: datetime | None = None) -> int:
    """Weekly affinity decay; returns the number of decayed entries."""
    return len(AffinityLearner(store, config).decay_stale(now))


def build_nlp_client() -> EntityExtractionClient | None:
    if not app_config.nlp_enabled():
        return None
    return EntityExtractionClient(app_config.NLP_SERVICE_URL, app_config.NLP_API_KEY)
