"""Read/write entry points used by the API layer."""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime, timedelta

from trendscope.affinity import AffinityLearner
from trendscope.errors import PersistenceError, ScoringInconsistencyError
from trendscope.models import CampaignOutcome, OrgRelevanceScore, OrgTopicAffinity
from trendscope.relevance import rank_for_org
from trendscope.settings import EngineConfig
from trendscope.store import TrendStore

logger = logging.getLogger(__name__)


class TrendService:
    def __init__(self, store: TrendStore, config: EngineConfig | None = None) -> None:
        self._store = store
        self._config = config or EngineConfig()
        self._learner = AffinityLearner(store, self._config)

    def get_ranked_trends(
        self, organization_id: str, limit: int = 20, now: datetime | None = None
    ) -> list[OrgRelevanceScore]:
        """Fresh ranking from the trends still inside the trending window.

        If it cannot be computed, the ranking saved by the last relevance pass
        is returned instead of an error.
        """
        if limit <= 0:
            return []
        try:
            profile = self._store.get_org_profile(organization_id)
            if profile is None:
                logger.warning("Unknown organization %s", organization_id)
                return []
            now = now or datetime.now(UTC)
            since = now - timedelta(hours=self._config.scoring.trending_window_hours)
            snapshot = self._store.trending_snapshot(since=since)
            affinities = self._store.list_affinities(organization_id)
            return rank_for_org(profile, snapshot, affinities, limit, self._config, now)
        except (sqlite3.Error, ScoringInconsistencyError):
            logger.exception("Live ranking failed for %s; serving last saved ranking", organization_id)
        return self._store.relevance_scores(organization_id, limit)

    def report_outcome(self, organization_id: str, topic: str, outcome_signal: float) -> OrgTopicAffinity:
        """Record a [0, 1] outcome for *topic*; persistence errors propagate."""
        try:
            return self._learner.update_affinity(organization_id, topic, outcome_signal)
        except PersistenceError:
            logger.error("Outcome for %s/%s was not recorded", organization_id, topic)
            raise

    def report_campaign_outcome(
        self, organization_id: str, topic: str, outcome: CampaignOutcome
    ) -> OrgTopicAffinity:
        return self._learner.report_campaign(organization_id, topic, outcome)
