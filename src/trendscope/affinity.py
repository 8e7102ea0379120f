"""Learn per-organization topic affinity from outcomes and decay stale entries."""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime, timedelta

from trendscope.errors import AffinityBoundsViolationError, DecayJobError, PersistenceError
from trendscope.models import AffinitySource, CampaignOutcome, OrgTopicAffinity
from trendscope.settings import AffinitySettings, EngineConfig
from trendscope.store import TrendStore

logger = logging.getLogger(__name__)

# ── Outcome weights ────────────────────────────────────────────────────────
_W_OPEN = 0.2
_W_CLICK = 0.4
_W_CONVERSION = 0.4


def performance_vs_baseline(outcome: CampaignOutcome, settings: AffinitySettings) -> float:
    """Percent above (or below) the channel's typical engagement."""
    if outcome.campaign_type == "email":
        observed = (
            outcome.open_rate * _W_OPEN
            + outcome.click_rate * _W_CLICK
            + outcome.conversion_rate * _W_CONVERSION
        )
    else:
        observed = outcome.click_rate or outcome.conversion_rate
    baseline = settings.channel_baselines.get(outcome.campaign_type, 0.05)
    return (observed - baseline) / baseline * 100


def outcome_label(pct: float) -> str:
    if pct > 30:
        return "high_performer"
    if pct > 0:
        return "performer"
    if pct > -20:
        return "neutral"
    return "underperformer"


def outcome_signal(outcome: CampaignOutcome, settings: AffinitySettings | None = None) -> float:
    """Map campaign performance to a [0, 1] signal; 0.5 means "at baseline"."""
    pct = performance_vs_baseline(outcome, settings or AffinitySettings())
    return max(0.0, min(1.0, 0.5 + pct / 100))


def _clamp(value: float, settings: AffinitySettings) -> float:
    return max(settings.min_affinity, min(settings.max_affinity, value))


def _check_bounds(aff: OrgTopicAffinity, settings: AffinitySettings) -> None:
    if not (settings.min_affinity <= aff.affinity_score <= settings.max_affinity):
        raise AffinityBoundsViolationError(
            f"{aff.organization_id}/{aff.topic}: {aff.affinity_score} outside "
            f"[{settings.min_affinity}, {settings.max_affinity}]"
        )


class AffinityLearner:
    """EMA affinity updates with an audit trail, plus the weekly decay job."""

    def __init__(self, store: TrendStore, config: EngineConfig | None = None) -> None:
        self._store = store
        self._settings = (config or EngineConfig()).affinity

    # ── public ──────────────────────────────────────────────────────────

    def update_affinity(
        self,
        organization_id: str,
        topic: str,
        signal: float,
        now: datetime | None = None,
    ) -> OrgTopicAffinity:
        """Fold one outcome *signal* in [0, 1] into the org's affinity for *topic*.

        Self-declared entries keep their declared score; only usage is recorded.
        """
        if not isinstance(signal, (int, float)) or math.isnan(signal) or not (0.0 <= signal <= 1.0):
            raise ValueError(f"outcome signal must be within [0, 1], got {signal!r}")
        now = now or datetime.now(UTC)
        s = self._settings

        def step(current: OrgTopicAffinity | None) -> tuple[OrgTopicAffinity, float]:
            if current is None:
                current = OrgTopicAffinity(
                    organization_id=organization_id,
                    topic=topic,
                    affinity_score=s.initial_affinity,
                    source=AffinitySource.LEARNED_OUTCOME,
                )
            old = current.affinity_score

            if current.source == AffinitySource.SELF_DECLARED:
                new = old
            else:
                new = _clamp(s.alpha * signal + (1 - s.alpha) * old, s)

            uses = current.times_used + 1
            updated = current.model_copy(
                update={
                    "affinity_score": round(new, 6),
                    "times_used": uses,
                    "avg_performance": round((current.avg_performance * current.times_used + signal) / uses, 6),
                    "last_used_at": now,
                }
            )
            if updated.source == AffinitySource.LEARNED_OUTCOME:
                _check_bounds(updated, s)
            return updated, old

        updated = self._store.apply_affinity(
            organization_id, topic, step, signal=signal, reason="outcome", at=now
        )
        logger.info("Affinity %s/%s → %.3f (signal=%.2f)", organization_id, topic, updated.affinity_score, signal)
        return updated

    def report_campaign(
        self, organization_id: str, topic: str, outcome: CampaignOutcome, now: datetime | None = None
    ) -> OrgTopicAffinity:
        pct = performance_vs_baseline(outcome, self._settings)
        logger.info("Campaign on %s for %s: %s (%+.1f%%)", topic, organization_id, outcome_label(pct), pct)
        return self.update_affinity(organization_id, topic, outcome_signal(outcome, self._settings), now)

    def decay_stale(self, now: datetime | None = None) -> list[OrgTopicAffinity]:
        """Decay learned affinities unused for ``stale_after_days``.

        Entries already decayed within ``decay_interval_days`` are skipped, so
        running the job twice in one week changes nothing. Per-record failures
        are logged; if any occurred, :class:`DecayJobError` is raised at the end.
        """
        now = now or datetime.now(UTC)
        s = self._settings
        stale_before = now - timedelta(days=s.stale_after_days)
        interval = timedelta(days=s.decay_interval_days)

        decayed: list[OrgTopicAffinity] = []
        failed: list[str] = []
        for aff in self._store.list_affinities(source=AffinitySource.LEARNED_OUTCOME):
            if aff.last_used_at is not None and aff.last_used_at >= stale_before:
                continue
            if aff.last_decayed_at is not None and now - aff.last_decayed_at < interval:
                continue
            if aff.affinity_score <= s.decay_floor:
                continue
            old = aff.affinity_score
            updated = aff.model_copy(
                update={
                    "affinity_score": round(max(s.decay_floor, old * s.decay_factor), 6),
                    "last_decayed_at": now,
                }
            )
            _check_bounds(updated, s)
            try:
                self._store.save_affinity(updated, old_score=old, signal=None, reason="decay", at=now)
            except PersistenceError:
                logger.exception("Failed to decay affinity %s/%s", aff.organization_id, aff.topic)
                failed.append(f"{aff.organization_id}/{aff.topic}")
                continue
            decayed.append(updated)

        logger.info("Decayed %d stale affinities (%d failed)", len(decayed), len(failed))
        if failed:
            raise DecayJobError(f"{len(failed)} affinities could not be decayed", failed)
        return decayed
