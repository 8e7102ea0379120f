"""Confidence scoring: velocity, corroboration and activity under a penalty chain."""

from __future__ import annotations

import logging
import math
from datetime import datetime

from trendscope.errors import ScoringInconsistencyError
from trendscope.models import (
    Baseline,
    LabelQuality,
    ScoreBreakdown,
    TopicAggregate,
    TrendEvent,
    TrendStage,
    ZScoreResult,
    trend_event_id,
)
from trendscope.settings import EngineConfig, ScoringSettings
from trendscope.velocity import is_evergreen

logger = logging.getLogger(__name__)

_EPS = 1e-6


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _age_hours(now: datetime, since: datetime | None) -> float:
    if since is None:
        return 0.0
    return max(0.0, (now - since).total_seconds() / 3600)


# ── Multipliers ────────────────────────────────────────────────────────────


def recency_decay(age_hours: float, settings: ScoringSettings) -> float:
    """1.0 through the grace period, then exponential with a floor."""
    if age_hours <= settings.recency_grace_hours:
        return 1.0
    halves = (age_hours - settings.recency_grace_hours) / settings.recency_half_life_hours
    return max(settings.recency_floor, 0.5**halves)


def evergreen_penalty(evergreen: bool, z: float, settings: ScoringSettings) -> float:
    """Floor for a quiet evergreen topic, relaxing linearly to 1.0 as z climbs."""
    if not evergreen:
        return 1.0
    span = settings.evergreen_relax_full_z - settings.evergreen_relax_start_z
    progress = _clamp((z - settings.evergreen_relax_start_z) / span, 0.0, 1.0) if span > 0 else 1.0
    return settings.evergreen_floor + (1.0 - settings.evergreen_floor) * progress


def label_penalty(quality: LabelQuality, tier12_count: int, settings: ScoringSettings) -> float:
    if quality == LabelQuality.ENTITY_ONLY and tier12_count == 0:
        return settings.entity_only_uncorroborated_penalty
    return settings.label_penalties.get(quality.value, settings.label_penalties.get("unknown", 0.7))


# ── Components ─────────────────────────────────────────────────────────────


def velocity_component(z: float, settings: ScoringSettings) -> float:
    return _clamp(z * settings.velocity_per_z, 0.0, settings.velocity_cap)


def corroboration_component(agg: TopicAggregate, settings: ScoringSettings) -> float:
    points = min(settings.corroboration_domain_cap, agg.source_count_deduped * settings.corroboration_per_domain)
    if agg.tier12_count > 0:
        points += settings.corroboration_tier12_bonus
    if len([n for n in agg.by_source_type.values() if n > 0]) >= 2:
        points += settings.corroboration_mix_bonus
    return min(settings.corroboration_cap, points)


def activity_component(current_1h: int, current_24h: int, settings: ScoringSettings) -> float:
    value = (
        math.log2(current_1h + 1) * settings.activity_1h_weight
        + math.log2(current_24h + 1) * settings.activity_24h_weight
    )
    return min(settings.activity_cap, value)


def check_breakdown(b: ScoreBreakdown, settings: ScoringSettings) -> None:
    """Raise :class:`ScoringInconsistencyError` if any cap or sum is broken."""
    caps = {
        "velocity": (b.velocity, settings.velocity_cap),
        "corroboration": (b.corroboration, settings.corroboration_cap),
        "activity": (b.activity, settings.activity_cap),
    }
    for name, (value, cap) in caps.items():
        if not (-_EPS <= value <= cap + _EPS):
            raise ScoringInconsistencyError(f"{name}={value} outside [0, {cap}]")
    if abs(b.velocity + b.corroboration + b.activity - b.raw_score) > 0.01:
        raise ScoringInconsistencyError(f"raw score {b.raw_score} != sum of components")
    for name in ("recency_decay", "evergreen_penalty", "single_token_penalty",
                 "label_quality_penalty", "penalty_multiplier"):
        value = getattr(b, name)
        if not (0.0 < value <= 1.0 + _EPS):
            raise ScoringInconsistencyError(f"{name}={value} outside (0, 1]")
    if not (-_EPS <= b.final_score <= min(100.0, b.raw_score) + 0.01):
        raise ScoringInconsistencyError(f"final score {b.final_score} outside [0, {b.raw_score}]")


def score(
    agg: TopicAggregate,
    velocity: ZScoreResult,
    *,
    evergreen: bool,
    now: datetime,
    first_seen_at: datetime | None = None,
    config: EngineConfig | None = None,
) -> ScoreBreakdown:
    """Compute the full :class:`ScoreBreakdown` for one topic."""
    settings = (config or EngineConfig()).scoring
    z = velocity.z_score

    v = velocity_component(z, settings)
    c = corroboration_component(agg, settings)
    a = activity_component(agg.current_1h, agg.current_24h, settings)
    raw = v + c + a

    decay = recency_decay(_age_hours(now, first_seen_at or agg.first_seen_at), settings)
    ever = evergreen_penalty(evergreen, z, settings)
    single = settings.single_token_penalty if agg.is_single_token else 1.0
    label = label_penalty(agg.label_quality, agg.tier12_count, settings)

    combined = ever * single * label
    override = agg.current_24h >= settings.high_volume_threshold and z >= settings.high_volume_min_z
    if override:
        combined = max(combined, settings.high_volume_floor)

    breakdown = ScoreBreakdown(
        velocity=round(v, 2),
        corroboration=round(c, 2),
        activity=round(a, 2),
        raw_score=round(v, 2) + round(c, 2) + round(a, 2),
        recency_decay=round(decay, 4),
        evergreen_penalty=round(ever, 4),
        single_token_penalty=round(single, 4),
        label_quality_penalty=round(label, 4),
        penalty_multiplier=round(combined, 4),
        high_volume_override=override,
        is_evergreen=evergreen,
        final_score=round(_clamp(raw * decay * combined, 0.0, 100.0), 2),
    )
    check_breakdown(breakdown, settings)
    return breakdown


# ── Classification ─────────────────────────────────────────────────────────


def acceleration(current_1h: int, current_6h: int) -> float:
    """Percent change of the last hour against the six-hour hourly average."""
    avg_6h = current_6h / 6
    return (current_1h - avg_6h) / max(avg_6h, 0.5) * 100


def classify_stage(
    z: float, current_1h: int, current_6h: int, age_hours: float, settings: ScoringSettings
) -> TrendStage:
    """Lifecycle stage; a high last-hour volume reads as surging regardless of z."""
    if current_1h >= settings.surge_volume_1h:
        return TrendStage.SURGING
    accel = acceleration(current_1h, current_6h)
    if z >= settings.emerging_z and accel > 50 and age_hours < settings.emerging_max_age_hours:
        return TrendStage.EMERGING
    if z >= settings.surging_z and accel > 20:
        return TrendStage.SURGING
    if z < 0 or (z < 0.5 and accel < settings.declining_acceleration):
        return TrendStage.DECLINING
    if z >= settings.surging_z:
        return TrendStage.SURGING
    return TrendStage.STABLE


def breaking_path(agg: TopicAggregate, z: float, age_hours: float, settings: ScoringSettings) -> str | None:
    """Name of the first breaking rule a trending topic satisfies, if any.

    Every path needs at least one tier 1/2 source.
    """
    if agg.tier12_count == 0:
        return None
    if z >= settings.breaking_z and agg.news_count >= 1 and age_hours < settings.breaking_max_age_hours:
        return "velocity_spike"
    if (
        agg.current_1h >= settings.breaking_burst_1h
        and agg.news_count >= 2
        and age_hours < settings.breaking_burst_max_age_hours
    ):
        return "burst"
    if z >= settings.breaking_sustained_z and age_hours < 24:
        return "sustained_spike"
    return None


def is_trending(agg: TopicAggregate, z: float, final_score: float, settings: ScoringSettings) -> bool:
    return (
        agg.passes_quality_gate
        and final_score >= settings.min_trending_score
        and z >= settings.min_trending_z
        and (agg.current_1h >= settings.min_trending_1h or agg.current_24h >= settings.min_trending_24h)
    )


def evaluate(
    agg: TopicAggregate,
    velocity: ZScoreResult,
    history: Baseline | None,
    now: datetime,
    *,
    first_seen_at: datetime | None = None,
    config: EngineConfig | None = None,
) -> TrendEvent:
    """Score *agg* and turn it into a :class:`TrendEvent` candidate."""
    config = config or EngineConfig()
    settings = config.scoring
    evergreen = is_evergreen(agg.event_key, agg.event_title, history, config)
    first_seen = min(filter(None, [first_seen_at, agg.first_seen_at]), default=None)
    breakdown = score(agg, velocity, evergreen=evergreen, now=now, first_seen_at=first_seen, config=config)

    z = velocity.z_score
    age = _age_hours(now, first_seen)
    trending = is_trending(agg, z, breakdown.final_score, settings)
    path = breaking_path(agg, z, age, settings) if trending else None
    event_id = trend_event_id(agg.event_key)

    logger.debug(
        "Scored %s: z=%.2f raw=%.1f final=%.1f trending=%s",
        agg.event_key, z, breakdown.raw_score, breakdown.final_score, trending,
    )
    return TrendEvent(
        id=event_id,
        event_key=agg.event_key,
        event_title=agg.event_title,
        is_event_phrase=agg.is_event_phrase,
        label_quality=agg.label_quality,
        mentions=agg.mentions,
        source_count=agg.source_count_deduped,
        current_1h=agg.current_1h,
        current_6h=agg.current_6h,
        current_24h=agg.current_24h,
        news_count=agg.news_count,
        social_count=agg.social_count,
        tier12_count=agg.tier12_count,
        baseline_7d=history.mean_7d if history else 0.0,
        baseline_30d=history.mean_30d if history else 0.0,
        z_score=z,
        confidence_score=breakdown.final_score,
        is_trending=trending,
        is_breaking=path is not None,
        breaking_path=path,
        trend_stage=classify_stage(z, agg.current_1h, agg.current_6h, age, settings),
        first_seen_at=first_seen,
        last_seen_at=agg.last_seen_at,
        cluster_id=event_id,
        related_entities=agg.related_entities,
        policy_domains=agg.policy_domains,
        geographies=agg.geographies,
        passes_quality_gate=agg.passes_quality_gate,
        gate_reason=agg.gate_reason,
        breakdown=breakdown,
        evidence_count=len(agg.mentions),
        top_headline=agg.top_headline,
    )
