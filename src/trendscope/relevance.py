"""Per-organization relevance scoring and diversity-aware ranking."""

from __future__ import annotations

import logging
import math
import statistics
from datetime import datetime

from trendscope.cluster import dedupe_by_cluster
from trendscope.errors import ScoringInconsistencyError
from trendscope.labels import normalize_text
from trendscope.models import (
    FairnessReport,
    OrgProfile,
    OrgRelevanceScore,
    OrgTopicAffinity,
    PriorityBucket,
    TrendEvent,
)
from trendscope.settings import EngineConfig, RelevanceSettings

logger = logging.getLogger(__name__)

_NO_MATCH_REASON = "No specific matches found"


# ── Matching helpers ───────────────────────────────────────────────────────


def text_contains(haystack: str, needle: str) -> bool:
    """Whole-word containment after normalization."""
    h, n = normalize_text(haystack), normalize_text(needle)
    return bool(n) and f" {n} " in f" {h} "


def fuzzy_match(a: str, b: str) -> float:
    """1.0 for equal text, 0.85 for containment, else token overlap."""
    na, nb = normalize_text(a), normalize_text(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    if f" {nb} " in f" {na} " or f" {na} " in f" {nb} ":
        return 0.85
    ta = {t for t in na.split() if len(t) > 2}
    tb = {t for t in nb.split() if len(t) > 2}
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / max(len(ta), len(tb))


def _trend_texts(trend: TrendEvent) -> list[str]:
    return [trend.event_title, trend.top_headline, *trend.related_entities]


def _best_match(target: str, texts: list[str]) -> float:
    return max((fuzzy_match(t, target) for t in texts if t), default=0.0)


def effective_domains(org: OrgProfile, settings: RelevanceSettings) -> list[str]:
    """Declared domains, or the defaults for the org's type when none are declared."""
    if org.policy_domains:
        return list(org.policy_domains)
    return list(settings.org_type_topics.get(org.org_type, []))


def matched_affinities(
    trend: TrendEvent, affinities: list[OrgTopicAffinity], settings: RelevanceSettings
) -> list[OrgTopicAffinity]:
    texts = _trend_texts(trend)
    domains = {d.lower() for d in trend.policy_domains}
    return [
        a
        for a in affinities
        if a.topic.lower() in domains or _best_match(a.topic, texts) >= settings.match_threshold
    ]


def priority_bucket(score: float, settings: RelevanceSettings) -> PriorityBucket:
    if score >= settings.high_bucket:
        return PriorityBucket.HIGH
    if score >= settings.medium_bucket:
        return PriorityBucket.MEDIUM
    return PriorityBucket.LOW


# ── Scoring ────────────────────────────────────────────────────────────────


def _profile_component(
    org: OrgProfile, trend: TrendEvent, settings: RelevanceSettings, reasons: list[str]
) -> tuple[float, list[str], list[str]]:
    declared = effective_domains(org, settings)
    tagged = {d.lower() for d in trend.policy_domains}
    matched_domains = [d for d in declared if d.lower() in tagged]

    domain_pts = 0.0
    if matched_domains:
        domain_pts = min(
            settings.domain_cap,
            settings.domain_primary_points + settings.domain_extra_points * (len(matched_domains) - 1),
        )
        label = "Policy domain match" if org.policy_domains else "Org type domain match"
        reasons.append(f"{label}: {', '.join(matched_domains[:3])} (+{domain_pts:.0f})")
    elif not declared and not org.focus_areas and not org.watchlist:
        if trend.is_breaking:
            domain_pts = min(settings.domain_cap, settings.generic_breaking_points)
            reasons.append(f"General interest: breaking news (+{domain_pts:.0f})")
        elif trend.is_trending:
            domain_pts = min(settings.domain_cap, settings.generic_trending_points * trend.confidence_score / 100)
            reasons.append(f"General interest: trending nationally (+{domain_pts:.1f})")

    texts = _trend_texts(trend) + list(trend.geographies)
    focus_pts = 0.0
    focus_hits: list[str] = []
    for target in [*org.focus_areas, *org.geographies]:
        match = _best_match(target, texts)
        if match >= settings.match_threshold:
            focus_pts += settings.focus_points * match
            focus_hits.append(target)
    focus_pts = min(settings.focus_cap, focus_pts)
    if focus_hits:
        reasons.append(f"Focus area: {', '.join(focus_hits[:3])} (+{focus_pts:.1f})")

    watch_pts = 0.0
    watch_hits = [w for w in org.watchlist if any(text_contains(t, w) for t in _trend_texts(trend))]
    if watch_hits:
        watch_pts = settings.watchlist_cap
        reasons.append(f"Watchlist: {', '.join(watch_hits[:3])} (+{watch_pts:.0f})")

    return domain_pts + focus_pts + watch_pts, matched_domains, watch_hits


def _denied(org: OrgProfile, trend: TrendEvent) -> str | None:
    for entity in org.denied_entities:
        if any(text_contains(t, entity) for t in _trend_texts(trend)):
            return entity
    return None


def score_for_org(
    org: OrgProfile,
    trend: TrendEvent,
    affinities: list[OrgTopicAffinity],
    config: EngineConfig | None = None,
    now: datetime | None = None,
) -> OrgRelevanceScore:
    """Relevance of *trend* to *org* with a human-readable explanation."""
    config = config or EngineConfig()
    settings = config.relevance
    bounds = config.affinity
    result = OrgRelevanceScore(organization_id=org.organization_id, trend_event_id=trend.id, computed_at=now)

    denied = _denied(org, trend)
    if denied:
        result.is_blocked = True
        result.reasons = [f'Blocked: "{denied}" is on the deny list']
        return result

    reasons: list[str] = []
    profile, matched_domains, watch_hits = _profile_component(org, trend, settings, reasons)

    matches = matched_affinities(trend, affinities, settings)
    affinity = 0.0
    exploration = 0.0
    if matches:
        avg = statistics.fmean(a.affinity_score for a in matches)
        span = bounds.max_affinity - bounds.min_affinity
        affinity = max(0.0, min(1.0, (avg - bounds.min_affinity) / span)) * settings.affinity_cap
        topics = ", ".join(a.topic for a in matches[:3])
        reasons.append(f"Learned affinity: {topics} (avg {avg:.2f}, +{affinity:.1f})")
        uses = sum(a.times_used for a in matches)
        result.is_proven_topic = avg >= settings.proven_affinity and uses >= settings.proven_min_uses
        if result.is_proven_topic:
            reasons.append("Proven topic: strong past performance")
        if all(a.times_used < settings.weak_history_uses for a in matches):
            exploration = min(settings.exploration_cap, settings.weak_history_bonus)
            reasons.append(f"New opportunity: little history with this topic (+{exploration:.0f})")
    else:
        exploration = settings.exploration_cap
        reasons.append(f"New opportunity: no history with this topic (+{exploration:.0f})")

    result.profile_component = round(min(70.0, profile), 1)
    result.affinity_component = round(min(settings.affinity_cap, affinity), 1)
    result.exploration_component = round(min(settings.exploration_cap, exploration), 1)
    result.relevance_score = round(
        result.profile_component + result.affinity_component + result.exploration_component, 1
    )
    result.is_new_opportunity = result.exploration_component > 0
    result.matched_domains = matched_domains
    result.matched_watchlist = watch_hits
    result.reasons = reasons or [_NO_MATCH_REASON]
    result.priority_bucket = priority_bucket(result.relevance_score, settings)
    _check(result, settings)
    return result


def _check(result: OrgRelevanceScore, settings: RelevanceSettings) -> None:
    caps = (
        ("profile", result.profile_component, 70.0),
        ("affinity", result.affinity_component, settings.affinity_cap),
        ("exploration", result.exploration_component, settings.exploration_cap),
    )
    for name, value, cap in caps:
        if not (0.0 <= value <= cap):
            raise ScoringInconsistencyError(f"{name} component {value} outside [0, {cap}]")
    total = result.profile_component + result.affinity_component + result.exploration_component
    if abs(total - result.relevance_score) > 0.05 or not (0.0 <= result.relevance_score <= 100.0):
        raise ScoringInconsistencyError(
            f"relevance {result.relevance_score} != components {total} for {result.trend_event_id}"
        )


# ── Ranking ────────────────────────────────────────────────────────────────


def rank_for_org(
    org: OrgProfile,
    trends: list[TrendEvent],
    affinities: list[OrgTopicAffinity],
    limit: int,
    config: EngineConfig | None = None,
    now: datetime | None = None,
) -> list[OrgRelevanceScore]:
    """Top *limit* trends for *org*.

    Before truncating, the best trend for every declared domain and a minimum
    share of exploration picks are reserved; the remaining slots go by score.
    """
    config = config or EngineConfig()
    settings = config.relevance
    if limit <= 0:
        return []

    candidates = dedupe_by_cluster([t for t in trends if t.is_trending and t.is_cluster_representative])
    by_id = {t.id: t for t in candidates}
    scored = [score_for_org(org, t, affinities, config, now) for t in candidates]
    scored = [s for s in scored if not s.is_blocked]
    scored.sort(key=lambda s: (-s.relevance_score, -by_id[s.trend_event_id].confidence_score, s.trend_event_id))

    selected: list[OrgRelevanceScore] = []
    chosen: set[str] = set()

    def take(item: OrgRelevanceScore) -> None:
        selected.append(item)
        chosen.add(item.trend_event_id)

    for domain in effective_domains(org, settings):
        if len(selected) >= limit:
            break
        for item in scored:
            tagged = {d.lower() for d in by_id[item.trend_event_id].policy_domains}
            if domain.lower() in tagged:
                if item.trend_event_id not in chosen:
                    take(item)
                break

    quota = math.ceil(settings.min_exploration_share * limit)
    have = sum(1 for s in selected if s.is_new_opportunity)
    for item in scored:
        if have >= quota or len(selected) >= limit:
            break
        if item.is_new_opportunity and item.trend_event_id not in chosen:
            take(item)
            have += 1

    for item in scored:
        if len(selected) >= limit:
            break
        if item.trend_event_id not in chosen:
            take(item)

    order = {s.trend_event_id: i for i, s in enumerate(scored)}
    selected.sort(key=lambda s: order[s.trend_event_id])
    logger.info(
        "Ranked %d/%d trends for org %s (limit %d)",
        len(selected), len(candidates), org.organization_id, limit,
    )
    return selected


# ── Fairness ───────────────────────────────────────────────────────────────


def fairness_report(groups: dict[str, list[float]], config: EngineConfig | None = None) -> FairnessReport:
    """Compare average relevance across organization groups.

    Groups without scores are ignored. A ratio above ``fairness_max_ratio``
    between the best- and worst-served group is logged as a warning.
    """
    max_ratio = (config or EngineConfig()).relevance.fairness_max_ratio
    averages = {name: round(statistics.fmean(vals), 2) for name, vals in groups.items() if vals}
    if len(averages) < 2:
        return FairnessReport(averages=averages, max_ratio=max_ratio)
    hi, lo = max(averages.values()), min(averages.values())
    ratio = hi / lo if lo > 0 else math.inf
    report = FairnessReport(averages=averages, ratio=ratio, max_ratio=max_ratio, within_bounds=ratio <= max_ratio)
    if not report.within_bounds:
        logger.warning("Relevance fairness ratio %.2f exceeds %.2f: %s", ratio, max_ratio, averages)
    return report
