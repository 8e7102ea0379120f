"""Cluster near-duplicate trend events and pick one representative per story."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from rapidfuzz.distance import Levenshtein

from trendscope.errors import ClusteringError
from trendscope.labels import content_tokens, stem
from trendscope.models import Cluster, ClusteredBatch, Mention, SourceType, TrendEvent
from trendscope.settings import EngineConfig

logger = logging.getLogger(__name__)


# ── Similarity ─────────────────────────────────────────────────────────────


def _tokens(label: str, config: EngineConfig) -> set[str]:
    tokens = {stem(t) for t in content_tokens(label, config.aggregation)}
    if not tokens:
        raise ClusteringError(f"no comparable tokens in {label!r}")
    return tokens


def similarity(a: str, b: str, config: EngineConfig | None = None) -> float:
    """Symmetric label similarity in [0, 1].

    Weighted blend of token Jaccard and normalized Levenshtein similarity of the
    sorted token strings, so word order does not matter. Labels with nothing
    comparable score 0.
    """
    config = config or EngineConfig()
    try:
        ta, tb = _tokens(a, config), _tokens(b, config)
    except ClusteringError as exc:
        logger.debug("Similarity degraded to 0: %s", exc)
        return 0.0
    if ta == tb:
        return 1.0
    jaccard = len(ta & tb) / len(ta | tb)
    edit = Levenshtein.normalized_similarity(" ".join(sorted(ta)), " ".join(sorted(tb)))
    w = config.clustering.jaccard_weight
    return round(w * jaccard + (1 - w) * edit, 4)


# ── Union-find ─────────────────────────────────────────────────────────────


def _find(parent: list[int], i: int) -> int:
    while parent[i] != i:
        parent[i] = parent[parent[i]]
        i = parent[i]
    return i


def _union(parent: list[int], a: int, b: int) -> None:
    ra, rb = _find(parent, a), _find(parent, b)
    if ra != rb:
        parent[max(ra, rb)] = min(ra, rb)


# ── Merge ──────────────────────────────────────────────────────────────────


def _priority(event: TrendEvent) -> tuple[int, float, int, str]:
    """Sort key: event phrase first, then confidence, then sources, then key."""
    return (0 if event.is_event_phrase else 1, -event.confidence_score, -event.source_count, event.event_key)


def _merge(rep: TrendEvent, others: list[TrendEvent], as_of: datetime) -> TrendEvent:
    group = [rep, *others]
    by_hash: dict[str, Mention] = {}
    for event in group:
        for m in event.mentions:
            by_hash.setdefault(m.content_hash, m)
    mentions = sorted(by_hash.values(), key=lambda m: (m.published_at, m.content_hash))

    def within(hours: int) -> int:
        cutoff = as_of - timedelta(hours=hours)
        return sum(1 for m in mentions if cutoff < m.published_at <= as_of)

    merged_from = {e.id for e in others}
    for event in group:
        merged_from.update(event.merged_from)
    merged_from.discard(rep.id)

    firsts = [e.first_seen_at for e in group if e.first_seen_at]
    lasts = [e.last_seen_at for e in group if e.last_seen_at]
    return rep.model_copy(
        update={
            "mentions": mentions,
            "source_count": len({m.source_domain for m in mentions}) if mentions else rep.source_count,
            "current_1h": within(1) if mentions else rep.current_1h,
            "current_6h": within(6) if mentions else rep.current_6h,
            "current_24h": within(24) if mentions else rep.current_24h,
            "news_count": sum(1 for m in mentions if m.source_type != SourceType.SOCIAL),
            "social_count": sum(1 for m in mentions if m.source_type == SourceType.SOCIAL),
            "tier12_count": sum(1 for m in mentions if m.source_tier in (1, 2)),
            "z_score": max(e.z_score for e in group),
            "confidence_score": max(e.confidence_score for e in group),
            "is_trending": any(e.is_trending for e in group),
            "is_breaking": any(e.is_breaking for e in group),
            "breaking_path": rep.breaking_path or next((e.breaking_path for e in others if e.breaking_path), None),
            "first_seen_at": min(firsts) if firsts else None,
            "last_seen_at": max(lasts) if lasts else None,
            "merged_from": sorted(merged_from),
            "related_entities": sorted({x for e in group for x in e.related_entities}),
            "policy_domains": sorted({x for e in group for x in e.policy_domains}),
            "geographies": sorted({x for e in group for x in e.geographies}),
            "evidence_count": len(mentions),
            "cluster_id": rep.id,
            "is_cluster_representative": True,
        }
    )


# ── Public API ─────────────────────────────────────────────────────────────


def cluster_topics(
    events: list[TrendEvent],
    *,
    pass_id: str,
    computed_at: datetime,
    threshold: float | None = None,
    config: EngineConfig | None = None,
) -> ClusteredBatch:
    """Group *events* whose titles are at least *threshold* similar.

    Each cluster keeps exactly one representative carrying the merged evidence;
    the other members are marked non-trending and point at it via
    ``cluster_id``.
    """
    config = config or EngineConfig()
    threshold = config.clustering.similarity_threshold if threshold is None else threshold
    ordered = sorted(events, key=lambda e: e.event_key)
    parent = list(range(len(ordered)))
    pair_scores: dict[tuple[int, int], float] = {}

    for i in range(len(ordered)):
        for j in range(i + 1, len(ordered)):
            s = similarity(ordered[i].event_title, ordered[j].event_title, config)
            if s >= threshold:
                pair_scores[(i, j)] = s
                _union(parent, i, j)

    groups: dict[int, list[int]] = {}
    for i in range(len(ordered)):
        groups.setdefault(_find(parent, i), []).append(i)

    clusters: list[Cluster] = []
    for idxs in groups.values():
        members = sorted((ordered[i] for i in idxs), key=_priority)
        rep, others = members[0], members[1:]
        merged_rep = _merge(rep, others, computed_at) if others else rep.model_copy(
            update={"cluster_id": rep.id, "is_cluster_representative": True}
        )
        followers = [
            e.model_copy(
                update={
                    "cluster_id": rep.id,
                    "is_cluster_representative": False,
                    "is_trending": False,
                    "is_breaking": False,
                }
            )
            for e in others
        ]
        sims = {
            ordered[j if ordered[i].id == rep.id else i].id: s
            for (i, j), s in pair_scores.items()
            if rep.id in (ordered[i].id, ordered[j].id)
        }
        clusters.append(
            Cluster(cluster_id=rep.id, representative=merged_rep, members=[merged_rep, *followers], similarities=sims)
        )

    clusters.sort(key=lambda c: (-c.representative.confidence_score, c.representative.event_key))
    merged = sum(len(c.members) - 1 for c in clusters)
    logger.info("Clustered %d topics into %d stories (%d merged)", len(events), len(clusters), merged)
    return ClusteredBatch(pass_id=pass_id, computed_at=computed_at, clusters=clusters)


def dedupe_by_cluster(events: list[TrendEvent]) -> list[TrendEvent]:
    """Keep the first event seen for each cluster ID."""
    seen: set[str] = set()
    out: list[TrendEvent] = []
    for event in events:
        cid = event.cluster_id or event.id
        if cid in seen:
            continue
        seen.add(cid)
        out.append(event)
    return out
