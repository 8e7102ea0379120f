"""Group normalized mentions into topics, count them, and apply quality gates."""

from __future__ import annotations

import logging
import statistics
from collections import Counter, defaultdict
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict

from trendscope.labels import (
    classify_label,
    display_words,
    fallback_label,
    looks_like_event_phrase,
    normalize_text,
    topic_key,
    words,
)
from trendscope.models import LabelQuality, Mention, SourceType, TopicAggregate, Window
from trendscope.settings import AggregationSettings, EngineConfig

logger = logging.getLogger(__name__)


class _Candidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    claimed: bool
    hint: LabelQuality | None = None
    from_entity: bool = False


def candidate_labels(mention: Mention, settings: AggregationSettings) -> list[_Candidate]:
    """Every topic label a mention contributes to."""
    out: list[_Candidate] = []
    headline_words = words(mention.title)

    if mention.event_phrase:
        out.append(_Candidate(label=mention.event_phrase, claimed=True, hint=mention.label_quality_hint))
    elif mention.is_event_phrase:
        out.append(_headline_candidate(mention.title, headline_words, settings, claimed=True))

    for entity in mention.entities:
        out.append(_Candidate(label=entity, claimed=False, from_entity=True))

    if not out:
        # Nothing extracted: fall back to the headline itself.
        out.append(
            _headline_candidate(
                mention.title,
                headline_words,
                settings,
                claimed=looks_like_event_phrase(mention.title, settings, settings.headline_label_max_words),
            )
        )
    return out


def _headline_candidate(
    title: str, headline_words: list[str], settings: AggregationSettings, claimed: bool
) -> _Candidate:
    if len(headline_words) <= settings.headline_label_max_words:
        return _Candidate(label=title, claimed=claimed)
    short = " ".join(title.split()[: settings.fallback_label_words])
    return _Candidate(label=short, claimed=True, hint=LabelQuality.FALLBACK_GENERATED)


# ── Quality gates ──────────────────────────────────────────────────────────


def _context_share(mentions: list[Mention], keywords: list[str]) -> float:
    if not mentions:
        return 0.0
    hits = 0
    for m in mentions:
        text = f" {normalize_text(m.title + ' ' + m.description)} "
        if any(f" {normalize_text(kw)} " in text for kw in keywords):
            hits += 1
    return hits / len(mentions)


def quality_gate(agg: TopicAggregate, label: str, settings: AggregationSettings) -> tuple[bool, str | None]:
    """Return ``(passes, reason)`` for *agg*; *label* is the label before any fallback."""
    block = set(settings.blocklist)
    disp = display_words(label, settings)
    if not disp:
        return False, "empty_label"
    if " ".join(disp) in block or agg.event_key.replace("_", " ") in block:
        return False, "blocklisted_term"
    if all(w in block for w in disp):
        return False, "all_words_blocklisted"

    volume = len(agg.mentions)
    sources = agg.source_count_deduped

    if len(disp) == 1:
        token = disp[0]
        context = settings.ambiguous_terms.get(token)
        if context is not None and _context_share(agg.mentions, context) < settings.ambiguous_min_context_share:
            return False, "ambiguous_without_context"
        if token not in settings.allowed_single_word_entities:
            if volume < settings.single_word_min_mentions:
                return False, "single_word_low_volume"
            if sources < settings.single_word_min_sources:
                return False, "single_word_low_sources"
            if agg.tier12_count == 0:
                return False, "single_word_no_tier12"
            return True, None

    if volume < settings.min_mentions:
        return False, "low_volume"
    if sources < settings.min_sources and not (
        agg.news_count >= 1 and agg.current_24h >= settings.min_24h_without_sources
    ):
        return False, "low_source_diversity"
    return True, None


# ── Aggregation ────────────────────────────────────────────────────────────


def tag_domains(texts: list[str], settings: AggregationSettings) -> list[str]:
    """Policy domains whose keywords appear in any of *texts*."""
    haystack = " ".join(f" {normalize_text(t)} " for t in texts if t)
    found: list[str] = []
    for domain, keywords in settings.domain_keywords.items():
        if any(f" {normalize_text(kw)} " in haystack for kw in keywords):
            found.append(domain)
    return found


def _hourly_stats(mentions: list[Mention], end: datetime) -> tuple[float, float]:
    buckets = [0] * 24
    for m in mentions:
        hours = (end - m.published_at).total_seconds() / 3600
        if 0 <= hours < 24:
            buckets[23 - int(hours)] += 1
    return statistics.fmean(buckets), statistics.pstdev(buckets)


def _build(
    key: str,
    entries: list[tuple[_Candidate, Mention]],
    window: Window,
    settings: AggregationSettings,
) -> TopicAggregate:
    end = window.end
    by_hash: dict[str, Mention] = {}
    for _, m in entries:
        by_hash.setdefault(m.content_hash, m)
    mentions = sorted(by_hash.values(), key=lambda m: (m.published_at, m.content_hash))

    def within(hours: int) -> int:
        cutoff = end - timedelta(hours=hours)
        return sum(1 for m in mentions if m.published_at > cutoff)

    type_counts = Counter(m.source_type.value for m in mentions)

    # Most frequent wording wins; ties break alphabetically for determinism.
    label_counts = Counter(c.label.strip() for c, _ in entries)
    label = sorted(label_counts.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]
    same = [c for c, _ in entries if c.label.strip() == label]
    claimed = sum(c.claimed for c in same) * 2 >= len(same)
    hints = Counter(c.hint for c in same if c.hint is not None)
    hint = hints.most_common(1)[0][0] if hints else None
    from_entity = all(c.from_entity for c in same)

    headline_counts = Counter(m.title for m in mentions)
    top_headline = sorted(headline_counts.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]

    entity_counts: Counter[str] = Counter()
    for m in mentions:
        entity_counts.update(e for e in m.entities if normalize_text(e) != normalize_text(label))

    domains = sorted({d for m in mentions for d in m.policy_domains} | set(tag_domains([label, top_headline], settings)))
    geographies = sorted({g for m in mentions for g in m.geographies})
    hourly_mean, hourly_std = _hourly_stats(mentions, end)

    agg = TopicAggregate(
        event_key=key,
        event_title=label,
        mentions=mentions,
        source_count_deduped=len({m.source_domain for m in mentions}),
        current_1h=within(1),
        current_6h=within(6),
        current_24h=within(24),
        news_count=type_counts.get(SourceType.NEWS.value, 0) + type_counts.get(SourceType.GOVERNMENT.value, 0),
        social_count=type_counts.get(SourceType.SOCIAL.value, 0),
        tier12_count=sum(1 for m in mentions if m.source_tier in (1, 2)),
        by_source_type=dict(type_counts),
        related_entities=[e for e, _ in entity_counts.most_common(10)],
        policy_domains=domains,
        geographies=geographies,
        first_seen_at=mentions[0].published_at,
        last_seen_at=mentions[-1].published_at,
        is_single_token=len(display_words(label, settings)) == 1,
        hourly_mean=hourly_mean,
        hourly_std_dev=hourly_std,
        top_headline=top_headline,
    )

    quality = classify_label(label, claimed, settings, hint)
    if quality == LabelQuality.ENTITY_ONLY and from_entity:
        for headline, _ in headline_counts.most_common():
            generated = fallback_label(label, headline, settings)
            if generated:
                agg.event_title = generated
                quality = LabelQuality.FALLBACK_GENERATED
                break
    agg.label_quality = quality
    agg.is_event_phrase = quality in (LabelQuality.EVENT_PHRASE, LabelQuality.FALLBACK_GENERATED)

    agg.passes_quality_gate, agg.gate_reason = quality_gate(agg, label, settings)
    return agg


def aggregate(
    mentions: list[Mention], window: Window, config: EngineConfig | None = None
) -> list[TopicAggregate]:
    """Group *mentions* inside *window* by topic key.

    Topics failing a quality gate are returned with ``passes_quality_gate=False``
    and a ``gate_reason``; nothing is discarded.
    """
    settings = (config or EngineConfig()).aggregation
    groups: dict[str, list[tuple[_Candidate, Mention]]] = defaultdict(list)
    outside = 0
    for mention in mentions:
        if not (window.start <= mention.published_at <= window.end):
            outside += 1
            continue
        seen_keys: set[str] = set()
        for cand in candidate_labels(mention, settings):
            key = topic_key(cand.label, settings)
            if not key or key in seen_keys:
                continue
            seen_keys.add(key)
            groups[key].append((cand, mention))

    if outside:
        logger.debug("Ignored %d mentions outside the window", outside)

    topics = [_build(key, entries, window, settings) for key, entries in groups.items()]
    topics.sort(key=lambda t: (-t.current_24h, t.event_key))
    logger.info(
        "Aggregated %d mentions into %d topics (%d pass quality gates)",
        len(mentions) - outside,
        len(topics),
        sum(1 for t in topics if t.passes_quality_gate),
    )
    return topics
