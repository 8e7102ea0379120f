"""Unit tests for topic aggregation, labels and quality gates."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from trendscope.aggregate import aggregate, candidate_labels
from trendscope.labels import classify_label, fallback_label, topic_key
from trendscope.models import Extraction, LabelQuality, Mention, RawMention, SourceType, Window
from trendscope.normalize import normalize
from trendscope.settings import AggregationSettings

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
WINDOW = Window(start=NOW - timedelta(hours=24), end=NOW)
SETTINGS = AggregationSettings()


def _make(
    title: str,
    domain: str = "example.com",
    minutes_ago: int = 10,
    n: int = 0,
    tier: int | None = None,
    extraction: Extraction | None = None,
    source_type: SourceType = SourceType.NEWS,
) -> Mention:
    return normalize(
        RawMention(
            title=title,
            url=f"https://{domain}/story/{n}",
            published_at=NOW - timedelta(minutes=minutes_ago),
            source_domain=domain,
            source_tier=tier,
            source_type=source_type,
            extraction=extraction,
        )
    )


def _phrase(phrase: str, entities: list[str] | None = None) -> Extraction:
    return Extraction(event_phrase=phrase, is_event_phrase=True, entities=entities or [])


def _by_key(topics: list, key: str):
    return next(t for t in topics if t.event_key == key)


class TestTopicKey:
    def test_word_order_independent(self) -> None:
        assert topic_key("Trump Fires FBI Director", SETTINGS) == topic_key("FBI Director, Trump Fires", SETTINGS)

    def test_stopwords_and_punctuation(self) -> None:
        assert topic_key("The Senate's Vote on the Bill!", SETTINGS) == "bill_senate_vote"

    def test_alias_expansion(self) -> None:
        assert topic_key("EU", SETTINGS) == "european_union"

    def test_only_stopwords_is_empty(self) -> None:
        assert topic_key("the of and", SETTINGS) == ""


class TestLabels:
    def test_claimed_phrase_with_verb(self) -> None:
        assert classify_label("Senate Passes Infrastructure Bill", True, SETTINGS) == LabelQuality.EVENT_PHRASE

    def test_claimed_phrase_without_verb_downgraded(self) -> None:
        assert classify_label("Senate Infrastructure", True, SETTINGS) == LabelQuality.ENTITY_ONLY

    def test_single_word_never_event_phrase(self) -> None:
        assert classify_label("Passes", True, SETTINGS) == LabelQuality.ENTITY_ONLY

    def test_fallback_from_headline(self) -> None:
        label = fallback_label("Trump", "Trump fires FBI director amid probe, sources say", SETTINGS)
        assert label == "Trump fires FBI director amid probe"

    def test_no_fallback_without_verb(self) -> None:
        assert fallback_label("Trump", "Trump remarks at campaign stop", SETTINGS) is None


class TestAggregate:
    def test_candidate_labels(self) -> None:
        ext = _phrase("Senate Passes Infrastructure Bill", entities=["Senate"])
        labels = candidate_labels(_make("Senate vote", extraction=ext), SETTINGS)
        assert [(c.label, c.claimed, c.from_entity) for c in labels] == [
            ("Senate Passes Infrastructure Bill", True, False),
            ("Senate", False, True),
        ]
        with pytest.raises(ValidationError):
            labels[0].label = "other"

    def test_counts_and_domain_dedup(self) -> None:
        ext = _phrase("Senate Passes Infrastructure Bill")
        mentions = [
            _make("Senate passes infrastructure bill", "a.com", 10, 1, extraction=ext),
            _make("Senate passes infrastructure bill", "a.com", 20, 2, extraction=ext),
            _make("Senate passes infrastructure bill", "a.com", 200, 3, extraction=ext),
            _make("Senate passes infrastructure bill", "b.com", 20 * 60, 4, extraction=ext),
        ]
        topic = _by_key(aggregate(mentions, WINDOW), "bill_infrastructure_passes_senate")
        assert topic.source_count_deduped == 2
        assert topic.current_1h == 2
        assert topic.current_6h == 3
        assert topic.current_24h == 4
        assert len(topic.mentions) == 4
        assert topic.first_seen_at == NOW - timedelta(minutes=20 * 60)

    def test_outside_window_ignored(self) -> None:
        ext = _phrase("Senate Passes Infrastructure Bill")
        mentions = [_make("x", "a.com", 30 * 60, 1, extraction=ext)]
        assert aggregate(mentions, WINDOW) == []

    def test_event_phrase_label(self) -> None:
        ext = _phrase("Senate Passes Infrastructure Bill")
        mentions = [_make("headline", f"s{i}.com", 5, i, extraction=ext) for i in range(4)]
        topic = aggregate(mentions, WINDOW)[0]
        assert topic.label_quality == LabelQuality.EVENT_PHRASE
        assert topic.is_event_phrase
        assert topic.passes_quality_gate

    def test_headline_fallback_when_extraction_missing(self) -> None:
        mentions = [_make("Senate Passes Infrastructure Bill", f"s{i}.com", 5, i) for i in range(3)]
        topic = aggregate(mentions, WINDOW)[0]
        assert topic.event_title == "Senate Passes Infrastructure Bill"
        assert topic.label_quality == LabelQuality.EVENT_PHRASE

    def test_blocklisted_topic_kept_but_flagged(self) -> None:
        ext = Extraction(entities=["Video"])
        mentions = [_make(f"Watch the video {i}", f"s{i}.com", 5, i, extraction=ext) for i in range(30)]
        topic = _by_key(aggregate(mentions, WINDOW), "video")
        assert not topic.passes_quality_gate
        assert topic.gate_reason == "blocklisted_term"

    def test_single_word_low_volume(self) -> None:
        ext = Extraction(entities=["Greenland"])
        mentions = [_make(f"Greenland story {i}", f"s{i}.com", 5, i, extraction=ext) for i in range(5)]
        topic = _by_key(aggregate(mentions, WINDOW), "greenland")
        assert topic.is_single_token
        assert topic.gate_reason == "single_word_low_volume"

    def test_single_word_needs_authoritative_source(self) -> None:
        ext = Extraction(entities=["Greenland"])
        mentions = [_make(f"Greenland story {i}", f"s{i % 5}.com", 5, i, extraction=ext) for i in range(25)]
        topic = _by_key(aggregate(mentions, WINDOW), "greenland")
        assert topic.gate_reason == "single_word_no_tier12"

    def test_allowed_single_word_entity(self) -> None:
        ext = Extraction(entities=["FBI"])
        mentions = [_make(f"FBI update {i}", f"s{i}.com", 5, i, extraction=ext) for i in range(3)]
        topic = _by_key(aggregate(mentions, WINDOW), "fbi")
        assert topic.passes_quality_gate

    def test_ambiguous_acronym_needs_context(self) -> None:
        ext = Extraction(entities=["ICE"])
        plain = [_make(f"ICE story {i}", f"s{i}.com", 5, i, tier=1, extraction=ext) for i in range(25)]
        topic = _by_key(aggregate(plain, WINDOW), "ice")
        assert topic.gate_reason == "ambiguous_without_context"

        ctx = [
            _make(f"ICE immigration raid in city {i}", f"s{i % 5}.com", 5, i, tier=1, extraction=ext)
            for i in range(25)
        ]
        topic = _by_key(aggregate(ctx, WINDOW), "ice")
        assert topic.gate_reason != "ambiguous_without_context"

    def test_low_source_diversity(self) -> None:
        ext = _phrase("Governor Signs Housing Bill")
        mentions = [
            _make(f"Governor signs housing bill {i}", "one.com", 5, i, extraction=ext, source_type=SourceType.SOCIAL)
            for i in range(4)
        ]
        topic = aggregate(mentions, WINDOW)[0]
        assert topic.gate_reason == "low_source_diversity"

    def test_policy_domain_tagging(self) -> None:
        ext = _phrase("EPA Bans Offshore Drilling")
        mentions = [_make("EPA bans offshore drilling", f"s{i}.com", 5, i, extraction=ext) for i in range(3)]
        topic = aggregate(mentions, WINDOW)[0]
        assert "Environment" in topic.policy_domains

    def test_entity_topic_gets_fallback_label(self) -> None:
        ext = Extraction(entities=["Trump"])
        mentions = [
            _make("Trump fires FBI director amid probe", f"s{i}.com", 5, i, extraction=ext) for i in range(3)
        ]
        topic = _by_key(aggregate(mentions, WINDOW), "trump")
        assert topic.label_quality == LabelQuality.FALLBACK_GENERATED
        assert topic.event_title.startswith("Trump fires")
        assert topic.is_single_token
