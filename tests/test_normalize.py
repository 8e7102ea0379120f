"""Unit tests for mention normalization."""

from datetime import UTC, datetime

import pytest

from trendscope.errors import MalformedInputError
from trendscope.models import Extraction, RawMention, SourceType
from trendscope.normalize import canonicalize_url, clean_text, normalize, normalize_batch

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def _make(
    title: str = "Senate Passes Infrastructure Bill",
    url: str = "https://www.example.com/politics/senate-bill",
    **kwargs: object,
) -> RawMention:
    return RawMention(title=title, url=url, published_at=kwargs.pop("published_at", NOW), **kwargs)


class TestCanonicalizeUrl:
    def test_strips_tracking_params(self) -> None:
        url = "https://example.com/a?utm_source=x&utm_medium=y&fbclid=abc&id=7"
        assert canonicalize_url(url) == "https://example.com/a?id=7"

    def test_scheme_host_and_trailing_slash(self) -> None:
        assert canonicalize_url("http://WWW.Example.com/a/") == "https://example.com/a"

    def test_sorts_remaining_params_and_drops_fragment(self) -> None:
        assert canonicalize_url("https://example.com/a?b=2&a=1#comments") == "https://example.com/a?a=1&b=2"

    def test_adds_missing_scheme(self) -> None:
        assert canonicalize_url("example.com/story") == "https://example.com/story"

    def test_empty_url_is_malformed(self) -> None:
        with pytest.raises(MalformedInputError):
            canonicalize_url("   ")

    def test_unparseable_url_is_malformed(self) -> None:
        with pytest.raises(MalformedInputError):
            canonicalize_url("https://[broken/x")


class TestCleanText:
    def test_decodes_entities_and_strips_tags(self) -> None:
        assert clean_text("Senate &amp; House <b>agree</b>", 100) == "Senate & House agree"

    def test_removes_control_characters(self) -> None:
        assert clean_text("Bill\x00 passes\u200b today", 100) == "Bill passes today"

    def test_truncates(self) -> None:
        assert clean_text("a" * 50, 10) == "a" * 10


class TestNormalize:
    def test_hash_stable_across_url_variants(self) -> None:
        a = normalize(_make(url="https://www.example.com/politics/senate-bill?utm_campaign=x"))
        b = normalize(_make(url="http://example.com/politics/senate-bill/"))
        c = normalize(_make(url="https://example.com/politics/senate-bill?ref=twitter#top"))
        assert a.content_hash == b.content_hash == c.content_hash

    def test_hash_changes_with_day(self) -> None:
        a = normalize(_make())
        b = normalize(_make(published_at=datetime(2026, 3, 11, 12, 0, tzinfo=UTC)))
        assert a.content_hash != b.content_hash

    def test_hash_ignores_title_case(self) -> None:
        a = normalize(_make(title="Senate Passes Infrastructure Bill"))
        b = normalize(_make(title="SENATE PASSES INFRASTRUCTURE BILL"))
        assert a.content_hash == b.content_hash

    def test_domain_from_registered_domain(self) -> None:
        m = normalize(_make(url="https://www.news.bbc.co.uk/world/12345"))
        assert m.source_domain == "bbc.co.uk"

    def test_supplied_domain_wins(self) -> None:
        m = normalize(_make(source_domain="WWW.Reuters.com"))
        assert m.source_domain == "reuters.com"

    def test_redirect_uses_supplied_canonical(self) -> None:
        m = normalize(
            _make(
                url="https://news.google.com/rss/articles/CBMiXYZ",
                canonical_url="https://apnews.com/article/senate-bill?utm_source=rss",
            )
        )
        assert m.canonical_url == "https://apnews.com/article/senate-bill"
        assert m.source_domain == "apnews.com"

    def test_redirect_target_in_query(self) -> None:
        m = normalize(_make(url="https://www.google.com/url?q=https://www.npr.org/story/1&sa=D"))
        assert m.canonical_url == "https://npr.org/story/1"

    def test_unresolvable_redirect_kept(self) -> None:
        m = normalize(_make(url="https://t.co/AbC123"))
        assert m.canonical_url == "https://t.co/AbC123"

    def test_naive_timestamp_treated_as_utc(self) -> None:
        m = normalize(_make(published_at=datetime(2026, 3, 10, 12, 0)))
        assert m.published_at.tzinfo is not None
        assert m.discovered_at == m.published_at

    def test_discovered_at_kept(self) -> None:
        seen = datetime(2026, 3, 10, 12, 30, tzinfo=UTC)
        assert normalize(_make(discovered_at=seen)).discovered_at == seen

    def test_extraction_attached(self) -> None:
        m = normalize(
            _make(
                source_type=SourceType.SOCIAL,
                extraction=Extraction(entities=["Senate", " "], is_event_phrase=True, policy_domains=["Housing"]),
            )
        )
        assert m.entities == ("Senate",)
        assert m.is_event_phrase
        assert m.policy_domains == ("Housing",)
        assert m.has_extraction

    def test_empty_title_is_malformed(self) -> None:
        with pytest.raises(MalformedInputError):
            normalize(_make(title="<p> &nbsp; </p>"))


class TestNormalizeBatch:
    def test_drops_malformed(self) -> None:
        good = _make()
        bad = _make(title="")
        broken = _make(url="https://[broken/x")
        assert len(normalize_batch([good, bad, broken])) == 1

    def test_unparseable_redirect_wrapper_dropped(self) -> None:
        broken = _make(url="https://news.google.com/rss/articles/x", canonical_url="http://[::1/story")
        assert normalize_batch([broken]) == []
