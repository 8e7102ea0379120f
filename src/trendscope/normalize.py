"""Mention normalization: canonical URLs, clean text, and a stable content hash."""

from __future__ import annotations

import hashlib
import html
import logging
import re
import unicodedata
from datetime import UTC, datetime
from urllib.parse import SplitResult, parse_qsl, urlencode, urlsplit, urlunsplit

import tldextract

from trendscope.errors import MalformedInputError
from trendscope.models import Mention, RawMention
from trendscope.settings import EngineConfig, NormalizerSettings

logger = logging.getLogger(__name__)

# Bundled public-suffix snapshot only: no network fetch, no cache writes.
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


# ── Text ───────────────────────────────────────────────────────────────────


def clean_text(text: str | None, max_length: int) -> str:
    """Decode entities, drop tags and control characters, collapse whitespace."""
    if not text:
        return ""
    out = html.unescape(text)
    out = _TAG_RE.sub(" ", out)
    out = "".join(
        " " if ch in "\t\n\r" else ch
        for ch in out
        if ch in "\t\n\r" or unicodedata.category(ch) not in ("Cc", "Cf")
    )
    out = _WS_RE.sub(" ", out).strip()
    if len(out) > max_length:
        out = out[:max_length].rstrip()
    return out


# ── URLs ───────────────────────────────────────────────────────────────────


def _host(netloc: str) -> str:
    host = netloc.lower().rsplit("@", 1)[-1].split(":", 1)[0]
    return host[4:] if host.startswith("www.") else host


def _split(url: str) -> SplitResult:
    try:
        return urlsplit(url)
    except ValueError as exc:
        raise MalformedInputError(f"unparseable URL {url!r}: {exc}") from exc


def _query(query: str) -> list[tuple[str, str]]:
    try:
        return parse_qsl(query, keep_blank_values=True)
    except ValueError as exc:
        raise MalformedInputError(f"unparseable query {query!r}: {exc}") from exc


def _is_tracking(param: str, settings: NormalizerSettings) -> bool:
    name = param.lower()
    return name in settings.tracking_params or any(
        name.startswith(prefix) for prefix in settings.tracking_prefixes
    )


def canonicalize_url(url: str, settings: NormalizerSettings | None = None) -> str:
    """Return ``https://host/path?sorted-non-tracking-params`` for *url*."""
    settings = settings or NormalizerSettings()
    url = (url or "").strip()
    if not url:
        raise MalformedInputError("empty URL")
    if "://" not in url:
        url = "https://" + url.lstrip("/")

    parts = _split(url)
    host = _host(parts.netloc)
    if not host:
        raise MalformedInputError(f"URL has no host: {url!r}")

    query = sorted(
        (k, v)
        for k, v in _query(parts.query)
        if not _is_tracking(k, settings)
    )
    path = parts.path.rstrip("/")
    return urlunsplit(("https", host, path, urlencode(query), ""))


def _redirect_params(host: str, settings: NormalizerSettings) -> list[str] | None:
    for wrapper, params in settings.redirect_hosts.items():
        if host == wrapper or host.endswith("." + wrapper):
            return params
    return None


def resolve_url(raw_url: str, canonical_url: str | None, settings: NormalizerSettings) -> str:
    """Unwrap known redirect wrappers, then canonicalize.

    Preference order: the connector-supplied canonical URL, a target URL carried
    in one of the wrapper's query parameters, the wrapper URL itself.
    """
    candidate = (raw_url or "").strip()
    if not candidate:
        raise MalformedInputError("empty URL")
    host = _host(_split(candidate if "://" in candidate else "https://" + candidate).netloc)
    params = _redirect_params(host, settings)
    if params is None:
        return canonicalize_url(candidate, settings)

    if canonical_url and canonical_url.strip():
        return canonicalize_url(canonical_url, settings)
    query = dict(_query(_split(candidate).query))
    for name in params:
        target = query.get(name, "")
        if target.startswith(("http://", "https://")):
            return canonicalize_url(target, settings)
    logger.debug("Redirect wrapper %s could not be resolved; keeping it", host)
    return canonicalize_url(candidate, settings)


def registered_domain(url: str) -> str:
    """``https://www.news.bbc.co.uk/x`` → ``bbc.co.uk``."""
    ext = _EXTRACT(url)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}".lower()
    return _host(urlsplit(url).netloc)


# ── Mentions ───────────────────────────────────────────────────────────────


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def content_hash(title: str, url: str, published_day: str, domain: str) -> str:
    payload = "|".join((title.lower(), url, published_day, domain))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def normalize(raw: RawMention, config: EngineConfig | None = None) -> Mention:
    """Turn a connector payload into an immutable :class:`Mention`.

    Raises :class:`MalformedInputError` when no usable title or URL remains.
    """
    settings = (config or EngineConfig()).normalizer

    title = clean_text(raw.title, settings.max_title_length)
    if not title:
        raise MalformedInputError("empty title after sanitization")
    url = resolve_url(raw.url, raw.canonical_url, settings)

    domain = (raw.source_domain or "").strip().lower()
    if domain.startswith("www."):
        domain = domain[4:]
    if not domain:
        domain = registered_domain(url)

    published_at = _as_utc(raw.published_at)
    discovered_at = _as_utc(raw.discovered_at) if raw.discovered_at else published_at
    published_day = published_at.astimezone(UTC).date().isoformat()
    ext = raw.extraction
    return Mention(
        content_hash=content_hash(title, url, published_day, domain),
        canonical_url=url,
        source_domain=domain,
        source_type=raw.source_type,
        source_tier=raw.source_tier,
        title=title,
        description=clean_text(raw.description, settings.max_description_length),
        published_at=published_at,
        discovered_at=discovered_at,
        entities=tuple(clean_text(e, 120) for e in ext.entities if e and e.strip()) if ext else (),
        policy_domains=tuple(ext.policy_domains) if ext else (),
        geographies=tuple(ext.geographies) if ext else (),
        is_event_phrase=ext.is_event_phrase if ext else False,
        event_phrase=clean_text(ext.event_phrase, 200) or None if ext else None,
        label_quality_hint=ext.label_quality_hint if ext else None,
        has_extraction=ext is not None,
    )


def normalize_batch(raws: list[RawMention], config: EngineConfig | None = None) -> list[Mention]:
    """Normalize *raws*, dropping (and logging) malformed ones."""
    mentions: list[Mention] = []
    for raw in raws:
        try:
            mentions.append(normalize(raw, config))
        except MalformedInputError as exc:
            logger.warning("Dropping malformed mention (%s): %r", exc, raw.url[:200])
    logger.info("Normalized %d/%d mentions", len(mentions), len(raws))
    return mentions
