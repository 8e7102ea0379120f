"""Label text handling shared by aggregation and clustering."""

from __future__ import annotations

import re

from trendscope.models import LabelQuality
from trendscope.settings import AggregationSettings

_ACRONYM_DOT_RE = re.compile(r"(?<=\b\w)\.(?=\w\b)|(?<=\b\w\w)\.(?=\s|$)")
_POSSESSIVE_RE = re.compile(r"['’]s\b")
_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, drop punctuation and possessives, collapse whitespace."""
    out = (text or "").lower()
    out = _ACRONYM_DOT_RE.sub("", out)
    out = _POSSESSIVE_RE.sub("", out)
    out = _PUNCT_RE.sub(" ", out)
    return _WS_RE.sub(" ", out).strip()


def words(text: str) -> list[str]:
    return normalize_text(text).split()


def expand_aliases(tokens: list[str], aliases: dict[str, str]) -> list[str]:
    out: list[str] = []
    for tok in tokens:
        out.extend(aliases.get(tok, tok).split())
    return out


def stem(token: str) -> str:
    """Strip common English inflections so "fires"/"fired" and "tariffs"/"tariff" meet."""
    if len(token) <= 4:
        return token
    if token.endswith("ies"):
        return token[:-3] + "y"
    if token.endswith("ing") and len(token) > 5:
        return token[:-3]
    if token.endswith(("es", "ed")):
        return token[:-2]
    if token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def content_tokens(text: str, settings: AggregationSettings) -> list[str]:
    """Alias-expanded words of *text* with stopwords removed."""
    stop = set(settings.stopwords)
    aliases = {k.replace(".", ""): v for k, v in settings.aliases.items()}
    return [t for t in expand_aliases(words(text), aliases) if t not in stop]


def topic_key(label: str, settings: AggregationSettings) -> str:
    """Semantic key for *label*; empty when nothing meaningful is left.

    With ``order_independent_keys`` the tokens are sorted, so
    "Trump Fires FBI Director" and "FBI Director, Trump Fires" share a key.
    """
    tokens = content_tokens(label, settings)
    if settings.order_independent_keys:
        tokens = sorted(tokens)
    return "_".join(tokens)


def display_words(label: str, settings: AggregationSettings) -> list[str]:
    """Words of the label as written, minus stopwords (no alias expansion)."""
    stop = set(settings.stopwords)
    return [w for w in words(label) if w not in stop]


def has_event_marker(label: str, settings: AggregationSettings) -> bool:
    vocab = set(settings.event_verbs) | set(settings.event_nouns)
    return any(w in vocab for w in words(label))


def looks_like_event_phrase(label: str, settings: AggregationSettings, max_words: int = 8) -> bool:
    """Two to *max_words* words with an action verb or event noun."""
    n = len(words(label))
    return 2 <= n <= max_words and has_event_marker(label, settings)


def classify_label(
    label: str,
    claimed_event_phrase: bool,
    settings: AggregationSettings,
    hint: LabelQuality | None = None,
) -> LabelQuality:
    """Validate what the extractor claimed about *label*.

    A claimed event phrase without any verb or event noun is downgraded to
    ``entity_only``; a fallback hint is honoured only when the text holds up.
    """
    valid = looks_like_event_phrase(label, settings, settings.headline_label_max_words)
    if hint == LabelQuality.FALLBACK_GENERATED:
        return LabelQuality.FALLBACK_GENERATED if valid else LabelQuality.ENTITY_ONLY
    if claimed_event_phrase:
        return LabelQuality.EVENT_PHRASE if valid else LabelQuality.ENTITY_ONLY
    return LabelQuality.ENTITY_ONLY


def fallback_label(entity: str, headline: str, settings: AggregationSettings) -> str | None:
    """Build "<entity> <verb> ..." from a headline that mentions *entity*.

    Returns None unless the result reads as an event phrase.
    """
    raw = [t.strip(".,:;!?\"'()[]") for t in headline.split()]
    raw = [t for t in raw if t]
    head = [normalize_text(t) for t in raw]
    ent = words(entity)
    if not ent or not head:
        return None
    verbs = set(settings.event_verbs)
    for i in range(len(head) - len(ent) + 1):
        if head[i : i + len(ent)] != ent:
            continue
        j = i + len(ent)
        if j < len(head) and head[j] in verbs:
            end = i + max(len(ent) + 1, settings.fallback_label_words)
            candidate = " ".join(raw[i:end])
            if len(candidate.split()) >= 3 and looks_like_event_phrase(candidate, settings):
                return candidate
    return None
