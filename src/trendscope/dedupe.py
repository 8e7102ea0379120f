"""Deduplication logic: drop repeated mentions within a batch by content hash."""

from __future__ import annotations

import logging

from trendscope.models import Mention

logger = logging.getLogger(__name__)


def dedupe(mentions: list[Mention]) -> list[Mention]:
    """Return *mentions* with later repeats of a content hash removed."""
    seen: set[str] = set()
    unique: list[Mention] = []
    for mention in mentions:
        if mention.content_hash in seen:
            continue
        seen.add(mention.content_hash)
        unique.append(mention)
    logger.info(
        "Dedupe: %d total → %d unique (filtered %d repeats)",
        len(mentions),
        len(unique),
        len(mentions) - len(unique),
    )
    return unique
