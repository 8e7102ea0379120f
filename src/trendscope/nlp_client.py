"""Minimal client for the external entity-extraction service."""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from trendscope.errors import NlpClientError
from trendscope.models import Extraction, Mention

logger = logging.getLogger(__name__)

_EXTRACT_PATH = "/v1/extract"
_MAX_BATCH = 50


class EntityExtractionClient:
    """Thin wrapper around ``POST /v1/extract``.

    The service takes ``{"documents": [{"id", "text"}]}`` and answers with
    ``{"results": [{"id", "entities", "policy_domains", "geographies",
    "is_event_phrase", "event_phrase"}]}``.
    """

    def __init__(self, base_url: str, api_key: str, timeout: int = 30) -> None:
        if not base_url:
            raise ValueError("NLP_SERVICE_URL is required but was empty.")
        if not api_key:
            raise ValueError("NLP_API_KEY is required but was empty.")
        self._url = base_url.rstrip("/") + _EXTRACT_PATH
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {api_key}"})

    # ── public ──────────────────────────────────────────────────────────
    def extract(self, mentions: list[Mention]) -> dict[str, Extraction]:
        """Return extraction results keyed by mention content hash."""
        results: dict[str, Extraction] = {}
        for start in range(0, len(mentions), _MAX_BATCH):
            batch = mentions[start : start + _MAX_BATCH]
            payload = {
                "documents": [
                    {"id": m.content_hash, "text": f"{m.title}\n{m.description}".strip()} for m in batch
                ]
            }
            data = self._post(payload)
            for raw in data.get("results", []):
                doc_id = str(raw.get("id", ""))
                if not doc_id:
                    continue
                results[doc_id] = Extraction(
                    entities=list(raw.get("entities") or []),
                    policy_domains=list(raw.get("policy_domains") or []),
                    geographies=list(raw.get("geographies") or []),
                    is_event_phrase=bool(raw.get("is_event_phrase", False)),
                    event_phrase=raw.get("event_phrase") or None,
                )
        logger.info("Extracted entities for %d/%d mentions", len(results), len(mentions))
        return results

    # ── private ─────────────────────────────────────────────────────────
    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = self._session.post(self._url, json=payload, timeout=self._timeout)
            if resp.status_code == 429:
                retry_after = int(resp.headers.get("Retry-After", "30"))
                logger.warning("Rate-limited; sleeping %ds", retry_after)
                time.sleep(retry_after)
                resp = self._session.post(self._url, json=payload, timeout=self._timeout)
        except requests.RequestException as exc:
            raise NlpClientError(f"NLP service unreachable: {exc}") from exc
        if resp.status_code != 200:
            raise NlpClientError(f"NLP service returned {resp.status_code}: {resp.text[:500]}")
        return resp.json()  # type: ignore[no-any-return]


def attach(mentions: list[Mention], extractions: dict[str, Extraction]) -> list[Mention]:
    """Copy extraction results onto mentions that have none yet."""
    out: list[Mention] = []
    for m in mentions:
        ext = extractions.get(m.content_hash)
        if ext is None or m.has_extraction:
            out.append(m)
            continue
        out.append(
            m.model_copy(
                update={
                    "entities": tuple(ext.entities),
                    "policy_domains": tuple(ext.policy_domains),
                    "geographies": tuple(ext.geographies),
                    "is_event_phrase": ext.is_event_phrase,
                    "event_phrase": ext.event_phrase,
                    "has_extraction": True,
                }
            )
        )
    return out
