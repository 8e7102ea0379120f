"""Centralised configuration loaded from environment variables, dotenv and YAML."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from trendscope import lexicon
from trendscope.models import OrgProfile
from trendscope.settings import EngineConfig

load_dotenv()

logger = logging.getLogger(__name__)

# ── Paths ──────────────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[2]
DB_PATH: Path = Path(os.getenv("TRENDSCOPE_DB_PATH", str(PROJECT_ROOT / "var" / "trendscope.sqlite3")))
ENGINE_CONFIG_PATH: Path = Path(
    os.getenv("TRENDSCOPE_ENGINE_CONFIG", str(PROJECT_ROOT / "config" / "engine.yml"))
)

# ── Passes ─────────────────────────────────────────────────────────────────
MAX_WORKERS: int = int(os.getenv("TRENDSCOPE_MAX_WORKERS", "4"))
PASS_DEADLINE_SECONDS: float = float(os.getenv("TRENDSCOPE_PASS_DEADLINE_SECONDS", "600"))
LOG_LEVEL: str = os.getenv("TRENDSCOPE_LOG_LEVEL", "INFO")

# ── NLP service ────────────────────────────────────────────────────────────
NLP_SERVICE_URL: str = os.getenv("NLP_SERVICE_URL", "")
NLP_API_KEY: str = os.getenv("NLP_API_KEY", "")


def nlp_enabled() -> bool:
    return bool(NLP_SERVICE_URL and NLP_API_KEY)


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load an :class:`EngineConfig` from YAML, falling back to built-in defaults.

    Section keys ending in ``_file`` name a keyword file relative to the YAML
    file's directory; its lines replace the list of the same name, e.g.
    ``blocklist_file: blocklist.txt`` under ``aggregation``.
    """
    path = path or ENGINE_CONFIG_PATH
    if not path.exists():
        logger.info("No engine config at %s; using defaults", path)
        return EngineConfig()

    with open(path, encoding="utf-8") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    base_dir = path.resolve().parent
    for section in raw.values():
        if not isinstance(section, dict):
            continue
        for key in [k for k in section if k.endswith("_file")]:
            section[key[: -len("_file")]] = lexicon.load_lines(base_dir / section.pop(key))

    cfg = EngineConfig.model_validate(raw)
    logger.info("Loaded engine config version %s from %s", cfg.version, path)
    return cfg


def load_org_profiles(path: Path) -> list[OrgProfile]:
    """Parse an ``orgs.yml`` file: a top-level ``organizations`` list."""
    with open(path, encoding="utf-8") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}
    return [OrgProfile.model_validate(entry) for entry in raw.get("organizations", [])]
