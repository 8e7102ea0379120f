"""CLI entry-point: ``python -m trendscope detect`` / ``relevance`` / ``decay`` / …"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

from trendscope import config
from trendscope.errors import DecayJobError, TrendscopeError
from trendscope.models import Window
from trendscope.pipeline import (
    DetectionPipeline,
    build_nlp_client,
    load_mentions,
    run_decay_pass,
    run_relevance_pass,
    setup_logging,
)
from trendscope.service import TrendService
from trendscope.store import TrendStore

logger = logging.getLogger(__name__)


def _parse_now(value: str | None) -> datetime:
    if not value:
        return datetime.now(UTC)
    now = datetime.fromisoformat(value)
    return now if now.tzinfo else now.replace(tzinfo=UTC)


def _detect(args: argparse.Namespace, store: TrendStore) -> None:
    engine = config.load_engine_config(args.engine_config)
    now = _parse_now(args.now)
    window = Window(start=now - timedelta(hours=args.window_hours), end=now)
    pipeline = DetectionPipeline(store, engine, nlp=build_nlp_client(), max_workers=config.MAX_WORKERS)
    report = pipeline.run(load_mentions(args.input), window, deadline_seconds=config.PASS_DEADLINE_SECONDS)
    print(report.model_dump_json(indent=2))


def _ranked(args: argparse.Namespace, store: TrendStore) -> None:
    service = TrendService(store, config.load_engine_config(args.engine_config))
    for score in service.get_ranked_trends(args.org, args.limit):
        print(score.model_dump_json())


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="trendscope",
        description="Trend detection and per-organization relevance ranking.",
    )
    parser.add_argument("--db", type=Path, default=config.DB_PATH, help="SQLite database path.")
    parser.add_argument(
        "--engine-config", type=Path, default=config.ENGINE_CONFIG_PATH, help="Engine YAML config."
    )
    sub = parser.add_subparsers(dest="command")

    # ── detect ────────────────────────────────────────────────────────
    detect = sub.add_parser("detect", help="Run a detection pass over a JSON-lines file of mentions.")
    detect.add_argument("--input", type=Path, required=True)
    detect.add_argument("--now", help="ISO timestamp for the end of the window (default: now).")
    detect.add_argument("--window-hours", type=int, default=24)

    # ── relevance ─────────────────────────────────────────────────────
    relevance = sub.add_parser("relevance", help="Recompute rankings for every organization.")
    relevance.add_argument("--limit", type=int, default=50)

    # ── decay ─────────────────────────────────────────────────────────
    sub.add_parser("decay", help="Decay stale learned affinities.")

    # ── ranked ────────────────────────────────────────────────────────
    ranked = sub.add_parser("ranked", help="Print the ranked trends for one organization.")
    ranked.add_argument("--org", required=True)
    ranked.add_argument("--limit", type=int, default=20)

    # ── outcome ───────────────────────────────────────────────────────
    outcome = sub.add_parser("outcome", help="Report a campaign outcome signal in [0, 1].")
    outcome.add_argument("--org", required=True)
    outcome.add_argument("--topic", required=True)
    outcome.add_argument("--signal", type=float, required=True)

    # ── orgs ──────────────────────────────────────────────────────────
    orgs = sub.add_parser("orgs", help="Load organization profiles from a YAML file.")
    orgs.add_argument("--file", type=Path, required=True)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    setup_logging(config.LOG_LEVEL)
    store = TrendStore(db_path=args.db)

    try:
        if args.command == "detect":
            _detect(args, store)
        elif args.command == "relevance":
            engine = config.load_engine_config(args.engine_config)
            counts = run_relevance_pass(store, engine, limit=args.limit, max_workers=config.MAX_WORKERS)
            logger.info("Ranked trends for %d organizations", len(counts))
        elif args.command == "decay":
            decayed = run_decay_pass(store, config.load_engine_config(args.engine_config))
            logger.info("Decayed %d affinities", decayed)
        elif args.command == "ranked":
            _ranked(args, store)
        elif args.command == "outcome":
            service = TrendService(store, config.load_engine_config(args.engine_config))
            print(service.report_outcome(args.org, args.topic, args.signal).model_dump_json())
        elif args.command == "orgs":
            profiles = config.load_org_profiles(args.file)
            for profile in profiles:
                store.save_org_profile(profile)
            logger.info("Loaded %d organization profiles", len(profiles))
    except DecayJobError as exc:
        logger.error("Decay pass incomplete: %s", ", ".join(exc.failed))
        sys.exit(2)
    except (TrendscopeError, ValueError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
