"""Baseline roll-up and z-score velocity with a cold-start fallback."""

from __future__ import annotations

import logging
import math
import statistics
from datetime import date, timedelta

from trendscope.errors import InsufficientHistoryError
from trendscope.models import Baseline, DailyBaseline, ZScoreResult
from trendscope.settings import EngineConfig, VelocitySettings

logger = logging.getLogger(__name__)


def rollup(records: list[DailyBaseline], today: date) -> Baseline:
    """Roll stored daily baselines into 7- and 30-day statistics, excluding *today*."""
    last_7: list[DailyBaseline] = []
    last_30: list[DailyBaseline] = []
    for rec in records:
        day = date.fromisoformat(rec.baseline_date)
        age = (today - day).days
        if age <= 0:
            continue
        if age <= 7:
            last_7.append(rec)
        if age <= 30:
            last_30.append(rec)

    def _mean(values: list[float]) -> float:
        return statistics.fmean(values) if values else 0.0

    return Baseline(
        mean_7d=_mean([r.hourly_average for r in last_7]),
        stddev_7d=_mean([r.hourly_std_dev for r in last_7]),
        mean_30d=_mean([r.hourly_average for r in last_30]),
        stddev_30d=_mean([r.hourly_std_dev for r in last_30]),
        observations_7d=len(last_7),
        observations_30d=len(last_30),
    )


def daily_record(event_key: str, day: date, hourly_mean: float, hourly_std: float) -> DailyBaseline:
    return DailyBaseline(
        event_key=event_key,
        baseline_date=day.isoformat(),
        hourly_average=round(hourly_mean, 4),
        hourly_std_dev=round(hourly_std, 4),
        relative_std_dev=round(hourly_std / hourly_mean, 4) if hourly_mean > 0 else 0.0,
    )


def _require_history(history: Baseline | None, settings: VelocitySettings) -> Baseline:
    if history is None or history.observations_7d < settings.min_history_observations:
        seen = history.observations_7d if history else 0
        raise InsufficientHistoryError(
            f"{seen} observations (< {settings.min_history_observations})"
        )
    return history


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def compute_velocity(
    topic_key: str,
    current_rate: float,
    current_24h: int,
    history: Baseline | None,
    config: EngineConfig | None = None,
) -> ZScoreResult:
    """Z-score of the current hourly rate against the topic's baseline.

    Without enough history a synthetic baseline of ``rate / 3`` with a Poisson
    standard deviation is used, and the result is capped at ``cold_z_cap``.
    """
    settings = (config or EngineConfig()).velocity
    corroborated = current_24h >= settings.min_corroboration

    try:
        base = _require_history(history, settings)
    except InsufficientHistoryError as exc:
        logger.debug("Cold baseline for %s: %s", topic_key, exc)
        synthetic = max(settings.cold_min_baseline, current_rate / settings.cold_baseline_divisor)
        std = math.sqrt(max(1.0, synthetic))
        z = (current_rate - synthetic) / std
        z = _clamp(z, settings.z_min, min(settings.z_max, settings.cold_z_cap))
        return ZScoreResult(
            z_score=round(z, 4),
            baseline_used=synthetic,
            stddev_used=std,
            is_corroborated=corroborated,
            is_cold=True,
            observations=history.observations_7d if history else 0,
        )

    std = max(base.stddev_7d, settings.stddev_floor, base.mean_7d * settings.stddev_floor_ratio)
    z = _clamp((current_rate - base.mean_7d) / std, settings.z_min, settings.z_max)
    return ZScoreResult(
        z_score=round(z, 4),
        baseline_used=base.mean_7d,
        stddev_used=std,
        is_corroborated=corroborated,
        is_cold=False,
        observations=base.observations_7d,
    )


def is_evergreen(
    topic_key: str,
    title: str,
    history: Baseline | None,
    config: EngineConfig | None = None,
) -> bool:
    """Always-on topic: a configured evergreen term, or a steady high baseline."""
    settings = (config or EngineConfig()).velocity
    terms = set(settings.evergreen_entities)
    if topic_key.replace("_", " ") in terms or title.strip().lower() in terms:
        return True
    if history is None or history.observations_30d == 0:
        return False
    b7, b30 = history.mean_7d, history.mean_30d
    if b30 >= settings.evergreen_min_baseline_30d and b7 >= settings.evergreen_min_baseline_7d:
        drift = abs(b7 - b30) / max(b30, 0.1)
        return drift < settings.evergreen_max_drift
    return False


def history_window(today: date, days: int = 30) -> tuple[str, str]:
    """Inclusive ISO date range of stored baselines a roll-up needs."""
    return (today - timedelta(days=days)).isoformat(), (today - timedelta(days=1)).isoformat()
