"""Tendances de performance par régression linéaire.

HOW IT WORKS:
- build_daily_points_polars() : une valeur par jour (kill rate, K/D, score/min)
- fit_trend() : moindres carrés sur l'index de la série → pente, R², tendance
- overall_trajectory() : synthèse de plusieurs tendances indépendantes

Exemple:
    points = build_daily_points_polars(rounds_df)
    kill_rate = fit_trend(points["kill_rate"])
    trajectory = build_trajectory(points)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import numpy as np
import polars as pl

from src.config import TrendConfig
from src.db.parsers import ensure_utc
from src.models import TrendPoint

INSUFFICIENT_DATA_TEXT = "Insufficient data for trend analysis"


class TrajectoryDirection(str, Enum):
    """Direction d'une tendance."""

    STRONGLY_IMPROVING = "StronglyImproving"
    IMPROVING = "Improving"
    STABLE = "Stable"
    DECLINING = "Declining"
    STRONGLY_DECLINING = "StronglyDeclining"


_TREND_LABELS = {
    TrajectoryDirection.STRONGLY_IMPROVING: "Strong improvement trend",
    TrajectoryDirection.IMPROVING: "Improving trend",
    TrajectoryDirection.DECLINING: "Declining trend",
    TrajectoryDirection.STRONGLY_DECLINING: "Strong decline trend",
    TrajectoryDirection.STABLE: "Stable performance",
}

_TRAJECTORY_SENTENCES = {
    TrajectoryDirection.STRONGLY_IMPROVING: (
        "Player shows {c} evidence of significant improvement across multiple metrics"
    ),
    TrajectoryDirection.IMPROVING: "Player demonstrates {c} upward trend in performance",
    TrajectoryDirection.DECLINING: "Player shows {c} downward trend in performance",
    TrajectoryDirection.STRONGLY_DECLINING: (
        "Player demonstrates {c} evidence of significant performance decline"
    ),
    TrajectoryDirection.STABLE: "Player maintains {c} stable performance with no clear trend",
}


def confidence_label(r_squared: float) -> str:
    """strong (> 0.7), moderate (> 0.4) ou weak."""
    if r_squared > 0.7:
        return "strong"
    if r_squared > 0.4:
        return "moderate"
    return "weak"


# =============================================================================
# Dataclasses de résultats
# =============================================================================


@dataclass(frozen=True)
class TrendAnalysis:
    """Résultat d'une régression sur une série journalière."""

    trend: TrajectoryDirection = TrajectoryDirection.STABLE
    slope: float = 0.0
    r_squared: float = 0.0
    description: str = INSUFFICIENT_DATA_TEXT

    @property
    def is_improving(self) -> bool:
        return self.trend in (
            TrajectoryDirection.IMPROVING,
            TrajectoryDirection.STRONGLY_IMPROVING,
        )

    @property
    def is_declining(self) -> bool:
        return self.trend in (
            TrajectoryDirection.DECLINING,
            TrajectoryDirection.STRONGLY_DECLINING,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "trend": self.trend.value,
            "slope": self.slope,
            "r_squared": self.r_squared,
            "description": self.description,
        }


@dataclass
class PerformanceTrajectory:
    """Séries journalières, tendances par métrique et synthèse."""

    kill_rate_points: list[TrendPoint] = field(default_factory=list)
    kd_ratio_points: list[TrendPoint] = field(default_factory=list)
    score_points: list[TrendPoint] = field(default_factory=list)
    kill_rate_trend: TrendAnalysis = field(default_factory=TrendAnalysis)
    kd_ratio_trend: TrendAnalysis = field(default_factory=TrendAnalysis)
    score_trend: TrendAnalysis = field(default_factory=TrendAnalysis)
    overall_trajectory: TrajectoryDirection = TrajectoryDirection.STABLE
    confidence: float = 0.0
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        def _points(points: list[TrendPoint]) -> list[dict[str, Any]]:
            return [
                {"date": p.date.isoformat(), "value": p.value, "sample_size": p.sample_size}
                for p in points
            ]

        return {
            "kill_rate_points": _points(self.kill_rate_points),
            "kd_ratio_points": _points(self.kd_ratio_points),
            "score_points": _points(self.score_points),
            "kill_rate_trend": self.kill_rate_trend.to_dict(),
            "kd_ratio_trend": self.kd_ratio_trend.to_dict(),
            "score_trend": self.score_trend.to_dict(),
            "overall_trajectory": self.overall_trajectory.value,
            "confidence": self.confidence,
            "description": self.description,
        }


# =============================================================================
# Régression
# =============================================================================


def classify_slope(slope: float, config: TrendConfig | None = None) -> TrajectoryDirection:
    config = config or TrendConfig()
    if slope > config.strong_slope_threshold:
        return TrajectoryDirection.STRONGLY_IMPROVING
    if slope > config.slope_threshold:
        return TrajectoryDirection.IMPROVING
    if slope < -config.strong_slope_threshold:
        return TrajectoryDirection.STRONGLY_DECLINING
    if slope < -config.slope_threshold:
        return TrajectoryDirection.DECLINING
    return TrajectoryDirection.STABLE


def fit_trend(
    points: Sequence[TrendPoint] | Sequence[float],
    config: TrendConfig | None = None,
) -> TrendAnalysis:
    """Régression linéaire (moindres carrés) sur l'index des points.

    Args:
        points: Série ordonnée (TrendPoint ou valeurs brutes).
        config: Seuils de pente et nombre minimal de points.

    Returns:
        TrendAnalysis ; Stable / 0 / 0 si la série est trop courte.
    """
    config = config or TrendConfig()
    if len(points) < config.min_points:
        return TrendAnalysis()

    y = np.array(
        [p.value if isinstance(p, TrendPoint) else float(p) for p in points],
        dtype=float,
    )
    x = np.arange(len(y), dtype=float)

    x_mean = x.mean()
    y_mean = y.mean()
    slope = float(((x - x_mean) * (y - y_mean)).sum() / ((x - x_mean) ** 2).sum())
    intercept = y_mean - slope * x_mean

    ss_res = float(((y - (slope * x + intercept)) ** 2).sum())
    ss_tot = float(((y - y_mean) ** 2).sum())
    # Série plate au bruit flottant près : pas de variance à expliquer
    r_squared = 0.0 if np.isclose(ss_tot, 0.0, atol=1e-12) else max(0.0, 1.0 - ss_res / ss_tot)

    trend = classify_slope(slope, config)
    return TrendAnalysis(
        trend=trend,
        slope=slope,
        r_squared=r_squared,
        description=f"{_TREND_LABELS[trend]} ({confidence_label(r_squared)} confidence)",
    )


def overall_trajectory(trends: Sequence[TrendAnalysis]) -> TrajectoryDirection:
    """Synthèse : >= 2 tendances fortes dans un sens, sinon majorité."""
    strongly_improving = sum(t.trend == TrajectoryDirection.STRONGLY_IMPROVING for t in trends)
    strongly_declining = sum(t.trend == TrajectoryDirection.STRONGLY_DECLINING for t in trends)
    improving = sum(t.is_improving for t in trends)
    declining = sum(t.is_declining for t in trends)

    if strongly_improving >= 2:
        return TrajectoryDirection.STRONGLY_IMPROVING
    if strongly_declining >= 2:
        return TrajectoryDirection.STRONGLY_DECLINING
    if improving > declining:
        return TrajectoryDirection.IMPROVING
    if declining > improving:
        return TrajectoryDirection.DECLINING
    return TrajectoryDirection.STABLE


def trajectory_confidence(trends: Sequence[TrendAnalysis]) -> float:
    """Moyenne des R²."""
    if not trends:
        return 0.0
    return sum(t.r_squared for t in trends) / len(trends)


def describe_trajectory(direction: TrajectoryDirection, confidence: float) -> str:
    return _TRAJECTORY_SENTENCES[direction].format(c=confidence_label(confidence))


# =============================================================================
# Séries journalières
# =============================================================================

DAILY_POINTS_SCHEMA = {
    "date": pl.Date,
    "kill_rate": pl.Float64,
    "kd_ratio": pl.Float64,
    "score_per_minute": pl.Float64,
    "sample_size": pl.Int64,
}


def build_daily_points_polars(
    rounds: pl.DataFrame,
    config: TrendConfig | None = None,
    *,
    now: datetime | None = None,
) -> pl.DataFrame:
    """Agrège les rounds par jour de début (kill rate, K/D, score/min).

    Seuls les rounds de plus de min_play_minutes et des lookback_days
    derniers jours sont retenus ; les jours avec moins de min_daily_rounds
    rounds sont écartés.

    Args:
        rounds: start_time, final_kills, final_deaths, final_score, play_time_minutes.
        config: Fenêtre et seuils.
        now: Instant de référence (maintenant si None).
    """
    config = config or TrendConfig()
    if rounds.is_empty():
        return pl.DataFrame(schema=DAILY_POINTS_SCHEMA)

    d = rounds
    if now is not None:
        since = ensure_utc(now) - timedelta(days=config.lookback_days)
        d = d.filter(pl.col("start_time") >= since)

    def _ratio(num: str, den: str) -> pl.Expr:
        return (
            pl.when(pl.col(den) > 0)
            .then(pl.col(num).cast(pl.Float64) / pl.col(den))
            .otherwise(0.0)
        )

    return (
        d.filter(pl.col("play_time_minutes") > config.min_play_minutes)
        .group_by(pl.col("start_time").dt.date().alias("date"))
        .agg(
            [
                pl.col("final_kills").sum().alias("kills"),
                pl.col("final_deaths").sum().alias("deaths"),
                pl.col("final_score").sum().alias("score"),
                pl.col("play_time_minutes").sum().alias("minutes"),
                pl.len().cast(pl.Int64).alias("sample_size"),
            ]
        )
        .filter(pl.col("sample_size") >= config.min_daily_rounds)
        .with_columns(
            [
                _ratio("kills", "minutes").alias("kill_rate"),
                _ratio("kills", "deaths").alias("kd_ratio"),
                _ratio("score", "minutes").alias("score_per_minute"),
            ]
        )
        .select(list(DAILY_POINTS_SCHEMA))
        .sort("date")
    )


def points_for(daily: pl.DataFrame, metric: str) -> list[TrendPoint]:
    """Série TrendPoint d'une colonne de build_daily_points_polars()."""
    return [
        TrendPoint(date=row["date"], value=float(row[metric]), sample_size=int(row["sample_size"]))
        for row in daily.iter_rows(named=True)
    ]


def build_trajectory(daily: pl.DataFrame, config: TrendConfig | None = None) -> PerformanceTrajectory:
    """Tendances des trois métriques et synthèse."""
    config = config or TrendConfig()
    trajectory = PerformanceTrajectory(
        kill_rate_points=points_for(daily, "kill_rate"),
        kd_ratio_points=points_for(daily, "kd_ratio"),
        score_points=points_for(daily, "score_per_minute"),
    )
    trajectory.kill_rate_trend = fit_trend(trajectory.kill_rate_points, config)
    trajectory.kd_ratio_trend = fit_trend(trajectory.kd_ratio_points, config)
    trajectory.score_trend = fit_trend(trajectory.score_points, config)

    trends = [trajectory.kill_rate_trend, trajectory.kd_ratio_trend, trajectory.score_trend]
    trajectory.overall_trajectory = overall_trajectory(trends)
    trajectory.confidence = trajectory_confidence(trends)
    trajectory.description = describe_trajectory(
        trajectory.overall_trajectory, trajectory.confidence
    )
    return trajectory
