"""Prévisions d'activité par créneau (heure × jour de la semaine).

Les moyennes historiques sont calculées à partir des relevés
server_online_counts : pour chaque jour et chaque heure, le dernier relevé
de chaque serveur, sommé sur les serveurs, puis moyenné sur les jours.
Les jours sont au format ISO (lundi = 1 … dimanche = 7).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import polars as pl

from src.config import ForecastConfig
from src.db.parsers import ensure_utc
from src.models import HistoricalBucket

Slot = tuple[int, int]

PATTERN_SCHEMA = {
    "hour_of_day": pl.Int8,
    "day_of_week": pl.Int8,
    "predicted_value": pl.Float64,
    "data_points": pl.Int64,
}


@dataclass
class HourlyPrediction:
    """Prévision pour un créneau horaire."""

    hour_of_day: int
    day_of_week: int
    predicted_value: float
    data_points: int
    is_current_hour: bool = False
    actual_value: float | None = None
    delta: float | None = None

    @property
    def slot(self) -> Slot:
        return (self.hour_of_day, self.day_of_week)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hour_of_day": self.hour_of_day,
            "day_of_week": self.day_of_week,
            "predicted_value": self.predicted_value,
            "data_points": self.data_points,
            "is_current_hour": self.is_current_hour,
            "actual_value": self.actual_value,
            "delta": self.delta,
        }


@dataclass
class SmartInsights:
    """Synthèse "est-ce chargé maintenant ?" / "va-t-il y avoir du monde ?"."""

    current_actual_value: float
    current_hour_predicted: float
    next_hour_predicted: float
    max_predicted: float
    current_status: str
    activity_comparison: str
    trend_direction: str
    forecast: list[HourlyPrediction] = field(default_factory=list)
    generated_at: datetime | None = None

    @property
    def recommendation(self) -> str:
        """Texte court à destination de l'interface."""
        if self.trend_direction.startswith("increasing"):
            return "Activity is picking up, good time to join soon"
        if self.trend_direction.startswith("decreasing"):
            return "Activity is winding down, join now for the best games"
        if self.activity_comparison == "busier_than_usual":
            return "Busier than usual right now"
        if self.activity_comparison == "quieter_than_usual":
            return "Quieter than usual right now"
        return "Activity is steady"

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_actual_value": self.current_actual_value,
            "current_hour_predicted": self.current_hour_predicted,
            "next_hour_predicted": self.next_hour_predicted,
            "max_predicted": self.max_predicted,
            "current_status": self.current_status,
            "activity_comparison": self.activity_comparison,
            "trend_direction": self.trend_direction,
            "recommendation": self.recommendation,
            "forecast": [p.to_dict() for p in self.forecast],
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }


def slot_of(dt: datetime) -> Slot:
    """(heure UTC, jour ISO) d'un instant."""
    dt = ensure_utc(dt)
    return (dt.hour, dt.isoweekday())


# =============================================================================
# Motif horaire historique
# =============================================================================


def build_hourly_pattern_polars(df: pl.DataFrame) -> pl.DataFrame:
    """Moyenne historique par (heure, jour ISO).

    Args:
        df: Relevés (timestamp, server_id, players_online).

    Returns:
        DataFrame hour_of_day, day_of_week, predicted_value, data_points
        (data_points = nombre de jours observés).
    """
    if df.is_empty():
        return pl.DataFrame(schema=PATTERN_SCHEMA)

    ts = pl.col("timestamp")
    if df.schema["timestamp"].time_zone is None:
        ts = ts.dt.replace_time_zone("UTC")

    per_server = (
        df.with_columns(ts.alias("timestamp"))
        .sort("timestamp", maintain_order=True)
        .with_columns(
            [
                pl.col("timestamp").dt.date().alias("date_key"),
                pl.col("timestamp").dt.hour().cast(pl.Int8).alias("hour_of_day"),
                pl.col("timestamp").dt.weekday().cast(pl.Int8).alias("day_of_week"),
            ]
        )
        .group_by(["date_key", "hour_of_day", "day_of_week", "server_id"], maintain_order=True)
        .agg(pl.col("players_online").last())
    )

    return (
        per_server.group_by(["date_key", "hour_of_day", "day_of_week"])
        .agg(pl.col("players_online").sum().cast(pl.Float64).alias("hourly_total"))
        .group_by(["hour_of_day", "day_of_week"])
        .agg(
            [
                pl.col("hourly_total").mean().alias("predicted_value"),
                pl.len().cast(pl.Int64).alias("data_points"),
            ]
        )
        .select(list(PATTERN_SCHEMA))
        .sort(["hour_of_day", "day_of_week"])
    )


def pattern_to_buckets(pattern: pl.DataFrame) -> dict[Slot, HistoricalBucket]:
    """Index (heure, jour) → HistoricalBucket."""
    return {
        (int(row["hour_of_day"]), int(row["day_of_week"])): HistoricalBucket(
            value=float(row["predicted_value"]),
            sample_count=int(row["data_points"]),
            hour_of_day=int(row["hour_of_day"]),
            day_of_week=int(row["day_of_week"]),
        )
        for row in pattern.iter_rows(named=True)
    }


def _predict(buckets: dict[Slot, HistoricalBucket], when: datetime) -> HourlyPrediction:
    hour, dow = slot_of(when)
    bucket = buckets.get((hour, dow))
    if bucket is None:
        return HourlyPrediction(hour_of_day=hour, day_of_week=dow, predicted_value=0.0, data_points=0)
    return HourlyPrediction(
        hour_of_day=hour,
        day_of_week=dow,
        predicted_value=bucket.value,
        data_points=bucket.sample_count,
    )


# =============================================================================
# Prévisions
# =============================================================================


def forecast_next_hours(
    buckets: dict[Slot, HistoricalBucket],
    now: datetime,
    hours: int = 4,
) -> list[HourlyPrediction]:
    """Prévision des `hours` heures suivant l'heure courante (créneau absent → 0 / 0)."""
    now = ensure_utc(now)
    return [_predict(buckets, now + timedelta(hours=offset)) for offset in range(1, hours + 1)]


def find_peak_slots(
    buckets: dict[Slot, HistoricalBucket],
    now: datetime,
    config: ForecastConfig | None = None,
) -> list[HourlyPrediction]:
    """Créneaux les plus chargés des prochaines 24 heures.

    Seuls les créneaux avec au moins min_peak_samples jours observés sont
    retenus ; à valeur égale, l'ordre chronologique des créneaux prime.
    """
    config = config or ForecastConfig()
    now = ensure_utc(now)
    candidates = [
        _predict(buckets, now + timedelta(hours=offset))
        for offset in range(1, config.peak_horizon_hours + 1)
    ]
    reliable = [p for p in candidates if p.data_points >= config.min_peak_samples]
    # sorted() est stable : l'ordre chronologique départage les égalités
    return sorted(reliable, key=lambda p: p.predicted_value, reverse=True)[: config.peak_count]


# =============================================================================
# Insights
# =============================================================================


def current_status(actual: float) -> str:
    if actual < 5:
        return "very_quiet"
    if actual < 15:
        return "quiet"
    if actual < 30:
        return "moderate"
    if actual < 50:
        return "busy"
    return "very_busy"


def activity_comparison(actual: float, predicted: float) -> str:
    if predicted > 0.01:
        ratio = actual / predicted
        if ratio > 1.3:
            return "busier_than_usual"
        if ratio < 0.7:
            return "quieter_than_usual"
        return "as_usual"
    return "busier_than_usual" if actual > 5 else "as_usual"


def trend_direction(current_predicted: float, next_predicted: float) -> str:
    if next_predicted > current_predicted * 1.2:
        return "increasing_significantly"
    if next_predicted > current_predicted * 1.05:
        return "increasing"
    if next_predicted < current_predicted * 0.8:
        return "decreasing_significantly"
    if next_predicted < current_predicted * 0.95:
        return "decreasing"
    return "stable"


def build_smart_insights(
    buckets: dict[Slot, HistoricalBucket],
    now: datetime,
    current_actual: float,
    config: ForecastConfig | None = None,
) -> SmartInsights:
    """Heure courante + insight_hours heures suivantes, comparées au réel.

    Args:
        buckets: Motif horaire (pattern_to_buckets).
        now: Instant courant.
        current_actual: Joueurs (hors bots) actuellement connectés.
        config: insight_hours.
    """
    config = config or ForecastConfig()
    now = ensure_utc(now)

    forecast = [
        _predict(buckets, now + timedelta(hours=offset))
        for offset in range(0, config.insight_hours + 1)
    ]
    current = forecast[0]
    current.is_current_hour = True
    current.actual_value = float(current_actual)
    current.delta = float(current_actual) - current.predicted_value

    next_predicted = forecast[1].predicted_value if len(forecast) > 1 else 0.0
    future = [p.predicted_value for p in forecast[1:]]

    return SmartInsights(
        current_actual_value=float(current_actual),
        current_hour_predicted=current.predicted_value,
        next_hour_predicted=next_predicted,
        max_predicted=max(future) if future else 0.0,
        current_status=current_status(current_actual),
        activity_comparison=activity_comparison(current_actual, current.predicted_value),
        trend_direction=trend_direction(current.predicted_value, next_predicted),
        forecast=forecast,
        generated_at=now,
    )
