"""Historique des joueurs connectés : série agrégée et insights.

Une période ("7d", "30d", …) détermine la fenêtre et la granularité de la
série. Chaque point est la somme, sur les serveurs, de la moyenne des
relevés du serveur dans l'intervalle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import polars as pl

from src.db.parsers import parse_period_days

# Période → intervalle (minutes)
PERIOD_INTERVALS: dict[str, int] = {
    "1d": 5,
    "3d": 30,
    "7d": 60,
    "30d": 240,
    "90d": 720,
    "180d": 1440,
    "365d": 1440,
}

CALCULATION_METHODS: dict[int, str] = {
    5: "5-minute average player counts",
    30: "30-minute average player counts",
    60: "Hourly average player counts",
    240: "4-hour average player counts",
    720: "12-hour average player counts",
    1440: "Daily average player counts",
}

TREND_CHANGE_PERCENT = 10.0

SERIES_SCHEMA = {"timestamp": pl.Datetime("us", "UTC"), "total_players": pl.Int64}


@dataclass(frozen=True)
class OnlineDataPoint:
    timestamp: datetime
    value: float


@dataclass
class OnlineHistoryInsights:
    """Synthèse d'une série de joueurs connectés."""

    overall_average: float = 0.0
    peak_players: int = 0
    peak_timestamp: datetime | None = None
    lowest_players: int = 0
    lowest_timestamp: datetime | None = None
    trend_direction: str = "stable"
    percentage_change: float = 0.0
    rolling_average: list[OnlineDataPoint] = field(default_factory=list)
    calculation_method: str = "No data available"

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_average": self.overall_average,
            "peak_players": self.peak_players,
            "peak_timestamp": self.peak_timestamp.isoformat() if self.peak_timestamp else None,
            "lowest_players": self.lowest_players,
            "lowest_timestamp": (
                self.lowest_timestamp.isoformat() if self.lowest_timestamp else None
            ),
            "trend_direction": self.trend_direction,
            "percentage_change": self.percentage_change,
            "rolling_average": [
                {"timestamp": p.timestamp.isoformat(), "average": p.value}
                for p in self.rolling_average
            ],
            "calculation_method": self.calculation_method,
        }


def resolve_period(period: str) -> tuple[int, int]:
    """Période → (jours, intervalle en minutes).

    Raises:
        ValueError: Période mal formée.
    """
    days = parse_period_days(period)
    key = f"{days}d"
    if key in PERIOD_INTERVALS:
        return days, PERIOD_INTERVALS[key]
    if days <= 3:
        return days, 30
    if days <= 7:
        return days, 60
    if days <= 30:
        return days, 240
    if days <= 90:
        return days, 720
    return days, 1440


def _interval_every(interval_minutes: int) -> str:
    if interval_minutes % 1440 == 0:
        return f"{interval_minutes // 1440}d"
    return f"{interval_minutes}m"


def players_online_series_polars(df: pl.DataFrame, interval_minutes: int) -> pl.DataFrame:
    """Série timestamp, total_players à la granularité demandée.

    Args:
        df: Relevés (timestamp, server_id, players_online).
        interval_minutes: Largeur d'un point (bords alignés sur l'epoch UTC).
    """
    if df.is_empty():
        return pl.DataFrame(schema=SERIES_SCHEMA)

    ts = pl.col("timestamp")
    if df.schema["timestamp"].time_zone is None:
        ts = ts.dt.replace_time_zone("UTC")

    return (
        df.with_columns(ts.dt.cast_time_unit("us").alias("timestamp"))
        .with_columns(
            pl.col("timestamp").dt.truncate(_interval_every(interval_minutes)).alias("bucket")
        )
        .group_by(["bucket", "server_id"])
        .agg(pl.col("players_online").cast(pl.Float64).mean().alias("avg_players"))
        .group_by("bucket")
        .agg(pl.col("avg_players").sum().round(0).cast(pl.Int64).alias("total_players"))
        .rename({"bucket": "timestamp"})
        .select(list(SERIES_SCHEMA))
        .sort("timestamp")
    )


def rolling_average_polars(series: pl.DataFrame, window_days: int) -> pl.DataFrame:
    """Moyenne glissante sur window_days jours (bornes incluses)."""
    if series.height < 2 or window_days <= 0:
        return pl.DataFrame(schema={"timestamp": pl.Datetime("us", "UTC"), "average": pl.Float64})
    return series.select(
        [
            pl.col("timestamp"),
            pl.col("total_players")
            .cast(pl.Float64)
            .rolling_mean_by("timestamp", window_size=f"{window_days}d", closed="both")
            .alias("average"),
        ]
    )


def compute_insights(
    series: pl.DataFrame,
    interval_minutes: int,
    window_days: int = 7,
) -> OnlineHistoryInsights:
    """Moyenne, pic, creux, moyenne glissante et tendance premier/dernier quart."""
    if series.is_empty():
        return OnlineHistoryInsights()

    values = series["total_players"].to_list()
    stamps = series["timestamp"].to_list()
    n = len(values)

    peak_idx = max(range(n), key=lambda i: values[i])
    low_idx = min(range(n), key=lambda i: values[i])

    trend = "stable"
    change = 0.0
    if n >= 2:
        quarter = max(1, n // 4)
        first = sum(values[:quarter]) / quarter
        last_values = values[(n * 3) // 4 :]
        last = sum(last_values) / len(last_values)
        if first > 0:
            change = (last - first) / first * 100
        if change > TREND_CHANGE_PERCENT:
            trend = "increasing"
        elif change < -TREND_CHANGE_PERCENT:
            trend = "decreasing"

    rolling = rolling_average_polars(series, window_days)
    return OnlineHistoryInsights(
        overall_average=sum(values) / n,
        peak_players=int(values[peak_idx]),
        peak_timestamp=stamps[peak_idx],
        lowest_players=int(values[low_idx]),
        lowest_timestamp=stamps[low_idx],
        trend_direction=trend,
        percentage_change=round(change, 2),
        rolling_average=[
            OnlineDataPoint(timestamp=row["timestamp"], value=float(row["average"]))
            for row in rolling.iter_rows(named=True)
        ],
        calculation_method=CALCULATION_METHODS.get(interval_minutes, "Aggregated player counts"),
    )
