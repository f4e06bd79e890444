"""Indicateur d'affluence : courant vs historique du même créneau.

Le créneau est le couple (heure UTC, jour ISO) courant. L'historique est
construit par jour à partir des relevés server_online_counts :

1. buckets de 15 minutes (bords à 0/15/30/45) ;
2. dernière valeur observée par serveur et par bucket ;
3. somme des serveurs par bucket ;
4. moyenne des buckets de l'heure → une valeur par jour.

Un jour n'est retenu qu'avec au moins min_buckets_per_hour buckets, et il
faut au moins min_history_days jours pour classer ; sinon le niveau est
"unknown".
"""

from __future__ import annotations

import logging
import statistics
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

import polars as pl

from src.config import BusyConfig
from src.db.parsers import ensure_utc
from src.models import BusySnapshot, HistoricalBucket, HistoricalRange

logger = logging.getLogger(__name__)

# (niveau, texte, percentile), du plus chargé au plus calme
BUSY_LEVELS: tuple[tuple[str, str, float], ...] = (
    ("very_busy", "Busier than usual", 90.0),
    ("busy", "Busy", 75.0),
    ("moderate", "As busy as usual", 50.0),
    ("quiet", "Not too busy", 25.0),
    ("very_quiet", "Quieter than usual", 10.0),
)

BUSY_LEVEL_ORDER: dict[str, int] = {
    "unknown": -1,
    "very_quiet": 0,
    "quiet": 1,
    "moderate": 2,
    "busy": 3,
    "very_busy": 4,
}

EXTREMELY_BUSY_TEXT = "Extremely busy"
VERY_QUIET_TEXT = "Very quiet"
NOT_ENOUGH_DATA_TEXT = "Not enough data"

# Seuils absolus de la timeline horaire (joueurs moyens)
TIMELINE_THRESHOLDS: tuple[tuple[float, str], ...] = (
    (20.0, "very_busy"),
    (15.0, "busy"),
    (10.0, "moderate"),
    (5.0, "quiet"),
)


@dataclass(frozen=True)
class HourlyBusyData:
    """Entrée de la timeline horaire autour de l'heure courante."""

    hour: int
    day_of_week: int
    typical_value: float
    busy_level: str
    is_current_hour: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "hour": self.hour,
            "day_of_week": self.day_of_week,
            "typical_value": self.typical_value,
            "busy_level": self.busy_level,
            "is_current_hour": self.is_current_hour,
        }


def iso_weekday(dt: datetime) -> int:
    """Jour ISO : lundi = 1 … dimanche = 7."""
    return dt.isoweekday()


# =============================================================================
# Historique dédupliqué
# =============================================================================


def bucket_online_counts_polars(df: pl.DataFrame, bucket_minutes: int = 15) -> pl.DataFrame:
    """Total des joueurs connectés par bucket (dernier relevé par serveur).

    Args:
        df: Relevés (timestamp, server_id, players_online).
        bucket_minutes: Largeur des buckets.

    Returns:
        DataFrame bucket_start, total_players trié par bucket.
    """
    schema = {"bucket_start": pl.Datetime("us", "UTC"), "total_players": pl.Float64}
    if df.is_empty():
        return pl.DataFrame(schema=schema)

    ts = pl.col("timestamp")
    if df.schema["timestamp"].time_zone is None:
        ts = ts.dt.replace_time_zone("UTC")

    return (
        df.with_columns(ts.dt.cast_time_unit("us").alias("timestamp"))
        .sort("timestamp", maintain_order=True)
        .with_columns(pl.col("timestamp").dt.truncate(f"{bucket_minutes}m").alias("bucket_start"))
        .group_by(["bucket_start", "server_id"], maintain_order=True)
        .agg(pl.col("players_online").last())
        .group_by("bucket_start", maintain_order=True)
        .agg(pl.col("players_online").sum().cast(pl.Float64).alias("total_players"))
        .sort("bucket_start")
    )


def daily_slot_values_polars(
    df: pl.DataFrame,
    hour_of_day: int,
    day_of_week: int,
    config: BusyConfig | None = None,
) -> pl.DataFrame:
    """Une valeur par jour historique pour le créneau (heure, jour ISO).

    Returns:
        DataFrame bucket_date, value, bucket_count (jours trop peu couverts exclus).
    """
    config = config or BusyConfig()
    schema = {"bucket_date": pl.Date, "value": pl.Float64, "bucket_count": pl.Int64}

    buckets = bucket_online_counts_polars(df, config.bucket_minutes)
    if buckets.is_empty():
        return pl.DataFrame(schema=schema)

    return (
        buckets.filter(
            (pl.col("bucket_start").dt.hour() == hour_of_day)
            & (pl.col("bucket_start").dt.weekday() == day_of_week)
        )
        .group_by(pl.col("bucket_start").dt.date().alias("bucket_date"))
        .agg(
            [
                pl.col("total_players").mean().alias("value"),
                pl.len().cast(pl.Int64).alias("bucket_count"),
            ]
        )
        .filter(pl.col("bucket_count") >= config.min_buckets_per_hour)
        .sort("bucket_date")
    )


def history_buckets_from_frame(
    daily: pl.DataFrame, hour_of_day: int, day_of_week: int
) -> list[HistoricalBucket]:
    return [
        HistoricalBucket(
            value=float(row["value"]),
            sample_count=int(row["bucket_count"]),
            hour_of_day=hour_of_day,
            day_of_week=day_of_week,
            bucket_date=row["bucket_date"],
        )
        for row in daily.iter_rows(named=True)
    ]


# =============================================================================
# Classification
# =============================================================================


def compute_historical_range(
    values: Sequence[float],
    percentiles: Sequence[float] = (0.25, 0.5, 0.75, 0.9),
) -> HistoricalRange:
    """Distribution triée ; p25/p75/p90 par index floor(N × fraction), médiane vraie.

    Raises:
        ValueError: Si values est vide.
    """
    if not values:
        raise ValueError("Distribution historique vide")

    ordered = sorted(float(v) for v in values)
    n = len(ordered)

    def _at(fraction: float) -> float:
        return ordered[min(int(n * fraction), n - 1)]

    q25, _, q75, q90 = percentiles
    return HistoricalRange(
        min=ordered[0],
        q25=_at(q25),
        median=float(statistics.median(ordered)),
        q75=_at(q75),
        q90=_at(q90),
        max=ordered[-1],
        average=sum(ordered) / n,
    )


def _level_for(current: float, r: HistoricalRange) -> tuple[str, str, float]:
    breakpoints = (r.q90, r.q75, r.median, r.q25)
    for (level, text, pct), threshold in zip(BUSY_LEVELS, breakpoints):
        if current >= threshold:
            return level, text, pct
    return BUSY_LEVELS[-1]


def classify_busy(
    current_value: float,
    history: Sequence[float] | Sequence[HistoricalBucket],
    config: BusyConfig | None = None,
    *,
    generated_at: datetime | None = None,
) -> BusySnapshot:
    """Classe la valeur courante contre la distribution historique.

    Args:
        current_value: Joueurs connectés maintenant.
        history: Valeurs journalières (ou HistoricalBucket) du créneau.
        config: Seuils (min_history_days, percentiles).
        generated_at: Horodatage du résultat.

    Returns:
        BusySnapshot ; niveau "unknown" si l'historique est insuffisant.
    """
    config = config or BusyConfig()
    values = [h.value if isinstance(h, HistoricalBucket) else float(h) for h in history]

    if len(values) < config.min_history_days:
        return BusySnapshot(
            busy_level="unknown",
            busy_text=NOT_ENOUGH_DATA_TEXT,
            current_value=float(current_value),
            typical_value=0.0,
            percentile=0.0,
            historical_range=None,
            history_days=len(values),
            generated_at=generated_at,
        )

    r = compute_historical_range(values, config.percentiles)
    level, text, pct = _level_for(current_value, r)

    # Surcharges du texte uniquement (le niveau et le percentile restent)
    if current_value >= 0.95 * r.max:
        text = EXTREMELY_BUSY_TEXT
    elif r.min > 0 and current_value <= 1.1 * r.min:
        text = VERY_QUIET_TEXT

    return BusySnapshot(
        busy_level=level,
        busy_text=text,
        current_value=float(current_value),
        typical_value=r.median,
        percentile=pct,
        historical_range=r,
        history_days=len(values),
        generated_at=generated_at,
    )


def busy_snapshot_polars(
    df: pl.DataFrame,
    current_value: float,
    now: datetime,
    config: BusyConfig | None = None,
) -> BusySnapshot:
    """Historique (relevés bruts) + classification pour le créneau de `now`."""
    config = config or BusyConfig()
    now = ensure_utc(now)
    daily = daily_slot_values_polars(df, now.hour, iso_weekday(now), config)
    history = history_buckets_from_frame(daily, now.hour, iso_weekday(now))
    logger.debug(
        f"Affluence {now.hour}h/j{iso_weekday(now)}: {len(history)} jour(s) historiques"
    )
    return classify_busy(current_value, history, config, generated_at=now)


# =============================================================================
# Timeline horaire
# =============================================================================


def absolute_busy_level(typical_value: float) -> str:
    """Niveau absolu d'une moyenne horaire (>=20, >=15, >=10, >=5)."""
    for threshold, level in TIMELINE_THRESHOLDS:
        if typical_value >= threshold:
            return level
    return "very_quiet"


def compute_hourly_timeline(
    df: pl.DataFrame,
    now: datetime,
    config: BusyConfig | None = None,
) -> list[HourlyBusyData]:
    """Moyennes horaires de part et d'autre de l'heure courante.

    Chaque heure de la timeline est rapportée à son propre jour ISO (une
    heure après minuit relève du jour suivant).

    Args:
        df: Relevés (timestamp, server_id, players_online) de la fenêtre
            timeline_lookback_days.
        now: Instant courant.
        config: timeline_hour_range.
    """
    config = config or BusyConfig()
    now = ensure_utc(now).replace(minute=0, second=0, microsecond=0)

    averages: dict[tuple[int, int], float] = {}
    if not df.is_empty():
        ts = pl.col("timestamp")
        if df.schema["timestamp"].time_zone is None:
            ts = ts.dt.replace_time_zone("UTC")
        grouped = (
            df.with_columns(ts.alias("timestamp"))
            .group_by(
                [
                    pl.col("timestamp").dt.hour().alias("hour"),
                    pl.col("timestamp").dt.weekday().alias("dow"),
                ]
            )
            .agg(pl.col("players_online").cast(pl.Float64).mean().alias("avg"))
        )
        averages = {
            (int(row["hour"]), int(row["dow"])): float(row["avg"])
            for row in grouped.iter_rows(named=True)
        }

    timeline: list[HourlyBusyData] = []
    span = config.timeline_hour_range
    for offset in range(-span, span + 1):
        slot = now + timedelta(hours=offset)
        typical = averages.get((slot.hour, iso_weekday(slot)), 0.0)
        timeline.append(
            HourlyBusyData(
                hour=slot.hour,
                day_of_week=iso_weekday(slot),
                typical_value=typical,
                busy_level=absolute_busy_level(typical),
                is_current_hour=offset == 0,
            )
        )
    return timeline


def busy_level_rank(level: str) -> int:
    """Rang ordinal d'un niveau (unknown = -1)."""
    return BUSY_LEVEL_ORDER.get(level, -1)
