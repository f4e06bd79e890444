"""Calcul des statistiques de combat (kill rate, K/D, séries de kills)."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

import polars as pl

from src.analysis.rounds import PARTITION_COLUMNS, prepare_samples_frame, segment_samples_polars
from src.models import Round, safe_ratio

# =============================================================================
# Dataclasses de résultats
# =============================================================================


@dataclass(frozen=True)
class KillRateResult:
    """Kill rate calculé sur les deltas entre échantillons consécutifs.

    Attributes:
        kill_rate: Kills par minute (0 si aucune minute comptabilisée).
        total_kills: Somme des deltas de kills retenus.
        total_minutes: Somme des deltas de temps retenus.
        pairs_used: Nombre de paires d'échantillons retenues.
    """

    kill_rate: float
    total_kills: int
    total_minutes: float
    pairs_used: int


@dataclass(frozen=True)
class RoundTotals:
    """Totaux sur un ensemble de rounds."""

    rounds: int = 0
    kills: int = 0
    deaths: int = 0
    score: int = 0
    play_time_minutes: float = 0.0

    @property
    def kill_rate(self) -> float:
        return safe_ratio(self.kills, self.play_time_minutes)

    @property
    def kd_ratio(self) -> float:
        return safe_ratio(self.kills, self.deaths)

    @property
    def score_per_minute(self) -> float:
        return safe_ratio(self.score, self.play_time_minutes)


@dataclass(frozen=True)
class KillStreak:
    """Série de kills sans mort à l'intérieur d'un round."""

    player_name: str
    server_id: str
    map_name: str
    kills: int
    start_time: datetime
    end_time: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()


# =============================================================================
# Ratios
# =============================================================================


def kd_ratio(kills: float, deaths: float) -> float:
    """Ratio K/D ; 0 si aucune mort."""
    return safe_ratio(kills, deaths)


def compute_round_totals(rounds: Iterable[Round]) -> RoundTotals:
    """Agrège kills, morts, score et temps de jeu d'une liste de rounds."""
    n = kills = deaths = score = 0
    minutes = 0.0
    for r in rounds:
        n += 1
        kills += r.final_kills
        deaths += r.final_deaths
        score += r.final_score
        minutes += r.play_time_minutes
    return RoundTotals(rounds=n, kills=kills, deaths=deaths, score=score, play_time_minutes=minutes)


# =============================================================================
# Kill rate par deltas
# =============================================================================


def _sample_deltas(df: pl.DataFrame) -> pl.DataFrame:
    """Ajoute kills_diff et minutes_diff (vs échantillon précédent de la partition)."""
    d = prepare_samples_frame(df).sort(PARTITION_COLUMNS + ["timestamp"], maintain_order=True)
    return d.with_columns(
        [
            (pl.col("kills") - pl.col("kills").shift(1).over(PARTITION_COLUMNS)).alias(
                "kills_diff"
            ),
            (
                (pl.col("timestamp") - pl.col("timestamp").shift(1).over(PARTITION_COLUMNS))
                .dt.total_milliseconds()
                / 60_000.0
            ).alias("minutes_diff"),
        ]
    )


def _valid_pairs() -> pl.Expr:
    # Les deltas négatifs sont des remises à zéro, pas des kills négatifs
    return (pl.col("minutes_diff") > 0) & (pl.col("kills_diff") >= 0)


def compute_kill_rate_polars(df: pl.DataFrame) -> KillRateResult:
    """Kill rate = Σ kills_diff / Σ minutes_diff sur les paires valides.

    Une paire est retenue si minutes_diff > 0 et kills_diff >= 0.

    Args:
        df: Échantillons (player_name, server_id, map_name, timestamp, kills, deaths).

    Returns:
        KillRateResult (kill_rate = 0 si aucune minute retenue).
    """
    if df.is_empty():
        return KillRateResult(kill_rate=0.0, total_kills=0, total_minutes=0.0, pairs_used=0)

    valid = _sample_deltas(df).filter(_valid_pairs())
    total_kills = int(valid["kills_diff"].sum() or 0)
    total_minutes = float(valid["minutes_diff"].sum() or 0.0)

    return KillRateResult(
        kill_rate=safe_ratio(total_kills, total_minutes),
        total_kills=total_kills,
        total_minutes=total_minutes,
        pairs_used=len(valid),
    )


def compute_kill_rate_by_player_polars(df: pl.DataFrame) -> pl.DataFrame:
    """Kill rate par joueur (mêmes règles que compute_kill_rate_polars).

    Returns:
        DataFrame player_name, total_kills, total_minutes, pairs_used, kill_rate
        trié par kill_rate décroissant.
    """
    schema = {
        "player_name": pl.Utf8,
        "total_kills": pl.Int64,
        "total_minutes": pl.Float64,
        "pairs_used": pl.Int64,
        "kill_rate": pl.Float64,
    }
    if df.is_empty():
        return pl.DataFrame(schema=schema)

    valid = _sample_deltas(df).filter(_valid_pairs())
    if valid.is_empty():
        return pl.DataFrame(schema=schema)

    per_player = valid.group_by("player_name").agg(
        [
            pl.col("kills_diff").sum().cast(pl.Int64).alias("total_kills"),
            pl.col("minutes_diff").sum().alias("total_minutes"),
            pl.len().cast(pl.Int64).alias("pairs_used"),
        ]
    )
    return per_player.with_columns(
        pl.when(pl.col("total_minutes") > 0)
        .then(pl.col("total_kills") / pl.col("total_minutes"))
        .otherwise(0.0)
        .alias("kill_rate")
    ).sort(["kill_rate", "player_name"], descending=[True, False])


# =============================================================================
# Séries de kills
# =============================================================================


def detect_kill_streaks_polars(
    df: pl.DataFrame,
    *,
    gap_minutes: float = 15.0,
    min_streak: int = 5,
) -> list[KillStreak]:
    """Détecte les séries de kills sans mort à l'intérieur de chaque round.

    Une série cumule les deltas de kills positifs des échantillons sans
    nouvelle mort ; toute mort la réinitialise.

    Args:
        df: Échantillons bruts.
        gap_minutes: Écart de segmentation des rounds.
        min_streak: Nombre minimal de kills pour retenir une série.

    Returns:
        Séries triées par kills décroissants, puis joueur, puis début.
    """
    if df.is_empty():
        return []

    group = PARTITION_COLUMNS + ["round_index"]
    segmented = segment_samples_polars(df, gap_minutes)

    d = segmented.with_columns(
        [
            (pl.col("kills") - pl.col("kills").shift(1).over(group)).fill_null(0).alias("kill_delta"),
            (pl.col("deaths") - pl.col("deaths").shift(1).over(group))
            .fill_null(0)
            .alias("death_delta"),
        ]
    ).with_columns(
        [
            (pl.col("death_delta") > 0).cast(pl.Int64).alias("streak_reset"),
            pl.when((pl.col("kill_delta") > 0) & (pl.col("death_delta") == 0))
            .then(pl.col("kill_delta"))
            .otherwise(0)
            .alias("streak_kills"),
        ]
    ).with_columns(pl.col("streak_reset").cum_sum().over(group).alias("streak_group"))

    streaks = (
        d.filter(pl.col("streak_kills") > 0)
        .group_by(group + ["streak_group"], maintain_order=True)
        .agg(
            [
                pl.col("map_name").first(),
                pl.col("streak_kills").sum().alias("kills"),
                pl.col("timestamp").min().alias("start_time"),
                pl.col("timestamp").max().alias("end_time"),
            ]
        )
        .filter(pl.col("kills") >= min_streak)
        .sort(["kills", "player_name", "start_time"], descending=[True, False, False])
    )

    return [
        KillStreak(
            player_name=row["player_name"],
            server_id=row["server_id"],
            map_name=row["map_name"],
            kills=int(row["kills"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
        )
        for row in streaks.iter_rows(named=True)
    ]
