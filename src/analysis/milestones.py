"""Détection des paliers cumulés (milestones) sur l'historique des rounds.

Sprint milestones : un palier T est franchi sur le premier round (ordre
round end_time) dont le cumul atteint T alors que le cumul précédent était
sous T. Chaque palier n'est émis qu'une fois par joueur.

Métriques :
- kills : somme des final_kills
- score : somme des final_score (peut décroître, seul le premier franchissement compte)
- playtime : somme des play_time_minutes, paliers exprimés en heures
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

import polars as pl

from src.config import MilestoneConfig
from src.models import Round

METRIC_COLUMNS: dict[str, str] = {
    "kills": "final_kills",
    "score": "final_score",
    "playtime": "play_time_minutes",
}


@dataclass(frozen=True)
class Milestone:
    """Palier atteint par un joueur.

    Attributes:
        player_name: Joueur.
        metric: kills, score ou playtime.
        threshold: Palier (heures pour playtime).
        round_id: Round sur lequel le palier est franchi.
        achieved_at: Fin de ce round.
        cumulative_value: Cumul après ce round.
        days_to_achieve: Jours entiers depuis le début du premier round.
    """

    player_name: str
    metric: str
    threshold: int
    round_id: str
    achieved_at: datetime
    cumulative_value: float
    days_to_achieve: int


@dataclass(frozen=True)
class MilestoneProgress:
    """Prochain palier non atteint."""

    milestone_type: str
    milestone_name: str
    target_value: int
    current_value: int
    progress_description: str

    @property
    def progress_ratio(self) -> float:
        if self.target_value <= 0:
            return 0.0
        return min(1.0, self.current_value / self.target_value)


def rounds_to_frame(rounds: Sequence[Round]) -> pl.DataFrame:
    """DataFrame des rounds pour les analyses (milestones, tendances, cartes)."""
    return pl.DataFrame(
        {
            "round_id": [r.round_id for r in rounds],
            "player_name": [r.player_name for r in rounds],
            "server_id": [r.server_id for r in rounds],
            "map_name": [r.map_name for r in rounds],
            "start_time": [r.start_time for r in rounds],
            "end_time": [r.end_time for r in rounds],
            "final_kills": [r.final_kills for r in rounds],
            "final_deaths": [r.final_deaths for r in rounds],
            "final_score": [r.final_score for r in rounds],
            "play_time_minutes": [r.play_time_minutes for r in rounds],
        },
        schema={
            "round_id": pl.Utf8,
            "player_name": pl.Utf8,
            "server_id": pl.Utf8,
            "map_name": pl.Utf8,
            "start_time": pl.Datetime("us", "UTC"),
            "end_time": pl.Datetime("us", "UTC"),
            "final_kills": pl.Int64,
            "final_deaths": pl.Int64,
            "final_score": pl.Int64,
            "play_time_minutes": pl.Float64,
        },
    )


def detect_milestones_polars(
    df: pl.DataFrame,
    thresholds: Sequence[int],
    metric: str = "kills",
) -> list[Milestone]:
    """Détecte les franchissements de paliers.

    Args:
        df: Rounds (round_id, player_name, start_time, end_time + colonne de la métrique).
        thresholds: Paliers (heures pour playtime).
        metric: kills, score ou playtime.

    Returns:
        Milestones triés par joueur puis palier.

    Raises:
        ValueError: Métrique inconnue ou colonnes manquantes.
    """
    if metric not in METRIC_COLUMNS:
        raise ValueError(f"Métrique de milestone inconnue: {metric}")
    value_col = METRIC_COLUMNS[metric]

    required_cols = ["round_id", "player_name", "start_time", "end_time", value_col]
    missing = [c for c in required_cols if c not in df.columns]
    if missing:
        msg = f"Colonnes manquantes: {missing}"
        raise ValueError(msg)

    if df.is_empty() or not thresholds:
        return []

    scale = 60 if metric == "playtime" else 1
    thresholds_df = pl.DataFrame(
        {
            "threshold": [int(t) for t in thresholds],
            "threshold_value": [float(t) * scale for t in thresholds],
        }
    )

    running = (
        df.sort(["player_name", "end_time"], maintain_order=True)
        .with_columns(
            [
                pl.col(value_col).cast(pl.Float64).cum_sum().over("player_name").alias("cumulative"),
                pl.col("start_time").min().over("player_name").alias("first_start"),
            ]
        )
        .with_columns((pl.col("cumulative") - pl.col(value_col)).alias("previous"))
    )

    crossings = running.join(thresholds_df, how="cross").filter(
        (pl.col("cumulative") >= pl.col("threshold_value"))
        & (pl.col("previous") < pl.col("threshold_value"))
    )
    if crossings.is_empty():
        return []

    # Premier franchissement uniquement (ordre end_time conservé)
    first = crossings.group_by(["player_name", "threshold"], maintain_order=True).first()
    first = first.with_columns(
        (pl.col("end_time") - pl.col("first_start")).dt.total_days().alias("days_to_achieve")
    ).sort(["player_name", "threshold"])

    return [
        Milestone(
            player_name=row["player_name"],
            metric=metric,
            threshold=int(row["threshold"]),
            round_id=row["round_id"],
            achieved_at=row["end_time"],
            cumulative_value=float(row["cumulative"]),
            days_to_achieve=int(row["days_to_achieve"]),
        )
        for row in first.iter_rows(named=True)
    ]


def detect_milestones(
    rounds: Sequence[Round],
    thresholds: Sequence[int] | None = None,
    metric: str = "kills",
    *,
    config: MilestoneConfig | None = None,
) -> list[Milestone]:
    """Version objets de detect_milestones_polars().

    Les paliers par défaut viennent de la config (MilestoneConfig).
    """
    if thresholds is None:
        thresholds = (config or MilestoneConfig()).thresholds_for(metric)
    return detect_milestones_polars(rounds_to_frame(rounds), thresholds, metric)


def next_milestones(
    total_kills: int,
    total_play_minutes: float,
    config: MilestoneConfig | None = None,
) -> list[MilestoneProgress]:
    """Prochain palier de kills et d'heures de jeu non atteint."""
    config = config or MilestoneConfig()
    progress: list[MilestoneProgress] = []

    for milestone in config.kills:
        if total_kills < milestone:
            progress.append(
                MilestoneProgress(
                    milestone_type="kills",
                    milestone_name=f"{milestone:,} Kills",
                    target_value=milestone,
                    current_value=total_kills,
                    progress_description=f"{total_kills:,} / {milestone:,} kills",
                )
            )
            break

    hours = int(total_play_minutes / 60)
    for milestone in config.playtime_hours:
        if hours < milestone:
            progress.append(
                MilestoneProgress(
                    milestone_type="playtime",
                    milestone_name=f"{milestone} Hours Played",
                    target_value=milestone,
                    current_value=hours,
                    progress_description=f"{hours} / {milestone} hours",
                )
            )
            break

    return progress
