"""Configuration du moteur de rounds et des analyses.

Toutes les valeurs sont portées par des dataclasses immuables passées
explicitement aux composants (constructeurs ou arguments). Aucun module
applicatif ne lit l'environnement : seuls les scripts appellent
SyncConfig.from_env().

Usage:
    from src.config import AnalyticsConfig, SyncConfig

    config = AnalyticsConfig(sync=SyncConfig(batch_size=200))
    engine = RoundSyncEngine(
        "data/rounds.duckdb", config=config.sync, segmentation=config.segmentation
    )
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

# =============================================================================
# Constantes par défaut
# =============================================================================

DEFAULT_KILL_MILESTONES: tuple[int, ...] = (1000, 5000, 10000, 25000, 50000, 100000)
DEFAULT_SCORE_MILESTONES: tuple[int, ...] = (10000, 50000, 100000, 500000, 1000000)
DEFAULT_PLAYTIME_MILESTONES_HOURS: tuple[int, ...] = (10, 50, 100, 500, 1000)

SUPPORTED_SCHEMA_VERSIONS: tuple[int, ...] = (1, 2)


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} doit être > 0 (reçu: {value})")


def _require_non_negative(name: str, value: float) -> None:
    if value < 0:
        raise ValueError(f"{name} doit être >= 0 (reçu: {value})")


# =============================================================================
# Segmentation
# =============================================================================


@dataclass(frozen=True)
class SegmentationConfig:
    """Paramètres de découpage des rounds.

    Attributes:
        gap_minutes: Écart (minutes) à partir duquel un nouvel échantillon ouvre un round.
        include_bots: Conserver les échantillons marqués is_bot.
    """

    gap_minutes: float = 15.0
    include_bots: bool = False

    def __post_init__(self) -> None:
        _require_positive("gap_minutes", self.gap_minutes)


# =============================================================================
# Synchronisation
# =============================================================================


@dataclass(frozen=True)
class SyncConfig:
    """Paramètres de la synchronisation incrémentale.

    Attributes:
        batch_size: Nombre de partitions (joueur, serveur) par batch.
        batch_delay_ms: Pause entre deux batches (millisecondes).
        overlap_minutes: Recouvrement appliqué sous le watermark.
        schema_version: Version du schéma player_rounds à écrire (1 ou 2).
        include_bots: Publier aussi les rounds des bots.
        memory_limit: Limite mémoire DuckDB.
    """

    batch_size: int = 500
    batch_delay_ms: int = 100
    overlap_minutes: float = 60.0
    schema_version: int = 2
    include_bots: bool = False
    memory_limit: str = "512MB"

    def __post_init__(self) -> None:
        _require_positive("batch_size", self.batch_size)
        _require_non_negative("batch_delay_ms", self.batch_delay_ms)
        _require_non_negative("overlap_minutes", self.overlap_minutes)
        if self.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
            raise ValueError(
                f"schema_version non supportée: {self.schema_version} "
                f"(attendu: {SUPPORTED_SCHEMA_VERSIONS})"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> SyncConfig:
        """Construit la config depuis les variables d'environnement.

        Variables reconnues : PLAYER_ROUNDS_BATCH_SIZE, PLAYER_ROUNDS_DELAY_MS,
        PLAYER_ROUNDS_OVERLAP_MINUTES. Les valeurs vides ou invalides sont ignorées.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        for key, attr, cast in (
            ("PLAYER_ROUNDS_BATCH_SIZE", "batch_size", int),
            ("PLAYER_ROUNDS_DELAY_MS", "batch_delay_ms", int),
            ("PLAYER_ROUNDS_OVERLAP_MINUTES", "overlap_minutes", float),
        ):
            raw = (env.get(key) or "").strip()
            if not raw:
                continue
            try:
                values[attr] = cast(raw)
            except ValueError:
                continue

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# =============================================================================
# Analyses
# =============================================================================


@dataclass(frozen=True)
class BusyConfig:
    """Paramètres de l'indicateur d'affluence.

    Attributes:
        bucket_minutes: Largeur des buckets de déduplication (bords à 0/15/30/45).
        min_history_days: Nombre minimal de jours historiques pour classer.
        min_buckets_per_hour: Nombre minimal de buckets valides dans l'heure.
        lookback_days: Fenêtre historique de la distribution.
        timeline_lookback_days: Fenêtre des moyennes de la timeline horaire.
        timeline_hour_range: Heures affichées de part et d'autre de l'heure courante.
        percentiles: Fractions (p25, médiane, p75, p90).
    """

    bucket_minutes: int = 15
    min_history_days: int = 3
    min_buckets_per_hour: int = 2
    lookback_days: int = 60
    timeline_lookback_days: int = 30
    timeline_hour_range: int = 4
    percentiles: tuple[float, float, float, float] = (0.25, 0.5, 0.75, 0.9)

    def __post_init__(self) -> None:
        _require_positive("bucket_minutes", self.bucket_minutes)
        if 60 % self.bucket_minutes != 0:
            raise ValueError(f"bucket_minutes doit diviser 60 (reçu: {self.bucket_minutes})")
        _require_positive("min_history_days", self.min_history_days)
        _require_positive("min_buckets_per_hour", self.min_buckets_per_hour)
        _require_positive("lookback_days", self.lookback_days)
        if len(self.percentiles) != 4 or list(self.percentiles) != sorted(self.percentiles):
            raise ValueError("percentiles doit contenir 4 fractions croissantes")
        if not all(0 < p < 1 for p in self.percentiles):
            raise ValueError("percentiles doit contenir des fractions dans ]0, 1[")


@dataclass(frozen=True)
class TrendConfig:
    """Paramètres des régressions de tendance.

    Attributes:
        slope_threshold: Pente au-delà de laquelle la tendance est Improving/Declining.
        strong_slope_threshold: Pente des tendances Strongly*.
        min_points: Nombre minimal de points pour une régression.
        min_daily_rounds: Rounds minimum par jour pour retenir un point.
        min_play_minutes: Durée minimale (exclusive) d'un round retenu.
        lookback_days: Fenêtre de la trajectoire.
    """

    slope_threshold: float = 0.02
    strong_slope_threshold: float = 0.1
    min_points: int = 3
    min_daily_rounds: int = 3
    min_play_minutes: float = 5.0
    lookback_days: int = 90

    def __post_init__(self) -> None:
        _require_non_negative("slope_threshold", self.slope_threshold)
        if self.strong_slope_threshold < self.slope_threshold:
            raise ValueError("strong_slope_threshold doit être >= slope_threshold")
        if self.min_points < 2:
            raise ValueError("min_points doit être >= 2")


@dataclass(frozen=True)
class ForecastConfig:
    """Paramètres des prévisions d'activité."""

    next_hours: int = 4
    insight_hours: int = 8
    peak_horizon_hours: int = 24
    peak_count: int = 3
    min_peak_samples: int = 3
    lookback_days: int = 60

    def __post_init__(self) -> None:
        _require_positive("next_hours", self.next_hours)
        _require_positive("peak_horizon_hours", self.peak_horizon_hours)
        _require_positive("peak_count", self.peak_count)


@dataclass(frozen=True)
class MilestoneConfig:
    """Seuils de milestones par métrique (kills, score, heures de jeu)."""

    kills: tuple[int, ...] = DEFAULT_KILL_MILESTONES
    score: tuple[int, ...] = DEFAULT_SCORE_MILESTONES
    playtime_hours: tuple[int, ...] = DEFAULT_PLAYTIME_MILESTONES_HOURS

    def thresholds_for(self, metric: str) -> tuple[int, ...]:
        """Seuils pour une métrique donnée."""
        if metric == "kills":
            return self.kills
        if metric == "score":
            return self.score
        if metric == "playtime":
            return self.playtime_hours
        raise ValueError(f"Métrique de milestone inconnue: {metric}")


@dataclass(frozen=True)
class ProgressionConfig:
    """Fenêtres et délais de l'analyse de progression joueur."""

    current_window_days: int = 30
    previous_window_days: int = 60
    comparison_window_days: int = 90
    min_map_rounds: int = 3
    query_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.previous_window_days <= self.current_window_days:
            raise ValueError("previous_window_days doit être > current_window_days")
        _require_positive("query_timeout_seconds", self.query_timeout_seconds)


@dataclass(frozen=True)
class AnalyticsConfig:
    """Regroupe toutes les configurations."""

    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    busy: BusyConfig = field(default_factory=BusyConfig)
    trend: TrendConfig = field(default_factory=TrendConfig)
    forecast: ForecastConfig = field(default_factory=ForecastConfig)
    milestones: MilestoneConfig = field(default_factory=MilestoneConfig)
    progression: ProgressionConfig = field(default_factory=ProgressionConfig)
