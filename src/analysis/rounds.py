"""Découpage des échantillons en rounds et agrégation.

Ce module fournit les deux premières étapes du pipeline :
1. segment_samples_polars() : attribue un round_index à chaque échantillon
2. aggregate_rounds_polars() : réduit chaque round à une ligne finale + round_id

Un échantillon ouvre un nouveau round (partition joueur × serveur, ordre
chronologique) dès qu'UNE des conditions suivantes est vraie :
- premier échantillon de la partition ;
- kills en baisse (remise à zéro du compteur) ;
- deaths en baisse ;
- changement de carte ;
- écart depuis l'échantillon précédent >= gap_minutes.

Le résultat est déterministe : les mêmes échantillons donnent toujours les
mêmes rounds et les mêmes round_id.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

import polars as pl
from pydantic import ValidationError

from src.config import SegmentationConfig
from src.data.domain.models.sample import Sample
from src.db.parsers import ensure_utc
from src.models import Round

logger = logging.getLogger(__name__)

# =============================================================================
# Schéma des échantillons
# =============================================================================

PARTITION_COLUMNS = ["player_name", "server_id"]
ROUND_GROUP_COLUMNS = ["player_name", "server_id", "round_index"]

SAMPLE_SCHEMA: dict[str, pl.DataType] = {
    "player_name": pl.Utf8,
    "server_id": pl.Utf8,
    "map_name": pl.Utf8,
    "timestamp": pl.Datetime("us", "UTC"),
    "kills": pl.Int64,
    "deaths": pl.Int64,
    "score": pl.Int64,
    "ping": pl.Int64,
    "is_bot": pl.Boolean,
    "team_label": pl.Utf8,
    "game_type": pl.Utf8,
    "game": pl.Utf8,
    "session_id": pl.Int64,
}

# Valeurs des colonnes optionnelles absentes d'un DataFrame
_OPTIONAL_DEFAULTS: dict[str, Any] = {
    "score": 0,
    "ping": None,
    "is_bot": False,
    "team_label": "",
    "game_type": "",
    "game": "unknown",
    "session_id": None,
}

_REQUIRED_COLUMNS = ("player_name", "server_id", "map_name", "timestamp", "kills", "deaths")

ROUND_START_REASONS = ("first", "kills_reset", "deaths_reset", "map_change", "gap")


# =============================================================================
# Préparation des données
# =============================================================================


def validate_samples(raw_samples: Iterable[Sample | Mapping[str, Any]]) -> list[Sample]:
    """Valide des échantillons bruts ; les échantillons invalides sont ignorés.

    Args:
        raw_samples: Objets Sample ou dicts (JSON, lignes DB).

    Returns:
        Liste des Sample valides, dans l'ordre d'entrée.
    """
    valid: list[Sample] = []
    rejected = 0
    for raw in raw_samples:
        if isinstance(raw, Sample):
            valid.append(raw)
            continue
        try:
            valid.append(Sample.model_validate(raw))
        except ValidationError as e:
            rejected += 1
            logger.debug(f"Échantillon invalide ignoré: {e.error_count()} erreur(s)")
    if rejected:
        logger.warning(f"{rejected} échantillon(s) invalide(s) ignoré(s)")
    return valid


def samples_to_frame(samples: Iterable[Sample]) -> pl.DataFrame:
    """Convertit des Sample en DataFrame Polars typé (SAMPLE_SCHEMA)."""
    rows = [s.model_dump(include=set(SAMPLE_SCHEMA)) for s in samples]
    if not rows:
        return pl.DataFrame(schema=SAMPLE_SCHEMA)
    return pl.DataFrame(rows, schema=SAMPLE_SCHEMA)


def prepare_samples_frame(df: pl.DataFrame) -> pl.DataFrame:
    """Normalise un DataFrame d'échantillons (ex: lu depuis DuckDB).

    - Vérifie les colonnes obligatoires ;
    - ajoute les colonnes optionnelles manquantes ;
    - horodatages en UTC (un TIMESTAMP naïf est supposé UTC) ;
    - map_name NULL → "".

    Raises:
        ValueError: Si une colonne obligatoire manque.
    """
    missing = [c for c in _REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        msg = f"Colonnes manquantes: {missing}"
        raise ValueError(msg)

    additions = [
        pl.lit(default, dtype=SAMPLE_SCHEMA[col]).alias(col)
        for col, default in _OPTIONAL_DEFAULTS.items()
        if col not in df.columns
    ]
    if additions:
        df = df.with_columns(additions)

    ts_dtype = df.schema["timestamp"]
    if isinstance(ts_dtype, pl.Datetime) and ts_dtype.time_zone is None:
        ts_expr = pl.col("timestamp").dt.replace_time_zone("UTC")
    elif isinstance(ts_dtype, pl.Datetime):
        ts_expr = pl.col("timestamp").dt.convert_time_zone("UTC")
    else:
        ts_expr = pl.col("timestamp").str.to_datetime(time_zone="UTC")

    return df.with_columns(
        ts_expr.dt.cast_time_unit("us").alias("timestamp"),
        pl.col("map_name").fill_null(""),
        pl.col("kills").cast(pl.Int64),
        pl.col("deaths").cast(pl.Int64),
        pl.col("score").cast(pl.Int64).fill_null(0),
        pl.col("is_bot").cast(pl.Boolean).fill_null(False),
        pl.col("team_label").cast(pl.Utf8).fill_null(""),
        pl.col("game_type").cast(pl.Utf8).fill_null(""),
        pl.col("game").cast(pl.Utf8).fill_null("unknown"),
        pl.col("session_id").cast(pl.Int64),
    )


# =============================================================================
# Segmentation
# =============================================================================


def segment_samples_polars(df: pl.DataFrame, gap_minutes: float = 15.0) -> pl.DataFrame:
    """Attribue un round_index à chaque échantillon.

    Args:
        df: Échantillons (colonnes de SAMPLE_SCHEMA, au minimum les obligatoires).
        gap_minutes: Écart (minutes) qui ouvre un nouveau round.

    Returns:
        DataFrame trié (joueur, serveur, timestamp) avec les colonnes
        is_round_start, round_start_reason (première condition vérifiée,
        diagnostic uniquement) et round_index (1, 2, … par partition).
    """
    if gap_minutes <= 0:
        raise ValueError(f"gap_minutes doit être > 0 (reçu: {gap_minutes})")

    df = prepare_samples_frame(df)

    if df.is_empty():
        return df.with_columns(
            [
                pl.lit(None).cast(pl.Boolean).alias("is_round_start"),
                pl.lit(None).cast(pl.Utf8).alias("round_start_reason"),
                pl.lit(None).cast(pl.Int64).alias("round_index"),
            ]
        )

    df_sorted = df.sort(PARTITION_COLUMNS + ["timestamp"], maintain_order=True)

    def _prev(col: str) -> pl.Expr:
        return pl.col(col).shift(1).over(PARTITION_COLUMNS)

    elapsed_minutes = (
        pl.col("timestamp") - _prev("timestamp")
    ).dt.total_milliseconds() / 60_000.0

    flagged = df_sorted.with_columns(
        [
            (pl.int_range(pl.len()).over(PARTITION_COLUMNS) == 0).alias("_first"),
            (pl.col("kills") < _prev("kills")).fill_null(False).alias("_kills_reset"),
            (pl.col("deaths") < _prev("deaths")).fill_null(False).alias("_deaths_reset"),
            (pl.col("map_name") != _prev("map_name")).fill_null(False).alias("_map_change"),
            (elapsed_minutes >= gap_minutes).fill_null(False).alias("_gap"),
        ]
    )

    # Conditions combinées en OU, sans priorité
    is_start = (
        pl.col("_first")
        | pl.col("_kills_reset")
        | pl.col("_deaths_reset")
        | pl.col("_map_change")
        | pl.col("_gap")
    )
    reason = (
        pl.when(pl.col("_first"))
        .then(pl.lit("first"))
        .when(pl.col("_kills_reset"))
        .then(pl.lit("kills_reset"))
        .when(pl.col("_deaths_reset"))
        .then(pl.lit("deaths_reset"))
        .when(pl.col("_map_change"))
        .then(pl.lit("map_change"))
        .when(pl.col("_gap"))
        .then(pl.lit("gap"))
        .otherwise(pl.lit(None, dtype=pl.Utf8))
    )

    segmented = flagged.with_columns(
        [is_start.alias("is_round_start"), reason.alias("round_start_reason")]
    ).with_columns(
        pl.col("is_round_start")
        .cast(pl.Int64)
        .cum_sum()
        .over(PARTITION_COLUMNS)
        .alias("round_index")
    )

    return segmented.drop(["_first", "_kills_reset", "_deaths_reset", "_map_change", "_gap"])


# =============================================================================
# Agrégation
# =============================================================================


def compute_round_id(
    player_name: str,
    server_id: str,
    map_name: str,
    start_time: datetime,
    session_id: int | str,
) -> str:
    """Identité déterministe d'un round.

    16 premiers caractères hexadécimaux (majuscules) du SHA-256 de
    "{joueur}_{serveur}_{carte}_{début:%Y%m%d%H%M%S}_{session}".
    """
    start = ensure_utc(start_time)
    key = f"{player_name}_{server_id}_{map_name}_{start:%Y%m%d%H%M%S}_{session_id}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest().upper()[:16]


def _round_id_from_struct(row: dict[str, Any]) -> str:
    return compute_round_id(
        row["player_name"],
        row["server_id"],
        row["map_name"],
        row["start_time"],
        row["session_id"],
    )


ROUND_FRAME_SCHEMA: dict[str, pl.DataType] = {
    "round_id": pl.Utf8,
    "player_name": pl.Utf8,
    "server_id": pl.Utf8,
    "round_index": pl.Int64,
    "map_name": pl.Utf8,
    "start_time": pl.Datetime("us", "UTC"),
    "end_time": pl.Datetime("us", "UTC"),
    "final_kills": pl.Int64,
    "final_deaths": pl.Int64,
    "final_score": pl.Int64,
    "play_time_minutes": pl.Float64,
    "team_label": pl.Utf8,
    "game_id": pl.Utf8,
    "is_bot": pl.Boolean,
    "game": pl.Utf8,
    "average_ping": pl.Float64,
    "session_id": pl.Int64,
    "sample_count": pl.Int64,
}


def aggregate_rounds_polars(segmented: pl.DataFrame) -> pl.DataFrame:
    """Réduit chaque (joueur, serveur, round_index) à une ligne de round.

    Les finales sont des maxima (jamais des sommes) ; équipe, type de partie,
    jeu et drapeau bot viennent du dernier échantillon du round.

    Args:
        segmented: Sortie de segment_samples_polars().

    Returns:
        DataFrame au schéma ROUND_FRAME_SCHEMA, trié par joueur, serveur, début.
    """
    if "round_index" not in segmented.columns:
        msg = "round_index absent : appeler segment_samples_polars() d'abord"
        raise ValueError(msg)

    if segmented.is_empty():
        return pl.DataFrame(schema=ROUND_FRAME_SCHEMA)

    ordered = segmented.sort(ROUND_GROUP_COLUMNS + ["timestamp"], maintain_order=True)

    rounds = ordered.group_by(ROUND_GROUP_COLUMNS, maintain_order=True).agg(
        [
            pl.col("map_name").first(),
            pl.col("timestamp").min().alias("start_time"),
            pl.col("timestamp").max().alias("end_time"),
            pl.col("kills").max().clip(lower_bound=0).alias("final_kills"),
            pl.col("deaths").max().clip(lower_bound=0).alias("final_deaths"),
            pl.col("score").max().alias("final_score"),
            pl.col("team_label").last(),
            pl.col("game_type").last().alias("game_id"),
            pl.col("is_bot").last(),
            pl.col("game").last(),
            pl.col("ping").cast(pl.Float64).mean().alias("average_ping"),
            pl.col("session_id").drop_nulls().first().alias("session_id"),
            pl.len().cast(pl.Int64).alias("sample_count"),
        ]
    )

    rounds = rounds.with_columns(
        [
            (
                (pl.col("end_time") - pl.col("start_time")).dt.total_milliseconds() / 60_000.0
            )
            .clip(lower_bound=0.0)
            .alias("play_time_minutes"),
            pl.col("session_id").fill_null(0).cast(pl.Int64),
        ]
    )

    rounds = rounds.with_columns(
        pl.struct(["player_name", "server_id", "map_name", "start_time", "session_id"])
        .map_elements(_round_id_from_struct, return_dtype=pl.Utf8)
        .alias("round_id")
    )

    return rounds.select(list(ROUND_FRAME_SCHEMA)).sort(
        ["player_name", "server_id", "start_time"], maintain_order=True
    )


def rounds_from_frame(df: pl.DataFrame) -> list[Round]:
    """Convertit un DataFrame de rounds en objets Round."""
    rounds: list[Round] = []
    for row in df.iter_rows(named=True):
        rounds.append(
            Round(
                round_id=row["round_id"],
                player_name=row["player_name"],
                server_id=row["server_id"],
                map_name=row["map_name"],
                start_time=ensure_utc(row["start_time"]),
                end_time=ensure_utc(row["end_time"]),
                final_kills=int(row["final_kills"]),
                final_deaths=int(row["final_deaths"]),
                final_score=int(row["final_score"]),
                play_time_minutes=float(row["play_time_minutes"]),
                team_label=row["team_label"] or "",
                game_id=row["game_id"] or "",
                is_bot=bool(row["is_bot"]),
                game=row["game"] or "unknown",
                average_ping=row["average_ping"],
                session_id=int(row["session_id"]),
                sample_count=int(row["sample_count"]),
            )
        )
    return rounds


def build_rounds_frame(df: pl.DataFrame, config: SegmentationConfig | None = None) -> pl.DataFrame:
    """Pipeline complet DataFrame → DataFrame de rounds (bots exclus par défaut)."""
    config = config or SegmentationConfig()
    df = prepare_samples_frame(df)
    if not config.include_bots:
        df = df.filter(~pl.col("is_bot"))
    return aggregate_rounds_polars(segment_samples_polars(df, config.gap_minutes))


def build_rounds(
    samples: Iterable[Sample | Mapping[str, Any]],
    config: SegmentationConfig | None = None,
) -> list[Round]:
    """Échantillons bruts → rounds finalisés.

    Args:
        samples: Sample ou dicts (validés, invalides ignorés).
        config: Seuil d'écart et inclusion des bots.

    Returns:
        Rounds triés par joueur, serveur, début.
    """
    valid = validate_samples(samples)
    frame = build_rounds_frame(samples_to_frame(valid), config)
    return rounds_from_frame(frame)
