"""Insertions batch DuckDB pour les rounds et les échantillons.

Insertions groupées via `executemany`, avec typage centralisé par CAST_PLAN :
chaque valeur est convertie vers le type DuckDB de sa colonne avant
l'insertion (None si la conversion est impossible).

Deux modes d'erreur :
- strict=False : si le batch échoue, repli ligne par ligne et les lignes
  invalides sont ignorées (import d'échantillons) ;
- strict=True : l'erreur remonte à l'appelant (publication des rounds,
  où une erreur de stockage doit interrompre le run).

Usage :
    from src.data.sync.batch_insert import batch_upsert_rows

    batch_upsert_rows(conn, "player_rounds", rows, PLAYER_ROUNDS_COLUMNS[2], strict=True)
"""

from __future__ import annotations

import contextlib
import logging
import math
from dataclasses import fields
from datetime import datetime
from typing import Any

from src.db.parsers import parse_iso_utc, to_naive_utc

logger = logging.getLogger(__name__)


# =============================================================================
# Plan de cast
# =============================================================================

CAST_PLAN: dict[str, dict[str, str]] = {
    "player_rounds": {
        "round_id": "VARCHAR",
        "player_name": "VARCHAR",
        "server_guid": "VARCHAR",
        "map_name": "VARCHAR",
        "round_start_time": "TIMESTAMP",
        "round_end_time": "TIMESTAMP",
        "final_score": "INTEGER",
        "final_kills": "INTEGER",
        "final_deaths": "INTEGER",
        "play_time_minutes": "DOUBLE",
        "team_label": "VARCHAR",
        "game_id": "VARCHAR",
        "game": "VARCHAR",
        "is_bot": "BOOLEAN",
        "average_ping": "DOUBLE",
        "created_at": "TIMESTAMP",
    },
    "player_metrics": {
        "timestamp": "TIMESTAMP",
        "server_guid": "VARCHAR",
        "player_name": "VARCHAR",
        "map_name": "VARCHAR",
        "score": "INTEGER",
        "kills": "INTEGER",
        "deaths": "INTEGER",
        "ping": "INTEGER",
        "team_name": "VARCHAR",
        "game_type": "VARCHAR",
        "game": "VARCHAR",
        "is_bot": "BOOLEAN",
        "session_id": "BIGINT",
    },
    "server_online_counts": {
        "timestamp": "TIMESTAMP",
        "server_guid": "VARCHAR",
        "players_online": "INTEGER",
        "game": "VARCHAR",
    },
}

# Colonnes textuelles où la chaîne vide est une valeur légitime
_KEEP_EMPTY_STRINGS = {"map_name", "team_label", "team_name", "game_id", "game_type"}


# =============================================================================
# Fonctions de conversion de type Python
# =============================================================================


def _coerce_value(value: Any, duckdb_type: str, *, keep_empty: bool = False) -> Any:
    """Convertit une valeur Python pour correspondre au type DuckDB attendu.

    Args:
        value: Valeur à convertir.
        duckdb_type: Type DuckDB cible (VARCHAR, DOUBLE, INTEGER, etc.).
        keep_empty: Conserver "" pour les VARCHAR.

    Returns:
        Valeur convertie, ou None si conversion impossible.
    """
    if value is None:
        return None

    duckdb_type = duckdb_type.upper()

    try:
        if duckdb_type in ("VARCHAR", "TEXT"):
            s = str(value)
            if s == "" and keep_empty:
                return s
            return None if s in ("nan", "None", "") else s

        if duckdb_type in ("FLOAT", "DOUBLE", "REAL"):
            f = float(value)
            return None if (math.isnan(f) or math.isinf(f)) else f

        if duckdb_type in ("INTEGER", "INT", "BIGINT", "SMALLINT", "TINYINT"):
            f = float(value)
            if math.isnan(f) or math.isinf(f):
                return None
            return int(f)

        if duckdb_type == "BOOLEAN":
            if isinstance(value, bool):
                return value
            if isinstance(value, int | float):
                return bool(value)
            if isinstance(value, str):
                return value.lower() in ("true", "1", "yes")
            return bool(value)

        if duckdb_type == "TIMESTAMP":
            if isinstance(value, datetime):
                return to_naive_utc(value)
            if isinstance(value, str):
                return to_naive_utc(parse_iso_utc(value))
            return None

    except (TypeError, ValueError, OverflowError):
        return None

    return value


def coerce_row_types(
    row_dict: dict[str, Any],
    table_name: str,
) -> dict[str, Any]:
    """Applique le plan de cast à un dictionnaire de row.

    Args:
        row_dict: Dictionnaire colonne→valeur.
        table_name: Nom de la table cible.

    Returns:
        Dictionnaire avec les types corrigés.
    """
    plan = CAST_PLAN.get(table_name, {})
    if not plan:
        return row_dict

    result = {}
    for col, val in row_dict.items():
        if col in plan:
            result[col] = _coerce_value(val, plan[col], keep_empty=col in _KEEP_EMPTY_STRINGS)
        else:
            result[col] = val

    return result


def _rows_to_values(
    rows: list[Any],
    table_name: str,
    columns: list[str],
    apply_cast: bool,
) -> list[tuple]:
    values_list: list[tuple] = []
    for row in rows:
        if hasattr(row, "__dataclass_fields__"):
            row_dict = {f.name: getattr(row, f.name, None) for f in fields(row)}
        elif isinstance(row, dict):
            row_dict = row
        else:
            row_dict = {col: getattr(row, col, None) for col in columns}

        if apply_cast:
            row_dict = coerce_row_types(row_dict, table_name)

        values_list.append(tuple(row_dict.get(col) for col in columns))
    return values_list


def _execute_batch(
    conn: Any,
    sql: str,
    table_name: str,
    values_list: list[tuple],
    *,
    strict: bool,
) -> int:
    if strict:
        conn.executemany(sql, values_list)
        return len(values_list)

    inserted = 0
    try:
        # Transaction : un batch en échec ne laisse aucune ligne partielle
        conn.begin()
        conn.executemany(sql, values_list)
        conn.commit()
        inserted = len(values_list)
    except Exception as e:
        with contextlib.suppress(Exception):
            conn.rollback()
        # Repli ligne par ligne (autocommit) : une ligne invalide ne bloque pas le batch
        logger.debug(f"Batch échoué pour {table_name}, repli ligne par ligne: {e}")
        for values in values_list:
            try:
                conn.execute(sql, values)
                inserted += 1
            except Exception as row_err:
                logger.warning(f"Insert échoué {table_name}: {row_err}")
    return inserted


# =============================================================================
# Insertion batch
# =============================================================================


def batch_insert_rows(
    conn: Any,
    table_name: str,
    rows: list[Any],
    columns: list[str],
    *,
    apply_cast: bool = True,
    strict: bool = False,
) -> int:
    """Insère des rows en batch via executemany.

    Args:
        conn: Connexion DuckDB.
        table_name: Nom de la table.
        rows: Liste de dataclass ou dicts.
        columns: Liste des colonnes à insérer.
        apply_cast: Si True, applique le CAST_PLAN aux valeurs.
        strict: Si True, toute erreur remonte (pas de repli ligne par ligne).

    Returns:
        Nombre de rows insérées.
    """
    if not rows:
        return 0

    values_list = _rows_to_values(rows, table_name, columns, apply_cast)
    placeholders = ", ".join(["?"] * len(columns))
    col_list = ", ".join(columns)
    sql = f"INSERT INTO {table_name} ({col_list}) VALUES ({placeholders})"
    return _execute_batch(conn, sql, table_name, values_list, strict=strict)


def batch_upsert_rows(
    conn: Any,
    table_name: str,
    rows: list[Any],
    columns: list[str],
    *,
    apply_cast: bool = True,
    strict: bool = False,
) -> int:
    """Upsert (INSERT OR REPLACE) des rows en batch, clé primaire de la table.

    Args:
        conn: Connexion DuckDB.
        table_name: Nom de la table.
        rows: Liste de dataclass ou dicts.
        columns: Liste des colonnes à insérer.
        apply_cast: Si True, applique le CAST_PLAN aux valeurs.
        strict: Si True, toute erreur remonte (pas de repli ligne par ligne).

    Returns:
        Nombre de rows upsertées.
    """
    if not rows:
        return 0

    values_list = _rows_to_values(rows, table_name, columns, apply_cast)
    placeholders = ", ".join(["?"] * len(columns))
    col_list = ", ".join(columns)
    sql = f"INSERT OR REPLACE INTO {table_name} ({col_list}) VALUES ({placeholders})"
    return _execute_batch(conn, sql, table_name, values_list, strict=strict)
