"""Gestion des connexions DuckDB.

Le store de rounds (player_rounds, player_metrics, server_online_counts,
sync_meta) vit dans un unique fichier .duckdb. ":memory:" est accepté pour
les tests et les traitements éphémères.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import duckdb

MEMORY_DB = ":memory:"


def _normalize_db_path(db_path: str | Path) -> str:
    """Valide le chemin et crée le dossier parent si nécessaire."""
    if isinstance(db_path, Path):
        db_path = str(db_path)
    if not db_path or not isinstance(db_path, str):
        raise ValueError("db_path doit être un chemin non vide")
    if db_path == MEMORY_DB:
        return db_path
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return db_path


def open_connection(
    db_path: str | Path,
    *,
    read_only: bool = False,
    memory_limit: str | None = None,
) -> duckdb.DuckDBPyConnection:
    """Ouvre une connexion DuckDB configurée.

    Args:
        db_path: Chemin vers le fichier .duckdb ou ":memory:".
        read_only: Ouvre en lecture seule (fichier uniquement).
        memory_limit: Limite mémoire DuckDB (ex: "512MB").

    Returns:
        Connexion DuckDB ouverte (l'appelant la ferme).
    """
    path = _normalize_db_path(db_path)
    if path == MEMORY_DB:
        conn = duckdb.connect(path)
    else:
        conn = duckdb.connect(path, read_only=read_only)

    if memory_limit:
        conn.execute(f"SET memory_limit = '{memory_limit}'")
    conn.execute("SET TimeZone = 'UTC'")
    return conn


@contextmanager
def get_connection(
    db_path: str | Path,
    *,
    read_only: bool = False,
    memory_limit: str | None = None,
) -> Generator[duckdb.DuckDBPyConnection, None, None]:
    """Context manager pour obtenir une connexion DuckDB.

    Exemple:
        with get_connection("data/rounds.duckdb") as con:
            con.execute("SELECT COUNT(*) FROM player_rounds")
    """
    con = open_connection(db_path, read_only=read_only, memory_limit=memory_limit)
    try:
        yield con
    finally:
        con.close()
