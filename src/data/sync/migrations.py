"""Schéma DuckDB et migrations centralisées.

Ce module regroupe la création des tables du store de rounds et la
migration de version de player_rounds, utilisées par le moteur de
synchronisation et le script CLI.

Versions de player_rounds :
- v1 : colonnes de base (identité, bornes, finales, équipe, type de partie)
- v2 : + game, is_bot, average_ping
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.config import SUPPORTED_SCHEMA_VERSIONS

if TYPE_CHECKING:
    import duckdb

logger = logging.getLogger(__name__)


# =============================================================================
# DDL
# =============================================================================

SAMPLES_SCHEMA_DDL = """
-- Échantillons joueurs (produits par le collecteur)
CREATE TABLE IF NOT EXISTS player_metrics (
    timestamp TIMESTAMP NOT NULL,
    server_guid VARCHAR NOT NULL,
    player_name VARCHAR NOT NULL,
    map_name VARCHAR,
    score INTEGER DEFAULT 0,
    kills INTEGER DEFAULT 0,
    deaths INTEGER DEFAULT 0,
    ping INTEGER,
    team_name VARCHAR,
    game_type VARCHAR,
    game VARCHAR DEFAULT 'unknown',
    is_bot BOOLEAN DEFAULT FALSE,
    session_id BIGINT
);

-- Joueurs connectés par serveur (indicateur d'affluence, prévisions)
CREATE TABLE IF NOT EXISTS server_online_counts (
    timestamp TIMESTAMP NOT NULL,
    server_guid VARCHAR NOT NULL,
    players_online INTEGER NOT NULL,
    game VARCHAR DEFAULT 'unknown'
);

-- Métadonnées de synchronisation
CREATE TABLE IF NOT EXISTS sync_meta (
    key VARCHAR PRIMARY KEY,
    value VARCHAR,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

_PLAYER_ROUNDS_BASE_COLUMNS = """
    round_id VARCHAR PRIMARY KEY,
    player_name VARCHAR NOT NULL,
    server_guid VARCHAR NOT NULL,
    map_name VARCHAR,
    round_start_time TIMESTAMP NOT NULL,
    round_end_time TIMESTAMP NOT NULL,
    final_score INTEGER,
    final_kills INTEGER,
    final_deaths INTEGER,
    play_time_minutes DOUBLE,
    team_label VARCHAR,
    game_id VARCHAR,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"""

_PLAYER_ROUNDS_V2_COLUMNS = """,
    game VARCHAR DEFAULT 'unknown',
    is_bot BOOLEAN DEFAULT FALSE,
    average_ping DOUBLE"""


def player_rounds_ddl(schema_version: int, table_name: str = "player_rounds") -> str:
    """DDL de player_rounds pour une version donnée."""
    _check_version(schema_version)
    columns = _PLAYER_ROUNDS_BASE_COLUMNS
    if schema_version >= 2:
        columns += _PLAYER_ROUNDS_V2_COLUMNS
    return f"CREATE TABLE IF NOT EXISTS {table_name} ({columns}\n)"


# Colonnes écrites par le moteur de sync, par version
PLAYER_ROUNDS_COLUMNS: dict[int, list[str]] = {
    1: [
        "round_id",
        "player_name",
        "server_guid",
        "map_name",
        "round_start_time",
        "round_end_time",
        "final_score",
        "final_kills",
        "final_deaths",
        "play_time_minutes",
        "team_label",
        "game_id",
        "created_at",
    ],
}
PLAYER_ROUNDS_COLUMNS[2] = PLAYER_ROUNDS_COLUMNS[1] + ["game", "is_bot", "average_ping"]

PLAYER_METRICS_COLUMNS = [
    "timestamp",
    "server_guid",
    "player_name",
    "map_name",
    "score",
    "kills",
    "deaths",
    "ping",
    "team_name",
    "game_type",
    "game",
    "is_bot",
    "session_id",
]

SERVER_ONLINE_COUNTS_COLUMNS = ["timestamp", "server_guid", "players_online", "game"]


def _check_version(schema_version: int) -> None:
    if schema_version not in SUPPORTED_SCHEMA_VERSIONS:
        raise ValueError(
            f"Version de schéma non supportée: {schema_version} "
            f"(attendu: {SUPPORTED_SCHEMA_VERSIONS})"
        )


# =============================================================================
# Introspection
# =============================================================================


def get_table_columns(conn: duckdb.DuckDBPyConnection, table_name: str) -> set[str]:
    """Retourne l'ensemble des noms de colonnes d'une table.

    Args:
        conn: Connexion DuckDB.
        table_name: Nom de la table.

    Returns:
        Ensemble des noms de colonnes (vide si la table n'existe pas).
    """
    cols = conn.execute(
        "SELECT column_name FROM information_schema.columns "
        "WHERE table_schema = 'main' AND table_name = ?",
        [table_name],
    ).fetchall()
    return {r[0] for r in cols} if cols else set()


def table_exists(conn: duckdb.DuckDBPyConnection, table_name: str) -> bool:
    """Vérifie si une table existe dans le schéma main."""
    result = conn.execute(
        "SELECT COUNT(*) FROM information_schema.tables "
        "WHERE table_schema = 'main' AND table_name = ?",
        [table_name],
    ).fetchone()
    return bool(result and result[0] > 0)


def detect_player_rounds_version(conn: duckdb.DuckDBPyConnection) -> int | None:
    """Version actuelle de player_rounds (None si la table n'existe pas)."""
    cols = get_table_columns(conn, "player_rounds")
    if not cols:
        return None
    if {"game", "is_bot", "average_ping"} <= cols:
        return 2
    return 1


# =============================================================================
# Création / migration
# =============================================================================


def _execute_script(conn: duckdb.DuckDBPyConnection, script: str) -> None:
    for stmt in script.split(";"):
        stmt = stmt.strip()
        if not stmt:
            continue
        try:
            conn.execute(stmt)
        except Exception as e:
            # Objet déjà existant : non fatal
            if "already exists" not in str(e).lower():
                raise


def ensure_schema(conn: duckdb.DuckDBPyConnection, schema_version: int = 2) -> int:
    """Crée les tables manquantes ; player_rounds est créée à la version demandée.

    Une table player_rounds existante en version inférieure est migrée.
    Une table en version supérieure est conservée telle quelle (les colonnes
    supplémentaires prennent leurs valeurs par défaut).

    Returns:
        Version effective de player_rounds après l'appel.
    """
    _check_version(schema_version)
    _execute_script(conn, SAMPLES_SCHEMA_DDL)

    current = detect_player_rounds_version(conn)
    if current is None:
        conn.execute(player_rounds_ddl(schema_version))
        logger.info(f"Table player_rounds créée (v{schema_version})")
        return schema_version

    if current < schema_version:
        migrate_player_rounds(conn, schema_version)
        return schema_version

    return current


def migrate_player_rounds(conn: duckdb.DuckDBPyConnection, target_version: int = 2) -> bool:
    """Migre player_rounds vers target_version.

    Recrée la table au nouveau schéma, recopie les lignes (game='unknown',
    is_bot=false, average_ping=NULL pour les anciennes) puis remplace
    l'ancienne table.

    Returns:
        True si une migration a eu lieu, False si déjà à jour.

    Raises:
        ValueError: Version cible non supportée.
    """
    _check_version(target_version)
    current = detect_player_rounds_version(conn)

    if current is None:
        conn.execute(player_rounds_ddl(target_version))
        logger.info(f"Table player_rounds créée (v{target_version})")
        return False

    if current >= target_version:
        return False

    count = conn.execute("SELECT COUNT(*) FROM player_rounds").fetchone()[0]
    base_cols = ", ".join(PLAYER_ROUNDS_COLUMNS[1])

    conn.execute("DROP TABLE IF EXISTS player_rounds_new")
    conn.execute(player_rounds_ddl(target_version, table_name="player_rounds_new"))
    conn.execute(
        f"INSERT INTO player_rounds_new ({base_cols}, game, is_bot, average_ping) "
        f"SELECT {base_cols}, 'unknown', FALSE, NULL FROM player_rounds"
    )
    conn.execute("DROP TABLE player_rounds")
    conn.execute("ALTER TABLE player_rounds_new RENAME TO player_rounds")

    logger.info(f"✅ player_rounds migrée v{current} → v{target_version} ({count} rounds)")
    return True
