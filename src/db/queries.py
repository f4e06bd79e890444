"""Requêtes SQL centralisées du store de rounds.

Chaque requête de lecture est déclarée avec son décodeur : l'ordre des
colonnes du SELECT correspond exactement à celui du RowDecoder.
Les paramètres sont toujours positionnels (`?`) et passés via Query.
"""

from __future__ import annotations

from datetime import datetime

from src.db.decoders import (
    ColumnSpec,
    RowDecoder,
    as_bool,
    as_datetime,
    as_float,
    as_int,
    as_str,
    optional,
    with_default,
)
from src.db.sql import Query
from src.models import Round

# =============================================================================
# Échantillons joueurs
# =============================================================================

SAMPLE_DECODER = RowDecoder(
    "sample",
    (
        ColumnSpec("timestamp", as_datetime),
        ColumnSpec("server_id", as_str),
        ColumnSpec("player_name", as_str),
        ColumnSpec("map_name", with_default(as_str, "")),
        ColumnSpec("kills", as_int),
        ColumnSpec("deaths", as_int),
        ColumnSpec("score", with_default(as_int, 0)),
        ColumnSpec("ping", optional(as_int)),
        ColumnSpec("team_label", with_default(as_str, "")),
        ColumnSpec("game_type", with_default(as_str, "")),
        ColumnSpec("game", with_default(as_str, "unknown")),
        ColumnSpec("is_bot", with_default(as_bool, False)),
        ColumnSpec("session_id", optional(as_int)),
    ),
)

_SAMPLE_SELECT = """
    m.timestamp, m.server_guid, m.player_name, m.map_name,
    m.kills, m.deaths, m.score, m.ping,
    m.team_name, m.game_type, m.game, m.is_bot, m.session_id
"""


def oldest_sample_query() -> Query:
    return Query("SELECT MIN(timestamp) FROM player_metrics")


def partition_count_query(scan_start: datetime, *, include_bots: bool) -> Query:
    sql = """
SELECT COUNT(*) FROM (
    SELECT DISTINCT player_name, server_guid
    FROM player_metrics
    WHERE timestamp >= ?
      AND (? OR NOT COALESCE(is_bot, FALSE))
)
"""
    return Query(sql, (scan_start, include_bots))


def batch_samples_query(
    scan_start: datetime,
    anchor_floor: datetime,
    *,
    include_bots: bool,
    limit: int,
    offset: int,
) -> Query:
    """Échantillons d'un batch de partitions.

    Pour chaque partition, la lecture démarre au plus tôt entre scan_start
    et le début du plus ancien round publié se terminant après anchor_floor,
    afin de reconstruire ce round depuis son premier échantillon.
    """
    sql = f"""
WITH batch AS (
    SELECT player_name, server_guid
    FROM player_metrics
    WHERE timestamp >= ?
      AND (? OR NOT COALESCE(is_bot, FALSE))
    GROUP BY player_name, server_guid
    ORDER BY player_name, server_guid
    LIMIT ? OFFSET ?
),
anchors AS (
    SELECT r.player_name, r.server_guid, MIN(r.round_start_time) AS anchor
    FROM player_rounds r
    JOIN batch b ON b.player_name = r.player_name AND b.server_guid = r.server_guid
    WHERE r.round_end_time >= ?
    GROUP BY r.player_name, r.server_guid
)
SELECT {_SAMPLE_SELECT}
FROM player_metrics m
JOIN batch b ON b.player_name = m.player_name AND b.server_guid = m.server_guid
LEFT JOIN anchors a ON a.player_name = m.player_name AND a.server_guid = m.server_guid
WHERE m.timestamp >= LEAST(COALESCE(a.anchor, ?), ?)
  AND (? OR NOT COALESCE(m.is_bot, FALSE))
ORDER BY m.player_name, m.server_guid, m.timestamp
"""
    return Query(
        sql,
        (
            scan_start,
            include_bots,
            limit,
            offset,
            anchor_floor,
            scan_start,
            scan_start,
            include_bots,
        ),
    )


def player_samples_query(player_name: str, since: datetime) -> Query:
    sql = f"""
SELECT {_SAMPLE_SELECT}
FROM player_metrics m
WHERE m.player_name = ? AND m.timestamp >= ?
ORDER BY m.server_guid, m.timestamp
"""
    return Query(sql, (player_name, since))


# =============================================================================
# Rounds
# =============================================================================

ROUND_DECODER: RowDecoder[Round] = RowDecoder(
    "round",
    (
        ColumnSpec("round_id", as_str),
        ColumnSpec("player_name", as_str),
        ColumnSpec("server_id", as_str),
        ColumnSpec("map_name", with_default(as_str, "")),
        ColumnSpec("start_time", as_datetime),
        ColumnSpec("end_time", as_datetime),
        ColumnSpec("final_kills", with_default(as_int, 0)),
        ColumnSpec("final_deaths", with_default(as_int, 0)),
        ColumnSpec("final_score", with_default(as_int, 0)),
        ColumnSpec("play_time_minutes", with_default(as_float, 0.0)),
        ColumnSpec("team_label", with_default(as_str, "")),
        ColumnSpec("game_id", with_default(as_str, "")),
        ColumnSpec("is_bot", with_default(as_bool, False)),
        ColumnSpec("game", with_default(as_str, "unknown")),
        ColumnSpec("average_ping", optional(as_float)),
    ),
    factory=Round,
)


def _round_select(schema_version: int) -> str:
    base = """
    round_id, player_name, server_guid, map_name,
    round_start_time, round_end_time,
    final_kills, final_deaths, final_score, play_time_minutes,
    team_label, game_id"""
    if schema_version >= 2:
        return base + ", is_bot, game, average_ping"
    # v1 : colonnes absentes remplacées par leurs valeurs par défaut
    return base + ", FALSE AS is_bot, 'unknown' AS game, NULL AS average_ping"


def watermark_query() -> Query:
    return Query("SELECT MAX(round_end_time) FROM player_rounds")


def round_count_query() -> Query:
    return Query("SELECT COUNT(*) FROM player_rounds")


def partition_round_ids_query(player_name: str, server_id: str, since: datetime) -> Query:
    """Identifiants des rounds d'une partition démarrant à partir de since."""
    sql = """
SELECT round_id FROM player_rounds
WHERE player_name = ? AND server_guid = ? AND round_start_time >= ?
"""
    return Query(sql, (player_name, server_id, since))


def delete_round_query(round_id: str) -> Query:
    return Query("DELETE FROM player_rounds WHERE round_id = ?", (round_id,))


def player_rounds_query(
    player_name: str,
    schema_version: int,
    *,
    since: datetime | None = None,
    until: datetime | None = None,
) -> Query:
    """Rounds d'un joueur, ordonnés par fin de round."""
    clauses = ["player_name = ?"]
    params: list = [player_name]
    if since is not None:
        clauses.append("round_end_time >= ?")
        params.append(since)
    if until is not None:
        clauses.append("round_end_time < ?")
        params.append(until)
    sql = f"""
SELECT {_round_select(schema_version)}
FROM player_rounds
WHERE {" AND ".join(clauses)}
ORDER BY round_end_time, round_start_time
"""
    return Query(sql, tuple(params))


def server_rounds_query(server_id: str, schema_version: int, since: datetime) -> Query:
    sql = f"""
SELECT {_round_select(schema_version)}
FROM player_rounds
WHERE server_guid = ? AND round_end_time >= ?
ORDER BY player_name, round_start_time
"""
    return Query(sql, (server_id, since))


# =============================================================================
# Joueurs connectés
# =============================================================================

ONLINE_COUNT_DECODER = RowDecoder(
    "online_count",
    (
        ColumnSpec("timestamp", as_datetime),
        ColumnSpec("server_id", as_str),
        ColumnSpec("players_online", as_int),
        ColumnSpec("game", with_default(as_str, "unknown")),
    ),
)


def online_counts_query(
    since: datetime,
    until: datetime | None = None,
    server_ids: list[str] | None = None,
    game: str | None = None,
) -> Query:
    """Relevés server_online_counts sur une fenêtre, filtrables par serveur et jeu."""
    clauses = ["timestamp >= ?"]
    params: list = [since]
    if until is not None:
        clauses.append("timestamp < ?")
        params.append(until)
    if server_ids:
        clauses.append(f"server_guid IN ({', '.join(['?'] * len(server_ids))})")
        params.extend(server_ids)
    if game:
        clauses.append("game = ?")
        params.append(game)
    sql = f"""
SELECT timestamp, server_guid, players_online, game
FROM server_online_counts
WHERE {" AND ".join(clauses)}
ORDER BY timestamp, server_guid
"""
    return Query(sql, tuple(params))


# =============================================================================
# Métadonnées de synchronisation
# =============================================================================


def upsert_sync_meta_query(key: str, value: str, updated_at: datetime) -> Query:
    return Query(
        "INSERT OR REPLACE INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)",
        (key, value, updated_at),
    )


def get_sync_meta_query(key: str) -> Query:
    return Query("SELECT value FROM sync_meta WHERE key = ?", (key,))


# =============================================================================
# Activité courante
# =============================================================================

CURRENT_PLAYERS_DECODER = RowDecoder(
    "current_players",
    (
        ColumnSpec("server_id", as_str),
        ColumnSpec("players", with_default(as_int, 0)),
    ),
)


def current_players_query(
    since: datetime,
    server_ids: list[str] | None = None,
    *,
    include_bots: bool = False,
    game: str | None = None,
) -> Query:
    """Joueurs distincts vus depuis `since`, par serveur."""
    clauses = ["timestamp >= ?", "(? OR NOT COALESCE(is_bot, FALSE))"]
    params: list = [since, include_bots]
    if server_ids:
        clauses.append(f"server_guid IN ({', '.join(['?'] * len(server_ids))})")
        params.extend(server_ids)
    if game:
        clauses.append("game = ?")
        params.append(game)
    sql = f"""
SELECT server_guid, COUNT(DISTINCT player_name) AS players
FROM player_metrics
WHERE {" AND ".join(clauses)}
GROUP BY server_guid
ORDER BY server_guid
"""
    return Query(sql, tuple(params))


# =============================================================================
# Moyennes de référence (tous joueurs)
# =============================================================================

MAP_AVERAGE_DECODER = RowDecoder(
    "map_average",
    (
        ColumnSpec("map_name", with_default(as_str, "")),
        ColumnSpec("avg_kill_rate", with_default(as_float, 0.0)),
        ColumnSpec("avg_kd_ratio", with_default(as_float, 0.0)),
    ),
)

GLOBAL_AVERAGE_DECODER = RowDecoder(
    "global_average",
    (
        ColumnSpec("avg_kill_rate", with_default(as_float, 0.0)),
        ColumnSpec("avg_kd_ratio", with_default(as_float, 0.0)),
        ColumnSpec("avg_score_per_minute", with_default(as_float, 0.0)),
        ColumnSpec("total_players", with_default(as_int, 0)),
    ),
)


def map_averages_query(since: datetime, min_play_minutes: float) -> Query:
    """Moyennes par carte des ratios par round (rounds de plus de min_play_minutes)."""
    sql = """
SELECT
    map_name,
    AVG(final_kills / NULLIF(play_time_minutes, 0)) AS avg_kill_rate,
    AVG(final_kills / NULLIF(final_deaths, 0)) AS avg_kd_ratio
FROM player_rounds
WHERE round_start_time >= ?
  AND play_time_minutes > ?
GROUP BY map_name
ORDER BY map_name
"""
    return Query(sql, (since, min_play_minutes))


def global_averages_query(since: datetime, min_play_minutes: float) -> Query:
    sql = """
SELECT
    AVG(final_kills / NULLIF(play_time_minutes, 0)) AS avg_kill_rate,
    AVG(final_kills / NULLIF(final_deaths, 0)) AS avg_kd_ratio,
    AVG(final_score / NULLIF(play_time_minutes, 0)) AS avg_score_per_minute,
    COUNT(DISTINCT player_name) AS total_players
FROM player_rounds
WHERE round_start_time >= ?
  AND play_time_minutes > ?
"""
    return Query(sql, (since, min_play_minutes))
