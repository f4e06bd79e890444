"""Fixtures communes pour les tests.

Ce fichier contient des fixtures partagées : échantillons Polars, store
DuckDB en mémoire (schéma créé) et instant de référence déterministe.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Callable, Iterator
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from typing import Any


def _sanitize_windows_path_for_python_wheels() -> None:
    """Nettoie PATH sous Windows pour éviter les conflits de DLL.

    Sur certaines machines, la présence de répertoires MSYS2/MinGW dans PATH peut
    provoquer des crashes natifs non déterministes dans des extensions Python
    (DuckDB, Polars, etc.).
    """

    if not sys.platform.startswith("win"):
        return

    path_value = os.environ.get("PATH")
    if not path_value:
        return

    parts = [p for p in path_value.split(";") if p]
    filtered = [
        part
        for part in parts
        if "\\msys64\\" not in part.lower()
        and not ("\\mingw" in part.lower() and part.lower().endswith("\\bin"))
    ]
    os.environ["PATH"] = ";".join(filtered)


_sanitize_windows_path_for_python_wheels()

import duckdb
import polars as pl
import pytest

from src.analysis.rounds import SAMPLE_SCHEMA
from src.data.sync.batch_insert import batch_upsert_rows
from src.data.sync.migrations import PLAYER_ROUNDS_COLUMNS, ensure_schema
from src.data.sync.sample_store import SampleStore


def pytest_configure(config: pytest.Config) -> None:
    """Configuration globale pytest.

    Sur Windows, DuckDB peut crasher de manière non déterministe pendant des
    suites de tests longues : on force un mode mono-thread à la connexion.
    """

    if not sys.platform.startswith("win"):
        return

    original_connect = duckdb.connect

    def connect_patched(database=":memory:", read_only: bool = False, config=None, **kwargs):
        merged = {}
        if isinstance(config, dict):
            merged.update(config)
        merged.setdefault("threads", "1")

        conn = original_connect(database, read_only=read_only, config=merged, **kwargs)
        with suppress(duckdb.Error):
            conn.execute("SET threads=1")
        return conn

    duckdb.connect = connect_patched


# =============================================================================
# Instant de référence
# =============================================================================

# Mercredi 12 juin 2024, 20:30 UTC
REFERENCE_NOW = datetime(2024, 6, 12, 20, 30, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Instant courant déterministe (mercredi 20:30 UTC)."""
    return REFERENCE_NOW


@pytest.fixture
def t0() -> datetime:
    """Début de référence des séquences d'échantillons."""
    return datetime(2024, 6, 1, 20, 0, tzinfo=timezone.utc)


# =============================================================================
# Échantillons
# =============================================================================


def make_sample(
    timestamp: datetime,
    *,
    player_name: str = "Alice",
    server_id: str = "srv-1",
    map_name: str = "Wake Island",
    kills: int = 0,
    deaths: int = 0,
    score: int = 0,
    **extra: Any,
) -> dict[str, Any]:
    """Dict d'échantillon (format collecteur)."""
    sample = {
        "timestamp": timestamp,
        "player_name": player_name,
        "server_id": server_id,
        "map_name": map_name,
        "kills": kills,
        "deaths": deaths,
        "score": score,
    }
    sample.update(extra)
    return sample


@pytest.fixture
def sample_factory() -> Callable[..., dict[str, Any]]:
    return make_sample


def samples_frame(samples: list[dict[str, Any]]) -> pl.DataFrame:
    """DataFrame Polars d'échantillons avec le schéma complet."""
    full = []
    for s in samples:
        row = {
            "score": 0,
            "ping": None,
            "is_bot": False,
            "team_label": "",
            "game_type": "",
            "game": "bf1942",
            "session_id": None,
        }
        row.update(s)
        full.append(row)
    return pl.DataFrame(full, schema=SAMPLE_SCHEMA)


@pytest.fixture
def scenario_gap_and_map_change(t0: datetime) -> pl.DataFrame:
    """(t0, k=0), (t0+5m, k=5), (t0+25m, k=0, nouvelle carte)."""
    return samples_frame(
        [
            make_sample(t0, kills=0),
            make_sample(t0 + timedelta(minutes=5), kills=5),
            make_sample(t0 + timedelta(minutes=25), kills=0, map_name="El Alamein"),
        ]
    )


def online_counts_frame(rows: list[tuple[datetime, str, int]]) -> pl.DataFrame:
    """DataFrame timestamp, server_id, players_online, game."""
    return pl.DataFrame(
        {
            "timestamp": [r[0] for r in rows],
            "server_id": [r[1] for r in rows],
            "players_online": [r[2] for r in rows],
            "game": ["bf1942"] * len(rows),
        },
        schema={
            "timestamp": pl.Datetime("us", "UTC"),
            "server_id": pl.Utf8,
            "players_online": pl.Int64,
            "game": pl.Utf8,
        },
    )


# =============================================================================
# DuckDB
# =============================================================================


@pytest.fixture
def memory_conn() -> Iterator[duckdb.DuckDBPyConnection]:
    """Connexion DuckDB en mémoire avec le schéma v2."""
    conn = duckdb.connect(":memory:")
    conn.execute("SET TimeZone = 'UTC'")
    ensure_schema(conn, 2)
    yield conn
    conn.close()


@pytest.fixture
def db_path(tmp_path) -> str:
    """Chemin d'un fichier DuckDB temporaire."""
    return str(tmp_path / "rounds.duckdb")


@pytest.fixture
def seeded_db(db_path: str) -> Callable[..., str]:
    """Écrit échantillons et relevés dans un fichier DuckDB (schéma v2)."""

    def _seed(
        samples: list[dict[str, Any]] | None = None,
        online_counts: list[dict[str, Any]] | None = None,
    ) -> str:
        conn = duckdb.connect(db_path)
        try:
            conn.execute("SET TimeZone = 'UTC'")
            ensure_schema(conn, 2)
            store = SampleStore(conn)
            if samples:
                store.insert_samples(samples)
            if online_counts:
                store.insert_online_counts(online_counts)
        finally:
            conn.close()
        return db_path

    return _seed


@pytest.fixture
def frame_factory() -> Callable[[list[dict[str, Any]]], pl.DataFrame]:
    return samples_frame


@pytest.fixture
def counts_factory() -> Callable[[list[tuple[datetime, str, int]]], pl.DataFrame]:
    return online_counts_frame


# =============================================================================
# Rounds publiés
# =============================================================================


def make_round_row(
    round_id: str,
    start: datetime,
    *,
    minutes: float = 10.0,
    player_name: str = "Alice",
    server_guid: str = "srv-1",
    map_name: str = "Wake Island",
    kills: int = 10,
    deaths: int = 5,
    score: int = 100,
    is_bot: bool = False,
) -> dict[str, Any]:
    """Ligne player_rounds (schéma v2)."""
    return {
        "round_id": round_id,
        "player_name": player_name,
        "server_guid": server_guid,
        "map_name": map_name,
        "round_start_time": start,
        "round_end_time": start + timedelta(minutes=minutes),
        "final_score": score,
        "final_kills": kills,
        "final_deaths": deaths,
        "play_time_minutes": minutes,
        "team_label": "Axis",
        "game_id": "conquest",
        "game": "bf1942",
        "is_bot": is_bot,
        "average_ping": 42.0,
        "created_at": start,
    }


def insert_round_rows(
    conn: duckdb.DuckDBPyConnection, rows: list[dict[str, Any]], version: int = 2
) -> None:
    batch_upsert_rows(conn, "player_rounds", rows, PLAYER_ROUNDS_COLUMNS[version], strict=True)


@pytest.fixture
def round_factory() -> Callable[..., dict[str, Any]]:
    return make_round_row


@pytest.fixture
def insert_rounds() -> Callable[..., None]:
    return insert_round_rows
