"""Module de synchronisation échantillons → rounds DuckDB.

Ce module gère le pipeline de synchronisation incrémentale :
player_metrics → Segmentation Polars → player_rounds (upsert idempotent)

Architecture:
- migrations.py : DDL versionné (v1/v2) et migration de player_rounds
- batch_insert.py : Insertion/upsert par lots avec coercition des types
- sample_store.py : Écriture des échantillons bruts (import JSONL)
- engine.py : Orchestrateur RoundSyncEngine (watermark, batches, verrou)
- models.py : Modèles de données (SyncResult, SyncStatus)

Usage:
    from src.data.sync import RoundSyncEngine

    engine = RoundSyncEngine("data/rounds.duckdb")

    result = await engine.sync()
    print(result.to_message())
"""

from src.data.sync.engine import RoundSyncEngine
from src.data.sync.migrations import ensure_schema, migrate_player_rounds
from src.data.sync.models import SyncResult, SyncStatus, round_to_row
from src.data.sync.sample_store import ImportResult, SampleStore

__all__ = [
    # Models
    "SyncResult",
    "SyncStatus",
    "round_to_row",
    # Engine
    "RoundSyncEngine",
    # Schema
    "ensure_schema",
    "migrate_player_rounds",
    # Samples
    "ImportResult",
    "SampleStore",
]
