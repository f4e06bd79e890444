"""Écriture des échantillons bruts dans le store DuckDB.

Le collecteur périodique est externe : ce module sert à l'import de
fichiers JSONL (CLI) et à l'alimentation des tests. Chaque ligne JSON est
soit un échantillon joueur, soit un relevé de joueurs connectés
(présence de la clé players_online).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import duckdb
from pydantic import ValidationError

from src.analysis.rounds import validate_samples
from src.data.domain.models.sample import OnlineCountSample, Sample
from src.data.sync.batch_insert import batch_insert_rows
from src.data.sync.migrations import PLAYER_METRICS_COLUMNS, SERVER_ONLINE_COUNTS_COLUMNS

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    """Compteurs d'un import JSONL."""

    samples_inserted: int = 0
    online_counts_inserted: int = 0
    lines_skipped: int = 0


def sample_to_row(sample: Sample) -> dict[str, Any]:
    """Sample → ligne player_metrics (noms de colonnes de stockage)."""
    return {
        "timestamp": sample.timestamp,
        "server_guid": sample.server_id,
        "player_name": sample.player_name,
        "map_name": sample.map_name,
        "score": sample.score,
        "kills": sample.kills,
        "deaths": sample.deaths,
        "ping": sample.ping,
        "team_name": sample.team_label,
        "game_type": sample.game_type,
        "game": sample.game,
        "is_bot": sample.is_bot,
        "session_id": sample.session_id,
    }


class SampleStore:
    """Écrit player_metrics et server_online_counts sur une connexion existante."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn

    def insert_samples(self, samples: Iterable[Sample | Mapping[str, Any]]) -> int:
        """Valide puis insère des échantillons joueurs.

        Returns:
            Nombre de lignes insérées (les échantillons invalides sont ignorés).
        """
        valid = validate_samples(samples)
        rows = [sample_to_row(s) for s in valid]
        return batch_insert_rows(self._conn, "player_metrics", rows, PLAYER_METRICS_COLUMNS)

    def insert_online_counts(self, counts: Iterable[OnlineCountSample | Mapping[str, Any]]) -> int:
        """Valide puis insère des relevés de joueurs connectés."""
        rows: list[dict[str, Any]] = []
        rejected = 0
        for raw in counts:
            try:
                c = raw if isinstance(raw, OnlineCountSample) else OnlineCountSample.model_validate(raw)
            except ValidationError:
                rejected += 1
                continue
            rows.append(
                {
                    "timestamp": c.timestamp,
                    "server_guid": c.server_id,
                    "players_online": c.players_online,
                    "game": c.game,
                }
            )
        if rejected:
            logger.warning(f"{rejected} relevé(s) de joueurs connectés invalide(s) ignoré(s)")
        return batch_insert_rows(
            self._conn, "server_online_counts", rows, SERVER_ONLINE_COUNTS_COLUMNS
        )

    def import_jsonl(self, path: str | Path) -> ImportResult:
        """Importe un fichier JSONL mixte (échantillons et relevés de connectés)."""
        result = ImportResult()
        samples: list[dict[str, Any]] = []
        counts: list[dict[str, Any]] = []

        with open(path, encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(f"Ligne {line_no} ignorée (JSON invalide): {e}")
                    result.lines_skipped += 1
                    continue
                if not isinstance(payload, dict):
                    result.lines_skipped += 1
                    continue
                if "players_online" in payload:
                    counts.append(payload)
                else:
                    samples.append(payload)

        result.samples_inserted = self.insert_samples(samples)
        result.online_counts_inserted = self.insert_online_counts(counts)
        result.lines_skipped += (len(samples) - result.samples_inserted) + (
            len(counts) - result.online_counts_inserted
        )
        logger.info(
            f"Import {path}: {result.samples_inserted} échantillons, "
            f"{result.online_counts_inserted} relevés, {result.lines_skipped} lignes ignorées"
        )
        return result
