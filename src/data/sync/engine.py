"""Moteur de synchronisation incrémentale des rounds.

Ce module contient le RoundSyncEngine qui orchestre tout le pipeline :
player_metrics → Segmentation → Agrégation → player_rounds

Le run est découpé en batches de partitions (joueur, serveur) avec une
courte pause entre deux batches. Chaque batch remplace, dans une même
transaction, les rounds de ses partitions à partir du premier échantillon
relu : un round dont le début a changé (échantillon tardif) ne laisse pas
de doublon. Une erreur interrompt le run sans annuler les batches déjà
publiés ; le run suivant reprend depuis le début de scan du run interrompu.

Usage:
    engine = RoundSyncEngine("data/rounds.duckdb", config=SyncConfig(batch_size=200))

    # Sync incrémentale (watermark - recouvrement)
    result = await engine.sync()
    print(result.to_message())

    # Reconstruction complète
    result = await engine.sync(full=True)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import duckdb
import polars as pl

from src.analysis.rounds import SAMPLE_SCHEMA, build_rounds_frame, rounds_from_frame
from src.config import SegmentationConfig, SyncConfig
from src.data.sync.batch_insert import batch_upsert_rows
from src.data.sync.migrations import (
    PLAYER_ROUNDS_COLUMNS,
    detect_player_rounds_version,
    ensure_schema,
    migrate_player_rounds,
)
from src.data.sync.models import SyncResult, SyncStatus, round_to_row
from src.db import queries
from src.db.connection import open_connection
from src.db.parsers import ensure_utc, parse_iso_utc
from src.db.sql import Query

logger = logging.getLogger(__name__)

# Clé sync_meta du début de scan d'un run non terminé ("" après un run abouti)
RESUME_SCAN_KEY = "resume_scan_start"


# =============================================================================
# RoundSyncEngine
# =============================================================================


class RoundSyncEngine:
    """Moteur de synchronisation échantillons → rounds.

    Un seul run à la fois par instance (lock asyncio) : les appels
    concurrents à sync() sont sérialisés.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        config: SyncConfig | None = None,
        segmentation: SegmentationConfig | None = None,
    ) -> None:
        """
        Args:
            db_path: Chemin vers le fichier .duckdb (ou ":memory:").
            config: Paramètres de batch, recouvrement et version de schéma.
            segmentation: Seuil d'écart des rounds (gap_minutes).
        """
        self._db_path = db_path
        self.config = config or SyncConfig()
        self.segmentation = SegmentationConfig(
            gap_minutes=(segmentation or SegmentationConfig()).gap_minutes,
            include_bots=self.config.include_bots,
        )
        self._connection: duckdb.DuckDBPyConnection | None = None
        self._table_version: int | None = None
        self._lock = asyncio.Lock()

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Connexion DuckDB (lecture/écriture, ouverte à la demande)."""
        if self._connection is None:
            self._connection = open_connection(
                self._db_path, memory_limit=self.config.memory_limit
            )
            self._ensure_schema()
        return self._connection

    @property
    def table_version(self) -> int | None:
        """Version effective de player_rounds sur disque."""
        _ = self.connection
        return self._table_version

    def _ensure_schema(self) -> None:
        """Crée les tables manquantes et migre player_rounds si nécessaire."""
        conn = self._connection
        if conn is None:
            return
        self._table_version = ensure_schema(conn, self.config.schema_version)

    def _fetch_scalar(self, query: Query):
        row = self.connection.execute(query.sql, query.bind()).fetchone()
        return row[0] if row else None

    # -------------------------------------------------------------------------
    # Watermark et métadonnées
    # -------------------------------------------------------------------------

    def get_watermark(self) -> datetime | None:
        """Fin du round publié le plus récent (None si aucun round)."""
        value = self._fetch_scalar(queries.watermark_query())
        return ensure_utc(value) if value is not None else None

    def _oldest_sample_time(self) -> datetime | None:
        value = self._fetch_scalar(queries.oldest_sample_query())
        return ensure_utc(value) if value is not None else None

    def _update_sync_meta(self, key: str, value: str) -> None:
        """Met à jour une entrée dans sync_meta."""
        q = queries.upsert_sync_meta_query(key, value, datetime.now(timezone.utc))
        self.connection.execute(q.sql, q.bind())

    def _get_sync_meta(self, key: str) -> str | None:
        """Récupère une valeur depuis sync_meta."""
        return self._fetch_scalar(queries.get_sync_meta_query(key))

    def _resume_scan_start(self) -> datetime | None:
        """Début de scan d'un run non terminé (None si le dernier run a abouti)."""
        value = self._get_sync_meta(RESUME_SCAN_KEY)
        return parse_iso_utc(value) if value else None

    def get_sync_status(self) -> SyncStatus:
        """Retourne l'état de la dernière synchronisation."""
        processed = self._get_sync_meta("last_sync_processed")
        return SyncStatus(
            schema_version=self.table_version,
            round_count=int(self._fetch_scalar(queries.round_count_query()) or 0),
            watermark=self.get_watermark(),
            last_sync_at=self._get_sync_meta("last_sync_at"),
            last_sync_processed=int(processed) if processed else None,
            last_sync_error=self._get_sync_meta("last_sync_error") or None,
            resume_from=self._resume_scan_start(),
        )

    def migrate(self, target_version: int | None = None) -> bool:
        """Migre player_rounds vers target_version (version configurée par défaut)."""
        target = target_version or self.config.schema_version
        migrated = migrate_player_rounds(self.connection, target)
        self._table_version = detect_player_rounds_version(self.connection)
        return migrated

    # -------------------------------------------------------------------------
    # Synchronisation
    # -------------------------------------------------------------------------

    def _scan_start(self, watermark: datetime | None, full: bool) -> datetime | None:
        """Début de scan : watermark - recouvrement, ou plus tôt si un run a échoué.

        Le watermark est global alors que les batches suivent l'ordre des
        partitions : après un run interrompu, des partitions non publiées
        peuvent être antérieures au watermark. Le début de scan du run
        interrompu reste donc en vigueur jusqu'au prochain run abouti.
        """
        if full or watermark is None:
            scan_start = self._oldest_sample_time()
        else:
            scan_start = watermark - timedelta(minutes=self.config.overlap_minutes)

        resume = self._resume_scan_start()
        if resume is not None and (scan_start is None or resume < scan_start):
            logger.info(f"Reprise du run interrompu depuis {resume.isoformat()}")
            return resume
        return scan_start

    async def sync(self, *, full: bool = False) -> SyncResult:
        """Synchronise les rounds depuis les échantillons.

        Args:
            full: Reconstruit tout depuis l'échantillon le plus ancien.

        Returns:
            SyncResult (error_message renseigné si le run a échoué ; les
            batches publiés avant l'erreur sont conservés et comptés).
        """
        async with self._lock:
            return await self._sync_internal(full=full)

    async def _sync_internal(self, *, full: bool) -> SyncResult:
        """Implémentation interne de la synchronisation."""
        result = SyncResult(started_at=datetime.now(timezone.utc))
        start_time = time.time()

        try:
            result.watermark_before = self.get_watermark()
            scan_start = self._scan_start(result.watermark_before, full)

            if scan_start is None:
                logger.info("Aucun échantillon à synchroniser")
            else:
                mode = "complète" if full else "incrémentale"
                logger.info(f"Sync {mode} depuis {scan_start.isoformat()}")
                self._update_sync_meta(RESUME_SCAN_KEY, scan_start.isoformat())
                await self._process_batches(scan_start, result)

            self._update_sync_meta(RESUME_SCAN_KEY, "")
            self._update_sync_meta("last_sync_at", datetime.now(timezone.utc).isoformat())
            self._update_sync_meta("last_sync_processed", str(result.processed_count))
            self._update_sync_meta("last_sync_error", "")

        except Exception as e:
            result.error_message = str(e) or type(e).__name__
            logger.error(f"Erreur sync après {result.processed_count} rounds: {e}")
            with contextlib.suppress(duckdb.Error):
                self._update_sync_meta("last_sync_error", result.error_message)

        result.finished_at = datetime.now(timezone.utc)
        result.duration = time.time() - start_time
        with contextlib.suppress(duckdb.Error):
            result.watermark_after = self.get_watermark()

        return result

    async def _process_batches(self, scan_start: datetime, result: SyncResult) -> None:
        """Parcourt les partitions par pages de batch_size."""
        include_bots = self.config.include_bots
        batch_size = self.config.batch_size
        anchor_floor = scan_start - timedelta(minutes=self.segmentation.gap_minutes)

        total = int(
            self._fetch_scalar(
                queries.partition_count_query(scan_start, include_bots=include_bots)
            )
            or 0
        )
        offset = 0

        while offset < total:
            batch_start = time.time()
            q = queries.batch_samples_query(
                scan_start,
                anchor_floor,
                include_bots=include_bots,
                limit=batch_size,
                offset=offset,
            )
            rows = self.connection.execute(q.sql, q.bind()).fetchall()
            if not rows:
                break

            count = self._publish_batch(rows, result)
            offset += batch_size
            result.batches += 1
            result.processed_count += count

            elapsed_ms = int((time.time() - batch_start) * 1000)
            logger.info(
                f"Batch {result.batches}: {count} rounds synchronisés "
                f"({min(offset, total)}/{total} partitions) en {elapsed_ms}ms"
            )

            if offset < total and self.config.batch_delay_ms > 0:
                await asyncio.sleep(self.config.batch_delay_ms / 1000)

    def _publish_batch(self, rows: list[tuple], result: SyncResult) -> int:
        """Segmente, agrège et publie un batch ; retourne le nombre de rounds écrits."""
        decoded = queries.SAMPLE_DECODER.decode_all(rows)
        result.skipped_rows += decoded.skipped
        if not decoded.records:
            return 0

        frame = pl.DataFrame(decoded.records, schema=SAMPLE_SCHEMA)
        rounds_df = build_rounds_frame(frame, self.segmentation)
        # Deux rounds démarrant dans la même seconde partagent leur identité
        rounds_df = rounds_df.unique(subset=["round_id"], keep="last", maintain_order=True)

        version = self.config.schema_version
        created_at = datetime.now(timezone.utc)
        round_rows = [round_to_row(r, version, created_at) for r in rounds_from_frame(rounds_df)]
        if not round_rows:
            return 0

        # Par partition, tout round démarrant après le premier échantillon lu est
        # recalculé : un round publié absent du recalcul a changé d'identité
        read_floors = frame.group_by(["player_name", "server_id"]).agg(
            pl.col("timestamp").min().alias("read_floor")
        )
        recomputed_ids = set(rounds_df["round_id"].to_list())

        conn = self.connection
        conn.begin()
        try:
            stale = 0
            for player_name, server_id, read_floor in read_floors.iter_rows():
                q = queries.partition_round_ids_query(player_name, server_id, read_floor)
                for (round_id,) in conn.execute(q.sql, q.bind()).fetchall():
                    if round_id not in recomputed_ids:
                        d = queries.delete_round_query(round_id)
                        conn.execute(d.sql, d.bind())
                        stale += 1
            if stale:
                logger.info(f"{stale} round(s) obsolète(s) supprimé(s)")
            written = batch_upsert_rows(
                conn,
                "player_rounds",
                round_rows,
                PLAYER_ROUNDS_COLUMNS[version],
                strict=True,
            )
            conn.commit()
        except Exception:
            with contextlib.suppress(duckdb.Error):
                conn.rollback()
            raise
        return written

    def close(self) -> None:
        """Ferme la connexion DuckDB."""
        if self._connection:
            with contextlib.suppress(Exception):
                self._connection.close()
            self._connection = None
