#!/usr/bin/env python3
"""Script de synchronisation des rounds joueurs.

Ce script :
1. Importe éventuellement des échantillons bruts (JSONL) dans le store
2. Reconstruit les rounds depuis player_metrics (incrémental par défaut)
3. Publie les rounds dans player_rounds (upsert idempotent, par batches)

Usage:
    # Synchronisation incrémentale
    python scripts/sync_rounds.py --db data/rounds.duckdb

    # Import d'un fichier d'échantillons puis synchronisation
    python scripts/sync_rounds.py --db data/rounds.duckdb --import-samples samples.jsonl

    # Reconstruction complète depuis l'échantillon le plus ancien
    python scripts/sync_rounds.py --db data/rounds.duckdb --full

    # Migration du schéma player_rounds v1 → v2
    python scripts/sync_rounds.py --db data/rounds.duckdb --migrate --schema-version 2

    # État de la dernière synchronisation
    python scripts/sync_rounds.py --db data/rounds.duckdb --status

Variables d'environnement (surchargées par les options) :
    PLAYER_ROUNDS_BATCH_SIZE, PLAYER_ROUNDS_DELAY_MS, PLAYER_ROUNDS_OVERLAP_MINUTES
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Ajouter le répertoire parent au path pour les imports
REPO_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(REPO_ROOT))

from src.config import SUPPORTED_SCHEMA_VERSIONS, SegmentationConfig, SyncConfig
from src.data.sync import RoundSyncEngine, SampleStore

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Synchronise les rounds joueurs depuis les échantillons bruts",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--db", required=True, help="Chemin vers le fichier .duckdb")
    parser.add_argument(
        "--import-samples",
        metavar="FILE",
        help="Fichier JSONL d'échantillons / relevés de joueurs connectés à importer",
    )
    parser.add_argument(
        "--full",
        action="store_true",
        help="Reconstruit tous les rounds depuis l'échantillon le plus ancien",
    )
    parser.add_argument("--batch-size", type=int, help="Partitions (joueur, serveur) par batch")
    parser.add_argument("--delay-ms", type=int, help="Pause entre deux batches (ms)")
    parser.add_argument(
        "--overlap-minutes", type=float, help="Recouvrement sous le watermark (minutes)"
    )
    parser.add_argument(
        "--gap-minutes",
        type=float,
        default=15.0,
        help="Écart ouvrant un nouveau round (défaut: 15)",
    )
    parser.add_argument(
        "--schema-version",
        type=int,
        choices=SUPPORTED_SCHEMA_VERSIONS,
        help="Version du schéma player_rounds (défaut: 2)",
    )
    parser.add_argument(
        "--migrate",
        action="store_true",
        help="Migre player_rounds vers --schema-version puis quitte",
    )
    parser.add_argument(
        "--status", action="store_true", help="Affiche l'état de la dernière synchronisation"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Logs détaillés (DEBUG)")
    return parser


async def run(args: argparse.Namespace) -> int:
    config = SyncConfig.from_env(
        batch_size=args.batch_size,
        batch_delay_ms=args.delay_ms,
        overlap_minutes=args.overlap_minutes,
        schema_version=args.schema_version,
    )
    engine = RoundSyncEngine(
        args.db,
        config=config,
        segmentation=SegmentationConfig(gap_minutes=args.gap_minutes),
    )

    try:
        if args.status:
            print(json.dumps(engine.get_sync_status().to_dict(), indent=2, default=str))
            return 0

        if args.migrate:
            migrated = engine.migrate(args.schema_version)
            version = engine.table_version
            if migrated:
                logger.info(f"player_rounds migrée en v{version}")
            else:
                logger.info(f"player_rounds déjà en v{version}, aucune migration")
            return 0

        if args.import_samples:
            path = Path(args.import_samples)
            if not path.exists():
                logger.error(f"Fichier introuvable: {path}")
                return 1
            imported = SampleStore(engine.connection).import_jsonl(path)
            logger.info(
                f"Import: {imported.samples_inserted} échantillons, "
                f"{imported.online_counts_inserted} relevés, "
                f"{imported.lines_skipped} ligne(s) ignorée(s)"
            )

        result = await engine.sync(full=args.full)
        print(result.to_message())
        return 0 if result.success else 1
    finally:
        engine.close()


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    configure_logging(args.verbose)

    try:
        return asyncio.run(run(args))
    except ValueError as e:
        logger.error(f"Configuration invalide: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrompu par l'utilisateur")
        return 1


if __name__ == "__main__":
    sys.exit(main())
