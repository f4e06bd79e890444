"""Modèles de données pour le module de synchronisation.

Contient :
- Résultat d'un run de synchronisation (SyncResult)
- Statut persistant de la synchronisation (SyncStatus)
- Conversion Round → ligne player_rounds selon la version de schéma
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.data.sync.migrations import PLAYER_ROUNDS_COLUMNS
from src.models import Round

# =============================================================================
# Résultats de synchronisation
# =============================================================================


@dataclass
class SyncResult:
    """Résultat d'un run de synchronisation.

    Attributes:
        processed_count: Rounds publiés (batches validés uniquement).
        duration: Durée du run en secondes.
        error_message: Message d'erreur (None si le run a abouti).
        batches: Nombre de batches validés.
        skipped_rows: Échantillons illisibles ignorés.
        watermark_before: Watermark avant le run.
        watermark_after: Watermark après le run.
    """

    processed_count: int = 0
    duration: float = 0.0
    error_message: str | None = None
    batches: int = 0
    skipped_rows: int = 0
    watermark_before: datetime | None = None
    watermark_after: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        """True si le run n'a rencontré aucune erreur."""
        return self.error_message is None

    def to_message(self) -> str:
        """Message de résumé pour les logs et le CLI."""
        duration_str = f" ({self.duration:.1f}s)" if self.duration > 0 else ""

        if not self.success:
            return (
                f"❌ Sync échouée après {self.processed_count} rounds: "
                f"{self.error_message}{duration_str}"
            )

        if self.processed_count == 0:
            return f"✅ Déjà à jour{duration_str}"

        return f"✅ {self.processed_count} rounds synchronisés en {self.batches} batch(es){duration_str}"

    def to_dict(self) -> dict[str, Any]:
        """Convertit en dict pour sérialisation JSON."""
        return {
            "success": self.success,
            "processed_count": self.processed_count,
            "duration": self.duration,
            "error_message": self.error_message,
            "batches": self.batches,
            "skipped_rows": self.skipped_rows,
            "watermark_before": self.watermark_before.isoformat()
            if self.watermark_before
            else None,
            "watermark_after": self.watermark_after.isoformat() if self.watermark_after else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass(frozen=True)
class SyncStatus:
    """État persistant de la synchronisation (table sync_meta + player_rounds)."""

    schema_version: int | None
    round_count: int
    watermark: datetime | None
    last_sync_at: str | None = None
    last_sync_processed: int | None = None
    last_sync_error: str | None = None
    # Début de scan d'un run interrompu, repris au run suivant
    resume_from: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "round_count": self.round_count,
            "watermark": self.watermark.isoformat() if self.watermark else None,
            "last_sync_at": self.last_sync_at,
            "last_sync_processed": self.last_sync_processed,
            "last_sync_error": self.last_sync_error,
            "resume_from": self.resume_from.isoformat() if self.resume_from else None,
        }


# =============================================================================
# Lignes DuckDB
# =============================================================================


def round_to_row(round_: Round, schema_version: int, created_at: datetime) -> dict[str, Any]:
    """Ligne player_rounds pour un Round, limitée aux colonnes de la version.

    Args:
        round_: Round agrégé.
        schema_version: Version du schéma cible (1 ou 2).
        created_at: Horodatage d'écriture.

    Returns:
        Dictionnaire colonne → valeur (noms de stockage : server_guid,
        round_start_time, round_end_time).
    """
    row = {
        "round_id": round_.round_id,
        "player_name": round_.player_name,
        "server_guid": round_.server_id,
        "map_name": round_.map_name,
        "round_start_time": round_.start_time,
        "round_end_time": round_.end_time,
        "final_score": round_.final_score,
        "final_kills": round_.final_kills,
        "final_deaths": round_.final_deaths,
        "play_time_minutes": round_.play_time_minutes,
        "team_label": round_.team_label,
        "game_id": round_.game_id,
        "created_at": created_at,
        "game": round_.game,
        "is_bot": round_.is_bot,
        "average_ping": round_.average_ping,
    }
    return {col: row[col] for col in PLAYER_ROUNDS_COLUMNS[schema_version]}
