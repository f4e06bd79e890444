"""
Modèles d'entrée pour les échantillons produits par le collecteur.
(Input models for sampler snapshots)

HOW IT WORKS:
- Sample : un relevé périodique de l'état d'un joueur sur un serveur
- OnlineCountSample : un relevé du nombre de joueurs connectés sur un serveur

Les deux modèles sont immuables et valident les données brutes (JSON, lignes
DuckDB) avant leur passage dans la segmentation ou l'indicateur d'affluence.
Les horodatages sont toujours normalisés en UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.db.parsers import parse_iso_utc


def _to_utc(v: Any) -> Any:
    if isinstance(v, str):
        return parse_iso_utc(v)
    if isinstance(v, datetime):
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)
    return v


class Sample(BaseModel):
    """
    Relevé instantané d'un joueur sur un serveur.
    (Single player snapshot)

    Les compteurs kills/deaths/score sont cumulatifs sur le round en cours ;
    une baisse signale une remise à zéro (nouveau round).
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    player_name: str = Field(..., min_length=1)
    server_id: str = Field(..., min_length=1)
    map_name: str = ""
    timestamp: datetime
    kills: int = 0
    deaths: int = 0
    score: int = 0
    ping: Annotated[int, Field(ge=0)] | None = None
    is_bot: bool = False

    # Champs optionnels fournis par le collecteur
    team_label: str = ""
    game_type: str = ""
    game: str = "unknown"
    session_id: int | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> Any:
        """Accepte ISO 8601 (avec Z) et datetimes naïfs (interprétés UTC)."""
        return _to_utc(v)

    @field_validator("map_name", "team_label", "game_type", mode="before")
    @classmethod
    def normalize_text(cls, v: Any) -> str:
        """Convertit None en chaîne vide et supprime les espaces."""
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("game", mode="before")
    @classmethod
    def normalize_game(cls, v: Any) -> str:
        """Jeu inconnu si absent."""
        if v is None or not str(v).strip():
            return "unknown"
        return str(v).strip()


class OnlineCountSample(BaseModel):
    """
    Nombre de joueurs connectés sur un serveur à un instant donné.
    (Server online-count snapshot)
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    timestamp: datetime
    server_id: str = Field(..., min_length=1)
    players_online: Annotated[int, Field(ge=0)]
    game: str = "unknown"

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> Any:
        return _to_utc(v)
