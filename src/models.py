"""Modèles de données (dataclasses) du projet."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any


def safe_ratio(numerator: float, denominator: float) -> float:
    """Division protégée : 0.0 si le dénominateur est nul (ou négatif)."""
    if denominator <= 0:
        return 0.0
    return numerator / denominator


@dataclass(frozen=True)
class Round:
    """Round reconstruit à partir des échantillons d'un joueur sur un serveur.

    Attributes:
        round_id: Identité déterministe (16 caractères hexadécimaux).
        player_name: Nom du joueur.
        server_id: Identifiant (GUID) du serveur.
        map_name: Carte jouée.
        start_time: Premier échantillon du round (UTC).
        end_time: Dernier échantillon du round (UTC).
        final_kills: Maximum des kills observés (>= 0).
        final_deaths: Maximum des morts observées (>= 0).
        final_score: Maximum du score observé.
        play_time_minutes: Durée end_time - start_time en minutes (>= 0).
        team_label: Équipe du dernier échantillon.
        game_id: Type de partie du dernier échantillon.
        is_bot: Drapeau bot du dernier échantillon.
        game: Jeu (ex: bf1942), "unknown" si absent.
        average_ping: Ping moyen du round (None si jamais relevé).
        session_id: Identifiant de session externe utilisé dans l'identité.
        sample_count: Nombre d'échantillons agrégés.
    """

    round_id: str
    player_name: str
    server_id: str
    map_name: str
    start_time: datetime
    end_time: datetime
    final_kills: int
    final_deaths: int
    final_score: int
    play_time_minutes: float
    team_label: str = ""
    game_id: str = ""
    is_bot: bool = False
    game: str = "unknown"
    average_ping: float | None = None
    session_id: int = 0
    sample_count: int = 0

    @property
    def kill_rate(self) -> float:
        """Kills par minute (0 si durée nulle)."""
        return safe_ratio(self.final_kills, self.play_time_minutes)

    @property
    def kd_ratio(self) -> float:
        """Ratio kills / morts (0 si aucune mort)."""
        return safe_ratio(self.final_kills, self.final_deaths)

    @property
    def score_per_minute(self) -> float:
        return safe_ratio(self.final_score, self.play_time_minutes)

    def overlaps(self, other: Round) -> bool:
        """True si les intervalles [start, end] se chevauchent."""
        return self.start_time <= other.end_time and other.start_time <= self.end_time

    def to_dict(self) -> dict[str, Any]:
        return {
            "round_id": self.round_id,
            "player_name": self.player_name,
            "server_id": self.server_id,
            "map_name": self.map_name,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "final_kills": self.final_kills,
            "final_deaths": self.final_deaths,
            "final_score": self.final_score,
            "play_time_minutes": self.play_time_minutes,
            "team_label": self.team_label,
            "game_id": self.game_id,
            "is_bot": self.is_bot,
            "game": self.game,
            "average_ping": self.average_ping,
        }


@dataclass(frozen=True)
class HistoricalBucket:
    """Agrégat historique par créneau (heure, jour ISO) ou par date.

    Attributes:
        value: Valeur moyenne du créneau.
        sample_count: Nombre d'observations (jours) ayant alimenté la moyenne.
        hour_of_day: Heure UTC 0-23 (None pour un bucket journalier).
        day_of_week: Jour ISO 1 (lundi) à 7 (dimanche).
        bucket_date: Date (bucket journalier).
    """

    value: float
    sample_count: int
    hour_of_day: int | None = None
    day_of_week: int | None = None
    bucket_date: date | None = None

    @property
    def slot(self) -> tuple[int | None, int | None]:
        return (self.hour_of_day, self.day_of_week)

    def is_reliable(self, min_samples: int) -> bool:
        return self.sample_count >= min_samples


@dataclass(frozen=True)
class TrendPoint:
    """Point journalier d'une série de performance."""

    date: date
    value: float
    sample_size: int


@dataclass(frozen=True)
class HistoricalRange:
    """Distribution historique d'un créneau (triée, percentiles par index)."""

    min: float
    q25: float
    median: float
    q75: float
    q90: float
    max: float
    average: float

    def to_dict(self) -> dict[str, float]:
        return {
            "min": self.min,
            "q25": self.q25,
            "median": self.median,
            "q75": self.q75,
            "q90": self.q90,
            "max": self.max,
            "average": self.average,
        }


@dataclass(frozen=True)
class BusySnapshot:
    """Affluence courante comparée à l'historique du même créneau.

    Attributes:
        busy_level: very_quiet, quiet, moderate, busy, very_busy ou unknown.
        busy_text: Texte lisible (peut être surchargé aux extrêmes).
        current_value: Valeur courante (joueurs connectés).
        typical_value: Médiane historique (0 si unknown).
        percentile: Percentile atteint (90/75/50/25/10, 0 si unknown).
        historical_range: Distribution historique (None si unknown).
        history_days: Nombre de jours historiques retenus.
    """

    busy_level: str
    busy_text: str
    current_value: float
    typical_value: float
    percentile: float
    historical_range: HistoricalRange | None = None
    history_days: int = 0
    generated_at: datetime | None = None

    @property
    def classification(self) -> str:
        return self.busy_level

    @property
    def percentiles(self) -> dict[str, float] | None:
        """Breakpoints {p25, p50, p75, p90} (None si unknown)."""
        if self.historical_range is None:
            return None
        r = self.historical_range
        return {"p25": r.q25, "p50": r.median, "p75": r.q75, "p90": r.q90}

    def to_dict(self) -> dict[str, Any]:
        return {
            "busy_level": self.busy_level,
            "busy_text": self.busy_text,
            "current_value": self.current_value,
            "typical_value": self.typical_value,
            "percentile": self.percentile,
            "historical_range": (
                self.historical_range.to_dict() if self.historical_range else None
            ),
            "history_days": self.history_days,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }
