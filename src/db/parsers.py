"""Fonctions de parsing et utilitaires pour la DB."""

import re
from datetime import datetime, timezone
from typing import Optional


def parse_iso_utc(s: str) -> datetime:
    """Parse une date ISO 8601 en datetime UTC.

    Gère le format produit par le collecteur: 2026-01-02T20:18:01.293Z
    ainsi que le format DuckDB/ClickHouse: 2026-01-02 20:18:01

    Args:
        s: Chaîne de date au format ISO 8601.

    Returns:
        datetime en timezone UTC.
    """
    s = s.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Retourne le datetime en UTC (un datetime naïf est supposé UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Convertit en datetime naïf UTC pour les colonnes TIMESTAMP DuckDB.

    DuckDB convertit les datetimes aware selon le fuseau de la session ;
    on stocke donc toujours de l'UTC sans tzinfo.
    """
    if dt is None:
        return None
    return ensure_utc(dt).replace(tzinfo=None)


_PERIOD_RE = re.compile(r"^(?P<days>\d+)d$")


def parse_period_days(period: str) -> int:
    """Parse une période de type "7d" en nombre de jours.

    Raises:
        ValueError: Si le format n'est pas reconnu ou vaut 0 jour.
    """
    m = _PERIOD_RE.match((period or "").strip().lower())
    if not m or int(m.group("days")) <= 0:
        raise ValueError(f"Période invalide: {period!r} (attendu: '<N>d')")
    return int(m.group("days"))
