"""Décodeurs de lignes déclarés par schéma.

Chaque forme de résultat déclare une liste ordonnée de colonnes
(nom, accesseur typé). L'ordre des colonnes du SELECT et leurs types sont
ainsi un contrat explicite, vérifié à chaque ligne : une ligne dont la
longueur ou une valeur ne correspond pas est rejetée (None) au lieu de
faire échouer tout le lot.

Usage:
    ROUND_DECODER = RowDecoder(
        "round",
        (
            ColumnSpec("round_id", as_str),
            ColumnSpec("final_kills", as_int),
            ColumnSpec("average_ping", optional(as_float)),
        ),
    )
    result = ROUND_DECODER.decode_all(conn.execute(sql).fetchall())
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Generic, TypeVar

from src.db.parsers import ensure_utc, parse_iso_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")
Accessor = Callable[[Any], Any]


# =============================================================================
# Accesseurs typés
# =============================================================================


def _require(value: Any) -> Any:
    if value is None:
        raise ValueError("valeur manquante")
    return value


def as_str(value: Any) -> str:
    return str(_require(value))


def as_int(value: Any) -> int:
    value = _require(value)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    f = float(value)
    if math.isnan(f) or math.isinf(f):
        raise ValueError(f"entier invalide: {value!r}")
    return int(f)


def as_float(value: Any) -> float:
    f = float(_require(value))
    if math.isnan(f) or math.isinf(f):
        raise ValueError(f"flottant invalide: {value!r}")
    return f


def as_bool(value: Any) -> bool:
    value = _require(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        s = value.strip().lower()
        if s in ("true", "1", "yes"):
            return True
        if s in ("false", "0", "no"):
            return False
    raise ValueError(f"booléen invalide: {value!r}")


def as_datetime(value: Any) -> datetime:
    """Datetime UTC (les TIMESTAMP DuckDB naïfs sont en UTC)."""
    value = _require(value)
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        return parse_iso_utc(value)
    raise TypeError(f"datetime invalide: {value!r}")


def as_date(value: Any) -> date:
    value = _require(value)
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise TypeError(f"date invalide: {value!r}")


def optional(accessor: Accessor) -> Accessor:
    """NULL → None, sinon l'accesseur."""

    def _optional(value: Any) -> Any:
        return None if value is None else accessor(value)

    return _optional


def with_default(accessor: Accessor, default: Any) -> Accessor:
    """NULL ou valeur invalide → default (agrégats sur ensembles vides)."""

    def _with_default(value: Any) -> Any:
        if value is None:
            return default
        try:
            return accessor(value)
        except (TypeError, ValueError, OverflowError):
            return default

    return _with_default


# =============================================================================
# Décodeur
# =============================================================================


@dataclass(frozen=True)
class ColumnSpec:
    """Colonne attendue : nom + accesseur typé."""

    name: str
    accessor: Accessor


@dataclass
class DecodeResult(Generic[T]):
    """Lignes décodées et nombre de lignes rejetées."""

    records: list[T] = field(default_factory=list)
    skipped: int = 0


class RowDecoder(Generic[T]):
    """Décode des tuples positionnels selon un schéma déclaré.

    Args:
        name: Nom de la forme de résultat (logs).
        columns: Colonnes ordonnées, dans l'ordre du SELECT.
        factory: Construit l'objet final depuis le dict décodé (dict si None).
    """

    def __init__(
        self,
        name: str,
        columns: Sequence[ColumnSpec],
        factory: Callable[..., T] | None = None,
    ) -> None:
        if not columns:
            raise ValueError("Un décodeur doit déclarer au moins une colonne")
        names = [c.name for c in columns]
        if len(set(names)) != len(names):
            raise ValueError(f"Colonnes dupliquées dans le décodeur {name}")
        self.name = name
        self.columns = tuple(columns)
        self._factory = factory

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def select_list(self, prefix: str = "") -> str:
        """Liste de colonnes pour un SELECT, dans l'ordre du décodeur."""
        return ", ".join(f"{prefix}{c.name}" for c in self.columns)

    def decode(self, row: Sequence[Any]) -> T | dict[str, Any] | None:
        """Décode une ligne ; None si elle est malformée."""
        if row is None or len(row) != len(self.columns):
            return None
        try:
            values = {spec.name: spec.accessor(raw) for spec, raw in zip(self.columns, row)}
            if self._factory is None:
                return values
            return self._factory(**values)
        except (TypeError, ValueError, OverflowError) as e:
            logger.debug(f"[{self.name}] ligne ignorée: {e}")
            return None

    def decode_all(self, rows: Iterable[Sequence[Any]]) -> DecodeResult:
        """Décode toutes les lignes en ignorant les lignes malformées."""
        result: DecodeResult = DecodeResult()
        for row in rows:
            decoded = self.decode(row)
            if decoded is None:
                result.skipped += 1
            else:
                result.records.append(decoded)
        if result.skipped:
            logger.warning(f"[{self.name}] {result.skipped} ligne(s) malformée(s) ignorée(s)")
        return result
