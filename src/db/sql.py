"""Requêtes paramétrées et substitution centralisée des paramètres.

Toutes les requêtes du projet passent par `Query` : le SQL contient des
placeholders `?` et les valeurs sont fournies à part, typées. Deux sorties :

- `Query.bind()` : paramètres convertis pour le binding natif DuckDB
  (utilisé pour l'exécution) ;
- `Query.render()` : SQL littéral avec valeurs échappées (logs de debug,
  backends sans binding). C'est l'unique routine d'échappement du projet.

Les `?` situés dans un littéral ('...') ou un identifiant ("...") ne sont
pas des placeholders.

Usage:
    q = Query("SELECT * FROM player_rounds WHERE player_name = ? AND round_end_time >= ?",
              ("O'Neil", since))
    conn.execute(q.sql, q.bind())
    logger.debug(q.render())
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from src.db.parsers import to_naive_utc


class QueryParameterError(ValueError):
    """Nombre de paramètres incohérent ou type de paramètre non supporté."""


def split_placeholders(sql: str) -> list[str]:
    """Découpe le SQL autour des placeholders `?` hors littéraux.

    Returns:
        Fragments de SQL ; len(fragments) - 1 == nombre de placeholders.
    """
    fragments: list[str] = []
    current: list[str] = []
    quote: str | None = None
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]
        if quote is not None:
            current.append(ch)
            if ch == quote:
                # Quote doublée = quote échappée, on reste dans le littéral
                if i + 1 < n and sql[i + 1] == quote:
                    current.append(sql[i + 1])
                    i += 2
                    continue
                quote = None
        elif ch in ("'", '"'):
            quote = ch
            current.append(ch)
        elif ch == "?":
            fragments.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1

    fragments.append("".join(current))
    return fragments


def format_sql_literal(value: Any) -> str:
    """Formate une valeur Python en littéral SQL échappé.

    - None → NULL
    - bool → TRUE / FALSE
    - int, Decimal → tel quel ; float fini → repr
    - str → entre quotes, quotes doublées
    - datetime → 'YYYY-MM-DD HH:MM:SS[.ffffff]' en UTC
    - date → 'YYYY-MM-DD'

    Raises:
        QueryParameterError: Type non supporté ou float non fini.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise QueryParameterError(f"Valeur flottante non finie: {value}")
        return repr(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, datetime):
        dt = to_naive_utc(value)
        fmt = "%Y-%m-%d %H:%M:%S.%f" if dt.microsecond else "%Y-%m-%d %H:%M:%S"
        return f"'{dt.strftime(fmt)}'"
    if isinstance(value, date):
        return f"'{value.isoformat()}'"
    raise QueryParameterError(f"Type de paramètre non supporté: {type(value).__name__}")


def coerce_parameter(value: Any) -> Any:
    """Convertit une valeur pour le binding DuckDB (mêmes types que format_sql_literal)."""
    if value is None or isinstance(value, (bool, int, str, Decimal)):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise QueryParameterError(f"Valeur flottante non finie: {value}")
        return value
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return value
    raise QueryParameterError(f"Type de paramètre non supporté: {type(value).__name__}")


def substitute_parameters(sql: str, params: Sequence[Any]) -> str:
    """Remplace chaque placeholder `?` par le littéral du paramètre correspondant.

    Raises:
        QueryParameterError: Si le nombre de placeholders diffère du nombre de paramètres.
    """
    fragments = split_placeholders(sql)
    expected = len(fragments) - 1
    if expected != len(params):
        raise QueryParameterError(
            f"{expected} placeholder(s) pour {len(params)} paramètre(s)"
        )

    parts = [fragments[0]]
    for value, fragment in zip(params, fragments[1:]):
        parts.append(format_sql_literal(value))
        parts.append(fragment)
    return "".join(parts)


@dataclass(frozen=True)
class Query:
    """Requête SQL + paramètres positionnels typés."""

    sql: str
    params: tuple[Any, ...] = ()

    @property
    def placeholder_count(self) -> int:
        return len(split_placeholders(self.sql)) - 1

    def bind(self) -> list[Any]:
        """Paramètres prêts pour `conn.execute(sql, params)`."""
        if self.placeholder_count != len(self.params):
            raise QueryParameterError(
                f"{self.placeholder_count} placeholder(s) pour {len(self.params)} paramètre(s)"
            )
        return [coerce_parameter(v) for v in self.params]

    def render(self) -> str:
        """SQL avec paramètres substitués et échappés."""
        return substitute_parameters(self.sql, self.params)
