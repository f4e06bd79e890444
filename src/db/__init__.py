"""Module de gestion de la base de données."""

from src.db.connection import MEMORY_DB, get_connection, open_connection
from src.db.decoders import ColumnSpec, DecodeResult, RowDecoder
from src.db.parsers import ensure_utc, parse_iso_utc, parse_period_days, to_naive_utc
from src.db.sql import Query, QueryParameterError

__all__ = [
    # connection
    "MEMORY_DB",
    "get_connection",
    "open_connection",
    # sql
    "Query",
    "QueryParameterError",
    # decoders
    "ColumnSpec",
    "DecodeResult",
    "RowDecoder",
    # parsers
    "ensure_utc",
    "parse_iso_utc",
    "parse_period_days",
    "to_naive_utc",
]
