"""
Moteur de requête DuckDB en lecture.
(Read-side DuckDB query engine)

HOW IT WORKS:
Ce moteur encapsule les lectures sur le store de rounds et fournit :
1. Une connexion paresseuse, partagée ou possédée
2. Des curseurs dédiés par thread (analyses concurrentes)
3. L'exécution de Query (paramètres positionnels) avec retour typé
4. Le décodage des lignes via un RowDecoder déclaré

Les stores de haut niveau (RoundStore, ActivityStore) et les services
d'analyse passent tous par ce moteur.

Exemple:
    engine = QueryEngine("data/rounds.duckdb")

    rows = engine.execute(
        Query("SELECT player_name, COUNT(*) AS n FROM player_rounds GROUP BY 1"),
    )
    rounds = engine.fetch(player_rounds_query("Alice", 2), ROUND_DECODER)
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal, overload

import duckdb
import polars as pl

from src.data.sync.migrations import detect_player_rounds_version
from src.db.connection import open_connection
from src.db.decoders import DecodeResult, RowDecoder
from src.db.sql import Query

logger = logging.getLogger(__name__)


class QueryEngine:
    """
    Moteur de requête DuckDB pour les lectures analytiques.
    (DuckDB query engine for analytical reads)
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        *,
        connection: duckdb.DuckDBPyConnection | None = None,
        memory_limit: str = "512MB",
        read_only: bool = False,
    ) -> None:
        """
        Initialise le moteur de requête.
        (Initialize query engine)

        Args:
            db_path: Chemin vers le fichier .duckdb (ignoré si connection est fourni)
            connection: Connexion existante à réutiliser (non fermée par close())
            memory_limit: Limite mémoire DuckDB
            read_only: Ouvre le fichier en lecture seule
        """
        if db_path is None and connection is None:
            raise ValueError("db_path ou connection est requis")
        self.db_path = db_path
        self._memory_limit = memory_limit
        self._read_only = read_only
        self._connection = connection
        self._owns_connection = connection is None

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """
        Retourne la connexion DuckDB (lazy loading).
        (Return DuckDB connection with lazy loading)
        """
        if self._connection is None:
            self._connection = open_connection(
                self.db_path,
                read_only=self._read_only,
                memory_limit=self._memory_limit,
            )
        return self._connection

    def cursor(self) -> duckdb.DuckDBPyConnection:
        """Curseur dédié (une requête concurrente par curseur)."""
        cur = self.connection.cursor()
        cur.execute("SET TimeZone = 'UTC'")
        return cur

    def schema_version(self) -> int | None:
        """Version de player_rounds (None si la table n'existe pas)."""
        return detect_player_rounds_version(self.connection)

    @overload
    def execute(
        self,
        query: Query,
        *,
        return_type: Literal["list"] = "list",
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> list[dict[str, Any]]: ...

    @overload
    def execute(
        self,
        query: Query,
        *,
        return_type: Literal["polars"],
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> pl.DataFrame: ...

    @overload
    def execute(
        self,
        query: Query,
        *,
        return_type: Literal["tuples"],
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> list[tuple]: ...

    def execute(
        self,
        query: Query,
        *,
        return_type: Literal["list", "polars", "tuples"] = "list",
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> list[dict[str, Any]] | pl.DataFrame | list[tuple]:
        """
        Exécute une requête et retourne les résultats.
        (Execute query and return results)

        Args:
            query: Requête avec paramètres positionnels
            return_type: Format de retour ("list", "polars", "tuples")
            conn: Curseur à utiliser (connexion principale si None)

        Returns:
            Résultats selon le return_type spécifié
        """
        target = conn if conn is not None else self.connection
        params = query.bind()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"SQL: {query.render()}")
        result = target.execute(query.sql, params)

        if return_type == "polars":
            return result.pl()
        if return_type == "tuples":
            return result.fetchall()
        columns = [desc[0] for desc in result.description]
        return [dict(zip(columns, row)) for row in result.fetchall()]

    def fetch(
        self,
        query: Query,
        decoder: RowDecoder,
        *,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> DecodeResult:
        """Exécute la requête et décode chaque ligne (lignes malformées ignorées)."""
        return decoder.decode_all(self.execute(query, return_type="tuples", conn=conn))

    def scalar(self, query: Query, *, conn: duckdb.DuckDBPyConnection | None = None) -> Any:
        """Première colonne de la première ligne (None si aucune ligne)."""
        rows = self.execute(query, return_type="tuples", conn=conn)
        return rows[0][0] if rows else None

    def close(self) -> None:
        """Ferme la connexion DuckDB. (Close DuckDB connection)"""
        if self._connection is not None and self._owns_connection:
            self._connection.close()
        self._connection = None

    def __enter__(self) -> QueryEngine:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
