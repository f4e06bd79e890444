"""
Lectures des rounds et des échantillons joueurs.
(Round and player sample reads)

HOW IT WORKS:
RoundStore encapsule les lectures de player_rounds et player_metrics :
1. Les rounds sont décodés via ROUND_DECODER (colonnes v1 complétées)
2. Les échantillons bruts alimentent le kill rate et les séries de kills
3. Les milestones et la trajectoire sont calculés à partir des rounds lus

Exemple:
    engine = QueryEngine("data/rounds.duckdb")
    store = RoundStore(engine)

    rounds = store.get_player_rounds("Alice", since=now - timedelta(days=30))
    trajectory = store.get_player_trajectory("Alice", now=now)
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

import duckdb
import polars as pl

from src.analysis.milestones import Milestone, detect_milestones_polars, rounds_to_frame
from src.analysis.rounds import SAMPLE_SCHEMA
from src.analysis.stats import (
    KillRateResult,
    KillStreak,
    RoundTotals,
    compute_kill_rate_polars,
    compute_round_totals,
    detect_kill_streaks_polars,
)
from src.analysis.trends import PerformanceTrajectory, build_daily_points_polars, build_trajectory
from src.config import MilestoneConfig, SegmentationConfig, TrendConfig
from src.data.query.engine import QueryEngine
from src.data.sync.migrations import detect_player_rounds_version
from src.db.parsers import ensure_utc
from src.db.queries import (
    ROUND_DECODER,
    SAMPLE_DECODER,
    player_rounds_query,
    player_samples_query,
    server_rounds_query,
)
from src.models import Round

logger = logging.getLogger(__name__)


class RoundStore:
    """
    Lectures des rounds publiés et des échantillons d'un joueur.
    (Published rounds and player samples reads)
    """

    def __init__(
        self,
        engine: QueryEngine,
        *,
        segmentation: SegmentationConfig | None = None,
        milestones: MilestoneConfig | None = None,
        trend: TrendConfig | None = None,
    ) -> None:
        self.engine = engine
        self.segmentation = segmentation or SegmentationConfig()
        self.milestones = milestones or MilestoneConfig()
        self.trend = trend or TrendConfig()

    def _schema_version(self, conn: duckdb.DuckDBPyConnection | None = None) -> int | None:
        if conn is None:
            return self.engine.schema_version()
        return detect_player_rounds_version(conn)

    # =========================================================================
    # Rounds
    # =========================================================================

    def get_player_rounds(
        self,
        player_name: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> list[Round]:
        """
        Rounds d'un joueur ordonnés par fin de round.
        (Player rounds ordered by end time)

        Args:
            player_name: Joueur
            since: Borne basse (incluse) sur round_end_time
            until: Borne haute (exclue) sur round_end_time
            conn: Curseur dédié (analyses concurrentes)

        Returns:
            Liste de Round ; vide si player_rounds n'existe pas encore
        """
        version = self._schema_version(conn)
        if version is None:
            return []
        query = player_rounds_query(player_name, version, since=since, until=until)
        rounds = self.engine.fetch(query, ROUND_DECODER, conn=conn).records
        if not self.segmentation.include_bots:
            rounds = [r for r in rounds if not r.is_bot]
        return rounds

    def get_server_rounds(
        self,
        server_id: str,
        since: datetime,
        *,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> list[Round]:
        """Rounds d'un serveur terminés depuis `since`."""
        version = self._schema_version(conn)
        if version is None:
            return []
        rounds = self.engine.fetch(
            server_rounds_query(server_id, version, since), ROUND_DECODER, conn=conn
        ).records
        if not self.segmentation.include_bots:
            rounds = [r for r in rounds if not r.is_bot]
        return rounds

    def get_player_rounds_frame(
        self,
        player_name: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> pl.DataFrame:
        """Rounds d'un joueur sous forme de DataFrame Polars."""
        return rounds_to_frame(
            self.get_player_rounds(player_name, since=since, until=until, conn=conn)
        )

    def get_player_totals(
        self,
        player_name: str,
        *,
        since: datetime | None = None,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> RoundTotals:
        return compute_round_totals(self.get_player_rounds(player_name, since=since, conn=conn))

    # =========================================================================
    # Échantillons
    # =========================================================================

    def get_player_samples_frame(
        self,
        player_name: str,
        since: datetime,
        *,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> pl.DataFrame:
        """Échantillons bruts d'un joueur (schéma SAMPLE_SCHEMA)."""
        result = self.engine.fetch(
            player_samples_query(player_name, since), SAMPLE_DECODER, conn=conn
        )
        if not result.records:
            return pl.DataFrame(schema=SAMPLE_SCHEMA)
        frame = pl.DataFrame(result.records, schema=SAMPLE_SCHEMA)
        if not self.segmentation.include_bots:
            frame = frame.filter(~pl.col("is_bot"))
        return frame

    def get_player_kill_rate(self, player_name: str, since: datetime) -> KillRateResult:
        """Kill rate par deltas d'échantillons depuis `since`."""
        return compute_kill_rate_polars(self.get_player_samples_frame(player_name, since))

    def get_player_kill_streaks(
        self,
        player_name: str,
        since: datetime,
        *,
        min_streak: int = 5,
    ) -> list[KillStreak]:
        frame = self.get_player_samples_frame(player_name, since)
        return detect_kill_streaks_polars(
            frame, gap_minutes=self.segmentation.gap_minutes, min_streak=min_streak
        )

    # =========================================================================
    # Milestones et trajectoire
    # =========================================================================

    def get_player_milestones(self, player_name: str, metric: str = "kills") -> list[Milestone]:
        """
        Paliers franchis sur tout l'historique du joueur.
        (Milestones reached over the player's whole history)

        Raises:
            ValueError: Métrique inconnue
        """
        thresholds = self.milestones.thresholds_for(metric)
        frame = self.get_player_rounds_frame(player_name)
        milestones = detect_milestones_polars(frame, thresholds, metric)
        logger.debug(f"{player_name}: {len(milestones)} milestone(s) {metric}")
        return milestones

    def get_player_trajectory(
        self,
        player_name: str,
        *,
        now: datetime,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> PerformanceTrajectory:
        """Trajectoire (kill rate, K/D, score/min) sur lookback_days jours."""
        now = ensure_utc(now)
        since = now - timedelta(days=self.trend.lookback_days)
        frame = self.get_player_rounds_frame(player_name, since=since, conn=conn)
        daily = build_daily_points_polars(frame, self.trend, now=now)
        return build_trajectory(daily, self.trend)
