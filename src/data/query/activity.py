"""
Lectures d'activité serveur : affluence, prévisions et historique.
(Server activity reads: busy indicator, forecasts and history)

HOW IT WORKS:
1. ActivityStore lit server_online_counts (DataFrame Polars) et les joueurs
   actuellement connectés (player_metrics, bots exclus)
2. BusyIndicatorService classe l'affluence courante par serveur
3. ActivityInsightsService produit prévisions, pics et historique

Les calculs eux-mêmes sont dans src.analysis (busy, forecast,
online_history) ; ce module ne fait que composer lectures et analyses.

Exemple:
    engine = QueryEngine("data/rounds.duckdb")
    busy = BusyIndicatorService(engine)
    for indicator in busy.get_server_busy_indicators(["guid-1", "guid-2"], now=now):
        print(indicator.server_id, indicator.busy_indicator.busy_level)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import polars as pl

from src.analysis.busy import HourlyBusyData, busy_snapshot_polars, compute_hourly_timeline
from src.analysis.forecast import (
    HourlyPrediction,
    SmartInsights,
    build_hourly_pattern_polars,
    build_smart_insights,
    find_peak_slots,
    forecast_next_hours,
    pattern_to_buckets,
)
from src.analysis.online_history import (
    OnlineHistoryInsights,
    compute_insights,
    players_online_series_polars,
    resolve_period,
)
from src.config import BusyConfig, ForecastConfig
from src.data.query.engine import QueryEngine
from src.db.parsers import ensure_utc
from src.db.queries import (
    CURRENT_PLAYERS_DECODER,
    ONLINE_COUNT_DECODER,
    current_players_query,
    online_counts_query,
)
from src.models import BusySnapshot

logger = logging.getLogger(__name__)

ONLINE_COUNTS_SCHEMA = {
    "timestamp": pl.Datetime("us", "UTC"),
    "server_id": pl.Utf8,
    "players_online": pl.Int64,
    "game": pl.Utf8,
}

# Fenêtre de présence d'un joueur "actuellement connecté"
CURRENT_PLAYERS_WINDOW_MINUTES = 5


def _now(now: datetime | None) -> datetime:
    return ensure_utc(now) if now is not None else datetime.now(timezone.utc)


# =============================================================================
# Store
# =============================================================================


class ActivityStore:
    """Lectures server_online_counts et joueurs connectés."""

    def __init__(self, engine: QueryEngine) -> None:
        self.engine = engine

    def get_online_counts_frame(
        self,
        since: datetime,
        until: datetime | None = None,
        *,
        server_ids: list[str] | None = None,
        game: str | None = None,
    ) -> pl.DataFrame:
        """
        Relevés de joueurs connectés sur une fenêtre.
        (Online player counts over a window)

        Returns:
            DataFrame timestamp, server_id, players_online, game
        """
        result = self.engine.fetch(
            online_counts_query(since, until, server_ids, game), ONLINE_COUNT_DECODER
        )
        if not result.records:
            return pl.DataFrame(schema=ONLINE_COUNTS_SCHEMA)
        return pl.DataFrame(result.records, schema=ONLINE_COUNTS_SCHEMA)

    def get_current_players(
        self,
        now: datetime,
        *,
        server_ids: list[str] | None = None,
        game: str | None = None,
        window_minutes: int = CURRENT_PLAYERS_WINDOW_MINUTES,
    ) -> dict[str, int]:
        """Joueurs distincts (hors bots) vus dans les window_minutes dernières minutes, par serveur."""
        since = ensure_utc(now) - timedelta(minutes=window_minutes)
        result = self.engine.fetch(
            current_players_query(since, server_ids, game=game), CURRENT_PLAYERS_DECODER
        )
        counts = {row["server_id"]: row["players"] for row in result.records}
        for server_id in server_ids or []:
            counts.setdefault(server_id, 0)
        return counts


# =============================================================================
# Affluence
# =============================================================================


@dataclass
class ServerBusyIndicator:
    """Affluence d'un serveur et sa timeline horaire."""

    server_id: str
    busy_indicator: BusySnapshot
    hourly_timeline: list[HourlyBusyData] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "server_id": self.server_id,
            "busy_indicator": self.busy_indicator.to_dict(),
            "hourly_timeline": [h.to_dict() for h in self.hourly_timeline],
        }


class BusyIndicatorService:
    """
    Indicateur d'affluence "plus chargé que d'habitude ?".
    (Busy indicator: current vs historical same time slot)
    """

    def __init__(self, engine: QueryEngine, config: BusyConfig | None = None) -> None:
        self.store = ActivityStore(engine)
        self.config = config or BusyConfig()

    def get_server_busy_indicators(
        self,
        server_ids: list[str],
        *,
        now: datetime | None = None,
    ) -> list[ServerBusyIndicator]:
        """
        Affluence de chaque serveur demandé (ordre des server_ids conservé).

        Un serveur sans historique suffisant obtient le niveau "unknown".
        """
        now = _now(now)
        if not server_ids:
            return []

        history = self.store.get_online_counts_frame(
            now - timedelta(days=self.config.lookback_days), now, server_ids=server_ids
        )
        timeline_since = now - timedelta(days=self.config.timeline_lookback_days)
        current = self.store.get_current_players(now, server_ids=server_ids)

        indicators: list[ServerBusyIndicator] = []
        for server_id in server_ids:
            server_history = history.filter(pl.col("server_id") == server_id)
            snapshot = busy_snapshot_polars(
                server_history, current.get(server_id, 0), now, self.config
            )
            timeline = compute_hourly_timeline(
                server_history.filter(pl.col("timestamp") >= timeline_since), now, self.config
            )
            indicators.append(
                ServerBusyIndicator(
                    server_id=server_id, busy_indicator=snapshot, hourly_timeline=timeline
                )
            )
        logger.debug(f"Affluence calculée pour {len(indicators)} serveur(s)")
        return indicators

    def get_busy_indicator(
        self,
        *,
        now: datetime | None = None,
        server_ids: list[str] | None = None,
        game: str | None = None,
    ) -> BusySnapshot:
        """Affluence globale (somme des serveurs) pour le créneau courant."""
        now = _now(now)
        history = self.store.get_online_counts_frame(
            now - timedelta(days=self.config.lookback_days),
            now,
            server_ids=server_ids,
            game=game,
        )
        current = sum(self.store.get_current_players(now, server_ids=server_ids, game=game).values())
        return busy_snapshot_polars(history, current, now, self.config)


# =============================================================================
# Prévisions et historique
# =============================================================================


class ActivityInsightsService:
    """
    Prévisions par créneau (heure × jour ISO) et historique des connectés.
    (Hourly forecasts and online players history)
    """

    def __init__(self, engine: QueryEngine, config: ForecastConfig | None = None) -> None:
        self.store = ActivityStore(engine)
        self.config = config or ForecastConfig()

    def _buckets(self, now: datetime, game: str | None):
        history = self.store.get_online_counts_frame(
            now - timedelta(days=self.config.lookback_days), now, game=game
        )
        return pattern_to_buckets(build_hourly_pattern_polars(history))

    def get_forecast(
        self,
        *,
        now: datetime | None = None,
        hours: int | None = None,
        game: str | None = None,
    ) -> list[HourlyPrediction]:
        """Prévision des prochaines heures (next_hours par défaut)."""
        now = _now(now)
        return forecast_next_hours(self._buckets(now, game), now, hours or self.config.next_hours)

    def get_peak_slots(
        self, *, now: datetime | None = None, game: str | None = None
    ) -> list[HourlyPrediction]:
        """Créneaux les plus chargés des prochaines 24 heures."""
        now = _now(now)
        return find_peak_slots(self._buckets(now, game), now, self.config)

    def get_smart_insights(
        self, *, now: datetime | None = None, game: str | None = None
    ) -> SmartInsights:
        now = _now(now)
        current = sum(self.store.get_current_players(now, game=game).values())
        return build_smart_insights(self._buckets(now, game), now, current, self.config)

    def get_online_history(
        self,
        period: str = "7d",
        *,
        now: datetime | None = None,
        window_days: int = 7,
        server_ids: list[str] | None = None,
        game: str | None = None,
    ) -> tuple[pl.DataFrame, OnlineHistoryInsights]:
        """
        Série agrégée des joueurs connectés et ses insights.
        (Aggregated online players series and its insights)

        Args:
            period: "1d", "7d", "30d"… ou "<N>d"
            now: Fin de la fenêtre
            window_days: Fenêtre de la moyenne glissante
            server_ids: Restriction à certains serveurs
            game: Restriction à un jeu

        Returns:
            (DataFrame timestamp, total_players ; OnlineHistoryInsights)

        Raises:
            ValueError: Période mal formée
        """
        now = _now(now)
        days, interval = resolve_period(period)
        counts = self.store.get_online_counts_frame(
            now - timedelta(days=days), now, server_ids=server_ids, game=game
        )
        series = players_online_series_polars(counts, interval)
        return series, compute_insights(series, interval, window_days)
