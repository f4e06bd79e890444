"""
Module de requêtage analytique avec DuckDB.
(Analytical query module with DuckDB)

Ce module fournit une interface de haut niveau sur le store de rounds
(player_rounds, player_metrics, server_online_counts).

HOW IT WORKS:
1. QueryEngine : Moteur principal qui gère la connexion et les curseurs DuckDB
2. RoundStore : Rounds, échantillons, milestones et trajectoire d'un joueur
3. BusyIndicatorService / ActivityInsightsService : Affluence et prévisions
4. PlayerProgressionService : Progression joueur (sous-analyses parallèles)

Usage:
    from src.data.query import QueryEngine, BusyIndicatorService

    engine = QueryEngine("data/rounds.duckdb")
    busy = BusyIndicatorService(engine)

    # Affluence des serveurs suivis
    indicators = busy.get_server_busy_indicators(["guid-1", "guid-2"])
"""

from src.data.query.activity import (
    ActivityInsightsService,
    ActivityStore,
    BusyIndicatorService,
    ServerBusyIndicator,
)
from src.data.query.engine import QueryEngine
from src.data.query.progression import PlayerProgression, PlayerProgressionService
from src.data.query.rounds import RoundStore

__all__ = [
    "QueryEngine",
    "RoundStore",
    "ActivityStore",
    "BusyIndicatorService",
    "ServerBusyIndicator",
    "ActivityInsightsService",
    "PlayerProgression",
    "PlayerProgressionService",
]
