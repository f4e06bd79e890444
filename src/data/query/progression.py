"""
Analyse de progression d'un joueur.
(Player progression analysis)

HOW IT WORKS:
get_player_progression() lance cinq sous-analyses indépendantes en
parallèle (asyncio.gather) :
1. Progression globale : fenêtre courante vs précédente + prochains paliers
2. Progression par carte : joueur vs moyenne de la carte
3. Trajectoire : régressions journalières (kill rate, K/D, score/min)
4. Activité récente : rounds et temps de jeu des 7 derniers jours
5. Comparaison globale : joueur vs moyenne de tous les joueurs

Chaque sous-analyse lit DuckDB dans l'executor par défaut, sur son propre
curseur, avec un timeout. Une sous-analyse en échec ou hors délai renvoie
son résultat par défaut et apparaît dans unavailable_sections.

Exemple:
    service = PlayerProgressionService(QueryEngine("data/rounds.duckdb"))
    progression = await service.get_player_progression("Alice")
    print(progression.overall.kill_rate_delta.description)
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import duckdb

from src.analysis.milestones import MilestoneProgress, next_milestones
from src.analysis.stats import RoundTotals, compute_round_totals
from src.analysis.trends import PerformanceTrajectory
from src.config import AnalyticsConfig
from src.data.query.engine import QueryEngine
from src.data.query.rounds import RoundStore
from src.db.parsers import ensure_utc
from src.db.queries import (
    GLOBAL_AVERAGE_DECODER,
    MAP_AVERAGE_DECODER,
    global_averages_query,
    map_averages_query,
)
from src.models import Round, safe_ratio

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECENT_ACTIVITY_DAYS = 7

# Seuils de notation (ratio joueur / moyenne), du meilleur au moins bon
MAP_RATING_THRESHOLDS: tuple[tuple[float, str], ...] = (
    (1.5, "exceptional"),
    (1.15, "above_average"),
    (0.85, "average"),
    (0.6, "below_average"),
)
METRIC_RATING_THRESHOLDS: tuple[tuple[float, str], ...] = (
    (1.75, "exceptional"),
    (1.25, "above_average"),
    (0.8, "average"),
    (0.5, "below_average"),
)


# =============================================================================
# Notations
# =============================================================================


def _rate(ratio: float, thresholds: tuple[tuple[float, str], ...]) -> str:
    for threshold, rating in thresholds:
        if ratio >= threshold:
            return rating
    return "poor"


def map_performance_rating(
    player_kill_rate: float,
    average_kill_rate: float,
    player_kd_ratio: float,
    average_kd_ratio: float,
) -> str:
    """Note combinée (moyenne des ratios kill rate et K/D ; ratio 1 si moyenne nulle)."""
    kill_rate_ratio = player_kill_rate / average_kill_rate if average_kill_rate > 0 else 1.0
    kd_ratio_ratio = player_kd_ratio / average_kd_ratio if average_kd_ratio > 0 else 1.0
    return _rate((kill_rate_ratio + kd_ratio_ratio) / 2, MAP_RATING_THRESHOLDS)


def metric_rating(player_value: float, average_value: float) -> str:
    if average_value <= 0:
        return "average"
    return _rate(player_value / average_value, METRIC_RATING_THRESHOLDS)


def activity_level(rounds_last_7_days: int, days_since_last_played: int | None) -> str:
    if days_since_last_played is None or days_since_last_played > RECENT_ACTIVITY_DAYS:
        return "inactive"
    if rounds_last_7_days >= 20:
        return "very_active"
    if rounds_last_7_days >= 10:
        return "active"
    if rounds_last_7_days >= 5:
        return "moderate"
    if rounds_last_7_days >= 1:
        return "light"
    return "inactive"


# =============================================================================
# Résultats
# =============================================================================


@dataclass(frozen=True)
class ProgressionDelta:
    """Valeur courante vs période précédente."""

    current: float = 0.0
    previous: float = 0.0

    @property
    def change(self) -> float:
        return self.current - self.previous

    @property
    def change_percent(self) -> float:
        """Variation en % (0 si la période précédente est nulle)."""
        return safe_ratio(self.change, self.previous) * 100

    @property
    def direction(self) -> str:
        if self.change > 0:
            return "improving"
        if self.change < 0:
            return "declining"
        return "stable"

    @property
    def description(self) -> str:
        if self.direction == "improving":
            return f"+{abs(self.change_percent):.1f}% improvement"
        if self.direction == "declining":
            return f"-{abs(self.change_percent):.1f}% decline"
        return "No significant change"

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "previous": self.previous,
            "change": self.change,
            "change_percent": self.change_percent,
            "direction": self.direction,
            "description": self.description,
        }


@dataclass
class OverallProgression:
    kill_rate_delta: ProgressionDelta = field(default_factory=ProgressionDelta)
    kd_ratio_delta: ProgressionDelta = field(default_factory=ProgressionDelta)
    score_per_minute_delta: ProgressionDelta = field(default_factory=ProgressionDelta)
    totals: RoundTotals = field(default_factory=RoundTotals)
    next_milestones: list[MilestoneProgress] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kill_rate_delta": self.kill_rate_delta.to_dict(),
            "kd_ratio_delta": self.kd_ratio_delta.to_dict(),
            "score_per_minute_delta": self.score_per_minute_delta.to_dict(),
            "total_rounds": self.totals.rounds,
            "total_kills": self.totals.kills,
            "total_deaths": self.totals.deaths,
            "total_score": self.totals.score,
            "total_play_time_minutes": self.totals.play_time_minutes,
            "next_milestones": [
                {
                    "milestone_type": m.milestone_type,
                    "milestone_name": m.milestone_name,
                    "target_value": m.target_value,
                    "current_value": m.current_value,
                    "progress_description": m.progress_description,
                }
                for m in self.next_milestones
            ],
        }


@dataclass
class MapProgression:
    map_name: str
    rounds: int
    play_time_hours: float
    kill_rate_delta: ProgressionDelta
    kd_ratio_delta: ProgressionDelta
    map_average_kill_rate: float
    map_average_kd_ratio: float
    performance_vs_average: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "map_name": self.map_name,
            "rounds": self.rounds,
            "play_time_hours": self.play_time_hours,
            "kill_rate_delta": self.kill_rate_delta.to_dict(),
            "kd_ratio_delta": self.kd_ratio_delta.to_dict(),
            "map_average_kill_rate": self.map_average_kill_rate,
            "map_average_kd_ratio": self.map_average_kd_ratio,
            "performance_vs_average": self.performance_vs_average,
        }


@dataclass
class RecentActivity:
    last_played: datetime | None = None
    days_since_last_played: int | None = None
    rounds_last_7_days: int = 0
    play_time_last_7_days: float = 0.0
    activity_level: str = "inactive"

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_played": self.last_played.isoformat() if self.last_played else None,
            "days_since_last_played": self.days_since_last_played,
            "rounds_last_7_days": self.rounds_last_7_days,
            "play_time_last_7_days": self.play_time_last_7_days,
            "activity_level": self.activity_level,
        }


@dataclass
class GlobalComparison:
    """Joueur vs moyenne de tous les joueurs sur la fenêtre de comparaison."""

    player_kill_rate: float = 0.0
    player_kd_ratio: float = 0.0
    player_score_per_minute: float = 0.0
    average_kill_rate: float = 0.0
    average_kd_ratio: float = 0.0
    average_score_per_minute: float = 0.0
    total_players: int = 0
    kill_rate_rating: str = "average"
    kd_ratio_rating: str = "average"
    score_rating: str = "average"

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class PlayerProgression:
    """Résultat complet de get_player_progression()."""

    player_name: str
    period_start: datetime
    period_end: datetime
    overall: OverallProgression = field(default_factory=OverallProgression)
    maps: list[MapProgression] = field(default_factory=list)
    trajectory: PerformanceTrajectory = field(default_factory=PerformanceTrajectory)
    recent_activity: RecentActivity = field(default_factory=RecentActivity)
    comparison: GlobalComparison = field(default_factory=GlobalComparison)
    unavailable_sections: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.unavailable_sections

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_name": self.player_name,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "overall": self.overall.to_dict(),
            "maps": [m.to_dict() for m in self.maps],
            "trajectory": self.trajectory.to_dict(),
            "recent_activity": self.recent_activity.to_dict(),
            "comparison": self.comparison.to_dict(),
            "unavailable_sections": list(self.unavailable_sections),
        }


def _started_between(rounds: list[Round], start: datetime, end: datetime) -> list[Round]:
    return [r for r in rounds if start <= r.start_time < end]


def _interrupt(cursor: duckdb.DuckDBPyConnection) -> None:
    """Interrompt la requête en cours sur le curseur (sans effet si aucune)."""
    try:
        cursor.interrupt()
    except duckdb.Error as e:
        logger.debug(f"Interruption du curseur impossible: {e}")


# =============================================================================
# Service
# =============================================================================


class PlayerProgressionService:
    """
    Progression d'un joueur : cinq sous-analyses parallèles et tolérantes.
    (Player progression: five parallel, fault-tolerant sub-analyses)
    """

    def __init__(
        self,
        engine: QueryEngine,
        config: AnalyticsConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Args:
            engine: Moteur de lecture (un curseur par sous-analyse)
            config: Fenêtres, timeout, paliers et seuils de tendance
            clock: Horloge injectable (UTC), maintenant par défaut
        """
        self.engine = engine
        self.config = config or AnalyticsConfig()
        self.store = RoundStore(
            engine,
            segmentation=self.config.segmentation,
            milestones=self.config.milestones,
            trend=self.config.trend,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_player_progression(
        self,
        player_name: str,
        *,
        now: datetime | None = None,
    ) -> PlayerProgression:
        """
        Lance les sous-analyses en parallèle et assemble le résultat.
        (Run sub-analyses concurrently and assemble the result)

        Ne lève pas d'exception pour une sous-analyse en échec : la section
        garde sa valeur par défaut et son nom est ajouté à unavailable_sections.
        """
        now = ensure_utc(now) if now is not None else ensure_utc(self._clock())
        progression_cfg = self.config.progression
        result = PlayerProgression(
            player_name=player_name,
            period_start=now - timedelta(days=progression_cfg.comparison_window_days),
            period_end=now,
        )

        # Connexion ouverte avant la répartition sur les threads
        _ = self.engine.connection

        unavailable = result.unavailable_sections
        (
            result.overall,
            result.maps,
            result.trajectory,
            result.recent_activity,
            result.comparison,
        ) = await asyncio.gather(
            self._run(
                "overall",
                lambda c: self._overall(c, player_name, now),
                OverallProgression,
                unavailable,
            ),
            self._run("maps", lambda c: self._maps(c, player_name, now), list, unavailable),
            self._run(
                "trajectory",
                lambda c: self.store.get_player_trajectory(player_name, now=now, conn=c),
                PerformanceTrajectory,
                unavailable,
            ),
            self._run(
                "recent_activity",
                lambda c: self._recent_activity(c, player_name, now),
                RecentActivity,
                unavailable,
            ),
            self._run(
                "comparison",
                lambda c: self._comparison(c, player_name, now),
                GlobalComparison,
                unavailable,
            ),
        )
        if result.unavailable_sections:
            logger.warning(
                f"Progression {player_name} incomplète: {', '.join(result.unavailable_sections)}"
            )
        return result

    async def _run(
        self,
        section: str,
        analysis: Callable[[duckdb.DuckDBPyConnection], T],
        default: Callable[[], T],
        unavailable: list[str],
    ) -> T:
        """Exécute une sous-analyse sur son curseur, avec timeout et repli.

        Hors délai ou annulée, la requête en cours sur le curseur est
        interrompue (le thread de l'executor ne peut pas être arrêté).
        """
        try:
            cursor = self.engine.cursor()
        except Exception as e:
            logger.warning(f"Sous-analyse {section} en échec: {e}")
            unavailable.append(section)
            return default()

        def _task() -> T:
            try:
                return analysis(cursor)
            finally:
                cursor.close()

        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, _task),
                timeout=self.config.progression.query_timeout_seconds,
            )
        except asyncio.TimeoutError:
            _interrupt(cursor)
            logger.warning(f"Sous-analyse {section} hors délai")
        except asyncio.CancelledError:
            _interrupt(cursor)
            raise
        except Exception as e:
            logger.warning(f"Sous-analyse {section} en échec: {e}")
        unavailable.append(section)
        return default()

    # =========================================================================
    # Sous-analyses (synchrones, exécutées dans l'executor)
    # =========================================================================

    def _overall(
        self, conn: duckdb.DuckDBPyConnection, player_name: str, now: datetime
    ) -> OverallProgression:
        cfg = self.config.progression
        current_start = now - timedelta(days=cfg.current_window_days)
        previous_start = now - timedelta(days=cfg.previous_window_days)

        all_rounds = self.store.get_player_rounds(player_name, conn=conn)
        current = compute_round_totals(_started_between(all_rounds, current_start, now))
        previous = compute_round_totals(
            _started_between(all_rounds, previous_start, current_start)
        )
        totals = compute_round_totals(all_rounds)

        return OverallProgression(
            kill_rate_delta=ProgressionDelta(current.kill_rate, previous.kill_rate),
            kd_ratio_delta=ProgressionDelta(current.kd_ratio, previous.kd_ratio),
            score_per_minute_delta=ProgressionDelta(
                current.score_per_minute, previous.score_per_minute
            ),
            totals=totals,
            next_milestones=next_milestones(
                totals.kills, totals.play_time_minutes, self.config.milestones
            ),
        )

    def _maps(
        self, conn: duckdb.DuckDBPyConnection, player_name: str, now: datetime
    ) -> list[MapProgression]:
        cfg = self.config.progression
        current_start = now - timedelta(days=cfg.current_window_days)
        previous_start = now - timedelta(days=cfg.previous_window_days)
        comparison_start = now - timedelta(days=cfg.comparison_window_days)

        rounds = self.store.get_player_rounds(player_name, since=previous_start, conn=conn)
        averages = {
            row["map_name"]: row
            for row in self.engine.fetch(
                map_averages_query(comparison_start, self.config.trend.min_play_minutes),
                MAP_AVERAGE_DECODER,
                conn=conn,
            ).records
        }

        by_map: dict[str, tuple[list[Round], list[Round]]] = {}
        for r in rounds:
            current, previous = by_map.setdefault(r.map_name, ([], []))
            if current_start <= r.start_time < now:
                current.append(r)
            elif previous_start <= r.start_time < current_start:
                previous.append(r)

        progressions: list[MapProgression] = []
        for map_name, (current, previous) in by_map.items():
            if len(current) < cfg.min_map_rounds:
                continue
            cur = compute_round_totals(current)
            prev = compute_round_totals(previous)
            avg = averages.get(map_name, {})
            avg_kill_rate = avg.get("avg_kill_rate", 0.0)
            avg_kd_ratio = avg.get("avg_kd_ratio", 0.0)
            progressions.append(
                MapProgression(
                    map_name=map_name,
                    rounds=cur.rounds,
                    play_time_hours=cur.play_time_minutes / 60,
                    kill_rate_delta=ProgressionDelta(cur.kill_rate, prev.kill_rate),
                    kd_ratio_delta=ProgressionDelta(cur.kd_ratio, prev.kd_ratio),
                    map_average_kill_rate=avg_kill_rate,
                    map_average_kd_ratio=avg_kd_ratio,
                    performance_vs_average=map_performance_rating(
                        cur.kill_rate, avg_kill_rate, cur.kd_ratio, avg_kd_ratio
                    ),
                )
            )
        progressions.sort(key=lambda m: (-m.rounds, m.map_name))
        return progressions

    def _recent_activity(
        self, conn: duckdb.DuckDBPyConnection, player_name: str, now: datetime
    ) -> RecentActivity:
        rounds = [
            r for r in self.store.get_player_rounds(player_name, conn=conn) if r.start_time <= now
        ]
        if not rounds:
            return RecentActivity()

        last_played = max(r.start_time for r in rounds)
        days_since = (now - last_played).days
        recent = _started_between(rounds, now - timedelta(days=RECENT_ACTIVITY_DAYS), now)
        return RecentActivity(
            last_played=last_played,
            days_since_last_played=days_since,
            rounds_last_7_days=len(recent),
            play_time_last_7_days=sum(r.play_time_minutes for r in recent),
            activity_level=activity_level(len(recent), days_since),
        )

    def _comparison(
        self, conn: duckdb.DuckDBPyConnection, player_name: str, now: datetime
    ) -> GlobalComparison:
        since = now - timedelta(days=self.config.progression.comparison_window_days)
        player = compute_round_totals(
            _started_between(
                self.store.get_player_rounds(player_name, since=since, conn=conn), since, now
            )
        )
        records = self.engine.fetch(
            global_averages_query(since, self.config.trend.min_play_minutes),
            GLOBAL_AVERAGE_DECODER,
            conn=conn,
        ).records
        averages = records[0] if records else {}
        avg_kill_rate = averages.get("avg_kill_rate", 0.0)
        avg_kd_ratio = averages.get("avg_kd_ratio", 0.0)
        avg_score = averages.get("avg_score_per_minute", 0.0)

        return GlobalComparison(
            player_kill_rate=player.kill_rate,
            player_kd_ratio=player.kd_ratio,
            player_score_per_minute=player.score_per_minute,
            average_kill_rate=avg_kill_rate,
            average_kd_ratio=avg_kd_ratio,
            average_score_per_minute=avg_score,
            total_players=averages.get("total_players", 0),
            kill_rate_rating=metric_rating(player.kill_rate, avg_kill_rate),
            kd_ratio_rating=metric_rating(player.kd_ratio, avg_kd_ratio),
            score_rating=metric_rating(player.score_per_minute, avg_score),
        )
