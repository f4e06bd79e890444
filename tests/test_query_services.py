"""Tests des lectures : RoundStore, ActivityStore et services d'activité.

Teste :
- RoundStore : filtres temporels, bots, schéma v1, milestones, kill rate
- ActivityStore.get_current_players() : fenêtre de 5 minutes, bots exclus
- BusyIndicatorService : affluence par serveur et globale
- ActivityInsightsService : prévision et historique des connectés
"""

from __future__ import annotations

from datetime import datetime, timedelta

import duckdb
import pytest

from src.config import SegmentationConfig
from src.data.query.activity import (
    ActivityInsightsService,
    ActivityStore,
    BusyIndicatorService,
)
from src.data.query.engine import QueryEngine
from src.data.query.rounds import RoundStore
from src.data.sync.migrations import ensure_schema
from src.data.sync.sample_store import SampleStore
from src.db.sql import Query


@pytest.fixture
def engine(memory_conn) -> QueryEngine:
    return QueryEngine(connection=memory_conn)


# =============================================================================
# RoundStore
# =============================================================================


class TestRoundStore:
    def test_rounds_ordered_by_end_time(
        self, memory_conn, engine, t0, round_factory, insert_rounds
    ) -> None:
        insert_rounds(
            memory_conn,
            [
                round_factory("B", t0 + timedelta(hours=1)),
                round_factory("A", t0),
                round_factory("C", t0, player_name="Bob"),
            ],
        )
        rounds = RoundStore(engine).get_player_rounds("Alice")
        assert [r.round_id for r in rounds] == ["A", "B"]
        assert rounds[0].server_id == "srv-1"
        assert rounds[0].start_time == t0
        assert rounds[0].average_ping == pytest.approx(42.0)

    def test_since_until_filter_on_end_time(
        self, memory_conn, engine, t0, round_factory, insert_rounds
    ) -> None:
        insert_rounds(
            memory_conn,
            [
                round_factory("A", t0),
                round_factory("B", t0 + timedelta(hours=1)),
                round_factory("C", t0 + timedelta(hours=2)),
            ],
        )
        store = RoundStore(engine)
        # A se termine à t0+10m : inclus par since=t0+10m
        since_ids = [
            r.round_id for r in store.get_player_rounds("Alice", since=t0 + timedelta(minutes=10))
        ]
        assert since_ids == ["A", "B", "C"]
        window = store.get_player_rounds(
            "Alice", since=t0 + timedelta(minutes=11), until=t0 + timedelta(hours=2, minutes=10)
        )
        assert [r.round_id for r in window] == ["B"]

    def test_bot_rounds_filtered_by_default(
        self, memory_conn, engine, t0, round_factory, insert_rounds
    ) -> None:
        insert_rounds(
            memory_conn,
            [round_factory("A", t0), round_factory("B", t0 + timedelta(hours=1), is_bot=True)],
        )
        assert len(RoundStore(engine).get_player_rounds("Alice")) == 1
        with_bots = RoundStore(engine, segmentation=SegmentationConfig(include_bots=True))
        assert len(with_bots.get_player_rounds("Alice")) == 2

    def test_missing_table_returns_empty(self) -> None:
        conn = duckdb.connect(":memory:")
        try:
            store = RoundStore(QueryEngine(connection=conn))
            assert store.get_player_rounds("Alice") == []
            assert store.get_player_totals("Alice").rounds == 0
        finally:
            conn.close()

    def test_v1_table_gets_defaults(self, t0, round_factory, insert_rounds) -> None:
        conn = duckdb.connect(":memory:")
        try:
            conn.execute("SET TimeZone = 'UTC'")
            ensure_schema(conn, 1)
            row = round_factory("A", t0)
            insert_rounds(conn, [row], version=1)
            rounds = RoundStore(QueryEngine(connection=conn)).get_player_rounds("Alice")
            assert len(rounds) == 1
            assert rounds[0].game == "unknown"
            assert rounds[0].is_bot is False
            assert rounds[0].average_ping is None
        finally:
            conn.close()

    def test_totals_and_server_rounds(
        self, memory_conn, engine, t0, round_factory, insert_rounds
    ) -> None:
        insert_rounds(
            memory_conn,
            [
                round_factory("A", t0, kills=10, deaths=5),
                round_factory("B", t0 + timedelta(hours=1), kills=20, deaths=5, minutes=20),
                round_factory("C", t0, player_name="Bob", server_guid="srv-2"),
            ],
        )
        store = RoundStore(engine)
        totals = store.get_player_totals("Alice")
        assert (totals.rounds, totals.kills, totals.deaths) == (2, 30, 10)
        assert totals.kill_rate == pytest.approx(1.0)

        server_rounds = store.get_server_rounds("srv-2", since=t0)
        assert [r.player_name for r in server_rounds] == ["Bob"]

    def test_player_milestones(
        self, memory_conn, engine, t0, round_factory, insert_rounds
    ) -> None:
        insert_rounds(
            memory_conn,
            [
                round_factory("A", t0, kills=800),
                round_factory("B", t0 + timedelta(days=2), kills=400),
            ],
        )
        milestones = RoundStore(engine).get_player_milestones("Alice")
        assert [(m.threshold, m.round_id) for m in milestones] == [(1000, "B")]
        assert milestones[0].days_to_achieve == 2

    def test_unknown_milestone_metric(self, engine) -> None:
        with pytest.raises(ValueError):
            RoundStore(engine).get_player_milestones("Alice", metric="headshots")

    def test_kill_rate_from_samples(self, memory_conn, engine, t0, sample_factory) -> None:
        SampleStore(memory_conn).insert_samples(
            [
                sample_factory(t0, kills=0),
                sample_factory(t0 + timedelta(minutes=2), kills=3),
                sample_factory(t0 + timedelta(minutes=4), kills=6),
                sample_factory(t0 + timedelta(minutes=4), player_name="Bob", kills=50),
            ]
        )
        result = RoundStore(engine).get_player_kill_rate("Alice", since=t0 - timedelta(minutes=1))
        assert result.kill_rate == pytest.approx(1.5)
        assert result.total_kills == 6

    def test_samples_frame_empty(self, engine, t0) -> None:
        frame = RoundStore(engine).get_player_samples_frame("Nobody", since=t0)
        assert frame.is_empty()
        assert "kills" in frame.columns


# =============================================================================
# ActivityStore
# =============================================================================


class TestCurrentPlayers:
    def test_distinct_recent_non_bot_players(
        self, memory_conn, engine, now, sample_factory
    ) -> None:
        recent = now - timedelta(minutes=2)
        SampleStore(memory_conn).insert_samples(
            [
                sample_factory(recent, player_name="Alice"),
                sample_factory(recent + timedelta(seconds=30), player_name="Alice", kills=1),
                sample_factory(recent, player_name="Bob"),
                sample_factory(recent, player_name="Bot_1", is_bot=True),
                sample_factory(now - timedelta(minutes=10), player_name="Chris", server_id="srv-2"),
            ]
        )
        counts = ActivityStore(engine).get_current_players(
            now, server_ids=["srv-1", "srv-2", "srv-3"]
        )
        assert counts == {"srv-1": 2, "srv-2": 0, "srv-3": 0}

    def test_online_counts_frame_is_utc(self, memory_conn, engine, now) -> None:
        SampleStore(memory_conn).insert_online_counts(
            [{"timestamp": now - timedelta(hours=1), "server_id": "srv-1", "players_online": 7}]
        )
        frame = ActivityStore(engine).get_online_counts_frame(now - timedelta(days=1), now)
        assert frame["players_online"].to_list() == [7]
        assert frame.schema["timestamp"].time_zone == "UTC"


# =============================================================================
# Affluence
# =============================================================================


def _weekly_slot_counts(
    now: datetime, weeks: int, value: int, server_id: str = "srv-1"
) -> list[dict]:
    """Trois relevés par semaine passée, dans l'heure de `now`."""
    rows = []
    for w in range(1, weeks + 1):
        day = now.replace(minute=0) - timedelta(weeks=w)
        for minute in (0, 15, 30):
            rows.append(
                {
                    "timestamp": day + timedelta(minutes=minute),
                    "server_id": server_id,
                    "players_online": value,
                    "game": "bf1942",
                }
            )
    return rows


class TestBusyIndicatorService:
    @pytest.fixture
    def busy_db(self, memory_conn, now, sample_factory) -> QueryEngine:
        store = SampleStore(memory_conn)
        store.insert_online_counts(_weekly_slot_counts(now, 4, 5))
        store.insert_samples(
            [
                sample_factory(now - timedelta(minutes=1), player_name=f"Player_{i}")
                for i in range(6)
            ]
        )
        return QueryEngine(connection=memory_conn)

    def test_server_indicators_keep_order(self, busy_db, now) -> None:
        indicators = BusyIndicatorService(busy_db).get_server_busy_indicators(
            ["srv-2", "srv-1"], now=now
        )
        assert [i.server_id for i in indicators] == ["srv-2", "srv-1"]

        unknown, busy = indicators
        assert unknown.busy_indicator.busy_level == "unknown"
        assert busy.busy_indicator.busy_level == "very_busy"
        assert busy.busy_indicator.busy_text == "Extremely busy"
        assert busy.busy_indicator.current_value == 6
        assert busy.busy_indicator.typical_value == pytest.approx(5.0)
        assert busy.busy_indicator.history_days == 4
        assert len(busy.hourly_timeline) == 9

    def test_no_servers(self, busy_db, now) -> None:
        assert BusyIndicatorService(busy_db).get_server_busy_indicators([], now=now) == []

    def test_global_indicator(self, busy_db, now) -> None:
        snapshot = BusyIndicatorService(busy_db).get_busy_indicator(now=now)
        assert snapshot.busy_level == "very_busy"
        assert snapshot.to_dict()["historical_range"]["median"] == pytest.approx(5.0)


# =============================================================================
# Prévisions et historique
# =============================================================================


class TestActivityInsightsService:
    def test_forecast_next_hour(self, memory_conn, engine, now) -> None:
        # Mercredis précédents à 21h : 20, 25, 30 → 25 en moyenne sur 3 jours
        rows = [
            {
                "timestamp": now.replace(hour=21, minute=10) - timedelta(weeks=w),
                "server_id": "srv-1",
                "players_online": value,
            }
            for w, value in ((1, 20), (2, 25), (3, 30))
        ]
        SampleStore(memory_conn).insert_online_counts(rows)

        forecast = ActivityInsightsService(engine).get_forecast(now=now, hours=2)
        assert [(p.hour_of_day, p.day_of_week) for p in forecast] == [(21, 3), (22, 3)]
        assert forecast[0].predicted_value == pytest.approx(25.0)
        assert forecast[0].data_points == 3
        assert forecast[1].predicted_value == 0

    def test_online_history(self, memory_conn, engine, now) -> None:
        SampleStore(memory_conn).insert_online_counts(
            [
                {"timestamp": now - timedelta(hours=2), "server_id": "srv-1", "players_online": 10},
                {"timestamp": now - timedelta(hours=2), "server_id": "srv-2", "players_online": 5},
                {"timestamp": now - timedelta(hours=1), "server_id": "srv-1", "players_online": 12},
                {"timestamp": now - timedelta(days=3), "server_id": "srv-1", "players_online": 90},
            ]
        )
        series, insights = ActivityInsightsService(engine).get_online_history("1d", now=now)
        assert series["total_players"].to_list() == [15, 12]
        assert insights.peak_players == 15
        assert insights.lowest_players == 12
        assert insights.peak_timestamp == now - timedelta(hours=2)

    def test_online_history_invalid_period(self, engine, now) -> None:
        with pytest.raises(ValueError):
            ActivityInsightsService(engine).get_online_history("week", now=now)


class TestQueryEngine:
    def test_requires_path_or_connection(self) -> None:
        with pytest.raises(ValueError):
            QueryEngine()

    def test_scalar_and_polars(
        self, memory_conn, engine, t0, round_factory, insert_rounds
    ) -> None:
        insert_rounds(
            memory_conn, [round_factory("A", t0), round_factory("B", t0, player_name="Bob")]
        )
        assert engine.scalar(Query("SELECT COUNT(*) FROM player_rounds")) == 2
        frame = engine.execute(
            Query(
                "SELECT player_name FROM player_rounds WHERE round_start_time >= ? ORDER BY 1",
                (t0,),
            ),
            return_type="polars",
        )
        assert frame["player_name"].to_list() == ["Alice", "Bob"]
        assert engine.schema_version() == 2

    def test_close_keeps_borrowed_connection(self, memory_conn) -> None:
        engine = QueryEngine(connection=memory_conn)
        engine.close()
        assert memory_conn.execute("SELECT 1").fetchone() == (1,)

    def test_owned_connection(self, tmp_path) -> None:
        with QueryEngine(tmp_path / "x.duckdb") as engine:
            assert engine.schema_version() is None
            assert engine.scalar(Query("SELECT current_setting('TimeZone')")) == "UTC"
