"""Tests du moteur de synchronisation incrémentale des rounds.

Teste :
- Reconstruction complète et incrémentale (watermark, recouvrement, ancre)
- Idempotence : aucun doublon entre deux runs
- Erreur en cours de run : les batches déjà publiés sont conservés
- Statut persistant (sync_meta)
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

import src.data.sync.engine as engine_module
from src.config import SyncConfig
from src.data.sync import RoundSyncEngine, SampleStore
from src.data.sync.migrations import detect_player_rounds_version

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def base_samples(t0, sample_factory) -> list[dict]:
    """Alice : 2 rounds, Bob : 1 round, Chris : 1 round, plus un bot."""
    return [
        sample_factory(t0, kills=0),
        sample_factory(t0 + timedelta(minutes=5), kills=5),
        sample_factory(t0 + timedelta(minutes=25), kills=0, map_name="El Alamein"),
        sample_factory(t0 + timedelta(minutes=1), player_name="Bob", kills=1),
        sample_factory(t0 + timedelta(minutes=6), player_name="Bob", kills=4),
        sample_factory(t0 + timedelta(minutes=2), player_name="Chris", kills=0),
        sample_factory(t0 + timedelta(minutes=7), player_name="Chris", kills=2),
        sample_factory(t0 + timedelta(minutes=3), player_name="Bot_1", kills=9, is_bot=True),
    ]


@pytest.fixture
def engine_factory():
    engines: list[RoundSyncEngine] = []

    def _make(db_path: str, **config) -> RoundSyncEngine:
        config.setdefault("batch_delay_ms", 0)
        engine = RoundSyncEngine(db_path, config=SyncConfig(**config))
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()


def _round_ids(engine: RoundSyncEngine) -> list[str]:
    rows = engine.connection.execute(
        "SELECT round_id FROM player_rounds ORDER BY round_id"
    ).fetchall()
    return [r[0] for r in rows]


# =============================================================================
# Synchronisation
# =============================================================================


class TestRoundSync:
    @pytest.mark.asyncio
    async def test_first_sync_builds_all_rounds(self, seeded_db, base_samples, engine_factory) -> None:
        engine = engine_factory(seeded_db(base_samples))
        result = await engine.sync()

        assert result.success
        assert result.processed_count == 4
        assert result.watermark_before is None
        assert len(_round_ids(engine)) == 4

        players = engine.connection.execute(
            "SELECT DISTINCT player_name FROM player_rounds ORDER BY 1"
        ).fetchall()
        assert [p[0] for p in players] == ["Alice", "Bob", "Chris"]

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, seeded_db, base_samples, engine_factory) -> None:
        engine = engine_factory(seeded_db(base_samples))
        await engine.sync()
        first_ids = _round_ids(engine)

        second = await engine.sync()
        assert second.success
        assert _round_ids(engine) == first_ids

        full = await engine.sync(full=True)
        assert full.success
        assert _round_ids(engine) == first_ids

    @pytest.mark.asyncio
    async def test_published_finals(self, seeded_db, base_samples, engine_factory, t0) -> None:
        engine = engine_factory(seeded_db(base_samples))
        await engine.sync()
        row = engine.connection.execute(
            "SELECT final_kills, play_time_minutes, round_start_time FROM player_rounds "
            "WHERE player_name = 'Alice' AND map_name = 'Wake Island'"
        ).fetchone()
        assert row[0] == 5
        assert row[1] == pytest.approx(5.0)
        assert row[2] == t0.replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_bots_published_when_enabled(self, seeded_db, base_samples, engine_factory) -> None:
        engine = engine_factory(seeded_db(base_samples), include_bots=True)
        result = await engine.sync()
        assert result.processed_count == 5

    @pytest.mark.asyncio
    async def test_empty_store(self, seeded_db, engine_factory) -> None:
        engine = engine_factory(seeded_db())
        result = await engine.sync()
        assert result.success
        assert result.processed_count == 0
        assert result.to_message().startswith("✅ Déjà à jour")

    @pytest.mark.asyncio
    async def test_incremental_extends_long_round(
        self, seeded_db, db_path, engine_factory, t0, sample_factory
    ) -> None:
        """Un round plus long que le recouvrement est reconstruit depuis son début."""
        samples = [
            sample_factory(t0 + timedelta(minutes=10 * i), kills=i) for i in range(18)
        ]
        engine = engine_factory(seeded_db(samples), overlap_minutes=30)
        await engine.sync()
        ids_before = _round_ids(engine)
        assert len(ids_before) == 1

        late = t0 + timedelta(minutes=180)
        engine.connection.execute(
            "INSERT INTO player_metrics (timestamp, server_guid, player_name, map_name, kills, deaths) "
            "VALUES (?, 'srv-1', 'Alice', 'Wake Island', 25, 0)",
            [late.replace(tzinfo=None)],
        )
        result = await engine.sync()

        assert result.success
        assert _round_ids(engine) == ids_before
        kills, end = engine.connection.execute(
            "SELECT final_kills, round_end_time FROM player_rounds"
        ).fetchone()
        assert kills == 25
        assert end == late.replace(tzinfo=None)
        assert result.watermark_after > result.watermark_before

    @pytest.mark.asyncio
    async def test_late_sample_replaces_published_round(
        self, seeded_db, engine_factory, t0, sample_factory
    ) -> None:
        """Un échantillon tardif qui avance le début d'un round ne crée pas de doublon."""
        samples = [
            sample_factory(t0 + timedelta(minutes=5), kills=1),
            sample_factory(t0 + timedelta(minutes=10), kills=4),
        ]
        engine = engine_factory(seeded_db(samples))
        await engine.sync()
        assert len(_round_ids(engine)) == 1

        SampleStore(engine.connection).insert_samples([sample_factory(t0, kills=0)])
        result = await engine.sync()

        assert result.success
        rows = engine.connection.execute(
            "SELECT round_start_time, round_end_time, final_kills FROM player_rounds"
        ).fetchall()
        assert rows == [
            (t0.replace(tzinfo=None), (t0 + timedelta(minutes=10)).replace(tzinfo=None), 4)
        ]

    @pytest.mark.asyncio
    async def test_late_sample_keeps_other_partitions(
        self, seeded_db, base_samples, engine_factory, t0, sample_factory
    ) -> None:
        engine = engine_factory(seeded_db(base_samples))
        await engine.sync()
        bob_before = engine.connection.execute(
            "SELECT round_id FROM player_rounds WHERE player_name = 'Bob'"
        ).fetchall()

        SampleStore(engine.connection).insert_samples(
            [sample_factory(t0 - timedelta(minutes=2), player_name="Chris", kills=0)]
        )
        result = await engine.sync()

        assert result.success
        assert len(_round_ids(engine)) == 4
        assert engine.connection.execute(
            "SELECT round_id FROM player_rounds WHERE player_name = 'Bob'"
        ).fetchall() == bob_before
        chris_start = engine.connection.execute(
            "SELECT round_start_time FROM player_rounds WHERE player_name = 'Chris'"
        ).fetchall()
        assert chris_start == [((t0 - timedelta(minutes=2)).replace(tzinfo=None),)]

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_serialized(
        self, seeded_db, base_samples, engine_factory
    ) -> None:
        engine = engine_factory(seeded_db(base_samples))
        results = await asyncio.gather(engine.sync(), engine.sync())
        assert all(r.success for r in results)
        assert len(_round_ids(engine)) == 4

    @pytest.mark.asyncio
    async def test_schema_v1(self, seeded_db, base_samples, engine_factory) -> None:
        engine = engine_factory(seeded_db(base_samples), schema_version=1)
        # seeded_db crée player_rounds en v2 : la version supérieure est conservée
        assert engine.table_version == 2
        result = await engine.sync()
        assert result.success
        assert len(_round_ids(engine)) == 4


# =============================================================================
# Erreurs
# =============================================================================


class TestSyncErrors:
    @pytest.mark.asyncio
    async def test_error_keeps_committed_batches(
        self, seeded_db, base_samples, engine_factory, monkeypatch
    ) -> None:
        engine = engine_factory(seeded_db(base_samples), batch_size=1)
        original = engine_module.batch_upsert_rows
        calls = {"n": 0}

        def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("disque plein")
            return original(*args, **kwargs)

        monkeypatch.setattr("src.data.sync.engine.batch_upsert_rows", flaky)
        result = await engine.sync()

        assert not result.success
        assert result.error_message == "disque plein"
        assert result.processed_count == 2
        assert result.batches == 1
        assert len(_round_ids(engine)) == 2
        assert result.to_message().startswith("❌")

        status = engine.get_sync_status()
        assert status.last_sync_error == "disque plein"
        assert status.round_count == 2

        monkeypatch.undo()
        retry = await engine.sync()
        assert retry.success
        assert len(_round_ids(engine)) == 4
        assert engine.get_sync_status().last_sync_error is None

    @pytest.mark.asyncio
    async def test_retry_publishes_partitions_older_than_watermark(
        self, seeded_db, engine_factory, monkeypatch, t0, sample_factory
    ) -> None:
        """Les partitions non publiées avant l'erreur sont reprises malgré le watermark."""
        day_before = t0 - timedelta(days=1)
        samples = [
            sample_factory(t0, kills=0),
            sample_factory(t0 + timedelta(minutes=5), kills=3),
            sample_factory(day_before, player_name="Bob", kills=0),
            sample_factory(day_before + timedelta(minutes=5), player_name="Bob", kills=2),
        ]
        engine = engine_factory(seeded_db(samples), batch_size=1)
        original = engine_module.batch_upsert_rows
        calls = {"n": 0}

        def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("disque plein")
            return original(*args, **kwargs)

        monkeypatch.setattr("src.data.sync.engine.batch_upsert_rows", flaky)
        failed = await engine.sync()

        assert not failed.success
        assert failed.watermark_after == t0 + timedelta(minutes=5)
        assert engine.get_sync_status().resume_from == day_before

        monkeypatch.undo()
        retry = await engine.sync()

        assert retry.success
        players = engine.connection.execute(
            "SELECT DISTINCT player_name FROM player_rounds ORDER BY 1"
        ).fetchall()
        assert [p[0] for p in players] == ["Alice", "Bob"]
        status = engine.get_sync_status()
        assert status.resume_from is None
        assert status.to_dict()["resume_from"] is None

    @pytest.mark.asyncio
    async def test_failed_retry_keeps_resume_point(
        self, seeded_db, base_samples, engine_factory, monkeypatch, t0
    ) -> None:
        engine = engine_factory(seeded_db(base_samples))

        def broken(*args, **kwargs):
            raise RuntimeError("disque plein")

        monkeypatch.setattr("src.data.sync.engine.batch_upsert_rows", broken)
        await engine.sync()
        await engine.sync()

        assert engine.get_sync_status().resume_from == t0
        assert _round_ids(engine) == []


# =============================================================================
# Statut et migration
# =============================================================================


class TestSyncStatus:
    def test_status_before_any_sync(self, seeded_db, engine_factory) -> None:
        engine = engine_factory(seeded_db())
        status = engine.get_sync_status()
        assert status.round_count == 0
        assert status.watermark is None
        assert status.last_sync_at is None
        assert status.schema_version == 2

    @pytest.mark.asyncio
    async def test_status_after_sync(self, seeded_db, base_samples, engine_factory, t0) -> None:
        engine = engine_factory(seeded_db(base_samples))
        await engine.sync()
        status = engine.get_sync_status()
        assert status.round_count == 4
        assert status.last_sync_processed == 4
        assert status.watermark == t0 + timedelta(minutes=25)
        assert status.to_dict()["last_sync_error"] is None

    def test_migrate_v1_store(self, db_path, engine_factory) -> None:
        legacy = engine_factory(db_path, schema_version=1)
        assert legacy.table_version == 1
        legacy.close()

        engine = engine_factory(db_path, schema_version=1)
        assert engine.migrate(2) is True
        assert engine.table_version == 2
        assert detect_player_rounds_version(engine.connection) == 2
