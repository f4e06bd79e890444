"""Tests de l'écriture des échantillons bruts (insertion, import JSONL)."""

from __future__ import annotations

import json
from datetime import timedelta

from src.data.sync.sample_store import SampleStore, sample_to_row
from src.data.domain.models.sample import Sample


class TestSampleStore:
    def test_insert_samples_maps_storage_columns(self, memory_conn, t0, sample_factory) -> None:
        store = SampleStore(memory_conn)
        inserted = store.insert_samples(
            [sample_factory(t0, kills=3, team_label="Axis", session_id=42)]
        )
        assert inserted == 1
        row = memory_conn.execute(
            "SELECT server_guid, player_name, kills, team_name, session_id, game FROM player_metrics"
        ).fetchone()
        assert row == ("srv-1", "Alice", 3, "Axis", 42, "unknown")

    def test_invalid_samples_not_inserted(self, memory_conn, t0, sample_factory) -> None:
        store = SampleStore(memory_conn)
        inserted = store.insert_samples([sample_factory(t0), {"player_name": "Bob"}])
        assert inserted == 1

    def test_insert_online_counts(self, memory_conn, t0) -> None:
        store = SampleStore(memory_conn)
        inserted = store.insert_online_counts(
            [
                {"timestamp": t0, "server_id": "srv-1", "players_online": 12, "game": "bf1942"},
                {"timestamp": t0, "server_id": "srv-1", "players_online": -1},
            ]
        )
        assert inserted == 1

    def test_sample_to_row_naming(self, t0) -> None:
        row = sample_to_row(Sample(player_name="Alice", server_id="srv-1", timestamp=t0))
        assert row["server_guid"] == "srv-1"
        assert row["team_name"] == ""
        assert "server_id" not in row


class TestImportJsonl:
    def test_mixed_file(self, memory_conn, t0, tmp_path) -> None:
        path = tmp_path / "samples.jsonl"
        lines = [
            json.dumps(
                {
                    "player_name": "Alice",
                    "server_id": "srv-1",
                    "map_name": "Wake Island",
                    "timestamp": t0.isoformat(),
                    "kills": 2,
                }
            ),
            json.dumps(
                {
                    "server_id": "srv-1",
                    "timestamp": (t0 + timedelta(minutes=1)).isoformat(),
                    "players_online": 20,
                }
            ),
            "{pas du json",
            "",
            json.dumps([1, 2, 3]),
            json.dumps({"player_name": "", "server_id": "srv-1", "timestamp": t0.isoformat()}),
        ]
        path.write_text("\n".join(lines), encoding="utf-8")

        result = SampleStore(memory_conn).import_jsonl(path)

        assert result.samples_inserted == 1
        assert result.online_counts_inserted == 1
        assert result.lines_skipped == 3
        assert memory_conn.execute("SELECT COUNT(*) FROM player_metrics").fetchone()[0] == 1
