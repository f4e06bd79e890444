"""Tests de l'indicateur d'affluence (historique, classification, timeline)."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.analysis.busy import (
    EXTREMELY_BUSY_TEXT,
    NOT_ENOUGH_DATA_TEXT,
    VERY_QUIET_TEXT,
    absolute_busy_level,
    bucket_online_counts_polars,
    busy_level_rank,
    busy_snapshot_polars,
    classify_busy,
    compute_historical_range,
    compute_hourly_timeline,
    daily_slot_values_polars,
)
from src.config import BusyConfig

# =============================================================================
# Classification
# =============================================================================


class TestClassifyBusy:
    def test_busy_scenario(self) -> None:
        snapshot = classify_busy(48, [10, 12, 15, 11, 14, 50])
        assert snapshot.busy_level == "busy"
        assert snapshot.percentile == 75.0
        assert snapshot.typical_value == pytest.approx(13.0)
        # 48 >= 0.95 × 50 : seul le texte est surchargé
        assert snapshot.busy_text == EXTREMELY_BUSY_TEXT
        assert snapshot.history_days == 6

    def test_historical_range_indices(self) -> None:
        r = compute_historical_range([10, 12, 15, 11, 14, 50])
        assert (r.min, r.q25, r.median, r.q75, r.q90, r.max) == (10, 11, 13.0, 15, 50, 50)
        assert r.average == pytest.approx(112 / 6)

    def test_empty_range_raises(self) -> None:
        with pytest.raises(ValueError):
            compute_historical_range([])

    def test_unknown_below_min_history(self) -> None:
        snapshot = classify_busy(30, [10, 20])
        assert snapshot.busy_level == "unknown"
        assert snapshot.busy_text == NOT_ENOUGH_DATA_TEXT
        assert snapshot.typical_value == 0.0
        assert snapshot.percentiles is None

    def test_very_quiet_text_override(self) -> None:
        snapshot = classify_busy(10, [10, 20, 30, 40])
        assert snapshot.busy_level == "very_quiet"
        assert snapshot.busy_text == VERY_QUIET_TEXT

    def test_zero_minimum_skips_quiet_override(self) -> None:
        snapshot = classify_busy(0, [0, 20, 30, 40])
        assert snapshot.busy_text != VERY_QUIET_TEXT

    def test_moderate(self) -> None:
        snapshot = classify_busy(30, [10, 20, 30, 40, 50])
        assert snapshot.busy_level == "moderate"
        assert snapshot.busy_text == "As busy as usual"

    def test_monotonic_in_current_value(self) -> None:
        history = [3, 8, 12, 12, 17, 21, 25, 40]
        ranks = [busy_level_rank(classify_busy(v, history).busy_level) for v in range(0, 60)]
        assert ranks == sorted(ranks)

    def test_percentiles_property(self) -> None:
        snapshot = classify_busy(20, [10, 20, 30, 40])
        assert set(snapshot.percentiles) == {"p25", "p50", "p75", "p90"}


# =============================================================================
# Historique dédupliqué
# =============================================================================


class TestHistory:
    def test_bucket_dedup_last_value_per_server(self, now, counts_factory) -> None:
        base = now.replace(minute=0)
        df = counts_factory(
            [
                (base + timedelta(minutes=1), "srv-1", 10),
                (base + timedelta(minutes=9), "srv-1", 14),
                (base + timedelta(minutes=5), "srv-2", 6),
                (base + timedelta(minutes=16), "srv-1", 3),
            ]
        )
        buckets = bucket_online_counts_polars(df)
        assert buckets["total_players"].to_list() == [20.0, 3.0]
        assert buckets["bucket_start"][0] == base

    def _same_slot_history(self, now, weeks: int, values: list[int]) -> list:
        rows = []
        for w in range(1, weeks + 1):
            day = now.replace(minute=0) - timedelta(weeks=w)
            for minute, value in zip((0, 15, 30), values):
                rows.append((day + timedelta(minutes=minute), "srv-1", value + w))
        return rows

    def test_daily_slot_values(self, now, counts_factory) -> None:
        df = counts_factory(self._same_slot_history(now, 3, [10, 20, 30]))
        daily = daily_slot_values_polars(df, now.hour, now.isoweekday())
        assert daily.height == 3
        assert daily["value"].to_list() == pytest.approx([23.0, 22.0, 21.0])

    def test_days_with_too_few_buckets_dropped(self, now, counts_factory) -> None:
        day = now.replace(minute=0) - timedelta(weeks=1)
        df = counts_factory([(day, "srv-1", 10)])
        assert daily_slot_values_polars(df, now.hour, now.isoweekday()).is_empty()

    def test_other_weekday_ignored(self, now, counts_factory) -> None:
        rows = [
            (now.replace(minute=m) - timedelta(days=1), "srv-1", 50) for m in (0, 15, 30)
        ]
        df = counts_factory(rows)
        assert daily_slot_values_polars(df, now.hour, now.isoweekday()).is_empty()

    def test_snapshot_from_raw_counts(self, now, counts_factory) -> None:
        df = counts_factory(self._same_slot_history(now, 4, [10, 10, 10]))
        snapshot = busy_snapshot_polars(df, 40, now)
        assert snapshot.busy_level == "very_busy"
        assert snapshot.history_days == 4
        assert snapshot.generated_at == now

    def test_snapshot_unknown_with_short_history(self, now, counts_factory) -> None:
        df = counts_factory(self._same_slot_history(now, 2, [10, 10, 10]))
        snapshot = busy_snapshot_polars(df, 40, now, BusyConfig(min_history_days=3))
        assert snapshot.busy_level == "unknown"


# =============================================================================
# Timeline horaire
# =============================================================================


class TestTimeline:
    def test_absolute_levels(self) -> None:
        assert absolute_busy_level(25) == "very_busy"
        assert absolute_busy_level(15) == "busy"
        assert absolute_busy_level(10) == "moderate"
        assert absolute_busy_level(5) == "quiet"
        assert absolute_busy_level(4.9) == "very_quiet"

    def test_timeline_window_and_weekday_rollover(self, now, counts_factory) -> None:
        # Jeudi 00:xx, une semaine plus tôt
        thursday_midnight = now.replace(hour=0, minute=10) + timedelta(days=1) - timedelta(weeks=1)
        df = counts_factory([(thursday_midnight, "srv-1", 25)])
        timeline = compute_hourly_timeline(df, now)

        assert len(timeline) == 9
        assert [e.hour for e in timeline] == [16, 17, 18, 19, 20, 21, 22, 23, 0]
        assert [e.is_current_hour for e in timeline].index(True) == 4
        last = timeline[-1]
        assert last.day_of_week == 4
        assert last.typical_value == pytest.approx(25.0)
        assert last.busy_level == "very_busy"
        assert timeline[0].typical_value == 0.0

    def test_timeline_empty_frame(self, now, counts_factory) -> None:
        timeline = compute_hourly_timeline(counts_factory([]), now, BusyConfig(timeline_hour_range=1))
        assert len(timeline) == 3
        assert all(e.busy_level == "very_quiet" for e in timeline)
