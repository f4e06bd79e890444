"""Tests du kill rate par deltas, des ratios et des séries de kills."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.analysis.stats import (
    compute_kill_rate_by_player_polars,
    compute_kill_rate_polars,
    compute_round_totals,
    detect_kill_streaks_polars,
    kd_ratio,
)
from src.models import Round, safe_ratio


def _round(start, minutes: float, kills: int, deaths: int, score: int = 0) -> Round:
    return Round(
        round_id="0" * 16,
        player_name="Alice",
        server_id="srv-1",
        map_name="Wake Island",
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        final_kills=kills,
        final_deaths=deaths,
        final_score=score,
        play_time_minutes=minutes,
    )


# =============================================================================
# Ratios
# =============================================================================


class TestRatios:
    def test_safe_ratio_zero_denominator(self) -> None:
        assert safe_ratio(10, 0) == 0.0

    def test_kd_ratio(self) -> None:
        assert kd_ratio(12, 4) == pytest.approx(3.0)
        assert kd_ratio(12, 0) == 0.0

    def test_round_rates(self, t0) -> None:
        r = _round(t0, 10.0, kills=20, deaths=5, score=300)
        assert r.kill_rate == pytest.approx(2.0)
        assert r.kd_ratio == pytest.approx(4.0)
        assert r.score_per_minute == pytest.approx(30.0)

    def test_zero_minute_round_has_zero_rate(self, t0) -> None:
        assert _round(t0, 0.0, kills=3, deaths=0).kill_rate == 0.0

    def test_round_totals(self, t0) -> None:
        totals = compute_round_totals(
            [
                _round(t0, 10.0, kills=10, deaths=2, score=100),
                _round(t0 + timedelta(hours=1), 20.0, kills=20, deaths=8, score=200),
            ]
        )
        assert totals.rounds == 2
        assert totals.kills == 30
        assert totals.kill_rate == pytest.approx(1.0)
        assert totals.kd_ratio == pytest.approx(3.0)
        assert totals.score_per_minute == pytest.approx(10.0)

    def test_empty_totals(self) -> None:
        totals = compute_round_totals([])
        assert totals.rounds == 0
        assert totals.kill_rate == 0.0


# =============================================================================
# Kill rate par deltas
# =============================================================================


class TestKillRate:
    def test_kill_rate_from_deltas(self, t0, frame_factory, sample_factory) -> None:
        df = frame_factory(
            [
                sample_factory(t0, kills=0),
                sample_factory(t0 + timedelta(minutes=2), kills=4),
                sample_factory(t0 + timedelta(minutes=4), kills=6),
            ]
        )
        result = compute_kill_rate_polars(df)
        assert result.total_kills == 6
        assert result.total_minutes == pytest.approx(4.0)
        assert result.kill_rate == pytest.approx(1.5)
        assert result.pairs_used == 2

    def test_reset_pairs_are_ignored(self, t0, frame_factory, sample_factory) -> None:
        """Une baisse des kills n'est jamais comptée comme un delta négatif."""
        df = frame_factory(
            [
                sample_factory(t0, kills=10),
                sample_factory(t0 + timedelta(minutes=1), kills=0),
                sample_factory(t0 + timedelta(minutes=3), kills=4),
            ]
        )
        result = compute_kill_rate_polars(df)
        assert result.total_kills == 4
        assert result.total_minutes == pytest.approx(2.0)
        assert result.kill_rate >= 0

    def test_duplicate_timestamps_ignored(self, t0, frame_factory, sample_factory) -> None:
        df = frame_factory([sample_factory(t0, kills=1), sample_factory(t0, kills=3)])
        result = compute_kill_rate_polars(df)
        assert result.pairs_used == 0
        assert result.kill_rate == 0.0

    def test_empty(self, frame_factory) -> None:
        assert compute_kill_rate_polars(frame_factory([])).kill_rate == 0.0

    def test_by_player_sorted(self, t0, frame_factory, sample_factory) -> None:
        df = frame_factory(
            [
                sample_factory(t0, player_name="Alice", kills=0),
                sample_factory(t0 + timedelta(minutes=2), player_name="Alice", kills=2),
                sample_factory(t0, player_name="Bob", kills=0),
                sample_factory(t0 + timedelta(minutes=2), player_name="Bob", kills=8),
            ]
        )
        per_player = compute_kill_rate_by_player_polars(df)
        assert per_player["player_name"].to_list() == ["Bob", "Alice"]
        assert per_player["kill_rate"].to_list() == pytest.approx([4.0, 1.0])


# =============================================================================
# Séries de kills
# =============================================================================


class TestKillStreaks:
    def test_streak_until_death(self, t0, frame_factory, sample_factory) -> None:
        df = frame_factory(
            [
                sample_factory(t0 + timedelta(minutes=i), kills=k, deaths=d)
                for i, (k, d) in enumerate([(0, 0), (2, 0), (4, 0), (6, 0), (6, 1), (8, 1), (10, 1)])
            ]
        )
        streaks = detect_kill_streaks_polars(df, min_streak=5)
        assert len(streaks) == 1
        streak = streaks[0]
        assert streak.kills == 6
        assert streak.start_time == t0 + timedelta(minutes=1)
        assert streak.end_time == t0 + timedelta(minutes=3)
        assert streak.duration_seconds == pytest.approx(120.0)

    def test_min_streak_filter(self, t0, frame_factory, sample_factory) -> None:
        df = frame_factory(
            [
                sample_factory(t0, kills=0),
                sample_factory(t0 + timedelta(minutes=1), kills=3),
            ]
        )
        assert detect_kill_streaks_polars(df, min_streak=5) == []
        assert detect_kill_streaks_polars(df, min_streak=3)[0].kills == 3

    def test_streak_does_not_cross_rounds(self, t0, frame_factory, sample_factory) -> None:
        df = frame_factory(
            [
                sample_factory(t0, kills=0),
                sample_factory(t0 + timedelta(minutes=1), kills=3),
                sample_factory(t0 + timedelta(minutes=30), kills=3),
                sample_factory(t0 + timedelta(minutes=31), kills=6),
            ]
        )
        assert detect_kill_streaks_polars(df, min_streak=4) == []
