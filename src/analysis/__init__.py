"""Module d'analyse des données : rounds, statistiques, affluence et tendances."""

from src.analysis.busy import (
    HourlyBusyData,
    busy_snapshot_polars,
    classify_busy,
    compute_historical_range,
    compute_hourly_timeline,
)
from src.analysis.forecast import (
    HourlyPrediction,
    SmartInsights,
    build_hourly_pattern_polars,
    build_smart_insights,
    find_peak_slots,
    forecast_next_hours,
    pattern_to_buckets,
)
from src.analysis.milestones import (
    Milestone,
    MilestoneProgress,
    detect_milestones,
    detect_milestones_polars,
    next_milestones,
    rounds_to_frame,
)
from src.analysis.online_history import (
    OnlineHistoryInsights,
    compute_insights,
    players_online_series_polars,
    resolve_period,
)
from src.analysis.rounds import (
    aggregate_rounds_polars,
    build_rounds,
    build_rounds_frame,
    compute_round_id,
    segment_samples_polars,
    validate_samples,
)
from src.analysis.stats import (
    KillRateResult,
    KillStreak,
    RoundTotals,
    compute_kill_rate_by_player_polars,
    compute_kill_rate_polars,
    compute_round_totals,
    detect_kill_streaks_polars,
    kd_ratio,
)
from src.analysis.trends import (
    PerformanceTrajectory,
    TrajectoryDirection,
    TrendAnalysis,
    build_daily_points_polars,
    build_trajectory,
    fit_trend,
    overall_trajectory,
)

__all__ = [
    # rounds
    "validate_samples",
    "segment_samples_polars",
    "aggregate_rounds_polars",
    "compute_round_id",
    "build_rounds_frame",
    "build_rounds",
    # stats
    "KillRateResult",
    "KillStreak",
    "RoundTotals",
    "kd_ratio",
    "compute_round_totals",
    "compute_kill_rate_polars",
    "compute_kill_rate_by_player_polars",
    "detect_kill_streaks_polars",
    # milestones
    "Milestone",
    "MilestoneProgress",
    "rounds_to_frame",
    "detect_milestones_polars",
    "detect_milestones",
    "next_milestones",
    # busy
    "HourlyBusyData",
    "compute_historical_range",
    "classify_busy",
    "busy_snapshot_polars",
    "compute_hourly_timeline",
    # trends
    "TrajectoryDirection",
    "TrendAnalysis",
    "PerformanceTrajectory",
    "fit_trend",
    "overall_trajectory",
    "build_daily_points_polars",
    "build_trajectory",
    # forecast
    "HourlyPrediction",
    "SmartInsights",
    "build_hourly_pattern_polars",
    "pattern_to_buckets",
    "forecast_next_hours",
    "find_peak_slots",
    "build_smart_insights",
    # online history
    "OnlineHistoryInsights",
    "resolve_period",
    "players_online_series_polars",
    "compute_insights",
]
