"""Attribution, aggregation and reporting logic.

Pure functions over source records and stored metric rows:
- attribution: section/platform resolution from names and link ids
- aggregator: per-day realtime snapshot building
- realtime_merge: folding a realtime snapshot into historical series
- ranking: ad ranking views and sorting
- summary: period totals and per-platform-type rollups

The realtime collector lives in .collector and is imported directly.
"""
from .aggregator import SnapshotAggregator
from .attribution import AttributionResolver, extract_attribution_prefix
from .ranking import RankingSort, RankingView, partition_by_account, rank_rows
from .realtime_merge import (
    merge_breakdowns,
    merge_daily_metrics,
    merge_platform_detailed_metrics,
    merge_trend_series,
)
from .summary import aggregate_by_platform_type, build_metric_summary

__all__ = [
    "AttributionResolver",
    "SnapshotAggregator",
    "RankingSort",
    "RankingView",
    "extract_attribution_prefix",
    "partition_by_account",
    "rank_rows",
    "merge_breakdowns",
    "merge_daily_metrics",
    "merge_platform_detailed_metrics",
    "merge_trend_series",
    "aggregate_by_platform_type",
    "build_metric_summary",
]
