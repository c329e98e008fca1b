"""Unit tests for merging realtime snapshots into historical series."""
from datetime import date

import pytest

from src.adreport_core.exceptions import RealtimeMergeError
from src.adreport_core.metrics.realtime_merge import (
    label_sort_key,
    merge_breakdowns,
    merge_daily_metrics,
    merge_platform_detailed_metrics,
    merge_trend_series,
)
from src.adreport_core.schemas.metrics import (
    BreakdownRow,
    DailyMetricRow,
    MetricTotals,
    PlatformDetailedMetrics,
    TrendPoint,
    TrendSeries,
)


TODAY = date(2025, 3, 10)
YESTERDAY = date(2025, 3, 9)


def _row(day, **totals):
    return DailyMetricRow.from_totals(day, MetricTotals(**totals))


def test_merge_into_empty_base_returns_realtime_row():
    today_row = _row(TODAY, spend=1000.0, msp_cv=4, clicks=50)

    merged = merge_daily_metrics([], today_row, TODAY)

    assert len(merged) == 1
    assert merged[0].totals == today_row.totals
    assert merged[0].cpa == today_row.cpa == 250.0
    assert merged[0].includes_realtime is True


def test_no_realtime_row_returns_base_sorted():
    base = [_row(TODAY, spend=1.0), _row(YESTERDAY, spend=2.0)]

    merged = merge_daily_metrics(base, None, TODAY)

    assert [row.metric_date for row in merged] == [YESTERDAY, TODAY]
    assert all(not row.includes_realtime for row in merged)


def test_merge_sums_existing_today_row_and_recomputes_ratios():
    base = [
        _row(YESTERDAY, spend=300.0, msp_cv=3),
        DailyMetricRow.from_totals(TODAY, MetricTotals(spend=200.0, msp_cv=1), performance_based_fee=10.0),
    ]
    today_row = _row(TODAY, spend=400.0, msp_cv=1)

    merged = merge_daily_metrics(base, today_row, TODAY)

    assert [row.metric_date for row in merged] == [YESTERDAY, TODAY]
    assert merged[1].spend == 600.0
    assert merged[1].msp_cv == 2
    assert merged[1].cpa == 300.0
    assert merged[1].performance_based_fee == 10.0
    assert merged[0].includes_realtime is False


def test_merge_fee_stays_null_when_neither_side_has_one():
    merged = merge_daily_metrics([_row(TODAY, spend=1.0)], _row(TODAY, spend=1.0), TODAY)

    assert merged[0].performance_based_fee is None


def test_merge_twice_raises():
    once = merge_daily_metrics([], _row(TODAY, spend=100.0), TODAY)

    with pytest.raises(RealtimeMergeError):
        merge_daily_metrics(once, _row(TODAY, spend=100.0), TODAY)


def test_merge_breakdowns_adds_by_id_and_sorts_by_spend():
    base = [
        BreakdownRow(id="s1", label="One", spend=100.0, total_msp_cv=1),
        BreakdownRow(id="s2", label="Two", spend=150.0),
    ]
    realtime = [
        BreakdownRow(id="s1", label="One", spend=100.0, total_msp_cv=2),
        BreakdownRow(id="s3", label="", spend=10.0),
    ]

    merged = merge_breakdowns(base, realtime, {"s3": "Three"})

    assert [row.id for row in merged] == ["s1", "s2", "s3"]
    assert merged[0].spend == 200.0
    assert merged[0].total_msp_cv == 3
    assert merged[0].includes_realtime is True
    assert merged[1].includes_realtime is False
    assert merged[2].label == "Three"


def test_merge_breakdowns_twice_raises():
    merged = merge_breakdowns([BreakdownRow(id="s1", label="One")], [BreakdownRow(id="s1", label="One")])

    with pytest.raises(RealtimeMergeError):
        merge_breakdowns(merged, [BreakdownRow(id="s1", label="One")])


def test_merge_trend_series_replaces_only_todays_point():
    base = [
        TrendSeries(
            id="s2",
            label="Beta",
            points=[
                TrendPoint(metric_date=YESTERDAY, spend=50.0, msp_cv=1),
                TrendPoint(metric_date=TODAY, spend=20.0),
            ],
        )
    ]
    realtime = {
        "s2": _row(TODAY, spend=30.0, msp_cv=1),
        "s1": _row(TODAY, spend=5.0),
    }

    merged = merge_trend_series(base, realtime, {"s1": "Alpha", "s2": "Beta"}, TODAY)

    assert [series.label for series in merged] == ["Alpha", "Beta"]
    beta = merged[1]
    assert [point.metric_date for point in beta.points] == [YESTERDAY, TODAY]
    assert beta.points[0].spend == 50.0
    assert beta.points[1].spend == 50.0
    assert beta.points[1].cpa == 50.0
    assert beta.points[1].includes_realtime is True
    assert merged[0].points[0].spend == 5.0
    # the base series is not mutated
    assert base[0].points[1].spend == 20.0


def test_trend_series_sorted_by_japanese_aware_label():
    realtime = {
        "p1": _row(TODAY, spend=1.0),
        "p2": _row(TODAY, spend=1.0),
        "p3": _row(TODAY, spend=1.0),
        "p4": _row(TODAY, spend=1.0),
    }
    labels = {"p1": "き", "p2": "カ", "p3": "beta", "p4": "Alpha"}

    merged = merge_trend_series([], realtime, labels, TODAY)

    assert [series.label for series in merged] == ["Alpha", "beta", "カ", "き"]


def test_label_sort_key_folds_width_and_kana():
    assert label_sort_key("ｶﾅ")[0] == label_sort_key("かな")[0]
    assert label_sort_key("ＡＢＣ")[0] == label_sort_key("abc")[0]


def test_merge_platform_details_by_platform_id():
    base = [PlatformDetailedMetrics(platform_id="p1", platform_label="Meta", spend=100.0, actual_cv=1, total_clicks=10)]
    realtime = [
        PlatformDetailedMetrics(platform_id="p1", platform_label="Meta", spend=100.0, actual_cv=1, total_clicks=30),
        PlatformDetailedMetrics(platform_id="p2", platform_label="LINE", spend=300.0),
    ]

    merged = merge_platform_detailed_metrics(base, realtime)

    assert [row.platform_id for row in merged] == ["p2", "p1"]
    assert merged[1].spend == 200.0
    assert merged[1].actual_cpa == 100.0
    assert merged[1].total_clicks == 40

    with pytest.raises(RealtimeMergeError):
        merge_platform_detailed_metrics(merged, realtime)
