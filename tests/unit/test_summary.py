"""Unit tests for range summaries and platform-type rollups."""
from datetime import date

import pytest

from src.adreport_core.metrics.summary import aggregate_by_platform_type, build_metric_summary
from src.adreport_core.schemas.metrics import DailyMetricRow, PlatformDetailedMetrics
from src.adreport_core.schemas.records import PlatformType


def test_summary_of_empty_series():
    summary = build_metric_summary([])

    assert summary.days == 0
    assert summary.total_spend == 0.0
    assert summary.cpa == 0.0
    assert summary.average_daily_spend == 0.0
    assert summary.total_performance_based_fee is None


def test_summary_ratios_come_from_totals():
    rows = [
        DailyMetricRow(
            metric_date=date(2025, 1, 1),
            spend=1000.0,
            msp_cv=2,
            clicks=100,
            impressions=10000,
            m_cv=4,
        ),
        DailyMetricRow(
            metric_date=date(2025, 1, 2),
            spend=3000.0,
            msp_cv=2,
            clicks=300,
            impressions=30000,
            m_cv=4,
        ),
    ]

    summary = build_metric_summary(rows)

    assert summary.days == 2
    assert summary.total_spend == 4000.0
    assert summary.total_msp_cv == 4
    assert summary.cpa == 1000.0
    assert summary.cpc == 10.0
    assert summary.ctr == pytest.approx(0.01)
    assert summary.cvr == pytest.approx(0.01)
    assert summary.m_cpa == 500.0
    assert summary.cpm == 100.0
    assert summary.average_daily_spend == 2000.0
    assert summary.average_daily_msp_cv == 2.0


def test_summary_fee_sums_reported_values_only():
    rows = [
        DailyMetricRow(metric_date=date(2025, 1, 1), performance_based_fee=500.0),
        DailyMetricRow(metric_date=date(2025, 1, 2)),
        DailyMetricRow(metric_date=date(2025, 1, 3), performance_based_fee=250.0),
    ]

    assert build_metric_summary(rows).total_performance_based_fee == 750.0


def test_aggregate_by_platform_type():
    details = [
        PlatformDetailedMetrics(
            platform_id="line-1",
            platform_label="LINE広告",
            spend=300.0,
            actual_cv=3,
            total_clicks=30,
        ),
        PlatformDetailedMetrics(
            platform_id="meta-1",
            platform_label="Meta 1",
            spend=1000.0,
            actual_cv=5,
            m_cv=2,
            total_clicks=200,
            total_impressions=10000,
        ),
        PlatformDetailedMetrics(
            platform_id="meta-2",
            platform_label="Instagram",
            spend=500.0,
            actual_cv=5,
            total_clicks=50,
        ),
        PlatformDetailedMetrics(platform_id="x", platform_label="Affiliate", spend=999.0),
    ]

    rollup = aggregate_by_platform_type(details)

    assert list(rollup) == [PlatformType.META, PlatformType.LINE]
    meta = rollup[PlatformType.META]
    assert meta.platform_id == "meta"
    assert meta.platform_label == "Meta"
    assert meta.spend == 1500.0
    assert meta.actual_cv == 10
    assert meta.total_clicks == 250
    assert meta.actual_cpa == 150.0
    assert meta.m_cpa == 750.0
    assert rollup[PlatformType.LINE].actual_cpa == 100.0
