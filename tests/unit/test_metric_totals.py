"""Unit tests for metric totals and derived ratios."""
from datetime import date

import pytest

from src.adreport_core.schemas.metrics import (
    BreakdownRow,
    DailyMetricRow,
    MetricTotals,
    PlatformDetailedMetrics,
    TrendPoint,
    safe_ratio,
)


def test_safe_ratio_zero_denominator():
    assert safe_ratio(100.0, 0) == 0.0
    assert safe_ratio(100.0, -1) == 0.0
    assert safe_ratio(100.0, 4) == 25.0


def test_ratios_from_totals():
    totals = MetricTotals(
        spend=1000.0, impressions=20000, clicks=200, msp_cv=4, m_cv=10, actual_cv=5
    )

    assert totals.cpa == 250.0
    assert totals.cpc == 5.0
    assert totals.ctr == pytest.approx(0.01)
    assert totals.cvr == pytest.approx(0.02)
    assert totals.m_cvr == pytest.approx(0.05)
    assert totals.m_cpa == 100.0
    assert totals.cpm == 50.0


def test_ratios_are_zero_without_denominators():
    totals = MetricTotals(spend=500.0)

    assert totals.cpa == 0.0
    assert totals.cpc == 0.0
    assert totals.cpm == 0.0
    assert totals.ctr == 0.0


def test_totals_addition_is_commutative():
    a = MetricTotals(spend=100.0, clicks=3, msp_cv=1, platform_cv=2)
    b = MetricTotals(spend=50.5, impressions=900, m_cv=4, actual_cv=1)

    assert a + b == b + a
    assert (a + b).spend == 150.5
    # operands are left untouched
    assert a.spend == 100.0


def test_add_accumulates_in_place():
    totals = MetricTotals()
    totals.add(MetricTotals(spend=10.0, msp_cv=1))
    totals.add(MetricTotals(spend=5.0, msp_cv=1))

    assert totals.spend == 15.0
    assert totals.msp_cv == 2


def test_daily_row_round_trips_totals_and_serializes_ratios():
    totals = MetricTotals(spend=1000.0, clicks=0, msp_cv=4)
    row = DailyMetricRow.from_totals(date(2025, 1, 5), totals, performance_based_fee=12.5)

    assert row.totals == totals
    dumped = row.model_dump()
    assert dumped["cpa"] == 250.0
    assert dumped["cpc"] == 0.0
    assert dumped["performance_based_fee"] == 12.5
    assert dumped["includes_realtime"] is False


def test_breakdown_row_from_totals():
    row = BreakdownRow.from_totals("sec-1", "Section 1", MetricTotals(spend=80.0, msp_cv=2, actual_cv=3))

    assert row.spend == 80.0
    assert row.total_msp_cv == 2
    assert row.total_actual_cv == 3


def test_platform_details_use_platform_conversions():
    details = PlatformDetailedMetrics.from_totals(
        "pl-1", "Meta", MetricTotals(spend=600.0, actual_cv=3, msp_cv=10, m_cv=6, clicks=60)
    )

    assert details.actual_cpa == 200.0
    assert details.cvr == pytest.approx(0.05)
    assert details.cpc == 10.0
    assert details.m_cvr == pytest.approx(0.1)
    assert details.m_cpa == 100.0


def test_trend_point_cpa():
    assert TrendPoint(metric_date=date(2025, 1, 1), spend=300.0, msp_cv=3).cpa == 100.0
    assert TrendPoint(metric_date=date(2025, 1, 1), spend=300.0).cpa == 0.0
