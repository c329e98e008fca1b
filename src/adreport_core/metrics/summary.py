"""Range summaries over daily rows and platform-type rollups."""
import logging
from typing import Optional

from ..schemas.metrics import DailyMetricRow, MetricTotals, PlatformDetailedMetrics
from ..schemas.records import PlatformType
from ..schemas.report import MetricSummary
from .attribution import normalize_platform_type


logger = logging.getLogger(__name__)

_PLATFORM_ORDER = [PlatformType.META, PlatformType.TIKTOK, PlatformType.GOOGLE, PlatformType.LINE]


def build_metric_summary(rows: list[DailyMetricRow]) -> MetricSummary:
    """Sum a daily series and derive range-level ratios from the sums.

    The performance-based fee stays None unless at least one row reports it.
    """
    totals = MetricTotals()
    fee: Optional[float] = None
    for row in rows:
        totals.add(row.totals)
        if row.performance_based_fee is not None:
            fee = (fee or 0.0) + row.performance_based_fee

    days = len(rows)
    return MetricSummary(
        total_spend=totals.spend,
        total_msp_cv=totals.msp_cv,
        total_actual_cv=totals.actual_cv,
        total_m_cv=totals.m_cv,
        total_platform_cv=totals.platform_cv,
        total_clicks=totals.clicks,
        total_impressions=totals.impressions,
        total_performance_based_fee=fee,
        cpa=totals.cpa,
        cpc=totals.cpc,
        ctr=totals.ctr,
        cvr=totals.cvr,
        m_cvr=totals.m_cvr,
        m_cpa=totals.m_cpa,
        cpm=totals.cpm,
        average_daily_spend=totals.spend / days if days else 0.0,
        average_daily_msp_cv=totals.msp_cv / days if days else 0.0,
        days=days,
    )


def aggregate_by_platform_type(
    details: list[PlatformDetailedMetrics],
) -> dict[PlatformType, PlatformDetailedMetrics]:
    """Re-aggregate per-instance platform details by platform type.

    Instances whose label names no known platform are left out. The result is
    ordered Meta, TikTok, Google, LINE and only holds types that occur.
    """
    totals: dict[PlatformType, MetricTotals] = {}
    for detail in details:
        platform_type = normalize_platform_type(detail.platform_label)
        if platform_type is None:
            logger.debug("Skipping platform '%s' with unknown type", detail.platform_label)
            continue
        totals.setdefault(platform_type, MetricTotals()).add(
            MetricTotals(
                spend=detail.spend,
                actual_cv=detail.actual_cv,
                m_cv=detail.m_cv,
                clicks=detail.total_clicks,
                impressions=detail.total_impressions,
            )
        )

    return {
        platform_type: PlatformDetailedMetrics.from_totals(
            platform_type.value, platform_type.label, totals[platform_type]
        )
        for platform_type in _PLATFORM_ORDER
        if platform_type in totals
    }
