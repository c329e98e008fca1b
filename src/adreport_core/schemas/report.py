"""Report envelopes returned by the report service."""
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from .metrics import BreakdownRow, DailyMetricRow, PlatformDetailedMetrics, TrendSeries
from .records import AdRankingRow


class RealtimeProjectSnapshot(BaseModel):
    """Today's totals for one project, aggregated from live source data."""

    metric_date: date
    project_row: DailyMetricRow
    section_rows: dict[str, DailyMetricRow] = Field(default_factory=dict)
    platform_rows: dict[str, DailyMetricRow] = Field(default_factory=dict)
    section_breakdown: list[BreakdownRow] = Field(default_factory=list)
    platform_breakdown: list[BreakdownRow] = Field(default_factory=list)
    platform_details: list[PlatformDetailedMetrics] = Field(default_factory=list)


class MetricSummary(BaseModel):
    """Range totals and averages over a daily series."""

    total_spend: float = 0.0
    total_msp_cv: float = 0.0
    total_actual_cv: float = 0.0
    total_m_cv: float = 0.0
    total_platform_cv: float = 0.0
    total_clicks: float = 0.0
    total_impressions: float = 0.0
    total_performance_based_fee: Optional[float] = None
    cpa: float = 0.0
    cpc: float = 0.0
    ctr: float = 0.0
    cvr: float = 0.0
    m_cvr: float = 0.0
    m_cpa: float = 0.0
    cpm: float = 0.0
    average_daily_spend: float = 0.0
    average_daily_msp_cv: float = 0.0
    days: int = 0


class ProjectReport(BaseModel):
    """Historical series for a project with today's live snapshot merged in."""

    project_name: str
    start_date: date
    end_date: date
    project_rows: list[DailyMetricRow] = Field(default_factory=list)
    section_rows: dict[str, list[DailyMetricRow]] = Field(default_factory=dict)
    platform_rows: dict[str, list[DailyMetricRow]] = Field(default_factory=dict)
    section_breakdown: list[BreakdownRow] = Field(default_factory=list)
    platform_breakdown: list[BreakdownRow] = Field(default_factory=list)
    section_trends: list[TrendSeries] = Field(default_factory=list)
    platform_trends: list[TrendSeries] = Field(default_factory=list)
    platform_details: list[PlatformDetailedMetrics] = Field(default_factory=list)
    platform_type_details: list[PlatformDetailedMetrics] = Field(default_factory=list)
    summary: MetricSummary = Field(default_factory=MetricSummary)
    previous_summary: Optional[MetricSummary] = None
    includes_realtime: bool = False
    warnings: list[str] = Field(default_factory=list)


class AdRankingReport(BaseModel):
    rows: list[AdRankingRow] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
