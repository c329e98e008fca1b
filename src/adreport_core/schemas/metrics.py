"""Metric totals and the report rows derived from them.

Every ratio on a row is computed from its additive totals at read time, so a
row can never carry a CPA that disagrees with its spend and conversions.
"""
from dataclasses import asdict, dataclass, fields
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, computed_field


def safe_ratio(numerator: float, denominator: float) -> float:
    """Divide, substituting 0 when the denominator is not positive."""
    if denominator > 0:
        return numerator / denominator
    return 0.0


@dataclass
class MetricTotals:
    """Additive counters for one project, section or platform bucket."""

    spend: float = 0.0
    impressions: float = 0.0
    clicks: float = 0.0
    msp_cv: float = 0.0
    actual_cv: float = 0.0
    m_cv: float = 0.0
    platform_cv: float = 0.0

    def add(self, other: "MetricTotals") -> None:
        """Accumulate another bucket into this one in place."""
        for field_def in fields(self):
            name = field_def.name
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def __add__(self, other: object) -> "MetricTotals":
        if not isinstance(other, MetricTotals):
            return NotImplemented
        merged = MetricTotals(**asdict(self))
        merged.add(other)
        return merged

    @property
    def cpa(self) -> float:
        return safe_ratio(self.spend, self.msp_cv)

    @property
    def cpc(self) -> float:
        return safe_ratio(self.spend, self.clicks)

    @property
    def ctr(self) -> float:
        return safe_ratio(self.clicks, self.impressions)

    @property
    def cvr(self) -> float:
        return safe_ratio(self.msp_cv, self.clicks)

    @property
    def m_cvr(self) -> float:
        return safe_ratio(self.m_cv, self.clicks)

    @property
    def m_cpa(self) -> float:
        return safe_ratio(self.spend, self.m_cv)

    @property
    def cpm(self) -> float:
        return safe_ratio(self.spend, self.impressions) * 1000


class DailyMetricRow(BaseModel):
    """One calendar date of totals for a project, section or platform."""

    metric_date: date
    spend: float = 0.0
    msp_cv: float = 0.0
    actual_cv: float = 0.0
    impressions: float = 0.0
    clicks: float = 0.0
    m_cv: float = 0.0
    platform_cv: float = 0.0
    performance_based_fee: Optional[float] = None
    includes_realtime: bool = Field(
        False, description="True once a realtime snapshot has been merged into this row"
    )

    @classmethod
    def from_totals(
        cls,
        metric_date: date,
        totals: MetricTotals,
        performance_based_fee: Optional[float] = None,
        includes_realtime: bool = False,
    ) -> "DailyMetricRow":
        return cls(
            metric_date=metric_date,
            performance_based_fee=performance_based_fee,
            includes_realtime=includes_realtime,
            **asdict(totals),
        )

    @property
    def totals(self) -> MetricTotals:
        return MetricTotals(
            spend=self.spend,
            impressions=self.impressions,
            clicks=self.clicks,
            msp_cv=self.msp_cv,
            actual_cv=self.actual_cv,
            m_cv=self.m_cv,
            platform_cv=self.platform_cv,
        )

    @computed_field
    @property
    def cpa(self) -> float:
        return self.totals.cpa

    @computed_field
    @property
    def cpc(self) -> float:
        return self.totals.cpc

    @computed_field
    @property
    def ctr(self) -> float:
        return self.totals.ctr

    @computed_field
    @property
    def cvr(self) -> float:
        return self.totals.cvr

    @computed_field
    @property
    def m_cvr(self) -> float:
        return self.totals.m_cvr

    @computed_field
    @property
    def m_cpa(self) -> float:
        return self.totals.m_cpa

    @computed_field
    @property
    def cpm(self) -> float:
        return self.totals.cpm


class BreakdownRow(BaseModel):
    """Reportable totals for one entity over a date range."""

    id: str
    label: str
    spend: float = 0.0
    total_msp_cv: float = 0.0
    total_actual_cv: float = 0.0
    includes_realtime: bool = False

    @classmethod
    def from_totals(cls, entity_id: str, label: str, totals: MetricTotals) -> "BreakdownRow":
        return cls(
            id=entity_id,
            label=label,
            spend=totals.spend,
            total_msp_cv=totals.msp_cv,
            total_actual_cv=totals.actual_cv,
        )


class PlatformDetailedMetrics(BaseModel):
    """Per-platform totals plus the raw counts needed to re-aggregate them.

    Ratios here are based on platform-reported conversions (actual_cv), unlike
    DailyMetricRow which uses conversion-log conversions (msp_cv).
    """

    platform_id: str
    platform_label: str
    spend: float = 0.0
    actual_cv: float = 0.0
    m_cv: float = 0.0
    total_clicks: float = 0.0
    total_impressions: float = 0.0
    includes_realtime: bool = False

    @classmethod
    def from_totals(
        cls, platform_id: str, platform_label: str, totals: MetricTotals
    ) -> "PlatformDetailedMetrics":
        return cls(
            platform_id=platform_id,
            platform_label=platform_label,
            spend=totals.spend,
            actual_cv=totals.actual_cv,
            m_cv=totals.m_cv,
            total_clicks=totals.clicks,
            total_impressions=totals.impressions,
        )

    @computed_field
    @property
    def actual_cpa(self) -> float:
        return safe_ratio(self.spend, self.actual_cv)

    @computed_field
    @property
    def cvr(self) -> float:
        return safe_ratio(self.actual_cv, self.total_clicks)

    @computed_field
    @property
    def cpc(self) -> float:
        return safe_ratio(self.spend, self.total_clicks)

    @computed_field
    @property
    def m_cvr(self) -> float:
        return safe_ratio(self.m_cv, self.total_clicks)

    @computed_field
    @property
    def m_cpa(self) -> float:
        return safe_ratio(self.spend, self.m_cv)


class TrendPoint(BaseModel):
    """One dated point of an entity's trend series."""

    metric_date: date
    spend: float = 0.0
    msp_cv: float = 0.0
    includes_realtime: bool = False

    @computed_field
    @property
    def cpa(self) -> float:
        return safe_ratio(self.spend, self.msp_cv)


class TrendSeries(BaseModel):
    """Dated points for one section or platform, ordered by date."""

    id: str
    label: str
    points: list[TrendPoint] = Field(default_factory=list)
