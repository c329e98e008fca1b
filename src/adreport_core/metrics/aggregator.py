"""Fold classified records into project, section and platform totals."""
import logging
from datetime import date
from typing import Optional

from ..schemas.metrics import (
    BreakdownRow,
    DailyMetricRow,
    MetricTotals,
    PlatformDetailedMetrics,
)
from ..schemas.records import CampaignRecord, ConversionEventKind, ConversionLogRecord
from ..schemas.report import RealtimeProjectSnapshot
from .attribution import AttributionResolver


logger = logging.getLogger(__name__)


def campaign_totals(record: CampaignRecord) -> MetricTotals:
    """Totals contributed by one ad-delivery record.

    Media-reported conversions feed both actual_cv and platform_cv. Delivery
    records never contribute to msp_cv or m_cv.
    """
    media_cv = record.media_cv if record.media_cv is not None else 0.0
    return MetricTotals(
        spend=record.spend,
        impressions=record.impressions,
        clicks=record.clicks,
        actual_cv=media_cv,
        platform_cv=media_cv,
    )


class SnapshotAggregator:
    """Accumulates one project's records for a single day."""

    def __init__(self, resolver: AttributionResolver) -> None:
        self.resolver = resolver
        self.project_totals = MetricTotals()
        self.section_totals: dict[str, MetricTotals] = {}
        self.platform_totals: dict[str, MetricTotals] = {}
        self.unattributed = 0

    def _add(
        self, section_id: str, platform_id: Optional[str], delta: MetricTotals
    ) -> None:
        self.section_totals.setdefault(section_id, MetricTotals()).add(delta)
        if platform_id:
            self.platform_totals.setdefault(platform_id, MetricTotals()).add(delta)

    def add_campaign(self, record: CampaignRecord) -> None:
        delta = campaign_totals(record)
        self.project_totals.add(delta)

        section_id, platform_id = self.resolver.resolve_campaign(record.name, record.platform)
        if section_id is None:
            self.unattributed += 1
            return
        self._add(section_id, platform_id, delta)

    def add_conversion_event(self, record: ConversionLogRecord) -> None:
        """Count one conversion (msp_cv) or click-log (m_cv) event."""
        section_id, platform_id = self.resolver.resolve_conversion(record.prefix, record.link_id)
        if section_id is None:
            self.unattributed += 1
            return

        if record.kind == ConversionEventKind.CONVERSION:
            delta = MetricTotals(msp_cv=1)
        else:
            delta = MetricTotals(m_cv=1)
        self.project_totals.add(delta)
        self._add(section_id, platform_id, delta)

    def add_campaigns(self, records: list[CampaignRecord]) -> None:
        for record in records:
            self.add_campaign(record)

    def add_conversion_events(self, records: list[ConversionLogRecord]) -> None:
        for record in records:
            self.add_conversion_event(record)

    def build(self, metric_date: date) -> RealtimeProjectSnapshot:
        """Emit daily rows, breakdowns and platform details for the day."""
        section_labels = self.resolver.section_labels
        platform_labels = self.resolver.platform_labels

        snapshot = RealtimeProjectSnapshot(
            metric_date=metric_date,
            project_row=DailyMetricRow.from_totals(metric_date, self.project_totals),
        )

        for section_id, totals in self.section_totals.items():
            label = section_labels.get(section_id, section_id)
            snapshot.section_rows[section_id] = DailyMetricRow.from_totals(metric_date, totals)
            snapshot.section_breakdown.append(BreakdownRow.from_totals(section_id, label, totals))

        for platform_id, totals in self.platform_totals.items():
            label = platform_labels.get(platform_id, platform_id)
            snapshot.platform_rows[platform_id] = DailyMetricRow.from_totals(metric_date, totals)
            snapshot.platform_breakdown.append(BreakdownRow.from_totals(platform_id, label, totals))
            snapshot.platform_details.append(
                PlatformDetailedMetrics.from_totals(platform_id, label, totals)
            )

        if self.unattributed:
            logger.info(
                "%s records for %s matched no section", self.unattributed, metric_date.isoformat()
            )
        return snapshot
