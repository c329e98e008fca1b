"""Report service: historical warehouse data with today's live data merged in.

One aiohttp session and one request semaphore are created per top-level call
(unless a session is injected) and shared by every adapter for that call.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator, Optional

import aiohttp

from .config import ReportConfig, SourceCredentials
from .dates import DateRange, historical_range, previous_period
from .exceptions import ProjectNotFoundError
from .metrics.attribution import AttributionResolver
from .metrics.collector import RealtimeCollector
from .metrics.realtime_merge import (
    merge_breakdowns,
    merge_daily_metrics,
    merge_platform_detailed_metrics,
    merge_trend_series,
)
from .metrics.summary import aggregate_by_platform_type, build_metric_summary
from .schemas.metrics import BreakdownRow, DailyMetricRow, PlatformDetailedMetrics, TrendSeries
from .schemas.report import AdRankingReport, ProjectReport
from .schemas.settings import ProjectSetting, ReportSettings
from .sources import build_adapters
from .sources.msp import MspSource
from .storage.settings_store import JsonSettingsProvider, SettingsProvider
from .storage.warehouse import AnalyticsQueryEngine, MetricLevel, SqliteWarehouse


logger = logging.getLogger(__name__)


class ReportService:
    """Builds project reports and ad rankings."""

    def __init__(
        self,
        config: ReportConfig,
        credentials: SourceCredentials,
        settings_provider: SettingsProvider,
        warehouse: AnalyticsQueryEngine,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self.settings_provider = settings_provider
        self.warehouse = warehouse
        self._tzinfo = config.tzinfo

    @classmethod
    def from_env(cls) -> "ReportService":
        """Initialize report service from environment variables."""
        config = ReportConfig.from_env()
        service = cls(
            config=config,
            credentials=SourceCredentials.from_env(),
            settings_provider=JsonSettingsProvider(config.settings_path),
            warehouse=SqliteWarehouse(config.warehouse_path),
        )
        logger.info("ReportService initialized")
        logger.info("Settings: %s", config.settings_path)
        logger.info("Warehouse: %s", config.warehouse_path)
        return service

    def today(self) -> date:
        return datetime.now(self._tzinfo).date()

    def _load_project(self, project_name: str) -> tuple[ReportSettings, ProjectSetting]:
        """Raises ProjectNotFoundError for unknown projects."""
        settings = self.settings_provider.load()
        project = settings.get_project(project_name)
        if project is None:
            raise ProjectNotFoundError(project_name)
        return settings, project

    @asynccontextmanager
    async def _session_scope(
        self, session: Optional[aiohttp.ClientSession]
    ) -> AsyncIterator[aiohttp.ClientSession]:
        if session is not None:
            yield session
            return
        timeout = aiohttp.ClientTimeout(total=self.config.source_timeout * 2, connect=10)
        # Cookies are tracked per adapter (MSP login), never in the session
        async with aiohttp.ClientSession(
            timeout=timeout, cookie_jar=aiohttp.DummyCookieJar()
        ) as owned:
            yield owned

    def _build_collector(self, session: aiohttp.ClientSession) -> RealtimeCollector:
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        return RealtimeCollector(
            adapters=build_adapters(self.credentials, session, semaphore),
            msp=MspSource(self.credentials, session, semaphore),
            timeout=self.config.source_timeout,
        )

    async def aggregate_historical_and_realtime(
        self,
        project_name: str,
        date_range: DateRange,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> ProjectReport:
        """Build a project report for a date range.

        Days before today come from the warehouse. When the range includes
        today, live source data is aggregated and merged into today's rows.

        Args:
            project_name: Project to report on
            date_range: Inclusive date range in the report timezone
            session: Optional injected session; created and closed here if None

        Raises:
            ProjectNotFoundError: If the project has no settings
            SettingsError: If the settings document cannot be loaded
        """
        settings, project = self._load_project(project_name)
        sections = settings.sections_for(project_name)
        platforms = settings.platforms_for(project_name)
        resolver = AttributionResolver.from_settings(
            sections, platforms, settings.platform_settings_for(project_name)
        )
        today = self.today()

        project_rows: list[DailyMetricRow] = []
        section_rows: dict[str, list[DailyMetricRow]] = {}
        platform_rows: dict[str, list[DailyMetricRow]] = {}
        section_breakdown: list[BreakdownRow] = []
        platform_breakdown: list[BreakdownRow] = []
        section_trends: list[TrendSeries] = []
        platform_trends: list[TrendSeries] = []
        platform_details: list[PlatformDetailedMetrics] = []

        history = historical_range(date_range, today)
        if history is not None:
            start, end = history.start, history.end
            project_rows = self.warehouse.fetch_daily_rows(
                MetricLevel.PROJECT, project_name, start, end
            )
            for section in sections:
                section_rows[section.section_id] = self.warehouse.fetch_daily_rows(
                    MetricLevel.SECTION, section.section_id, start, end
                )
            for platform in platforms:
                platform_rows[platform.platform_id] = self.warehouse.fetch_daily_rows(
                    MetricLevel.PLATFORM, platform.platform_id, start, end
                )
            section_breakdown = self.warehouse.fetch_section_breakdown(project_name, start, end)
            platform_breakdown = self.warehouse.fetch_platform_breakdown(project_name, start, end)
            section_trends = self.warehouse.fetch_section_trends(project_name, start, end)
            platform_trends = self.warehouse.fetch_platform_trends(project_name, start, end)
            platform_details = self.warehouse.fetch_platform_details(project_name, start, end)

        warnings: list[str] = []
        includes_realtime = date_range.contains(today)
        if includes_realtime:
            async with self._session_scope(session) as active_session:
                collector = self._build_collector(active_session)
                snapshot, warnings = await collector.collect_snapshot(project, resolver, today)

            project_rows = merge_daily_metrics(project_rows, snapshot.project_row, today)
            for section_id in set(section_rows) | set(snapshot.section_rows):
                section_rows[section_id] = merge_daily_metrics(
                    section_rows.get(section_id, []), snapshot.section_rows.get(section_id), today
                )
            for platform_id in set(platform_rows) | set(snapshot.platform_rows):
                platform_rows[platform_id] = merge_daily_metrics(
                    platform_rows.get(platform_id, []),
                    snapshot.platform_rows.get(platform_id),
                    today,
                )
            section_breakdown = merge_breakdowns(
                section_breakdown, snapshot.section_breakdown, resolver.section_labels
            )
            platform_breakdown = merge_breakdowns(
                platform_breakdown, snapshot.platform_breakdown, resolver.platform_labels
            )
            section_trends = merge_trend_series(
                section_trends, snapshot.section_rows, resolver.section_labels, today
            )
            platform_trends = merge_trend_series(
                platform_trends, snapshot.platform_rows, resolver.platform_labels, today
            )
            platform_details = merge_platform_detailed_metrics(
                platform_details, snapshot.platform_details
            )

        previous = previous_period(date_range)
        previous_rows = self.warehouse.fetch_daily_rows(
            MetricLevel.PROJECT, project_name, previous.start, previous.end
        )

        logger.info(
            "Report for %s %s..%s: %s days, realtime=%s, %s warnings",
            project_name,
            date_range.start.isoformat(),
            date_range.end.isoformat(),
            len(project_rows),
            includes_realtime,
            len(warnings),
        )
        return ProjectReport(
            project_name=project_name,
            start_date=date_range.start,
            end_date=date_range.end,
            project_rows=project_rows,
            section_rows=section_rows,
            platform_rows=platform_rows,
            section_breakdown=section_breakdown,
            platform_breakdown=platform_breakdown,
            section_trends=section_trends,
            platform_trends=platform_trends,
            platform_details=platform_details,
            platform_type_details=list(aggregate_by_platform_type(platform_details).values()),
            summary=build_metric_summary(project_rows),
            previous_summary=build_metric_summary(previous_rows) if previous_rows else None,
            includes_realtime=includes_realtime,
            warnings=warnings,
        )

    async def build_ad_ranking(
        self,
        project_name: str,
        date_range: DateRange,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> AdRankingReport:
        """Per-ad spend and media conversions across the project's accounts.

        Raises:
            ProjectNotFoundError: If the project has no settings
        """
        _, project = self._load_project(project_name)
        async with self._session_scope(session) as active_session:
            collector = self._build_collector(active_session)
            rows, warnings = await collector.collect_ad_rows(
                project, date_range.start, date_range.end
            )
        logger.info(
            "Ad ranking for %s %s..%s: %s rows, %s warnings",
            project_name,
            date_range.start.isoformat(),
            date_range.end.isoformat(),
            len(rows),
            len(warnings),
        )
        return AdRankingReport(rows=rows, warnings=warnings)
