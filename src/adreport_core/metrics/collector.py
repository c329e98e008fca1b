"""Realtime collection orchestrator.

Fans out to every linked account on every platform for one project, folds
the results into today's snapshot, and gathers per-ad rows for rankings.
Failures are isolated per account: a failed call contributes nothing and
leaves an advisory warning.
"""
import asyncio
import logging
from datetime import date
from typing import Any, Awaitable, Optional, TypeVar

from ..exceptions import SourceError
from ..schemas.records import AdRankingRow, CampaignRecord, ConversionLogRecord, PlatformType
from ..schemas.report import RealtimeProjectSnapshot
from ..schemas.settings import ProjectSetting
from ..sources.base import AdSourceAdapter
from ..sources.msp import MspSource
from .aggregator import SnapshotAggregator
from .attribution import AttributionResolver


logger = logging.getLogger(__name__)

T = TypeVar("T")

PLATFORM_ORDER = [PlatformType.META, PlatformType.TIKTOK, PlatformType.GOOGLE, PlatformType.LINE]


class RealtimeCollector:
    """Collects live source data for one top-level report call."""

    def __init__(
        self,
        adapters: dict[PlatformType, AdSourceAdapter],
        msp: Optional[MspSource] = None,
        timeout: float = 60.0,
    ) -> None:
        """Initialize collector.

        Args:
            adapters: Ad-platform adapters sharing one session
            msp: Conversion-log source, or None to skip conversion counts
            timeout: Seconds allowed for each adapter call
        """
        self.adapters = adapters
        self.msp = msp
        self.timeout = timeout

    async def _guarded(
        self, label: str, call: Awaitable[list[T]], warnings: list[str]
    ) -> list[T]:
        """Await one adapter call; errors and timeouts become a warning."""
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError:
            message = f"{label}: timed out after {self.timeout:.0f}s"
        except SourceError as exc:
            message = f"{label}: {exc}"
        except Exception as exc:
            logger.error("%s failed unexpectedly", label, exc_info=True)
            message = f"{label}: {type(exc).__name__}"
        logger.warning("Source call failed, %s", message)
        warnings.append(message)
        return []

    async def _fan_out(
        self, calls: list[tuple[str, Awaitable[list[T]]]], warnings: list[str]
    ) -> list[T]:
        results = await asyncio.gather(
            *(self._guarded(label, call, warnings) for label, call in calls),
            return_exceptions=True,
        )
        merged: list[T] = []
        for (label, _), result in zip(calls, results):
            if isinstance(result, BaseException):
                logger.error("%s failed: %s", label, result)
                warnings.append(f"{label}: {result}")
                continue
            merged.extend(result)
        return merged

    async def collect_campaigns(
        self, project: ProjectSetting, target_date: date, warnings: list[str]
    ) -> list[CampaignRecord]:
        calls: list[tuple[str, Awaitable[list[CampaignRecord]]]] = []
        for platform in PLATFORM_ORDER:
            adapter = self.adapters.get(platform)
            if adapter is None:
                continue
            for account in project.accounts_for(platform):
                calls.append(
                    (
                        f"{platform.label} {account.display_name}",
                        adapter.fetch_campaigns(account, target_date),
                    )
                )
        return await self._fan_out(calls, warnings)

    async def collect_conversion_events(
        self, project: ProjectSetting, target_date: date, warnings: list[str]
    ) -> list[ConversionLogRecord]:
        """Conversions and click logs for the project's MSP advertisers."""
        if self.msp is None or not project.msp_advertiser_ids:
            return []
        calls: list[tuple[str, Awaitable[Any]]] = [
            (
                "MSP conversions",
                self.msp.fetch_conversions(project.msp_advertiser_ids, target_date),
            ),
            (
                "MSP click logs",
                self.msp.fetch_click_logs(project.msp_advertiser_ids, target_date),
            ),
        ]
        return await self._fan_out(calls, warnings)

    async def collect_snapshot(
        self,
        project: ProjectSetting,
        resolver: AttributionResolver,
        target_date: date,
    ) -> tuple[RealtimeProjectSnapshot, list[str]]:
        """Aggregate today's live data for a project.

        Returns:
            The snapshot and the warnings raised by failed sources
        """
        warnings: list[str] = []
        campaigns, events = await asyncio.gather(
            self.collect_campaigns(project, target_date, warnings),
            self.collect_conversion_events(project, target_date, warnings),
        )

        aggregator = SnapshotAggregator(resolver)
        aggregator.add_campaigns(campaigns)
        aggregator.add_conversion_events(events)
        snapshot = aggregator.build(target_date)

        logger.info(
            "Realtime snapshot for %s on %s: %s campaigns, %s conversion-log rows, %s warnings",
            project.project_name,
            target_date.isoformat(),
            len(campaigns),
            len(events),
            len(warnings),
        )
        return snapshot, warnings

    async def collect_ad_rows(
        self, project: ProjectSetting, start: date, end: date
    ) -> tuple[list[AdRankingRow], list[str]]:
        """Per-ad rows across all linked accounts, ordered by spend descending."""
        warnings: list[str] = []
        calls: list[tuple[str, Awaitable[list[AdRankingRow]]]] = []
        for platform in PLATFORM_ORDER:
            adapter = self.adapters.get(platform)
            if adapter is None:
                continue
            for account in project.accounts_for(platform):
                calls.append(
                    (
                        f"{platform.label} {account.display_name}",
                        adapter.fetch_ads(account, start, end),
                    )
                )

        rows = await self._fan_out(calls, warnings)
        rows.sort(key=lambda row: row.spend, reverse=True)
        return rows, warnings
