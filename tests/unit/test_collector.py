"""Unit tests for the realtime collection orchestrator."""
import asyncio
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.adreport_core.exceptions import SourceApiError, SourceConfigurationError
from src.adreport_core.metrics.attribution import AttributionResolver
from src.adreport_core.metrics.collector import RealtimeCollector
from src.adreport_core.schemas.records import (
    AdRankingRow,
    CampaignRecord,
    ConversionEventKind,
    ConversionLogRecord,
    PlatformType,
)
from src.adreport_core.schemas.settings import (
    AccountSetting,
    PlatformInstance,
    PlatformSetting,
    ProjectSetting,
    SectionRule,
)


TODAY = date(2025, 3, 10)


@pytest.fixture
def project():
    return ProjectSetting(
        project_name="acme",
        msp_advertiser_ids=["buyer-1"],
        meta_accounts=[
            AccountSetting(account_id="act_1", account_name="Main"),
            AccountSetting(account_id="act_2"),
        ],
        tiktok_accounts=[AccountSetting(account_id="adv_1", account_name="TT")],
    )


@pytest.fixture
def resolver():
    return AttributionResolver.from_settings(
        [
            SectionRule(
                section_id="s1",
                label="Section One",
                project_name="acme",
                campaign_prefixes=["【S1】"],
                msp_ad_prefixes=["【S1】"],
            )
        ],
        [
            PlatformInstance(platform_id="p-meta", label="Meta", section_id="s1"),
            PlatformInstance(platform_id="p-tt", label="TikTok", section_id="s1"),
        ],
        [
            PlatformSetting(
                project_name="acme", section_name="s1", platform="meta", msp_link_prefixes=["fb"]
            )
        ],
    )


def _campaign(platform, account_id, name, spend, media_cv=None):
    return CampaignRecord(
        platform=platform,
        account_id=account_id,
        record_id=name,
        name=name,
        spend=spend,
        media_cv=media_cv,
    )


def _adapter(**methods):
    adapter = MagicMock()
    for name, mock in methods.items():
        setattr(adapter, name, mock)
    return adapter


def _msp(conversions=(), clicks=()):
    msp = MagicMock()
    msp.fetch_conversions = AsyncMock(return_value=list(conversions))
    msp.fetch_click_logs = AsyncMock(return_value=list(clicks))
    return msp


@pytest.mark.asyncio
async def test_collect_snapshot_combines_sources(project, resolver):
    meta = _adapter(
        fetch_campaigns=AsyncMock(
            side_effect=[
                [_campaign(PlatformType.META, "act_1", "【S1】a", 100.0, media_cv=2)],
                [_campaign(PlatformType.META, "act_2", "【S1】b", 50.0)],
            ]
        )
    )
    tiktok = _adapter(
        fetch_campaigns=AsyncMock(
            return_value=[_campaign(PlatformType.TIKTOK, "adv_1", "【S1】c", 30.0, media_cv=1)]
        )
    )
    msp = _msp(
        conversions=[
            ConversionLogRecord(
                kind=ConversionEventKind.CONVERSION, ad_name="【S1】x", prefix="【S1】", link_id="fb1"
            )
        ],
        clicks=[
            ConversionLogRecord(kind=ConversionEventKind.CLICK, ad_name="【S1】x", prefix="【S1】"),
            ConversionLogRecord(kind=ConversionEventKind.CLICK, ad_name="【S1】y", prefix="【S1】"),
        ],
    )
    collector = RealtimeCollector(
        {PlatformType.META: meta, PlatformType.TIKTOK: tiktok}, msp=msp, timeout=5
    )

    snapshot, warnings = await collector.collect_snapshot(project, resolver, TODAY)

    assert warnings == []
    assert snapshot.metric_date == TODAY
    assert snapshot.project_row.spend == 180.0
    assert snapshot.project_row.actual_cv == 3
    assert snapshot.project_row.msp_cv == 1
    assert snapshot.project_row.m_cv == 2
    assert snapshot.platform_rows["p-meta"].spend == 150.0
    assert snapshot.platform_rows["p-meta"].msp_cv == 1
    assert snapshot.platform_rows["p-tt"].spend == 30.0
    assert meta.fetch_campaigns.await_count == 2
    msp.fetch_conversions.assert_awaited_once_with(["buyer-1"], TODAY)


@pytest.mark.asyncio
async def test_failed_account_becomes_warning(project, resolver):
    meta = _adapter(
        fetch_campaigns=AsyncMock(
            side_effect=[
                SourceApiError("meta", 400, "bad account"),
                [_campaign(PlatformType.META, "act_2", "【S1】b", 50.0)],
            ]
        )
    )
    collector = RealtimeCollector({PlatformType.META: meta}, timeout=5)

    snapshot, warnings = await collector.collect_snapshot(project, resolver, TODAY)

    assert snapshot.project_row.spend == 50.0
    assert len(warnings) == 1
    assert warnings[0].startswith("Meta Main: ")
    assert "bad account" in warnings[0]


@pytest.mark.asyncio
async def test_unexpected_error_keeps_only_type_name(project, resolver):
    meta = _adapter(fetch_campaigns=AsyncMock(side_effect=RuntimeError("token=abc")))
    collector = RealtimeCollector({PlatformType.META: meta}, timeout=5)

    _, warnings = await collector.collect_snapshot(project, resolver, TODAY)

    assert warnings == ["Meta Main: RuntimeError", "Meta act_2: RuntimeError"]


@pytest.mark.asyncio
async def test_slow_source_times_out(project, resolver):
    async def slow(account, target_date):
        await asyncio.sleep(1)
        return []

    tiktok = _adapter(fetch_campaigns=slow)
    collector = RealtimeCollector({PlatformType.TIKTOK: tiktok}, timeout=0.01)

    snapshot, warnings = await collector.collect_snapshot(project, resolver, TODAY)

    assert snapshot.project_row.spend == 0.0
    assert warnings == ["TikTok TT: timed out after 0s"]


@pytest.mark.asyncio
async def test_project_without_msp_ids_skips_conversion_log(resolver):
    msp = _msp()
    collector = RealtimeCollector({}, msp=msp, timeout=5)

    await collector.collect_snapshot(ProjectSetting(project_name="acme"), resolver, TODAY)

    msp.fetch_conversions.assert_not_called()
    msp.fetch_click_logs.assert_not_called()


@pytest.mark.asyncio
async def test_collect_ad_rows_sorted_by_spend(project):
    def ad(platform, account_id, ad_id, spend):
        return AdRankingRow(
            platform=platform,
            account_id=account_id,
            account_name=account_id,
            ad_id=ad_id,
            ad_name=ad_id,
            spend=spend,
        )

    meta = _adapter(
        fetch_ads=AsyncMock(
            side_effect=[
                [ad(PlatformType.META, "act_1", "m1", 10.0)],
                SourceConfigurationError("meta", ["META_ACCESS_TOKEN"]),
            ]
        )
    )
    tiktok = _adapter(
        fetch_ads=AsyncMock(return_value=[ad(PlatformType.TIKTOK, "adv_1", "t1", 30.0)])
    )
    collector = RealtimeCollector({PlatformType.META: meta, PlatformType.TIKTOK: tiktok}, timeout=5)

    rows, warnings = await collector.collect_ad_rows(project, date(2025, 3, 1), TODAY)

    assert [row.ad_id for row in rows] == ["t1", "m1"]
    assert warnings == ["Meta act_2: meta is not configured (missing: META_ACCESS_TOKEN)"]
    tiktok.fetch_ads.assert_awaited_once_with(
        project.tiktok_accounts[0], date(2025, 3, 1), TODAY
    )
