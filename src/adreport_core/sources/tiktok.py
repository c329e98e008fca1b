"""TikTok Business API report source."""
import json
import logging
import math
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import SourceCredentials
from ..exceptions import SourceApiError, SourceResponseError
from ..schemas.records import NAME_FALLBACK, AdRankingRow, CampaignRecord, PlatformType
from ..schemas.settings import AccountSetting
from .base import (
    AdSourceAdapter,
    chunk_list,
    first_present,
    is_zero_like,
    to_nullable_number,
    to_number,
)


logger = logging.getLogger(__name__)

TIKTOK_API_BASE_URL = "https://business-api.tiktok.com/open_api/v1.3"

CAMPAIGN_PAGE_SIZE = 100
AD_PAGE_SIZE = 200
NAME_LOOKUP_CHUNK = 100


class TikTokReportRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    dimensions: dict[str, Any] = Field(default_factory=dict)
    metrics: dict[str, Any] = Field(default_factory=dict)

    @field_validator("dimensions", "metrics", mode="before")
    @classmethod
    def null_as_empty(cls, v: Any) -> Any:
        return {} if v is None else v


class TikTokPageInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total_number: Optional[int] = None
    total_page: Optional[int] = None


class TikTokReportData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    rows: list[TikTokReportRow] = Field(default_factory=list, alias="list")
    page_info: Optional[TikTokPageInfo] = None

    @field_validator("rows", mode="before")
    @classmethod
    def null_rows_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class TikTokEnvelope(BaseModel):
    """Every TikTok response: code 0 means success."""

    model_config = ConfigDict(extra="ignore")

    code: int = 0
    message: Optional[str] = None
    data: Optional[dict[str, Any]] = None


class TikTokSource(AdSourceAdapter):
    """TikTok auction campaign and ad reports."""

    platform = PlatformType.TIKTOK.value

    def __init__(self, credentials: SourceCredentials, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._access_token = credentials.tiktok_access_token
        self.business_id = credentials.tiktok_business_id
        self.result_metric = credentials.tiktok_result_metric

    def _secrets(self) -> list[Optional[str]]:
        return [self._access_token]

    def missing_credentials(self) -> list[str]:
        return [] if self._access_token else ["TIKTOK_ACCESS_TOKEN"]

    def _headers(self) -> dict[str, str]:
        headers = {
            "Access-Token": self._access_token,
            "Content-Type": "application/json",
        }
        if self.business_id:
            headers["Business-Id"] = self.business_id
        return headers

    async def _get(self, path: str, params: dict) -> dict[str, Any]:
        """GET an endpoint and unwrap the envelope.

        Raises:
            SourceApiError: If the envelope code is not 0
        """
        payload = await self._request_json(
            "GET", f"{TIKTOK_API_BASE_URL}/{path}/", params=params, headers=self._headers()
        )
        try:
            envelope = TikTokEnvelope.model_validate(payload)
        except ValidationError as exc:
            raise SourceResponseError(self.platform, str(exc)) from exc
        if envelope.code != 0:
            raise SourceApiError(
                self.platform, 200, envelope.message or f"TikTok API code {envelope.code}"
            )
        return envelope.data or {}

    async def _get_report_page(self, params: dict) -> TikTokReportData:
        data = await self._get("report/integrated/get", params)
        try:
            return TikTokReportData.model_validate(data)
        except ValidationError as exc:
            raise SourceResponseError(self.platform, str(exc)) from exc

    def _media_cv(self, metrics: dict[str, Any]) -> Optional[float]:
        return to_nullable_number(first_present(metrics, self.result_metric, "result", "results"))

    @staticmethod
    def _spend(metrics: dict[str, Any]) -> float:
        spend = metrics.get("spend")
        stat_cost = first_present(metrics, "stat_cost", "statCost")
        if is_zero_like(spend) and not is_zero_like(stat_cost):
            return to_number(stat_cost)
        return to_number(spend)

    async def _fetch_names(
        self, advertiser_id: str, kind: str, ids: list[str]
    ) -> dict[str, str]:
        """Look up campaign or ad names in chunks; failed chunks are skipped.

        Args:
            advertiser_id: TikTok advertiser id
            kind: "campaign" or "ad"
            ids: Entity ids to resolve
        """
        unique_ids = list(dict.fromkeys(i for i in ids if i))
        if not unique_ids:
            return {}

        async def lookup(chunk: list[str]) -> dict[str, str]:
            data = await self._get(
                f"{kind}/get",
                {
                    "advertiser_id": advertiser_id,
                    "page": "1",
                    "page_size": str(len(chunk)),
                    "filtering": json.dumps({f"{kind}_ids": chunk}),
                },
            )
            names = {}
            for item in data.get("list") or []:
                entity_id = item.get(f"{kind}_id")
                if entity_id:
                    names[str(entity_id)] = item.get(f"{kind}_name") or ""
            return names

        name_map: dict[str, str] = {}
        for names in await self._gather_chunks(lookup, chunk_list(unique_ids, NAME_LOOKUP_CHUNK)):
            if names:
                name_map.update(names)
        return name_map

    async def _fetch_campaigns(
        self, account: AccountSetting, target_date: date
    ) -> list[CampaignRecord]:
        advertiser_id = account.account_id
        date_str = target_date.isoformat()
        raw_rows: list[TikTokReportRow] = []
        page = 1
        total_pages = 1

        while page <= total_pages:
            data = await self._get_report_page(
                {
                    "advertiser_id": advertiser_id,
                    "service_type": "AUCTION",
                    "report_type": "BASIC",
                    "data_level": "AUCTION_CAMPAIGN",
                    "dimensions": json.dumps(["campaign_id"]),
                    "metrics": json.dumps(["spend", "impressions", "clicks", self.result_metric]),
                    "start_date": date_str,
                    "end_date": date_str,
                    "page": str(page),
                    "page_size": str(CAMPAIGN_PAGE_SIZE),
                    "order_field": "spend",
                    "order_type": "DESC",
                }
            )
            if not data.rows:
                break
            raw_rows.extend(data.rows)
            if data.page_info and data.page_info.total_number:
                total_pages = max(1, math.ceil(data.page_info.total_number / CAMPAIGN_PAGE_SIZE))
            page += 1

        campaign_ids = [str(row.dimensions.get("campaign_id") or "") for row in raw_rows]
        names = await self._fetch_names(advertiser_id, "campaign", campaign_ids)

        records = []
        for row, campaign_id in zip(raw_rows, campaign_ids):
            name = row.dimensions.get("campaign_name") or names.get(campaign_id) or campaign_id
            records.append(
                CampaignRecord(
                    platform=PlatformType.TIKTOK,
                    account_id=advertiser_id,
                    record_id=campaign_id,
                    name=name or NAME_FALLBACK,
                    spend=max(self._spend(row.metrics), 0.0),
                    impressions=to_number(row.metrics.get("impressions")),
                    clicks=to_number(row.metrics.get("clicks")),
                    media_cv=self._media_cv(row.metrics),
                )
            )
        return records

    async def _fetch_ads(
        self, account: AccountSetting, start: date, end: date
    ) -> list[AdRankingRow]:
        advertiser_id = account.account_id
        raw_rows: list[TikTokReportRow] = []
        page = 1
        total_pages = 1

        while page <= total_pages:
            data = await self._get_report_page(
                {
                    "advertiser_id": advertiser_id,
                    "service_type": "AUCTION",
                    "report_type": "BASIC",
                    "data_level": "AUCTION_AD",
                    "dimensions": json.dumps(["ad_id"]),
                    "metrics": json.dumps(["spend", self.result_metric]),
                    "start_date": start.isoformat(),
                    "end_date": end.isoformat(),
                    "page": str(page),
                    "page_size": str(AD_PAGE_SIZE),
                    "order_field": "spend",
                    "order_type": "DESC",
                }
            )
            raw_rows.extend(data.rows)
            total_pages = (data.page_info.total_page if data.page_info else None) or 1
            page += 1

        ad_ids = [str(row.dimensions.get("ad_id") or "") for row in raw_rows]
        names = await self._fetch_names(advertiser_id, "ad", ad_ids)

        return [
            AdRankingRow(
                platform=PlatformType.TIKTOK,
                account_id=advertiser_id,
                account_name=account.display_name,
                ad_id=ad_id,
                ad_name=row.dimensions.get("ad_name") or names.get(ad_id) or ad_id or NAME_FALLBACK,
                spend=to_number(row.metrics.get("spend")),
                media_cv=self._media_cv(row.metrics),
            )
            for row, ad_id in zip(raw_rows, ad_ids)
        ]
