"""Google Ads REST source (googleAds:search with OAuth refresh tokens)."""
import asyncio
import logging
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import SourceCredentials
from ..exceptions import SourceApiError, SourceResponseError
from ..schemas.records import NAME_FALLBACK, AdRankingRow, CampaignRecord, PlatformType
from ..schemas.settings import AccountSetting
from .base import AdSourceAdapter, to_nullable_number, to_number


logger = logging.getLogger(__name__)

OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_ADS_BASE_URL = "https://googleads.googleapis.com"


def normalize_customer_id(value: str) -> str:
    return value.replace("-", "").strip()


class _Entity(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: Optional[str] = None
    name: Optional[str] = None


class _AdGroupAd(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ad: _Entity = Field(default_factory=_Entity)


class _Metrics(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    cost_micros: Any = Field(None, alias="costMicros")
    impressions: Any = None
    clicks: Any = None
    conversions: Any = None


class GoogleAdsRow(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    campaign: _Entity = Field(default_factory=_Entity)
    ad_group_ad: _AdGroupAd = Field(default_factory=_AdGroupAd, alias="adGroupAd")
    metrics: _Metrics = Field(default_factory=_Metrics)

    @property
    def spend(self) -> float:
        return to_number(self.metrics.cost_micros) / 1_000_000


class GoogleAdsSearchPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: list[GoogleAdsRow] = Field(default_factory=list)
    next_page_token: Optional[str] = Field(None, alias="nextPageToken")


class GoogleAdsSource(AdSourceAdapter):
    """Google Ads campaign and ad metrics via GAQL."""

    platform = PlatformType.GOOGLE.value

    def __init__(self, credentials: SourceCredentials, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._developer_token = credentials.google_ads_developer_token
        self._client_id = credentials.google_ads_client_id
        self._client_secret = credentials.google_ads_client_secret
        self._refresh_token = credentials.google_ads_refresh_token
        self.login_customer_id = credentials.google_ads_login_customer_id
        self.api_version = credentials.google_ads_api_version
        self._access_token: Optional[str] = None
        self._token_lock = asyncio.Lock()

    def _secrets(self) -> list[Optional[str]]:
        return [
            self._developer_token,
            self._client_secret,
            self._refresh_token,
            self._access_token,
        ]

    def missing_credentials(self) -> list[str]:
        required = {
            "GOOGLE_ADS_DEVELOPER_TOKEN": self._developer_token,
            "GOOGLE_ADS_CLIENT_ID": self._client_id,
            "GOOGLE_ADS_CLIENT_SECRET": self._client_secret,
            "GOOGLE_ADS_REFRESH_TOKEN": self._refresh_token,
        }
        return [name for name, value in required.items() if not value]

    async def _get_access_token(self) -> str:
        """Exchange the refresh token once per adapter instance."""
        async with self._token_lock:
            if self._access_token:
                return self._access_token
            payload = await self._request_json(
                "POST",
                OAUTH_TOKEN_URL,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": self._refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            token = str((payload or {}).get("access_token") or "").strip()
            if not token:
                raise SourceApiError(
                    self.platform, 200, "OAuth token exchange returned no access_token"
                )
            self._access_token = token
            return token

    async def search(self, customer_id: str, query: str) -> list[GoogleAdsRow]:
        """Run a GAQL query, following nextPageToken until exhausted."""
        access_token = await self._get_access_token()
        url = (
            f"{GOOGLE_ADS_BASE_URL}/{self.api_version}/customers/"
            f"{normalize_customer_id(customer_id)}/googleAds:search"
        )
        headers = {
            "Authorization": f"Bearer {access_token}",
            "developer-token": self._developer_token,
            "Content-Type": "application/json",
        }
        if self.login_customer_id:
            headers["login-customer-id"] = normalize_customer_id(self.login_customer_id)

        rows: list[GoogleAdsRow] = []
        page_token = ""
        while True:
            body: dict[str, Any] = {"query": query}
            if page_token:
                body["pageToken"] = page_token
            payload = await self._request_json("POST", url, json=body, headers=headers)
            try:
                page = GoogleAdsSearchPage.model_validate(payload)
            except ValidationError as exc:
                raise SourceResponseError(self.platform, str(exc)) from exc
            rows.extend(page.results)
            page_token = (page.next_page_token or "").strip()
            if not page_token:
                break
        return rows

    async def _fetch_campaigns(
        self, account: AccountSetting, target_date: date
    ) -> list[CampaignRecord]:
        query = (
            "SELECT campaign.id, campaign.name, metrics.cost_micros, "
            "metrics.impressions, metrics.clicks, metrics.conversions "
            "FROM campaign "
            f"WHERE segments.date = '{target_date.isoformat()}' "
            "ORDER BY metrics.cost_micros DESC"
        )
        rows = await self.search(account.account_id, query)
        return [
            CampaignRecord(
                platform=PlatformType.GOOGLE,
                account_id=account.account_id,
                record_id=row.campaign.id or "",
                name=row.campaign.name or row.campaign.id or NAME_FALLBACK,
                spend=max(row.spend, 0.0),
                impressions=to_number(row.metrics.impressions),
                clicks=to_number(row.metrics.clicks),
                media_cv=to_nullable_number(row.metrics.conversions),
            )
            for row in rows
        ]

    async def _fetch_ads(
        self, account: AccountSetting, start: date, end: date
    ) -> list[AdRankingRow]:
        query = (
            "SELECT ad_group_ad.ad.id, ad_group_ad.ad.name, "
            "metrics.cost_micros, metrics.conversions "
            "FROM ad_group_ad "
            f"WHERE segments.date BETWEEN '{start.isoformat()}' AND '{end.isoformat()}' "
            "ORDER BY metrics.cost_micros DESC"
        )
        rows = await self.search(account.account_id, query)
        return [
            AdRankingRow(
                platform=PlatformType.GOOGLE,
                account_id=account.account_id,
                account_name=account.display_name,
                ad_id=row.ad_group_ad.ad.id or "",
                ad_name=row.ad_group_ad.ad.name or row.ad_group_ad.ad.id or NAME_FALLBACK,
                spend=row.spend,
                media_cv=to_nullable_number(row.metrics.conversions),
            )
            for row in rows
        ]
