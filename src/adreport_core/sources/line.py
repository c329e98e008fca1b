"""LINE Ads API report source.

Requests are authenticated with a JWS-style HS256 token signed per request:
the payload is the body digest, content type, UTC date and API path joined by
newlines.
"""
import base64
import hashlib
import hmac
import json
import logging
from datetime import date, datetime, timezone
from email.utils import format_datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import SourceCredentials
from ..exceptions import SourceResponseError
from ..schemas.records import NAME_FALLBACK, AdRankingRow, CampaignRecord, PlatformType
from ..schemas.settings import AccountSetting
from .base import AdSourceAdapter, first_present, to_nullable_number, to_number


logger = logging.getLogger(__name__)

PAGE_SIZE = 100

CAMPAIGN_ENTITY_KEYS = ("campaign", "campaignGroup", "campaign_group")
AD_ENTITY_KEYS = ("ad", "adGroup", "adgroup")


def base64url_encode(value: bytes) -> str:
    """URL-safe base64 that keeps "=" padding, as the LINE API expects."""
    return base64.b64encode(value).decode("ascii").replace("+", "-").replace("/", "_")


def normalize_line_path(path: str) -> str:
    normalized = path if path.startswith("/") else f"/{path}"
    if not normalized.startswith("/api/") and normalized != "/api":
        normalized = f"/api{normalized}"
    return normalized


def build_line_token(
    access_key: str,
    secret_key: str,
    path: str,
    now: datetime,
    body: str = "",
    content_type: str = "",
) -> str:
    """Build the signed bearer token for one request.

    Args:
        access_key: LINE access key (used as the JWS kid)
        secret_key: LINE secret key (HMAC-SHA256 key)
        path: Request path, with or without the /api prefix
        now: Request time; only its UTC calendar date is signed
        body: Request body, empty for GET
        content_type: Request content type, empty for GET
    """
    header = json.dumps(
        {"alg": "HS256", "kid": access_key, "typ": "text/plain"}, separators=(",", ":")
    )
    payload = "\n".join(
        [
            hashlib.sha256(body.encode("utf-8")).hexdigest(),
            content_type,
            now.astimezone(timezone.utc).strftime("%Y%m%d"),
            normalize_line_path(path),
        ]
    )
    signing_input = (
        f"{base64url_encode(header.encode('utf-8'))}.{base64url_encode(payload.encode('utf-8'))}"
    )
    signature = hmac.new(
        secret_key.encode("utf-8"), signing_input.encode("utf-8"), hashlib.sha256
    ).digest()
    return f"{signing_input}.{base64url_encode(signature)}"


class LinePaging(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    total_pages: Optional[int] = Field(None, alias="totalPages")
    total_pages_snake: Optional[int] = Field(None, alias="total_pages")
    total_page: Optional[int] = Field(None, alias="totalPage")

    @property
    def resolved_total_pages(self) -> Optional[int]:
        return self.total_pages or self.total_pages_snake or self.total_page


class LineReportPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    datas: list[dict[str, Any]] = Field(default_factory=list)
    paging: Optional[LinePaging] = None

    @field_validator("datas", mode="before")
    @classmethod
    def non_list_datas_as_empty(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return []
        return [record for record in v if isinstance(record, dict)]


def _entity(record: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    for key in keys:
        value = record.get(key)
        if isinstance(value, dict):
            return value
    return {}


def _media_cv(stats: dict[str, Any]) -> Optional[float]:
    return to_nullable_number(first_present(stats, "cv", "conversions", "conversion"))


class LineSource(AdSourceAdapter):
    """LINE Ads online reports at campaign and ad level."""

    platform = PlatformType.LINE.value

    def __init__(self, credentials: SourceCredentials, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._access_key = credentials.line_access_key
        self._secret_key = credentials.line_secret_key
        self.base_url = credentials.line_api_base_url.rstrip("/")
        self.campaign_endpoint = credentials.line_campaign_report_endpoint
        self.ad_endpoint = credentials.line_ad_report_endpoint

    def _secrets(self) -> list[Optional[str]]:
        return [self._secret_key]

    def missing_credentials(self) -> list[str]:
        missing = []
        if not self._access_key:
            missing.append("LINE_ACCESS_KEY")
        if not self._secret_key:
            missing.append("LINE_SECRET_KEY")
        return missing

    def _headers(self, path: str) -> dict[str, str]:
        now = datetime.now(timezone.utc)
        token = build_line_token(self._access_key, self._secret_key, path, now)
        return {
            "Authorization": f"Bearer {token}",
            "Date": format_datetime(now, usegmt=True),
        }

    async def _fetch_report(
        self, endpoint_template: str, account_id: str, since: date, until: date
    ) -> list[dict[str, Any]]:
        """Page through a report until an empty page or the last page."""
        endpoint = endpoint_template.replace("{adAccountId}", account_id)
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"
        url = f"{self.base_url}{endpoint}"

        records: list[dict[str, Any]] = []
        page = 1
        while True:
            payload = await self._request_json(
                "GET",
                url,
                params={
                    "page": str(page),
                    "size": str(PAGE_SIZE),
                    "since": since.isoformat(),
                    "until": until.isoformat(),
                },
                headers=self._headers(endpoint),
            )
            try:
                report = LineReportPage.model_validate(payload)
            except ValidationError as exc:
                raise SourceResponseError(self.platform, str(exc)) from exc

            records.extend(report.datas)
            total_pages = report.paging.resolved_total_pages if report.paging else None
            if not report.datas or (total_pages is not None and page >= total_pages):
                break
            page += 1
        return records

    async def _fetch_campaigns(
        self, account: AccountSetting, target_date: date
    ) -> list[CampaignRecord]:
        records = await self._fetch_report(
            self.campaign_endpoint, account.account_id, target_date, target_date
        )
        rows = []
        for record in records:
            info = _entity(record, CAMPAIGN_ENTITY_KEYS)
            stats = record.get("statistics") or {}
            campaign_id = str(info.get("id") or record.get("campaignId") or "")
            rows.append(
                CampaignRecord(
                    platform=PlatformType.LINE,
                    account_id=account.account_id,
                    record_id=campaign_id,
                    name=info.get("name") or record.get("campaignName") or campaign_id or NAME_FALLBACK,
                    spend=max(to_number(first_present(stats, "cost", "spend")), 0.0),
                    impressions=to_number(first_present(stats, "impressions", "imp")),
                    clicks=to_number(first_present(stats, "clicks", "click")),
                    media_cv=_media_cv(stats),
                )
            )
        return rows

    async def _fetch_ads(
        self, account: AccountSetting, start: date, end: date
    ) -> list[AdRankingRow]:
        records = await self._fetch_report(self.ad_endpoint, account.account_id, start, end)
        rows = []
        for record in records:
            info = _entity(record, AD_ENTITY_KEYS)
            stats = record.get("statistics") or {}
            ad_id = str(info.get("id") or record.get("adId") or "")
            rows.append(
                AdRankingRow(
                    platform=PlatformType.LINE,
                    account_id=account.account_id,
                    account_name=account.display_name,
                    ad_id=ad_id,
                    ad_name=info.get("name") or record.get("adName") or ad_id or NAME_FALLBACK,
                    spend=to_number(first_present(stats, "cost", "spend")),
                    media_cv=_media_cv(stats),
                )
            )
        return rows
