"""Meta Marketing API insights source.

Campaign and ad insights are read from /{act_id}/insights and followed
through paging.next. Media conversions are resolved from the `results`
column first and from the `conversions` action list otherwise.
"""
import json
import logging
from datetime import date
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import SourceCredentials
from ..exceptions import SourceApiError, SourceResponseError
from ..schemas.records import NAME_FALLBACK, AdRankingRow, CampaignRecord, PlatformType
from ..schemas.settings import AccountSetting
from .base import AdSourceAdapter, to_nullable_number, to_number


logger = logging.getLogger(__name__)

GRAPH_API_BASE_URL = "https://graph.facebook.com/v19.0"

CAMPAIGN_FIELDS = "campaign_id,campaign_name,spend,impressions,clicks,results,conversions"
AD_FIELDS = "ad_id,ad_name,spend,conversions,results"


class MetaActionEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action_type: Optional[str] = None
    action_target_id: Optional[str] = None
    value: Any = None


class MetaResultValue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    value: Any = None


class MetaResultEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    indicator: Optional[str] = None
    values: list[MetaResultValue] = Field(default_factory=list)

    @field_validator("values", mode="before")
    @classmethod
    def null_values_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class MetaInsightRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    campaign_id: Optional[str] = None
    campaign_name: Optional[str] = None
    ad_id: Optional[str] = None
    ad_name: Optional[str] = None
    spend: Any = None
    impressions: Any = None
    clicks: Any = None
    conversions: list[MetaActionEntry] = Field(default_factory=list)
    results: Union[list[MetaResultEntry], str, float, None] = None

    @field_validator("conversions", mode="before")
    @classmethod
    def null_conversions_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("results", mode="before")
    @classmethod
    def drop_null_results(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [entry for entry in v if entry is not None]
        return v


class MetaPaging(BaseModel):
    model_config = ConfigDict(extra="ignore")

    next: Optional[str] = None


class MetaInsightsPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[MetaInsightRow] = Field(default_factory=list)
    paging: Optional[MetaPaging] = None

    @field_validator("data", mode="before")
    @classmethod
    def null_data_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v


def extract_result_value(results: Union[list[MetaResultEntry], str, float, None]) -> Optional[float]:
    """Sum the values of the first result entry that carries any."""
    if results is None:
        return None
    if isinstance(results, (str, float, int)):
        return to_nullable_number(results)
    for entry in results:
        if entry.values:
            return sum(to_nullable_number(item.value) or 0.0 for item in entry.values)
    return None


def extract_result_action_type(
    results: Union[list[MetaResultEntry], str, float, None],
) -> Optional[str]:
    """The action named by a result indicator, e.g. "actions:lead" -> "lead"."""
    indicator: Optional[str] = None
    if isinstance(results, str):
        indicator = results
    elif isinstance(results, list):
        indicator = next((entry.indicator for entry in results if entry.indicator), None)
    if not indicator:
        return None
    _, sep, tail = indicator.partition(":")
    return tail if sep else indicator


def matches_action(action: MetaActionEntry, target: str) -> bool:
    if not target:
        return False
    if action.action_target_id == target or action.action_type == target:
        return True
    action_type = action.action_type or ""
    return action_type.endswith(f".{target}") or action_type == f"offsite_conversion.custom.{target}"


def find_action_value(actions: list[MetaActionEntry], target: str) -> Optional[float]:
    for action in actions:
        if matches_action(action, target):
            return to_nullable_number(action.value)
    return None


class MetaSource(AdSourceAdapter):
    """Meta (Facebook/Instagram) insights."""

    platform = PlatformType.META.value

    def __init__(self, credentials: SourceCredentials, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._access_token = credentials.meta_access_token
        self.result_action_target = credentials.meta_result_action_target
        self.result_action_type = credentials.meta_result_action_type

    def _secrets(self) -> list[Optional[str]]:
        return [self._access_token]

    def missing_credentials(self) -> list[str]:
        return [] if self._access_token else ["META_ACCESS_TOKEN"]

    @staticmethod
    def _account_path(account_id: str) -> str:
        return account_id if account_id.startswith("act_") else f"act_{account_id}"

    def resolve_media_cv(self, row: MetaInsightRow) -> Optional[float]:
        """Media conversions for an insight row, or None when unreported."""
        value = extract_result_value(row.results)
        if value is not None:
            return value

        for target in (
            self.result_action_target,
            self.result_action_type,
            extract_result_action_type(row.results),
        ):
            if target:
                value = find_action_value(row.conversions, target)
                if value is not None:
                    return value
        return None

    async def _fetch_insights(self, account_id: str, params: dict) -> list[MetaInsightRow]:
        url: Optional[str] = f"{GRAPH_API_BASE_URL}/{self._account_path(account_id)}/insights"
        query: Optional[dict] = {"access_token": self._access_token, "limit": "500", **params}
        rows: list[MetaInsightRow] = []

        while url:
            payload = await self._request_json("GET", url, params=query)
            if isinstance(payload, dict) and payload.get("error"):
                error = payload["error"]
                message = error.get("message") if isinstance(error, dict) else str(error)
                raise SourceApiError(self.platform, 200, self._redact(message or "Meta API error"))
            try:
                page = MetaInsightsPage.model_validate(payload)
            except ValidationError as exc:
                raise SourceResponseError(self.platform, str(exc)) from exc

            rows.extend(page.data)
            # paging.next already carries every query parameter
            url = page.paging.next if page.paging else None
            query = None

        return rows

    async def _fetch_campaigns(
        self, account: AccountSetting, target_date: date
    ) -> list[CampaignRecord]:
        date_str = target_date.isoformat()
        rows = await self._fetch_insights(
            account.account_id,
            {
                "level": "campaign",
                "fields": CAMPAIGN_FIELDS,
                "time_range": json.dumps({"since": date_str, "until": date_str}),
                "time_increment": "1",
            },
        )
        return [
            CampaignRecord(
                platform=PlatformType.META,
                account_id=account.account_id,
                record_id=row.campaign_id or "",
                name=row.campaign_name or NAME_FALLBACK,
                spend=max(to_number(row.spend), 0.0),
                impressions=to_number(row.impressions),
                clicks=to_number(row.clicks),
                media_cv=self.resolve_media_cv(row),
            )
            for row in rows
        ]

    async def _fetch_ads(
        self, account: AccountSetting, start: date, end: date
    ) -> list[AdRankingRow]:
        rows = await self._fetch_insights(
            account.account_id,
            {
                "level": "ad",
                "fields": AD_FIELDS,
                "action_breakdowns": "action_type,action_target_id",
                "use_account_attribution_setting": "true",
                "time_range": json.dumps({"since": start.isoformat(), "until": end.isoformat()}),
            },
        )
        return [
            AdRankingRow(
                platform=PlatformType.META,
                account_id=account.account_id,
                account_name=account.display_name,
                ad_id=row.ad_id or "",
                ad_name=row.ad_name or NAME_FALLBACK,
                spend=to_number(row.spend),
                media_cv=self.resolve_media_cv(row),
            )
            for row in rows
        ]
