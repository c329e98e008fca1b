"""Runtime configuration read from environment variables."""
import logging
import os
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)

DEFAULT_LINE_CAMPAIGN_ENDPOINT = "/api/v3/adaccounts/{adAccountId}/reports/online/campaign"
DEFAULT_LINE_AD_ENDPOINT = "/api/v3/adaccounts/{adAccountId}/reports/online/ad"


def resolve_timezone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except Exception:
        logger.warning("Invalid REPORT_TIMEZONE '%s', using UTC", tz_name)
        return ZoneInfo("UTC")


def _env_int(name: str, default: int, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s '%s', using %s", name, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("%s must be at least %s, got %s; using %s", name, minimum, value, default)
        return default
    return value


class SourceCredentials(BaseModel):
    """Credentials and tuning for every platform source.

    Blank values mean "not configured"; adapters treat that as disabled.
    """

    meta_access_token: str = ""
    meta_result_action_type: str = ""
    meta_result_action_target: str = "Cst_ABTestCV"

    tiktok_access_token: str = ""
    tiktok_business_id: str = ""
    tiktok_result_metric: str = "result"

    google_ads_developer_token: str = ""
    google_ads_client_id: str = ""
    google_ads_client_secret: str = ""
    google_ads_refresh_token: str = ""
    google_ads_login_customer_id: str = ""
    google_ads_api_version: str = "v18"

    line_access_key: str = ""
    line_secret_key: str = ""
    line_api_base_url: str = "https://ads.line.me"
    line_campaign_report_endpoint: str = DEFAULT_LINE_CAMPAIGN_ENDPOINT
    line_ad_report_endpoint: str = DEFAULT_LINE_AD_ENDPOINT

    msp_login_email: str = ""
    msp_login_password: str = ""
    msp_login_url: str = "https://console.a-msp.jp/login"
    msp_conversions_url: str = "https://console.a-msp.jp/conversions"
    msp_logs_url: str = "https://console.a-msp.jp/logs/delivery"

    @classmethod
    def from_env(cls) -> "SourceCredentials":
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(name.upper())
            if raw:
                values[name] = raw
        return cls(**values)


class ReportConfig(BaseModel):
    """Service-level settings for the report engine."""

    timezone: str = "Asia/Tokyo"
    source_timeout: float = Field(60.0, gt=0)
    max_concurrency: int = Field(8, ge=1)
    settings_path: Path = Path("data/report_settings.json")
    warehouse_path: Path = Path("data/warehouse.db")
    api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ReportConfig":
        return cls(
            timezone=os.getenv("REPORT_TIMEZONE", "Asia/Tokyo"),
            source_timeout=float(_env_int("REPORT_SOURCE_TIMEOUT", 60, minimum=1)),
            max_concurrency=_env_int("REPORT_MAX_CONCURRENCY", 8, minimum=1),
            settings_path=Path(os.getenv("REPORT_SETTINGS_PATH", "data/report_settings.json")),
            warehouse_path=Path(os.getenv("REPORT_WAREHOUSE_PATH", "data/warehouse.db")),
            api_key=os.getenv("REPORT_API_KEY"),
        )

    @property
    def tzinfo(self) -> ZoneInfo:
        return resolve_timezone(self.timezone)
