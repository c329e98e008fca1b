"""Intermediate records produced by source adapters."""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field


UNCLASSIFIED_PREFIX = "その他"
NAME_FALLBACK = "(名前未設定)"


class PlatformType(str, Enum):
    META = "meta"
    TIKTOK = "tiktok"
    GOOGLE = "google"
    LINE = "line"

    @property
    def label(self) -> str:
        return PLATFORM_LABELS[self]


PLATFORM_LABELS = {
    PlatformType.META: "Meta",
    PlatformType.TIKTOK: "TikTok",
    PlatformType.GOOGLE: "Google",
    PlatformType.LINE: "LINE",
}


class CampaignRecord(BaseModel):
    """One campaign (or ad) day of delivery metrics from an ad platform."""

    platform: PlatformType
    account_id: str
    record_id: str
    name: str
    spend: float = Field(0.0, ge=0)
    impressions: float = 0.0
    clicks: float = 0.0
    media_cv: Optional[float] = None


class ConversionEventKind(str, Enum):
    CONVERSION = "conversion"
    CLICK = "click"


class ConversionLogRecord(BaseModel):
    """One row of the conversion-log console (a conversion or a click)."""

    kind: ConversionEventKind
    ad_name: str
    prefix: str = UNCLASSIFIED_PREFIX
    link_id: Optional[str] = None


class AdRankingRow(BaseModel):
    """One ad's spend and media conversions over a date range."""

    platform: PlatformType
    account_id: str
    account_name: str
    ad_id: str
    ad_name: str
    spend: float = 0.0
    media_cv: Optional[float] = None

    @computed_field
    @property
    def cpa(self) -> Optional[float]:
        if self.media_cv is None or self.media_cv <= 0:
            return None
        return self.spend / self.media_cv


class RankingDisplayRow(BaseModel):
    """A ranking line as displayed: a single ad or a tag group."""

    key: str
    platform_label: str
    ad_name: str
    spend: float = 0.0
    media_cv: Optional[float] = None
    cpa: Optional[float] = None
