"""Platform source adapters (ad delivery and conversion logs)."""
import asyncio
from typing import Optional

import aiohttp

from ..config import SourceCredentials
from ..schemas.records import PlatformType
from .base import AdSourceAdapter, BaseSourceAdapter
from .google_ads import GoogleAdsSource
from .line import LineSource
from .meta import MetaSource
from .msp import MspSessionAuthenticator, MspSource
from .tiktok import TikTokSource


def build_adapters(
    credentials: SourceCredentials,
    session: aiohttp.ClientSession,
    request_semaphore: Optional[asyncio.Semaphore] = None,
) -> dict[PlatformType, AdSourceAdapter]:
    """Create one ad-platform adapter per platform, sharing session and semaphore."""
    return {
        PlatformType.META: MetaSource(credentials, session, request_semaphore),
        PlatformType.TIKTOK: TikTokSource(credentials, session, request_semaphore),
        PlatformType.GOOGLE: GoogleAdsSource(credentials, session, request_semaphore),
        PlatformType.LINE: LineSource(credentials, session, request_semaphore),
    }


__all__ = [
    "AdSourceAdapter",
    "BaseSourceAdapter",
    "GoogleAdsSource",
    "LineSource",
    "MetaSource",
    "MspSessionAuthenticator",
    "MspSource",
    "TikTokSource",
    "build_adapters",
]
