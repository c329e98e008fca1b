"""Ad ranking views: per-ad leaderboards and name-tag groupings.

Creative names carry tags such as "【冒頭1】[P2]summer.mp4", where 冒頭 marks
the intro cut and [P…] the pattern variant. Grouped views sum spend and media
conversions across all ads sharing a tag.
"""
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ..schemas.records import (
    PLATFORM_LABELS,
    AdRankingRow,
    PlatformType,
    RankingDisplayRow,
)


class RankingView(str, Enum):
    AD = "ad"
    INTRO_AND_VARIANT = "intro_and_variant"
    VARIANT = "variant"
    INTRO = "intro"


class RankingSort(str, Enum):
    SPEND = "spend"
    MEDIA_CV = "media_cv"
    CPA = "cpa"


_INTRO_AND_VARIANT_PATTERN = re.compile(r"^(【冒頭\d+】\[P\d+\])")
_INTRO_PATTERN = re.compile(r"^(【冒頭\d+】)")
_VARIANT_PATTERN = re.compile(r"(\[P\d+\])")

_PLATFORM_ORDER = [PlatformType.META, PlatformType.TIKTOK, PlatformType.GOOGLE, PlatformType.LINE]


def extract_intro_and_variant(name: str) -> Optional[str]:
    match = _INTRO_AND_VARIANT_PATTERN.match(name)
    return match.group(1) if match else None


def extract_intro(name: str) -> Optional[str]:
    match = _INTRO_PATTERN.match(name)
    return match.group(1) if match else None


def extract_variant(name: str) -> Optional[str]:
    match = _VARIANT_PATTERN.search(name)
    return match.group(1) if match else None


_EXTRACTORS: dict[RankingView, Callable[[str], Optional[str]]] = {
    RankingView.INTRO_AND_VARIANT: extract_intro_and_variant,
    RankingView.VARIANT: extract_variant,
    RankingView.INTRO: extract_intro,
}


def ranking_cpa(spend: float, media_cv: Optional[float]) -> Optional[float]:
    """CPA for ranking rows; None when conversions are missing or zero."""
    if media_cv is None or media_cv <= 0:
        return None
    return spend / media_cv


def platform_label(platforms: set[PlatformType]) -> str:
    return " / ".join(PLATFORM_LABELS[p] for p in _PLATFORM_ORDER if p in platforms)


@dataclass
class _TagGroup:
    spend: float = 0.0
    media_cv: Optional[float] = None
    platforms: set[PlatformType] = field(default_factory=set)


def group_rows(
    rows: list[AdRankingRow], extractor: Callable[[str], Optional[str]]
) -> list[RankingDisplayRow]:
    """Sum rows sharing the same extracted tag; untagged rows are dropped.

    Media conversions stay None for a group until one of its rows reports a
    value.
    """
    groups: dict[str, _TagGroup] = {}
    for row in rows:
        tag = extractor(row.ad_name)
        if not tag:
            continue
        group = groups.setdefault(tag, _TagGroup())
        group.spend += row.spend
        if row.media_cv is not None:
            group.media_cv = (group.media_cv or 0.0) + row.media_cv
        group.platforms.add(row.platform)

    return [
        RankingDisplayRow(
            key=tag,
            platform_label=platform_label(group.platforms),
            ad_name=tag,
            spend=group.spend,
            media_cv=group.media_cv,
            cpa=ranking_cpa(group.spend, group.media_cv),
        )
        for tag, group in groups.items()
    ]


def build_display_rows(rows: list[AdRankingRow], view: RankingView) -> list[RankingDisplayRow]:
    if view == RankingView.AD:
        return [
            RankingDisplayRow(
                key=f"{row.platform.value}-{row.ad_id}-{index}",
                platform_label=PLATFORM_LABELS[row.platform],
                ad_name=row.ad_name,
                spend=row.spend,
                media_cv=row.media_cv,
                cpa=row.cpa,
            )
            for index, row in enumerate(rows)
        ]
    return group_rows(rows, _EXTRACTORS[view])


def _is_empty(row: RankingDisplayRow) -> bool:
    return row.spend == 0 and (row.media_cv or 0) == 0 and (row.cpa or 0) == 0


def _sort_key(sort: RankingSort) -> Callable[[RankingDisplayRow], float]:
    if sort == RankingSort.MEDIA_CV:
        return lambda row: -(row.media_cv if row.media_cv is not None else -math.inf)
    if sort == RankingSort.CPA:
        return lambda row: (
            row.cpa
            if row.media_cv is not None and row.media_cv > 0 and row.cpa is not None
            else math.inf
        )
    return lambda row: -row.spend


def rank_rows(
    rows: list[AdRankingRow],
    view: RankingView = RankingView.AD,
    sort: RankingSort = RankingSort.SPEND,
) -> list[RankingDisplayRow]:
    """Build the display rows for a view, drop empty lines and sort.

    Args:
        rows: Per-ad ranking rows
        view: Grouping mode
        sort: spend (desc), media_cv (desc, missing last) or cpa (asc,
            rows without positive conversions last)

    Returns:
        Sorted display rows; the sort is stable for equal keys
    """
    display_rows = [row for row in build_display_rows(rows, view) if not _is_empty(row)]
    return sorted(display_rows, key=_sort_key(sort))


@dataclass
class RankingPartition:
    platform: PlatformType
    account_id: str
    account_name: str
    rows: list[RankingDisplayRow] = field(default_factory=list)


def partition_by_account(
    rows: list[AdRankingRow],
    view: RankingView = RankingView.AD,
    sort: RankingSort = RankingSort.SPEND,
) -> list[RankingPartition]:
    """Rank each (platform, account) separately, in first-seen order."""
    buckets: dict[tuple[PlatformType, str], list[AdRankingRow]] = {}
    names: dict[tuple[PlatformType, str], str] = {}
    for row in rows:
        key = (row.platform, row.account_id)
        buckets.setdefault(key, []).append(row)
        names.setdefault(key, row.account_name)

    return [
        RankingPartition(
            platform=platform,
            account_id=account_id,
            account_name=names[(platform, account_id)],
            rows=rank_rows(bucket, view, sort),
        )
        for (platform, account_id), bucket in buckets.items()
    ]
