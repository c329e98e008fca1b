"""Section and platform attribution from naming conventions.

Campaign names are classified in three tiers:
- Tier 1: longest campaign prefix (ties go to the earliest rule)
- Tier 2: first rule whose keyword appears anywhere in the name
- Tier 3: first catch-all campaign rule

Conversion-log rows are classified by the bracket tag at the start of the
advertisement name, then attributed to a platform by link-id prefix.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from ..schemas.records import UNCLASSIFIED_PREFIX, PlatformType
from ..schemas.settings import PlatformInstance, PlatformSetting, SectionRule


logger = logging.getLogger(__name__)

_BRACKET_PAIRS = (("【", "】"), ("[", "]"))


@dataclass(frozen=True)
class PlatformMapping:
    platform_id: str
    platform_label: str
    platform_type: PlatformType


@dataclass(frozen=True)
class LinkPrefixMapping:
    prefix: str
    platform_id: str


def extract_attribution_prefix(ad_name: str) -> str:
    """Return the leading bracket tag of an advertisement name.

    Args:
        ad_name: Advertisement name, e.g. "【SEC1】summer_banner"

    Returns:
        The tag including its brackets ("【SEC1】"), or "その他" when the name
        does not start with a closed bracket segment
    """
    for opening, closing in _BRACKET_PAIRS:
        if ad_name.startswith(opening):
            end = ad_name.find(closing)
            if end != -1:
                return ad_name[: end + 1]
    return UNCLASSIFIED_PREFIX


def normalize_platform_type(label: str) -> Optional[PlatformType]:
    """Map a free-form platform label to a platform type.

    Matching is case-insensitive substring matching, checked in the order
    meta, tiktok, google, line.
    """
    lower = label.lower()
    if "meta" in lower or "facebook" in lower or "instagram" in lower:
        return PlatformType.META
    if "tiktok" in lower:
        return PlatformType.TIKTOK
    if "google" in lower or "gdn" in lower or "yt" in lower:
        return PlatformType.GOOGLE
    if "line" in lower:
        return PlatformType.LINE
    return None


def pick_section_by_campaign_name(
    campaign_name: str, sections: list[SectionRule]
) -> Optional[SectionRule]:
    """Classify a campaign name into a section.

    Args:
        campaign_name: Campaign (or ad) name from an ad platform
        sections: Section rules in caller order

    Returns:
        The matching section rule, or None when nothing applies
    """
    trimmed = campaign_name.strip()

    best: Optional[SectionRule] = None
    best_length = 0
    for section in sections:
        for prefix in section.campaign_prefixes:
            # Strictly longer wins, so equal-length ties keep the earlier rule.
            if prefix and trimmed.startswith(prefix) and len(prefix) > best_length:
                best = section
                best_length = len(prefix)
    if best is not None:
        return best

    for section in sections:
        for keyword in section.campaign_keywords:
            if keyword and keyword in trimmed:
                return section

    for section in sections:
        if section.catch_all_campaign:
            return section
    return None


def pick_section_by_conversion_prefix(
    prefix: str, sections: list[SectionRule]
) -> Optional[SectionRule]:
    """Classify a conversion-log row by its extracted bracket tag."""
    for section in sections:
        if prefix in section.msp_ad_prefixes:
            return section
    for section in sections:
        if section.catch_all_msp:
            return section
    return None


def pick_platform_by_link_id(
    link_id: Optional[str], mappings: list[LinkPrefixMapping]
) -> Optional[str]:
    """Return the platform id whose link prefix is the longest match."""
    if not link_id:
        return None

    best_id: Optional[str] = None
    best_length = 0
    for mapping in mappings:
        if mapping.prefix and link_id.startswith(mapping.prefix):
            if len(mapping.prefix) > best_length:
                best_id = mapping.platform_id
                best_length = len(mapping.prefix)
    return best_id


def build_platform_mappings(
    platforms: list[PlatformInstance],
) -> dict[tuple[str, PlatformType], PlatformMapping]:
    """Index platform instances by (section id, platform type).

    The first instance of a type within a section wins; instances whose label
    does not name a known platform are ignored.
    """
    mappings: dict[tuple[str, PlatformType], PlatformMapping] = {}
    for platform in platforms:
        if not platform.section_id:
            continue
        platform_type = normalize_platform_type(platform.label)
        if platform_type is None:
            logger.debug("Platform label '%s' has no known type", platform.label)
            continue
        key = (platform.section_id, platform_type)
        if key not in mappings:
            mappings[key] = PlatformMapping(
                platform_id=platform.platform_id,
                platform_label=platform.label,
                platform_type=platform_type,
            )
    return mappings


def build_link_mappings(
    platform_settings: list[PlatformSetting],
    sections: list[SectionRule],
    platform_mappings: dict[tuple[str, PlatformType], PlatformMapping],
) -> dict[str, list[LinkPrefixMapping]]:
    """Collect link-id prefixes per section, resolved to platform instance ids.

    A setting names its section by id or label. Settings whose section or
    platform cannot be resolved are skipped.
    """
    result: dict[str, list[LinkPrefixMapping]] = {}
    for setting in platform_settings:
        section = next(
            (
                s
                for s in sections
                if setting.section_name in (s.section_id, s.label)
            ),
            None,
        )
        if section is None:
            continue
        try:
            platform_type = PlatformType(setting.platform.lower())
        except ValueError:
            continue
        platform = platform_mappings.get((section.section_id, platform_type))
        if platform is None:
            continue
        entries = result.setdefault(section.section_id, [])
        for prefix in setting.msp_link_prefixes:
            if prefix:
                entries.append(LinkPrefixMapping(prefix=prefix, platform_id=platform.platform_id))
    return result


@dataclass
class AttributionResolver:
    """Resolves records of one project to section and platform instance ids."""

    sections: list[SectionRule]
    platform_mappings: dict[tuple[str, PlatformType], PlatformMapping] = field(
        default_factory=dict
    )
    link_mappings: dict[str, list[LinkPrefixMapping]] = field(default_factory=dict)

    @classmethod
    def from_settings(
        cls,
        sections: list[SectionRule],
        platforms: list[PlatformInstance],
        platform_settings: list[PlatformSetting],
    ) -> "AttributionResolver":
        platform_mappings = build_platform_mappings(platforms)
        return cls(
            sections=sections,
            platform_mappings=platform_mappings,
            link_mappings=build_link_mappings(platform_settings, sections, platform_mappings),
        )

    @property
    def section_labels(self) -> dict[str, str]:
        return {s.section_id: s.label for s in self.sections}

    @property
    def platform_labels(self) -> dict[str, str]:
        return {m.platform_id: m.platform_label for m in self.platform_mappings.values()}

    def resolve_campaign(
        self, campaign_name: str, platform: PlatformType
    ) -> tuple[Optional[str], Optional[str]]:
        """Return (section_id, platform_id) for an ad-delivery record."""
        section = pick_section_by_campaign_name(campaign_name, self.sections)
        if section is None:
            return None, None
        mapping = self.platform_mappings.get((section.section_id, platform))
        return section.section_id, mapping.platform_id if mapping else None

    def resolve_conversion(
        self, prefix: str, link_id: Optional[str]
    ) -> tuple[Optional[str], Optional[str]]:
        """Return (section_id, platform_id) for a conversion-log row."""
        section = pick_section_by_conversion_prefix(prefix, self.sections)
        if section is None:
            return None, None
        platform_id = pick_platform_by_link_id(
            link_id, self.link_mappings.get(section.section_id, [])
        )
        return section.section_id, platform_id
