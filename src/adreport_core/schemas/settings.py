"""Report settings: projects, sections, platform instances and linked accounts.

These mirror what the settings store hands the engine. The engine only reads
them; creating and editing settings happens elsewhere.
"""
from typing import Optional

from pydantic import BaseModel, Field

from .records import PlatformType


class AccountSetting(BaseModel):
    account_id: str
    account_name: str = ""

    @property
    def display_name(self) -> str:
        return self.account_name or self.account_id


class SectionRule(BaseModel):
    """How campaigns and conversion-log rows are assigned to a section."""

    section_id: str
    label: str
    project_name: str
    campaign_prefixes: list[str] = Field(default_factory=list)
    campaign_keywords: list[str] = Field(default_factory=list)
    catch_all_campaign: bool = False
    msp_ad_prefixes: list[str] = Field(default_factory=list)
    catch_all_msp: bool = False


class PlatformInstance(BaseModel):
    """A concrete platform bucket inside a section, e.g. "Meta (FB)"."""

    platform_id: str
    label: str
    section_id: str


class PlatformSetting(BaseModel):
    """Link-id prefixes used to attribute conversion-log rows to a platform."""

    project_name: str
    section_name: str
    platform: str
    msp_link_prefixes: list[str] = Field(default_factory=list)


class ProjectSetting(BaseModel):
    project_name: str
    display_name: Optional[str] = None
    msp_advertiser_ids: list[str] = Field(default_factory=list)
    meta_accounts: list[AccountSetting] = Field(default_factory=list)
    tiktok_accounts: list[AccountSetting] = Field(default_factory=list)
    google_accounts: list[AccountSetting] = Field(default_factory=list)
    line_accounts: list[AccountSetting] = Field(default_factory=list)

    def accounts_for(self, platform: PlatformType) -> list[AccountSetting]:
        return {
            PlatformType.META: self.meta_accounts,
            PlatformType.TIKTOK: self.tiktok_accounts,
            PlatformType.GOOGLE: self.google_accounts,
            PlatformType.LINE: self.line_accounts,
        }[platform]


class ReportSettings(BaseModel):
    """Everything the settings store knows, loaded as one document."""

    projects: list[ProjectSetting] = Field(default_factory=list)
    sections: list[SectionRule] = Field(default_factory=list)
    platforms: list[PlatformInstance] = Field(default_factory=list)
    platform_settings: list[PlatformSetting] = Field(default_factory=list)

    def get_project(self, project_name: str) -> Optional[ProjectSetting]:
        for project in self.projects:
            if project.project_name == project_name:
                return project
        return None

    def sections_for(self, project_name: str) -> list[SectionRule]:
        return [s for s in self.sections if s.project_name == project_name]

    def platforms_for(self, project_name: str) -> list[PlatformInstance]:
        section_ids = {s.section_id for s in self.sections_for(project_name)}
        return [p for p in self.platforms if p.section_id in section_ids]

    def platform_settings_for(self, project_name: str) -> list[PlatformSetting]:
        return [p for p in self.platform_settings if p.project_name == project_name]
