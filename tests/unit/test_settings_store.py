"""Unit tests for the JSON settings provider."""
import json

import pytest

from src.adreport_core.exceptions import SettingsError
from src.adreport_core.schemas.records import PlatformType
from src.adreport_core.storage.settings_store import JsonSettingsProvider


SETTINGS = {
    "projects": [
        {
            "project_name": "acme",
            "msp_advertiser_ids": ["buyer-1"],
            "meta_accounts": [{"account_id": "act_1", "account_name": "Main"}],
            "tiktok_accounts": [{"account_id": "adv_1"}],
        }
    ],
    "sections": [
        {
            "section_id": "sec-1",
            "label": "Section A",
            "project_name": "acme",
            "campaign_prefixes": ["【SEC1】"],
            "msp_ad_prefixes": ["【SEC1】"],
        },
        {"section_id": "sec-9", "label": "Elsewhere", "project_name": "other"},
    ],
    "platforms": [
        {"platform_id": "plat-1", "label": "Meta", "section_id": "sec-1"},
        {"platform_id": "plat-9", "label": "Meta", "section_id": "sec-9"},
    ],
    "platform_settings": [
        {
            "project_name": "acme",
            "section_name": "Section A",
            "platform": "Meta",
            "msp_link_prefixes": ["fb_"],
        }
    ],
}


@pytest.fixture
def settings_file(tmp_path):
    path = tmp_path / "report_settings.json"
    path.write_text(json.dumps(SETTINGS, ensure_ascii=False), encoding="utf-8")
    return path


def test_load_settings(settings_file):
    settings = JsonSettingsProvider(settings_file).load()

    project = settings.get_project("acme")
    assert project is not None
    assert [a.display_name for a in project.accounts_for(PlatformType.META)] == ["Main"]
    assert [a.display_name for a in project.accounts_for(PlatformType.TIKTOK)] == ["adv_1"]
    assert project.accounts_for(PlatformType.LINE) == []
    assert [s.section_id for s in settings.sections_for("acme")] == ["sec-1"]
    assert [p.platform_id for p in settings.platforms_for("acme")] == ["plat-1"]
    assert len(settings.platform_settings_for("acme")) == 1
    assert settings.get_project("missing") is None


def test_settings_are_reread_on_every_load(settings_file):
    provider = JsonSettingsProvider(settings_file)
    provider.load()

    settings_file.write_text(json.dumps({"projects": []}), encoding="utf-8")

    assert provider.load().projects == []


def test_missing_file(tmp_path):
    with pytest.raises(SettingsError, match="not found"):
        JsonSettingsProvider(tmp_path / "absent.json").load()


def test_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(SettingsError, match="Invalid JSON"):
        JsonSettingsProvider(path).load()


def test_invalid_document(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"projects": [{"display_name": "no name"}]}), encoding="utf-8")

    with pytest.raises(SettingsError, match="Invalid report settings"):
        JsonSettingsProvider(path).load()
