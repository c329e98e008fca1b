"""Unit tests for the LINE Ads report source."""
import base64
import hashlib
import hmac
import json
from datetime import date, datetime, timedelta, timezone

import pytest

from src.adreport_core.config import SourceCredentials
from src.adreport_core.schemas.settings import AccountSetting
from src.adreport_core.sources.line import (
    LineSource,
    base64url_encode,
    build_line_token,
    normalize_line_path,
)


ACCOUNT = AccountSetting(account_id="A100", account_name="LINE main")
TARGET_DATE = date(2025, 1, 15)


def _decode(segment: str) -> str:
    return base64.b64decode(segment.replace("-", "+").replace("_", "/")).decode("utf-8")


@pytest.fixture
def line_source(mock_session):
    credentials = SourceCredentials(line_access_key="ak-1", line_secret_key="sk-1")
    return LineSource(credentials, mock_session)


def test_normalize_line_path():
    assert normalize_line_path("v3/adaccounts/1") == "/api/v3/adaccounts/1"
    assert normalize_line_path("/api/v3/adaccounts/1") == "/api/v3/adaccounts/1"


def test_base64url_keeps_padding():
    assert base64url_encode(b"\xfb\xff") == "-_8="


def test_build_line_token_structure():
    # 23:30 on Jan 14 in UTC-5 is already Jan 15 in UTC
    now = datetime(2025, 1, 14, 23, 30, tzinfo=timezone(timedelta(hours=-5)))

    token = build_line_token("ak-1", "sk-1", "/v3/adaccounts/A100/reports", now)

    header_segment, payload_segment, signature_segment = token.split(".")
    assert json.loads(_decode(header_segment)) == {"alg": "HS256", "kid": "ak-1", "typ": "text/plain"}
    assert _decode(payload_segment).split("\n") == [
        hashlib.sha256(b"").hexdigest(),
        "",
        "20250115",
        "/api/v3/adaccounts/A100/reports",
    ]
    expected = hmac.new(
        b"sk-1", f"{header_segment}.{payload_segment}".encode("utf-8"), hashlib.sha256
    ).digest()
    assert signature_segment == base64url_encode(expected)


def test_missing_credentials(mock_session):
    source = LineSource(SourceCredentials(line_access_key="ak"), mock_session)

    assert source.missing_credentials() == ["LINE_SECRET_KEY"]


@pytest.mark.asyncio
async def test_fetch_campaigns_pages_and_maps(line_source, mock_session, make_response):
    mock_session.request.side_effect = [
        make_response(
            payload={
                "datas": [
                    {
                        "campaign": {"id": 1, "name": "【SEC2】line_winter"},
                        "statistics": {"cost": "450", "imp": "9000", "click": "30", "cv": "3"},
                    }
                ],
                "paging": {"totalPages": 2},
            }
        ),
        make_response(
            payload={
                "datas": [
                    {
                        "campaignGroup": {"id": 2, "name": "group"},
                        "statistics": {"spend": "50", "impressions": "100", "clicks": "2"},
                    }
                ],
                "paging": {"totalPages": 2},
            }
        ),
    ]

    records = await line_source.fetch_campaigns(ACCOUNT, TARGET_DATE)

    assert [(r.record_id, r.name, r.spend, r.impressions, r.clicks, r.media_cv) for r in records] == [
        ("1", "【SEC2】line_winter", 450.0, 9000.0, 30.0, 3.0),
        ("2", "group", 50.0, 100.0, 2.0, None),
    ]
    first_call = mock_session.request.call_args_list[0]
    assert first_call.args[1] == (
        "https://ads.line.me/api/v3/adaccounts/A100/reports/online/campaign"
    )
    assert first_call.kwargs["params"]["since"] == "2025-01-15"
    assert first_call.kwargs["headers"]["Authorization"].startswith("Bearer ")
    assert "Date" in first_call.kwargs["headers"]
    assert mock_session.request.call_args_list[1].kwargs["params"]["page"] == "2"


@pytest.mark.asyncio
async def test_fetch_stops_on_empty_page(line_source, mock_session, make_response):
    mock_session.request.side_effect = [
        make_response(
            payload={"datas": [{"ad": {"id": "9", "name": "【冒頭1】x"}, "statistics": {"cost": 10}}]}
        ),
        make_response(payload={"datas": []}),
    ]

    rows = await line_source.fetch_ads(ACCOUNT, date(2025, 1, 1), date(2025, 1, 7))

    assert [(row.ad_id, row.ad_name, row.spend) for row in rows] == [("9", "【冒頭1】x", 10.0)]
    assert rows[0].account_name == "LINE main"
    assert mock_session.request.call_count == 2


@pytest.mark.asyncio
async def test_null_statistics_fall_through_to_alternate_keys(
    line_source, mock_session, make_response
):
    mock_session.request.return_value = make_response(
        payload={
            "datas": [
                {
                    "campaign": {"id": 3, "name": "【SEC1】line"},
                    "statistics": {
                        "cost": None,
                        "spend": "70",
                        "impressions": None,
                        "imp": "1200",
                        "clicks": None,
                        "click": "8",
                        "cv": None,
                        "conversions": "4",
                    },
                }
            ],
            "paging": {"totalPages": 1},
        }
    )

    records = await line_source.fetch_campaigns(ACCOUNT, TARGET_DATE)

    assert [(r.spend, r.impressions, r.clicks, r.media_cv) for r in records] == [
        (70.0, 1200.0, 8.0, 4.0)
    ]


@pytest.mark.asyncio
async def test_null_datas_is_an_empty_page(line_source, mock_session, make_response):
    mock_session.request.return_value = make_response(payload={"datas": None, "paging": None})

    records = await line_source.fetch_campaigns(ACCOUNT, TARGET_DATE)

    assert records == []
    assert mock_session.request.call_count == 1
