"""Unit tests for the TikTok report source."""
import json
from datetime import date

import pytest

from src.adreport_core.config import SourceCredentials
from src.adreport_core.exceptions import SourceApiError
from src.adreport_core.schemas.settings import AccountSetting
from src.adreport_core.sources.tiktok import TikTokSource


ACCOUNT = AccountSetting(account_id="adv_1")
TARGET_DATE = date(2025, 1, 15)


@pytest.fixture
def tiktok_source(mock_session):
    credentials = SourceCredentials(tiktok_access_token="tt-token", tiktok_business_id="biz")
    return TikTokSource(credentials, mock_session)


def _envelope(data, code=0, message="OK"):
    return {"code": code, "message": message, "data": data}


def test_spend_falls_back_to_stat_cost():
    assert TikTokSource._spend({"spend": "0", "stat_cost": "12.5"}) == 12.5
    assert TikTokSource._spend({"spend": "3", "stat_cost": "12.5"}) == 3.0
    assert TikTokSource._spend({}) == 0.0


def test_headers_include_business_id(tiktok_source):
    headers = tiktok_source._headers()

    assert headers["Access-Token"] == "tt-token"
    assert headers["Business-Id"] == "biz"


@pytest.mark.asyncio
async def test_fetch_campaigns_resolves_names(tiktok_source, mock_session, make_response):
    mock_session.request.side_effect = [
        make_response(
            payload=_envelope(
                {
                    "list": [
                        {
                            "dimensions": {"campaign_id": "111"},
                            "metrics": {
                                "spend": "800",
                                "impressions": "5000",
                                "clicks": "40",
                                "result": "4",
                            },
                        },
                        {
                            "dimensions": {"campaign_id": "222"},
                            "metrics": {"spend": "0", "stat_cost": "20"},
                        },
                    ],
                    "page_info": {"total_number": 2},
                }
            )
        ),
        make_response(
            payload=_envelope(
                {
                    "list": [
                        {"campaign_id": 111, "campaign_name": "【SEC1】tt_spring"},
                    ]
                }
            )
        ),
    ]

    records = await tiktok_source.fetch_campaigns(ACCOUNT, TARGET_DATE)

    assert [(r.record_id, r.name, r.spend, r.media_cv) for r in records] == [
        ("111", "【SEC1】tt_spring", 800.0, 4.0),
        ("222", "222", 20.0, None),
    ]

    report_call, name_call = mock_session.request.call_args_list
    assert report_call.args[1].endswith("/report/integrated/get/")
    assert report_call.kwargs["params"]["data_level"] == "AUCTION_CAMPAIGN"
    assert name_call.args[1].endswith("/campaign/get/")
    filtering = json.loads(name_call.kwargs["params"]["filtering"])
    assert filtering == {"campaign_ids": ["111", "222"]}


@pytest.mark.asyncio
async def test_failed_name_lookup_keeps_records(tiktok_source, mock_session, make_response):
    mock_session.request.side_effect = [
        make_response(
            payload=_envelope(
                {
                    "list": [{"dimensions": {"campaign_id": "111"}, "metrics": {"spend": "5"}}],
                    "page_info": {"total_number": 1},
                }
            )
        ),
        make_response(payload=_envelope(None, code=40001, message="no permission")),
    ]

    records = await tiktok_source.fetch_campaigns(ACCOUNT, TARGET_DATE)

    assert [record.name for record in records] == ["111"]


@pytest.mark.asyncio
async def test_nonzero_code_raises(tiktok_source, mock_session, make_response):
    mock_session.request.return_value = make_response(
        payload=_envelope(None, code=40105, message="Access token is invalid")
    )

    with pytest.raises(SourceApiError, match="Access token is invalid"):
        await tiktok_source.fetch_campaigns(ACCOUNT, TARGET_DATE)


@pytest.mark.asyncio
async def test_fetch_ads_pages_until_total_page(tiktok_source, mock_session, make_response):
    mock_session.request.side_effect = [
        make_response(
            payload=_envelope(
                {
                    "list": [
                        {
                            "dimensions": {"ad_id": "9"},
                            "metrics": {"spend": "300", "result": "3"},
                        }
                    ],
                    "page_info": {"total_page": 2},
                }
            )
        ),
        make_response(
            payload=_envelope(
                {
                    "list": [
                        {
                            "dimensions": {"ad_id": "10", "ad_name": "【冒頭2】[P1]b.mp4"},
                            "metrics": {"spend": "100"},
                        }
                    ],
                    "page_info": {"total_page": 2},
                }
            )
        ),
        make_response(
            payload=_envelope({"list": [{"ad_id": "9", "ad_name": "【冒頭1】[P1]a.mp4"}]})
        ),
    ]

    rows = await tiktok_source.fetch_ads(ACCOUNT, date(2025, 1, 1), date(2025, 1, 7))

    assert [(row.ad_id, row.ad_name, row.media_cv) for row in rows] == [
        ("9", "【冒頭1】[P1]a.mp4", 3.0),
        ("10", "【冒頭2】[P1]b.mp4", None),
    ]
    assert rows[0].account_name == "adv_1"


@pytest.mark.asyncio
async def test_null_metrics_and_null_keys_fall_through(
    tiktok_source, mock_session, make_response
):
    mock_session.request.side_effect = [
        make_response(
            payload=_envelope(
                {
                    "list": [
                        {"dimensions": {"campaign_id": "111"}, "metrics": None},
                        {
                            "dimensions": {"campaign_id": "222"},
                            "metrics": {
                                "spend": "0",
                                "stat_cost": None,
                                "statCost": "15",
                                "result": None,
                                "results": "2",
                            },
                        },
                    ],
                    "page_info": {"total_number": 2},
                }
            )
        ),
        make_response(payload=_envelope({"list": []})),
    ]

    records = await tiktok_source.fetch_campaigns(ACCOUNT, TARGET_DATE)

    assert [(r.record_id, r.spend, r.media_cv) for r in records] == [
        ("111", 0.0, None),
        ("222", 15.0, 2.0),
    ]
