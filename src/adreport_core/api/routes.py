"""FastAPI routes for project reports and ad rankings."""
import logging
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..dates import default_date_range, normalize_date_range, parse_date_param
from ..exceptions import ProjectNotFoundError, SettingsError
from ..metrics.ranking import RankingSort, RankingView, partition_by_account, rank_rows
from ..report_service import ReportService
from ..schemas.records import PlatformType, RankingDisplayRow
from ..schemas.report import ProjectReport
from .auth import require_api_key


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["reports"])


class AccountRanking(BaseModel):
    """Ranking for a single (platform, account) pair."""

    platform: PlatformType
    account_id: str
    account_name: str
    rows: list[RankingDisplayRow] = Field(default_factory=list)


class AdRankingResponse(BaseModel):
    """Ranked ads for a project and date range."""

    project_name: str
    view: RankingView
    sort: RankingSort
    rows: list[RankingDisplayRow] = Field(
        default_factory=list, description="Ranked rows across all accounts"
    )
    accounts: list[AccountRanking] = Field(
        default_factory=list, description="Per-account rankings (group_by_account only)"
    )
    warnings: list[str] = Field(default_factory=list, description="Sources that failed")


@lru_cache(maxsize=1)
def get_report_service() -> ReportService:
    """Process-wide report service built from environment variables."""
    return ReportService.from_env()


def _settings_error(exc: SettingsError) -> HTTPException:
    if isinstance(exc, ProjectNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    logger.error("Settings error: %s", exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get(
    "/projects/{project_name}/report",
    response_model=ProjectReport,
    dependencies=[Depends(require_api_key)],
    summary="Project report with realtime merge",
    description=(
        "Daily series, breakdowns, trends and platform details for a project. "
        "Defaults to the last 7 days; today's live data is merged in when the "
        "range includes today."
    ),
)
async def get_project_report(
    project_name: str,
    service: Annotated[ReportService, Depends(get_report_service)],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> ProjectReport:
    """Build a project report; malformed dates fall back to the default range."""
    default_range = default_date_range(service.today())
    date_range = normalize_date_range(
        parse_date_param(start_date, default_range.start),
        parse_date_param(end_date, default_range.end),
    )

    try:
        return await service.aggregate_historical_and_realtime(project_name, date_range)
    except SettingsError as exc:
        raise _settings_error(exc) from exc


@router.get(
    "/ad-ranking",
    response_model=AdRankingResponse,
    dependencies=[Depends(require_api_key)],
    summary="Ad ranking across linked accounts",
)
async def get_ad_ranking(
    service: Annotated[ReportService, Depends(get_report_service)],
    project_name: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    view: RankingView = RankingView.AD,
    sort: RankingSort = RankingSort.SPEND,
    group_by_account: Annotated[bool, Query()] = False,
) -> AdRankingResponse:
    """Rank ads by spend, media conversions or CPA.

    Validates:
    - project_name, start_date and end_date are present - returns 400 if not
    - dates are YYYY-MM-DD - returns 400 if not
    """
    if not project_name or not start_date or not end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="project_name, start_date and end_date are required",
        )

    start = parse_date_param(start_date, None)
    end = parse_date_param(end_date, None)
    if start is None or end is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date and end_date must be YYYY-MM-DD",
        )

    try:
        report = await service.build_ad_ranking(project_name, normalize_date_range(start, end))
    except SettingsError as exc:
        raise _settings_error(exc) from exc

    response = AdRankingResponse(
        project_name=project_name,
        view=view,
        sort=sort,
        warnings=report.warnings,
    )
    if group_by_account:
        response.accounts = [
            AccountRanking(
                platform=partition.platform,
                account_id=partition.account_id,
                account_name=partition.account_name,
                rows=partition.rows,
            )
            for partition in partition_by_account(report.rows, view, sort)
        ]
    else:
        response.rows = rank_rows(report.rows, view, sort)
    return response
