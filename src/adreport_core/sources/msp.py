"""MSP conversion-log console source.

The console has no API: it is a session-authenticated web UI. Each
aggregation call logs in once (CSRF token from the login form, credential
POST, manual redirect follow) and then reads the conversion list and the
click log as HTML tables.
"""
import asyncio
import logging
import re
from datetime import date
from html.parser import HTMLParser
from typing import Any, Optional
from urllib.parse import urljoin

from ..config import SourceCredentials
from ..exceptions import SourceResponseError
from ..metrics.attribution import extract_attribution_prefix
from ..schemas.records import ConversionEventKind, ConversionLogRecord
from .base import BaseSourceAdapter, HttpResult


logger = logging.getLogger(__name__)

MSP_USER_AGENT = "Hare-Report-Script/1.0"

AD_NAME_HEADER = "広告名"
LINK_ID_HEADERS = ("リンクID", "リンク Id", "Link ID")

CONVERSION_DISPLAY_COLUMNS = (
    "sad2",
    "sad",
    "referer",
    "ip",
    "user_agent",
    "cgid",
    "suid",
    "buid",
    "xuid",
    "uid",
    "approve_date",
    "cv_date",
    "click_date",
)

_CSRF_TOKEN_RE = re.compile(r'name="_token"[^>]*value="([^"]+)"', re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_STRUCTURAL_TAGS = ("table", "tr", "th", "td")


def format_msp_period(target_date: date) -> str:
    day = target_date.strftime("%Y/%m/%d")
    return f"{day} - {day}"


def extract_csrf_token(html: str) -> Optional[str]:
    match = _CSRF_TOKEN_RE.search(html)
    return match.group(1) if match else None


class _Table:
    def __init__(self) -> None:
        self.headers: list[str] = []
        self.rows: list[list[str]] = []


class MspTableParser(HTMLParser):
    """Collect every <table> as header texts plus data-cell rows.

    Header cells are the <th> texts; rows are <tr> elements holding at least
    one <td>. Script and style contents are ignored.
    """

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.tables: list[_Table] = []
        self._stack: list[_Table] = []
        self._row: Optional[list[str]] = None
        self._cell: Optional[list[str]] = None
        self._cell_tag: Optional[str] = None
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, Optional[str]]]) -> None:
        if tag in ("script", "style"):
            self._skip_depth += 1
            return
        self._tag_boundary(tag)
        if tag == "table":
            table = _Table()
            self.tables.append(table)
            self._stack.append(table)
        elif not self._stack:
            return
        elif tag == "tr":
            self._row = []
        elif tag in ("th", "td"):
            self._close_cell()
            self._cell = []
            self._cell_tag = tag

    def handle_endtag(self, tag: str) -> None:
        if tag in ("script", "style"):
            self._skip_depth = max(self._skip_depth - 1, 0)
            return
        self._tag_boundary(tag)
        if not self._stack:
            return
        if tag in ("th", "td"):
            self._close_cell()
        elif tag == "tr":
            self._close_cell()
            if self._row:
                self._stack[-1].rows.append(self._row)
            self._row = None
        elif tag == "table":
            self._close_cell()
            self._row = None
            self._stack.pop()

    def _tag_boundary(self, tag: str) -> None:
        # Inline tags inside a cell separate words
        if self._cell is not None and tag not in _STRUCTURAL_TAGS:
            self._cell.append(" ")

    def handle_data(self, data: str) -> None:
        if self._cell is not None and not self._skip_depth:
            self._cell.append(data)

    def _close_cell(self) -> None:
        if self._cell is None:
            return
        text = _WHITESPACE_RE.sub(" ", "".join(self._cell)).strip()
        if self._cell_tag == "th":
            self._stack[-1].headers.append(text)
        elif self._row is not None:
            self._row.append(text)
        self._cell = None
        self._cell_tag = None


def parse_conversion_table(html: str, kind: ConversionEventKind) -> list[ConversionLogRecord]:
    """Parse the first table whose headers include the advertisement-name column.

    Rows without an advertisement name are dropped. Returns an empty list
    when no such table exists.
    """
    parser = MspTableParser()
    parser.feed(html)
    parser.close()

    for table in parser.tables:
        if AD_NAME_HEADER not in table.headers:
            continue
        ad_name_index = table.headers.index(AD_NAME_HEADER)
        link_index = next(
            (table.headers.index(header) for header in LINK_ID_HEADERS if header in table.headers),
            None,
        )

        records = []
        for cells in table.rows:
            ad_name = cells[ad_name_index] if ad_name_index < len(cells) else ""
            if not ad_name:
                continue
            link_id = None
            if link_index is not None and link_index < len(cells):
                link_id = cells[link_index] or None
            records.append(
                ConversionLogRecord(
                    kind=kind,
                    ad_name=ad_name,
                    prefix=extract_attribution_prefix(ad_name),
                    link_id=link_id,
                )
            )
        return records
    return []


class MspSessionAuthenticator:
    """Logged-in MSP console session with a private cookie map.

    Cookies are carried explicitly in a Cookie header so that no state leaks
    into the shared aiohttp session.
    """

    def __init__(self, source: "MspSource") -> None:
        self._source = source
        self.cookies: dict[str, str] = {}
        self.authenticated = False
        self._lock = asyncio.Lock()

    def _store(self, result: HttpResult) -> None:
        self.cookies.update(result.cookies)

    def headers(self, **extra: str) -> dict[str, str]:
        headers = {"User-Agent": MSP_USER_AGENT}
        if self.cookies:
            headers["Cookie"] = "; ".join(f"{name}={value}" for name, value in self.cookies.items())
        headers.update(extra)
        return headers

    async def login(self) -> None:
        """Log in and keep the resulting session cookies.

        Raises:
            SourceResponseError: If the login form carries no CSRF token
            SourceApiError: On HTTP errors
        """
        login_url = self._source.login_url
        login_page = await self._source._send("GET", login_url, headers=self.headers())
        self._store(login_page)

        token = extract_csrf_token(login_page.text)
        if not token:
            raise SourceResponseError(self._source.platform, "MSP login token not found")

        response = await self._source._send(
            "POST",
            login_url,
            data={
                "email": self._source._login_email,
                "password": self._source._login_password,
                "_token": token,
            },
            headers=self.headers(),
            allow_redirects=False,
        )
        self._store(response)

        location = response.headers.get("location")
        if 300 <= response.status < 400 and location:
            redirected = await self._source._send(
                "GET", urljoin(login_url, location), headers=self.headers()
            )
            self._store(redirected)

        self.authenticated = True
        logger.info("MSP login completed")

    async def get_html(self, url: str, params: Any) -> str:
        async with self._lock:
            if not self.authenticated:
                await self.login()
        result = await self._source._send("GET", url, params=params, headers=self.headers())
        self._store(result)
        return result.text


class MspSource(BaseSourceAdapter):
    """Conversions and click logs from the MSP console."""

    platform = "msp"

    def __init__(self, credentials: SourceCredentials, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._login_email = credentials.msp_login_email
        self._login_password = credentials.msp_login_password
        self.login_url = credentials.msp_login_url
        self.conversions_url = credentials.msp_conversions_url
        self.logs_url = credentials.msp_logs_url
        self._authenticator: Optional[MspSessionAuthenticator] = None

    def _secrets(self) -> list[Optional[str]]:
        return [self._login_password]

    def missing_credentials(self) -> list[str]:
        missing = []
        if not self._login_email:
            missing.append("MSP_LOGIN_EMAIL")
        if not self._login_password:
            missing.append("MSP_LOGIN_PASSWORD")
        return missing

    @property
    def authenticator(self) -> MspSessionAuthenticator:
        """Session for this adapter instance; one login per aggregation call."""
        if self._authenticator is None:
            self._authenticator = MspSessionAuthenticator(self)
        return self._authenticator

    @staticmethod
    def conversion_params(buyer_id: str, target_date: date) -> list[tuple[str, str]]:
        params = [("approval_status", "allowed")]
        params.extend(("display_columns[]", column) for column in CONVERSION_DISPLAY_COLUMNS)
        params.extend(
            [
                ("buyer_id", buyer_id),
                ("period", format_msp_period(target_date)),
                ("search_date", "cv_date"),
                ("search_column", "query_string"),
                ("ad_category", "all"),
                ("limit", "10000"),
            ]
        )
        return params

    @staticmethod
    def click_log_params(buyer_id: str, target_date: date) -> list[tuple[str, str]]:
        return [
            ("destroy-during-days", "30"),
            ("log_type", "click"),
            ("error_type", "ok"),
            ("period", format_msp_period(target_date)),
            ("search_column", "error_msg"),
            ("display_columns", "all"),
            ("limit", "10000"),
            ("buyer_id", buyer_id),
        ]

    async def _fetch_rows(
        self, advertiser_ids: list[str], target_date: date, kind: ConversionEventKind
    ) -> list[ConversionLogRecord]:
        missing = self.missing_credentials()
        buyer_ids = [buyer_id for buyer_id in advertiser_ids if buyer_id]
        if missing:
            logger.warning(
                "%s credentials not configured (%s), skipping", self.platform, ", ".join(missing)
            )
            return []
        if not buyer_ids:
            return []

        records: list[ConversionLogRecord] = []
        for buyer_id in buyer_ids:
            if kind == ConversionEventKind.CLICK:
                html = await self.authenticator.get_html(
                    self.logs_url, self.click_log_params(buyer_id, target_date)
                )
            else:
                html = await self.authenticator.get_html(
                    self.conversions_url, self.conversion_params(buyer_id, target_date)
                )
            records.extend(parse_conversion_table(html, kind))

        logger.info(
            "Fetched %s MSP %s rows for %s", len(records), kind.value, target_date.isoformat()
        )
        return records

    async def fetch_conversions(
        self, advertiser_ids: list[str], target_date: date
    ) -> list[ConversionLogRecord]:
        """Approved conversions recorded on the target date."""
        return await self._fetch_rows(advertiser_ids, target_date, ConversionEventKind.CONVERSION)

    async def fetch_click_logs(
        self, advertiser_ids: list[str], target_date: date
    ) -> list[ConversionLogRecord]:
        """Successful click-log entries on the target date."""
        return await self._fetch_rows(advertiser_ids, target_date, ConversionEventKind.CLICK)
