"""API key dependency for the report API."""
import hmac
import os
from typing import Annotated

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader


API_KEY_HEADER_NAME = "X-REPORT-API-KEY"

api_key_header = APIKeyHeader(name=API_KEY_HEADER_NAME, auto_error=False)


async def require_api_key(
    api_key: Annotated[str | None, Security(api_key_header)] = None
) -> str:
    """Check the X-REPORT-API-KEY header against REPORT_API_KEY.

    The expected key is read per request, so rotating REPORT_API_KEY needs no
    restart.

    Raises:
        RuntimeError: If REPORT_API_KEY is not set
        HTTPException: 401 if the header is missing or does not match
    """
    expected_key = os.getenv("REPORT_API_KEY")
    if not expected_key:
        raise RuntimeError("REPORT_API_KEY environment variable not configured")

    if not api_key or not hmac.compare_digest(api_key.encode(), expected_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )
    return api_key
