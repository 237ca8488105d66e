"""
API error type and its exception handler.

Lead routes answer errors as `{"error": ...}` plus optional extra keys,
which is the shape the site's forms already parse.
"""
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class APIError(Exception):
    """Error rendered as a JSON body with an `error` key."""

    def __init__(
        self,
        status_code: int,
        error: str,
        headers: Optional[dict[str, str]] = None,
        **extra: Any,
    ):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.headers = headers
        self.extra = extra


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, **exc.extra},
        headers=exc.headers,
    )
