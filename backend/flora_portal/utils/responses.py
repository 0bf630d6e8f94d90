from typing import Any, Dict, Optional

import httpx
from fastapi.responses import JSONResponse

from flora_portal.services.flora_api_client import raise_for_upstream, safe_json

NO_STORE_HEADERS = {"Cache-Control": "no-store, max-age=0"}


def error_response(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": error, **extra}, status_code=status_code)


def upstream_json(
    resp: httpx.Response,
    error: str,
    status_code: Optional[int] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Relay an upstream JSON body, or raise with the upstream status on failure."""
    raise_for_upstream(resp, error)
    return JSONResponse(safe_json(resp), status_code=status_code or resp.status_code, headers=headers)
