"""Async HTTP client for the Flora WordPress backend.

Every route in the portal talks to WordPress through :data:`flora_client`.
It owns URL building under ``<base>/wp-json``, the three authentication
styles the backend accepts, logging of each call with credentials masked,
and translation of transport failures into :class:`UpstreamUnavailable`.

Non-2xx responses are returned to the caller untouched; routes decide
whether to pass them through (see :func:`raise_for_upstream`) or degrade.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Literal, Optional, Tuple

import httpx

from flora_portal.config import settings
from flora_portal.utils.logger import logger, upstream_logger

AuthMode = Literal["query", "basic", "admin", "none"]


class UpstreamUnavailable(Exception):
    """Raised when an upstream host could not be reached at all."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service} unreachable: {message}")
        self.service = service
        self.message = message


class UpstreamHTTPError(Exception):
    """Non-2xx upstream answer that should be passed through to the client."""

    def __init__(self, status_code: int, error: str, details: Any = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details


def safe_json(resp: httpx.Response) -> Any:
    """Parsed JSON body, or None when the body is empty or not JSON."""
    try:
        return resp.json()
    except ValueError:
        return None


def upstream_message(resp: httpx.Response, default: str) -> str:
    payload = safe_json(resp)
    if isinstance(payload, dict):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return default


def raise_for_upstream(resp: httpx.Response, error: str) -> None:
    """Raise :class:`UpstreamHTTPError` carrying the upstream status and body."""
    if resp.is_success:
        return
    logger.error("%s: HTTP %s: %s", error, resp.status_code, resp.text[:500])
    details = safe_json(resp)
    if details is None:
        details = resp.text
    raise UpstreamHTTPError(resp.status_code, error, details)


class FloraApiClient:
    """Thin wrapper around ``httpx.AsyncClient`` for ``wp-json`` namespaces.

    ``transport`` can be set to an ``httpx.MockTransport`` in tests.
    """

    service_name = "Flora API"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    @property
    def base_url(self) -> str:
        return settings.wp_json_base

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def auth_params(self, cache_bust: bool = False) -> Dict[str, str]:
        params = {
            "consumer_key": settings.WC_CONSUMER_KEY or "",
            "consumer_secret": settings.WC_CONSUMER_SECRET or "",
        }
        if cache_bust:
            params["_t"] = str(int(time.time() * 1000))
        return params

    def _auth(self, mode: AuthMode) -> Optional[Tuple[str, str]]:
        if mode == "basic":
            return (settings.WC_CONSUMER_KEY or "", settings.WC_CONSUMER_SECRET or "")
        if mode == "admin":
            return (settings.WP_ADMIN_USERNAME or "", settings.WP_ADMIN_APP_PASSWORD or "")
        return None

    def http_client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {"timeout": timeout or settings.UPSTREAM_TIMEOUT_SECONDS}
        if self.transport is not None:
            kwargs["transport"] = self.transport
        return httpx.AsyncClient(**kwargs)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        auth: AuthMode = "query",
        cache_bust: bool = False,
        headers: Optional[Dict[str, str]] = None,
        content: Optional[bytes] = None,
        files: Any = None,
        data: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        url = self.url(path)
        query: Dict[str, Any] = {}
        if auth == "query":
            query.update(self.auth_params(cache_bust=cache_bust))
        elif cache_bust:
            query["_t"] = str(int(time.time() * 1000))
        if params:
            query.update({k: v for k, v in params.items() if v is not None})

        started = time.monotonic()
        try:
            async with self.http_client(timeout) as client:
                resp = await client.request(
                    method,
                    url,
                    params=query or None,
                    json=json,
                    auth=self._auth(auth),
                    headers=headers,
                    content=content,
                    files=files,
                    data=data,
                )
        except httpx.RequestError as exc:
            upstream_logger.log_call(method, url, params=query, error=str(exc))
            raise UpstreamUnavailable(self.service_name, str(exc)) from exc

        upstream_logger.log_call(
            method,
            url,
            params=query,
            status_code=resp.status_code,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        return resp

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", path, **kwargs)

    async def get_json(self, path: str, error: str, **kwargs: Any) -> Any:
        """GET ``path`` and return its JSON, passing non-2xx answers through."""
        resp = await self.get(path, **kwargs)
        raise_for_upstream(resp, error)
        return safe_json(resp)


flora_client = FloraApiClient()
