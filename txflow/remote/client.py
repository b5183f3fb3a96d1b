"""
RemoteOperationClient
---------------------
Thin async request/response wrapper over httpx. Its only job is to turn the
remote system's answers into either a data dict or a classified error:

- timeouts / connection failures / 5xx / 429   -> TransportError (recoverable)
- other 4xx, or an envelope with success:false -> RemoteRejectedError (remote message kept)

No retries here; callers own their retry policy.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import httpx

from txflow.settings import settings
from txflow.api.normalize import unwrap_envelope
from txflow.core.errors import TransportError, RemoteRejectedError
from txflow.observability.logging import log


def _headers() -> dict:
    h = {"Content-Type": "application/json", "Accept": "application/json"}
    if settings.API_TOKEN:
        h["Authorization"] = f"Bearer {settings.API_TOKEN}"
    return h


def _remote_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "")[:300]
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error") or ""
        return str(msg)[:300]
    return ""


class RemoteOperationClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=base_url if base_url is not None else settings.API_BASE_URL,
            timeout=timeout if timeout is not None else settings.REQUEST_TIMEOUT_SEC,
            headers=_headers(),
            transport=transport,
        )

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        start = time.monotonic()
        try:
            resp = await self._http.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            log(
                event="remote_transport_error",
                method=method,
                path=path,
                elapsedMs=elapsed_ms,
                errorType=type(e).__name__,
                error=str(e)[:300],
            )
            raise TransportError(f"{type(e).__name__}: {e}") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        status = resp.status_code

        if status >= 500 or status == 429:
            log(event="remote_unavailable", method=method, path=path, statusCode=status, elapsedMs=elapsed_ms)
            raise TransportError(_remote_message(resp) or None, status_code=status)

        if status >= 400:
            message = _remote_message(resp)
            log(event="remote_rejected", method=method, path=path, statusCode=status, elapsedMs=elapsed_ms, reason=message)
            raise RemoteRejectedError(message or None, status_code=status)

        try:
            body = resp.json()
        except ValueError:
            # Malformed body on a 2xx: hand back an empty payload and let the caller decide
            log(event="remote_body_not_json", method=method, path=path, statusCode=status)
            body = {}

        ok, message, data = unwrap_envelope(body)
        if not ok:
            log(event="remote_declined", method=method, path=path, statusCode=status, reason=message)
            raise RemoteRejectedError(message or None, status_code=status, payload=data)

        log(event="remote_ok", method=method, path=path, statusCode=status, elapsedMs=elapsed_ms)
        return data

    async def get(self, path: str, *, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, *, json: Any = None, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("POST", path, json=json, params=params)
