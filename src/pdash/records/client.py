"""HTTP client for the record-store API.

Thin wrapper around ``httpx.AsyncClient`` that speaks JSON and turns every
failure into the ``pdash.errors`` taxonomy. Caching and retries live one
layer up in ``pdash.query.cache``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from pdash.errors import FetchError, ParseError, TransientServerError, error_for_status

logger = structlog.get_logger()

# Keys the record store uses for error text in failed responses
_ERROR_KEYS = ("error", "message", "detail")


def _clean_params(params: Mapping[str, Any] | None) -> dict[str, str]:
    if not params:
        return {}
    return {key: str(value) for key, value in params.items() if value is not None and value != ""}


def _server_message(response: httpx.Response) -> str | None:
    """Extract the server-provided error text, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in _ERROR_KEYS:
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class RecordClient:
    """JSON client bound to one user's identity-provider credentials."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Accept": "application/json", **(headers or {})},
            timeout=timeout,
            transport=transport,
        )

    async def get_json(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        """GET a resource and return the decoded JSON body."""
        return await self._request("GET", path, params=params)

    async def send_json(
        self,
        method: str,
        path: str,
        payload: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send a JSON write (PUT/PATCH/POST) and return the decoded response body."""
        return await self._request(method, path, params=params, payload=payload)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        payload: Any = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                params=_clean_params(params),
                json=payload,
            )
        except httpx.TimeoutException as exc:
            raise TransientServerError(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransientServerError(f"{method} {path} failed: {exc}") from exc
        except httpx.InvalidURL as exc:
            # Not an HTTPError; retrying the same URL cannot succeed
            raise FetchError(f"{method} {path} has an invalid URL: {exc}") from exc

        if not response.is_success:
            server_message = _server_message(response)
            error = error_for_status(
                response.status_code,
                server_message or f"{method} {path} failed with HTTP {response.status_code}",
                retry_after=_retry_after(response),
            )
            error.server_message = server_message
            logger.info(
                "record_request_failed",
                method=method,
                path=path,
                status=response.status_code,
                error=error.message,
            )
            raise error

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("record_response_invalid_json", method=method, path=path)
            raise ParseError(f"{method} {path} returned invalid JSON", response.status_code) from exc

