"""Async HTTP transport for the identity provider's JSON operations."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Protocol

import httpx

from . import __version__
from .errors import RemoteError

logger = logging.getLogger(__name__)

_TARGET_PREFIX = "AWSCognitoIdentityProviderService"
_CONTENT_TYPE = "application/x-amz-json-1.1"


def default_endpoint(region: str) -> str:
    return f"https://cognito-idp.{region}.amazonaws.com/"


class IdentityClient(Protocol):
    async def request(self, operation: str, params: dict[str, Any]) -> dict[str, Any]: ...


class IdentityProviderClient:
    """JSON-over-HTTP client for the identity provider's named operations."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 20.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Return a shared httpx.AsyncClient, creating one if needed."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _headers(self, operation: str) -> dict[str, str]:
        return {
            "Content-Type": _CONTENT_TYPE,
            "X-Amz-Target": f"{_TARGET_PREFIX}.{operation}",
            "X-Amz-User-Agent": f"userpool-python/{__version__}",
        }

    async def request(self, operation: str, params: dict[str, Any]) -> dict[str, Any]:
        """POST one operation and return its decoded JSON body.

        Connection failures are retried with exponential backoff. Timeouts
        and other transport errors are raised as a retryable
        :class:`RemoteError` without resending; error responses are raised
        via :meth:`RemoteError.from_response`.
        """
        body = json.dumps(params)
        headers = self._headers(operation)
        for attempt in range(self.max_retries):
            try:
                client = self._get_client()
                res = await client.post(self.endpoint, content=body, headers=headers)
            except httpx.ConnectError as exc:
                if attempt < self.max_retries - 1:
                    wait = self.backoff_base * (2**attempt)
                    logger.warning(
                        "Connection error on %s: %s (attempt %d/%d, waiting %.1fs)",
                        operation,
                        exc,
                        attempt + 1,
                        self.max_retries,
                        wait,
                    )
                    # Start the next attempt with a fresh socket.
                    await self.aclose()
                    await asyncio.sleep(wait)
                    continue
                raise RemoteError(
                    "NetworkError",
                    f"{operation} failed after {self.max_retries} attempts: {exc}",
                    retryable=True,
                ) from exc
            except httpx.TimeoutException as exc:
                raise RemoteError("TimeoutError", f"{operation} timed out: {exc}", retryable=True) from exc
            except httpx.HTTPError as exc:
                raise RemoteError("NetworkError", f"{operation} failed: {exc}", retryable=True) from exc

            if res.status_code < 400:
                if not res.content:
                    return {}
                try:
                    data = res.json()
                except ValueError as exc:
                    raise RemoteError(
                        "InvalidResponse",
                        f"{operation} returned a body that is not JSON: {exc}",
                        status_code=res.status_code,
                    ) from exc
                if not isinstance(data, dict):
                    raise RemoteError(
                        "InvalidResponse",
                        f"{operation} returned {type(data).__name__}, expected an object",
                        status_code=res.status_code,
                    )
                return data

            try:
                payload = res.json()
            except ValueError:
                payload = {"message": res.text}
            error = RemoteError.from_response(res.status_code, payload)
            logger.debug("%s rejected with %s (HTTP %d)", operation, error.code, res.status_code)
            raise error

        # max_retries >= 1, so the loop always returns or raises.
        raise RemoteError("NetworkError", f"{operation} was not attempted", retryable=True)
