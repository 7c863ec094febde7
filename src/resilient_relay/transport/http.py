"""
HTTP transport using httpx for async requests.

Every failure leaving this module is a ProviderError tagged with an
ErrorKind, so callers never see raw httpx exceptions.
"""

from __future__ import annotations

import contextlib
import os
from typing import TYPE_CHECKING, Any

import httpx

from resilient_relay.errors import ErrorKind, ProviderError, classify_exception, classify_http_status

if TYPE_CHECKING:
    from types import TracebackType


# Default timeouts
_DEFAULT_TIMEOUT = 30.0
_DEFAULT_CONNECT_TIMEOUT = 10.0

_UA_VERSION: str | None = None


def _trust_env_enabled() -> bool:
    """Use env proxy settings only when explicitly enabled."""
    return os.getenv("RELAY_HTTP_TRUST_ENV", "0") == "1"


def _get_ua_version() -> str:
    """Get package version for User-Agent (cached)."""
    global _UA_VERSION
    if _UA_VERSION is None:
        try:
            from importlib.metadata import version

            _UA_VERSION = version("resilient-relay")
        except Exception:
            _UA_VERSION = "0.1.0"
    return _UA_VERSION


def extract_error_message(body: Any) -> str | None:
    """Extract an error message from a parsed response body.

    Supports:
    - {"error": {"message": "..."}} (OpenAI, Google)
    - {"error": "..."}
    - {"message": "..."} / {"detail": "..."}
    """
    if not isinstance(body, dict):
        return None

    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error

    for key in ("message", "detail"):
        value = body.get(key)
        if isinstance(value, str):
            return value

    return None


def error_from_response(response: httpx.Response, provider_id: str | None = None) -> ProviderError:
    """Translate an error response into a ProviderError.

    Args:
        response: HTTP response with an error status
        provider_id: Provider or mirror the response came from

    Returns:
        ProviderError classified by status code
    """
    body: Any = None
    with contextlib.suppress(ValueError):
        body = response.json()
    detail = extract_error_message(body) or response.text[:200] or response.reason_phrase

    retry_after = None
    retry_after_str = response.headers.get("retry-after")
    if retry_after_str:
        with contextlib.suppress(ValueError):
            retry_after = float(retry_after_str)

    return ProviderError(
        f"HTTP {response.status_code}: {detail}",
        kind=classify_http_status(response.status_code),
        provider_id=provider_id,
        status_code=response.status_code,
        retry_after=retry_after,
    )


class HttpTransport:
    """Shared async HTTP client.

    Example:
        >>> async with HttpTransport(timeout=30.0) as transport:
        ...     data = await transport.get_json("https://mirror.example/api/v1/streams/abc")
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        proxy: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize HTTP transport.

        Args:
            timeout: Request timeout in seconds
            proxy: Proxy URL
            headers: Headers sent with every request
        """
        self._timeout = timeout
        if self._timeout is None:
            env_timeout = os.getenv("RELAY_HTTP_TIMEOUT_SECS")
            if env_timeout:
                with contextlib.suppress(ValueError):
                    self._timeout = float(env_timeout)
        if self._timeout is None:
            self._timeout = _DEFAULT_TIMEOUT

        if proxy is not None:
            self._proxy = proxy
        elif _trust_env_enabled():
            self._proxy = os.getenv("RELAY_PROXY_URL")
        else:
            self._proxy = None

        self._headers = {"User-Agent": f"resilient-relay/{_get_ua_version()}"}
        if headers:
            self._headers.update(headers)

        self._client: httpx.AsyncClient | None = None

    @property
    def timeout(self) -> float:
        """Default request timeout in seconds."""
        return self._timeout  # type: ignore[return-value]

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=_DEFAULT_CONNECT_TIMEOUT),
                proxy=self._proxy,
                headers=self._headers,
                follow_redirects=True,
                trust_env=_trust_env_enabled(),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def request(
        self,
        method: str,
        url: str,
        *,
        provider_id: str | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request.

        Args:
            method: HTTP method
            url: Absolute URL
            provider_id: Provider or mirror name for error tagging
            timeout: Per-request timeout override in seconds
            **kwargs: Passed to httpx (params, json, data, files, content, headers)

        Returns:
            Successful HTTP response

        Raises:
            ProviderError: On network failure, timeout or error status
        """
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._get_client().request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(
                f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                kind=classify_exception(e),
                provider_id=provider_id,
                cause=e,
            ) from e

        if response.is_error:
            raise error_from_response(response, provider_id)
        return response

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        """GET a URL and decode its JSON body."""
        response = await self.request("GET", url, **kwargs)
        return self._decode(response, kwargs.get("provider_id"))

    async def post_json(self, url: str, **kwargs: Any) -> Any:
        """POST to a URL and decode its JSON body."""
        response = await self.request("POST", url, **kwargs)
        return self._decode(response, kwargs.get("provider_id"))

    @staticmethod
    def _decode(response: httpx.Response, provider_id: str | None) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                "Response is not valid JSON",
                kind=ErrorKind.OTHER,
                provider_id=provider_id,
                status_code=response.status_code,
                cause=e,
            ) from e
