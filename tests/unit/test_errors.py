"""Tests for the error hierarchy and failure classification."""

import asyncio

import httpx
import pytest

from resilient_relay.errors import (
    ConfigError,
    ErrorKind,
    ExtractionError,
    OperationCancelledError,
    ProviderError,
    RelayError,
    StreamNotFoundError,
    classify_cli_failure,
    classify_exception,
    classify_http_status,
    is_input_class,
    is_transient,
)


class TestErrorHierarchy:
    """Tests for error classes."""

    def test_provider_error_fields(self) -> None:
        """Test ProviderError carries its classification."""
        error = ProviderError(
            "HTTP 429: slow down",
            kind=ErrorKind.RATE_LIMITED,
            provider_id="openai",
            status_code=429,
            retry_after=2.5,
        )
        assert isinstance(error, RelayError)
        assert error.kind == ErrorKind.RATE_LIMITED
        assert error.provider_id == "openai"
        assert error.retry_after == 2.5
        assert error.context.details == {"kind": "rate_limited", "provider_id": "openai", "status_code": 429}
        assert str(error).startswith("HTTP 429: slow down")

    def test_provider_error_cause(self) -> None:
        """Test the original exception is chained."""
        original = ValueError("bad json")
        error = ProviderError("Invalid JSON", kind=ErrorKind.OTHER, cause=original)
        assert error.__cause__ is original

    def test_with_hint(self) -> None:
        """Test hints are appended to the message."""
        error = ConfigError("Missing settings", path="/etc/relay.yaml").with_hint("Create the file")
        assert "(hint: Create the file)" in str(error)
        assert error.context.details["path"] == "/etc/relay.yaml"

    def test_default_kinds(self) -> None:
        """Test class-level kinds of the aggregate errors."""
        assert OperationCancelledError().kind == ErrorKind.CANCELLED
        assert StreamNotFoundError("dQw4w9WgXcQ").kind == ErrorKind.NOT_FOUND
        assert ExtractionError("failed").kind == ErrorKind.OTHER

    def test_stream_not_found_message(self) -> None:
        """Test the resolver failure keeps the resource id."""
        error = StreamNotFoundError("dQw4w9WgXcQ")
        assert error.message == "Could not retrieve audio stream for this video"
        assert error.resource_id == "dQw4w9WgXcQ"
        assert error.failures == []


class TestClassification:
    """Tests for failure classification."""

    @pytest.mark.parametrize(
        "status,kind",
        [
            (400, ErrorKind.INVALID_REQUEST),
            (401, ErrorKind.AUTHENTICATION),
            (403, ErrorKind.PERMISSION_DENIED),
            (404, ErrorKind.NOT_FOUND),
            (413, ErrorKind.REQUEST_TOO_LARGE),
            (418, ErrorKind.INVALID_REQUEST),
            (429, ErrorKind.RATE_LIMITED),
            (500, ErrorKind.SERVER_ERROR),
            (503, ErrorKind.OVERLOADED),
            (504, ErrorKind.TIMEOUT),
            (599, ErrorKind.SERVER_ERROR),
            (302, ErrorKind.OTHER),
        ],
    )
    def test_http_status(self, status: int, kind: ErrorKind) -> None:
        """Test HTTP status mapping."""
        assert classify_http_status(status) == kind

    def test_transient_kinds(self) -> None:
        """Test which kinds are retried."""
        assert is_transient(ErrorKind.OVERLOADED)
        assert is_transient(ErrorKind.NETWORK)
        assert not is_transient(ErrorKind.AUTHENTICATION)
        assert not is_transient(ErrorKind.BLOCKED)
        assert not is_transient(ErrorKind.INVALID_REQUEST)

    def test_input_kinds(self) -> None:
        """Test which kinds blame the request itself."""
        assert is_input_class(ErrorKind.CONTENT_UNAVAILABLE)
        assert is_input_class(ErrorKind.REQUEST_TOO_LARGE)
        assert not is_input_class(ErrorKind.TIMEOUT)

    def test_exceptions(self) -> None:
        """Test transport exceptions are classified."""
        request = httpx.Request("GET", "https://example.com")
        assert classify_exception(httpx.ReadTimeout("slow", request=request)) == ErrorKind.TIMEOUT
        assert classify_exception(asyncio.TimeoutError()) == ErrorKind.TIMEOUT
        assert classify_exception(httpx.ConnectError("refused", request=request)) == ErrorKind.NETWORK
        assert classify_exception(ConnectionResetError()) == ErrorKind.NETWORK
        assert classify_exception(KeyError("text")) == ErrorKind.OTHER

    def test_exception_with_kind(self) -> None:
        """Test exceptions that already carry a kind keep it."""
        error = ProviderError("blocked", kind=ErrorKind.BLOCKED)
        assert classify_exception(error) == ErrorKind.BLOCKED

    def test_http_status_error(self) -> None:
        """Test raised status errors use the status mapping."""
        request = httpx.Request("GET", "https://example.com")
        response = httpx.Response(503, request=request)
        error = httpx.HTTPStatusError("unavailable", request=request, response=response)
        assert classify_exception(error) == ErrorKind.OVERLOADED

    @pytest.mark.parametrize(
        "stderr,kind",
        [
            ("ERROR: [youtube] abc: Sign in to confirm you're not a bot", ErrorKind.BLOCKED),
            ("ERROR: [youtube] abc: Private video", ErrorKind.CONTENT_UNAVAILABLE),
            ("ERROR: [youtube] abc: Video unavailable", ErrorKind.CONTENT_UNAVAILABLE),
            ("ERROR: [youtube] abc: This video has been removed by the uploader", ErrorKind.CONTENT_UNAVAILABLE),
            ("[download] Video does not pass filter (duration < 1800), skipping ..", ErrorKind.REQUEST_TOO_LARGE),
            ("ERROR: unable to download video data: HTTP Error 429: Too Many Requests", ErrorKind.RATE_LIMITED),
            ("ERROR: HTTP Error 503: Service Unavailable", ErrorKind.SERVER_ERROR),
            ("ERROR: Read timed out", ErrorKind.TIMEOUT),
            ("ERROR: Unable to download webpage: <urlopen error>", ErrorKind.NETWORK),
            ("ERROR: Unsupported URL: https://example.com", ErrorKind.INVALID_REQUEST),
            ("ERROR: something odd", ErrorKind.OTHER),
            ("ERROR: [youtube] abc: nsig extraction failed: bot guard script missing", ErrorKind.OTHER),
            ("WARNING: [youtube] abc: Failed to parse duration field", ErrorKind.OTHER),
        ],
    )
    def test_cli_failure(self, stderr: str, kind: ErrorKind) -> None:
        """Test yt-dlp stderr classification."""
        assert classify_cli_failure(stderr) == kind
