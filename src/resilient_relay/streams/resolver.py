"""
Mirror-based audio stream resolution.

Mirrors are grouped into two API families. Every mirror of the first family
is queried once, in order; only when the whole family comes up empty is the
second family tried. There is no retry within a mirror: the next mirror is
the retry.
"""

from __future__ import annotations

import asyncio
import os
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from resilient_relay.errors import ErrorKind, ProviderError, StreamNotFoundError
from resilient_relay.resilience.cancel import guarded
from resilient_relay.resilience.failures import FailureRecord
from resilient_relay.telemetry import get_logger
from resilient_relay.transport import HttpTransport

if TYPE_CHECKING:
    from collections.abc import Callable

    from resilient_relay.resilience.cancel import CancelToken

logger = get_logger("resilient_relay.streams.resolver")

DEFAULT_TITLE = "YouTube Audio"

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

PIPED_MIRRORS: tuple[str, ...] = (
    "https://pipedapi.kavin.rocks",
    "https://piped-api.hostux.net",
    "https://piped.video",
    "https://pipedapi.palveluntarjoaja.eu",
    "https://piped-api.orkiv.com",
    "https://piped-api.r4fo.com",
    "https://piped.moomoo.me",
    "https://piped.garudalinux.org",
    "https://api.piped.projectsegfau.lt",
    "https://pipedapi.adminforge.de",
)

INVIDIOUS_MIRRORS: tuple[str, ...] = (
    "https://yewtu.be",
    "https://invidious.kavin.rocks",
    "https://vid.puffyan.us",
    "https://invidious.namazso.eu",
    "https://invidious.zapashcanon.fr",
    "https://invidious.lunar.icu",
    "https://invidious.projectsegfau.lt",
    "https://invidious.flokinet.to",
)

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
_VIDEO_URL_RE = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?|shorts|live)/|.*[?&]v=)|youtu\.be/)"
    r"([A-Za-z0-9_-]{11})"
)


class MirrorFamily(str, Enum):
    """Mirror API families, in fallback order."""

    PIPED = "piped"
    INVIDIOUS = "invidious"


@dataclass(frozen=True)
class StreamCandidate:
    """A playable stream offered by one mirror.

    Attributes:
        mirror_url: Base URL of the mirror that returned it
        api_family: API family of that mirror
        resolved_stream_url: Direct stream URL
        title: Media title
        duration_seconds: Media duration (0 if unknown)
        bitrate: Stream bitrate used for quality ordering
        mime_type: Stream MIME type, if reported
    """

    mirror_url: str
    api_family: MirrorFamily
    resolved_stream_url: str
    title: str = DEFAULT_TITLE
    duration_seconds: float = 0
    bitrate: int = 0
    mime_type: str | None = None


@dataclass
class ResolverConfig:
    """Configuration for stream resolution.

    Attributes:
        piped_mirrors: First-family mirrors, in order
        invidious_mirrors: Second-family mirrors, in order
        request_timeout: Per-lookup timeout in seconds
        cache_bust: Add a ``cb`` query parameter to every lookup
        fetch_metadata: Fetch first-family metadata alongside streams
        max_duration_seconds: Longest media accepted
    """

    piped_mirrors: list[str] = field(default_factory=lambda: list(PIPED_MIRRORS))
    invidious_mirrors: list[str] = field(default_factory=lambda: list(INVIDIOUS_MIRRORS))
    request_timeout: float = 30.0
    cache_bust: bool = True
    fetch_metadata: bool = True
    max_duration_seconds: int = 1800

    def mirrors(self, family: MirrorFamily) -> list[str]:
        """Mirrors of one family."""
        if family == MirrorFamily.PIPED:
            return self.piped_mirrors
        return self.invidious_mirrors

    @classmethod
    def default(cls) -> ResolverConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def from_env(cls) -> ResolverConfig:
        """Create configuration from environment variables."""
        return cls(
            request_timeout=float(os.getenv("RELAY_RESOLVER_TIMEOUT_SECS", "30")),
            max_duration_seconds=int(os.getenv("RELAY_MAX_DURATION_SECS", "1800")),
        )


def extract_video_id(url: str) -> str | None:
    """Extract the video id from a watch, short, embed or youtu.be URL.

    A bare 11-character id is returned unchanged.
    """
    url = url.strip()
    if _VIDEO_ID_RE.match(url):
        return url
    match = _VIDEO_URL_RE.search(url)
    return match.group(1) if match else None


def is_valid_video_id(resource_id: str) -> bool:
    """Check the 11-character id format."""
    return bool(_VIDEO_ID_RE.match(resource_id))


def select_best(candidates: list[StreamCandidate]) -> StreamCandidate | None:
    """Pick the highest-bitrate candidate; earliest wins ties."""
    best: StreamCandidate | None = None
    for candidate in candidates:
        if best is None or candidate.bitrate > best.bitrate:
            best = candidate
    return best


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_piped_streams(
    mirror: str,
    streams: Any,
    meta: Any = None,
) -> list[StreamCandidate]:
    """Build candidates from a Piped ``/streams`` response.

    Args:
        mirror: Mirror base URL
        streams: Decoded streams response
        meta: Decoded ``/videos`` response, if fetched

    Returns:
        Candidates with a stream URL, in response order
    """
    if not isinstance(streams, dict):
        return []
    meta = meta if isinstance(meta, dict) else {}

    title = streams.get("title") or meta.get("title") or DEFAULT_TITLE
    duration = streams.get("duration")
    if duration is None:
        duration = meta.get("duration")

    candidates = []
    for entry in streams.get("audioStreams") or []:
        if not isinstance(entry, dict) or not entry.get("url"):
            continue
        candidates.append(
            StreamCandidate(
                mirror_url=mirror,
                api_family=MirrorFamily.PIPED,
                resolved_stream_url=entry["url"],
                title=title,
                duration_seconds=_as_float(duration),
                bitrate=_as_int(entry.get("bitrate")),
                mime_type=entry.get("mimeType"),
            )
        )
    return candidates


def parse_invidious_video(mirror: str, data: Any) -> list[StreamCandidate]:
    """Build candidates from an Invidious ``/videos`` response.

    Only ``adaptiveFormats`` entries whose type mentions audio are usable.
    """
    if not isinstance(data, dict):
        return []

    title = data.get("title") or DEFAULT_TITLE
    duration = _as_float(data.get("lengthSeconds"))

    candidates = []
    for entry in data.get("adaptiveFormats") or []:
        if not isinstance(entry, dict) or not entry.get("url"):
            continue
        mime_type = entry.get("type") or ""
        if "audio" not in mime_type:
            continue
        candidates.append(
            StreamCandidate(
                mirror_url=mirror,
                api_family=MirrorFamily.INVIDIOUS,
                resolved_stream_url=entry["url"],
                title=title,
                duration_seconds=duration,
                bitrate=_as_int(entry.get("bitrate")),
                mime_type=mime_type,
            )
        )
    return candidates


class StreamResolver:
    """Resolves a video id to a playable audio stream through public mirrors.

    Example:
        >>> async with StreamResolver() as resolver:
        ...     candidate = await resolver.resolve("dQw4w9WgXcQ")
        ...     print(candidate.resolved_stream_url, candidate.title)
    """

    def __init__(
        self,
        config: ResolverConfig | None = None,
        transport: HttpTransport | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize resolver.

        Args:
            config: Resolver configuration
            transport: HTTP transport (one is created and owned if omitted)
            clock: Wall clock used for cache-buster values
        """
        self._config = config or ResolverConfig.from_env()
        self._owns_transport = transport is None
        self._transport = transport or HttpTransport(timeout=self._config.request_timeout)
        self._clock = clock

    @property
    def config(self) -> ResolverConfig:
        """Resolver configuration."""
        return self._config

    async def close(self) -> None:
        """Close the transport if this resolver created it."""
        if self._owns_transport:
            await self._transport.close()

    async def __aenter__(self) -> StreamResolver:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def resolve(
        self,
        resource_id: str,
        *,
        cancel_token: CancelToken | None = None,
    ) -> StreamCandidate:
        """Resolve the best stream for a video.

        Args:
            resource_id: 11-character video id
            cancel_token: Deadline/cancellation for all lookups

        Returns:
            Highest-bitrate candidate of the first mirror that had any

        Raises:
            ProviderError: If the id is malformed or the media is too long
                (kind ``invalid_request``)
            StreamNotFoundError: If no mirror in either family had a stream
            OperationCancelledError: If the token fires
        """
        if not is_valid_video_id(resource_id):
            raise ProviderError(
                "Invalid video ID format",
                kind=ErrorKind.INVALID_REQUEST,
            )

        failures: list[FailureRecord] = []
        for family in MirrorFamily:
            candidate = await self.resolve_family(family, resource_id, failures, cancel_token=cancel_token)
            if candidate is not None:
                self._check_duration(candidate)
                return candidate
            logger.info("Mirror family exhausted", family=family.value, video_id=resource_id)

        logger.error("No mirror returned an audio stream", video_id=resource_id, mirrors=len(failures))
        raise StreamNotFoundError(resource_id, failures)

    async def resolve_family(
        self,
        family: MirrorFamily,
        resource_id: str,
        failures: list[FailureRecord] | None = None,
        *,
        cancel_token: CancelToken | None = None,
    ) -> StreamCandidate | None:
        """Query each mirror of one family once until one has a stream.

        Args:
            family: Mirror family to query
            resource_id: Video id
            failures: List that per-mirror failures are appended to
            cancel_token: Deadline/cancellation for all lookups

        Returns:
            Best candidate of the first productive mirror, or None
        """
        if failures is None:
            failures = []

        for mirror in self._config.mirrors(family):
            try:
                candidates = await guarded(self._lookup(family, mirror, resource_id), cancel_token)
            except ProviderError as e:
                logger.warning("Mirror lookup failed", mirror=mirror, kind=e.kind.value, error=e.message)
                failures.append(FailureRecord(provider_id=mirror, kind=e.kind, message=e.message))
                continue

            best = select_best(candidates)
            if best is None:
                logger.warning("Mirror returned no usable audio streams", mirror=mirror)
                failures.append(
                    FailureRecord(
                        provider_id=mirror,
                        kind=ErrorKind.NOT_FOUND,
                        message="No usable audio streams",
                    )
                )
                continue

            logger.info(
                "Resolved audio stream",
                mirror=mirror,
                family=family.value,
                bitrate=best.bitrate,
                candidates=len(candidates),
            )
            return best

        return None

    def _check_duration(self, candidate: StreamCandidate) -> None:
        limit = self._config.max_duration_seconds
        if candidate.duration_seconds > limit:
            raise ProviderError(
                f"Video duration ({round(candidate.duration_seconds / 60)} minutes) exceeds "
                f"maximum allowed duration ({limit // 60} minutes)",
                kind=ErrorKind.INVALID_REQUEST,
                provider_id=candidate.mirror_url,
            )

    def _params(self) -> dict[str, str]:
        if not self._config.cache_bust:
            return {}
        return {"cb": str(int(self._clock() * 1000))}

    async def _lookup(
        self,
        family: MirrorFamily,
        mirror: str,
        resource_id: str,
    ) -> list[StreamCandidate]:
        if family == MirrorFamily.PIPED:
            return await self._lookup_piped(mirror, resource_id)
        return await self._lookup_invidious(mirror, resource_id)

    async def _lookup_piped(self, mirror: str, resource_id: str) -> list[StreamCandidate]:
        params = self._params()
        streams_call = self._transport.get_json(
            f"{mirror}/api/v1/streams/{resource_id}",
            provider_id=mirror,
            params=params,
            timeout=self._config.request_timeout,
        )
        if not self._config.fetch_metadata:
            return parse_piped_streams(mirror, await streams_call)

        # metadata is optional; its failure never fails the mirror
        streams, meta = await asyncio.gather(
            streams_call,
            self._transport.get_json(
                f"{mirror}/api/v1/videos/{resource_id}",
                provider_id=mirror,
                params=params,
                timeout=self._config.request_timeout,
            ),
            return_exceptions=True,
        )
        if isinstance(streams, BaseException):
            raise streams
        if isinstance(meta, asyncio.CancelledError):
            raise meta
        if isinstance(meta, Exception):
            meta = None
        return parse_piped_streams(mirror, streams, meta)

    async def _lookup_invidious(self, mirror: str, resource_id: str) -> list[StreamCandidate]:
        data = await self._transport.get_json(
            f"{mirror}/api/v1/videos/{resource_id}",
            provider_id=mirror,
            params=self._params(),
            headers={"User-Agent": BROWSER_USER_AGENT},
            timeout=self._config.request_timeout,
        )
        return parse_invidious_video(mirror, data)
