"""
yt-dlp backed metadata and audio extraction.
"""

from __future__ import annotations

import json
import os
import re
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from resilient_relay.errors import ErrorKind, ExtractionError, ProviderError, classify_cli_failure
from resilient_relay.extraction.runner import CommandResult, CommandRunner
from resilient_relay.extraction.selector import ExtractionStrategySelector, Strategy
from resilient_relay.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from resilient_relay.resilience.cancel import CancelToken

logger = get_logger("resilient_relay.extraction.ytdlp")

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    Strategy("basic"),
    Strategy("embed", ("--extractor-args", "youtube:player_client=web,web_creator")),
    Strategy("tv", ("--extractor-args", "youtube:player_client=tv_embedded")),
    Strategy("ios-old", ("--extractor-args", "youtube:player_client=ios,web_creator;formats=missing_pot")),
    Strategy(
        "legacy-web",
        (
            "--user-agent",
            BROWSER_USER_AGENT,
            "--referer",
            "https://www.youtube.com/",
            "--extractor-args",
            "youtube:formats=missing_pot",
        ),
    ),
)

PARTIAL_SUFFIXES: tuple[str, ...] = (".mp3", ".webm", ".m4a", ".mp4", ".part")

YOUTUBE_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.BLOCKED: (
        "YouTube is currently blocking automated requests. This is a temporary issue "
        "from YouTube's side. Please try again in a few minutes or try a different video."
    ),
    ErrorKind.CONTENT_UNAVAILABLE: (
        "This video is private, unavailable, or restricted. Please try a different video."
    ),
}

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9]")


def _default_temp_dir() -> Path:
    return Path(tempfile.gettempdir()) / "relay-downloads"


@dataclass
class ExtractionConfig:
    """Configuration for yt-dlp extraction.

    Attributes:
        binary: yt-dlp executable name or path
        info_timeout: Seconds allowed per metadata strategy
        download_timeout: Seconds allowed per download strategy
        version_timeout: Seconds allowed for the ``--version`` check
        blocked_pause: Seconds to wait after a blocked strategy
        max_duration_seconds: Longest media accepted
        audio_format: Output audio format
        audio_quality: Output audio quality
        temp_dir: Directory for downloads
    """

    binary: str = "yt-dlp"
    info_timeout: float = 30.0
    download_timeout: float = 120.0
    version_timeout: float = 10.0
    blocked_pause: float = 2.0
    max_duration_seconds: int = 1800
    audio_format: str = "mp3"
    audio_quality: str = "192K"
    temp_dir: Path = field(default_factory=_default_temp_dir)

    @classmethod
    def default(cls) -> ExtractionConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def from_env(cls) -> ExtractionConfig:
        """Create configuration from environment variables."""
        temp_dir = os.getenv("RELAY_TEMP_DIR")
        return cls(
            binary=os.getenv("RELAY_YTDLP_BIN", "yt-dlp"),
            max_duration_seconds=int(os.getenv("RELAY_MAX_DURATION_SECS", "1800")),
            temp_dir=Path(temp_dir) if temp_dir else _default_temp_dir(),
        )


@dataclass(frozen=True)
class MediaInfo:
    """Metadata reported by ``--dump-json``."""

    title: str
    duration_seconds: float
    uploader: str | None = None
    strategy: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class DownloadedAudio:
    """Audio file produced by a download."""

    path: Path
    strategy: str
    size_bytes: int


def output_stem_for(title: str, directory: Path, *, now: float | None = None) -> Path:
    """Build a unique, filesystem-safe output stem for a download."""
    timestamp = int((now if now is not None else time.time()) * 1000)
    safe_title = _UNSAFE_CHARS.sub("_", title)[:50]
    return directory / f"youtube_{safe_title}_{timestamp}"


def discard_partial(stem: Path) -> list[Path]:
    """Delete partial files a failed download may have left behind.

    Returns:
        Paths that were removed
    """
    removed = []
    for suffix in PARTIAL_SUFFIXES:
        candidate = stem.with_name(stem.name + suffix)
        try:
            candidate.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Failed to remove partial file", path=str(candidate), error=str(e))
            continue
        removed.append(candidate)
        logger.debug("Removed partial file", path=str(candidate))
    return removed


def cleanup_stale_files(
    directory: Path,
    max_age: float = 3600.0,
    *,
    now: float | None = None,
) -> list[Path]:
    """Delete files older than ``max_age`` seconds from a temp directory.

    Args:
        directory: Directory to sweep (missing directories are ignored)
        max_age: Age in seconds after which a file is stale
        now: Current wall-clock time (defaults to ``time.time()``)

    Returns:
        Paths that were removed
    """
    if not directory.is_dir():
        return []

    cutoff = (now if now is not None else time.time()) - max_age
    removed = []
    for path in directory.iterdir():
        try:
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed.append(path)
        except OSError as e:
            logger.warning("Failed to clean up file", path=str(path), error=str(e))
    if removed:
        logger.info("Cleaned up stale files", directory=str(directory), count=len(removed))
    return removed


def _failure_from(result: CommandResult, default: str) -> ProviderError:
    output = f"{result.stderr}\n{result.stdout}".strip()
    message = default
    if not result.ok and output:
        message = output.splitlines()[-1]
    return ProviderError(message, kind=classify_cli_failure(output), provider_id="yt-dlp")


class YtDlpExtractor:
    """Metadata lookup and audio download through yt-dlp.

    Example:
        >>> extractor = YtDlpExtractor(ExtractionConfig.from_env())
        >>> await extractor.check_tool()
        >>> info = await extractor.fetch_metadata(url)
        >>> audio = await extractor.download_audio(url, output_stem_for(info.title, tmp))
    """

    def __init__(
        self,
        config: ExtractionConfig | None = None,
        runner: CommandRunner | None = None,
        strategies: Sequence[Strategy] | None = None,
        selector: ExtractionStrategySelector | None = None,
    ) -> None:
        """Initialize extractor.

        Args:
            config: Extraction configuration
            runner: Process runner
            strategies: Strategies in order (defaults to DEFAULT_STRATEGIES)
            selector: Strategy selector
        """
        self._config = config or ExtractionConfig.from_env()
        self._runner = runner or CommandRunner()
        self._strategies = tuple(strategies) if strategies is not None else DEFAULT_STRATEGIES
        limit_minutes = self._config.max_duration_seconds // 60
        self._selector = selector or ExtractionStrategySelector(
            blocked_pause=self._config.blocked_pause,
            short_circuit=frozenset({ErrorKind.CONTENT_UNAVAILABLE, ErrorKind.REQUEST_TOO_LARGE}),
            messages={
                **YOUTUBE_MESSAGES,
                ErrorKind.REQUEST_TOO_LARGE: (
                    f"Video is too long. Please try a video shorter than {limit_minutes} minutes."
                ),
            },
            fallback_message=(
                "Failed to extract audio. YouTube may be experiencing issues or "
                "blocking requests. Please try again later."
            ),
        )

    @property
    def config(self) -> ExtractionConfig:
        """Extraction configuration."""
        return self._config

    @property
    def strategies(self) -> tuple[Strategy, ...]:
        """Strategies in the order they are tried."""
        return self._strategies

    async def check_tool(self) -> str:
        """Verify yt-dlp is installed and runs.

        Returns:
            Reported yt-dlp version

        Raises:
            ExtractionError: If the binary is missing or broken
        """
        binary = self._config.binary
        if shutil.which(binary) is None:
            logger.error("yt-dlp not found in PATH", binary=binary)
            raise ExtractionError(
                "yt-dlp is not installed or not available in PATH.",
                hint="Please contact support.",
            )

        try:
            result = await self._runner.run([binary, "--version"], timeout=self._config.version_timeout)
        except ProviderError as e:
            raise ExtractionError(
                "yt-dlp is installed but not functioning properly.",
                hint="Please contact support.",
            ) from e
        if not result.ok:
            logger.error("yt-dlp version check failed", stderr=result.stderr.strip())
            raise ExtractionError(
                "yt-dlp is installed but not functioning properly.",
                hint="Please contact support.",
            )

        version = result.stdout.strip()
        logger.info("yt-dlp available", version=version)
        return version

    async def fetch_metadata(self, url: str, *, cancel_token: CancelToken | None = None) -> MediaInfo:
        """Read title and duration without downloading.

        Raises:
            ExtractionError: If every strategy failed
        """

        async def run(strategy: Strategy, target: str) -> MediaInfo:
            args = [
                self._config.binary,
                "--dump-json",
                "--no-playlist",
                "--quiet",
                *strategy.args,
                "--",
                target,
            ]
            result = await self._runner.run(args, timeout=self._config.info_timeout)
            if not result.ok:
                raise _failure_from(result, "yt-dlp exited with an error")
            return self._parse_info(result.stdout, strategy.name)

        outcome = await self._selector.attempt(url, self._strategies, run, cancel_token=cancel_token)
        info = outcome.value
        logger.info(
            "Video info extracted",
            title=info.title,
            duration=info.duration_seconds,
            strategy=outcome.strategy,
        )
        return info

    async def download_audio(
        self,
        url: str,
        output_stem: Path,
        *,
        cancel_token: CancelToken | None = None,
    ) -> DownloadedAudio:
        """Download and convert the audio track.

        Args:
            url: Media URL
            output_stem: Output path without extension
            cancel_token: Deadline/cancellation for the whole run

        Returns:
            DownloadedAudio pointing at ``<stem>.<audio_format>``

        Raises:
            ExtractionError: If every strategy failed
        """
        output_stem.parent.mkdir(parents=True, exist_ok=True)
        expected = output_stem.with_name(f"{output_stem.name}.{self._config.audio_format}")

        async def run(strategy: Strategy, target: str) -> DownloadedAudio:
            args = [
                self._config.binary,
                "--extract-audio",
                "--audio-format",
                self._config.audio_format,
                "--audio-quality",
                self._config.audio_quality,
                "--no-playlist",
                *strategy.args,
                "--match-filters",
                f"duration < {self._config.max_duration_seconds}",
                "--output",
                f"{output_stem}.%(ext)s",
                "--",
                target,
            ]
            result = await self._runner.run(args, timeout=self._config.download_timeout)
            if not result.ok:
                raise _failure_from(result, "yt-dlp exited with an error")
            if not expected.exists():
                raise _failure_from(result, "Audio file was not created")
            return DownloadedAudio(path=expected, strategy=strategy.name, size_bytes=expected.stat().st_size)

        outcome = await self._selector.attempt(
            url,
            self._strategies,
            run,
            discard=lambda _strategy: discard_partial(output_stem),
            cancel_token=cancel_token,
        )
        audio = outcome.value
        logger.info(
            "Audio downloaded",
            path=str(audio.path),
            size_mb=round(audio.size_bytes / (1024 * 1024), 2),
            strategy=audio.strategy,
        )
        return audio

    @staticmethod
    def _parse_info(stdout: str, strategy: str) -> MediaInfo:
        text = stdout.strip()
        if not text:
            raise ProviderError("Empty response from yt-dlp", kind=ErrorKind.OTHER, provider_id="yt-dlp")
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProviderError(
                "yt-dlp returned invalid JSON",
                kind=ErrorKind.OTHER,
                provider_id="yt-dlp",
                cause=e,
            ) from e
        if not isinstance(data, dict) or not data.get("title") or not data.get("duration"):
            raise ProviderError(
                "Invalid video information received",
                kind=ErrorKind.OTHER,
                provider_id="yt-dlp",
            )
        return MediaInfo(
            title=data["title"],
            duration_seconds=float(data["duration"]),
            uploader=data.get("uploader"),
            strategy=strategy,
            raw=data,
        )
