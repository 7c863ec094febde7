"""
CLI-backed extraction with ordered invocation strategies.
"""

from resilient_relay.extraction.runner import CommandResult, CommandRunner
from resilient_relay.extraction.selector import (
    ExtractionStrategySelector,
    Strategy,
    StrategyOutcome,
)
from resilient_relay.extraction.ytdlp import (
    DEFAULT_STRATEGIES,
    DownloadedAudio,
    ExtractionConfig,
    MediaInfo,
    YtDlpExtractor,
    cleanup_stale_files,
    discard_partial,
    output_stem_for,
)

__all__ = [
    "DEFAULT_STRATEGIES",
    "CommandResult",
    "CommandRunner",
    "DownloadedAudio",
    "ExtractionConfig",
    "ExtractionStrategySelector",
    "MediaInfo",
    "Strategy",
    "StrategyOutcome",
    "YtDlpExtractor",
    "cleanup_stale_files",
    "discard_partial",
    "output_stem_for",
]
