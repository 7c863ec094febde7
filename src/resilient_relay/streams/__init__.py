"""
Stream resolution through redundant public API mirrors.
"""

from resilient_relay.streams.resolver import (
    BROWSER_USER_AGENT,
    DEFAULT_TITLE,
    INVIDIOUS_MIRRORS,
    PIPED_MIRRORS,
    MirrorFamily,
    ResolverConfig,
    StreamCandidate,
    StreamResolver,
    extract_video_id,
    is_valid_video_id,
    parse_invidious_video,
    parse_piped_streams,
    select_best,
)

__all__ = [
    "BROWSER_USER_AGENT",
    "DEFAULT_TITLE",
    "INVIDIOUS_MIRRORS",
    "PIPED_MIRRORS",
    "MirrorFamily",
    "ResolverConfig",
    "StreamCandidate",
    "StreamResolver",
    "extract_video_id",
    "is_valid_video_id",
    "parse_invidious_video",
    "parse_piped_streams",
    "select_best",
]
