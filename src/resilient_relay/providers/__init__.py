"""Provider catalogs and configuration loading."""

from resilient_relay.providers.config import (
    TRANSCRIPTION_PROVIDERS,
    ProviderConfig,
    ProviderSettings,
    load_provider_configs,
    load_provider_settings,
    parse_provider_settings,
)

__all__ = [
    "ProviderConfig",
    "ProviderSettings",
    "TRANSCRIPTION_PROVIDERS",
    "load_provider_configs",
    "load_provider_settings",
    "parse_provider_settings",
]
