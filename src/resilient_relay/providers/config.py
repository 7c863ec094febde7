"""
Provider configuration.

ProviderSettings is the validated, declarative form (from code or YAML).
ProviderConfig is the immutable runtime form, produced once at startup by
checking which credentials are present in the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from resilient_relay.errors import ConfigError
from resilient_relay.resilience.circuit_breaker import CircuitBreakerConfig
from resilient_relay.resilience.retry import RetryConfig
from resilient_relay.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = get_logger("resilient_relay.providers.config")


class ProviderSettings(BaseModel):
    """Declarative provider settings."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1, description="Unique provider identifier")
    display_name: str | None = Field(default=None, description="Name used in messages")
    required_env: list[list[str]] = Field(
        default_factory=list,
        description="Alternatives of credential sets; the provider is enabled when "
        "every variable of at least one set is present",
    )
    enabled: bool = Field(default=True, description="Static switch, combined with credentials")
    priority: int = Field(default=100, description="Lower runs first")
    max_retries: int = Field(default=3, ge=0, description="Total attempts per run")
    base_delay_ms: int = Field(default=1000, gt=0)
    max_delay_ms: int = Field(default=15000, gt=0)
    failure_threshold: int = Field(default=5, gt=0)
    cooldown_ms: int = Field(default=60000, gt=0)

    @model_validator(mode="after")
    def _check_delays(self) -> ProviderSettings:
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self

    def credentials_present(self, environ: Mapping[str, str]) -> bool:
        """Check the environment for any complete credential set."""
        if not self.required_env:
            return True
        return any(all(environ.get(name) for name in names) for names in self.required_env)


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable description of one candidate provider.

    Attributes:
        id: Unique provider identifier
        display_name: Name used in logs and messages
        enabled: Whether the provider may be attempted at all
        max_retries: Total attempts per orchestration run
        base_delay_ms: First backoff delay
        max_delay_ms: Backoff cap
        failure_threshold: Consecutive failures that open the breaker
        cooldown_ms: Time the breaker stays open
        priority: Static order, lower first
    """

    id: str
    display_name: str
    enabled: bool = True
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 15000
    failure_threshold: int = 5
    cooldown_ms: int = 60000
    priority: int = 100

    @property
    def retry_config(self) -> RetryConfig:
        """Retry policy for this provider."""
        return RetryConfig(
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
        )

    @property
    def breaker_config(self) -> CircuitBreakerConfig:
        """Circuit breaker settings for this provider."""
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            cooldown_seconds=self.cooldown_ms / 1000.0,
        )

    @classmethod
    def from_settings(
        cls,
        settings: ProviderSettings,
        environ: Mapping[str, str] | None = None,
    ) -> ProviderConfig:
        """Resolve settings against the environment."""
        env = os.environ if environ is None else environ
        return cls(
            id=settings.id,
            display_name=settings.display_name or settings.id,
            enabled=settings.enabled and settings.credentials_present(env),
            max_retries=settings.max_retries,
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
            failure_threshold=settings.failure_threshold,
            cooldown_ms=settings.cooldown_ms,
            priority=settings.priority,
        )


TRANSCRIPTION_PROVIDERS: tuple[ProviderSettings, ...] = (
    # Gemini suffers long overload windows: trip early, back off longer
    ProviderSettings(
        id="google",
        display_name="Google AI",
        required_env=[["GOOGLE_API_KEY"], ["GEMINI_API_KEY"]],
        priority=1,
        max_retries=3,
        base_delay_ms=2000,
        max_delay_ms=30000,
        failure_threshold=3,
        cooldown_ms=120000,
    ),
    ProviderSettings(
        id="openai",
        display_name="OpenAI Whisper",
        required_env=[["OPENAI_API_KEY"]],
        priority=2,
    ),
    ProviderSettings(
        id="azure",
        display_name="Azure Speech",
        required_env=[["AZURE_SPEECH_KEY", "AZURE_SPEECH_REGION"]],
        priority=3,
    ),
)


def load_provider_configs(
    settings: Iterable[ProviderSettings],
    environ: Mapping[str, str] | None = None,
) -> list[ProviderConfig]:
    """Resolve a catalog into runtime configs, ordered by priority.

    Args:
        settings: Provider settings
        environ: Environment to check credentials against (default: os.environ)

    Returns:
        ProviderConfig list sorted by priority (stable)

    Raises:
        ConfigError: If provider ids are not unique
    """
    configs = [ProviderConfig.from_settings(s, environ) for s in settings]

    seen: set[str] = set()
    for config in configs:
        if config.id in seen:
            raise ConfigError(f"Duplicate provider id: {config.id}")
        seen.add(config.id)

    configs.sort(key=lambda c: c.priority)
    logger.info(
        "Providers loaded",
        enabled=[c.id for c in configs if c.enabled],
        disabled=[c.id for c in configs if not c.enabled],
    )
    return configs


def parse_provider_settings(data: Any) -> list[ProviderSettings]:
    """Validate a ``{"providers": {id: {...}}}`` document.

    Raises:
        ConfigError: If the document is malformed
    """
    if not isinstance(data, dict) or not isinstance(data.get("providers"), dict):
        raise ConfigError("Provider settings must contain a 'providers' mapping")

    result: list[ProviderSettings] = []
    for provider_id, raw in data["providers"].items():
        body = dict(raw or {})
        body.setdefault("id", provider_id)
        env = body.get("required_env")
        if isinstance(env, list) and env and all(isinstance(e, str) for e in env):
            # a flat list means one credential set
            body["required_env"] = [env]
        try:
            result.append(ProviderSettings.model_validate(body))
        except ValidationError as e:
            raise ConfigError(f"Invalid settings for provider '{provider_id}': {e}") from e
    return result


def load_provider_settings(path: str | Path) -> list[ProviderSettings]:
    """Load provider settings from a YAML file.

    Example file::

        providers:
          google:
            display_name: Google AI
            required_env: [GOOGLE_API_KEY]
            max_retries: 3
            base_delay_ms: 2000
            max_delay_ms: 30000

    Raises:
        ConfigError: If the file is missing or invalid
    """
    file_path = Path(path)
    try:
        data = yaml.safe_load(file_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read provider settings: {e}", path=str(file_path)) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in provider settings: {e}", path=str(file_path)) from e
    return parse_provider_settings(data)
