"""
Strategy selection for a single CLI-backed provider.

The provider's failures depend on the shape of the request more than on
its health, so each strategy (a distinct argument set) is tried exactly
once and any failure moves on to the next one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from resilient_relay.errors import (
    ErrorKind,
    ExtractionError,
    NoCandidatesError,
    OperationCancelledError,
    classify_exception,
)
from resilient_relay.resilience.cancel import guarded, pause
from resilient_relay.resilience.failures import FailureRecord, most_informative
from resilient_relay.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from resilient_relay.resilience.cancel import CancelToken

T = TypeVar("T")

logger = get_logger("resilient_relay.extraction.selector")

# No argument variation can fix these
SHORT_CIRCUIT_KINDS: frozenset[ErrorKind] = frozenset({ErrorKind.CONTENT_UNAVAILABLE})

DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.BLOCKED: (
        "The upstream service is currently blocking automated requests. "
        "Please try again in a few minutes."
    ),
    ErrorKind.CONTENT_UNAVAILABLE: "The requested content is private, unavailable, or restricted.",
    ErrorKind.REQUEST_TOO_LARGE: "The requested content exceeds the allowed duration.",
}


@dataclass(frozen=True)
class Strategy:
    """One invocation shape for the tool.

    Attributes:
        name: Strategy name for logs and failure records
        args: Extra arguments this strategy adds
    """

    name: str
    args: tuple[str, ...] = ()


@dataclass
class StrategyOutcome(Generic[T]):
    """Output of the strategy that succeeded.

    Attributes:
        strategy: Name of the winning strategy
        value: Its output
        failures: Failures of the strategies tried before it
    """

    strategy: str
    value: T
    failures: list[FailureRecord] = field(default_factory=list)


class ExtractionStrategySelector:
    """Tries invocation strategies in order until one succeeds.

    Example:
        >>> selector = ExtractionStrategySelector()
        >>> outcome = await selector.attempt(url, strategies, run_strategy)
        >>> print(outcome.strategy, outcome.value)
    """

    def __init__(
        self,
        *,
        blocked_pause: float = 2.0,
        short_circuit: frozenset[ErrorKind] = SHORT_CIRCUIT_KINDS,
        messages: Mapping[ErrorKind, str] | None = None,
        fallback_message: str = "Extraction failed with every strategy. Please try again later.",
    ) -> None:
        """Initialize selector.

        Args:
            blocked_pause: Seconds to wait after a ``blocked`` failure
            short_circuit: Kinds that stop the run immediately
            messages: User-facing message per failure kind
            fallback_message: Message when no kind-specific one applies
        """
        self._blocked_pause = blocked_pause
        self._short_circuit = short_circuit
        self._messages = dict(DEFAULT_MESSAGES)
        if messages:
            self._messages.update(messages)
        self._fallback_message = fallback_message

    async def attempt(
        self,
        target: str,
        strategies: Sequence[Strategy],
        run: Callable[[Strategy, str], Awaitable[T]],
        *,
        discard: Callable[[Strategy], None] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> StrategyOutcome[T]:
        """Run strategies top to bottom, each exactly once.

        Args:
            target: What the tool is invoked on (e.g., a URL)
            strategies: Strategies in order
            run: Async call performing one strategy against the target
            discard: Removes partial output left by a failed strategy
            cancel_token: Deadline/cancellation for the whole run

        Returns:
            StrategyOutcome of the first strategy that succeeded

        Raises:
            NoCandidatesError: If no strategy is given
            ExtractionError: If every strategy failed, or one failed with a
                short-circuit kind
            OperationCancelledError: If the token fires
        """
        if not strategies:
            raise NoCandidatesError("No extraction strategies are configured")

        failures: list[FailureRecord] = []
        for index, strategy in enumerate(strategies):
            logger.info("Trying strategy", strategy=strategy.name)
            try:
                value = await guarded(run(strategy, target), cancel_token)
            except OperationCancelledError:
                if discard:
                    discard(strategy)
                raise
            except Exception as e:
                kind = classify_exception(e)
                message = getattr(e, "message", None) or str(e) or type(e).__name__
                failures.append(FailureRecord(provider_id=strategy.name, kind=kind, message=message))
                logger.warning("Strategy failed", strategy=strategy.name, kind=kind.value, error=message)
                if discard:
                    discard(strategy)

                if kind in self._short_circuit:
                    logger.warning("Failure cannot be fixed by another strategy", kind=kind.value)
                    raise self._aggregate(failures) from e
                if kind == ErrorKind.BLOCKED and index < len(strategies) - 1:
                    await pause(self._blocked_pause, cancel_token)
                continue

            if failures:
                logger.info("Strategy succeeded after fallback", strategy=strategy.name, failed=len(failures))
            else:
                logger.info("Strategy succeeded", strategy=strategy.name)
            return StrategyOutcome(strategy=strategy.name, value=value, failures=failures)

        logger.error("All strategies failed", strategies=[f.provider_id for f in failures])
        raise self._aggregate(failures)

    def _aggregate(self, failures: list[FailureRecord]) -> ExtractionError:
        best = most_informative(failures)
        kind = best.kind if best else ErrorKind.OTHER
        return ExtractionError(
            self._messages.get(kind, self._fallback_message),
            kind=kind,
            failures=failures,
        )
