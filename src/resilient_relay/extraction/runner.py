"""
Subprocess execution for CLI-backed providers.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import TYPE_CHECKING

from resilient_relay.errors import ErrorKind, ProviderError
from resilient_relay.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = get_logger("resilient_relay.extraction.runner")


@dataclass(frozen=True)
class CommandResult:
    """Captured result of one process run."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        """Whether the process exited with status 0."""
        return self.returncode == 0


class CommandRunner:
    """Runs a command as an argument list, never through a shell."""

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        """Initialize runner.

        Args:
            env: Environment for child processes (inherited if omitted)
        """
        self._env = dict(env) if env is not None else None

    async def run(self, args: Sequence[str], *, timeout: float) -> CommandResult:
        """Run a command to completion.

        Args:
            args: Program and arguments
            timeout: Seconds before the process is killed

        Returns:
            CommandResult with decoded output

        Raises:
            ProviderError: If the program is missing (kind ``other``) or
                the timeout elapses (kind ``timeout``)
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
            )
        except FileNotFoundError as e:
            raise ProviderError(
                f"Executable not found: {args[0]}",
                kind=ErrorKind.OTHER,
                provider_id=args[0],
                cause=e,
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError as e:
            await self._kill(process)
            logger.warning("Command timed out", program=args[0], timeout_seconds=timeout)
            raise ProviderError(
                f"{args[0]} timed out after {timeout:g}s",
                kind=ErrorKind.TIMEOUT,
                provider_id=args[0],
                cause=e,
            ) from e
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        return CommandResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
