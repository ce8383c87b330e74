"""
Reset Controller for the cluster locator.

Orchestrates full-state recovery with quadratic backoff when the cluster
identity is violated or readiness cannot be reached. Each attempt waits
``min(attempt² × unit, max_backoff)`` seconds, or less if the current
readiness gate resolves first, then runs the client's reset procedure.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from .audit_logger import Logger
from .config import ResetConfig
from .exceptions import ResetExhausted
from .readiness import ReadinessGate


class ResetController:
    """
    Reentrancy-guarded, backoff-driven epoch reset.

    When ``max_attempts`` is set, the attempt after the last allowed one puts
    the controller in a final exhausted state: the current readiness future
    fails with ResetExhausted and no further resets run until restart().
    """

    COMPONENT = "ResetController"

    def __init__(
        self,
        config: ResetConfig,
        gate: ReadinessGate,
        perform: Callable[[], Awaitable[None]],
        is_ready: Callable[[], bool],
        logger: Optional[Logger] = None,
    ) -> None:
        """
        Initialize the reset controller.

        Args:
            config: Backoff and attempt limit settings
            gate: Readiness gate whose resolution cuts the backoff short
            perform: Coroutine function clearing state and re-verifying seeds
            is_ready: Returns the client's readiness after a reset
            logger: Optional logger
        """
        self._config = config
        self._gate = gate
        self._perform = perform
        self._is_ready = is_ready
        self._logger = logger
        self._is_resetting = False
        self._reset_count = 0
        self._exhausted = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_resetting(self) -> bool:
        return self._is_resetting

    @property
    def reset_count(self) -> int:
        return self._reset_count

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def compute_backoff(self, attempt: int) -> float:
        """
        Backoff before a reset attempt.

        Args:
            attempt: The attempt number (1-indexed)

        Returns:
            The delay in seconds
        """
        delay = (attempt * attempt) * self._config.backoff_unit_seconds
        return min(delay, self._config.max_backoff_seconds)

    def mark_ready(self) -> None:
        """Readiness reached: the next reset starts from the shortest backoff."""
        self._exhausted = False
        self._reset_count = 0

    def restart(self) -> None:
        """Leave the exhausted state and start counting attempts from zero."""
        self._exhausted = False
        self._reset_count = 0

    def schedule(self) -> Optional[asyncio.Task]:
        """Run reset() in the background. Returns None if a reset is already running."""
        if self._is_resetting or self._exhausted:
            return None
        task = asyncio.get_running_loop().create_task(self.reset())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def reset(self) -> None:
        if self._is_resetting or self._exhausted:
            return

        self._is_resetting = True
        self._reset_count += 1
        attempt = self._reset_count

        max_attempts = self._config.max_attempts
        if max_attempts is not None and attempt > max_attempts:
            self._is_resetting = False
            self._exhausted = True
            self._log_error(
                f"Giving up after {max_attempts} reset attempts",
                {"reset_count": attempt - 1},
            )
            self._gate.fail(
                ResetExhausted(
                    code="reset_exhausted",
                    message=f"Unable to reach a ready cluster after {max_attempts} reset attempts",
                    details={"max_attempts": max_attempts},
                )
            )
            return

        try:
            delay = self.compute_backoff(attempt)
            self._log_warn(
                f"Reset attempt {attempt}, waiting {delay:g} seconds",
                {"reset_count": attempt, "delay_seconds": delay},
            )
            await self._wait(delay)
            await self._perform()
        except asyncio.CancelledError:
            self._is_resetting = False
            raise
        except Exception as e:
            self._log_error(
                "Error during reset",
                {"error_type": type(e).__name__, "error_message": str(e)},
            )

        self._is_resetting = False

        if not self._is_ready():
            self.schedule()

    async def _wait(self, delay: float) -> None:
        """Sleep for ``delay`` seconds or until the readiness gate resolves."""
        ready = self._gate.future
        if ready.done():
            return
        sleeper = asyncio.ensure_future(asyncio.sleep(delay))
        try:
            await asyncio.wait({sleeper, ready}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()

    async def cancel_all(self) -> None:
        """Cancel background resets (used on client shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._is_resetting = False

    def _log_warn(self, message: str, data: dict) -> None:
        if self._logger is not None:
            self._logger.warn(self.COMPONENT, message, data)

    def _log_error(self, message: str, data: dict) -> None:
        if self._logger is not None:
            self._logger.error(self.COMPONENT, message, data)
