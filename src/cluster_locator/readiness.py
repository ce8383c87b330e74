"""
Readiness Gate for the cluster locator.

One future per epoch, resolved the first time the readiness predicate holds.
"""

import asyncio
from typing import Optional

from .registry import EndpointRegistry


def priority_condition_holds(registry: EndpointRegistry, skip_priority_one_servers: bool) -> bool:
    """
    True when the verified set is trusted enough to pick from.

    Once a server has reported peers (or IP range routes), only servers
    confirmed through peer discovery (priority > 1) count.
    """
    if not skip_priority_one_servers:
        return True
    max_priority = registry.max_verified_priority()
    return max_priority is not None and max_priority > 1


def is_ready(registry: EndpointRegistry, skip_priority_one_servers: bool) -> bool:
    """Readiness predicate: something is verified and the priority condition holds."""
    return bool(registry.verified) and priority_condition_holds(
        registry, skip_priority_one_servers
    )


class ReadinessGate:
    """
    Single-resolution future for the current epoch.

    The future is created lazily so the gate can be constructed outside a
    running event loop.
    """

    def __init__(self) -> None:
        self._future: Optional[asyncio.Future] = None
        self._is_open = False
        self._epoch = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def future(self) -> asyncio.Future:
        """Future of the current epoch."""
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
            if self._is_open:
                self._future.set_result(None)
        return self._future

    def open(self) -> bool:
        """
        Resolve the gate for this epoch.

        Returns:
            True on the first call of an epoch, False afterwards
        """
        if self._is_open:
            return False
        self._is_open = True
        if self._future is not None and self._future.done():
            # A failed epoch that reaches readiness later gets a resolved future
            if not self._future.cancelled() and self._future.exception() is not None:
                self._future = None
        if self._future is not None and not self._future.done():
            self._future.set_result(None)
        return True

    def fail(self, error: BaseException) -> None:
        """Resolve the current epoch's future with an error."""
        future = self.future
        if not future.done():
            future.set_exception(error)
            # Mark retrieved; later awaits of the future still raise
            future.exception()

    def renew(self) -> None:
        """Start a new epoch with a fresh, unresolved future."""
        if self._future is not None and not self._future.done():
            # Waiters of the ended epoch are moved onto the new future
            old = self._future
            self._future = None
            new = self.future
            new.add_done_callback(lambda f: _propagate(f, old))
        else:
            self._future = None
        self._is_open = False
        self._epoch += 1


def _propagate(source: asyncio.Future, target: asyncio.Future) -> None:
    if target.done():
        return
    if source.cancelled():
        target.cancel()
    elif source.exception() is not None:
        target.set_exception(source.exception())
    else:
        target.set_result(None)
