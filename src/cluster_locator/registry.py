"""
Endpoint Registry for the cluster locator.

Holds the classification of every known server URL: caller supplied seeds,
in-flight (pending) verifications, verified cluster members, and URLs loaded
from storage. All mutations are synchronous and free of I/O.
"""

from typing import Optional

from .enums import EndpointStatus
from .models import Endpoint


class EndpointRegistry:
    """
    In-memory bookkeeping of seed, pending, verified and persisted servers.

    A URL is never pending and verified at the same time, and a verified
    priority is only ever raised through the upgrade methods.
    """

    def __init__(self) -> None:
        self._seeds: dict[str, None] = {}  # Ordered set
        self._pending: dict[str, int] = {}
        self._verified: dict[str, int] = {}
        self._persisted: set[str] = set()

    # Mutations

    def add_seed(self, url: str) -> bool:
        """Register a seed URL. Returns False if it was already a seed."""
        if url in self._seeds:
            return False
        self._seeds[url] = None
        return True

    def add_persisted(self, url: str) -> None:
        """Remember that a URL was loaded from storage."""
        self._persisted.add(url)

    def mark_pending(self, url: str, priority: int) -> None:
        """Record an in-flight verification for a URL."""
        self._verified.pop(url, None)
        self._pending[url] = priority

    def mark_verified(self, url: str, priority: int) -> None:
        """Promote a URL to verified, dropping its pending record."""
        self._pending.pop(url, None)
        self._verified[url] = priority

    def clear(self, url: str) -> bool:
        """
        Remove a URL from both pending and verified.

        Returns:
            True if the URL had a verified record
        """
        self._pending.pop(url, None)
        return self._verified.pop(url, None) is not None

    def clear_all(self) -> None:
        """Drop every pending and verified record, keeping seeds."""
        self._pending.clear()
        self._verified.clear()

    def upgrade_pending_priority(self, url: str, priority: int) -> bool:
        """Raise the target priority of a pending URL. Returns True if raised."""
        current = self._pending.get(url)
        if current is None or current >= priority:
            return False
        self._pending[url] = priority
        return True

    def upgrade_verified_priority(self, url: str, priority: int) -> bool:
        """Raise the priority of a verified URL. Returns True if raised."""
        current = self._verified.get(url)
        if current is None or current >= priority:
            return False
        self._verified[url] = priority
        return True

    # Queries

    def is_seed(self, url: str) -> bool:
        return url in self._seeds

    def is_persisted(self, url: str) -> bool:
        return url in self._persisted

    def is_pending(self, url: str) -> bool:
        return url in self._pending

    def is_verified(self, url: str) -> bool:
        return url in self._verified

    def pending_priority(self, url: str) -> Optional[int]:
        return self._pending.get(url)

    def verified_priority(self, url: str) -> Optional[int]:
        return self._verified.get(url)

    def max_verified_priority(self) -> Optional[int]:
        """Highest verified priority, or None when nothing is verified."""
        if not self._verified:
            return None
        return max(self._verified.values())

    def status_of(self, url: str) -> EndpointStatus:
        if url in self._pending:
            return EndpointStatus.PENDING
        if url in self._verified:
            return EndpointStatus.VERIFIED
        if url in self._seeds:
            return EndpointStatus.SEED
        return EndpointStatus.CLEARED

    @property
    def seeds(self) -> list[str]:
        return list(self._seeds)

    @property
    def pending(self) -> dict[str, int]:
        return dict(self._pending)

    @property
    def verified(self) -> dict[str, int]:
        return dict(self._verified)

    @property
    def persisted(self) -> frozenset[str]:
        return frozenset(self._persisted)

    def endpoints(self) -> list[Endpoint]:
        """Snapshot of every known URL with its current status."""
        urls = list(self._seeds)
        urls.extend(url for url in self._pending if url not in self._seeds)
        urls.extend(
            url for url in self._verified
            if url not in self._seeds and url not in self._pending
        )
        result = []
        for url in urls:
            status = self.status_of(url)
            if status is EndpointStatus.PENDING:
                priority = self._pending[url]
            elif status is EndpointStatus.VERIFIED:
                priority = self._verified[url]
            else:
                priority = 0
            result.append(Endpoint(url=url, priority=priority, status=status))
        return result
