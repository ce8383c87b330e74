"""
Consistency Guard: one cluster identifier per epoch.
"""

from typing import Optional

from .enums import VerificationErrorCode
from .exceptions import ClusterIntegrityViolation


class ConsistencyGuard:
    """Remembers the identifier of the first verified server and rejects any other."""

    def __init__(self) -> None:
        self._identifier: Optional[str] = None

    @property
    def identifier(self) -> Optional[str]:
        return self._identifier

    def check(self, url: str, identifier: str) -> None:
        """
        Accept an identifier reported by ``url``.

        The first identifier seen in an epoch is recorded; later ones must
        match it.

        Raises:
            ClusterIntegrityViolation: If the identifier differs from the recorded one
        """
        if self._identifier is None:
            self._identifier = identifier
            return

        if self._identifier != identifier:
            raise ClusterIntegrityViolation(
                code=VerificationErrorCode.IDENTIFIER_MISMATCH.value,
                message=f"Cluster identifier does not match for {url}",
                details={"url": url},
            )

    def forget(self) -> None:
        """Drop the recorded identifier at the start of a new epoch."""
        self._identifier = None
