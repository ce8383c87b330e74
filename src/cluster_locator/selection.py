"""
Selection Policy for the cluster locator.

Chooses the server that should answer a request for a given path.
"""

import random
from typing import Optional
from urllib.parse import urljoin

from .exceptions import NoServersAvailable
from .readiness import priority_condition_holds
from .registry import EndpointRegistry


class SelectionPolicy:
    """
    Picks a server URL for a path.

    Order of preference:
    1. A random server among the verified servers sharing the highest
       priority, provided the readiness priority condition holds
    2. A random seed, unless only peer-confirmed servers may be used
    3. Nothing: NoServersAvailable
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        """
        Initialize the selection policy.

        Args:
            rng: Random source, injectable for deterministic selection
        """
        self._rng = rng or random.Random()

    def choose_server(self, registry: EndpointRegistry, skip_priority_one_servers: bool) -> str:
        """
        Choose a server URL.

        Raises:
            NoServersAvailable: If neither a usable verified server nor a seed exists
        """
        verified = registry.verified
        if verified and priority_condition_holds(registry, skip_priority_one_servers):
            max_priority = max(verified.values())
            candidates = [url for url, priority in verified.items() if priority == max_priority]
            return self._rng.choice(candidates)

        if not skip_priority_one_servers:
            seeds = registry.seeds
            if seeds:
                return self._rng.choice(seeds)

        raise NoServersAvailable(
            code="no_servers",
            message="No server URLs available",
            details={
                "verified": len(verified),
                "seeds": len(registry.seeds),
                "skip_priority_one_servers": skip_priority_one_servers,
            },
        )

    def get_url(self, path: str, registry: EndpointRegistry, skip_priority_one_servers: bool) -> str:
        """Resolve ``path`` against the chosen server."""
        return urljoin(self.choose_server(registry, skip_priority_one_servers), path)
