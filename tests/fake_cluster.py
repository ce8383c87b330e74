"""
In-process cluster of fake servers for the hostnames handshake.

Routes httpx requests through httpx.MockTransport to per-host behaviour
registered with FakeCluster.add().
"""

import asyncio
import time
from io import StringIO
from typing import Callable, Optional

import httpx

from cluster_locator.audit_logger import AuditLogger
from cluster_locator.config import ClientConfig, PersistenceConfig, ResetConfig, VerificationConfig
from cluster_locator.enums import PriorityUpgradePolicy


class FakeCluster:
    """Host -> response table behind a mock transport."""

    def __init__(self) -> None:
        self.servers: dict[str, dict] = {}
        self.requests: list[str] = []
        self._holds: dict[str, asyncio.Event] = {}

    def add(
        self,
        host: str,
        identifier: Optional[str] = "cluster-key",
        hostnames: Optional[list] = None,
        ip_range_routes: bool = False,
        status_code: int = 200,
        raw_body: Optional[str] = None,
        identifier_field: str = "swarmKey",
    ) -> None:
        body = {"hostnames": list(hostnames or [])}
        if identifier is not None:
            body[identifier_field] = identifier
        if ip_range_routes:
            body["ipRangeRoutes"] = True
        self.servers[host] = {
            "status_code": status_code,
            "body": body,
            "raw_body": raw_body,
        }

    def hold(self, host: str) -> asyncio.Event:
        """Block responses from ``host`` until the returned event is set."""
        event = asyncio.Event()
        self._holds[host] = event
        return event

    def request_count(self, host: str) -> int:
        return self.requests.count(host)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.requests.append(host)

        event = self._holds.get(host)
        if event is not None:
            await event.wait()

        server = self.servers.get(host)
        if server is None:
            raise httpx.ConnectError(f"Unable to reach {host}", request=request)

        if server["raw_body"] is not None:
            return httpx.Response(server["status_code"], text=server["raw_body"])
        return httpx.Response(server["status_code"], json=server["body"])

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def quiet_logger(level: str = "debug") -> AuditLogger:
    return AuditLogger(output_format="json", output_stream=StringIO(), level=level)


def fast_config(
    max_attempts: Optional[int] = 3,
    upgrade_policy: PriorityUpgradePolicy = PriorityUpgradePolicy.TRUST_PRIOR_HANDSHAKE,
    timeout_seconds: float = 2.0,
    auto_verify: bool = True,
) -> ClientConfig:
    """Client configuration with millisecond backoff and save delay."""
    return ClientConfig(
        verification=VerificationConfig(
            timeout_seconds=timeout_seconds,
            upgrade_policy=upgrade_policy,
        ),
        reset=ResetConfig(
            backoff_unit_seconds=0.01,
            max_backoff_seconds=0.05,
            max_attempts=max_attempts,
        ),
        persistence=PersistenceConfig(save_delay_seconds=0.01),
        auto_verify=auto_verify,
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds; fail after ``timeout`` seconds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.005)


def run_async(coro):
    """Run a coroutine to completion in a fresh event loop."""
    return asyncio.run(coro)
