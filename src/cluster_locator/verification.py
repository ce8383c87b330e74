"""
Verification Engine for the cluster locator.

Runs the hostnames handshake against candidate servers, checks the reported
cluster identifier, promotes servers to verified, and recursively verifies
every peer hostname a verified server reports.

Concurrent verify() calls for the same URL share one handshake: the pending
record is created before the first await, so later callers always find it
and attach to the running task.
"""

import asyncio
from typing import Callable, Optional

from .audit_logger import Logger
from .config import VerificationConfig
from .consistency import ConsistencyGuard
from .enums import PriorityUpgradePolicy, VerificationErrorCode, VerificationOutcome
from .exceptions import ClusterIntegrityViolation, UrlFormatError, VerificationFailed
from .models import HostnamesResponse, VerificationTask
from .network_map_client import NetworkMapClient
from .notifications import NotificationHub
from .persistence import PersistenceCoalescer
from .registry import EndpointRegistry
from .url_normalizer import normalize_url, origin_of


# Priority given to servers confirmed through a peer's hostnames list
PEER_PRIORITY = 2

# Malformed responses end the epoch; plain network failures do not
RESET_ERROR_CODES = frozenset({
    VerificationErrorCode.MISSING_IDENTIFIER.value,
    VerificationErrorCode.INVALID_HOSTNAMES.value,
})


class VerificationEngine:
    """
    Deduplicated, recursive server verification.

    The engine owns the epoch scoped ``skip_priority_one_servers`` flag, set
    once any verified server reports peers or IP range routes.
    """

    COMPONENT = "VerificationEngine"

    def __init__(
        self,
        registry: EndpointRegistry,
        network_client: NetworkMapClient,
        guard: ConsistencyGuard,
        notifications: NotificationHub,
        coalescer: PersistenceCoalescer,
        request_reset: Callable[[], object],
        check_ready: Callable[[], object],
        config: Optional[VerificationConfig] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        """
        Initialize the verification engine.

        Args:
            registry: Endpoint registry updated by verifications
            network_client: Client performing the hostnames handshake
            guard: Consistency guard for the cluster identifier
            notifications: Hub receiving verified_server / clear_server events
            coalescer: Persistence coalescer scheduled after changes
            request_reset: Schedules a background reset
            check_ready: Re-evaluates the readiness gate
            config: Handshake settings
            logger: Optional logger
        """
        self._registry = registry
        self._network_client = network_client
        self._guard = guard
        self._notifications = notifications
        self._coalescer = coalescer
        self._request_reset = request_reset
        self._check_ready = check_ready
        self._config = config or VerificationConfig()
        self._logger = logger
        self._tasks: dict[str, VerificationTask] = {}
        self._epoch = 0
        self.skip_priority_one_servers = False
        self.handshake_count = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def in_flight(self) -> dict[str, int]:
        """URL -> target priority of every running handshake."""
        return {url: record.priority for url, record in self._tasks.items()}

    async def verify(self, url: str, priority: int) -> VerificationOutcome:
        """
        Verify ``url`` at ``priority``.

        Args:
            url: Normalized server URL
            priority: Requested priority

        Returns:
            How the request was satisfied

        Raises:
            VerificationFailed: If the handshake fails (ClusterIntegrityViolation
                when the server belongs to another cluster)
        """
        verified_priority = self._registry.verified_priority(url)
        if verified_priority is not None:
            if verified_priority >= priority:
                return VerificationOutcome.ALREADY_SATISFIED
            if self._config.upgrade_policy is PriorityUpgradePolicy.TRUST_PRIOR_HANDSHAKE:
                self._upgrade_verified(url, priority)
                self._check_ready()
                self._coalescer.schedule()
                return VerificationOutcome.UPGRADED
            self._log_info(f"Re-verifying {url} for priority {priority}", {"url": url})
        else:
            max_priority = self._registry.max_verified_priority()
            if max_priority is not None and max_priority > priority:
                self._log_info(
                    f"Not verifying {url}, verified server with priority {max_priority} already exists",
                    {"url": url, "priority": priority},
                )
                return VerificationOutcome.SKIPPED

            record = self._tasks.get(url)
            if record is not None:
                if priority > record.priority:
                    record.priority = priority
                    self._registry.upgrade_pending_priority(url, priority)
                self._log_info(f"Not verifying {url}, verification in progress", {"url": url})
                await self._await_shared(record)
                return VerificationOutcome.JOINED

        epoch = self._epoch
        record = self._start(url, priority)
        response = await self._await_shared(record)

        if epoch == self._epoch:
            await self._fan_out(url, response, epoch)
            self._check_ready()
            self._coalescer.schedule()

        return VerificationOutcome.VERIFIED

    def _start(self, url: str, priority: int) -> VerificationTask:
        record = VerificationTask(url=url, priority=priority, epoch=self._epoch)
        self._registry.mark_pending(url, priority)
        self._tasks[url] = record
        record.task = asyncio.get_running_loop().create_task(self._handshake(record, priority))
        return record

    async def _await_shared(self, record: VerificationTask) -> HostnamesResponse:
        task = record.task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task is not None and task.cancelled():
                raise VerificationFailed(
                    code=VerificationErrorCode.CANCELLED.value,
                    message=f"Verification of {record.url} was cancelled",
                    details={"url": record.url},
                )
            raise

    async def _handshake(self, record: VerificationTask, requested_priority: int) -> HostnamesResponse:
        url = record.url
        self._log_info(f"Verifying {url}", {"url": url, "priority": requested_priority})
        self.handshake_count += 1
        try:
            try:
                response = await asyncio.wait_for(
                    self._network_client.fetch_hostnames(url),
                    timeout=self._config.timeout_seconds,
                )
            except asyncio.TimeoutError:
                self._clear(url)
                raise VerificationFailed(
                    code=VerificationErrorCode.TIMEOUT.value,
                    message=f"Hostnames request to {url} timed out",
                    details={"url": url, "timeout_seconds": self._config.timeout_seconds},
                )
            except VerificationFailed as e:
                self._clear(url)
                if e.code in RESET_ERROR_CODES:
                    self._request_reset()
                raise
            except asyncio.CancelledError:
                if record.epoch == self._epoch:
                    self._registry.clear(url)
                raise
            except Exception as e:
                self._clear(url)
                raise VerificationFailed(
                    code=VerificationErrorCode.NETWORK_ERROR.value,
                    message=f"Unable to fetch hostnames from {url}: {e}",
                    details={"url": url, "error_type": type(e).__name__},
                ) from e

            if record.epoch != self._epoch:
                raise VerificationFailed(
                    code=VerificationErrorCode.CANCELLED.value,
                    message=f"Verification of {url} outlived its epoch",
                    details={"url": url},
                )

            try:
                self._guard.check(url, response.cluster_identifier)
            except ClusterIntegrityViolation:
                self._clear(url)
                self._request_reset()
                raise

            priority = max(record.priority, requested_priority)
            self._registry.mark_verified(url, priority)
            self._notifications.verified_server(url, priority)

            if response.ip_range_routes or response.hostnames:
                self.skip_priority_one_servers = True

            self._check_ready()
            return response
        finally:
            if self._tasks.get(url) is record:
                del self._tasks[url]

    async def _fan_out(self, url: str, response: HostnamesResponse, epoch: int) -> None:
        own_origin = origin_of(url)
        verifications = []
        for hostname in response.hostnames:
            try:
                peer = normalize_url(f"https://{hostname}")
            except UrlFormatError as e:
                self._log_warn(
                    f"Ignoring invalid hostname {hostname!r} from {url}",
                    {"url": url, "error_message": e.message},
                )
                continue
            if origin_of(peer) == own_origin:
                self._upgrade_verified(url, PEER_PRIORITY)
            else:
                verifications.append(self._verify_peer(url, peer, epoch))
        if verifications:
            await asyncio.gather(*verifications)

    async def _verify_peer(self, origin: str, peer: str, epoch: int) -> None:
        if epoch != self._epoch:
            return
        try:
            await self.verify(peer, PEER_PRIORITY)
        except Exception as e:
            if self._logger is not None:
                self._logger.error(
                    self.COMPONENT,
                    f"Unable to verify {peer} from hostnames in {origin}",
                    {
                        "url": peer,
                        "origin": origin,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                )

    def _upgrade_verified(self, url: str, priority: int) -> None:
        if self._registry.upgrade_verified_priority(url, priority):
            self._notifications.verified_server(url, priority)

    def _clear(self, url: str) -> None:
        self._registry.clear(url)
        self._notifications.clear_server(url)

    async def end_epoch(self) -> None:
        """
        Cancel every running handshake and start a new epoch.

        Clears the cluster identifier and the skip flag; the registry is
        cleared by the caller.
        """
        self._epoch += 1
        records = list(self._tasks.values())
        self._tasks.clear()
        tasks = [record.task for record in records if record.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._guard.forget()
        self.skip_priority_one_servers = False

    def _log_info(self, message: str, data: dict) -> None:
        if self._logger is not None:
            self._logger.info(self.COMPONENT, message, data)

    def _log_warn(self, message: str, data: dict) -> None:
        if self._logger is not None:
            self._logger.warn(self.COMPONENT, message, data)
