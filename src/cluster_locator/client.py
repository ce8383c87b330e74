"""
Cluster client for the cluster locator.

This module provides the main orchestration layer that coordinates all
components. It integrates:
- URL normalization of seeds, stored servers and peer hostnames
- The endpoint registry
- Deduplicated recursive verification with the consistency guard
- The readiness gate and the reset controller
- Server selection for request paths
- Coalesced persistence to any number of storage adapters
- Typed notifications for subscribers
"""

import asyncio
import random
from typing import Callable, Coroutine, Iterable, Optional

import httpx

from . import readiness
from .audit_logger import AuditLogger, Logger
from .config import ClientConfig
from .consistency import ConsistencyGuard
from .enums import VerificationOutcome
from .exceptions import UrlFormatError
from .models import Endpoint, StoredServer
from .network_map_client import NetworkMapClient
from .notifications import NotificationHub, NotificationListener
from .persistence import JsonFileStorage, PersistenceCoalescer, StorageAdapter, StorageAdapters
from .readiness import ReadinessGate
from .registry import EndpointRegistry
from .reset_controller import ResetController
from .selection import SelectionPolicy
from .url_normalizer import normalize_url
from .verification import VerificationEngine


class ClusterClient:
    """
    Discovers, verifies and selects servers of one cluster.

    Seeds are verified as soon as they are added (unless auto verification
    is disabled, in which case verify_servers() starts the process). The
    ``ready`` future resolves once per epoch when enough trusted servers are
    verified; get_url() then picks among the highest priority servers.
    """

    COMPONENT = "ClusterClient"

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        logger: Optional[Logger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
        network_client: Optional[NetworkMapClient] = None,
    ) -> None:
        """
        Initialize the cluster client.

        Args:
            config: Client configuration
            logger: Optional logger; an AuditLogger built from the logging
                    configuration is used when omitted
            transport: Optional httpx transport for the hostnames handshake
            rng: Optional random source for server selection
            network_client: Optional preconfigured network map client
        """
        self._config = config or ClientConfig()
        self._logger: Logger = logger or AuditLogger(
            output_format=self._config.logging.output_format,
            level=self._config.logging.level,
            max_entries=self._config.logging.max_entries,
        )

        verification_config = self._config.verification

        self._registry = EndpointRegistry()
        self._guard = ConsistencyGuard()
        self._notifications = NotificationHub(logger=self._logger)
        self._gate = ReadinessGate()
        self._adapters = StorageAdapters()
        self._selection = SelectionPolicy(rng=rng)

        self._network_client = network_client or NetworkMapClient(
            timeout=verification_config.timeout_seconds,
            hostnames_path=verification_config.hostnames_path,
            verify_tls=verification_config.verify_tls,
            transport=transport,
        )

        self._coalescer = PersistenceCoalescer(
            adapters=self._adapters,
            snapshot=lambda: self._registry.verified,
            delay_seconds=self._config.persistence.save_delay_seconds,
            logger=self._logger,
        )

        self._reset_controller = ResetController(
            config=self._config.reset,
            gate=self._gate,
            perform=self._reset_epoch,
            is_ready=lambda: self._gate.is_open,
            logger=self._logger,
        )

        self._engine = VerificationEngine(
            registry=self._registry,
            network_client=self._network_client,
            guard=self._guard,
            notifications=self._notifications,
            coalescer=self._coalescer,
            request_reset=self._reset_controller.schedule,
            check_ready=self._check_ready,
            config=verification_config,
            logger=self._logger,
        )

        self._paused = not self._config.auto_verify
        self._background: set[asyncio.Task] = set()
        self._closed = False

    @classmethod
    async def create(
        cls,
        seeds: Iterable[str] = (),
        storage: Iterable[StorageAdapter] = (),
        config: Optional[ClientConfig] = None,
        logger: Optional[Logger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
    ) -> "ClusterClient":
        """
        Build a client inside the running event loop.

        Storage adapters are registered first (a JsonFileStorage is added
        when the configuration names a state file), then the configured and
        given seeds are added.
        """
        client = cls(config=config, logger=logger, transport=transport, rng=rng)
        persistence = client._config.persistence
        if persistence.state_file_path is not None:
            client.add_storage_adapter(
                JsonFileStorage(
                    file_path=persistence.state_file_path,
                    hmac_secret=persistence.hmac_secret,
                    key=persistence.storage_key,
                )
            )
        for adapter in storage:
            client.add_storage_adapter(adapter)
        for seed in [*client._config.seeds, *seeds]:
            client.add_server(seed)
        return client

    async def __aenter__(self) -> "ClusterClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # Read-only state

    @property
    def ready(self) -> asyncio.Future:
        """Future of the current epoch, resolved once the client is usable."""
        return self._gate.future

    @property
    def is_ready(self) -> bool:
        return self._gate.is_open

    @property
    def seeds(self) -> list[str]:
        return self._registry.seeds

    @property
    def verified_servers(self) -> dict[str, int]:
        return self._registry.verified

    @property
    def pending_servers(self) -> dict[str, int]:
        return self._registry.pending

    @property
    def cluster_identifier(self) -> Optional[str]:
        return self._guard.identifier

    @property
    def skip_priority_one_servers(self) -> bool:
        return self._engine.skip_priority_one_servers

    @property
    def reset_count(self) -> int:
        return self._reset_controller.reset_count

    @property
    def is_resetting(self) -> bool:
        return self._reset_controller.is_resetting

    @property
    def exhausted(self) -> bool:
        return self._reset_controller.exhausted

    @property
    def handshake_count(self) -> int:
        return self._engine.handshake_count

    @property
    def registry(self) -> EndpointRegistry:
        return self._registry

    @property
    def logger(self) -> Logger:
        return self._logger

    def endpoints(self) -> list[Endpoint]:
        return self._registry.endpoints()

    def subscribe(self, listener: NotificationListener) -> Callable[[], bool]:
        """Register a notification listener; returns an unsubscribe callable."""
        return self._notifications.subscribe(listener)

    # Servers

    def add_server(self, raw_url: str) -> str:
        """
        Add a seed server.

        The address is normalized and, unless it is already a seed or was
        loaded from storage, verified at priority 0 in the background.

        Returns:
            The normalized URL

        Raises:
            UrlFormatError: If the address cannot be normalized
        """
        url = normalize_url(raw_url)
        self._notifications.add_server(url)

        if self._registry.is_seed(url) or self._registry.is_persisted(url):
            return url

        self._registry.add_seed(url)

        if not self._paused:
            self._spawn(self._verify_seed(url))

        return url

    async def verify(self, raw_url: str, priority: int = 0) -> VerificationOutcome:
        """Verify a server at the given priority (see VerificationEngine.verify)."""
        return await self._engine.verify(normalize_url(raw_url), priority)

    def get_url(self, path: str) -> str:
        """
        Resolve ``path`` against the best available server.

        Raises:
            NoServersAvailable: If no server can currently be used
        """
        return self._selection.get_url(
            path, self._registry, self._engine.skip_priority_one_servers
        )

    async def verify_servers(self) -> None:
        """Resume verification of seeds and stored servers and wait until ready."""
        self._paused = False
        for url in self._registry.seeds:
            self._spawn(self._verify_seed(url))
        await self.load_stored_servers()
        await self.ready

    async def reverify_servers(self) -> None:
        """Start a new epoch explicitly and wait until ready again."""
        self._reset_controller.restart()
        await self._end_epoch()
        await self.verify_servers()

    # Storage

    def add_storage_adapter(self, adapter: StorageAdapter) -> None:
        """Register a storage adapter and verify the servers it holds."""
        self._adapters.add(adapter)
        if not self._paused:
            self._spawn(self._load_adapter(adapter))

    async def load_stored_servers(self) -> None:
        for adapter in self._adapters:
            await self._load_adapter(adapter)

    async def save_verified_servers(self) -> None:
        """Write the verified servers to every adapter now."""
        await self._coalescer.flush()

    async def _load_adapter(self, adapter: StorageAdapter) -> None:
        try:
            servers = await self._adapters.load(adapter)
        except Exception as e:
            self._logger.error(
                self.COMPONENT,
                "Unable to load stored servers",
                {"error_type": type(e).__name__, "error_message": str(e)},
            )
            try:
                await self._adapters.clear_all()
            except Exception as clear_error:
                self._logger.error(
                    self.COMPONENT,
                    "Unable to clear stored servers",
                    {"error_type": type(clear_error).__name__, "error_message": str(clear_error)},
                )
            return

        await self._verify_stored_servers(servers)

    async def _verify_stored_servers(self, servers: list[StoredServer]) -> None:
        if not servers:
            return

        entries = []
        for raw_url, priority in servers:
            try:
                url = normalize_url(raw_url)
            except UrlFormatError as e:
                self._logger.warn(
                    self.COMPONENT,
                    f"Ignoring invalid stored server {raw_url!r}",
                    {"error_message": e.message},
                )
                continue
            self._registry.add_persisted(url)
            entries.append((url, priority))

        # Random order within a priority, highest priority first
        random.shuffle(entries)
        entries.sort(key=lambda entry: entry[1], reverse=True)

        self._logger.info(
            self.COMPONENT,
            "Stored server addresses",
            {"servers": [{"url": url, "priority": priority} for url, priority in entries]},
        )

        for url, priority in entries:
            try:
                await self._engine.verify(url, priority)
            except Exception as e:
                self._logger.error(
                    self.COMPONENT,
                    f"Unable to verify stored server {url} (priority {priority})",
                    {"url": url, "error_type": type(e).__name__, "error_message": str(e)},
                )

        self._reset_if_stalled()

    # Epochs

    async def _verify_seed(self, url: str, reset_if_stalled: bool = True) -> None:
        try:
            await self._engine.verify(url, 0)
        except Exception as e:
            self._logger.error(
                self.COMPONENT,
                f"Unable to verify seed server {url}",
                {"url": url, "error_type": type(e).__name__, "error_message": str(e)},
            )
            if reset_if_stalled:
                self._reset_if_stalled()

    def _reset_if_stalled(self) -> None:
        """Every verification failed and nothing is in flight: start over."""
        if not self._engine.in_flight and not self._gate.is_open and not self._closed:
            self._reset_controller.schedule()

    def _check_ready(self) -> None:
        if not readiness.is_ready(self._registry, self._engine.skip_priority_one_servers):
            return
        self._reset_controller.mark_ready()
        if self._gate.open():
            self._logger.info(
                self.COMPONENT,
                "Cluster ready",
                {"verified": self._registry.verified},
            )
            if len(self._adapters) == 0:
                self._logger.warn(
                    self.COMPONENT,
                    "No storage adapters registered, verified servers will not be stored",
                )
            self._notifications.ready()

    async def _end_epoch(self) -> None:
        self._logger.warn(self.COMPONENT, "Re-verifying servers")
        self._coalescer.cancel()
        await self._engine.end_epoch()
        cleared = list(self._registry.verified)
        self._registry.clear_all()
        for url in cleared:
            self._notifications.clear_server(url)
        self._gate.renew()

    async def _reset_epoch(self) -> None:
        try:
            await self._adapters.clear_all()
        except Exception as e:
            self._logger.error(
                self.COMPONENT,
                "Unable to clear stored servers",
                {"error_type": type(e).__name__, "error_message": str(e)},
            )
        await self._end_epoch()
        seeds = self._registry.seeds
        if seeds:
            await asyncio.gather(
                *(self._verify_seed(url, reset_if_stalled=False) for url in seeds)
            )

    # Lifecycle

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until no background verification or load is running."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        """Flush pending saves, cancel background work and close the HTTP client."""
        if self._closed:
            return
        self._closed = True
        await self._coalescer.flush_pending()
        await self._reset_controller.cancel_all()
        background = list(self._background)
        for task in background:
            task.cancel()
        if background:
            await asyncio.gather(*background, return_exceptions=True)
        await self._engine.end_epoch()
        self._coalescer.cancel()
        await self._network_client.close()
