"""
Stored server persistence for the cluster locator.

This module provides the StorageAdapter contract, two bundled adapters
(a JSON string under a well-known key in any mutable mapping, and an
optionally HMAC-protected JSON file), the ordered adapter collection the
client talks to, and the coalescer that batches "save verified servers"
requests behind a delay window.
"""

import asyncio
import hashlib
import hmac
import inspect
import json
from collections.abc import MutableMapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Optional, Protocol, Union, runtime_checkable

from .audit_logger import Logger
from .config import STORAGE_KEY
from .exceptions import PersistenceError, TamperingError
from .models import StoredServer


@runtime_checkable
class StorageAdapter(Protocol):
    """
    Durable storage for the stored server list.

    Each method may be a plain function or a coroutine function.
    """

    def get_stored_servers(self) -> Union[list, Awaitable[list]]:
        ...

    def save_stored_servers(self, servers: list[StoredServer]) -> Union[None, Awaitable[None]]:
        ...

    def clear_stored_servers(self) -> Union[None, Awaitable[None]]:
        ...


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


def binarize(verified: dict[str, int]) -> list[StoredServer]:
    """Stored payload: priority 0 stays 0, anything higher is stored as 1."""
    return [(url, 0 if priority == 0 else 1) for url, priority in verified.items()]


def validate_stored_servers(raw: Any) -> list[StoredServer]:
    """
    Check the shape of a stored server list.

    Raises:
        PersistenceError: If the list is not made of [url, priority] pairs
    """
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise PersistenceError(
            code="invalid_format",
            message="Stored servers must be a list of [url, priority] pairs",
            details={"type": type(raw).__name__},
        )
    servers = []
    for item in raw:
        if (
            not isinstance(item, (list, tuple))
            or len(item) != 2
            or not isinstance(item[0], str)
            or isinstance(item[1], bool)
            or not isinstance(item[1], int)
            or item[1] < 0
        ):
            raise PersistenceError(
                code="invalid_format",
                message="Stored servers must be a list of [url, priority] pairs",
                details={"item": repr(item)},
            )
        servers.append((item[0], item[1]))
    return servers


class MappingStorage:
    """
    Stores the server list as JSON text under one key of a string mapping.

    With no mapping given an in-process dict is used.
    """

    def __init__(
        self,
        mapping: Optional[MutableMapping] = None,
        key: str = STORAGE_KEY,
    ) -> None:
        self._mapping = mapping if mapping is not None else {}
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def get_stored_servers(self) -> list[StoredServer]:
        text = self._mapping.get(self._key)
        if not isinstance(text, str):
            return []
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse stored servers: {e}",
                details={"key": self._key},
            )
        return validate_stored_servers(raw)

    def save_stored_servers(self, servers: list[StoredServer]) -> None:
        self._mapping[self._key] = json.dumps([[url, priority] for url, priority in servers])

    def clear_stored_servers(self) -> None:
        self._mapping.pop(self._key, None)


class JsonFileStorage:
    """
    Stores the server list in a versioned JSON document on disk.

    Document layout::

        {"version": 1, "updated_at": "...", "data": {KEY: [[url, 0|1], ...]}, "hmac": "..."}

    When an HMAC secret is configured the HMAC-SHA256 over ``data`` is
    written on save and checked on load.
    """

    VERSION = 1

    def __init__(
        self,
        file_path: Path,
        hmac_secret: Optional[str] = None,
        key: str = STORAGE_KEY,
    ) -> None:
        """
        Initialize the file storage.

        Args:
            file_path: Path to the JSON document
            hmac_secret: Optional secret for HMAC protection
            key: Key the server list is stored under
        """
        self._file_path = Path(file_path)
        self._hmac_secret = hmac_secret.encode("utf-8") if hmac_secret else None
        self._key = key

    @property
    def file_path(self) -> Path:
        return self._file_path

    def get_stored_servers(self) -> list[StoredServer]:
        """
        Load the stored server list.

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If the file cannot be read or parsed
        """
        if not self._file_path.exists():
            return []

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse stored servers file: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read stored servers file: {e}",
                details={"file_path": str(self._file_path)},
            )

        if not isinstance(document, dict):
            raise PersistenceError(
                code="invalid_format",
                message="Stored servers file must hold a JSON object",
                details={"file_path": str(self._file_path)},
            )

        data = document.get("data", {})
        if self._hmac_secret is not None:
            stored_hmac = document.get("hmac", "")
            if not isinstance(stored_hmac, str) or not hmac.compare_digest(
                stored_hmac, self.compute_hmac(data)
            ):
                raise TamperingError(
                    code="hmac_mismatch",
                    message="HMAC validation failed - stored servers may have been tampered with",
                    details={"file_path": str(self._file_path)},
                )

        if not isinstance(data, dict):
            raise PersistenceError(
                code="invalid_format",
                message="Stored servers data must be a JSON object",
                details={"file_path": str(self._file_path)},
            )

        return validate_stored_servers(data.get(self._key))

    def save_stored_servers(self, servers: list[StoredServer]) -> None:
        """
        Write the stored server list.

        Raises:
            PersistenceError: If the file cannot be written
        """
        data = {self._key: [[url, priority] for url, priority in servers]}
        document = {
            "version": self.VERSION,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "data": data,
            "hmac": self.compute_hmac(data) if self._hmac_secret is not None else "",
        }
        self._write(document)

    def clear_stored_servers(self) -> None:
        try:
            self._file_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to remove stored servers file: {e}",
                details={"file_path": str(self._file_path)},
            )

    def compute_hmac(self, data: Any) -> str:
        """
        Compute HMAC-SHA256 over serialized data.

        Args:
            data: JSON compatible value

        Returns:
            Hexadecimal HMAC string
        """
        if self._hmac_secret is None:
            return ""
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _write(self, document: dict) -> None:
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._file_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, sort_keys=True)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write stored servers file: {e}",
                details={"file_path": str(self._file_path)},
            )


class StorageAdapters:
    """Ordered collection of storage adapters; every save and clear reaches all of them."""

    def __init__(self) -> None:
        self._adapters: list[StorageAdapter] = []

    def __iter__(self) -> Iterator[StorageAdapter]:
        return iter(list(self._adapters))

    def __len__(self) -> int:
        return len(self._adapters)

    def add(self, adapter: StorageAdapter) -> None:
        self._adapters.append(adapter)

    async def load(self, adapter: StorageAdapter) -> list[StoredServer]:
        """Read and validate one adapter's stored servers."""
        return validate_stored_servers(await maybe_await(adapter.get_stored_servers()))

    async def save_all(self, servers: list[StoredServer]) -> None:
        for adapter in list(self._adapters):
            await maybe_await(adapter.save_stored_servers(list(servers)))

    async def clear_all(self) -> None:
        for adapter in list(self._adapters):
            await maybe_await(adapter.clear_stored_servers())


class PersistenceCoalescer:
    """
    Debounced "save verified servers" trigger.

    Every schedule() call restarts the delay window; when the window elapses
    without a new trigger the verified set is saved once to all adapters.
    """

    COMPONENT = "PersistenceCoalescer"

    def __init__(
        self,
        adapters: StorageAdapters,
        snapshot: Callable[[], dict[str, int]],
        delay_seconds: float = 1.0,
        logger: Optional[Logger] = None,
    ) -> None:
        """
        Initialize the coalescer.

        Args:
            adapters: Storage adapters receiving each flush
            snapshot: Returns the verified url -> priority mapping at flush time
            delay_seconds: Delay window
            logger: Optional logger for save failures
        """
        self._adapters = adapters
        self._snapshot = snapshot
        self._delay_seconds = delay_seconds
        self._logger = logger
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flushes: set[asyncio.Task] = set()
        self.flush_count = 0

    @property
    def is_scheduled(self) -> bool:
        return self._timer is not None

    def schedule(self) -> None:
        """Request a save; calls within the delay window collapse into one."""
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self._delay_seconds, self._on_timer)

    def cancel(self) -> None:
        """Drop a scheduled save without writing."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.flush())
        self._flushes.add(task)
        task.add_done_callback(self._flushes.discard)

    async def flush(self) -> None:
        """Save the binarized verified set to every adapter now."""
        self.cancel()
        servers = binarize(self._snapshot())
        self.flush_count += 1
        try:
            await self._adapters.save_all(servers)
        except Exception as e:
            if self._logger is not None:
                self._logger.error(
                    self.COMPONENT,
                    "Unable to save verified servers",
                    {"error_type": type(e).__name__, "error_message": str(e)},
                )

    async def flush_pending(self) -> None:
        """Flush now if a save is scheduled, and wait for running flushes."""
        if self._timer is not None:
            await self.flush()
        if self._flushes:
            await asyncio.gather(*list(self._flushes), return_exceptions=True)
