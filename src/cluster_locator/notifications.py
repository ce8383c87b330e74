"""
Notification hub for the cluster locator.

Delivers typed Notification objects (add_server, verified_server,
clear_server, ready) to registered listeners. A failing listener is logged
and never interrupts delivery to the others or the emitting operation.
"""

from typing import Callable, Optional, Protocol, runtime_checkable

from .audit_logger import Logger
from .enums import NotificationKind
from .models import Notification


@runtime_checkable
class NotificationListener(Protocol):
    """Protocol for objects receiving client notifications."""

    def __call__(self, notification: Notification) -> None:
        ...


class NotificationHub:
    """Ordered collection of listeners with synchronous fan-out delivery."""

    COMPONENT = "NotificationHub"

    def __init__(self, logger: Optional[Logger] = None) -> None:
        """
        Initialize the notification hub.

        Args:
            logger: Optional logger for listener failures
        """
        self._listeners: list[NotificationListener] = []
        self._logger = logger

    @property
    def listeners(self) -> list[NotificationListener]:
        """Get list of registered listeners."""
        return self._listeners.copy()

    def subscribe(self, listener: NotificationListener) -> Callable[[], bool]:
        """
        Register a listener.

        Returns:
            Callable that unsubscribes the listener
        """
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: NotificationListener) -> bool:
        """
        Remove a listener.

        Returns:
            True if the listener was registered
        """
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def emit(self, notification: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                if self._logger is not None:
                    self._logger.error(
                        self.COMPONENT,
                        f"Listener failed for {notification.kind.value} notification",
                        {"error_type": type(e).__name__, "error_message": str(e)},
                    )

    def add_server(self, url: str) -> None:
        self.emit(Notification(kind=NotificationKind.ADD_SERVER, url=url))

    def verified_server(self, url: str, priority: int) -> None:
        self.emit(Notification(kind=NotificationKind.VERIFIED_SERVER, url=url, priority=priority))

    def clear_server(self, url: str) -> None:
        self.emit(Notification(kind=NotificationKind.CLEAR_SERVER, url=url))

    def ready(self) -> None:
        self.emit(Notification(kind=NotificationKind.READY))
