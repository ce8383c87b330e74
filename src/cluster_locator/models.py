"""
Data models for the cluster locator.

This module defines the structures exchanged between the registry, the
verification engine, the notification hub and storage adapters.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from .enums import EndpointStatus, NotificationKind


# Stored server entry: (normalized url, 0 | 1)
StoredServer = tuple[str, int]


@dataclass
class Endpoint:
    """Snapshot of one known server."""

    url: str  # Normalized URL, the registry key
    priority: int
    status: EndpointStatus


@dataclass
class HostnamesResponse:
    """Parsed body of a network-map hostnames response."""

    cluster_identifier: str  # publicKey, falling back to swarmKey
    hostnames: list[str]
    ip_range_routes: bool = False


@dataclass
class VerificationTask:
    """A single in-flight hostnames handshake shared by all callers for a URL."""

    url: str
    priority: int  # Raised, never lowered, while pending
    epoch: int
    task: Optional["asyncio.Task[HostnamesResponse]"] = None


@dataclass
class Notification:
    """Event delivered to client subscribers."""

    kind: NotificationKind
    url: Optional[str] = None
    priority: Optional[int] = None
    data: dict = field(default_factory=dict)
