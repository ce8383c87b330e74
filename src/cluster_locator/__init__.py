"""
Cluster Locator - Discovery and verification of cluster servers.

This package provides a client that verifies candidate servers through the
hostnames handshake, discovers their peers recursively, keeps the cluster
identity consistent, and picks the highest priority server for requests.
"""

__version__ = "0.1.0"
__author__ = "Cluster Locator Team"

from cluster_locator.exceptions import (
    ClusterLocatorError,
    UrlFormatError,
    NoServersAvailable,
    VerificationFailed,
    ClusterIntegrityViolation,
    ResetExhausted,
    PersistenceError,
    TamperingError,
)
from cluster_locator.enums import (
    EndpointStatus,
    VerificationOutcome,
    VerificationErrorCode,
    PriorityUpgradePolicy,
    NotificationKind,
    LogLevel,
)
from cluster_locator.url_normalizer import (
    normalize_url,
    origin_of,
)
from cluster_locator.config import (
    VerificationConfig,
    ResetConfig,
    PersistenceConfig,
    LoggingConfig,
    ClientConfig,
    parse_seeds,
    seeds_from_environment,
    config_from_dict,
    config_to_dict,
    load_config_from_file,
    save_config_to_file,
)
from cluster_locator.models import (
    StoredServer,
    Endpoint,
    HostnamesResponse,
    Notification,
)
from cluster_locator.audit_logger import (
    AuditLogger,
    LogEntry,
    Logger,
)
from cluster_locator.registry import (
    EndpointRegistry,
)
from cluster_locator.network_map_client import (
    NetworkMapClient,
    parse_hostnames_body,
)
from cluster_locator.consistency import (
    ConsistencyGuard,
)
from cluster_locator.readiness import (
    ReadinessGate,
    is_ready,
)
from cluster_locator.selection import (
    SelectionPolicy,
)
from cluster_locator.notifications import (
    NotificationHub,
    NotificationListener,
)
from cluster_locator.persistence import (
    StorageAdapter,
    MappingStorage,
    JsonFileStorage,
    StorageAdapters,
    PersistenceCoalescer,
)
from cluster_locator.reset_controller import (
    ResetController,
)
from cluster_locator.verification import (
    VerificationEngine,
)
from cluster_locator.client import (
    ClusterClient,
)
from cluster_locator.cli import (
    main as cli_main,
    create_parser,
)

__all__ = [
    # Exceptions
    "ClusterLocatorError",
    "UrlFormatError",
    "NoServersAvailable",
    "VerificationFailed",
    "ClusterIntegrityViolation",
    "ResetExhausted",
    "PersistenceError",
    "TamperingError",
    # Enums
    "EndpointStatus",
    "VerificationOutcome",
    "VerificationErrorCode",
    "PriorityUpgradePolicy",
    "NotificationKind",
    "LogLevel",
    # URL Normalizer
    "normalize_url",
    "origin_of",
    # Configuration
    "VerificationConfig",
    "ResetConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "ClientConfig",
    "parse_seeds",
    "seeds_from_environment",
    "config_from_dict",
    "config_to_dict",
    "load_config_from_file",
    "save_config_to_file",
    # Models
    "StoredServer",
    "Endpoint",
    "HostnamesResponse",
    "Notification",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    "Logger",
    # Registry
    "EndpointRegistry",
    # Network Map Client
    "NetworkMapClient",
    "parse_hostnames_body",
    # Consistency
    "ConsistencyGuard",
    # Readiness
    "ReadinessGate",
    "is_ready",
    # Selection
    "SelectionPolicy",
    # Notifications
    "NotificationHub",
    "NotificationListener",
    # Persistence
    "StorageAdapter",
    "MappingStorage",
    "JsonFileStorage",
    "StorageAdapters",
    "PersistenceCoalescer",
    # Reset Controller
    "ResetController",
    # Verification
    "VerificationEngine",
    # Client
    "ClusterClient",
    # CLI
    "cli_main",
    "create_parser",
]
