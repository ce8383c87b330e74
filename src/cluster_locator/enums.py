"""
Enumeration types for the cluster locator.

These enums provide type-safe constants for endpoint states, verification
results, error codes, and configuration options throughout the package.
"""

from enum import Enum


class EndpointStatus(Enum):
    """Bookkeeping state of a single server URL."""

    SEED = "seed"
    PENDING = "pending"
    VERIFIED = "verified"
    CLEARED = "cleared"


class VerificationOutcome(Enum):
    """How a verify() call was satisfied."""

    VERIFIED = "verified"
    UPGRADED = "upgraded"
    ALREADY_SATISFIED = "already_satisfied"
    SKIPPED = "skipped"
    JOINED = "joined"


class VerificationErrorCode(Enum):
    """Error codes for failed hostnames handshakes."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    PARSE_ERROR = "parse_error"
    MISSING_IDENTIFIER = "missing_identifier"
    INVALID_HOSTNAMES = "invalid_hostnames"
    IDENTIFIER_MISMATCH = "identifier_mismatch"
    CANCELLED = "cancelled"


class PriorityUpgradePolicy(Enum):
    """What verify() does when an already verified server is requested at a higher priority."""

    TRUST_PRIOR_HANDSHAKE = "trust_prior_handshake"
    REVERIFY = "reverify"


class NotificationKind(Enum):
    """Events emitted by the cluster client."""

    ADD_SERVER = "add_server"
    VERIFIED_SERVER = "verified_server"
    CLEAR_SERVER = "clear_server"
    READY = "ready"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
