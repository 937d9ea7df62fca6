"""
Enumeration types for the subledger system.

These enums provide type-safe constants for discovery sources, resolution
outcomes, gateway tiers and log levels throughout the system.
"""

from enum import Enum, IntFlag


class SourceBit(IntFlag):
    """Discovery methods recorded in a record's source mask."""

    SCAN = 1
    CERT_TRANSPARENCY = 2
    DNS_PROOF = 4
    OTHER = 8
    NETWORK = 16


class ResolutionSource(Enum):
    """Where a lookup was answered from."""

    LOCAL = "local"
    NETWORK = "network"
    SCAN = "scan"


class GatewayTier(Enum):
    """Gateway tiers in trial order."""

    LOCAL = "local"
    PRIMARY = "primary"
    DECENTRALIZED = "decentralized"
    BACKUP = "backup"


class GatewayErrorCode(Enum):
    """Error codes for gateway operations."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    SIZE_LIMIT = "size_limit"
    NODE_UNAVAILABLE = "node_unavailable"
    PARSE_ERROR = "parse_error"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
