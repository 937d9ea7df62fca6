"""
subledger - Durable subdomain ledger with a content-addressed network cache.

This package keeps a compressed local record of the subdomains discovered for
each root domain and answers lookups through a tiered strategy: local store,
then a content-addressed network reached through failover gateways, then an
external scan whose results are merged and published back.
"""

__version__ = "0.1.0"
__author__ = "subledger contributors"

from subledger.exceptions import (
    SubledgerError,
    NotFoundError,
    UnavailableError,
    GatewayError,
    NodeUnavailableError,
    CorruptDataError,
    PersistenceError,
    PublishError,
    ScanError,
    ToolNotFoundError,
    ScanExecutionError,
    ConfigError,
)
from subledger.enums import (
    SourceBit,
    ResolutionSource,
    GatewayTier,
    GatewayErrorCode,
    LogLevel,
)
from subledger.config import (
    StorageConfig,
    GatewayConfig,
    ScanConfig,
    SyncConfig,
    LoggingConfig,
    SystemConfig,
    validate_config,
)
from subledger.models import (
    SubdomainRecord,
    DeltaBatch,
    DomainRecord,
    GlobalIndex,
    ResolveResult,
    SyncResult,
    DomainInfo,
    NetworkStatus,
    LookupResult,
)
from subledger.hostname import (
    normalize_host,
    normalize_hosts,
    is_valid_hostname,
)
from subledger.audit_logger import (
    AuditLogger,
    ComponentLogger,
    LogEntry,
)
from subledger.domain_store import (
    DomainStore,
)
from subledger.merge import (
    MergeEngine,
    MergeOutcome,
)
from subledger.manifest import (
    Manifest,
    ManifestStore,
    RootEntry,
)
from subledger.gateway_client import (
    GatewayClient,
    EndpointStats,
)
from subledger.network_resolver import (
    NetworkResolver,
)
from subledger.scanner import (
    SubfinderScanner,
)
from subledger.orchestrator import (
    SubdomainOrchestrator,
)
from subledger.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)

__all__ = [
    # Exceptions
    "SubledgerError",
    "NotFoundError",
    "UnavailableError",
    "GatewayError",
    "NodeUnavailableError",
    "CorruptDataError",
    "PersistenceError",
    "PublishError",
    "ScanError",
    "ToolNotFoundError",
    "ScanExecutionError",
    "ConfigError",
    # Enums
    "SourceBit",
    "ResolutionSource",
    "GatewayTier",
    "GatewayErrorCode",
    "LogLevel",
    # Configuration
    "StorageConfig",
    "GatewayConfig",
    "ScanConfig",
    "SyncConfig",
    "LoggingConfig",
    "SystemConfig",
    "validate_config",
    # Models
    "SubdomainRecord",
    "DeltaBatch",
    "DomainRecord",
    "GlobalIndex",
    "ResolveResult",
    "SyncResult",
    "DomainInfo",
    "NetworkStatus",
    "LookupResult",
    # Hostnames
    "normalize_host",
    "normalize_hosts",
    "is_valid_hostname",
    # Audit Logger
    "AuditLogger",
    "ComponentLogger",
    "LogEntry",
    # Storage
    "DomainStore",
    "MergeEngine",
    "MergeOutcome",
    "Manifest",
    "ManifestStore",
    "RootEntry",
    # Network
    "GatewayClient",
    "EndpointStats",
    "NetworkResolver",
    # Scanner
    "SubfinderScanner",
    # Orchestrator
    "SubdomainOrchestrator",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
]
