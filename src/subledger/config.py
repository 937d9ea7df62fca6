"""
Configuration dataclasses for the subledger system.

This module defines all configuration structures used throughout the system,
including storage locations, gateway tiers and timeouts, scanner invocation,
network synchronization, and logging configuration.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .exceptions import ConfigError


DEFAULT_PRIMARY_GATEWAYS = [
    "https://ipfs.io/ipfs/",
    "https://cloudflare-ipfs.com/ipfs/",
    "https://gateway.pinata.cloud/ipfs/",
]

DEFAULT_DECENTRALIZED_GATEWAYS = [
    "https://dweb.link/ipfs/",
    "https://hardbin.com/ipfs/",
    "https://gateway.temporal.cloud/ipfs/",
]

DEFAULT_BACKUP_GATEWAYS = [
    "https://ipfs.fleek.co/ipfs/",
    "https://gateway.originprotocol.com/ipfs/",
]

DEFAULT_LOCAL_FETCH_CANDIDATES = [
    "http://localhost:5001/api/v0/cat?arg={cid}",
    "http://127.0.0.1:5001/api/v0/cat?arg={cid}",
    "http://localhost:8080/ipfs/{cid}",
]

HOME_ENV = "SUBLEDGER_HOME"
NO_AUTO_SYNC_ENV = "SUBLEDGER_NO_AUTO_SYNC"
LOG_LEVEL_ENV = "SUBLEDGER_LOG_LEVEL"


def default_base_dir() -> Path:
    """Return the default data directory (~/.subledger)."""
    return Path.home() / ".subledger"


@dataclass
class StorageConfig:
    """Locations of the domain store, deltas and manifest."""

    base_dir: Path = field(default_factory=default_base_dir)

    @property
    def manifest_path(self) -> Path:
        return self.base_dir / "manifest.json"

    @property
    def last_sync_path(self) -> Path:
        return self.base_dir / "last_sync"

    @property
    def log_dir(self) -> Path:
        return self.base_dir / "logs"


@dataclass
class GatewayConfig:
    """Gateway tiers and per-call limits for the failover client."""

    local_api: str = "http://localhost:5001"
    local_fetch_candidates: list[str] = field(
        default_factory=lambda: list(DEFAULT_LOCAL_FETCH_CANDIDATES)
    )
    decentralized: list[str] = field(
        default_factory=lambda: list(DEFAULT_DECENTRALIZED_GATEWAYS)
    )
    backup: list[str] = field(default_factory=lambda: list(DEFAULT_BACKUP_GATEWAYS))
    local_timeout_seconds: float = 3.0
    gateway_timeout_seconds: float = 10.0
    max_body_bytes: int = 100 * 1024 * 1024
    promote_healthy: bool = False
    user_agent: str = "subledger/0.1 (subdomain ledger)"


@dataclass
class ScanConfig:
    """External scanner invocation settings."""

    executable: str = "subfinder"
    timeout_seconds: float = 300.0
    all_sources: bool = True


@dataclass
class SyncConfig:
    """Automatic network synchronization settings."""

    auto_sync: bool = True
    interval_hours: float = 24.0
    timeout_seconds: float = 10.0


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'
    log_to_file: bool = False


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    gateways: GatewayConfig = field(default_factory=GatewayConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    peer_id: Optional[str] = None


VALID_LOG_LEVELS = ("debug", "info", "warn", "error")
VALID_OUTPUT_FORMATS = ("json", "text", "both")


def validate_config(config: SystemConfig) -> None:
    """
    Check a configuration for values the components cannot work with.

    Raises:
        ConfigError: On the first invalid value found
    """
    if config.logging.output_format not in VALID_OUTPUT_FORMATS:
        raise ConfigError(
            code="invalid_output_format",
            message=f"invalid logging.output_format: {config.logging.output_format}",
        )
    if config.logging.level.lower() not in VALID_LOG_LEVELS:
        raise ConfigError(
            code="invalid_log_level",
            message=f"invalid logging.level: {config.logging.level}",
        )
    if not config.gateways.local_api:
        raise ConfigError(code="missing_local_api", message="gateways.local_api is empty")

    limits = {
        "gateways.local_timeout_seconds": config.gateways.local_timeout_seconds,
        "gateways.gateway_timeout_seconds": config.gateways.gateway_timeout_seconds,
        "gateways.max_body_bytes": config.gateways.max_body_bytes,
        "scan.timeout_seconds": config.scan.timeout_seconds,
        "sync.interval_hours": config.sync.interval_hours,
        "sync.timeout_seconds": config.sync.timeout_seconds,
    }
    for name, value in limits.items():
        if value <= 0:
            raise ConfigError(
                code="invalid_limit",
                message=f"{name} must be positive",
                details={"field": name, "value": value},
            )
