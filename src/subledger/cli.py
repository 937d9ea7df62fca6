"""
Command-line interface for the subledger system.

This module provides the main CLI entry point with commands for:
- sub: Look up the subdomains of a root domain (network, cache, scan)
- sync: Pull indexed domains from the network into the local store
- status: Report local node, network and cache status
- config: Configuration management
"""

import argparse
import asyncio
import dataclasses
import json
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    HOME_ENV,
    LOG_LEVEL_ENV,
    NO_AUTO_SYNC_ENV,
    GatewayConfig,
    LoggingConfig,
    ScanConfig,
    StorageConfig,
    SyncConfig,
    SystemConfig,
    default_base_dir,
    validate_config,
)
from .enums import LogLevel
from .exceptions import (
    ConfigError,
    PersistenceError,
    PublishError,
    ScanError,
    UnavailableError,
)
from .orchestrator import SubdomainOrchestrator


def create_default_config(base_dir: Optional[Path] = None) -> SystemConfig:
    """
    Create a default system configuration.

    Args:
        base_dir: Data directory (defaults to ~/.subledger)
    """
    return SystemConfig(
        storage=StorageConfig(base_dir=base_dir or default_base_dir()),
        gateways=GatewayConfig(),
        scan=ScanConfig(),
        sync=SyncConfig(),
        logging=LoggingConfig(level="info", output_format="text"),
    )


def default_config_path() -> Path:
    home = os.environ.get(HOME_ENV)
    return (Path(home) if home else default_base_dir()) / "config.json"


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Missing sections and keys fall back to their defaults.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        storage_data = data.get("storage", {})
        base_dir = storage_data.get("base_dir")
        storage = StorageConfig(base_dir=Path(base_dir) if base_dir else default_base_dir())

        defaults = GatewayConfig()
        gateway_data = data.get("gateways", {})
        gateways = GatewayConfig(
            local_api=gateway_data.get("local_api", defaults.local_api),
            local_fetch_candidates=gateway_data.get(
                "local_fetch_candidates", defaults.local_fetch_candidates
            ),
            decentralized=gateway_data.get("decentralized", defaults.decentralized),
            backup=gateway_data.get("backup", defaults.backup),
            local_timeout_seconds=float(
                gateway_data.get("local_timeout_seconds", defaults.local_timeout_seconds)
            ),
            gateway_timeout_seconds=float(
                gateway_data.get("gateway_timeout_seconds", defaults.gateway_timeout_seconds)
            ),
            max_body_bytes=int(gateway_data.get("max_body_bytes", defaults.max_body_bytes)),
            promote_healthy=bool(gateway_data.get("promote_healthy", False)),
            user_agent=gateway_data.get("user_agent", defaults.user_agent),
        )

        scan_data = data.get("scan", {})
        scan = ScanConfig(
            executable=scan_data.get("executable", "subfinder"),
            timeout_seconds=float(scan_data.get("timeout_seconds", 300.0)),
            all_sources=bool(scan_data.get("all_sources", True)),
        )

        sync_data = data.get("sync", {})
        sync = SyncConfig(
            auto_sync=bool(sync_data.get("auto_sync", True)),
            interval_hours=float(sync_data.get("interval_hours", 24.0)),
            timeout_seconds=float(sync_data.get("timeout_seconds", 10.0)),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            output_format=logging_data.get("output_format", "text"),
            log_to_file=bool(logging_data.get("log_to_file", False)),
        )

        return SystemConfig(
            storage=storage,
            gateways=gateways,
            scan=scan,
            sync=sync,
            logging=logging_config,
            peer_id=data.get("peer_id"),
        )

    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: SystemConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "storage": {"base_dir": str(config.storage.base_dir)},
            "gateways": dataclasses.asdict(config.gateways),
            "scan": dataclasses.asdict(config.scan),
            "sync": dataclasses.asdict(config.sync),
            "logging": dataclasses.asdict(config.logging),
            "peer_id": config.peer_id,
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def apply_env_overrides(config: SystemConfig) -> SystemConfig:
    """Apply SUBLEDGER_* environment variables on top of a configuration."""
    home = os.environ.get(HOME_ENV)
    if home:
        config.storage = StorageConfig(base_dir=Path(home))
    if os.environ.get(NO_AUTO_SYNC_ENV):
        config.sync.auto_sync = False
    level = os.environ.get(LOG_LEVEL_ENV)
    if level:
        config.logging.level = level.lower()
    return config


def resolve_config(config_arg: Optional[str]) -> Optional[SystemConfig]:
    """Load the explicit or default configuration file, then apply the environment."""
    if config_arg:
        config = load_config_from_file(Path(config_arg))
        if config is None:
            print(f"Error: Could not load config from {config_arg}", file=sys.stderr)
            return None
    else:
        config = load_config_from_file(default_config_path()) or create_default_config()
    config = apply_env_overrides(config)

    try:
        validate_config(config)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return None
    return config


def create_logger(config: SystemConfig, quiet: bool = False) -> AuditLogger:
    logger = AuditLogger.from_config(config.logging, config.storage.log_dir)
    if quiet:
        return AuditLogger(
            output_format=logger.output_format,
            level=LogLevel.ERROR,
            log_dir=config.storage.log_dir if config.logging.log_to_file else None,
        )
    return logger


async def run_sub(
    domain: str,
    config: SystemConfig,
    rescan: bool = False,
    use_network: bool = True,
    publish: bool = True,
    output: str = "text",
    quiet: bool = False,
) -> int:
    """
    Look up a domain and print its subdomains.

    Returns:
        Exit code (0 on success, 1 on error)
    """
    logger = create_logger(config, quiet)

    try:
        orchestrator = SubdomainOrchestrator(config, logger=logger)
    except PersistenceError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    async with orchestrator:
        if use_network:
            sync_result = await orchestrator.auto_sync()
            if sync_result is not None and not quiet:
                print(
                    f"Auto-sync: {sync_result.synced} domains synced"
                    + (" (cancelled)" if sync_result.cancelled else ""),
                    file=sys.stderr,
                )

        try:
            result = await orchestrator.lookup(
                domain, rescan=rescan, use_network=use_network, publish=publish
            )
        except (ScanError, PersistenceError) as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1

    if output == "json":
        print(json.dumps(result.hostnames, indent=2))
    else:
        for hostname in result.hostnames:
            print(hostname)

    if not quiet:
        print(f"\nTotal: {len(result.hostnames)} subdomains for {result.domain}", file=sys.stderr)
        print(f"Source: {result.source.value}", file=sys.stderr)
        if result.added:
            print(f"New this run: {len(result.added)}", file=sys.stderr)
        if result.published_cid:
            print(f"Published to network: {result.published_cid}", file=sys.stderr)
        for error in result.errors:
            print(f"Warning: {error}", file=sys.stderr)
        print(f"Elapsed time: {result.duration_ms:.0f}ms", file=sys.stderr)

    return 0


async def run_sync(
    config: SystemConfig,
    timeout: float,
    publish_index: bool = False,
    quiet: bool = False,
) -> int:
    """Synchronize with the network and optionally republish the index."""
    logger = create_logger(config, quiet)

    try:
        orchestrator = SubdomainOrchestrator(config, logger=logger)
    except PersistenceError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    async with orchestrator:
        result = await orchestrator.resolver.sync_all(timeout)
        orchestrator.write_last_sync()

        index_cid = None
        if publish_index:
            try:
                index_cid = await orchestrator.resolver.publish_index()
            except (UnavailableError, PublishError, PersistenceError) as e:
                print(f"Error: failed to publish index: {e.message}", file=sys.stderr)
                return 1

    if not quiet:
        print(
            f"Synced {result.synced} of {result.attempted} domains"
            + (" (cancelled by timeout)" if result.cancelled else ""),
            file=sys.stderr,
        )
        for error in result.errors:
            print(f"  - {error}", file=sys.stderr)
        if index_cid:
            print(f"Index published: {index_cid}", file=sys.stderr)
    return 0


async def run_status(config: SystemConfig, output: str = "text", list_domains: bool = False) -> int:
    """Print local node, network and cache status."""
    logger = create_logger(config, quiet=True)

    try:
        orchestrator = SubdomainOrchestrator(config, logger=logger)
    except PersistenceError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    async with orchestrator:
        status = await orchestrator.resolver.network_status()
        available = await orchestrator.resolver.list_available_domains() if list_domains else []
        cached = sorted(orchestrator.store.list_domains())

    if output == "json":
        data = {
            "network": dataclasses.asdict(status),
            "cache": {"cached_domains": len(cached), "domains": cached},
        }
        if list_domains:
            data["available_domains"] = [dataclasses.asdict(info) for info in available]
        print(json.dumps(data, indent=2))
        return 0

    print("subledger status")
    print("================")
    if status.node_available:
        print("Local node: connected")
        if status.peer_error:
            print(f"Peers: unavailable ({status.peer_error})")
        elif status.connected_peers:
            print(f"Peers: {status.peer_count} connected")
        else:
            print("Peers: none connected")
    else:
        print("Local node: unavailable (gateway mode)")

    if status.index_error:
        print(f"Index: {status.index_error}")
    print(f"Domains in network: {status.domains_in_network}")
    if status.index_last_updated:
        print(f"Index updated: {status.index_last_updated}")

    print(f"Cache: {len(cached)} domains cached locally")
    for domain in cached:
        print(f"  {domain}")

    for info in available:
        print(f"  {info.domain} {info.content_hash} ({info.subdomain_count} subdomains)")
    return 0


def cmd_sub(args: argparse.Namespace) -> int:
    """Handle the 'sub' command."""
    config = resolve_config(args.config)
    if config is None:
        return 1

    return asyncio.run(run_sub(
        domain=args.domain,
        config=config,
        rescan=args.rescan,
        use_network=not args.no_network,
        publish=not args.no_publish,
        output=args.output,
        quiet=args.quiet,
    ))


def cmd_sync(args: argparse.Namespace) -> int:
    """Handle the 'sync' command."""
    config = resolve_config(args.config)
    if config is None:
        return 1

    timeout = args.timeout if args.timeout is not None else config.sync.timeout_seconds
    return asyncio.run(run_sync(
        config=config,
        timeout=timeout,
        publish_index=args.publish_index,
        quiet=args.quiet,
    ))


def cmd_status(args: argparse.Namespace) -> int:
    """Handle the 'status' command."""
    config = resolve_config(args.config)
    if config is None:
        return 1

    return asyncio.run(run_status(config, output=args.output, list_domains=args.domains))


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else default_config_path()

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  Data directory: {config.storage.base_dir}")
        print(f"  Local API: {config.gateways.local_api}")
        print(f"  Scanner: {config.scan.executable}")
        print(f"  Auto-sync: {config.sync.auto_sync} (every {config.sync.interval_hours}h)")
        print(f"  Log level: {config.logging.level}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        config = apply_env_overrides(create_default_config())
        if save_config_to_file(config, config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1

        try:
            validate_config(config)
        except ConfigError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="subledger",
        description="Subdomain ledger with a content-addressed network cache",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'sub' command
    sub_parser = subparsers.add_parser(
        "sub",
        help="Look up subdomains (network -> cache -> scan)",
    )
    sub_parser.add_argument(
        "domain",
        help="Root domain (e.g., example.com)",
    )
    sub_parser.add_argument(
        "--rescan",
        action="store_true",
        help="Force a fresh scan even if results are cached",
    )
    sub_parser.add_argument(
        "--no-network",
        action="store_true",
        help="Use the local store and scanner only",
    )
    sub_parser.add_argument(
        "--no-publish",
        action="store_true",
        help="Do not publish scan results to the network",
    )
    sub_parser.add_argument(
        "--output", "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    sub_parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress progress messages",
    )
    sub_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    sub_parser.set_defaults(func=cmd_sub)

    # 'sync' command
    sync_parser = subparsers.add_parser(
        "sync",
        help="Synchronize with the network",
    )
    sync_parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=None,
        help="Budget for the whole sync in seconds (default: from config)",
    )
    sync_parser.add_argument(
        "--publish-index",
        action="store_true",
        help="Publish the merged global index after syncing",
    )
    sync_parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress progress messages",
    )
    sync_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    sync_parser.set_defaults(func=cmd_sync)

    # 'status' command
    status_parser = subparsers.add_parser(
        "status",
        help="Show local node, network and cache status",
    )
    status_parser.add_argument(
        "--output", "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    status_parser.add_argument(
        "--domains",
        action="store_true",
        help="Also describe every domain in the global index",
    )
    status_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    status_parser.set_defaults(func=cmd_status)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
