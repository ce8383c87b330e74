"""
Command-line interface for the cluster locator.

This module provides the main CLI entry point with commands for:
- resolve: Verify the cluster and print a URL for a request path
- probe: Verify the cluster and print the verified server table as JSON
- config: Configuration management

Seed addresses come from --seed options, the configuration file, and the
CLUSTER_SEEDS environment variable (a .env file is loaded first).
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .client import ClusterClient
from .config import (
    ClientConfig,
    load_config_from_file,
    save_config_to_file,
    seeds_from_environment,
)
from .exceptions import ClusterLocatorError


DEFAULT_CONFIG_PATH = Path.home() / ".cluster_locator" / "config.json"


def load_config(args: argparse.Namespace) -> Optional[ClientConfig]:
    """
    Load the configuration named on the command line, or the defaults.

    Returns:
        ClientConfig, or None if the named file is missing or invalid
    """
    if not getattr(args, "config", None):
        return ClientConfig()

    try:
        config = load_config_from_file(Path(args.config))
    except (ValueError, TypeError) as e:
        print(f"Error: Invalid config in {args.config}: {e}", file=sys.stderr)
        return None

    if config is None:
        print(f"Error: Could not load config from {args.config}", file=sys.stderr)
    return config


def collect_seeds(args: argparse.Namespace, config: ClientConfig) -> list[str]:
    """Merge seeds from the command line, the configuration and the environment."""
    seeds = []
    for seed in [*(args.seed or []), *config.seeds, *seeds_from_environment()]:
        if seed not in seeds:
            seeds.append(seed)
    return seeds


def create_logger(config: ClientConfig, verbose: bool) -> AuditLogger:
    return AuditLogger(
        output_format=config.logging.output_format,
        output_stream=sys.stderr,
        level="debug" if verbose else config.logging.level,
        max_entries=config.logging.max_entries,
    )


async def start_client(
    config: ClientConfig,
    seeds: list[str],
    wait_seconds: float,
    verbose: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[ClusterClient]:
    """
    Create a client for ``seeds`` and wait until it is ready.

    Returns:
        The ready client, or None (after printing the reason) on failure
    """
    config.seeds = []
    client = await ClusterClient.create(
        seeds=seeds,
        config=config,
        logger=create_logger(config, verbose),
        transport=transport,
    )
    try:
        await asyncio.wait_for(asyncio.shield(client.ready), timeout=wait_seconds)
    except asyncio.TimeoutError:
        print(f"Error: Cluster not ready after {wait_seconds:g} seconds", file=sys.stderr)
    except ClusterLocatorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
    else:
        return client

    await client.aclose()
    return None


async def resolve_path(
    path: str,
    config: ClientConfig,
    seeds: list[str],
    wait_seconds: float,
    verbose: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """
    Print the URL ``path`` resolves to on the best verified server.

    Returns:
        Exit code (0 on success, 1 on failure)
    """
    client = await start_client(config, seeds, wait_seconds, verbose, transport)
    if client is None:
        return 1

    async with client:
        try:
            url = client.get_url(path)
        except ClusterLocatorError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1

    print(url)
    return 0


async def probe_cluster(
    config: ClientConfig,
    seeds: list[str],
    wait_seconds: float,
    settle_seconds: float = 0.0,
    verbose: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """
    Print the cluster identifier and verified servers as JSON.

    Returns:
        Exit code (0 on success, 1 on failure)
    """
    client = await start_client(config, seeds, wait_seconds, verbose, transport)
    if client is None:
        return 1

    async with client:
        if settle_seconds > 0:
            await asyncio.sleep(settle_seconds)
        report = {
            "cluster_identifier": client.cluster_identifier,
            "skip_priority_one_servers": client.skip_priority_one_servers,
            "verified": [
                {"url": url, "priority": priority}
                for url, priority in sorted(
                    client.verified_servers.items(),
                    key=lambda item: (-item[1], item[0]),
                )
            ],
            "pending": sorted(client.pending_servers),
        }

    print(json.dumps(report, indent=2))
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    """Handle the 'resolve' command."""
    config = load_config(args)
    if config is None:
        return 1

    seeds = collect_seeds(args, config)
    if not seeds:
        print("Error: No seed servers given (use --seed or CLUSTER_SEEDS)", file=sys.stderr)
        return 1

    if args.state_file:
        config.persistence.state_file_path = Path(args.state_file)

    try:
        return asyncio.run(resolve_path(
            path=args.path,
            config=config,
            seeds=seeds,
            wait_seconds=args.wait,
            verbose=args.verbose,
        ))
    except ClusterLocatorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def cmd_probe(args: argparse.Namespace) -> int:
    """Handle the 'probe' command."""
    config = load_config(args)
    if config is None:
        return 1

    seeds = collect_seeds(args, config)
    if not seeds:
        print("Error: No seed servers given (use --seed or CLUSTER_SEEDS)", file=sys.stderr)
        return 1

    try:
        return asyncio.run(probe_cluster(
            config=config,
            seeds=seeds,
            wait_seconds=args.wait,
            settle_seconds=args.settle,
            verbose=args.verbose,
        ))
    except ClusterLocatorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH

    if args.action == "show":
        try:
            config = load_config_from_file(config_path)
        except (ValueError, TypeError) as e:
            print(f"Error: Invalid config in {config_path}: {e}", file=sys.stderr)
            return 1
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  Seeds: {', '.join(config.seeds) or '-'}")
        print(f"  Auto verify: {config.auto_verify}")
        print(f"  Handshake timeout: {config.verification.timeout_seconds:g}s")
        print(f"  Upgrade policy: {config.verification.upgrade_policy.value}")
        print(f"  Reset attempts: {config.reset.max_attempts}")
        print(f"  State file: {config.persistence.state_file_path}")
        print(f"  Log level: {config.logging.level}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        try:
            save_config_to_file(ClientConfig(seeds=list(args.seed or [])), config_path)
        except OSError as e:
            print(f"Error: Could not write config to {config_path}: {e}", file=sys.stderr)
            return 1
        print(f"Configuration created at: {config_path}")
        return 0

    return 1


def add_client_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--seed", "-s",
        action="append",
        help="Seed server address (repeatable)",
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--wait", "-w",
        type=float,
        default=60.0,
        help="Seconds to wait for the cluster to become ready (default: 60)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging on stderr",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="cluster-locator",
        description="Discover and verify the servers of a cluster",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'resolve' command
    resolve_parser = subparsers.add_parser(
        "resolve",
        help="Print the URL a request path resolves to",
    )
    resolve_parser.add_argument(
        "path",
        help="Request path (e.g., /api/1.0/status)",
    )
    add_client_arguments(resolve_parser)
    resolve_parser.add_argument(
        "--state-file",
        help="JSON file remembering verified servers between runs",
    )
    resolve_parser.set_defaults(func=cmd_resolve)

    # 'probe' command
    probe_parser = subparsers.add_parser(
        "probe",
        help="Print the verified servers as JSON",
    )
    add_client_arguments(probe_parser)
    probe_parser.add_argument(
        "--settle",
        type=float,
        default=0.0,
        help="Extra seconds to let peer verification finish after ready",
    )
    probe_parser.set_defaults(func=cmd_probe)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init"],
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
    config_parser.add_argument(
        "--seed", "-s",
        action="append",
        help="Seed server written into a new configuration (repeatable)",
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
