"""
Configuration dataclasses for the cluster locator.

This module defines all configuration structures used by the client:
handshake settings, reset backoff, persistence, and logging, plus helpers
to read and write them as JSON.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .enums import PriorityUpgradePolicy


HOSTNAMES_PATH = "/api/1.0/network-map/hostnames"

STORAGE_KEY = "CLUSTER_SERVER_PRIORITY"

SEEDS_ENV_VAR = "CLUSTER_SEEDS"


@dataclass
class VerificationConfig:
    """Hostnames handshake configuration."""

    timeout_seconds: float = 15.0
    hostnames_path: str = HOSTNAMES_PATH
    verify_tls: bool = True
    upgrade_policy: PriorityUpgradePolicy = PriorityUpgradePolicy.TRUST_PRIOR_HANDSHAKE


@dataclass
class ResetConfig:
    """Reset backoff configuration."""

    backoff_unit_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    max_attempts: Optional[int] = 10  # None retries forever


@dataclass
class PersistenceConfig:
    """Stored server list configuration."""

    save_delay_seconds: float = 1.0
    storage_key: str = STORAGE_KEY
    state_file_path: Optional[Path] = None
    hmac_secret: Optional[str] = None


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'
    max_entries: Optional[int] = 1000  # recent entries kept in memory


@dataclass
class ClientConfig:
    """Main client configuration combining all sub-configurations."""

    verification: VerificationConfig = field(default_factory=VerificationConfig)
    reset: ResetConfig = field(default_factory=ResetConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    seeds: list[str] = field(default_factory=list)
    auto_verify: bool = True


def parse_seeds(value: str) -> list[str]:
    """
    Split a comma, semicolon or whitespace separated list of seed addresses.

    Blank entries and entries starting with '#' are dropped, duplicates keep
    their first position.
    """
    if not value:
        return []
    raw = [p.strip() for chunk in value.replace(";", ",").split(",") for p in chunk.split()]
    seen, out = set(), []
    for item in raw:
        if not item or item.startswith("#"):
            continue
        if item not in seen:
            out.append(item)
            seen.add(item)
    return out


def seeds_from_environment(env_var: str = SEEDS_ENV_VAR) -> list[str]:
    """Read seed addresses from the environment (after .env loading)."""
    return parse_seeds(os.getenv(env_var, ""))


def config_to_dict(config: ClientConfig) -> dict:
    """Convert a ClientConfig to a JSON compatible dictionary."""
    persistence = config.persistence
    return {
        "verification": {
            "timeout_seconds": config.verification.timeout_seconds,
            "hostnames_path": config.verification.hostnames_path,
            "verify_tls": config.verification.verify_tls,
            "upgrade_policy": config.verification.upgrade_policy.value,
        },
        "reset": {
            "backoff_unit_seconds": config.reset.backoff_unit_seconds,
            "max_backoff_seconds": config.reset.max_backoff_seconds,
            "max_attempts": config.reset.max_attempts,
        },
        "persistence": {
            "save_delay_seconds": persistence.save_delay_seconds,
            "storage_key": persistence.storage_key,
            "state_file_path": (
                str(persistence.state_file_path) if persistence.state_file_path else None
            ),
            "hmac_secret": persistence.hmac_secret,
        },
        "logging": {
            "level": config.logging.level,
            "output_format": config.logging.output_format,
            "max_entries": config.logging.max_entries,
        },
        "seeds": list(config.seeds),
        "auto_verify": config.auto_verify,
    }


def config_from_dict(data: dict) -> ClientConfig:
    """
    Build a ClientConfig from a dictionary, filling in defaults.

    Raises:
        ValueError: If an enum value is unknown
        TypeError: If a section is not a mapping
    """
    verification_data = data.get("verification", {})
    verification = VerificationConfig(
        timeout_seconds=verification_data.get("timeout_seconds", 15.0),
        hostnames_path=verification_data.get("hostnames_path", HOSTNAMES_PATH),
        verify_tls=verification_data.get("verify_tls", True),
        upgrade_policy=PriorityUpgradePolicy(
            verification_data.get(
                "upgrade_policy",
                PriorityUpgradePolicy.TRUST_PRIOR_HANDSHAKE.value,
            )
        ),
    )

    reset_data = data.get("reset", {})
    reset = ResetConfig(
        backoff_unit_seconds=reset_data.get("backoff_unit_seconds", 1.0),
        max_backoff_seconds=reset_data.get("max_backoff_seconds", 30.0),
        max_attempts=reset_data.get("max_attempts", 10),
    )

    persistence_data = data.get("persistence", {})
    state_file_path = persistence_data.get("state_file_path")
    persistence = PersistenceConfig(
        save_delay_seconds=persistence_data.get("save_delay_seconds", 1.0),
        storage_key=persistence_data.get("storage_key", STORAGE_KEY),
        state_file_path=Path(state_file_path) if state_file_path else None,
        hmac_secret=persistence_data.get("hmac_secret"),
    )

    logging_data = data.get("logging", {})
    logging_config = LoggingConfig(
        level=logging_data.get("level", "info"),
        output_format=logging_data.get("output_format", "text"),
        max_entries=logging_data.get("max_entries", 1000),
    )

    return ClientConfig(
        verification=verification,
        reset=reset,
        persistence=persistence,
        logging=logging_config,
        seeds=list(data.get("seeds", [])),
        auto_verify=data.get("auto_verify", True),
    )


def load_config_from_file(config_path: Path) -> Optional[ClientConfig]:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        ClientConfig if the file exists, None otherwise

    Raises:
        ValueError: If the file is not valid JSON or holds invalid values
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None

    if not isinstance(data, dict):
        raise ValueError(f"Configuration in {config_path} must be a JSON object")

    return config_from_dict(data)


def save_config_to_file(config: ClientConfig, config_path: Path) -> None:
    """Save configuration to a JSON file, creating parent directories."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
