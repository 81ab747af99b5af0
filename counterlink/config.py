"""Configuration loading for Counterlink."""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable

import yaml

logger = logging.getLogger(__name__)

ROLES = ("primary", "companion")


@dataclass
class NodeConfig:
    name: str = ""  # Defaults to "counterlink-<role>"
    role: str = "primary"  # "primary" or "companion"


@dataclass
class MQTTConfig:
    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "counterlink"
    username: str | None = None
    password: str | None = None
    keepalive: int = 60
    connect_timeout_seconds: float = 5.0


@dataclass
class SessionConfig:
    """Configuration for the counter sync session."""

    peer: str = ""  # Node name of the paired peer
    initialize_wait_seconds: float = 1.0
    send_timeout_seconds: float | None = None  # None keeps sends open until answered


@dataclass
class DiscoveryConfig:
    """Configuration for mDNS/Zeroconf peer discovery."""

    enabled: bool = False
    service_type: str = "_counterlink._tcp"
    announce: bool = True
    browse: bool = True
    cache_ttl_seconds: int = 300
    discovery_timeout_seconds: int = 10


@dataclass
class DashboardConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


# COUNTERLINK_<suffix> -> (section, field, converter)
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "NODE_NAME": ("node", "name", str),
    "NODE_ROLE": ("node", "role", str),
    "MQTT_BROKER": ("mqtt", "broker", str),
    "MQTT_PORT": ("mqtt", "port", int),
    "MQTT_TOPIC_PREFIX": ("mqtt", "topic_prefix", str),
    "MQTT_USERNAME": ("mqtt", "username", str),
    "MQTT_PASSWORD": ("mqtt", "password", str),
    "SESSION_PEER": ("session", "peer", str),
    "SESSION_SEND_TIMEOUT": ("session", "send_timeout_seconds", float),
    "DISCOVERY_ENABLED": ("discovery", "enabled", _is_true),
    "DISCOVERY_ANNOUNCE": ("discovery", "announce", _is_true),
    "DISCOVERY_BROWSE": ("discovery", "browse", _is_true),
    "DASHBOARD_HOST": ("dashboard", "host", str),
    "DASHBOARD_PORT": ("dashboard", "port", int),
}


def _apply_env_overrides(config: Config) -> Config:
    """Apply COUNTERLINK_* environment variables to config."""
    for suffix, (section, name, convert) in ENV_OVERRIDES.items():
        value = os.environ.get(f"COUNTERLINK_{suffix}")
        if value:
            setattr(getattr(config, section), name, convert(value))
    return config


def _merge_section(current: Any, data: dict[str, Any] | None, section: str) -> Any:
    """Return ``current`` updated with the keys of a YAML section."""
    if not data:
        return current
    known = {f.name for f in fields(current)}
    for key in data.keys() - known:
        logger.warning(f"Ignoring unknown config key {section}.{key}")
    return replace(current, **{k: v for k, v in data.items() if k in known})


def load_config(
    config_path: str | Path | None = None,
    role: str | None = None,
    name: str | None = None,
    peer: str | None = None,
) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Values come from built-in defaults, then the YAML file, then
    ``COUNTERLINK_*`` environment variables, then the explicit arguments.

    Args:
        config_path: Path to YAML config file. If None, uses default config.
        role: Optional node role override.
        name: Optional node name override.
        peer: Optional peer name override.

    Returns:
        Loaded and validated Config object.

    Raises:
        ValueError: If the node role is not one of ``ROLES``.
    """
    config = Config()

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        for section in [s.name for s in fields(config)]:
            merged = _merge_section(getattr(config, section), data.get(section), section)
            setattr(config, section, merged)

    config = _apply_env_overrides(config)

    if role:
        config.node.role = role
    if name:
        config.node.name = name
    if peer:
        config.session.peer = peer

    return apply_role_defaults(config)


def apply_role_defaults(config: Config) -> Config:
    """Validate the role and fill in node and peer names derived from it.

    Raises:
        ValueError: If the node role is not one of ``ROLES``.
    """
    if config.node.role not in ROLES:
        raise ValueError(
            f"Invalid node role '{config.node.role}', expected one of {', '.join(ROLES)}"
        )

    if not config.node.name:
        config.node.name = f"counterlink-{config.node.role}"

    # Default peer: the other side of the pair
    if not config.session.peer:
        other = "companion" if config.node.role == "primary" else "primary"
        config.session.peer = f"counterlink-{other}"

    return config
