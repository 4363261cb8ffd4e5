"""Configuration loaded from environment variables and an optional YAML file.

All settings have sensible defaults. Override via LLORO_* env vars or a
YAML file:

    lloro:
      backend_url: http://localhost:6363
      default_model: gemini-3-flash-preview
      health_timeout_seconds: 5
      delivery_policy: confirmed
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-3-flash-preview"
DEFAULT_BACKEND_URL = "http://localhost:6363"
LLORO_HOME = Path.home() / ".lloro"


class DeliveryPolicy(Enum):
    """When a pinned context counts as delivered.

    CONFIRMED: staged in flight, finalized only after the Chat call
        succeeds, returned to pending when it fails.
    AT_MOST_ONCE: marked sent before the call. A failed call loses the
        content; it is never offered twice.
    """

    CONFIRMED = "confirmed"
    AT_MOST_ONCE = "at_most_once"


def _default_storage_path() -> Path:
    return LLORO_HOME / "storage.json"


@dataclass
class LloroConfig:
    """Client configuration."""

    backend_url: str = DEFAULT_BACKEND_URL
    rpc_path: str = "/rpc"
    health_path: str = "/health"
    default_model: str = DEFAULT_MODEL

    # aiohttp total timeout for RPC calls. Chat turns can take minutes.
    request_timeout_seconds: float = 600.0
    # Health probes give up quickly and report the backend offline.
    health_timeout_seconds: float = 5.0
    health_interval_seconds: float = 30.0

    storage_path: Path = field(default_factory=_default_storage_path)
    delivery_policy: DeliveryPolicy = DeliveryPolicy.CONFIRMED

    # Logging
    log_level: str = "INFO"

    @property
    def rpc_url(self) -> str:
        return self.backend_url.rstrip("/") + self.rpc_path

    @property
    def health_url(self) -> str:
        return self.backend_url.rstrip("/") + self.health_path

    @classmethod
    def from_env(cls) -> LloroConfig:
        """Load configuration from LLORO_* environment variables."""
        lloro_vars = {
            k: v for k, v in os.environ.items() if k.startswith("LLORO_")
        }
        if lloro_vars:
            logger.info(
                "LloroConfig.from_env: LLORO_* env overrides: %s",
                ", ".join(sorted(lloro_vars)),
            )
        else:
            logger.debug("LloroConfig.from_env: no LLORO_* env vars set, using defaults")

        config = cls(
            backend_url=os.getenv("LLORO_BACKEND_URL", cls.backend_url),
            rpc_path=os.getenv("LLORO_RPC_PATH", cls.rpc_path),
            health_path=os.getenv("LLORO_HEALTH_PATH", cls.health_path),
            default_model=os.getenv("LLORO_DEFAULT_MODEL", cls.default_model),
            request_timeout_seconds=float(os.getenv(
                "LLORO_REQUEST_TIMEOUT", str(cls.request_timeout_seconds)
            )),
            health_timeout_seconds=float(os.getenv(
                "LLORO_HEALTH_TIMEOUT", str(cls.health_timeout_seconds)
            )),
            health_interval_seconds=float(os.getenv(
                "LLORO_HEALTH_INTERVAL", str(cls.health_interval_seconds)
            )),
            storage_path=Path(os.getenv(
                "LLORO_STORAGE_PATH", str(_default_storage_path())
            )).expanduser(),
            delivery_policy=_parse_policy(os.getenv(
                "LLORO_DELIVERY_POLICY", DeliveryPolicy.CONFIRMED.value
            )),
            log_level=os.getenv("LLORO_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "LloroConfig.from_env: backend=%s model=%s storage=%s policy=%s",
            config.backend_url, config.default_model,
            config.storage_path, config.delivery_policy.value,
        )
        return config


def _parse_policy(value: Any) -> DeliveryPolicy:
    if isinstance(value, DeliveryPolicy):
        return value
    try:
        return DeliveryPolicy(str(value).strip().lower())
    except ValueError:
        logger.warning(
            "Unknown delivery policy %r; using %s",
            value, DeliveryPolicy.CONFIRMED.value,
        )
        return DeliveryPolicy.CONFIRMED


_FLOAT_FIELDS = {
    "request_timeout_seconds",
    "health_timeout_seconds",
    "health_interval_seconds",
}


def apply_overrides(config: LloroConfig, data: dict[str, Any]) -> LloroConfig:
    """Apply a mapping of field overrides in place, ignoring unknown keys."""
    known = {f.name for f in fields(LloroConfig)}
    for key, value in data.items():
        if key not in known:
            logger.warning("apply_overrides: ignoring unknown config key %r", key)
            continue
        if value is None:
            continue
        if key in _FLOAT_FIELDS:
            value = float(value)
        elif key == "storage_path":
            value = Path(str(value)).expanduser()
        elif key == "delivery_policy":
            value = _parse_policy(value)
        else:
            value = str(value)
        setattr(config, key, value)
    return config


def load_yaml_config(path: str | Path, base: LloroConfig | None = None) -> LloroConfig:
    """Load a YAML config file on top of ``base`` (environment config by default).

    Settings may sit under a top-level ``lloro:`` section or at the top
    level. A missing or unparseable file leaves ``base`` unchanged.
    """
    path = Path(path).expanduser()
    config = base if base is not None else LloroConfig.from_env()
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    if not path.is_file():
        return config
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        logger.warning("load_yaml_config: YAML parse error in %s: %s", path, exc)
        return config
    if not isinstance(data, dict):
        logger.warning("load_yaml_config: %s does not hold a mapping", path)
        return config

    section = data.get("lloro", data)
    if not isinstance(section, dict):
        logger.warning("load_yaml_config: 'lloro' section in %s is not a mapping", path)
        return config
    return apply_overrides(config, section)
