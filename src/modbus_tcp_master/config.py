"""Connection endpoint and server settings."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

from .protocol.functions import DEFAULT_PORT, DEFAULT_UNIT_ID

DEFAULT_TIMEOUT_S = 3.0


class ConfigError(Exception):
    """Raised when configuration values are invalid."""


@dataclass(frozen=True)
class Endpoint:
    """Where a session connects and which unit it addresses."""

    host: str
    port: int = DEFAULT_PORT
    unit_id: int = DEFAULT_UNIT_ID
    timeout: float = DEFAULT_TIMEOUT_S

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigError("Endpoint host must not be empty")
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"Port must be 1-65535, got {self.port}")
        if not 0 <= self.unit_id <= 255:
            raise ConfigError(f"Unit ID must be 0-255, got {self.unit_id}")
        if self.timeout <= 0:
            raise ConfigError(f"Timeout must be positive, got {self.timeout}")

    def __str__(self) -> str:
        return f"{self.host}:{self.port} (unit {self.unit_id})"


@dataclass(frozen=True)
class ServerSettings:
    """Settings for the MCP server entry point.

    ``host`` may be empty, in which case the ``connect`` tool must be given
    a host explicitly.
    """

    host: str = ""
    port: int = DEFAULT_PORT
    unit_id: int = DEFAULT_UNIT_ID
    timeout: float = DEFAULT_TIMEOUT_S
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServerSettings:
        """Load settings from ``MODBUS_*`` environment variables.

        Raises:
            ConfigError: If a numeric variable cannot be parsed or the log
                level is unknown.
        """
        env = os.environ if environ is None else environ
        log_level = env.get("MODBUS_LOG_LEVEL", "INFO").upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ConfigError(f"Unknown log level: {log_level}")

        return cls(
            host=env.get("MODBUS_HOST", ""),
            port=_parse(env, "MODBUS_PORT", int, DEFAULT_PORT),
            unit_id=_parse(env, "MODBUS_UNIT_ID", int, DEFAULT_UNIT_ID),
            timeout=_parse(env, "MODBUS_TIMEOUT", float, DEFAULT_TIMEOUT_S),
            log_level=log_level,
        )

    def endpoint(
        self,
        host: str | None = None,
        port: int | None = None,
        unit_id: int | None = None,
    ) -> Endpoint:
        """Build an :class:`Endpoint`, letting explicit arguments override settings."""
        return Endpoint(
            host=host or self.host,
            port=self.port if port is None else port,
            unit_id=self.unit_id if unit_id is None else unit_id,
            timeout=self.timeout,
        )


def _parse(env: Mapping[str, str], name: str, kind: type, default):
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid {name}={raw!r}: {exc}") from exc
