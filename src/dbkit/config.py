"""Connection and pool configuration.

This module describes how to reach a database and how to assemble a
``ConnectionPool`` from a YAML file. It provides:

1. ``TcpEndpoint``: host/port shared by every TCP engine, with a bounded-time probe
2. ``ConnectionConfig``: one backend (engine, location, credentials, timeouts) that can
   check its own reachability and build a ``Connection``
3. ``PoolConfig`` / ``PoolConfigLoader``: tagged lists of connection configs loaded from
   YAML and validated with Pydantic

Configuration file location priority:
1. Explicit path passed to PoolConfigLoader
2. DBKIT_POOL_CONFIG environment variable
3. Standard location: ~/.dbkit/pool.yml

Example config file:
```yaml
selection: sequential

tags:
  master:
    - engine: postgresql
      endpoint: {host: db-primary, port: 5432, connect_timeout: 0.5}
      database: app
      username: app
      password: secret

  replica:
    - engine: postgresql
      endpoint: {host: db-replica-1}
      database: app
      username: readonly
    - engine: postgresql
      endpoint: {host: db-replica-2}
      database: app
      username: readonly

  cache:
    - engine: sqlite
      path: /var/lib/app/cache.db
```
"""

from __future__ import annotations

import logging
import os
import socket
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, PrivateAttr, ValidationError, model_validator

from .backends import backend_for
from .backends.backend import DatabaseBackendBase, DatabaseEngine, DriverError
from .connection import Connection
from .exceptions import ConfigurationError, error_from_driver
from .pool import ConnectionPool, SelectionMode

logger = logging.getLogger(__name__)

DEFAULT_PORTS: dict[DatabaseEngine, int] = {
    DatabaseEngine.POSTGRESQL: 5432,
    DatabaseEngine.MARIADB: 3306,
}

# ===========================================================================
# Configuration Models
# ===========================================================================


class TcpEndpoint(BaseModel):
    """Network location of a TCP database server."""

    host: str = Field(min_length=1, description="Server hostname or IP address")
    port: int | None = Field(
        default=None,
        ge=1,
        le=65535,
        description="Server port (defaults to the engine's standard port)",
    )
    connect_timeout: float = Field(
        default=0.5,
        gt=0,
        le=60.0,
        description="Seconds allowed for the reachability probe and the driver connect",
    )


def probe_endpoint(endpoint: TcpEndpoint) -> bool:
    """Check that a TCP connection to ``endpoint`` opens within its connect timeout."""
    if endpoint.port is None:
        return False
    try:
        with socket.create_connection(
            (endpoint.host, endpoint.port), timeout=endpoint.connect_timeout
        ):
            return True
    except OSError as e:
        logger.debug(f"Endpoint {endpoint.host}:{endpoint.port} unreachable: {e}")
        return False


class ConnectionConfig(BaseModel):
    """One database backend.

    SQLite needs ``path`` ("memory" or ":memory:" for an in-memory database);
    PostgreSQL and MariaDB need ``endpoint`` and ``database``.
    """

    engine: DatabaseEngine = Field(description="Database engine")
    path: str | None = Field(default=None, description="[SQLite] Database file path")
    endpoint: TcpEndpoint | None = Field(default=None, description="[TCP engines] Server")
    database: str | None = Field(default=None, description="[TCP engines] Database name")
    username: str | None = Field(default=None, description="[TCP engines] Login user")
    password: str | None = Field(default=None, description="[TCP engines] Login password")
    timeout: int = Field(
        default=30,
        ge=1,
        le=3600,
        description="Driver timeout in seconds (busy timeout / statement timeout)",
    )
    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Engine specific options (sqlite_pragmas, sslmode, charset)",
    )

    _handle: DatabaseBackendBase | None = PrivateAttr(default=None)

    @model_validator(mode="after")
    def validate_location(self) -> ConnectionConfig:
        """Check the engine-specific required fields and fill in default ports."""
        if self.engine is DatabaseEngine.SQLITE:
            if not self.path:
                raise ValueError("sqlite requires 'path' parameter")
            return self
        if self.endpoint is None:
            raise ValueError(f"{self.engine.value} requires 'endpoint' parameter")
        if not self.database:
            raise ValueError(f"{self.engine.value} requires 'database' parameter")
        if self.endpoint.port is None:
            self.endpoint.port = DEFAULT_PORTS[self.engine]
        return self

    def describe(self) -> str:
        """Short human readable location (no credentials)."""
        if self.engine is DatabaseEngine.SQLITE:
            return f"sqlite:{self.path}"
        assert self.endpoint is not None
        return f"{self.engine.value}://{self.endpoint.host}:{self.endpoint.port}/{self.database}"

    def is_valid(self) -> bool:
        """Check that the backend is reachable and accepts a connection.

        TCP engines are probed with a short socket connect first, so an unreachable host
        costs at most ``endpoint.connect_timeout``. The handle opened by a successful
        check is kept for ``build_connection``.
        """
        if self._handle is not None and self._handle.is_connected:
            return True
        if self.endpoint is not None and not probe_endpoint(self.endpoint):
            return False
        try:
            self._handle = self._open_handle()
        except Exception as e:  # noqa: BLE001 - any connect failure means "not valid"
            logger.debug(f"Cannot connect to {self.describe()}: {e}")
            return False
        return True

    def build_connection(self) -> Connection:
        """Build a ``Connection``, reusing the handle opened by ``is_valid``.

        Raises:
            DatabaseError: If the driver cannot connect
            ImportError: If the engine's optional driver is not installed
        """
        handle = self._handle
        self._handle = None
        if handle is None or not handle.is_connected:
            try:
                handle = self._open_handle()
            except DriverError as e:
                raise error_from_driver(e) from e
        return Connection(handle)

    def _open_handle(self) -> DatabaseBackendBase:
        handle = backend_for(self.engine)
        handle.connect(self)
        return handle


class PoolConfig(BaseModel):
    """Root pool configuration model."""

    selection: SelectionMode = Field(
        default=SelectionMode.RANDOM,
        description="Order in which a tag's candidates are tried",
    )
    tags: dict[str, list[ConnectionConfig]] = Field(
        default_factory=dict,
        description="Candidate connection configs per tag",
    )


# ===========================================================================
# Configuration Loader
# ===========================================================================


class PoolConfigLoader:
    """Loader for pool configuration from a YAML file.

    Usage:
        ```python
        loader = PoolConfigLoader()
        pool = build_pool(loader.load_config())
        connection = pool.get_connection("replica")
        ```
    """

    ENV_VAR = "DBKIT_POOL_CONFIG"

    def __init__(self, config_path: str | Path | None = None):
        """Initialize config loader with optional explicit path.

        Args:
            config_path: Explicit path to config file (optional).
                If not provided, uses environment variable or standard location.
        """
        self._config: PoolConfig | None = None
        self._explicit_path = Path(config_path) if config_path else None

    def get_config_path(self) -> Path | None:
        """Pick the pool config file to load.

        Only the highest-priority source is consulted. A path given explicitly or through
        DBKIT_POOL_CONFIG that names no file is reported and resolves to None instead of
        falling back to ~/.dbkit/pool.yml.
        """
        source, candidate = self._candidate_path()
        if candidate.is_file():
            return candidate
        if source is not None:
            logger.warning(f"Pool config file named by {source} not found: {candidate}")
        return None

    def _candidate_path(self) -> tuple[str | None, Path]:
        """Return (source name, path); the source is None for the default location."""
        if self._explicit_path is not None:
            return "config_path", self._explicit_path
        from_env = os.environ.get(self.ENV_VAR)
        if from_env:
            return self.ENV_VAR, Path(from_env).expanduser()
        return None, Path.home() / ".dbkit" / "pool.yml"

    def load_config(self) -> PoolConfig:
        """Load and validate the pool configuration (cached after the first call).

        Returns:
            Validated PoolConfig (empty when no config file is found)

        Raises:
            ConfigurationError: If the file is not valid YAML or fails validation
        """
        if self._config is not None:
            return self._config

        config_path = self.get_config_path()
        if config_path is None:
            logger.info("No pool config file found. Using an empty pool configuration.")
            self._config = PoolConfig()
            return self._config

        logger.info(f"Loading pool config from: {config_path}")
        try:
            with open(config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
            if raw_config is None:
                raw_config = {}
            if not isinstance(raw_config, dict):
                raise ValueError("Config file must contain a YAML dictionary")
            config = PoolConfig(**raw_config)
        except (yaml.YAMLError, ValidationError, ValueError) as e:
            raise ConfigurationError(f"Failed to load pool config from {config_path}: {e}") from e

        logger.info(
            f"Loaded pool config: {len(config.tags)} tags, "
            f"{sum(len(entries) for entries in config.tags.values())} connections"
        )
        self._config = config
        return config


def build_pool(config: PoolConfig) -> ConnectionPool:
    """Create a ``ConnectionPool`` holding one connection per reachable config entry.

    Entries that fail ``is_valid`` are logged and skipped, so a tag whose every entry is
    unreachable ends up with no candidates.
    """
    pool = ConnectionPool(config.selection)
    for tag, entries in config.tags.items():
        for entry in entries:
            if not entry.is_valid():
                logger.warning(
                    f"Skipping unreachable connection {entry.describe()} for tag '{tag}'"
                )
                continue
            pool.add_connection(entry.build_connection(), tag)
    return pool


__all__ = [
    "DEFAULT_PORTS",
    "ConnectionConfig",
    "PoolConfig",
    "PoolConfigLoader",
    "TcpEndpoint",
    "build_pool",
    "probe_endpoint",
]
