# src/mockmongo/config.py
"""Settings for the interception layer and its ephemeral mongod.

Uses Pydantic for validation with a frozen (immutable) model.
Precedence: explicit keyword overrides > MOCKMONGO_* environment > defaults.
"""

from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from mockmongo.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PORT = 27017
DEFAULT_BIND_ADDRESS = "127.0.0.1"
DEFAULT_STORAGE_DIRECTORY = Path(tempfile.gettempdir()) / ".mockmongoTempDB"

# Environment variable -> settings field.
ENVIRONMENT_FIELDS: dict[str, str] = {
    "MOCKMONGO_VERSION": "version",
    "MOCKMONGO_STORAGE_ENGINE": "storage_engine",
    "MOCKMONGO_BIND_ADDRESS": "bind_address",
    "MOCKMONGO_PORT": "port",
    "MOCKMONGO_STORAGE_DIRECTORY": "storage_directory",
    "MOCKMONGO_BINARY": "binary",
    "MOCKMONGO_LOCAL_BUILD": "local_build",
}

# Compatibility table: first row whose minimum version is satisfied wins.
# mongod 3.2 renamed the test-only in-memory engine.
STORAGE_ENGINE_TABLE: tuple[tuple[tuple[int, int], str], ...] = (
    ((3, 2), "ephemeralForTest"),
    ((0, 0), "inMemoryExperiment"),
)

_VERSION_PATTERN = re.compile(r"^v?(\d+)\.(\d+)")


def parse_version(version: str) -> tuple[int, int]:
    """Parse the (major, minor) pair out of a mongod version string.

    Raises:
        ValueError: If the string does not start with ``major.minor``
    """
    match = _VERSION_PATTERN.match(version.strip())
    if match is None:
        raise ValueError(f"Unrecognised mongod version: {version!r}")
    return int(match.group(1)), int(match.group(2))


def storage_engine_for_version(version: str) -> str:
    """Pick the in-memory storage engine keyword a mongod version understands."""
    parsed = parse_version(version)
    for minimum, engine in STORAGE_ENGINE_TABLE:
        if parsed >= minimum:
            return engine
    raise ValueError(f"No storage engine known for mongod {version}")  # pragma: no cover


class InterceptionSettings(BaseModel):
    """Configuration for intercepted connections and the ephemeral mongod."""

    model_config = {"frozen": True, "extra": "forbid"}

    version: str | None = Field(
        default=None,
        description="mongod version; queried from the binary when unset",
    )
    storage_engine: str | None = Field(
        default=None,
        description="Storage engine keyword; derived from the version when unset",
    )
    bind_address: str = Field(
        default=DEFAULT_BIND_ADDRESS,
        description="Address the ephemeral mongod binds to and callers are redirected to",
    )
    port: int = Field(
        default=DEFAULT_PORT,
        gt=0,
        le=65535,
        description="First port tried; incremented on contention",
    )
    storage_directory: Path = Field(
        default=DEFAULT_STORAGE_DIRECTORY,
        description="Base directory; each port gets its own subdirectory",
    )
    binary: Path | None = Field(
        default=None,
        description="Explicit mongod binary; PATH lookup when unset",
    )
    local_build: Path | None = Field(
        default=None,
        description="Locally built mongod, for development of mockmongo itself",
    )
    max_port_attempts: int | None = Field(
        default=None,
        gt=0,
        description="Cap on port-contention retries; unbounded when unset",
    )
    startup_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait for mongod to accept connections",
    )
    shutdown_grace: float = Field(
        default=5.0,
        gt=0,
        description="Seconds mongod gets to exit after SIGTERM before it is killed",
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, value: str | None) -> str | None:
        if value is not None:
            parse_version(value)
        return value

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> InterceptionSettings:
        """Build settings from MOCKMONGO_* variables, then apply overrides.

        Empty variables are ignored.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for variable, field_name in ENVIRONMENT_FIELDS.items():
            raw = env.get(variable)
            if raw:
                values[field_name] = raw
        if "local_build" in values:
            logger.warning(
                "Using a locally built mongod; this option is for development only",
                local_build=values["local_build"],
            )
        values.update(overrides)
        return cls(**values)

    def resolve_storage_engine(self, version: str) -> str:
        """Storage engine to launch with: explicit setting, else the table."""
        if self.storage_engine is not None:
            return self.storage_engine
        return storage_engine_for_version(self.version or version)

    def storage_directory_for(self, port: int) -> Path:
        """Per-port data directory, created on demand and left in place afterwards."""
        path = self.storage_directory / str(port)
        path.mkdir(parents=True, exist_ok=True)
        return path
