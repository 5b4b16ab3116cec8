"""Embedded authorization configuration via pydantic-settings.

Settings are read from ``FGA_``-prefixed environment variables (or a
``.env`` file). ``initial_tuples`` is a JSON list of
``{"object", "relation", "user"}`` objects. Durations accept seconds,
ISO-8601 or Go-style strings such as ``"5m"`` or ``"1h30m"``.
"""

from __future__ import annotations

import re
from datetime import timedelta
from pathlib import Path
from typing import Any

from alembic.script.revision import RevisionError
from alembic.util import CommandError
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, SettingsError
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from packages.fga.datastore import Datastore, DatastoreConfig, is_memory_uri, normalize_uri
from packages.fga.engine import MAX_STORE_NAME_LENGTH, EngineOptions
from packages.fga.errors import ConfigInvalidError
from packages.fga.migrate import required_revision
from packages.fga.models import Fact
from packages.fga.provisioning import DriftPolicy

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_RE = re.compile(r"(?:\d+(?:\.\d+)?(?:ms|s|m|h))+")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> Any:
    """Parse Go-style duration strings (``"1m30s"``); pass anything else through."""
    if not isinstance(value, str) or not _DURATION_RE.fullmatch(value.strip()):
        return value
    seconds = sum(
        float(amount) * _DURATION_UNITS[unit] for amount, unit in _DURATION_PART_RE.findall(value)
    )
    return timedelta(seconds=seconds)


class FGASettings(BaseSettings):
    """Settings for the embedded authorization service."""

    model_config = SettingsConfigDict(
        env_prefix="FGA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Datastore
    datastore_uri: str = Field(default="", description="SQLAlchemy URL or sqlite file path")
    max_open_conns: int = 10
    schema_revision: str = "head"

    # Store and model
    store_name: str = ""
    model_source: str | None = Field(default=None, description="Inline authorization model DSL")
    model_file: Path | None = Field(default=None, description="Path to an authorization model DSL file")
    model_name: str = "default"
    model_drift_policy: DriftPolicy = DriftPolicy.REUSE

    # Seeding
    initial_tuples: list[Fact] = Field(default_factory=list)
    seed_initial_tuples: bool = True

    # Readiness
    datastore_ready_timeout: timedelta = timedelta(seconds=30)
    engine_ready_timeout: timedelta = timedelta(seconds=30)
    poll_interval: timedelta = timedelta(seconds=1)

    # Engine
    cache_ttl: timedelta = timedelta(minutes=5)
    check_cache_enabled: bool = True
    max_resolution_depth: int = 25
    max_tuples_per_write: int = 100
    max_checks_per_batch: int = 5000

    @field_validator(
        "datastore_ready_timeout",
        "engine_ready_timeout",
        "poll_interval",
        "cache_ttl",
        mode="before",
    )
    @classmethod
    def _parse_duration(cls, value: Any) -> Any:
        return parse_duration(value)

    @classmethod
    def from_env(cls, **overrides: Any) -> "FGASettings":
        """Load settings, reporting validation failures as ConfigInvalidError."""
        try:
            return cls(**overrides)
        except ValidationError as e:
            raise ConfigInvalidError(
                [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            ) from e
        except SettingsError as e:
            raise ConfigInvalidError(str(e)) from e

    def validate_for_bootstrap(self) -> str:
        """Check everything bootstrap needs, without any network I/O.

        Returns:
            The authorization model DSL text

        Raises:
            ConfigInvalidError: Listing every problem found
        """
        problems: list[str] = []

        if not self.datastore_uri.strip():
            problems.append("datastore_uri is required")
        else:
            try:
                make_url(normalize_uri(self.datastore_uri))
                if is_memory_uri(self.datastore_uri):
                    problems.append("in-memory sqlite datastores are not supported")
            except ArgumentError:
                problems.append(f"datastore_uri is not a valid URL: {self.datastore_uri!r}")

        if not self.store_name.strip():
            problems.append("store_name is required")
        elif len(self.store_name) > MAX_STORE_NAME_LENGTH:
            problems.append(f"store_name must be at most {MAX_STORE_NAME_LENGTH} characters")

        dsl = ""
        if self.model_source and self.model_source.strip():
            dsl = self.model_source
        elif self.model_file is not None:
            try:
                dsl = self.model_file.read_text(encoding="utf-8")
            except OSError as e:
                problems.append(f"cannot read model_file {str(self.model_file)!r}: {e.strerror or e}")
            else:
                if not dsl.strip():
                    problems.append(f"model_file {str(self.model_file)!r} is empty")
        else:
            problems.append("model_source or model_file is required")

        try:
            required_revision(self.schema_revision)
        except (CommandError, RevisionError) as e:
            problems.append(f"schema_revision {self.schema_revision!r} is unknown: {e}")

        if self.seed_initial_tuples and not self.initial_tuples:
            problems.append("initial_tuples must not be empty unless seed_initial_tuples is false")

        for name in ("datastore_ready_timeout", "engine_ready_timeout", "poll_interval"):
            if getattr(self, name).total_seconds() <= 0:
                problems.append(f"{name} must be positive")

        if problems:
            raise ConfigInvalidError(problems)
        return dsl

    def datastore_config(self) -> DatastoreConfig:
        return DatastoreConfig(
            max_open_conns=self.max_open_conns,
            target_revision=self.schema_revision,
        )

    def engine_options(self, datastore: Datastore) -> EngineOptions:
        return EngineOptions(
            datastore=datastore,
            cache_ttl=self.cache_ttl.total_seconds(),
            check_cache_enabled=self.check_cache_enabled,
            max_resolution_depth=self.max_resolution_depth,
            max_tuples_per_write=self.max_tuples_per_write,
            max_checks_per_batch=self.max_checks_per_batch,
        )
