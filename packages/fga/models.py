"""Data models for the embedded authorization service.

Facts, store and model descriptors, and readiness reports.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

_OBJECT_RE = re.compile(r"^[^:#\s]+:[^#\s]+$")
_USER_RE = re.compile(r"^[^:#\s]+:[^#\s]+(#[^:#\s]+)?$")
_RELATION_RE = re.compile(r"^[^:#@\s]+$")


class Fact(BaseModel):
    """A single access-control statement (relationship tuple).

    ``object`` is ``type:id``. ``user`` is ``type:id``, a wildcard
    ``type:*`` or a userset ``type:id#relation``. ``subject`` is accepted
    as an alias for ``user``.
    """

    model_config = ConfigDict(frozen=True)

    object: str = Field(description="Object in type:id form")
    relation: str = Field(description="Relation name")
    user: str = Field(
        validation_alias=AliasChoices("user", "subject"),
        description="Subject in type:id, type:* or type:id#relation form",
    )

    @field_validator("object")
    @classmethod
    def _validate_object(cls, value: str) -> str:
        if not _OBJECT_RE.match(value) or value.endswith(":*"):
            raise ValueError(f"object must be in type:id form, got {value!r}")
        return value

    @field_validator("relation")
    @classmethod
    def _validate_relation(cls, value: str) -> str:
        if not _RELATION_RE.match(value):
            raise ValueError(f"invalid relation {value!r}")
        return value

    @field_validator("user")
    @classmethod
    def _validate_user(cls, value: str) -> str:
        if not _USER_RE.match(value):
            raise ValueError(f"user must be in type:id or type:id#relation form, got {value!r}")
        if ":*#" in value:
            raise ValueError(f"wildcard users cannot carry a relation, got {value!r}")
        return value

    @property
    def object_type(self) -> str:
        return self.object.split(":", 1)[0]

    @property
    def object_id(self) -> str:
        return self.object.split(":", 1)[1]

    @property
    def user_type(self) -> str:
        return self.user.split(":", 1)[0]

    @property
    def user_relation(self) -> str | None:
        """Relation of a userset subject, ``None`` otherwise."""
        if "#" in self.user:
            return self.user.split("#", 1)[1]
        return None

    @property
    def is_wildcard(self) -> bool:
        return self.user.endswith(":*")

    def __str__(self) -> str:
        return f"{self.object}#{self.relation}@{self.user}"


class StoreDescriptor(BaseModel):
    """A named, isolated namespace of facts and models inside the engine."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Engine-assigned identifier, stable once created")
    name: str = Field(description="Human-chosen store name")
    created_at: datetime | None = None


class ModelDescriptor(BaseModel):
    """An authorization model written to a store."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Engine-assigned identifier")
    name: str = Field(default="default", description="Human-chosen model name")
    store_id: str = Field(description="Store the model belongs to")
    schema_version: str = "1.1"
    schema_source: str = Field(default="", description="DSL text the model was written from")
    schema_hash: str = Field(default="", description="Digest of the normalized schema")
    created_at: datetime | None = None


class ReadinessReason(str, Enum):
    """Why a probe reported (not) ready."""

    READY = "ready"
    SCHEMA_MISSING = "schema_missing"
    UNREACHABLE = "unreachable"
    UNKNOWN = "unknown"


class ReadinessReport(BaseModel):
    """Transient result of a readiness probe."""

    is_ready: bool
    reason: ReadinessReason = ReadinessReason.UNKNOWN
    message: str = ""

    @classmethod
    def ready(cls, message: str = "") -> "ReadinessReport":
        return cls(is_ready=True, reason=ReadinessReason.READY, message=message)

    @classmethod
    def not_ready(cls, reason: ReadinessReason, message: str) -> "ReadinessReport":
        return cls(is_ready=False, reason=reason, message=message)


class HandleState(str, Enum):
    """Lifecycle states of the embedded service handle."""

    UNCONFIGURED = "unconfigured"
    CONNECTING = "connecting"
    AWAITING_DATASTORE_READY = "awaiting_datastore_ready"
    MIGRATING = "migrating"
    STARTING_ENGINE = "starting_engine"
    AWAITING_ENGINE_READY = "awaiting_engine_ready"
    PROVISIONING = "provisioning"
    READY = "ready"
    CLOSED = "closed"
