"""Embedded fine-grained authorization.

Relationship-based access control (Zanzibar style) running in-process
against a SQL datastore. On startup the handle migrates the datastore
schema, provisions a named store and its authorization model, and seeds
initial relationship tuples.

Usage:
    from packages.fga import EmbeddedFGA, Fact, FGASettings

    settings = FGASettings(
        datastore_uri="sqlite:///fga.db",
        store_name="acme",
        model_file="model.fga",
        initial_tuples=[{"object": "app:auth", "relation": "admin", "user": "user:alice"}],
    )

    with EmbeddedFGA.open(settings) as fga:
        if fga.check(Fact(object="document:1", relation="viewer", user="user:alice")):
            # Allowed
            pass
"""

from packages.fga.config import FGASettings, parse_duration
from packages.fga.dsl import parse_dsl
from packages.fga.errors import (
    AlreadyClosedError,
    BackendConnectionError,
    ConfigInvalidError,
    DatastoreUnreachableError,
    EmbeddedFGAError,
    EmptyInputError,
    EngineError,
    EngineErrorCode,
    EngineRequestError,
    MigrationFailedError,
    ModelParseError,
    NotReadyError,
    ProvisioningError,
    ReadinessTimeoutError,
    WriteConflictError,
)
from packages.fga.models import (
    Fact,
    HandleState,
    ModelDescriptor,
    ReadinessReason,
    ReadinessReport,
    StoreDescriptor,
)
from packages.fga.provisioning import DriftPolicy
from packages.fga.service import EmbeddedFGA

__all__ = [
    "EmbeddedFGA",
    "FGASettings",
    "parse_duration",
    "parse_dsl",
    "DriftPolicy",
    "Fact",
    "HandleState",
    "ModelDescriptor",
    "ReadinessReason",
    "ReadinessReport",
    "StoreDescriptor",
    "EmbeddedFGAError",
    "AlreadyClosedError",
    "BackendConnectionError",
    "ConfigInvalidError",
    "DatastoreUnreachableError",
    "EmptyInputError",
    "EngineError",
    "EngineErrorCode",
    "EngineRequestError",
    "MigrationFailedError",
    "ModelParseError",
    "NotReadyError",
    "ProvisioningError",
    "ReadinessTimeoutError",
    "WriteConflictError",
]
