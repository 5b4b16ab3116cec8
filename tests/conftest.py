"""Shared fixtures for the embedded authorization tests."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from packages.fga import EmbeddedFGA, FGASettings
from packages.fga.datastore import Datastore, connect
from packages.fga.engine import EngineOptions, LocalEngine
from packages.fga.migrate import run_migrations

ACME_MODEL = """
model
  schema 1.1

type user

type document
  relations
    define viewer: [user] or editor
    define editor: [user]

type app
  relations
    define admin: [user]
"""

ACME_TUPLES = [
    {"object": "document:1", "relation": "editor", "user": "user:alice"},
    {"object": "app:auth", "relation": "admin", "user": "user:alice"},
]


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path of a fresh sqlite datastore file."""
    return tmp_path / "fga.db"


@pytest.fixture
def make_settings(db_path: Path):
    """Factory for settings pointing at the temporary datastore."""

    def factory(**overrides) -> FGASettings:
        values = {
            "datastore_uri": str(db_path),
            "store_name": "acme",
            "model_source": ACME_MODEL,
            "initial_tuples": ACME_TUPLES,
            "poll_interval": 0.05,
            "datastore_ready_timeout": 5,
            "engine_ready_timeout": 5,
        }
        values.update(overrides)
        return FGASettings(_env_file=None, **values)

    return factory


@pytest.fixture
def fga(make_settings) -> Iterator[EmbeddedFGA]:
    """A READY handle on the acme store."""
    handle = EmbeddedFGA.open(make_settings())
    yield handle
    handle.close()


@pytest.fixture
def datastore(db_path: Path) -> Iterator[Datastore]:
    """A migrated datastore."""
    store = connect(str(db_path))
    run_migrations(store.engine_kind, store.uri)
    yield store
    store.close()


@pytest.fixture
def engine(datastore: Datastore) -> Iterator[LocalEngine]:
    """An engine over the migrated datastore."""
    local = LocalEngine(EngineOptions(datastore=datastore))
    yield local
    local.close()


@pytest.fixture
def acme_model() -> str:
    """DSL of the document/app model."""
    return ACME_MODEL
