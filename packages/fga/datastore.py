"""SQL datastore for stores, authorization models and tuples.

Wraps a SQLAlchemy engine (sqlite or postgres). The datastore reports its
own readiness, including whether the schema must be migrated first, and
persists everything the engine needs. It holds the connection pool that
all engine calls share.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Any, Iterable

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    insert,
    select,
    text,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from alembic.runtime.migration import MigrationContext

from packages.fga.migrate import VERSION_TABLE, required_revision, revision_satisfies
from packages.fga.models import (
    Fact,
    ModelDescriptor,
    ReadinessReason,
    ReadinessReport,
    StoreDescriptor,
)

logger = logging.getLogger(__name__)

metadata = MetaData()

stores_table = Table(
    "fga_store",
    metadata,
    Column("id", String(26), primary_key=True),
    Column("name", String(64), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("ix_fga_store_name", "name"),
)

models_table = Table(
    "fga_authorization_model",
    metadata,
    Column("id", String(26), primary_key=True),
    Column("store_id", String(26), ForeignKey("fga_store.id"), nullable=False),
    Column("name", String(64), nullable=False, server_default="default"),
    Column("schema_version", String(8), nullable=False),
    Column("schema_source", Text(), nullable=False, server_default=""),
    Column("schema_hash", String(64), nullable=False, server_default=""),
    Column("serialized", Text(), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_fga_authorization_model_store_id", "store_id"),
)

tuples_table = Table(
    "fga_tuple",
    metadata,
    Column("store_id", String(26), nullable=False),
    Column("object_type", String(128), nullable=False),
    Column("object_id", String(255), nullable=False),
    Column("relation", String(50), nullable=False),
    Column("subject", String(512), nullable=False),
    Column("inserted_at", DateTime(timezone=True), nullable=False),
    PrimaryKeyConstraint(
        "store_id", "object_type", "object_id", "relation", "subject", name="pk_fga_tuple"
    ),
    Index("ix_fga_tuple_subject", "store_id", "subject"),
)


@dataclass
class DatastoreConfig:
    """Connection settings for the datastore.

    Attributes:
        max_open_conns: Upper bound on pooled connections
        target_revision: Schema revision the datastore must be at to be ready
        echo: Log every SQL statement
    """

    max_open_conns: int = 10
    target_revision: str = "head"
    echo: bool = False


def normalize_uri(uri: str) -> str:
    """Turn a bare file path into a sqlite URL; pass URLs through."""
    if "://" in uri:
        return uri
    return f"sqlite:///{uri}"


def is_memory_uri(uri: str) -> bool:
    url = make_url(normalize_uri(uri))
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


class Datastore:
    """SQL-backed persistence for the engine."""

    def __init__(self, engine: Engine, uri: str, config: DatastoreConfig):
        self._engine = engine
        self.uri = uri
        self.config = config

    @property
    def engine_kind(self) -> str:
        """Dialect name, e.g. ``sqlite`` or ``postgresql``."""
        return self._engine.dialect.name

    def is_ready(self) -> ReadinessReport:
        """Probe connectivity and schema revision.

        Connection failures are reported as not ready (the database may still
        be starting). Any other database error is raised to the caller.
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                current = MigrationContext.configure(
                    conn, opts={"version_table": VERSION_TABLE}
                ).get_current_revision()
        except OperationalError as e:
            return ReadinessReport.not_ready(ReadinessReason.UNREACHABLE, str(e.orig or e))

        required = required_revision(self.config.target_revision)
        if not revision_satisfies(current, required):
            return ReadinessReport.not_ready(
                ReadinessReason.SCHEMA_MISSING,
                f"datastore requires migrations: at revision '{current or 0}', "
                f"but requires '{required}'",
            )
        return ReadinessReport.ready()

    # =========================================================================
    # Stores
    # =========================================================================

    def list_stores(self, name: str | None = None) -> list[StoreDescriptor]:
        query = select(stores_table).order_by(stores_table.c.created_at, stores_table.c.id)
        if name is not None:
            query = query.where(stores_table.c.name == name)
        with self._engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [StoreDescriptor(id=row["id"], name=row["name"], created_at=row["created_at"]) for row in rows]

    def get_store(self, store_id: str) -> StoreDescriptor | None:
        query = select(stores_table).where(stores_table.c.id == store_id)
        with self._engine.connect() as conn:
            row = conn.execute(query).mappings().first()
        if row is None:
            return None
        return StoreDescriptor(id=row["id"], name=row["name"], created_at=row["created_at"])

    def insert_store(self, store_id: str, name: str) -> StoreDescriptor:
        now = datetime.now(UTC)
        with self._engine.begin() as conn:
            conn.execute(
                insert(stores_table).values(
                    id=store_id, name=name, created_at=now, updated_at=now
                )
            )
        return StoreDescriptor(id=store_id, name=name, created_at=now)

    # =========================================================================
    # Authorization models
    # =========================================================================

    def list_models(self, store_id: str) -> list[ModelDescriptor]:
        """Models of a store, newest first."""
        query = (
            select(models_table)
            .where(models_table.c.store_id == store_id)
            .order_by(models_table.c.created_at.desc(), models_table.c.id.desc())
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [self._row_to_model(row) for row in rows]

    def read_model_json(self, store_id: str, model_id: str) -> str | None:
        query = select(models_table.c.serialized).where(
            models_table.c.store_id == store_id, models_table.c.id == model_id
        )
        with self._engine.connect() as conn:
            return conn.execute(query).scalar_one_or_none()

    def insert_model(
        self,
        model_id: str,
        store_id: str,
        name: str,
        schema_version: str,
        schema_source: str,
        schema_hash: str,
        serialized: str,
    ) -> ModelDescriptor:
        now = datetime.now(UTC)
        with self._engine.begin() as conn:
            conn.execute(
                insert(models_table).values(
                    id=model_id,
                    store_id=store_id,
                    name=name,
                    schema_version=schema_version,
                    schema_source=schema_source,
                    schema_hash=schema_hash,
                    serialized=serialized,
                    created_at=now,
                )
            )
        return ModelDescriptor(
            id=model_id,
            name=name,
            store_id=store_id,
            schema_version=schema_version,
            schema_source=schema_source,
            schema_hash=schema_hash,
            created_at=now,
        )

    def _row_to_model(self, row: Any) -> ModelDescriptor:
        return ModelDescriptor(
            id=row["id"],
            name=row["name"],
            store_id=row["store_id"],
            schema_version=row["schema_version"],
            schema_source=row["schema_source"],
            schema_hash=row["schema_hash"],
            created_at=row["created_at"],
        )

    # =========================================================================
    # Tuples
    # =========================================================================

    def read_subjects(self, store_id: str, object_type: str, object_id: str, relation: str) -> list[str]:
        """Subjects directly related to ``object_type:object_id`` by ``relation``."""
        query = select(tuples_table.c.subject).where(
            tuples_table.c.store_id == store_id,
            tuples_table.c.object_type == object_type,
            tuples_table.c.object_id == object_id,
            tuples_table.c.relation == relation,
        )
        with self._engine.connect() as conn:
            return list(conn.execute(query).scalars())

    def write_tuples(self, store_id: str, facts: Iterable[Fact]) -> None:
        """Insert all facts in one transaction.

        Raises:
            sqlalchemy.exc.IntegrityError: If any fact already exists.
        """
        now = datetime.now(UTC)
        rows = [
            {
                "store_id": store_id,
                "object_type": fact.object_type,
                "object_id": fact.object_id,
                "relation": fact.relation,
                "subject": fact.user,
                "inserted_at": now,
            }
            for fact in facts
        ]
        with self._engine.begin() as conn:
            conn.execute(insert(tuples_table), rows)

    def close(self) -> None:
        """Release all pooled connections."""
        self._engine.dispose()
        logger.debug("Datastore connection pool disposed")


def connect(uri: str, config: DatastoreConfig | None = None) -> Datastore:
    """Open a datastore driver for ``uri``.

    The SQLAlchemy engine connects lazily; this only fails for an invalid
    URL or a missing database driver.
    """
    config = config or DatastoreConfig()
    url = make_url(normalize_uri(uri))

    kwargs: dict[str, Any] = {"echo": config.echo, "pool_pre_ping": True}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = config.max_open_conns
        kwargs["max_overflow"] = 0

    engine = create_engine(url, **kwargs)
    logger.debug("Datastore driver created for %s", url.render_as_string(hide_password=True))
    return Datastore(engine, url.render_as_string(hide_password=False), config)
