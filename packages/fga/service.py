"""Embedded authorization service handle.

``EmbeddedFGA`` composes the datastore, the migration hook, the engine and
store/model provisioning into a single handle that is either fully ready
or fails during ``start()``. Startup runs once:

    UNCONFIGURED -> CONNECTING -> AWAITING_DATASTORE_READY [-> MIGRATING]
    -> STARTING_ENGINE -> AWAITING_ENGINE_READY -> PROVISIONING -> READY

Any failure on the way releases whatever was already opened and leaves the
handle CLOSED. ``close()`` is idempotent and moves any state to CLOSED.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from packages.fga.config import FGASettings
from packages.fga.datastore import Datastore, connect
from packages.fga.engine import LocalEngine
from packages.fga.errors import (
    AlreadyClosedError,
    DatastoreUnreachableError,
    EmbeddedFGAError,
    NotReadyError,
)
from packages.fga.migrate import maybe_migrate, run_migrations
from packages.fga.models import (
    Fact,
    HandleState,
    ModelDescriptor,
    ReadinessReason,
    ReadinessReport,
    StoreDescriptor,
)
from packages.fga.provisioning import ensure_model, ensure_store
from packages.fga.readiness import wait_until_ready
from packages.fga.writer import FactWriter

MigrationRunner = Callable[[str, str, str], None]


def _default_logger() -> logging.LoggerAdapter:
    return logging.LoggerAdapter(logging.getLogger(__name__), {"component": "embeddedfga"})


class EmbeddedFGA:
    """In-process authorization service bound to one store and one model.

    Usage:
        with EmbeddedFGA.open(FGASettings.from_env()) as fga:
            fga.write([Fact(object="document:1", relation="editor", user="user:alice")])
            fga.check(Fact(object="document:1", relation="viewer", user="user:alice"))

    ``check``, ``batch_check`` and ``write`` may be called from several
    threads once the handle is READY. ``start`` and ``close`` must not race
    each other.
    """

    def __init__(
        self,
        settings: FGASettings,
        *,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        migration_runner: MigrationRunner = run_migrations,
    ):
        self.settings = settings
        self._log = logger or _default_logger()
        self._run_migrations = migration_runner

        self._state = HandleState.UNCONFIGURED
        self._state_lock = threading.Lock()

        self._datastore: Datastore | None = None
        self._engine: LocalEngine | None = None
        self._writer: FactWriter | None = None
        self._store: StoreDescriptor | None = None
        self._model: ModelDescriptor | None = None

    @classmethod
    def open(cls, settings: FGASettings | None = None, **kwargs) -> "EmbeddedFGA":
        """Create a handle and run startup; settings default to the environment."""
        handle = cls(settings if settings is not None else FGASettings.from_env(), **kwargs)
        handle.start()
        return handle

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is HandleState.READY

    @property
    def store(self) -> StoreDescriptor | None:
        """The provisioned store, once READY."""
        return self._store

    @property
    def model(self) -> ModelDescriptor | None:
        """The active authorization model, once READY."""
        return self._model

    @property
    def engine(self) -> LocalEngine | None:
        return self._engine

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Bring the handle to READY.

        Raises:
            ConfigInvalidError: Before any I/O, for missing or bad settings
            DatastoreUnreachableError: If no datastore driver could be opened
            ReadinessTimeoutError: If the datastore or engine never became ready
            BackendConnectionError: If a readiness probe failed hard
            MigrationFailedError: If the schema migration failed
            ModelParseError: If the authorization model DSL is malformed
            ProvisioningError: If the store or model could not be set up
            WriteConflictError, EngineRequestError: If seeding failed
            AlreadyClosedError: If the handle was already closed
        """
        with self._state_lock:
            if self._state is HandleState.CLOSED:
                raise AlreadyClosedError()
            if self._state is not HandleState.UNCONFIGURED:
                raise EmbeddedFGAError(
                    f"handle already started (state: {self._state.value})", "already_started"
                )
            self._state = HandleState.CONNECTING

        try:
            self._bootstrap()
        except BaseException as e:
            self._log.error("Embedded authorization startup failed: %s", e)
            with self._state_lock:
                self._state = HandleState.CLOSED
            self._release()
            raise

    def close(self) -> None:
        """Release the engine and datastore. Safe to call more than once."""
        with self._state_lock:
            if self._state is HandleState.CLOSED:
                return
            self._state = HandleState.CLOSED
        self._release()
        self._log.info("Embedded authorization service closed")

    def __enter__(self) -> "EmbeddedFGA":
        if self._state is HandleState.UNCONFIGURED:
            self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        store = self._store.name if self._store else None
        return f"EmbeddedFGA(state={self._state.value!r}, store={store!r})"

    # =========================================================================
    # Operations
    # =========================================================================

    def check(self, fact: Fact) -> bool:
        """Whether ``fact.user`` has ``fact.relation`` on ``fact.object``."""
        return self._ready_writer().check(fact)

    def batch_check(self, facts: list[Fact]) -> list[bool]:
        """Check several facts; answers are in input order."""
        return self._ready_writer().batch_check(facts)

    def write(self, facts: list[Fact], ignore_existing: bool = False) -> None:
        """Write ``facts`` as one atomic batch.

        Raises:
            EmptyInputError: If ``facts`` is empty
            WriteConflictError: If a fact exists and ``ignore_existing`` is False
            EngineRequestError: If the engine rejected the write
        """
        self._ready_writer().write(facts, ignore_existing=ignore_existing)

    # =========================================================================
    # Internals
    # =========================================================================

    def _ready_writer(self) -> FactWriter:
        state = self._state
        if state is HandleState.CLOSED:
            raise AlreadyClosedError()
        writer = self._writer
        if state is not HandleState.READY or writer is None:
            raise NotReadyError(state.value)
        return writer

    def _set_state(self, state: HandleState) -> None:
        with self._state_lock:
            if self._state is HandleState.CLOSED:
                raise AlreadyClosedError()
            self._state = state
        self._log.debug("State: %s", state.value)

    def _bootstrap(self) -> None:
        settings = self.settings
        dsl = settings.validate_for_bootstrap()
        poll_interval = settings.poll_interval.total_seconds()

        try:
            datastore = connect(settings.datastore_uri, settings.datastore_config())
        except (SQLAlchemyError, ImportError) as e:
            raise DatastoreUnreachableError(str(e)) from e
        self._datastore = datastore

        self._set_state(HandleState.AWAITING_DATASTORE_READY)
        wait_until_ready(
            datastore.is_ready,
            settings.datastore_ready_timeout.total_seconds(),
            poll_interval,
            target="datastore",
            on_not_ready=lambda report: self._migrate_if_needed(datastore, report),
        )

        self._set_state(HandleState.STARTING_ENGINE)
        self._engine = LocalEngine(settings.engine_options(datastore))

        self._set_state(HandleState.AWAITING_ENGINE_READY)
        wait_until_ready(
            self._engine_readiness,
            settings.engine_ready_timeout.total_seconds(),
            poll_interval,
            target="engine",
        )

        self._set_state(HandleState.PROVISIONING)
        self._store = ensure_store(self._engine, settings.store_name, log=self._log)
        self._model = ensure_model(
            self._engine,
            self._store.id,
            dsl,
            name=settings.model_name,
            drift_policy=settings.model_drift_policy,
            log=self._log,
        )
        writer = FactWriter(self._engine, self._store.id, self._model.id, log=self._log)

        if settings.seed_initial_tuples and settings.initial_tuples:
            writer.write(settings.initial_tuples, ignore_existing=True)

        self._writer = writer
        self._set_state(HandleState.READY)
        self._log.info(
            "Embedded authorization ready (store=%s, model=%s)", self._store.id, self._model.id
        )

    def _migrate_if_needed(self, datastore: Datastore, report: ReadinessReport) -> bool:
        def run() -> None:
            self._set_state(HandleState.MIGRATING)
            self._run_migrations(datastore.engine_kind, datastore.uri, self.settings.schema_revision)
            self._set_state(HandleState.AWAITING_DATASTORE_READY)

        return maybe_migrate(report, run)

    def _engine_readiness(self) -> ReadinessReport:
        if self._engine is not None and self._engine.is_ready():
            return ReadinessReport.ready()
        return ReadinessReport.not_ready(ReadinessReason.UNKNOWN, "engine is not ready yet")

    def _release(self) -> None:
        self._writer = None
        engine, datastore = self._engine, self._datastore
        self._engine = None
        self._datastore = None
        if engine is not None:
            engine.close()
        elif datastore is not None:
            datastore.close()
