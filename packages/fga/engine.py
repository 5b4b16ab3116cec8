"""Embedded authorization engine.

Answers checks and accepts writes for stores and authorization models
persisted in a ``Datastore``. All evaluation limits are explicit
``EngineOptions`` fields passed at construction time.

Usage:
    engine = LocalEngine(EngineOptions(datastore=datastore))
    store = engine.create_store("acme")
    model = engine.write_model(store.id, parse_dsl(dsl))
    engine.write(store.id, model.id, [Fact(object="document:1", relation="editor", user="user:alice")])
    engine.check(store.id, model.id, Fact(object="document:1", relation="viewer", user="user:alice"))
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy.exc import IntegrityError, OperationalError
from ulid import ULID

from packages.fga.datastore import Datastore
from packages.fga.errors import EngineError, EngineErrorCode
from packages.fga.models import Fact, ModelDescriptor, StoreDescriptor
from packages.fga.resolver import CheckResolver
from packages.fga.schema import AuthorizationSchema

logger = logging.getLogger(__name__)

MAX_STORE_NAME_LENGTH = 64


@dataclass
class EngineOptions:
    """Engine construction options.

    Attributes:
        datastore: Datastore holding stores, models and tuples
        cache_ttl: Seconds a check result stays cached
        check_cache_enabled: Cache check results at all
        cache_max_entries: Upper bound on cached check results
        max_resolution_depth: Nesting limit for a single check
        max_tuples_per_write: Largest accepted write batch
        max_checks_per_batch: Largest accepted batch check
    """

    datastore: Datastore
    cache_ttl: float = 300.0
    check_cache_enabled: bool = True
    cache_max_entries: int = 10000
    max_resolution_depth: int = 25
    max_tuples_per_write: int = 100
    max_checks_per_batch: int = 5000


class CheckCache:
    """Thread-safe TTL cache of check results, invalidated per store.

    Each store has a generation that ``invalidate_store`` bumps. A result
    computed under an older generation is not cached.
    """

    def __init__(self, ttl_seconds: float, max_entries: int = 10000):
        self.ttl = ttl_seconds
        self.max_entries = max_entries
        self._entries: dict[tuple[str, ...], tuple[bool, float]] = {}
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: tuple[str, ...]) -> bool | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            allowed, expires_at = entry
            if expires_at < time.monotonic():
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return allowed

    def generation(self, store_id: str) -> int:
        with self._lock:
            return self._generations.get(store_id, 0)

    def set(self, key: tuple[str, ...], allowed: bool, generation: int | None = None) -> None:
        with self._lock:
            if generation is not None and generation != self._generations.get(key[0], 0):
                return
            if len(self._entries) >= self.max_entries:
                self._evict()
            self._entries[key] = (allowed, time.monotonic() + self.ttl)

    def invalidate_store(self, store_id: str) -> None:
        with self._lock:
            self._generations[store_id] = self._generations.get(store_id, 0) + 1
            stale = [key for key in self._entries if key[0] == store_id]
            for key in stale:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        now = time.monotonic()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at < now]
        for key in expired:
            del self._entries[key]

        # Still full: drop the entries closest to expiry
        if len(self._entries) >= self.max_entries:
            by_expiry = sorted(self._entries.items(), key=lambda item: item[1][1])
            for key, _ in by_expiry[: max(1, len(by_expiry) // 10)]:
                del self._entries[key]


class LocalEngine:
    """In-process authorization engine backed by a SQL datastore."""

    def __init__(self, options: EngineOptions):
        self.options = options
        self._datastore = options.datastore
        self._cache = (
            CheckCache(options.cache_ttl, options.cache_max_entries)
            if options.check_cache_enabled
            else None
        )
        self._resolvers: dict[tuple[str, str], CheckResolver] = {}
        self._lock = threading.Lock()
        self._closed = False

        logger.info(
            "Engine initialized (cache_ttl=%.0fs, max_resolution_depth=%d)",
            options.cache_ttl,
            options.max_resolution_depth,
        )

    @property
    def cache(self) -> CheckCache | None:
        return self._cache

    def is_ready(self) -> bool:
        """Whether the engine can serve requests."""
        if self._closed:
            return False
        return self._datastore.is_ready().is_ready

    # =========================================================================
    # Stores and models
    # =========================================================================

    def list_stores(self, name: str | None = None) -> list[StoreDescriptor]:
        """Stores in creation order, optionally filtered by exact name."""
        self._ensure_open()
        with self._datastore_errors("list stores"):
            return self._datastore.list_stores(name)

    def create_store(self, name: str) -> StoreDescriptor:
        self._ensure_open()
        if not name or len(name) > MAX_STORE_NAME_LENGTH:
            raise EngineError(
                f"store name must be 1-{MAX_STORE_NAME_LENGTH} characters",
                EngineErrorCode.INVALID_WRITE_INPUT,
            )
        with self._datastore_errors("create store"):
            store = self._datastore.insert_store(str(ULID()), name)
        logger.debug("Store created: %s (%s)", store.name, store.id)
        return store

    def list_models(self, store_id: str) -> list[ModelDescriptor]:
        """Authorization models of a store, newest first."""
        with self._datastore_errors("read authorization models"):
            self._require_store(store_id)
            return self._datastore.list_models(store_id)

    def write_model(
        self,
        store_id: str,
        schema: AuthorizationSchema,
        *,
        name: str = "default",
        source: str = "",
    ) -> ModelDescriptor:
        with self._datastore_errors("write authorization model"):
            self._require_store(store_id)
            model = self._datastore.insert_model(
                model_id=str(ULID()),
                store_id=store_id,
                name=name,
                schema_version=schema.schema_version,
                schema_source=source,
                schema_hash=schema.digest(),
                serialized=schema.model_dump_json(),
            )
        logger.debug("Authorization model written: %s (store %s)", model.id, store_id)
        return model

    # =========================================================================
    # Check and write
    # =========================================================================

    def check(self, store_id: str, model_id: str, fact: Fact) -> bool:
        """Whether ``fact.user`` has ``fact.relation`` on ``fact.object``."""
        self._ensure_open()
        key = (store_id, model_id, fact.object, fact.relation, fact.user)
        generation = None
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
            generation = self._cache.generation(store_id)

        resolver = self._resolver(store_id, model_id)
        with self._datastore_errors("check"):
            allowed = resolver.check(fact.object, fact.relation, fact.user)

        if self._cache is not None:
            self._cache.set(key, allowed, generation)
        return allowed

    def batch_check(self, store_id: str, model_id: str, facts: list[Fact]) -> list[bool]:
        if len(facts) > self.options.max_checks_per_batch:
            raise EngineError(
                f"batch check exceeds the limit of {self.options.max_checks_per_batch} checks",
                EngineErrorCode.EXCEEDED_BATCH_LIMIT,
            )
        return [self.check(store_id, model_id, fact) for fact in facts]

    def write(self, store_id: str, model_id: str, facts: list[Fact]) -> None:
        """Write all facts atomically.

        Raises:
            EngineError: ``TUPLE_ALREADY_EXISTS`` if any fact is already
                stored (nothing is written), ``INVALID_WRITE_INPUT`` if a fact
                violates the model's type restrictions.
        """
        self._ensure_open()
        if len(facts) > self.options.max_tuples_per_write:
            raise EngineError(
                f"write exceeds the limit of {self.options.max_tuples_per_write} tuples",
                EngineErrorCode.EXCEEDED_BATCH_LIMIT,
            )

        schema = self._resolver(store_id, model_id).schema
        seen: set[Fact] = set()
        for fact in facts:
            if fact in seen:
                raise EngineError(
                    f"duplicate tuple in write: {fact}", EngineErrorCode.INVALID_WRITE_INPUT
                )
            seen.add(fact)
            self._validate_fact(schema, fact)

        try:
            with self._datastore_errors("write"):
                self._datastore.write_tuples(store_id, facts)
        except IntegrityError as e:
            raise EngineError(
                "cannot write a tuple which already exists",
                EngineErrorCode.TUPLE_ALREADY_EXISTS,
            ) from e

        if self._cache is not None:
            self._cache.invalidate_store(store_id)
        logger.debug("Wrote %d tuples to store %s", len(facts), store_id)

    def close(self) -> None:
        """Release cached state and the datastore connection pool."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._resolvers.clear()
        if self._cache is not None:
            self._cache.clear()
        self._datastore.close()
        logger.info("Engine closed")

    # =========================================================================
    # Internals
    # =========================================================================

    def _ensure_open(self) -> None:
        if self._closed:
            raise EngineError("engine is closed", EngineErrorCode.ENGINE_CLOSED)

    def _require_store(self, store_id: str) -> None:
        self._ensure_open()
        if self._datastore.get_store(store_id) is None:
            raise EngineError(f"store '{store_id}' not found", EngineErrorCode.STORE_NOT_FOUND)

    def _resolver(self, store_id: str, model_id: str) -> CheckResolver:
        with self._lock:
            resolver = self._resolvers.get((store_id, model_id))
        if resolver is not None:
            return resolver

        with self._datastore_errors("read authorization model"):
            serialized = self._datastore.read_model_json(store_id, model_id)
        if serialized is None:
            raise EngineError(
                f"authorization model '{model_id}' not found in store '{store_id}'",
                EngineErrorCode.MODEL_NOT_FOUND,
            )

        schema = AuthorizationSchema.model_validate_json(serialized)
        datastore = self._datastore

        def read_subjects(object_type: str, object_id: str, relation: str) -> list[str]:
            return datastore.read_subjects(store_id, object_type, object_id, relation)

        resolver = CheckResolver(schema, read_subjects, self.options.max_resolution_depth)
        with self._lock:
            self._resolvers[(store_id, model_id)] = resolver
        return resolver

    def _validate_fact(self, schema: AuthorizationSchema, fact: Fact) -> None:
        relation = schema.get_relation(fact.object_type, fact.relation)
        if relation is None:
            raise EngineError(
                f"relation '{fact.object_type}#{fact.relation}' not found",
                EngineErrorCode.INVALID_WRITE_INPUT,
            )
        if not relation.is_directly_assignable:
            raise EngineError(
                f"relation '{fact.object_type}#{fact.relation}' does not allow direct assignment",
                EngineErrorCode.INVALID_WRITE_INPUT,
            )

        for ref in relation.directly_related:
            if ref.type != fact.user_type:
                continue
            if fact.is_wildcard and ref.wildcard:
                return
            if fact.user_relation is not None and ref.relation == fact.user_relation:
                return
            if not fact.is_wildcard and fact.user_relation is None and not ref.wildcard and ref.relation is None:
                return

        raise EngineError(
            f"'{fact.user}' is not an allowed type restriction for "
            f"'{fact.object_type}#{fact.relation}'",
            EngineErrorCode.INVALID_WRITE_INPUT,
        )

    @contextmanager
    def _datastore_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except OperationalError as e:
            raise EngineError(
                f"{operation}: datastore unavailable: {e.orig or e}",
                EngineErrorCode.DATASTORE_UNAVAILABLE,
            ) from e
