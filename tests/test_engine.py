"""Tests for the local engine and its datastore."""

from __future__ import annotations

import time

import pytest

from packages.fga.datastore import Datastore, is_memory_uri, normalize_uri
from packages.fga.dsl import parse_dsl
from packages.fga.engine import CheckCache, EngineOptions, LocalEngine
from packages.fga.errors import EngineError, EngineErrorCode
from packages.fga.models import Fact


def fact(obj: str, relation: str, user: str) -> Fact:
    return Fact(object=obj, relation=relation, user=user)


@pytest.fixture
def provisioned(engine: LocalEngine, acme_model: str) -> tuple[str, str]:
    """Store and model ids for the acme model."""
    store = engine.create_store("acme")
    model = engine.write_model(store.id, parse_dsl(acme_model), source=acme_model)
    return store.id, model.id


class TestDatastoreUri:
    """Tests for datastore URI handling."""

    def test_bare_path_becomes_sqlite_url(self) -> None:
        assert normalize_uri("/var/lib/fga.db") == "sqlite:////var/lib/fga.db"
        assert normalize_uri("fga.db") == "sqlite:///fga.db"

    def test_urls_pass_through(self) -> None:
        uri = "postgresql://fga:secret@db:5432/fga"
        assert normalize_uri(uri) == uri

    def test_memory_detection(self) -> None:
        assert is_memory_uri("sqlite://")
        assert is_memory_uri("sqlite:///:memory:")
        assert not is_memory_uri("sqlite:///fga.db")
        assert not is_memory_uri("postgresql://db/fga")


class TestStoresAndModels:
    """Tests for store and model management."""

    def test_create_and_list_stores(self, engine: LocalEngine) -> None:
        first = engine.create_store("acme")
        engine.create_store("other")
        second = engine.create_store("acme")

        stores = engine.list_stores("acme")
        assert [s.id for s in stores] == [first.id, second.id]
        assert len(engine.list_stores()) == 3

    def test_store_ids_are_ulids(self, engine: LocalEngine) -> None:
        store = engine.create_store("acme")
        assert len(store.id) == 26

    def test_store_name_length(self, engine: LocalEngine) -> None:
        with pytest.raises(EngineError) as exc_info:
            engine.create_store("x" * 65)
        assert exc_info.value.code is EngineErrorCode.INVALID_WRITE_INPUT

    def test_write_and_list_models(self, engine: LocalEngine, acme_model: str) -> None:
        store = engine.create_store("acme")
        assert engine.list_models(store.id) == []

        model = engine.write_model(store.id, parse_dsl(acme_model), source=acme_model)
        models = engine.list_models(store.id)
        assert [m.id for m in models] == [model.id]
        assert models[0].schema_hash == parse_dsl(acme_model).digest()
        assert models[0].schema_source == acme_model

    def test_models_listed_newest_first(self, engine: LocalEngine, acme_model: str) -> None:
        store = engine.create_store("acme")
        older = engine.write_model(store.id, parse_dsl(acme_model))
        time.sleep(0.01)
        newer = engine.write_model(store.id, parse_dsl(acme_model))
        assert [m.id for m in engine.list_models(store.id)] == [newer.id, older.id]

    def test_unknown_store(self, engine: LocalEngine) -> None:
        with pytest.raises(EngineError) as exc_info:
            engine.list_models("01HZZZZZZZZZZZZZZZZZZZZZZZ")
        assert exc_info.value.code is EngineErrorCode.STORE_NOT_FOUND

    def test_unknown_model(self, engine: LocalEngine) -> None:
        store = engine.create_store("acme")
        with pytest.raises(EngineError) as exc_info:
            engine.check(store.id, "missing", fact("document:1", "viewer", "user:alice"))
        assert exc_info.value.code is EngineErrorCode.MODEL_NOT_FOUND


class TestWriteAndCheck:
    """Tests for tuple writes and checks."""

    def test_written_tuple_is_checked(self, engine: LocalEngine, provisioned) -> None:
        store_id, model_id = provisioned
        engine.write(store_id, model_id, [fact("document:1", "editor", "user:alice")])

        assert engine.check(store_id, model_id, fact("document:1", "editor", "user:alice"))
        assert engine.check(store_id, model_id, fact("document:1", "viewer", "user:alice"))
        assert not engine.check(store_id, model_id, fact("document:2", "viewer", "user:alice"))

    def test_duplicate_write_is_rejected_atomically(self, engine: LocalEngine, provisioned) -> None:
        """A batch containing an existing tuple writes nothing."""
        store_id, model_id = provisioned
        engine.write(store_id, model_id, [fact("document:1", "editor", "user:alice")])

        with pytest.raises(EngineError) as exc_info:
            engine.write(
                store_id,
                model_id,
                [fact("document:2", "viewer", "user:bob"), fact("document:1", "editor", "user:alice")],
            )
        assert exc_info.value.code is EngineErrorCode.TUPLE_ALREADY_EXISTS
        assert not engine.check(store_id, model_id, fact("document:2", "viewer", "user:bob"))

    def test_duplicate_within_batch(self, engine: LocalEngine, provisioned) -> None:
        store_id, model_id = provisioned
        same = fact("document:1", "editor", "user:alice")
        with pytest.raises(EngineError) as exc_info:
            engine.write(store_id, model_id, [same, same])
        assert exc_info.value.code is EngineErrorCode.INVALID_WRITE_INPUT

    @pytest.mark.parametrize(
        "bad",
        [
            ("document:1", "owner", "user:alice"),
            ("folder:1", "viewer", "user:alice"),
            ("document:1", "viewer", "app:auth"),
            ("document:1", "viewer", "user:*"),
        ],
    )
    def test_type_restrictions_enforced(self, engine: LocalEngine, provisioned, bad) -> None:
        store_id, model_id = provisioned
        with pytest.raises(EngineError) as exc_info:
            engine.write(store_id, model_id, [fact(*bad)])
        assert exc_info.value.code is EngineErrorCode.INVALID_WRITE_INPUT

    def test_write_batch_limit(self, datastore: Datastore, acme_model: str) -> None:
        engine = LocalEngine(EngineOptions(datastore=datastore, max_tuples_per_write=2))
        store = engine.create_store("acme")
        model = engine.write_model(store.id, parse_dsl(acme_model))
        facts = [fact(f"document:{i}", "editor", "user:alice") for i in range(3)]
        with pytest.raises(EngineError) as exc_info:
            engine.write(store.id, model.id, facts)
        assert exc_info.value.code is EngineErrorCode.EXCEEDED_BATCH_LIMIT

    def test_batch_check_preserves_order(self, engine: LocalEngine, provisioned) -> None:
        store_id, model_id = provisioned
        engine.write(store_id, model_id, [fact("document:1", "viewer", "user:bob")])
        answers = engine.batch_check(
            store_id,
            model_id,
            [
                fact("document:1", "editor", "user:bob"),
                fact("document:1", "viewer", "user:bob"),
                fact("app:auth", "admin", "user:bob"),
            ],
        )
        assert answers == [False, True, False]

    def test_write_invalidates_cached_denial(self, engine: LocalEngine, provisioned) -> None:
        """A cached deny does not outlive a write that grants access."""
        store_id, model_id = provisioned
        check = fact("document:1", "viewer", "user:carol")
        assert not engine.check(store_id, model_id, check)
        engine.write(store_id, model_id, [check])
        assert engine.check(store_id, model_id, check)

    def test_write_during_check_is_not_cached_stale(
        self, engine: LocalEngine, provisioned, monkeypatch
    ) -> None:
        """A deny computed before a concurrent write is not cached past it."""
        store_id, model_id = provisioned
        check = fact("document:1", "viewer", "user:carol")
        resolver = engine._resolver(store_id, model_id)
        evaluate = resolver.check

        def check_then_write(obj: str, relation: str, user: str) -> bool:
            allowed = evaluate(obj, relation, user)
            engine.write(store_id, model_id, [check])
            return allowed

        monkeypatch.setattr(resolver, "check", check_then_write)
        assert not engine.check(store_id, model_id, check)
        monkeypatch.undo()

        assert engine.check(store_id, model_id, check)

    def test_closed_engine_rejects_requests(self, engine: LocalEngine, provisioned) -> None:
        store_id, model_id = provisioned
        engine.close()
        engine.close()
        assert not engine.is_ready()
        with pytest.raises(EngineError) as exc_info:
            engine.check(store_id, model_id, fact("document:1", "viewer", "user:alice"))
        assert exc_info.value.code is EngineErrorCode.ENGINE_CLOSED


class TestCheckCache:
    """Tests for the check result cache."""

    def test_hit_and_miss(self) -> None:
        cache = CheckCache(ttl_seconds=60)
        key = ("store", "model", "document:1", "viewer", "user:alice")
        assert cache.get(key) is None
        cache.set(key, True)
        assert cache.get(key) is True
        assert (cache.hits, cache.misses) == (1, 1)

    def test_expiry(self) -> None:
        cache = CheckCache(ttl_seconds=0.01)
        key = ("store", "model", "document:1", "viewer", "user:alice")
        cache.set(key, False)
        time.sleep(0.05)
        assert cache.get(key) is None

    def test_invalidate_store(self) -> None:
        cache = CheckCache(ttl_seconds=60)
        cache.set(("s1", "m", "document:1", "viewer", "user:a"), True)
        cache.set(("s2", "m", "document:1", "viewer", "user:a"), True)
        cache.invalidate_store("s1")
        assert len(cache) == 1

    def test_result_from_older_generation_is_dropped(self) -> None:
        cache = CheckCache(ttl_seconds=60)
        key = ("s1", "m", "document:1", "viewer", "user:a")
        generation = cache.generation("s1")
        cache.invalidate_store("s1")
        cache.set(key, False, generation)
        assert cache.get(key) is None

        cache.set(key, False, cache.generation("s1"))
        assert cache.get(key) is False

    def test_bounded_size(self) -> None:
        cache = CheckCache(ttl_seconds=60, max_entries=10)
        for i in range(25):
            cache.set(("s", "m", f"document:{i}", "viewer", "user:a"), True)
        assert len(cache) <= 10
