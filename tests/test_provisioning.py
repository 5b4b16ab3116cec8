"""Tests for store and authorization model provisioning."""

from __future__ import annotations

import logging

import pytest

from packages.fga.engine import LocalEngine
from packages.fga.errors import ModelParseError, ProvisioningError
from packages.fga.provisioning import DriftPolicy, ensure_model, ensure_store

CHANGED_SUFFIX = "\ntype team\n"


class TestEnsureStore:
    """Tests for ensure_store."""

    def test_creates_missing_store(self, engine: LocalEngine) -> None:
        store = ensure_store(engine, "acme")
        assert store.name == "acme"
        assert [s.id for s in engine.list_stores("acme")] == [store.id]

    def test_reuses_existing_store(self, engine: LocalEngine) -> None:
        """A second call returns the same store and creates nothing."""
        first = ensure_store(engine, "acme")
        second = ensure_store(engine, "acme")
        assert second.id == first.id
        assert len(engine.list_stores()) == 1

    def test_first_of_duplicates_wins(self, engine: LocalEngine) -> None:
        first = engine.create_store("acme")
        engine.create_store("acme")
        assert ensure_store(engine, "acme").id == first.id

    def test_name_match_is_exact(self, engine: LocalEngine) -> None:
        engine.create_store("acme-staging")
        store = ensure_store(engine, "acme")
        assert store.name == "acme"
        assert len(engine.list_stores()) == 2

    def test_engine_failure_is_wrapped(self, engine: LocalEngine) -> None:
        engine.close()
        with pytest.raises(ProvisioningError) as exc_info:
            ensure_store(engine, "acme")
        assert exc_info.value.operation == "list stores"


class TestEnsureModel:
    """Tests for ensure_model."""

    def test_writes_model_when_none_exists(self, engine: LocalEngine, acme_model: str) -> None:
        store = ensure_store(engine, "acme")
        model = ensure_model(engine, store.id, acme_model, name="docs")
        assert model.name == "docs"
        assert [m.id for m in engine.list_models(store.id)] == [model.id]

    def test_reuses_existing_model(self, engine: LocalEngine, acme_model: str) -> None:
        store = ensure_store(engine, "acme")
        first = ensure_model(engine, store.id, acme_model)
        second = ensure_model(engine, store.id, acme_model)
        assert second.id == first.id
        assert len(engine.list_models(store.id)) == 1

    def test_reuse_policy_ignores_changes(self, engine: LocalEngine, acme_model: str) -> None:
        """By default a changed DSL does not replace the stored model."""
        store = ensure_store(engine, "acme")
        first = ensure_model(engine, store.id, acme_model)
        second = ensure_model(engine, store.id, acme_model + CHANGED_SUFFIX)
        assert second.id == first.id

    def test_warn_policy_logs_drift(self, engine: LocalEngine, acme_model: str, caplog) -> None:
        store = ensure_store(engine, "acme")
        first = ensure_model(engine, store.id, acme_model)
        with caplog.at_level(logging.WARNING, logger="packages.fga.provisioning"):
            second = ensure_model(
                engine, store.id, acme_model + CHANGED_SUFFIX, drift_policy=DriftPolicy.WARN
            )
        assert second.id == first.id
        assert "differs from the configured model" in caplog.text

    def test_update_policy_writes_new_model(self, engine: LocalEngine, acme_model: str) -> None:
        store = ensure_store(engine, "acme")
        first = ensure_model(engine, store.id, acme_model)
        second = ensure_model(
            engine, store.id, acme_model + CHANGED_SUFFIX, drift_policy=DriftPolicy.UPDATE
        )
        assert second.id != first.id
        assert engine.list_models(store.id)[0].id == second.id

    def test_update_policy_keeps_matching_model(self, engine: LocalEngine, acme_model: str) -> None:
        store = ensure_store(engine, "acme")
        first = ensure_model(engine, store.id, acme_model)
        second = ensure_model(engine, store.id, acme_model, drift_policy=DriftPolicy.UPDATE)
        assert second.id == first.id

    def test_malformed_dsl(self, engine: LocalEngine) -> None:
        """A malformed DSL fails before anything is written."""
        store = ensure_store(engine, "acme")
        with pytest.raises(ModelParseError):
            ensure_model(engine, store.id, "model\n  schema 1.1\ntype doc\n  relations\n    define x: [nope]")
        assert engine.list_models(store.id) == []

    def test_unknown_store(self, engine: LocalEngine, acme_model: str) -> None:
        with pytest.raises(ProvisioningError):
            ensure_model(engine, "01HZZZZZZZZZZZZZZZZZZZZZZZ", acme_model)
