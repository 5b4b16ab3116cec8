"""Store and authorization model provisioning.

Both operations are create-once: the first boot creates the store and
writes the model, every later boot only looks them up. There is no
cross-process lock, so two processes booting for the first time against
the same datastore may each create a store of the same name.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from packages.fga.dsl import parse_dsl
from packages.fga.errors import EngineError, ProvisioningError
from packages.fga.models import ModelDescriptor, StoreDescriptor

if TYPE_CHECKING:
    from packages.fga.engine import LocalEngine

logger = logging.getLogger(__name__)


class DriftPolicy(str, Enum):
    """What to do when the stored model differs from the configured DSL.

    REUSE keeps the first stored model without comparing (default).
    WARN compares schema digests and logs a warning on mismatch.
    UPDATE writes the configured DSL as a new model on mismatch.
    """

    REUSE = "reuse"
    WARN = "warn"
    UPDATE = "update"


def ensure_store(engine: LocalEngine, name: str, log: logging.Logger | logging.LoggerAdapter = logger) -> StoreDescriptor:
    """Look up the store named ``name``, creating it if none exists.

    When several stores share the name, the first in list order wins.
    """
    try:
        stores = engine.list_stores(name)
    except EngineError as e:
        raise ProvisioningError("list stores", e.message) from e

    matches = [store for store in stores if store.name == name]
    if matches:
        store = matches[0]
        log.debug("Store found: %s (%s)", store.name, store.id)
        return store

    try:
        store = engine.create_store(name)
    except EngineError as e:
        raise ProvisioningError("create store", e.message) from e
    log.debug("Store created: %s (%s)", store.name, store.id)
    return store


def ensure_model(
    engine: LocalEngine,
    store_id: str,
    dsl: str,
    *,
    name: str = "default",
    drift_policy: DriftPolicy = DriftPolicy.REUSE,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> ModelDescriptor:
    """Return the store's active model, writing ``dsl`` if it has none.

    With the default policy an existing model is reused without comparing
    it to ``dsl``.

    Raises:
        ModelParseError: If ``dsl`` is malformed
        ProvisioningError: If reading or writing models fails
    """
    schema = parse_dsl(dsl)

    try:
        models = engine.list_models(store_id)
    except EngineError as e:
        raise ProvisioningError("read authorization models", e.message) from e

    if models:
        model = models[0]
        if drift_policy is DriftPolicy.REUSE or model.schema_hash == schema.digest():
            log.debug("Authorization model found: %s", model.id)
            return model
        if drift_policy is DriftPolicy.WARN:
            log.warning(
                "Authorization model %s differs from the configured model; reusing it", model.id
            )
            return model
        log.info("Authorization model %s differs from the configured model; writing a new one", model.id)

    try:
        model = engine.write_model(store_id, schema, name=name, source=dsl)
    except EngineError as e:
        raise ProvisioningError("write the authorization model", e.message) from e
    log.debug("Authorization model created: %s", model.id)
    return model
