"""Fact writes and checks against the provisioned store and model."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from packages.fga.errors import (
    AlreadyClosedError,
    BackendConnectionError,
    EmptyInputError,
    EngineError,
    EngineErrorCode,
    EngineRequestError,
    WriteConflictError,
)
from packages.fga.models import Fact

if TYPE_CHECKING:
    from packages.fga.engine import LocalEngine

logger = logging.getLogger(__name__)


def _wrap(operation: str, error: EngineError) -> Exception:
    if error.code is EngineErrorCode.ENGINE_CLOSED:
        return AlreadyClosedError()
    if error.code is EngineErrorCode.DATASTORE_UNAVAILABLE:
        return BackendConnectionError("datastore", error.message)
    return EngineRequestError(operation, error.message)


class FactWriter:
    """Writes and checks facts in one store under one authorization model.

    A write is a single batch: if any fact already exists the engine rejects
    the whole batch, so with ``ignore_existing=True`` the new facts in that
    batch are not written either.
    """

    def __init__(
        self,
        engine: LocalEngine,
        store_id: str,
        model_id: str,
        log: logging.Logger | logging.LoggerAdapter = logger,
    ):
        self.engine = engine
        self.store_id = store_id
        self.model_id = model_id
        self._log = log

    def write(self, facts: list[Fact], ignore_existing: bool = False) -> None:
        """Write ``facts`` as one batch.

        Raises:
            EmptyInputError: If ``facts`` is empty
            WriteConflictError: If a fact already exists and
                ``ignore_existing`` is False
            EngineRequestError: If the engine rejected the write otherwise
        """
        if not facts:
            raise EmptyInputError()

        try:
            self.engine.write(self.store_id, self.model_id, list(facts))
        except EngineError as e:
            if e.code is EngineErrorCode.TUPLE_ALREADY_EXISTS:
                if ignore_existing:
                    self._log.info(
                        "Ignoring write of %d fact(s): %s", len(facts), e.message
                    )
                    return
                raise WriteConflictError(e.message) from e
            raise _wrap("write facts", e) from e

        self._log.debug("Wrote %d fact(s)", len(facts))

    def check(self, fact: Fact) -> bool:
        """Return the engine's allow/deny answer for ``fact``."""
        try:
            return self.engine.check(self.store_id, self.model_id, fact)
        except EngineError as e:
            raise _wrap("check fact", e) from e

    def batch_check(self, facts: list[Fact]) -> list[bool]:
        """Check several facts; answers are in input order."""
        try:
            return self.engine.batch_check(self.store_id, self.model_id, list(facts))
        except EngineError as e:
            raise _wrap("check facts", e) from e
