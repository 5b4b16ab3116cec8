"""Relationship check resolution.

Evaluates ``object#relation@user`` against an ``AuthorizationSchema`` by
walking userset rewrites:

- ``This``: tuples stored on the relation, following usersets and wildcards
- ``ComputedUserset``: another relation on the same object
- ``TupleToUserset``: a relation on objects reached through a tupleset
- union / intersection / difference of the above

Resolution depth is bounded and each path carries a cycle guard.
"""

from __future__ import annotations

import logging
from typing import Callable

from packages.fga.errors import EngineError, EngineErrorCode
from packages.fga.schema import (
    AuthorizationSchema,
    ComputedUserset,
    SetDifference,
    SetIntersection,
    SetUnion,
    This,
    TupleToUserset,
    Userset,
)

logger = logging.getLogger(__name__)

# (object_type, object_id, relation) -> subjects
SubjectReader = Callable[[str, str, str], list[str]]


def _split_object(value: str) -> tuple[str, str]:
    object_type, _, object_id = value.partition(":")
    return object_type, object_id


class CheckResolver:
    """Resolves checks for one authorization model."""

    def __init__(
        self,
        schema: AuthorizationSchema,
        read_subjects: SubjectReader,
        max_depth: int = 25,
    ):
        self.schema = schema
        self._read = read_subjects
        self.max_depth = max_depth

    def check(self, object: str, relation: str, user: str) -> bool:
        """Whether ``user`` has ``relation`` on ``object``.

        Raises:
            EngineError: If the object type or relation is unknown, or the
                resolution exceeds the depth limit.
        """
        object_type, object_id = _split_object(object)
        if self.schema.get_type(object_type) is None:
            raise EngineError(
                f"type '{object_type}' not found", EngineErrorCode.INVALID_CHECK_INPUT
            )
        if self.schema.get_relation(object_type, relation) is None:
            raise EngineError(
                f"relation '{object_type}#{relation}' not found",
                EngineErrorCode.INVALID_CHECK_INPUT,
            )
        return self._check(object_type, object_id, relation, user, 0, frozenset())

    def _check(
        self,
        object_type: str,
        object_id: str,
        relation: str,
        user: str,
        depth: int,
        path: frozenset[tuple[str, str, str]],
    ) -> bool:
        if depth > self.max_depth:
            raise EngineError(
                "resolution too complex", EngineErrorCode.RESOLUTION_TOO_COMPLEX
            )

        key = (object_type, object_id, relation)
        if key in path:
            return False
        path = path | {key}

        definition = self.schema.get_relation(object_type, relation)
        if definition is None:
            return False

        return self._rewrite(object_type, object_id, relation, definition.rewrite, user, depth, path)

    def _rewrite(
        self,
        object_type: str,
        object_id: str,
        relation: str,
        rewrite: Userset,
        user: str,
        depth: int,
        path: frozenset[tuple[str, str, str]],
    ) -> bool:
        if isinstance(rewrite, This):
            return self._direct(object_type, object_id, relation, user, depth, path)

        if isinstance(rewrite, ComputedUserset):
            return self._check(object_type, object_id, rewrite.relation, user, depth + 1, path)

        if isinstance(rewrite, TupleToUserset):
            for subject in self._read(object_type, object_id, rewrite.tupleset):
                if "#" in subject or subject.endswith(":*"):
                    continue
                parent_type, parent_id = _split_object(subject)
                if self.schema.get_relation(parent_type, rewrite.computed_userset) is None:
                    continue
                if self._check(parent_type, parent_id, rewrite.computed_userset, user, depth + 1, path):
                    return True
            return False

        if isinstance(rewrite, SetUnion):
            return any(
                self._rewrite(object_type, object_id, relation, child, user, depth, path)
                for child in rewrite.children
            )

        if isinstance(rewrite, SetIntersection):
            return all(
                self._rewrite(object_type, object_id, relation, child, user, depth, path)
                for child in rewrite.children
            )

        if isinstance(rewrite, SetDifference):
            if not self._rewrite(object_type, object_id, relation, rewrite.base, user, depth, path):
                return False
            return not self._rewrite(object_type, object_id, relation, rewrite.subtract, user, depth, path)

        logger.warning("Unknown rewrite %r on %s#%s", rewrite, object_type, relation)
        return False

    def _direct(
        self,
        object_type: str,
        object_id: str,
        relation: str,
        user: str,
        depth: int,
        path: frozenset[tuple[str, str, str]],
    ) -> bool:
        user_type = user.split(":", 1)[0]
        user_is_userset = "#" in user

        usersets = []
        for subject in self._read(object_type, object_id, relation):
            if subject == user:
                return True
            if subject.endswith(":*"):
                if not user_is_userset and subject[:-2] == user_type:
                    return True
                continue
            if "#" in subject:
                usersets.append(subject)

        for subject in usersets:
            target, _, target_relation = subject.partition("#")
            target_type, target_id = _split_object(target)
            if self._check(target_type, target_id, target_relation, user, depth + 1, path):
                return True
        return False
