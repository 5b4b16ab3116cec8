"""Authorization schema representation.

The structured form of an authorization model: type definitions whose
relations are defined by userset rewrites. Produced by ``dsl.parse_dsl``,
persisted as JSON by the engine and evaluated by the resolver.
"""

from __future__ import annotations

import hashlib
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class This(BaseModel):
    """Directly assigned users (the ``[...]`` part of a definition)."""

    kind: Literal["this"] = "this"


class ComputedUserset(BaseModel):
    """Users of another relation on the same object."""

    kind: Literal["computed_userset"] = "computed_userset"
    relation: str


class TupleToUserset(BaseModel):
    """``computed_userset from tupleset``: follow tupleset to related objects."""

    kind: Literal["tuple_to_userset"] = "tuple_to_userset"
    tupleset: str
    computed_userset: str


class SetUnion(BaseModel):
    kind: Literal["union"] = "union"
    children: list[Userset]


class SetIntersection(BaseModel):
    kind: Literal["intersection"] = "intersection"
    children: list[Userset]


class SetDifference(BaseModel):
    """``base but not subtract``."""

    kind: Literal["difference"] = "difference"
    base: Userset
    subtract: Userset


Userset = Annotated[
    Union[This, ComputedUserset, TupleToUserset, SetUnion, SetIntersection, SetDifference],
    Field(discriminator="kind"),
]

SetUnion.model_rebuild()
SetIntersection.model_rebuild()
SetDifference.model_rebuild()


class RelationReference(BaseModel):
    """A type restriction on directly assigned users.

    ``user`` -> type only, ``user:*`` -> wildcard, ``group#member`` -> userset.
    """

    type: str
    relation: str | None = None
    wildcard: bool = False

    def __str__(self) -> str:
        if self.wildcard:
            return f"{self.type}:*"
        if self.relation:
            return f"{self.type}#{self.relation}"
        return self.type


class RelationDefinition(BaseModel):
    name: str
    rewrite: Userset
    directly_related: list[RelationReference] = Field(default_factory=list)

    @property
    def is_directly_assignable(self) -> bool:
        return bool(self.directly_related)


class TypeDefinition(BaseModel):
    type: str
    relations: dict[str, RelationDefinition] = Field(default_factory=dict)


class AuthorizationSchema(BaseModel):
    """A parsed authorization model."""

    schema_version: str = "1.1"
    type_definitions: list[TypeDefinition] = Field(default_factory=list)

    def get_type(self, type_name: str) -> TypeDefinition | None:
        for type_def in self.type_definitions:
            if type_def.type == type_name:
                return type_def
        return None

    def get_relation(self, type_name: str, relation: str) -> RelationDefinition | None:
        type_def = self.get_type(type_name)
        if type_def is None:
            return None
        return type_def.relations.get(relation)

    def digest(self) -> str:
        """Stable digest of the schema, independent of DSL formatting."""
        return hashlib.sha256(self.model_dump_json().encode()).hexdigest()
