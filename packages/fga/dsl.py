"""Authorization model DSL parser.

Transforms the OpenFGA modeling language (schema 1.1) into an
``AuthorizationSchema``:

    model
      schema 1.1

    type user
    type group
      relations
        define member: [user, group#member]
    type document
      relations
        define parent: [folder]
        define editor: [user]
        define viewer: [user, user:*, group#member] or editor or viewer from parent
        define blocked: [user]
        define can_view: viewer but not blocked

Supported: type restrictions (type, ``type:*``, ``type#relation``), ``or``,
``and``, ``but not``, ``from`` and parentheses. Operators of different kinds
must be grouped with parentheses. Conditions (``with``), modules and
``extend type`` are rejected.
"""

from __future__ import annotations

import re

from packages.fga.errors import ModelParseError
from packages.fga.schema import (
    AuthorizationSchema,
    ComputedUserset,
    RelationDefinition,
    RelationReference,
    SetDifference,
    SetIntersection,
    SetUnion,
    This,
    TupleToUserset,
    TypeDefinition,
    Userset,
)

SUPPORTED_SCHEMA_VERSIONS = ("1.1",)

_COMMENT_RE = re.compile(r"(^|\s)#.*$")
_NAME_RE = re.compile(r"^[A-Za-z0-9_\-]+$")
_TOKEN_RE = re.compile(r"\s*(\[|\]|\(|\)|,|[A-Za-z0-9_\-]+(?::\*|#[A-Za-z0-9_\-]+)?)")
_DEFINE_RE = re.compile(r"^define\s+([A-Za-z0-9_\-]+)\s*:\s*(.+)$")

_KEYWORDS = {"or", "and", "but", "not", "from", "with"}


def _tokenize(text: str, line: int) -> list[str]:
    tokens = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if not match:
            raise ModelParseError(f"unexpected character {text[pos:].strip()[:1]!r}", line)
        tokens.append(match.group(1))
        pos = match.end()
    return tokens


class _ExpressionParser:
    """Recursive descent parser for a single ``define`` expression."""

    def __init__(self, text: str, line: int):
        self.line = line
        self.tokens = _tokenize(text, line)
        self.pos = 0
        self.directly_related: list[RelationReference] = []

    def parse(self) -> Userset:
        if not self.tokens:
            raise ModelParseError("empty relation definition", self.line)
        expr = self._expression()
        if self.pos < len(self.tokens):
            raise ModelParseError(f"unexpected token {self.tokens[self.pos]!r}", self.line)
        return expr

    def _peek(self) -> str | None:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def _next(self) -> str:
        token = self._peek()
        if token is None:
            raise ModelParseError("unexpected end of relation definition", self.line)
        self.pos += 1
        return token

    def _expect(self, expected: str) -> None:
        token = self._next()
        if token != expected:
            raise ModelParseError(f"expected {expected!r}, got {token!r}", self.line)

    def _expression(self) -> Userset:
        first = self._term()
        operator = self._peek()

        if operator in ("or", "and"):
            children = [first]
            while self._peek() == operator:
                self.pos += 1
                children.append(self._term())
            if self._peek() in ("or", "and", "but"):
                raise ModelParseError(
                    "mixing operators requires parentheses", self.line
                )
            if operator == "or":
                return SetUnion(children=children)
            return SetIntersection(children=children)

        if operator == "but":
            self.pos += 1
            self._expect("not")
            subtract = self._term()
            if self._peek() in ("or", "and", "but"):
                raise ModelParseError(
                    "mixing operators requires parentheses", self.line
                )
            return SetDifference(base=first, subtract=subtract)

        return first

    def _term(self) -> Userset:
        token = self._next()

        if token == "[":
            return self._type_restrictions()

        if token == "(":
            expr = self._expression()
            self._expect(")")
            return expr

        if token in _KEYWORDS or not _NAME_RE.match(token):
            raise ModelParseError(f"unexpected token {token!r}", self.line)

        if self._peek() == "from":
            self.pos += 1
            tupleset = self._next()
            if tupleset in _KEYWORDS or not _NAME_RE.match(tupleset):
                raise ModelParseError(f"invalid tupleset relation {tupleset!r}", self.line)
            return TupleToUserset(tupleset=tupleset, computed_userset=token)

        return ComputedUserset(relation=token)

    def _type_restrictions(self) -> This:
        if self.directly_related:
            raise ModelParseError(
                "type restrictions may appear only once per relation", self.line
            )
        refs: list[RelationReference] = []
        while True:
            token = self._next()
            if token == "]" and not refs:
                raise ModelParseError("empty type restriction list", self.line)
            if token in _KEYWORDS:
                if token == "with":
                    raise ModelParseError("conditions are not supported", self.line)
                raise ModelParseError(f"unexpected keyword {token!r}", self.line)
            refs.append(_parse_reference(token, self.line))
            separator = self._next()
            if separator == "]":
                break
            if separator == "with":
                raise ModelParseError("conditions are not supported", self.line)
            if separator != ",":
                raise ModelParseError(f"expected ',' or ']', got {separator!r}", self.line)
        self.directly_related = refs
        return This()


def _parse_reference(token: str, line: int) -> RelationReference:
    if token.endswith(":*"):
        return RelationReference(type=token[:-2], wildcard=True)
    if "#" in token:
        type_name, relation = token.split("#", 1)
        return RelationReference(type=type_name, relation=relation)
    if not _NAME_RE.match(token):
        raise ModelParseError(f"invalid type restriction {token!r}", line)
    return RelationReference(type=token)


def parse_dsl(text: str) -> AuthorizationSchema:
    """Parse DSL text into an ``AuthorizationSchema``.

    Raises:
        ModelParseError: On any syntax or semantic error.
    """
    if not text or not text.strip():
        raise ModelParseError("model source is empty")

    seen_model = False
    schema_version: str | None = None
    type_defs: list[TypeDefinition] = []
    current: TypeDefinition | None = None
    in_relations = False
    relation_lines: dict[tuple[str, str], int] = {}

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = _COMMENT_RE.sub("", raw).strip()
        if not line:
            continue
        head, _, rest = line.partition(" ")
        rest = rest.strip()

        if not seen_model:
            if line != "model":
                raise ModelParseError("model must start with 'model'", lineno)
            seen_model = True
            continue

        if schema_version is None:
            if head != "schema" or not rest:
                raise ModelParseError("expected 'schema <version>' after 'model'", lineno)
            if rest not in SUPPORTED_SCHEMA_VERSIONS:
                raise ModelParseError(f"unsupported schema version {rest!r}", lineno)
            schema_version = rest
            continue

        if head == "type":
            if not _NAME_RE.match(rest):
                raise ModelParseError(f"invalid type name {rest!r}", lineno)
            if any(t.type == rest for t in type_defs):
                raise ModelParseError(f"duplicate type {rest!r}", lineno)
            current = TypeDefinition(type=rest)
            type_defs.append(current)
            in_relations = False
            continue

        if head in ("condition", "module", "extend"):
            raise ModelParseError(f"'{head}' is not supported", lineno)

        if line == "relations":
            if current is None:
                raise ModelParseError("'relations' outside of a type", lineno)
            if in_relations:
                raise ModelParseError("duplicate 'relations' block", lineno)
            in_relations = True
            continue

        if head == "define":
            if current is None or not in_relations:
                raise ModelParseError("'define' outside of a relations block", lineno)
            match = _DEFINE_RE.match(line)
            if not match:
                raise ModelParseError("expected 'define <relation>: <expression>'", lineno)
            name, expression = match.groups()
            if name in _KEYWORDS:
                raise ModelParseError(f"relation name {name!r} is reserved", lineno)
            if name in current.relations:
                raise ModelParseError(
                    f"duplicate relation {name!r} in type {current.type!r}", lineno
                )
            parser = _ExpressionParser(expression, lineno)
            rewrite = parser.parse()
            current.relations[name] = RelationDefinition(
                name=name,
                rewrite=rewrite,
                directly_related=parser.directly_related,
            )
            relation_lines[(current.type, name)] = lineno
            continue

        raise ModelParseError(f"unexpected statement {line!r}", lineno)

    if not seen_model or schema_version is None:
        raise ModelParseError("missing 'model' header or schema version")
    if not type_defs:
        raise ModelParseError("model defines no types")

    schema = AuthorizationSchema(schema_version=schema_version, type_definitions=type_defs)
    _validate(schema, relation_lines)
    return schema


def _validate(schema: AuthorizationSchema, lines: dict[tuple[str, str], int]) -> None:
    """Check that every referenced type and relation exists."""
    for type_def in schema.type_definitions:
        for relation in type_def.relations.values():
            line = lines.get((type_def.type, relation.name))

            for ref in relation.directly_related:
                if schema.get_type(ref.type) is None:
                    raise ModelParseError(f"unknown type {ref.type!r} in {relation.name!r}", line)
                if ref.relation and schema.get_relation(ref.type, ref.relation) is None:
                    raise ModelParseError(
                        f"unknown relation {str(ref)!r} in {relation.name!r}", line
                    )

            _validate_rewrite(schema, type_def, relation.rewrite, line)


def _validate_rewrite(
    schema: AuthorizationSchema,
    type_def: TypeDefinition,
    rewrite: Userset,
    line: int | None,
) -> None:
    if isinstance(rewrite, ComputedUserset):
        if rewrite.relation not in type_def.relations:
            raise ModelParseError(
                f"relation {rewrite.relation!r} is not defined on type {type_def.type!r}", line
            )
    elif isinstance(rewrite, TupleToUserset):
        tupleset = type_def.relations.get(rewrite.tupleset)
        if tupleset is None:
            raise ModelParseError(
                f"relation {rewrite.tupleset!r} is not defined on type {type_def.type!r}", line
            )
        if not isinstance(tupleset.rewrite, This):
            raise ModelParseError(
                f"tupleset relation {rewrite.tupleset!r} must only allow direct assignment", line
            )
        targets = [ref.type for ref in tupleset.directly_related if not ref.relation and not ref.wildcard]
        if not any(schema.get_relation(t, rewrite.computed_userset) for t in targets):
            raise ModelParseError(
                f"no type related through {rewrite.tupleset!r} defines "
                f"{rewrite.computed_userset!r}",
                line,
            )
    elif isinstance(rewrite, (SetUnion, SetIntersection)):
        for child in rewrite.children:
            _validate_rewrite(schema, type_def, child, line)
    elif isinstance(rewrite, SetDifference):
        _validate_rewrite(schema, type_def, rewrite.base, line)
        _validate_rewrite(schema, type_def, rewrite.subtract, line)
