# src/async_orm/base/join_tree.py
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from .exceptions import FieldNotFoundError, QueryBuildError
from .fields import FieldSpec, ForeignKey, RelatedField
from .utils import quote_identifier

if TYPE_CHECKING:
    from .model import Model

# --- Setup Logging ---
log = logging.getLogger(__name__)


class JoinType(Enum):
    INNER = "INNER"
    LEFT = "LEFT"


# '.' ends an inner hop, '__' ends a left hop
_PATH_SEPARATOR = re.compile(r"\.|__")


@dataclass(frozen=True)
class PathSegment:
    """One hop of a relation path. `join_type` is None for the terminal name."""

    name: str
    join_type: Optional[JoinType]


def split_relation_path(path: str) -> List[PathSegment]:
    """
    Split a relation path into its hops.

    `"order__items.name"` becomes `order` (LEFT), `items` (INNER) and the
    terminal `name`.

    Raises:
        ValueError: If the path has an empty segment.
    """
    segments: List[PathSegment] = []
    position = 0
    for match in _PATH_SEPARATOR.finditer(path):
        join_type = JoinType.INNER if match.group() == "." else JoinType.LEFT
        segments.append(PathSegment(path[position : match.start()], join_type))
        position = match.end()
    segments.append(PathSegment(path[position:], None))

    if any(not segment.name for segment in segments):
        raise ValueError(f"relation path '{path}' has an empty segment")
    return segments


@dataclass(frozen=True)
class QueryField:
    """A field resolved to the table alias it is read from."""

    field: FieldSpec
    alias: str

    def name_to_sql(self) -> str:
        return f"{quote_identifier(self.alias)}.{quote_identifier(self.field.db_name)}"


NodeKey = Tuple[str, str, JoinType]


@dataclass
class JoinNode:
    alias: str
    model: "Model"
    relation: Optional[FieldSpec] = None
    join_type: Optional[JoinType] = None
    children: Dict[NodeKey, "JoinNode"] = field(default_factory=dict)

    def copy(self) -> "JoinNode":
        return JoinNode(
            alias=self.alias,
            model=self.model,
            relation=self.relation,
            join_type=self.join_type,
            children={key: child.copy() for key, child in self.children.items()},
        )


class JoinTree:
    """
    Resolves relation paths of one query into joins.

    Identical paths share a node (and therefore an alias). Each new node into
    a table that is already part of the query gets the alias
    `<table>__T<n>`, where the root table counts as the first use.
    """

    def __init__(self, model: "Model"):
        self._model = model
        self.reset()

    def reset(self) -> None:
        table_name = self._model.schema.table_name
        self._table_uses: Dict[str, int] = {table_name: 1}
        self._root = JoinNode(alias=table_name, model=self._model)

    def clone(self) -> "JoinTree":
        tree = JoinTree.__new__(JoinTree)
        tree._model = self._model
        tree._table_uses = dict(self._table_uses)
        tree._root = self._root.copy()
        return tree

    @property
    def model(self) -> "Model":
        return self._model

    @property
    def root_alias(self) -> str:
        return self._root.alias

    @property
    def has_joins(self) -> bool:
        return bool(self._root.children)

    # --- Path Resolution ---
    def add_path(self, path: str) -> QueryField:
        """Resolve `path`, creating the join nodes it needs."""
        return self._walk(path, create=True)

    def find_field(self, path: str) -> QueryField:
        """Resolve `path` against nodes already added by `add_path`."""
        return self._walk(path, create=False)

    def _walk(self, path: str, create: bool) -> QueryField:
        try:
            segments = split_relation_path(path)
        except ValueError as error:
            raise QueryBuildError(self._model.name, str(error)) from error

        node = self._root
        for segment in segments[:-1]:
            relation = self._lookup_relation(node.model, segment.name)
            node = self._child(node, relation, segment.join_type, path, create)

        terminal = self._lookup(node.model, segments[-1].name)
        if isinstance(terminal, RelatedField):
            node = self._child(node, terminal, JoinType.INNER, path, create)
            return QueryField(node.model.schema.get_primary_key(), node.alias)
        return QueryField(terminal, node.alias)

    def _lookup(self, model: "Model", name: str) -> FieldSpec:
        schema = model.schema
        found = schema.get_field_by_name(name)
        if found is None and name == "pk":
            found = schema.get_primary_key()
        if found is None:
            raise FieldNotFoundError(
                self._model.name,
                name,
                schema.get_field_names(),
                message=f"field '{name}' doesn't exist in {model.name} model.",
            )
        return found

    def _lookup_relation(self, model: "Model", name: str) -> FieldSpec:
        found = self._lookup(model, name)
        if not found.is_relation:
            schema = model.schema
            relation_names = [
                field_name
                for field_name, candidate in schema.fields.items()
                if isinstance(candidate, ForeignKey)
            ]
            relation_names.extend(schema.relations)
            raise FieldNotFoundError(
                self._model.name,
                name,
                relation_names,
                message=f"field '{name}' on {model.name} model is not a relation.",
            )
        return found

    def _child(
        self,
        node: JoinNode,
        relation: FieldSpec,
        join_type: JoinType,
        path: str,
        create: bool,
    ) -> JoinNode:
        target = relation.join_model
        table_name = target.schema.table_name
        key = (table_name, relation.field_name, join_type)

        child = node.children.get(key)
        if child is not None:
            return child
        if not create:
            raise QueryBuildError(
                self._model.name, f"relation path '{path}' is not part of the joins"
            )

        child = JoinNode(
            alias=self._allocate_alias(table_name),
            model=target,
            relation=relation,
            join_type=join_type,
        )
        node.children[key] = child
        log.debug(
            f"Join node '{child.alias}' added under '{node.alias}' "
            f"({join_type.value} via '{relation.field_name}')"
        )
        return child

    def _allocate_alias(self, table_name: str) -> str:
        if table_name not in self._table_uses:
            self._table_uses[table_name] = 1
            return table_name
        self._table_uses[table_name] += 1
        return f"{table_name}__T{self._table_uses[table_name]}"

    # --- SQL Rendering ---
    def to_sql(self) -> str:
        """Render every join, depth-first in insertion order."""
        joins: List[str] = []

        def visit(node: JoinNode) -> None:
            for child in node.children.values():
                table_name = child.model.schema.table_name
                alias_sql = (
                    f" {quote_identifier(child.alias)}"
                    if child.alias != table_name
                    else ""
                )
                on_sql = child.relation.join_on_sql(child.alias, node.alias)
                joins.append(
                    f"{child.join_type.value} JOIN {quote_identifier(table_name)}"
                    f"{alias_sql} ON {on_sql}"
                )
                visit(child)

        visit(self._root)
        return " ".join(joins)
