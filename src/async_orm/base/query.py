# src/async_orm/base/query.py
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from .exceptions import (
    ArgumentTypeError,
    ExecutionError,
    FieldNotFoundError,
    JoinsNotAllowedError,
    QueryBuildError,
    QueryTypeConflictError,
    SubqueryKindError,
)
from .fields import FieldSpec, RelatedField
from .interfaces import Executor, get_default_executor
from .join_tree import JoinTree, QueryField, split_relation_path
from .utils import quote_identifier

if TYPE_CHECKING:
    from .model import Model

# --- Setup Logging ---
log = logging.getLogger(__name__)


class QueryKind(Enum):
    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class CompiledQuery:
    """SQL text with `$n` placeholders and the values bound to them."""

    sql: str
    params: List[Any] = field(default_factory=list)
    kind: QueryKind = QueryKind.SELECT


class _ParamCollector:
    """Numbers parameters in the order their placeholders are written."""

    def __init__(self):
        self.values: List[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


_COLLECTION_TYPES = (list, tuple, set, frozenset)


class QueryBuilder:
    """
    Immutable, chainable query over one model.

    Every method returns a new builder and leaves the receiver untouched, so
    a partially built query can be shared and extended freely:

        unpaid = Customer.query.filter({"order.is_paid": False})
        names = unpaid.values_list("first")
        await unpaid.update({"active": False}).execute()

    Relation paths use `.` for an inner join hop and `__` for a left join
    hop, e.g. `"order__items.name"`.
    """

    def __init__(self, model: "Model"):
        from .model import Model  # model.py imports this module lazily

        if not isinstance(model, Model) or model.schema is None:
            raise ArgumentTypeError(
                type(model).__name__, "QueryBuilder requires a defined Model"
            )
        self._model = model
        self._kind: Optional[QueryKind] = None
        self._projection: Tuple[str, ...] = ()
        self._distinct = False
        self._distinct_on: Tuple[str, ...] = ()
        self._order: Tuple[Tuple[str, bool], ...] = ()
        self._filters: Tuple[Tuple[str, Any], ...] = ()
        self._excludes: Tuple[Tuple[str, Any], ...] = ()
        self._values: Tuple[Tuple[FieldSpec, Any], ...] = ()
        self._join_tree = JoinTree(model)

    def __repr__(self) -> str:
        kind = self._kind.value if self._kind else "unset"
        return f"QueryBuilder(model={self._model.name!r}, kind={kind})"

    # --- Inspection ---
    @property
    def model(self) -> "Model":
        return self._model

    @property
    def kind(self) -> Optional[QueryKind]:
        return self._kind

    @property
    def join_tree(self) -> JoinTree:
        """A copy of the joins this query currently needs."""
        return self._join_tree.clone()

    # --- Internal Helpers ---
    def _error(self, message: str) -> QueryBuildError:
        return QueryBuildError(self._model.name, message)

    def _clone(self) -> "QueryBuilder":
        clone = QueryBuilder.__new__(QueryBuilder)
        clone._model = self._model
        clone._kind = self._kind
        clone._projection = self._projection
        clone._distinct = self._distinct
        clone._distinct_on = self._distinct_on
        clone._order = self._order
        clone._filters = self._filters
        clone._excludes = self._excludes
        clone._values = self._values
        clone._join_tree = self._join_tree.clone()
        return clone

    def _with_kind(self, kind: QueryKind, method: str) -> "QueryBuilder":
        if self._kind is not None and self._kind is not kind:
            raise QueryTypeConflictError(
                self._model.name,
                f"cannot call '{method}' on a {self._kind.value} query",
            )
        clone = self._clone()
        clone._kind = kind
        return clone

    def _paths(self) -> Iterable[str]:
        yield from self._projection
        yield from self._distinct_on
        for path, _ in self._order:
            yield path
        for path, _ in self._filters:
            yield path
        for path, _ in self._excludes:
            yield path

    def _rebuild_joins(self) -> None:
        self._join_tree.reset()
        for path in self._paths():
            self._join_tree.add_path(path)

    def _check_names(self, method: str, names: Iterable[Any]) -> Tuple[str, ...]:
        checked = tuple(names)
        for name in checked:
            if not isinstance(name, str):
                raise ArgumentTypeError(
                    self._model.name,
                    f"'{method}' expects field names as strings, got "
                    f"{type(name).__name__}",
                )
        return checked

    def _check_mapping(self, method: str, fields: Any) -> Mapping[str, Any]:
        if not isinstance(fields, Mapping):
            raise ArgumentTypeError(
                self._model.name,
                f"'{method}' expects a mapping of field names to values, got "
                f"{type(fields).__name__}",
            )
        self._check_names(method, fields.keys())
        return fields

    def _predicates(self, method: str, fields: Any) -> Tuple[Tuple[str, Any], ...]:
        fields = self._check_mapping(method, fields)
        predicates = []
        for path, value in fields.items():
            self._check_predicate_value(path, value)
            # later changes to the caller's collection must not leak in
            if isinstance(value, _COLLECTION_TYPES):
                value = tuple(value)
            predicates.append((path, value))
        return tuple(predicates)

    def _check_predicate_value(self, path: str, value: Any) -> None:
        if not isinstance(value, QueryBuilder):
            return
        if value._kind not in (None, QueryKind.SELECT):
            raise SubqueryKindError(
                self._model.name,
                f"subquery for '{path}' must be a SELECT query, got "
                f"{value._kind.value}",
            )
        if len(value._projection) > 1:
            raise SubqueryKindError(
                self._model.name,
                f"subquery for '{path}' must select exactly one field",
            )

    # --- Filtering ---
    def filter(self, fields: Mapping[str, Any]) -> "QueryBuilder":
        """
        Add predicates that must all hold. Successive calls accumulate.

        Values: None tests `IS NULL`, a list/tuple/set tests membership, a
        SELECT builder is used as an `IN` subquery, anything else is compared
        for equality.
        """
        predicates = self._predicates("filter", fields)
        clone = self._clone()
        clone._filters = self._filters + predicates
        clone._rebuild_joins()
        log.debug(f"{self._model.name} query filtered on {[p for p, _ in predicates]}")
        return clone

    def exclude(self, fields: Mapping[str, Any]) -> "QueryBuilder":
        """Add predicates that must all fail (`NOT a AND NOT b`)."""
        predicates = self._predicates("exclude", fields)
        clone = self._clone()
        clone._excludes = self._excludes + predicates
        clone._rebuild_joins()
        log.debug(f"{self._model.name} query excludes {[p for p, _ in predicates]}")
        return clone

    # --- Select ---
    def values_list(self, *paths: str) -> "QueryBuilder":
        """Select only the given paths. Without paths every root column is selected."""
        paths = self._check_names("values_list", paths)
        clone = self._with_kind(QueryKind.SELECT, "values_list")
        clone._projection = paths
        clone._rebuild_joins()
        return clone

    def distinct(self, *paths: str) -> "QueryBuilder":
        """`SELECT DISTINCT`, or `DISTINCT ON (...)` when paths are given."""
        paths = self._check_names("distinct", paths)
        clone = self._with_kind(QueryKind.SELECT, "distinct")
        clone._distinct = True
        clone._distinct_on = paths
        clone._rebuild_joins()
        return clone

    def order_by(self, *paths: str) -> "QueryBuilder":
        """Order by the given paths; a leading `-` sorts descending."""
        paths = self._check_names("order_by", paths)
        order: List[Tuple[str, bool]] = []
        for path in paths:
            descending = path.startswith("-")
            order.append((path[1:] if descending else path, descending))

        clone = self._clone()
        clone._order = tuple(order)
        clone._rebuild_joins()
        return clone

    # --- Writes ---
    def _resolve_values(self, method: str, fields: Any) -> Tuple[Tuple[FieldSpec, Any], ...]:
        fields = self._check_mapping(method, fields)
        schema = self._model.schema
        resolved: Dict[str, Tuple[FieldSpec, Any]] = {}

        for name, value in fields.items():
            try:
                segments = split_relation_path(name)
            except ValueError as error:
                raise self._error(str(error)) from error
            if len(segments) > 1:
                raise JoinsNotAllowedError(self._model.name, name, method)

            target = schema.get_field_by_name(name)
            if target is None and name == "pk":
                target = schema.get_primary_key()
            if target is None:
                raise FieldNotFoundError(
                    self._model.name, name, list(schema.fields)
                )
            if isinstance(target, RelatedField):
                raise FieldNotFoundError(
                    self._model.name,
                    name,
                    list(schema.fields),
                    message=f"'{name}' is a reverse relation, not a column of "
                    f"{self._model.name} model.",
                )
            resolved[target.db_name] = (target, value)

        return tuple(resolved.values())

    def insert(self, fields: Mapping[str, Any]) -> "QueryBuilder":
        """Insert one row. Returns the inserted row on execution."""
        values = self._resolve_values("insert", fields)
        clone = self._with_kind(QueryKind.INSERT, "insert")
        clone._values = values
        return clone

    def update(self, fields: Mapping[str, Any]) -> "QueryBuilder":
        """Update the matching rows. Returns the affected row count on execution."""
        values = self._resolve_values("update", fields)
        clone = self._with_kind(QueryKind.UPDATE, "update")
        clone._values = values
        return clone

    def delete(self) -> "QueryBuilder":
        """Delete the matching rows. Returns the affected row count on execution."""
        return self._with_kind(QueryKind.DELETE, "delete")

    # --- Compilation ---
    def build(self) -> CompiledQuery:
        """
        Compile the query.

        Returns:
            CompiledQuery with the SQL text, its parameters and the query kind.

        Raises:
            QueryBuildError: If the query cannot be expressed (e.g. an insert
                with filters or an update without values).
        """
        params = _ParamCollector()
        kind = self._kind or QueryKind.SELECT
        sql = self._compile(kind, params)
        log.debug(f"Compiled {kind.value} on '{self._model.name}': {sql}")
        return CompiledQuery(sql=sql, params=params.values, kind=kind)

    def _compile(
        self, kind: QueryKind, params: _ParamCollector, subquery: bool = False
    ) -> str:
        if kind is QueryKind.SELECT:
            return self._select_sql(params, subquery)
        if kind is QueryKind.INSERT:
            return self._insert_sql(params)
        if kind is QueryKind.UPDATE:
            return self._update_sql(params)
        return self._delete_sql(params)

    def _root_column(self, target: FieldSpec) -> str:
        return QueryField(target, self._join_tree.root_alias).name_to_sql()

    def _table_sql(self) -> str:
        return quote_identifier(self._model.schema.table_name)

    def _select_sql(self, params: _ParamCollector, subquery: bool) -> str:
        tree = self._join_tree
        schema = self._model.schema

        if self._projection:
            columns = [tree.find_field(path).name_to_sql() for path in self._projection]
        elif subquery:
            columns = [self._root_column(schema.get_primary_key())]
        else:
            columns = [self._root_column(target) for target in schema.fields.values()]

        distinct = ""
        if self._distinct:
            distinct = "DISTINCT "
            if self._distinct_on:
                on = ", ".join(
                    tree.find_field(path).name_to_sql() for path in self._distinct_on
                )
                distinct = f"DISTINCT ON ({on}) "

        sql = f"SELECT {distinct}{', '.join(columns)} FROM {self._table_sql()}"
        joins = tree.to_sql()
        if joins:
            sql += f" {joins}"

        where = self._where_sql(tree, params)
        if where:
            sql += f" WHERE {where}"

        if self._order:
            order = []
            for path, descending in self._order:
                column = tree.find_field(path).name_to_sql()
                order.append(f"{column} DESC" if descending else column)
            sql += f" ORDER BY {', '.join(order)}"
        return sql

    def _insert_sql(self, params: _ParamCollector) -> str:
        if self._filters or self._excludes:
            raise self._error("'insert' query does not allow filters")

        if not self._values:
            return f"INSERT INTO {self._table_sql()} DEFAULT VALUES RETURNING *"

        columns = ", ".join(quote_identifier(target.db_name) for target, _ in self._values)
        placeholders = ", ".join(params.add(value) for _, value in self._values)
        return (
            f"INSERT INTO {self._table_sql()} ({columns}) "
            f"VALUES ({placeholders}) RETURNING *"
        )

    def _update_sql(self, params: _ParamCollector) -> str:
        if not self._values:
            raise self._error("'update' query requires at least one value")

        assignments = ", ".join(
            f"{quote_identifier(target.db_name)} = {params.add(value)}"
            for target, value in self._values
        )
        return f"UPDATE {self._table_sql()} SET {assignments}{self._mutation_where_sql(params)}"

    def _delete_sql(self, params: _ParamCollector) -> str:
        return f"DELETE FROM {self._table_sql()}{self._mutation_where_sql(params)}"

    def _mutation_where_sql(self, params: _ParamCollector) -> str:
        """
        WHERE clause for UPDATE and DELETE, which cannot join directly.

        Joins needed by the predicates move into a primary-key subquery:
        `WHERE pk IN (SELECT pk FROM t <joins> WHERE <predicates>)`. Joins
        that only served ordering are dropped.
        """
        if not (self._filters or self._excludes):
            return ""

        tree = JoinTree(self._model)
        for path, _ in self._filters + self._excludes:
            tree.add_path(path)

        if not tree.has_joins:
            return f" WHERE {self._where_sql(tree, params)}"

        pk = self._root_column(self._model.schema.get_primary_key())
        inner = (
            f"SELECT {pk} FROM {self._table_sql()} {tree.to_sql()} "
            f"WHERE {self._where_sql(tree, params)}"
        )
        log.debug(f"Rewrote joined {self._kind.value} on '{self._model.name}' as pk subquery")
        return f" WHERE {pk} IN ({inner})"

    def _where_sql(self, tree: JoinTree, params: _ParamCollector) -> str:
        clauses = [
            self._predicate_sql(tree, path, value, params)
            for path, value in self._filters
        ]
        clauses.extend(
            f"NOT {self._predicate_sql(tree, path, value, params)}"
            for path, value in self._excludes
        )
        return " AND ".join(clauses)

    def _predicate_sql(
        self, tree: JoinTree, path: str, value: Any, params: _ParamCollector
    ) -> str:
        column = tree.find_field(path).name_to_sql()

        if value is None:
            return f"{column} IS NULL"

        if isinstance(value, QueryBuilder):
            subquery = value._compile(QueryKind.SELECT, params, subquery=True)
            return f"{column} IN ({subquery})"

        if isinstance(value, _COLLECTION_TYPES):
            if not value:
                return "FALSE"
            placeholders = ", ".join(params.add(item) for item in value)
            return f"{column} IN ({placeholders})"

        return f"{column} = {params.add(value)}"

    # --- Execution ---
    async def execute(
        self, executor: Optional[Executor] = None
    ) -> Union[List[Dict[str, Any]], int]:
        """
        Compile and run the query.

        Args:
            executor: The executor to use. Defaults to the registered one.

        Returns:
            The rows (as dicts) for SELECT and INSERT, the affected row count
            for UPDATE and DELETE.

        Raises:
            QueryBuildError: If the query does not compile. Nothing is sent.
            ExecutionError: If no executor is available or execution fails.
        """
        compiled = self.build()
        if executor is None:
            executor = get_default_executor()

        try:
            result = await executor.execute(compiled.sql, compiled.params)
        except ExecutionError:
            raise
        except Exception as error:
            log.error(
                f"{compiled.kind.value} on '{self._model.name}' failed: {error}",
                exc_info=True,
            )
            raise ExecutionError(
                f"{self._model.name} Model {compiled.kind.value} query failed: {error}"
            ) from error

        if compiled.kind in (QueryKind.SELECT, QueryKind.INSERT):
            return result.rows
        return result.row_count
