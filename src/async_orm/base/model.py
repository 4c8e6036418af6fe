# src/async_orm/base/model.py
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from .exceptions import SchemaDefinitionError
from .fields import FieldSpec, ForeignKey, RelatedField
from .utils import quote_identifier

if TYPE_CHECKING:
    from .query import QueryBuilder

# --- Setup Logging ---
log = logging.getLogger(__name__)


class ModelSchema:
    """
    Compiled, read-only metadata of one model.

    Holds the declared fields in declaration order, the primary key, and the
    reverse relations other models register against this one. Relations are
    the only part that may still grow after the schema is frozen.
    """

    def __init__(
        self,
        name: str,
        table_name: str,
        fields: Dict[str, FieldSpec],
        primary_key: FieldSpec,
    ):
        self.name = name
        self.table_name = table_name
        self._fields = dict(fields)
        self._primary_key = primary_key
        self._relations: Dict[str, RelatedField] = {}
        # column names that differ from their declared field name
        self._db_name_fields: Dict[str, FieldSpec] = {
            field.db_name: field
            for field_name, field in self._fields.items()
            if field.db_name != field_name
        }
        self._frozen = False

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise AttributeError(f"ModelSchema of '{self.name}' is read-only")
        super().__setattr__(name, value)

    def __repr__(self) -> str:
        return f"ModelSchema(name={self.name!r}, table_name={self.table_name!r})"

    def _freeze(self) -> None:
        self._frozen = True

    def _register_relation(self, reverse_name: str, related: RelatedField) -> None:
        self._relations[reverse_name] = related

    @property
    def fields(self) -> Mapping[str, FieldSpec]:
        return MappingProxyType(self._fields)

    @property
    def relations(self) -> Mapping[str, RelatedField]:
        return MappingProxyType(self._relations)

    def get_field_by_name(
        self, field_name: str, include_related: bool = True
    ) -> Optional[FieldSpec]:
        """
        Look a field up by declared name, then by column name, then (when
        `include_related` is set) by reverse relation name.
        """
        if field_name in self._fields:
            return self._fields[field_name]
        if field_name in self._db_name_fields:
            return self._db_name_fields[field_name]
        if include_related and field_name in self._relations:
            return self._relations[field_name]
        return None

    def get_field_names(self) -> List[str]:
        return [*self._fields, *self._db_name_fields, *self._relations]

    def get_related_field(self, field_name: str) -> Optional[RelatedField]:
        return self._relations.get(field_name)

    def get_db_field_names(self) -> List[str]:
        return [field.db_name for field in self._fields.values()]

    def get_primary_key(self) -> FieldSpec:
        return self._primary_key

    def generate_table_sql(self) -> str:
        columns = ", \n  ".join(field.to_table_sql() for field in self._fields.values())
        return f"CREATE TABLE {quote_identifier(self.table_name)} (\n  {columns}\n);"


class Model:
    """
    Public handle of a declared model.

    Models are declared with `Model.define` and queried through `.query`:

        Customer = Model.define("Customer", {
            "id": AutoSerial(primary_key=True, nullable=False),
            "first": Varchar(max_size=64),
        })
        Customer.query.filter({"first": "Steve"}).values_list("id")
    """

    def __init__(self, name: str, base: Optional["Model"] = None):
        self.name = name
        self.base = base
        self.schema: Optional[ModelSchema] = None
        self._frozen = False

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise AttributeError(f"Model '{self.name}' is read-only")
        super().__setattr__(name, value)

    def __repr__(self) -> str:
        return f"Model({self.name!r})"

    @property
    def query(self) -> "QueryBuilder":
        """A fresh query builder rooted at this model."""
        from .query import QueryBuilder  # query.py imports this module

        return QueryBuilder(self)

    def is_derived_from(self, other: "Model") -> bool:
        base = self.base
        while base is not None:
            if base is other:
                return True
            base = base.base
        return False

    @classmethod
    def define(
        cls,
        name: str,
        field_map: Mapping[str, FieldSpec],
        db_name: Optional[str] = None,
    ) -> "Model":
        """
        Declare a new model.

        Args:
            name: The model name, used in error messages.
            field_map: Field name -> FieldSpec, in declaration order.
            db_name: The table name. Defaults to the lower-cased model name.

        Returns:
            The frozen Model.

        Raises:
            SchemaDefinitionError: If the name, the fields, the primary key or
                a relation registration is invalid.
        """
        return cls._build(name, field_map, db_name)

    def extend(
        self,
        name: str,
        field_map: Optional[Mapping[str, FieldSpec]] = None,
        db_name: Optional[str] = None,
    ) -> "Model":
        """
        Declare a new model reusing clones of this model's fields.

        Fields in `field_map` override or add to the inherited ones. The new
        model owns its own table and schema.
        """
        if field_map is not None and not isinstance(field_map, Mapping):
            raise SchemaDefinitionError(
                f"'{name}' DB Model Validation: 'fields' must be a mapping"
            )
        inherited = {
            field_name: field.clone()
            for field_name, field in self.schema.fields.items()
        }
        inherited.update(field_map or {})
        log.debug(f"Extending model '{self.name}' as '{name}'")
        return type(self)._build(name, inherited, db_name, base=self)

    # --- Declaration ---
    @classmethod
    def _build(
        cls,
        name: str,
        field_map: Mapping[str, FieldSpec],
        db_name: Optional[str],
        base: Optional["Model"] = None,
    ) -> "Model":
        if not isinstance(name, str) or not name:
            raise SchemaDefinitionError("model name not provided for DB Model")

        def model_error(message: str) -> SchemaDefinitionError:
            return SchemaDefinitionError(f"'{name}' DB Model Validation: {message}")

        if db_name is not None and (not isinstance(db_name, str) or not db_name):
            raise model_error("db_name must be a non-empty string")

        if not isinstance(field_map, Mapping):
            raise model_error("'fields' must be a mapping")
        if not field_map:
            raise model_error("no Fields provided")

        model = cls(name, base=base)
        bound: List[FieldSpec] = []
        try:
            primary_keys: List[FieldSpec] = []
            for field_name, field in field_map.items():
                if not isinstance(field, FieldSpec):
                    raise model_error(
                        f"'{field_name}' Field has unknown type: {type(field).__name__}"
                    )
                if not isinstance(field_name, str) or not field_name:
                    raise model_error("field names must be non-empty strings")
                try:
                    field.validate_field(field_name, model)
                except SchemaDefinitionError as error:
                    raise model_error(str(error)) from error
                bound.append(field)
                if field.primary_key:
                    primary_keys.append(field)

            if not primary_keys:
                raise model_error("does not have a primary key")
            if len(primary_keys) > 1:
                raise model_error("contains more than one primary key")

            column_owner: Dict[str, str] = {}
            for field_name, field in field_map.items():
                if field.db_name in column_owner:
                    raise model_error(
                        f"column '{field.db_name}' is used by both "
                        f"'{column_owner[field.db_name]}' and '{field_name}'"
                    )
                column_owner[field.db_name] = field_name

            table_name = db_name if db_name is not None else name.lower()
            model.schema = ModelSchema(name, table_name, dict(field_map), primary_keys[0])

            # second phase: fields that need the assembled model
            for field in field_map.values():
                field.init_binding()
            cls._register_relations(model)
        except SchemaDefinitionError:
            # the declaration failed as a whole; release its fields
            for field in bound:
                field._unbind()
            raise

        model.schema._freeze()
        model._frozen = True
        log.info(
            f"Defined model '{name}' (table '{table_name}', "
            f"{len(field_map)} fields)"
        )
        return model

    @staticmethod
    def _register_relations(model: "Model") -> None:
        """Register a RelatedField on the target of every ForeignKey."""

        def relation_error(message: str) -> SchemaDefinitionError:
            return SchemaDefinitionError(
                f"{model.name} Model Field Validation Error: {message}"
            )

        # check every registration first so that a failure registers nothing
        pending: List[Tuple[ForeignKey, str]] = []
        claimed: Dict[Tuple[int, str], ForeignKey] = {}
        for field in model.schema.fields.values():
            if not isinstance(field, ForeignKey):
                continue
            target = field.target_model
            reverse_name = field.reverse_name

            existing = target.schema.get_related_field(reverse_name)
            if existing is None and (id(target), reverse_name) in claimed:
                existing_owner = model
            else:
                existing_owner = existing.related_model if existing else None
            if existing_owner is not None:
                raise relation_error(
                    f"reverse name '{reverse_name}' already exists on model "
                    f"'{target.name}' (from {existing_owner.name} Model)"
                )
            if target.schema.get_field_by_name(reverse_name, include_related=False):
                raise relation_error(
                    f"reverse name '{reverse_name}' collides with a field of "
                    f"model '{target.name}'"
                )
            claimed[(id(target), reverse_name)] = field
            pending.append((field, reverse_name))

        for field, reverse_name in pending:
            target = field.target_model
            related = RelatedField.for_foreign_key(field)
            related.validate_field(reverse_name, target)
            target.schema._register_relation(reverse_name, related)
            log.debug(
                f"Registered reverse relation '{reverse_name}' on "
                f"'{target.name}' for '{model.name}.{field.field_name}'"
            )
