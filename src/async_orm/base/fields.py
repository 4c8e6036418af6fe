# src/async_orm/base/fields.py
import copy
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import MISSING
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Dict,
    Mapping,
    Optional,
    Type,
    Union,
)

from .exceptions import SchemaDefinitionError
from .utils import literal_to_sql, quote_identifier, quote_literal

if TYPE_CHECKING:
    from .model import Model

# --- Setup Logging ---
log = logging.getLogger(__name__)


# --- Field Kinds ---
class FieldKind(Enum):
    """The closed set of column kinds a model may declare."""

    VARCHAR = "Varchar"
    TEXT = "Text"
    CITEXT = "CIText"
    SMALLINT = "SmallInt"
    INTEGER = "Integer"
    BIGINT = "BigInt"
    BOOLEAN = "Boolean"
    DATETIME = "DateTime"
    AUTOSERIAL = "AutoSerial"
    FOREIGN_KEY = "ForeignKey"
    RELATED = "RelatedField"


class OnDelete(Enum):
    """Referential actions accepted by ForeignKey's `on_delete` option."""

    SET_NULL = "SET NULL"
    SET_DEFAULT = "SET DEFAULT"
    CASCADE = "CASCADE"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"


_FIELD_REGISTRY: Dict[FieldKind, Type["FieldSpec"]] = {}


def register_field(cls: Type["FieldSpec"]) -> Type["FieldSpec"]:
    """Class decorator adding a concrete field class to the kind registry."""
    if not isinstance(cls.kind, FieldKind):
        raise SchemaDefinitionError(f"{cls.__name__} does not declare a FieldKind")
    if cls.kind in _FIELD_REGISTRY:
        raise SchemaDefinitionError(
            f"FieldKind {cls.kind.value} is already registered to "
            f"{_FIELD_REGISTRY[cls.kind].__name__}"
        )
    _FIELD_REGISTRY[cls.kind] = cls
    return cls


def get_field_class(kind: FieldKind) -> Type["FieldSpec"]:
    return _FIELD_REGISTRY[kind]


# --- Base Field ---
class FieldSpec:
    """
    Typed column descriptor.

    A field is constructed with its options, then bound to exactly one model
    by `validate_field`, which checks and normalizes the options. After the
    whole model is assembled, `init_binding` runs the second phase for the
    fields that need the owner's final metadata.
    """

    kind: ClassVar[Optional[FieldKind]] = None
    sql_type: ClassVar[str] = ""

    # option name -> default. The default's type is the option's type;
    # MISSING means "absent unless given", None means "untyped".
    defaults: ClassVar[Dict[str, Any]] = {
        "nullable": True,
        "primary_key": False,
        "unique": False,
        "default": MISSING,
        "db_name": None,
    }

    def __init__(self, options: Any = None, **kwargs: Any):
        cls = type(self)
        if cls.kind is None or _FIELD_REGISTRY.get(cls.kind) is not cls:
            raise SchemaDefinitionError(
                f"{cls.__name__} is not a registered field type"
            )
        if options is None:
            options = dict(kwargs)
        elif kwargs and isinstance(options, Mapping):
            options = {**options, **kwargs}

        self._declared: Any = options
        self._options: Any = options
        self.field_name: Optional[str] = None
        self.owner: Optional["Model"] = None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(field_name={self.field_name!r}, "
            f"owner={self.owner.name if self.owner else None!r})"
        )

    # --- Option Access ---
    @property
    def options(self) -> Any:
        if isinstance(self._options, dict):
            return MappingProxyType(self._options)
        return self._options

    @property
    def db_name(self) -> str:
        return self._options["db_name"]

    @property
    def nullable(self) -> bool:
        return self._options["nullable"]

    @property
    def primary_key(self) -> bool:
        return self._options["primary_key"]

    @property
    def unique(self) -> bool:
        return self._options["unique"]

    @property
    def has_default(self) -> bool:
        return "default" in self._options

    @property
    def is_relation(self) -> bool:
        return False

    @property
    def is_bound(self) -> bool:
        return self.owner is not None

    def _error(self, message: str) -> SchemaDefinitionError:
        return SchemaDefinitionError(
            f"{type(self).__name__} Field '{self.field_name}' {message}"
        )

    # --- Validation ---
    def validate_field(self, field_name: str, owning_model: "Model") -> None:
        """
        Validate the declared options and bind the field to its model.

        Args:
            field_name: The name the model declares this field under.
            owning_model: The Model the field belongs to.

        Raises:
            SchemaDefinitionError: If the options are invalid, the owner is not
                a Model, or the field is already bound elsewhere.
        """
        from .model import Model  # model.py imports this module

        if self.owner is None:
            self.field_name = field_name

        if not isinstance(self._declared, Mapping):
            raise self._error("options must be a mapping!")

        if not isinstance(owning_model, Model):
            raise self._error("owning model is not a Model")

        if self.owner is not None and (
            self.owner is not owning_model or self.field_name != field_name
        ):
            raise self._error(
                f"is already bound to model '{self.owner.name}' as "
                f"'{self.field_name}'"
            )

        opts = dict(self._declared)
        self._check_option_types(opts)
        self._apply_option_defaults(opts)

        if opts["db_name"] is None:
            opts["db_name"] = self._default_db_name(field_name)

        # option mixtures that don't make sense
        if opts["primary_key"] and opts["unique"]:
            raise self._error("is marked primary key and unique. choose only one")

        if opts["primary_key"] and opts["nullable"]:
            raise self._error("cannot be a primary key and be nullable")

        self.validate_default(opts)
        self.validate_options(opts)

        rebinding = self.owner is owning_model
        self._options = opts
        self.owner = owning_model
        if rebinding and owning_model.schema is not None:
            # restore what the second phase derived from the owner
            self.init_binding()
        log.debug(
            f"Validated {type(self).__name__} field '{field_name}' on model "
            f"'{owning_model.name}' (column '{opts['db_name']}')"
        )

    def _unbind(self) -> None:
        """Drop the binding of a field whose model declaration failed."""
        self._options = self._declared
        self.field_name = None
        self.owner = None

    def _check_option_types(self, opts: Dict[str, Any]) -> None:
        for key, value in opts.items():
            if key not in self.defaults:
                choices = ", ".join(self.defaults)
                raise self._error(f"unknown option '{key}'. choices are: {choices}")

            default = self.defaults[key]
            if default is MISSING or default is None:
                continue

            if isinstance(default, bool):
                type_ok = isinstance(value, bool)
            else:
                type_ok = isinstance(value, type(default))
            if not type_ok:
                raise self._error(
                    f"'{key}' option must be type '{type(default).__name__}'"
                )

        db_name = opts.get("db_name")
        if db_name is not None and (not isinstance(db_name, str) or not db_name):
            raise self._error("'db_name' option must be a non-empty string")

    def _apply_option_defaults(self, opts: Dict[str, Any]) -> None:
        for key, default in self.defaults.items():
            if key not in opts and default is not MISSING:
                opts[key] = default

    def _default_db_name(self, field_name: str) -> str:
        return field_name

    def validate_default(self, opts: Dict[str, Any]) -> None:
        """Kind-specific check of the `default` option."""

    def validate_options(self, opts: Dict[str, Any]) -> None:
        """Kind-specific check of the remaining options."""

    def init_binding(self) -> None:
        """Second-phase hook, run once the owning model is fully assembled."""

    # --- SQL Rendering ---
    def _require_bound(self) -> None:
        if self.owner is None:
            raise self._error("is not bound to a model")

    def type_to_sql(self) -> str:
        return self.sql_type

    def default_to_sql(self) -> str:
        return literal_to_sql(self._options["default"])

    def to_table_sql(self) -> str:
        """Return the column definition used inside CREATE TABLE."""
        self._require_bound()
        sql = f"{quote_identifier(self.db_name)} {self.type_to_sql()}"
        if not self.nullable:
            sql += " NOT NULL"
        if self.has_default:
            sql += f" DEFAULT {self.default_to_sql()}"
        if self.primary_key:
            sql += " PRIMARY KEY"
        if self.unique:
            sql += " UNIQUE"
        return sql

    def name_to_sql(self) -> str:
        self._require_bound()
        table_name = self.owner.schema.table_name
        return f"{quote_identifier(table_name)}.{quote_identifier(self.db_name)}"

    def clone(self) -> "FieldSpec":
        """Return a fresh, unbound field built from the declared options."""
        return type(self)(copy.copy(self._declared))


# --- Shared Checks ---
def _check_int_range(field: FieldSpec, value: Any, bits: int) -> int:
    """Validate an integer default against a signed column of `bits` width."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise field._error("default value must be an integer")

    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise field._error(
                "default value should be an integer without float point decimal"
            )
        value = int(value)

    limit = 1 << (bits - 1)
    if value < -limit or value > limit - 1:
        raise field._error(
            f"default value exceeds max limit ({-limit} to +{limit - 1})"
        )
    return value


def _check_string_default(field: FieldSpec, opts: Dict[str, Any]) -> None:
    if "default" in opts and not isinstance(opts["default"], str):
        raise field._error("default value must be undefined or string")


# --- Character Fields ---
@register_field
class Varchar(FieldSpec):
    kind = FieldKind.VARCHAR
    sql_type = "varchar"
    defaults = {**FieldSpec.defaults, "max_size": MISSING}

    def type_to_sql(self) -> str:
        return f"{self.sql_type}({self._options['max_size']})"

    def validate_default(self, opts: Dict[str, Any]) -> None:
        _check_string_default(self, opts)

    def validate_options(self, opts: Dict[str, Any]) -> None:
        max_size = opts.get("max_size")
        if (
            isinstance(max_size, bool)
            or not isinstance(max_size, (int, float))
            or not math.isfinite(max_size)
        ):
            raise self._error("max_size required and must be an integer")

        int_size = int(max_size)
        if int_size <= 0:
            raise self._error("max_size must be greater than 0")

        if max_size != int_size:
            raise self._error(
                "max_size should be an integer without float point decimal"
            )
        opts["max_size"] = int_size


@register_field
class Text(FieldSpec):
    kind = FieldKind.TEXT
    sql_type = "text"

    def validate_default(self, opts: Dict[str, Any]) -> None:
        _check_string_default(self, opts)


@register_field
class CIText(FieldSpec):
    """Case-insensitive text (requires the citext extension)."""

    kind = FieldKind.CITEXT
    sql_type = "citext"

    def validate_default(self, opts: Dict[str, Any]) -> None:
        _check_string_default(self, opts)


# --- Integer Fields ---
@register_field
class SmallInt(FieldSpec):
    kind = FieldKind.SMALLINT
    sql_type = "smallint"
    bits: ClassVar[int] = 16

    def validate_default(self, opts: Dict[str, Any]) -> None:
        if "default" in opts:
            opts["default"] = _check_int_range(self, opts["default"], self.bits)


@register_field
class Integer(FieldSpec):
    kind = FieldKind.INTEGER
    sql_type = "integer"
    bits: ClassVar[int] = 32

    def validate_default(self, opts: Dict[str, Any]) -> None:
        if "default" in opts:
            opts["default"] = _check_int_range(self, opts["default"], self.bits)


@register_field
class BigInt(FieldSpec):
    kind = FieldKind.BIGINT
    sql_type = "bigint"
    bits: ClassVar[int] = 64

    def validate_default(self, opts: Dict[str, Any]) -> None:
        if "default" in opts:
            opts["default"] = _check_int_range(self, opts["default"], self.bits)


@register_field
class AutoSerial(FieldSpec):
    kind = FieldKind.AUTOSERIAL
    sql_type = "bigserial"

    def validate_default(self, opts: Dict[str, Any]) -> None:
        if "default" in opts:
            raise self._error("cannot have a default value")


@register_field
class Boolean(FieldSpec):
    kind = FieldKind.BOOLEAN
    sql_type = "boolean"

    def validate_default(self, opts: Dict[str, Any]) -> None:
        if "default" in opts and not isinstance(opts["default"], bool):
            raise self._error("default value must be a boolean")


# --- DateTime ---
@register_field
class DateTime(FieldSpec):
    kind = FieldKind.DATETIME
    defaults = {**FieldSpec.defaults, "time_zone": "", "auto_now": False}

    # applied to fields declared without an explicit time zone
    default_time_zone: ClassVar[str] = ""

    @property
    def has_default(self) -> bool:
        return "default" in self._options or self._options.get("auto_now", False)

    def type_to_sql(self) -> str:
        use_time_zone = "WITH" if self._options["time_zone"] else "WITHOUT"
        return f"TIMESTAMP {use_time_zone} TIME ZONE"

    def default_to_sql(self) -> str:
        if self._options["auto_now"]:
            time_zone = self._options["time_zone"]
            at_zone = f" at time zone {quote_literal(time_zone)}" if time_zone else ""
            return f"(now(){at_zone})"

        value = self._options["default"]
        if callable(value):
            value = value()
        return quote_literal(value.isoformat())

    def validate_default(self, opts: Dict[str, Any]) -> None:
        if "default" in opts and opts["auto_now"]:
            raise self._error(
                "auto_now option used with default value. choose only one."
            )
        if "default" not in opts:
            return

        value = opts["default"]
        if callable(value):
            if not isinstance(value(), datetime):
                raise self._error("default value function must return datetime instance")
        elif not isinstance(value, datetime):
            raise self._error("default value must be datetime instance or function")

    def validate_options(self, opts: Dict[str, Any]) -> None:
        if not opts["time_zone"] and DateTime.default_time_zone:
            opts["time_zone"] = DateTime.default_time_zone


# --- Relations ---
def _coerce_on_delete(value: Any) -> Optional[OnDelete]:
    if value is None or isinstance(value, OnDelete):
        return value
    if isinstance(value, str):
        for member in OnDelete:
            if value in (member.value, member.name):
                return member
    raise ValueError(value)


class _RelationMixin(ABC):
    """Join rendering shared by forward and reverse relations."""

    @property
    def is_relation(self) -> bool:
        return True

    @property
    @abstractmethod
    def join_model(self) -> "Model":
        """The model whose table a hop over this relation joins in."""
        pass

    @abstractmethod
    def join_on_sql(self, alias: str, parent_alias: str) -> str:
        """
        Render the ON condition of a hop over this relation.

        Args:
            alias: The alias of the joined table.
            parent_alias: The alias of the table the hop starts from.
        """
        pass


@register_field
class ForeignKey(_RelationMixin, FieldSpec):
    kind = FieldKind.FOREIGN_KEY
    defaults = {
        **FieldSpec.defaults,
        # model: the target Model, or "self"
        "model": MISSING,
        # reverse_name: the relation name registered on the target
        "reverse_name": None,
        "on_delete": None,
    }

    def _default_db_name(self, field_name: str) -> str:
        return f"{field_name}_id"

    def validate_options(self, opts: Dict[str, Any]) -> None:
        from .model import Model

        if opts["primary_key"]:
            raise self._error("cannot be a primary key")

        model = opts.get("model", MISSING)
        if not (isinstance(model, Model) or model == "self"):
            raise self._error("'model' option is required and must be a Model")

        reverse_name = opts["reverse_name"]
        if reverse_name is not None and (
            not isinstance(reverse_name, str) or not reverse_name
        ):
            raise self._error("reverse name must be a non-empty string or None")

        try:
            opts["on_delete"] = _coerce_on_delete(opts["on_delete"])
        except ValueError:
            choices = ", ".join(member.value for member in OnDelete)
            raise self._error(
                f"invalid on_delete value '{opts['on_delete']}'. choices are: {choices}"
            ) from None

    def init_binding(self) -> None:
        self._require_bound()
        if self._options["model"] == "self":
            self._options["model"] = self.owner
        if not self._options["reverse_name"]:
            self._options["reverse_name"] = self.owner.schema.table_name

    @property
    def target_model(self) -> "Model":
        model = self._options["model"]
        return self.owner if model == "self" else model

    @property
    def reverse_name(self) -> Optional[str]:
        return self._options["reverse_name"]

    @property
    def on_delete(self) -> Optional[OnDelete]:
        return self._options["on_delete"]

    @property
    def join_model(self) -> "Model":
        return self.target_model

    def type_to_sql(self) -> str:
        target = self.target_model.schema
        target_pk = target.get_primary_key()
        if target_pk.kind is FieldKind.AUTOSERIAL:
            pk_type = "bigint"
        else:
            pk_type = target_pk.type_to_sql()

        type_sql = f"{pk_type} REFERENCES {quote_identifier(target.table_name)}"
        if self.on_delete is not None:
            type_sql += f" ON DELETE {self.on_delete.value}"
        return type_sql

    def join_on_sql(self, alias: str, parent_alias: str) -> str:
        target_pk = self.target_model.schema.get_primary_key()
        return (
            f"{quote_identifier(alias)}.{quote_identifier(target_pk.db_name)} = "
            f"{quote_identifier(parent_alias)}.{quote_identifier(self.db_name)}"
        )


_SCHEMA_TOKEN = object()


@register_field
class RelatedField(_RelationMixin, FieldSpec):
    """
    Reverse side of a ForeignKey, registered on the foreign key's target.

    Only the model schema creates these, via `for_foreign_key`.
    """

    kind = FieldKind.RELATED
    defaults = {
        **FieldSpec.defaults,
        # model: the model declaring the foreign key
        "model": MISSING,
        "field": MISSING,
    }

    def __init__(self, options: Any = None, _token: Any = None, **kwargs: Any):
        if _token is not _SCHEMA_TOKEN:
            raise SchemaDefinitionError(
                "RelatedField is created by the model schema and cannot be "
                "declared directly"
            )
        super().__init__(options, **kwargs)

    @classmethod
    def for_foreign_key(cls, foreign_key: ForeignKey) -> "RelatedField":
        return cls({"model": foreign_key.owner, "field": foreign_key}, _token=_SCHEMA_TOKEN)

    def validate_options(self, opts: Dict[str, Any]) -> None:
        if not isinstance(opts.get("field"), ForeignKey):
            raise self._error("requires a ForeignKey 'field'")

    @property
    def foreign_key(self) -> ForeignKey:
        return self._options["field"]

    @property
    def related_model(self) -> "Model":
        return self._options["model"]

    @property
    def join_model(self) -> "Model":
        return self.related_model

    def type_to_sql(self) -> str:
        raise self._error("field not for SQL purposes")

    def name_to_sql(self) -> str:
        related = self.related_model.schema
        pk = related.get_primary_key()
        return f"{quote_identifier(related.table_name)}.{quote_identifier(pk.db_name)}"

    def join_on_sql(self, alias: str, parent_alias: str) -> str:
        parent_pk = self.owner.schema.get_primary_key()
        return (
            f"{quote_identifier(alias)}.{quote_identifier(self.foreign_key.db_name)} = "
            f"{quote_identifier(parent_alias)}.{quote_identifier(parent_pk.db_name)}"
        )

    def clone(self) -> "FieldSpec":
        raise self._error("cannot be cloned; it is derived from its ForeignKey")


RelationField = Union[ForeignKey, RelatedField]
