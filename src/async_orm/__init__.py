# src/async_orm/__init__.py

"""
Async ORM Library Initialization.

This package provides typed model declarations, an immutable query builder
that compiles to parameterized PostgreSQL, and an asyncpg-backed executor.

It initializes a logger with a NullHandler and makes the model, field, query
and executor components available at the top level.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging for "async_orm".
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False  # Prevent log messages from propagating to the root logger

# --------------------------------------------------------------------------
# Model and Field Exports
# --------------------------------------------------------------------------
from .base.model import Model, ModelSchema
from .base.fields import (
    AutoSerial,
    BigInt,
    Boolean,
    CIText,
    DateTime,
    FieldKind,
    FieldSpec,
    ForeignKey,
    Integer,
    OnDelete,
    RelatedField,
    SmallInt,
    Text,
    Varchar,
)

# --------------------------------------------------------------------------
# Query Building Exports
# --------------------------------------------------------------------------
from .base.query import CompiledQuery, QueryBuilder, QueryKind
from .base.join_tree import JoinTree, JoinType, QueryField, split_relation_path

# --------------------------------------------------------------------------
# Execution Exports
# --------------------------------------------------------------------------
from .base.interfaces import (
    ExecutionResult,
    Executor,
    clear_default_executor,
    get_default_executor,
    set_default_executor,
)
from .db_implementations.postgresql_executor import AsyncpgExecutor
from .config import PostgresConfig

# --------------------------------------------------------------------------
# Exception Exports
# --------------------------------------------------------------------------
from .base.exceptions import (
    ArgumentTypeError,
    ConstraintViolationError,
    ExecutionError,
    FieldNotFoundError,
    JoinsNotAllowedError,
    QueryBuildError,
    QueryTypeConflictError,
    SchemaDefinitionError,
    SubqueryKindError,
)

__all__ = [
    # Models
    "Model",
    "ModelSchema",
    # Fields
    "FieldSpec",
    "FieldKind",
    "OnDelete",
    "Varchar",
    "Text",
    "CIText",
    "SmallInt",
    "Integer",
    "BigInt",
    "Boolean",
    "DateTime",
    "AutoSerial",
    "ForeignKey",
    "RelatedField",
    # Query
    "QueryBuilder",
    "QueryKind",
    "CompiledQuery",
    "JoinTree",
    "JoinType",
    "QueryField",
    "split_relation_path",
    # Execution
    "Executor",
    "ExecutionResult",
    "set_default_executor",
    "get_default_executor",
    "clear_default_executor",
    "AsyncpgExecutor",
    "PostgresConfig",
    # Exceptions
    "SchemaDefinitionError",
    "QueryBuildError",
    "FieldNotFoundError",
    "JoinsNotAllowedError",
    "QueryTypeConflictError",
    "ArgumentTypeError",
    "SubqueryKindError",
    "ExecutionError",
    "ConstraintViolationError",
    # Logging
    "logger",
]

__version__ = "0.1.0"
