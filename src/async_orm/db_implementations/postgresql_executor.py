# src/async_orm/db_implementations/postgresql_executor.py

import logging
from contextlib import asynccontextmanager
from logging import LoggerAdapter
from typing import Any, AsyncGenerator, Iterable, List, NoReturn, Optional, Sequence

import asyncpg

from async_orm.base.exceptions import ConstraintViolationError, ExecutionError
from async_orm.base.fields import FieldKind
from async_orm.base.interfaces import ExecutionResult, Executor
from async_orm.base.model import Model
from async_orm.base.utils import quote_identifier
from async_orm.config import PostgresConfig

base_logger = logging.getLogger("async_orm.backends.postgres_executor")


def _parse_row_count(status: Optional[str], fallback: int) -> int:
    """Read the affected row count from a command tag like `UPDATE 3`."""
    if not status:
        return fallback
    last = status.split()[-1]
    return int(last) if last.isdigit() else fallback


class AsyncpgExecutor(Executor):
    """
    Executor running compiled queries on a PostgreSQL server through an
    asyncpg connection pool.

    The pool is owned by the caller unless the executor was created with
    `from_config`; `close()` closes it either way.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        """
        Initialize the executor with an existing connection pool.

        Args:
            db_pool: An active asyncpg.Pool object.
        """
        if not isinstance(db_pool, asyncpg.Pool):
            raise TypeError("db_pool must be an instance of asyncpg.Pool")

        self._pool = db_pool
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._logger.info("Executor instance created (Pool).")

    @classmethod
    async def from_config(cls, config: PostgresConfig) -> "AsyncpgExecutor":
        """Create a pool from `config` and wrap it in an executor."""
        base_logger.info(
            f"Creating asyncpg pool for {config.host}:{config.port}/{config.database} "
            f"(size {config.min_size}-{config.max_size})"
        )
        try:
            pool = await asyncpg.create_pool(**config.pool_kwargs())
        except (asyncpg.PostgresError, OSError) as error:
            base_logger.error(f"Could not create asyncpg pool: {error}", exc_info=True)
            raise ExecutionError(
                f"Could not connect to {config.host}:{config.port}/{config.database}: "
                f"{error}"
            ) from error
        return cls(pool)

    @property
    def pool(self) -> asyncpg.Pool:
        return self._pool

    async def close(self) -> None:
        await self._pool.close()
        self._logger.info("Connection pool closed.")

    # --- Connection/Session Management ---
    @asynccontextmanager
    async def _get_session(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Acquire a connection from the pool and release it afterwards."""
        conn: Optional[asyncpg.Connection] = None
        try:
            conn = await self._pool.acquire()
            self._logger.debug(f"Acquired connection {conn} from pool.")
            yield conn
        finally:
            if conn:
                try:
                    await self._pool.release(conn)
                    self._logger.debug(f"Released connection {conn} back to pool.")
                except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as release_error:
                    self._logger.error(
                        f"Error releasing connection {conn}: {release_error}",
                        exc_info=True,
                    )

    # --- Execution ---
    async def execute(self, sql: str, params: Sequence[Any]) -> ExecutionResult:
        self._logger.debug(f"Executing: SQL='{sql}', Params={list(params)}")
        try:
            async with self._get_session() as conn:
                statement = await conn.prepare(sql)
                records = await statement.fetch(*params)
                status = statement.get_statusmsg()
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            self._handle_db_error(e, "executing statement")

        rows = [dict(record) for record in records]
        row_count = _parse_row_count(status, len(rows))
        self._logger.debug(f"Statement finished with status '{status}' ({row_count} rows).")
        return ExecutionResult(rows=rows, row_count=row_count)

    # --- Schema Setup ---
    async def create_schema(self, models: Iterable[Model], logger: LoggerAdapter) -> None:
        """
        Create the tables of `models`, in the given order.

        Tables referenced by foreign keys must come before the tables
        referencing them. The citext extension is enabled when needed.
        """
        models = list(models)
        statements: List[str] = []
        if any(
            field.kind is FieldKind.CITEXT
            for model in models
            for field in model.schema.fields.values()
        ):
            statements.append("CREATE EXTENSION IF NOT EXISTS citext")
        statements.extend(model.schema.generate_table_sql() for model in models)

        logger.info(f"Attempting to create schema ({len(models)} tables)...")
        try:
            async with self._get_session() as conn:
                async with conn.transaction():
                    for statement in statements:
                        logger.debug(f"Executing DDL: {statement}")
                        await conn.execute(statement)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            self._handle_db_error(e, "creating schema")
        logger.info(f"Schema created for {[model.name for model in models]}.")

    async def drop_schema(self, models: Iterable[Model], logger: LoggerAdapter) -> None:
        """Drop the tables of `models`, in reverse order."""
        models = list(models)
        logger.info(f"Dropping {len(models)} tables...")
        try:
            async with self._get_session() as conn:
                for model in reversed(models):
                    table_name = quote_identifier(model.schema.table_name)
                    await conn.execute(f"DROP TABLE IF EXISTS {table_name} CASCADE")
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            self._handle_db_error(e, "dropping schema")

    # --- Error Handling ---
    def _handle_db_error(self, error: Exception, context: str = "") -> NoReturn:
        """
        Map database and connection errors to ExecutionError.

        Args:
            error: The exception caught.
            context: What was being done when the error occurred.

        Raises:
            ConstraintViolationError: For unique, not-null, foreign key and
                check constraint violations.
            ExecutionError: For every other database or connection error.
        """
        log_message = f"Error during {context}: {error}"
        self._logger.error(log_message, exc_info=True)

        if isinstance(error, asyncpg.UniqueViolationError):
            raise ConstraintViolationError(
                f"Unique constraint '{error.constraint_name}' violated during "
                f"{context}. Detail: {error}",
                constraint_name=error.constraint_name,
            ) from error

        if isinstance(error, asyncpg.NotNullViolationError):
            raise ConstraintViolationError(
                f"NOT NULL constraint violated for column '{error.column_name}' "
                f"during {context}. Detail: {error}",
            ) from error

        if isinstance(error, asyncpg.ForeignKeyViolationError):
            raise ConstraintViolationError(
                f"Foreign key constraint '{error.constraint_name}' violated during "
                f"{context}. Detail: {error}",
                constraint_name=error.constraint_name,
            ) from error

        if isinstance(error, asyncpg.CheckViolationError):
            raise ConstraintViolationError(
                f"Check constraint '{error.constraint_name}' violated during "
                f"{context}. Detail: {error}",
                constraint_name=error.constraint_name,
            ) from error

        if isinstance(error, (asyncpg.UndefinedTableError, asyncpg.UndefinedColumnError)):
            raise ExecutionError(
                f"Schema mismatch during {context}; was the schema created? "
                f"Detail: {error}"
            ) from error

        if isinstance(error, asyncpg.DataError):
            raise ExecutionError(
                f"Invalid data encountered during {context}. Detail: {error}"
            ) from error

        if isinstance(error, asyncpg.PostgresError):
            raise ExecutionError(f"Database error during {context}: {error}") from error

        raise ExecutionError(f"Connection error during {context}: {error}") from error
