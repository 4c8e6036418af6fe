# src/async_orm/base/interfaces.py

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from async_orm.base.exceptions import ExecutionError

log = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Normalized result of running one statement against the backing store."""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0

    def __repr__(self) -> str:
        return f"ExecutionResult(rows={len(self.rows)}, row_count={self.row_count})"


class Executor(ABC):
    """
    Base executor interface: runs compiled SQL text with positional
    parameters against a relational backend.

    Implementations own connection handling, cancellation and any retry
    policy. The query builder only awaits `execute`.
    """

    @abstractmethod
    async def execute(self, sql: str, params: Sequence[Any]) -> ExecutionResult:
        """
        Execute a single statement.

        Args:
            sql: SQL text using `$1`, `$2`, ... placeholders.
            params: Values bound to the placeholders, in order.

        Returns:
            An ExecutionResult with the returned rows (as plain dicts) and the
            number of rows affected or returned.

        Raises:
            ExecutionError: If the backend rejects or fails the statement.
        """
        pass


# --- Default Executor Registry ---
_default_executor: Optional[Executor] = None


def set_default_executor(executor: Executor) -> None:
    """Registers the executor used by `QueryBuilder.execute()` when none is given."""
    global _default_executor
    if not isinstance(executor, Executor):
        raise TypeError(
            f"executor must be an Executor instance, got {type(executor).__name__}"
        )
    if _default_executor is not None and _default_executor is not executor:
        log.warning("Replacing the registered default executor.")
    _default_executor = executor
    log.info(f"Default executor set to {type(executor).__name__}.")


def get_default_executor() -> Executor:
    if _default_executor is None:
        raise ExecutionError(
            "no executor registered. use 'set_default_executor' first!"
        )
    return _default_executor


def clear_default_executor() -> None:
    global _default_executor
    _default_executor = None
