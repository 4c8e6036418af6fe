# tests/conftest.py
import logging
from types import SimpleNamespace
from typing import Any, List, Optional, Sequence, Tuple

import pytest

from async_orm.base.fields import (
    AutoSerial,
    Boolean,
    CIText,
    DateTime,
    ForeignKey,
    Integer,
    SmallInt,
    Text,
    Varchar,
)
from async_orm.base.interfaces import (
    ExecutionResult,
    Executor,
    clear_default_executor,
)
from async_orm.base.model import Model


# --- Recording Executor ---
class RecordingExecutor(Executor):
    """Executor double that records every call and replays a canned result."""

    def __init__(self, result: Optional[ExecutionResult] = None, error: Optional[Exception] = None):
        self.calls: List[Tuple[str, List[Any]]] = []
        self.result = result or ExecutionResult()
        self.error = error

    async def execute(self, sql: str, params: Sequence[Any]) -> ExecutionResult:
        self.calls.append((sql, list(params)))
        if self.error is not None:
            raise self.error
        return self.result


# --- Fixtures ---
@pytest.fixture
def models() -> SimpleNamespace:
    """
    Freshly declared related models.

    Customer <- Order <- OrderItem -> Item <- ItemTopping -> Topping, plus a
    self-referencing Employee. Declared per test because later models
    register reverse relations on earlier ones.
    """
    customer = Model.define("Customer", {
        "id": AutoSerial(primary_key=True, nullable=False),
        "first": Varchar(max_size=64, nullable=False),
        "last": Varchar(max_size=64),
        "email": CIText(unique=True),
        "active": Boolean(default=True, nullable=False),
    })
    order = Model.define("Order", {
        "id": AutoSerial(primary_key=True, nullable=False),
        "customer": ForeignKey(model=customer, nullable=False, on_delete="CASCADE"),
        "is_paid": Boolean(default=False, nullable=False),
        "created": DateTime(auto_now=True, time_zone="UTC"),
    })
    item = Model.define("Item", {
        "id": AutoSerial(primary_key=True, nullable=False),
        "name": Varchar(max_size=64, nullable=False),
        "price": Integer(default=0, nullable=False),
    })
    order_item = Model.define("OrderItem", {
        "id": AutoSerial(primary_key=True, nullable=False),
        "order": ForeignKey(model=order, reverse_name="order_items"),
        "item": ForeignKey(model=item, reverse_name="order_items"),
        "quantity": SmallInt(default=1),
    }, db_name="order_item")
    topping = Model.define("Topping", {
        "id": AutoSerial(primary_key=True, nullable=False),
        "name": Text(nullable=False),
    })
    item_topping = Model.define("ItemTopping", {
        "id": AutoSerial(primary_key=True, nullable=False),
        "item": ForeignKey(model=item, reverse_name="item_toppings"),
        "topping": ForeignKey(model=topping, reverse_name="item_toppings"),
    }, db_name="item_topping")
    employee = Model.define("Employee", {
        "id": AutoSerial(primary_key=True, nullable=False),
        "name": Varchar(max_size=64),
        "manager": ForeignKey(model="self", reverse_name="reports"),
    })
    return SimpleNamespace(
        Customer=customer,
        Order=order,
        Item=item,
        OrderItem=order_item,
        Topping=topping,
        ItemTopping=item_topping,
        Employee=employee,
    )


@pytest.fixture
def recording_executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture(autouse=True)
def reset_default_executor():
    clear_default_executor()
    yield
    clear_default_executor()


# --- Logger Fixture ---
@pytest.fixture(scope="session")
def logger():
    """Create a test logger."""
    _logger = logging.getLogger("test_orm_logger")
    if not _logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.setLevel(logging.DEBUG)
        _logger.addHandler(handler)
        _logger.setLevel(logging.DEBUG)
        _logger.propagate = False
    return logging.LoggerAdapter(_logger, {})
