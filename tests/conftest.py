from collections.abc import Callable
from typing import Any

import pytest

from reflex_table_engine.columns import ColumnDescriptor, ColumnModel


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Collects timers instead of waiting; tests fire them explicitly."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_all(self) -> None:
        for timer in self.pending:
            timer.fired = True
            timer.callback()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def people() -> list[dict[str, Any]]:
    return [
        {"id": 1, "name": "John", "age": 30},
        {"id": 2, "name": "Jane", "age": 25},
        {"id": 3, "name": "Bob", "age": 40},
    ]


@pytest.fixture
def people_columns() -> list[ColumnDescriptor]:
    return [
        ColumnDescriptor("id", type="number"),
        ColumnDescriptor("name"),
        ColumnDescriptor("age", type="number"),
    ]


@pytest.fixture
def people_model(people_columns: list[ColumnDescriptor]) -> ColumnModel:
    return ColumnModel(people_columns)


@pytest.fixture
def many_rows() -> list[dict[str, Any]]:
    """47 rows with a repeating category and a few missing scores."""
    return [
        {
            "id": i,
            "name": f"row-{i:02d}",
            "category": ("a", "b", "c")[i % 3],
            "score": None if i % 10 == 0 else i * 1.5,
        }
        for i in range(1, 48)
    ]


@pytest.fixture
def many_columns() -> list[ColumnDescriptor]:
    return [
        ColumnDescriptor("id", type="number"),
        ColumnDescriptor("name"),
        ColumnDescriptor("category", type="singleSelect"),
        ColumnDescriptor("score", type="number"),
    ]
