"""Column model: what each column shows, and how a row yields its cell value.

Rows are opaque to the engine.  A column reaches into a row through its
*accessor*, which is either a key (looked up on mappings, or as an
attribute on any other object, with ``.`` walking nested values) or a
callable taking the row.  Nothing in the engine assumes a concrete row
type.
"""

import datetime
import math
from collections.abc import Callable, Hashable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from reflex_table_engine.models import ColumnDef

Accessor = str | Callable[[Any], Any]

ColumnType = Literal["string", "number", "date", "dateTime", "boolean", "singleSelect"]


def _humanize_field_name(field: str) -> str:
    """Convert a snake_case or raw field name to a human-friendly header.

    Examples:
        ``"fuel_type"`` -> ``"Fuel Type"``
        ``"age"`` -> ``"Age"``
        ``"__row_id__"`` -> ``"Row Id"``
    """
    return field.strip("_").replace("_", " ").title()


def is_missing(value: Any) -> bool:
    """Return True for values the grid treats as absent (``None`` and NaN)."""
    if value is None:
        return True
    return isinstance(value, float) and math.isnan(value)


def stringify(value: Any) -> str:
    """Render a cell value as the text used for filtering, display and export.

    * missing values -> ``""``
    * booleans -> ``"true"`` / ``"false"``
    * dates / datetimes -> ISO-8601
    * lists / tuples -> comma-joined items
    """
    if is_missing(value):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return ",".join(stringify(v) for v in value)
    return str(value)


def _lookup(row: Any, key: str) -> Any:
    """Resolve *key* on *row*, walking ``a.b.c`` paths.  Missing -> ``None``."""
    current = row
    for part in key.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    return current


@dataclass(frozen=True)
class ColumnDescriptor:
    """Declarative description of one grid column.

    Attributes:
        id: Unique column identifier within a :class:`ColumnModel`.
        accessor: Key or callable mapping a row to its cell value.
            Defaults to ``id`` used as a key.
        header: Header text; derived from ``id`` when omitted.
        sortable: Whether sort transitions may target this column.
        filterable: Whether column filters may target this column.
        visible: Initial visibility.
        hideable: Whether the visibility toggle may hide this column.
        exportable: Whether CSV export includes this column.
        cell_formatter: ``(value, row) -> display value``.  Its result is
            what the global filter scans and what export writes.
        footer_aggregator: ``(rows) -> footer value`` over the filtered set.
        type: Display type hint for the presentation layer.
        description: Header tooltip text.
    """

    id: str
    accessor: Accessor | None = None
    header: str | None = None
    sortable: bool = True
    filterable: bool = True
    visible: bool = True
    hideable: bool = True
    exportable: bool = True
    cell_formatter: Callable[[Any, Any], Any] | None = None
    footer_aggregator: Callable[[list[Any]], Any] | None = None
    type: ColumnType | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            raise ValueError(f"Column id must be a non-empty string, got {self.id!r}")
        if self.accessor is not None and not (isinstance(self.accessor, str) or callable(self.accessor)):
            raise TypeError(
                f"Column {self.id!r}: accessor must be a key or a callable, "
                f"got {type(self.accessor).__name__}"
            )

    @property
    def accessor_key(self) -> str:
        """The identifier written to the CSV header for this column."""
        return self.accessor if isinstance(self.accessor, str) else self.id

    @property
    def header_name(self) -> str:
        return self.header if self.header is not None else _humanize_field_name(self.id)

    def value(self, row: Any) -> Any:
        """Raw cell value for *row*."""
        if callable(self.accessor):
            return self.accessor(row)
        return _lookup(row, self.accessor_key)

    def formatted(self, row: Any) -> str:
        """Display text for *row*, after the cell formatter if any."""
        value = self.value(row)
        if self.cell_formatter is not None:
            value = self.cell_formatter(value, row)
        return stringify(value)

    def footer(self, rows: list[Any]) -> str | None:
        if self.footer_aggregator is None:
            return None
        return stringify(self.footer_aggregator(rows))

    def to_column_def(self, *, hidden: bool = False) -> ColumnDef:
        return ColumnDef(
            field=self.id,
            header_name=self.header_name,
            type=self.type,
            sortable=self.sortable,
            filterable=self.filterable,
            hideable=self.hideable,
            hide=hidden,
            description=self.description,
        )


class ColumnModel:
    """Immutable, ordered collection of :class:`ColumnDescriptor`.

    Also owns row identity: ``row_id`` is a key or a callable, and rows
    that do not carry an identity fall back to their position in the
    dataset they were supplied with.
    """

    def __init__(
        self,
        columns: Iterable[ColumnDescriptor],
        *,
        row_id: Accessor = "id",
    ) -> None:
        self._columns: tuple[ColumnDescriptor, ...] = tuple(columns)
        self._by_id: dict[str, ColumnDescriptor] = {}
        for column in self._columns:
            if column.id in self._by_id:
                raise ValueError(f"Duplicate column id: {column.id!r}")
            self._by_id[column.id] = column
        self._row_id = row_id

    def __iter__(self) -> Iterator[ColumnDescriptor]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __contains__(self, column_id: object) -> bool:
        return column_id in self._by_id

    def __getitem__(self, column_id: str) -> ColumnDescriptor:
        return self._by_id[column_id]

    def get(self, column_id: str) -> ColumnDescriptor | None:
        return self._by_id.get(column_id)

    @property
    def ids(self) -> list[str]:
        return [c.id for c in self._columns]

    def is_sortable(self, column_id: str) -> bool:
        column = self._by_id.get(column_id)
        return column is not None and column.sortable

    def is_filterable(self, column_id: str) -> bool:
        column = self._by_id.get(column_id)
        return column is not None and column.filterable

    def exportable(self) -> list[ColumnDescriptor]:
        return [c for c in self._columns if c.exportable]

    def visible(self, overrides: Mapping[str, bool] | None = None) -> list[ColumnDescriptor]:
        """Columns shown after applying per-column visibility *overrides*."""
        overrides = overrides or {}
        return [c for c in self._columns if overrides.get(c.id, c.visible)]

    def row_identity(self, row: Any, position: int) -> Hashable:
        """Stable identity for *row*; *position* is the fallback."""
        if callable(self._row_id):
            identity = self._row_id(row)
        else:
            identity = _lookup(row, self._row_id)
        if is_missing(identity):
            return position
        return identity
