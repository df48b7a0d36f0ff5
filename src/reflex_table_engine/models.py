"""Shared state records for the data-grid engine and the column props model.

The grid state is expressed as small immutable records.  Transitions on
:class:`~reflex_table_engine.engine.DataGridEngine` replace whole records
instead of mutating them, so a snapshot handed to a host can never change
underneath it.

Sort and filter records serialise to the same JSON shapes MUI X DataGrid
uses for its ``sortModel`` / ``filterModel`` items (``{"field", "sort"}``
and ``{"field", "operator", "value"}``), which keeps saved presets
interchangeable with grids driven from the browser.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from reflex.components.props import PropsBase

SortDirection = Literal["asc", "desc"]

ChangeKind = Literal["sort", "columnFilter", "globalFilter", "pagination"]

ExportScope = Literal["all", "filtered", "page", "selected"]

#: Operators that do not need a value to constrain a column.
VALUELESS_OPERATORS: frozenset[str] = frozenset({"isEmpty", "isNotEmpty"})


class ColumnDef(PropsBase):
    """Column definition handed to the presentation layer.

    Attributes are automatically converted from snake_case to camelCase
    when serialized to JavaScript props via PropsBase.
    """

    field: str
    header_name: str | None = None
    type: Literal["string", "number", "date", "dateTime", "boolean", "singleSelect"] | None = None
    sortable: bool = True
    filterable: bool = True
    hideable: bool = True
    hide: bool = False
    description: str | None = None


@dataclass(frozen=True)
class SortItem:
    """One entry of a sort descriptor.  List position is sort priority."""

    column_id: str
    direction: SortDirection = "asc"

    @property
    def descending(self) -> bool:
        return self.direction == "desc"

    def to_dict(self) -> dict[str, str]:
        return {"field": self.column_id, "sort": self.direction}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SortItem":
        """Build from ``{"field", "sort"}`` or ``{"columnId", "direction"}``."""
        column_id = data.get("field", data.get("columnId"))
        direction = data.get("sort", data.get("direction", "asc"))
        if direction not in ("asc", "desc"):
            direction = "asc"
        return cls(column_id=str(column_id), direction=direction)


@dataclass(frozen=True)
class ColumnFilter:
    """A filter constraining a single column.

    With ``operator=None`` the value's type picks the rule: strings match
    as case-insensitive substrings, numbers and booleans by equality,
    2-tuples ``(low, high)`` as inclusive ranges (either bound may be
    ``None``) and other collections by membership.
    """

    column_id: str
    value: Any = None
    operator: str | None = None

    @property
    def is_active(self) -> bool:
        """Whether this filter constrains anything at all."""
        if self.operator in VALUELESS_OPERATORS:
            return True
        if self.value is None:
            return False
        if isinstance(self.value, str):
            return self.value != ""
        if isinstance(self.value, tuple) and len(self.value) == 2 and self.operator is None:
            return any(bound is not None for bound in self.value)
        if isinstance(self.value, (list, tuple, set, frozenset)):
            return len(self.value) > 0
        return True

    @property
    def is_range(self) -> bool:
        """Whether this is an operator-less ``(low, high)`` range."""
        return self.operator is None and isinstance(self.value, tuple) and len(self.value) == 2

    def to_dict(self) -> dict[str, Any]:
        value, operator = self.value, self.operator
        if self.is_range:
            value = list(value)
        elif isinstance(value, (list, tuple, set, frozenset)):
            # Membership travels as isAnyOf so it cannot be read back as a range.
            value = sorted(value, key=str) if isinstance(value, (set, frozenset)) else list(value)
            if operator is None:
                operator = "isAnyOf"
        return {"field": self.column_id, "operator": operator, "value": value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ColumnFilter":
        column_id = data.get("field", data.get("columnId", data.get("id")))
        value = data.get("value")
        operator = data.get("operator")
        # Only ranges travel as operator-less two-element arrays.
        if operator is None and isinstance(value, list) and len(value) == 2:
            value = tuple(value)
        return cls(column_id=str(column_id), value=value, operator=operator)


@dataclass(frozen=True)
class FilterState:
    """Global free-text filter plus at most one filter per column."""

    global_filter: str = ""
    column_filters: tuple[ColumnFilter, ...] = ()

    @property
    def is_active(self) -> bool:
        return bool(self.global_filter) or any(f.is_active for f in self.column_filters)

    def get(self, column_id: str) -> ColumnFilter | None:
        for flt in self.column_filters:
            if flt.column_id == column_id:
                return flt
        return None

    def with_global_filter(self, value: str | None) -> "FilterState":
        return replace(self, global_filter=value or "")

    def with_column_filter(self, flt: ColumnFilter) -> "FilterState":
        """Upsert *flt* by column id; an inactive filter removes the entry."""
        kept: list[ColumnFilter] = []
        replaced = False
        for existing in self.column_filters:
            if existing.column_id != flt.column_id:
                kept.append(existing)
            elif flt.is_active:
                kept.append(flt)
                replaced = True
            else:
                replaced = True
        if not replaced and flt.is_active:
            kept.append(flt)
        return replace(self, column_filters=tuple(kept))


@dataclass(frozen=True)
class PaginationState:
    page_index: int = 0
    page_size: int = 10

    @property
    def offset(self) -> int:
        return self.page_index * self.page_size

    def to_dict(self) -> dict[str, int]:
        return {"pageIndex": self.page_index, "pageSize": self.page_size}


@dataclass(frozen=True)
class ViewResult:
    """The window of rows a grid shows, plus the counts that frame it.

    ``page_count`` is ``None`` when it cannot be known (server-side mode
    without a total row count).  ``filtered_rows`` is the full sorted and
    filtered set in client-side mode and the current page in server-side
    mode.
    """

    visible_rows: list[Any]
    filtered_count: int
    page_count: int | None
    pagination: PaginationState
    filtered_rows: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class AggregateState:
    """Bulk-select checkbox state for the current page."""

    all_selected: bool = False
    some_selected: bool = False


@dataclass(frozen=True)
class BatchAction:
    label: str
    value: str


@dataclass
class ServerSideOptions:
    """Delegate sort, filter and pagination to the host.

    Each ``on_*`` callback receives the new descriptor once per committed
    transition of its kind.  Filter emissions are debounced by
    ``filter_debounce_ms``; set it to ``0`` to emit synchronously.
    """

    enabled: bool = False
    total_rows: int | None = None
    on_pagination_change: Callable[[PaginationState], Any] | None = None
    on_sorting_change: Callable[[tuple[SortItem, ...]], Any] | None = None
    on_global_filter_change: Callable[[str], Any] | None = None
    on_column_filters_change: Callable[[tuple[ColumnFilter, ...]], Any] | None = None
    filter_debounce_ms: int = 300


@dataclass
class ExportOptions:
    enabled: bool = False
    filename: str | None = None
    export_formatter: Callable[[list[Any]], list[Any]] | None = None
    on_export: Callable[[list[Any]], Any] | None = None
    scope: ExportScope = "all"


@dataclass
class SelectionOptions:
    enabled: bool = False
    on_selection_change: Callable[[list[Any]], Any] | None = None
    on_batch_action: Callable[[str, list[Any]], Any] | None = None
    batch_actions: Sequence[BatchAction] = ()
    retain_selection_across_fetch: bool = False
