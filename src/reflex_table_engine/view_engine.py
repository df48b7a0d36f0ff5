"""Client-side sort, filter and pagination over an in-memory row collection.

Every function here is pure: rows come in, a new list goes out, and the
input collection is never mutated.  :func:`compute_view` chains the three
stages in the fixed order filter -> sort -> paginate.

Filter semantics:

* The **global filter** is a case-insensitive substring test against the
  formatted text of *every* column, filterable or not.
* A **column filter** applies the rule chosen by its operator, or, with no
  operator, the rule implied by the filter value's type (see
  :class:`~reflex_table_engine.models.ColumnFilter`).

Sort semantics: a stable multi-key sort.  Missing values sort before all
defined values in both directions; ties at the last key keep their input
order.
"""

import datetime
import functools
import math
from collections.abc import Iterable, Sequence
from typing import Any

from reflex_table_engine.columns import ColumnModel, is_missing, stringify
from reflex_table_engine.models import (
    ColumnFilter,
    FilterState,
    PaginationState,
    SortItem,
    ViewResult,
)


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def _coerce_numeric(value: Any) -> int | float | None:
    """Try to coerce *value* to a number."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return None if is_missing(value) else value
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        # Try int first, then float
        for conv in (int, float):
            try:
                return conv(value)
            except ValueError:
                continue
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_temporal(value: Any) -> bool:
    return isinstance(value, (datetime.date, datetime.time))


def _compare_values(a: Any, b: Any) -> int:
    """Three-way compare of two defined cell values.

    Numbers compare numerically, strings case-insensitively (raw order
    breaks case-only ties), same-typed dates by time.  Anything else falls
    back to comparing the stringified forms.
    """
    if _is_number(a) and _is_number(b):
        return (a > b) - (a < b)
    if isinstance(a, str) and isinstance(b, str):
        fa, fb = a.casefold(), b.casefold()
        if fa != fb:
            return (fa > fb) - (fa < fb)
        return (a > b) - (a < b)
    if isinstance(a, bool) and isinstance(b, bool):
        return int(a) - int(b)
    if _is_temporal(a) and type(a) is type(b):
        return (a > b) - (a < b)
    sa, sb = stringify(a), stringify(b)
    return (sa > sb) - (sa < sb)


def _in_range(value: Any, low: Any, high: Any) -> bool:
    """Inclusive bound check; either bound may be ``None``."""
    if is_missing(value):
        return False
    for bound, wanted in ((low, 1), (high, -1)):
        if bound is None:
            continue
        if _is_number(bound):
            num = _coerce_numeric(value)
            if num is None:
                return False
            cmp = (num > bound) - (num < bound)
        elif _is_temporal(bound) and _is_temporal(value):
            if type(bound) is not type(value):
                return False
            cmp = (value > bound) - (value < bound)
        else:
            cmp = _compare_values(value, bound)
        if cmp == -wanted:
            return False
    return True


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def _match_operator(value: Any, operator: str, target: Any) -> bool:
    text = stringify(value)
    if operator == "isEmpty":
        return text == ""
    if operator == "isNotEmpty":
        return text != ""
    if target is None:
        return True

    # -- singleSelect operators --
    if operator == "is":
        return text == stringify(target)
    if operator == "not":
        return text != stringify(target)
    if operator == "isAnyOf":
        if not isinstance(target, (list, tuple, set, frozenset)):
            return True
        return text in {stringify(t) for t in target}

    # -- string operators --
    needle = stringify(target).casefold()
    if operator == "contains":
        return needle in text.casefold()
    if operator == "equals":
        return text.casefold() == needle
    if operator == "startsWith":
        return text.casefold().startswith(needle)
    if operator == "endsWith":
        return text.casefold().endswith(needle)

    # -- numeric operators --
    if operator in ("=", "!=", ">", ">=", "<", "<="):
        num_value = _coerce_numeric(value)
        num_target = _coerce_numeric(target)
        if num_value is None or num_target is None:
            return operator == "!=" and num_target is not None
        if operator == "=":
            return num_value == num_target
        if operator == "!=":
            return num_value != num_target
        if operator == ">":
            return num_value > num_target
        if operator == ">=":
            return num_value >= num_target
        if operator == "<":
            return num_value < num_target
        return num_value <= num_target

    # Unknown operators do not constrain anything.
    return True


def match_column_filter(value: Any, flt: ColumnFilter) -> bool:
    """Return True when a cell *value* satisfies *flt*."""
    if flt.operator is not None:
        return _match_operator(value, flt.operator, flt.value)

    target = flt.value
    if isinstance(target, str):
        return target.casefold() in stringify(value).casefold()
    if isinstance(target, bool):
        return not is_missing(value) and stringify(value) == stringify(target)
    if _is_number(target):
        num = _coerce_numeric(value)
        return num is not None and num == target
    if isinstance(target, tuple) and len(target) == 2:
        return _in_range(value, target[0], target[1])
    if isinstance(target, (list, tuple, set, frozenset)):
        return stringify(value) in {stringify(t) for t in target}
    if _is_temporal(target):
        return type(value) is type(target) and value == target
    return stringify(value) == stringify(target)


def normalize_column_filters(
    filters: Iterable[ColumnFilter],
    columns: ColumnModel,
) -> tuple[ColumnFilter, ...]:
    """Keep one active filter per filterable column; the last one wins."""
    by_column: dict[str, ColumnFilter] = {}
    for flt in filters:
        if not columns.is_filterable(flt.column_id) or not flt.is_active:
            continue
        by_column.pop(flt.column_id, None)
        by_column[flt.column_id] = flt
    return tuple(by_column.values())


def filter_rows(
    rows: Sequence[Any],
    columns: ColumnModel,
    filter_state: FilterState,
) -> list[Any]:
    """Return the rows passing the global filter and every column filter."""
    needle = filter_state.global_filter.casefold()
    active = [
        (columns[f.column_id], f)
        for f in filter_state.column_filters
        if f.is_active and columns.is_filterable(f.column_id)
    ]
    if not needle and not active:
        return list(rows)

    result: list[Any] = []
    for row in rows:
        if needle and not any(needle in c.formatted(row).casefold() for c in columns):
            continue
        if all(match_column_filter(column.value(row), flt) for column, flt in active):
            result.append(row)
    return result


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------

def normalize_sort(sort: Iterable[SortItem], columns: ColumnModel) -> tuple[SortItem, ...]:
    """Drop entries for unknown or unsortable columns and repeated ids."""
    seen: set[str] = set()
    result: list[SortItem] = []
    for item in sort:
        if item.column_id in seen or not columns.is_sortable(item.column_id):
            continue
        seen.add(item.column_id)
        result.append(item)
    return tuple(result)


def sort_rows(
    rows: Sequence[Any],
    columns: ColumnModel,
    sort: Sequence[SortItem],
) -> list[Any]:
    """Stable multi-key sort of *rows* by *sort* (first entry is primary)."""
    keys = [(columns[s.column_id], s.descending) for s in sort if s.column_id in columns]
    if not keys:
        return list(rows)

    decorated = [([column.value(row) for column, _ in keys], row) for row in rows]

    def compare(left: tuple[list[Any], Any], right: tuple[list[Any], Any]) -> int:
        for (a, b), (_, descending) in zip(zip(left[0], right[0]), keys):
            a_missing, b_missing = is_missing(a), is_missing(b)
            if a_missing and b_missing:
                continue
            if a_missing:
                return -1
            if b_missing:
                return 1
            cmp = _compare_values(a, b)
            if cmp:
                return -cmp if descending else cmp
        return 0

    decorated.sort(key=functools.cmp_to_key(compare))
    return [row for _, row in decorated]


def toggle_sort(
    sort: Sequence[SortItem],
    column_id: str,
    *,
    multi: bool = False,
) -> tuple[SortItem, ...]:
    """Cycle *column_id* through none -> asc -> desc -> none.

    Without *multi* (no modifier key held) the result holds at most this
    one column: clicking a different column replaces the whole sort.  With
    *multi* the column cycles in place, new columns are appended as the
    lowest-priority key, and a column cycled back to none is removed.
    """
    current = next((s for s in sort if s.column_id == column_id), None)
    if current is None:
        nxt: SortItem | None = SortItem(column_id, "asc")
    elif current.direction == "asc":
        nxt = SortItem(column_id, "desc")
    else:
        nxt = None

    if not multi:
        return (nxt,) if nxt is not None else ()

    result: list[SortItem] = []
    for item in sort:
        if item.column_id != column_id:
            result.append(item)
        elif nxt is not None:
            result.append(nxt)
    if current is None and nxt is not None:
        result.append(nxt)
    return tuple(result)


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

def page_count(total: int, page_size: int) -> int:
    """``ceil(total / page_size)``; zero for an empty set."""
    if total <= 0:
        return 0
    return math.ceil(total / page_size)


def paginate(rows: Sequence[Any], pagination: PaginationState) -> list[Any]:
    start = pagination.offset
    return list(rows[start:start + pagination.page_size])


def resolve_page_size(requested: int | str | None, options: Sequence[int]) -> int:
    """Snap *requested* to the nearest entry of *options* (ties go smaller)."""
    if not options:
        raise ValueError("page_size_options must not be empty")
    size = _coerce_numeric(requested)
    if size is None:
        return options[0]
    if size in options:
        return int(size)
    return min(options, key=lambda option: (abs(option - size), option))


def clamp_page_index(page_index: int, pages: int | None) -> int:
    """Keep *page_index* inside ``[0, pages)``; unknown *pages* only floors at 0."""
    page_index = max(0, page_index)
    if pages is None:
        return page_index
    if pages == 0:
        return 0
    return min(page_index, pages - 1)


def compute_view(
    rows: Sequence[Any],
    sort: Sequence[SortItem],
    filter_state: FilterState,
    pagination: PaginationState,
    columns: ColumnModel,
) -> ViewResult:
    """Filter, then sort, then slice *rows* into the visible page.

    If the filtered set no longer reaches ``pagination.page_index``, the
    page index resets to ``0`` and the returned pagination says so.
    """
    filtered = filter_rows(rows, columns, filter_state)
    ordered = sort_rows(filtered, columns, sort)
    pages = page_count(len(ordered), pagination.page_size)

    effective = pagination
    if pagination.page_index != 0 and pagination.page_index >= pages:
        effective = PaginationState(0, pagination.page_size)

    return ViewResult(
        visible_rows=paginate(ordered, effective),
        filtered_count=len(ordered),
        page_count=pages,
        pagination=effective,
        filtered_rows=ordered,
    )
