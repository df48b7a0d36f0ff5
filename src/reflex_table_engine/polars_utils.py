"""Polars-backed data source for server-side grids.

:class:`LazyFrameSource` answers the change descriptors a server-side
:class:`~reflex_table_engine.engine.DataGridEngine` emits by translating
them to a lazy query (filter -> count -> sort -> slice) and collecting only
the requested page.  The translation follows the same rules as the
in-memory engine, so a grid behaves identically whichever side computes
its view:

* the global filter is a case-insensitive substring test across every
  column's text form
* a column filter without an operator picks its rule from the value type
* nulls sort before all defined values in both directions, string
  columns sort case-insensitively, and ties keep their input order

Typical usage::

    lf = scan_file(Path("stations.parquet"))
    source = LazyFrameSource(lf)
    engine = source.create_engine(default_page_size=50)
    engine.set_global_filter("diesel")   # source refreshes the page
    engine.visible_rows
"""

import datetime
import logging
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import polars as pl

from reflex_table_engine.columns import ColumnDescriptor, ColumnType, stringify
from reflex_table_engine.engine import DataGridEngine
from reflex_table_engine.models import (
    ColumnFilter,
    FilterState,
    PaginationState,
    ServerSideOptions,
    SortItem,
)
from reflex_table_engine.view_engine import _coerce_numeric

logger = logging.getLogger(__name__)

ROW_ID_FIELD: str = "__row_id__"


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------

def polars_dtype_to_column_type(dtype: pl.DataType) -> ColumnType:
    """Map a polars DataType to the closest grid column type.

    Returns:
        One of ``"string"``, ``"number"``, ``"boolean"``, ``"date"``,
        ``"dateTime"`` or ``"singleSelect"``.
    """
    if isinstance(dtype, pl.Boolean):
        return "boolean"
    if dtype.is_numeric():
        return "number"
    if isinstance(dtype, pl.Date):
        return "date"
    if isinstance(dtype, pl.Datetime):
        return "dateTime"
    if _is_categorical_dtype(dtype):
        return "singleSelect"
    # Everything else (String, List, Struct, Duration, ...)
    return "string"


def _is_categorical_dtype(dtype: pl.DataType) -> bool:
    """Return True if the dtype is explicitly categorical (Categorical or Enum)."""
    return isinstance(dtype, (pl.Categorical, pl.Enum))


def _col_to_str_expr(col: pl.Expr, dtype: pl.DataType) -> pl.Expr:
    """Convert a column expression to a String, handling List/Struct types.

    * ``List(T)`` / ``Array(T, n)`` -> cast inner to String, then ``list.join(",")``
    * Everything else -> ``cast(pl.String)`` (booleans become ``"true"`` / ``"false"``)

    Nulls become ``""`` so the result matches
    :func:`~reflex_table_engine.columns.stringify`.
    """
    if isinstance(dtype, (pl.List, pl.Array)):
        expr = col.cast(pl.List(pl.String)).list.join(",")
    else:
        expr = col.cast(pl.String)
    return expr.fill_null("")


def _col_to_num_expr(col: pl.Expr, dtype: pl.DataType) -> pl.Expr:
    """Numeric view of a column; unparseable text becomes null."""
    if isinstance(dtype, pl.Boolean):
        return col.cast(pl.Int64)
    if dtype.is_numeric():
        return col.fill_nan(None) if dtype.is_float() else col
    return col.cast(pl.String).str.strip_chars().cast(pl.Float64, strict=False)


def columns_from_schema(
    schema: pl.Schema,
    *,
    descriptions: dict[str, str] | None = None,
    id_field: str | None = None,
    show_id_field: bool = False,
) -> list[ColumnDescriptor]:
    """Build column descriptors from a polars Schema without collecting data.

    Args:
        schema: A polars ``Schema`` (e.g. ``lf.collect_schema()``).
        descriptions: Optional ``{column: description}`` mapping for
            header tooltips.
        id_field: Name of the column used as the unique row identifier.
            When *show_id_field* is ``False`` (the default), this column
            is excluded.
        show_id_field: Whether to include the *id_field* column.
    """
    descriptions = descriptions or {}
    columns: list[ColumnDescriptor] = []
    for col_name, dtype in schema.items():
        if not show_id_field and col_name == id_field:
            continue
        columns.append(
            ColumnDescriptor(
                col_name,
                type=polars_dtype_to_column_type(dtype),
                description=descriptions.get(col_name),
            )
        )
    return columns


def frame_to_rows(df: pl.DataFrame) -> list[dict[str, Any]]:
    """Convert a DataFrame to a list of JSON-safe dicts.

    Non-JSON-safe column types are converted automatically:
    * Temporal columns (Date, Datetime, Time, Duration) -> ISO-8601 strings.
    * List columns -> comma-joined strings (inner values cast to String first).
    * Struct columns -> cast to String.

    Other types are left as-is (polars ``to_dicts()`` already returns
    Python-native scalars for numeric / string / bool).
    """
    exprs: list[pl.Expr] = []
    needs_cast = False
    for name, dtype in df.schema.items():
        if isinstance(dtype, (pl.Date, pl.Datetime, pl.Time, pl.Duration, pl.Struct)):
            exprs.append(pl.col(name).cast(pl.String))
            needs_cast = True
        elif isinstance(dtype, (pl.List, pl.Array)):
            exprs.append(pl.col(name).cast(pl.List(pl.String)).list.join(","))
            needs_cast = True
        else:
            exprs.append(pl.col(name))

    if not needs_cast:
        return df.to_dicts()
    return df.select(exprs).to_dicts()


# ---------------------------------------------------------------------------
# File scanner
# ---------------------------------------------------------------------------

def scan_file(path: Path | str) -> pl.LazyFrame:
    """Scan a tabular data file into a LazyFrame.

    Auto-detects the file format from the extension:

    * ``.parquet`` / ``.pq`` -- uses ``pl.scan_parquet()``.
    * ``.csv`` -- uses ``pl.scan_csv()``.
    * ``.tsv`` -- uses ``pl.scan_csv(separator="\\t")``.
    * ``.json`` -- uses ``pl.read_json().lazy()`` (no streaming scan).
    * ``.ndjson`` / ``.jsonl`` -- uses ``pl.scan_ndjson()``.
    * ``.ipc`` / ``.arrow`` / ``.feather`` -- uses ``pl.scan_ipc()``.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the file extension is not recognised.
    """
    path = Path(path).resolve()
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    suffix = path.suffix.lower()

    if suffix in (".parquet", ".pq"):
        return pl.scan_parquet(path)
    if suffix == ".csv":
        return pl.scan_csv(path)
    if suffix == ".tsv":
        return pl.scan_csv(path, separator="\t")
    # JSON (no streaming scan -- read then convert to lazy)
    if suffix == ".json":
        return pl.read_json(path).lazy()
    if suffix in (".ndjson", ".jsonl"):
        return pl.scan_ndjson(path)
    if suffix in (".ipc", ".arrow", ".feather"):
        return pl.scan_ipc(path)

    raise ValueError(
        f"Unsupported file extension: {suffix!r}. "
        "Supported: .parquet, .pq, .csv, .tsv, .json, .ndjson, .jsonl, "
        ".ipc, .arrow, .feather"
    )


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def _operator_expr(flt: ColumnFilter, schema: pl.Schema) -> pl.Expr | None:
    """Translate a column filter with an explicit operator.

    Returns ``None`` when the filter does not constrain anything (unknown
    operator, or no value for an operator that needs one).
    """
    operator = flt.operator
    value = flt.value
    col = pl.col(flt.column_id)
    dtype = schema[flt.column_id]
    str_col = _col_to_str_expr(col, dtype)

    # -- operators that don't need a value --
    if operator == "isEmpty":
        return str_col == ""
    if operator == "isNotEmpty":
        return str_col != ""

    if value is None:
        return None

    # -- singleSelect operators --
    if operator == "is":
        return str_col == stringify(value)
    if operator == "not":
        return str_col != stringify(value)
    if operator == "isAnyOf":
        if not isinstance(value, (list, tuple, set, frozenset)):
            return None
        return str_col.is_in([stringify(v) for v in value])

    # -- string operators (case-insensitive) --
    lower_col = str_col.str.to_lowercase()
    needle = stringify(value).lower()
    if operator == "contains":
        return lower_col.str.contains(needle, literal=True)
    if operator == "equals":
        return lower_col == needle
    if operator == "startsWith":
        return lower_col.str.starts_with(needle)
    if operator == "endsWith":
        return lower_col.str.ends_with(needle)

    # -- numeric operators --
    if operator in ("=", "!=", ">", ">=", "<", "<="):
        num_value = _coerce_numeric(value)
        if num_value is None:
            return pl.lit(False)
        num_col = _col_to_num_expr(col, dtype)
        if operator == "=":
            return num_col == num_value
        if operator == "!=":
            return num_col.is_null() | (num_col != num_value)
        if operator == ">":
            return num_col > num_value
        if operator == ">=":
            return num_col >= num_value
        if operator == "<":
            return num_col < num_value
        return num_col <= num_value

    return None


def _bound_expr(col: pl.Expr, dtype: pl.DataType, bound: Any, op: str) -> pl.Expr:
    """``col >= bound`` or ``col <= bound`` under the in-memory comparison rules."""
    if isinstance(bound, (int, float)) and not isinstance(bound, bool):
        target = _col_to_num_expr(col, dtype)
    elif isinstance(bound, (datetime.date, datetime.time)) and dtype.is_temporal():
        target = col
    else:
        target = _col_to_str_expr(col, dtype).str.to_lowercase()
        bound = stringify(bound).lower()
    return target >= bound if op == ">=" else target <= bound


def _column_filter_expr(flt: ColumnFilter, schema: pl.Schema) -> pl.Expr | None:
    """Translate a single :class:`ColumnFilter` to a Polars expression."""
    if flt.column_id not in schema or not flt.is_active:
        return None
    if flt.operator is not None:
        return _operator_expr(flt, schema)

    target = flt.value
    col = pl.col(flt.column_id)
    dtype = schema[flt.column_id]
    str_col = _col_to_str_expr(col, dtype)

    if isinstance(target, str):
        return str_col.str.to_lowercase().str.contains(target.lower(), literal=True)
    if isinstance(target, bool):
        return str_col == stringify(target)
    if isinstance(target, (int, float)):
        return _col_to_num_expr(col, dtype) == target
    if isinstance(target, tuple) and len(target) == 2:
        low, high = target
        expr = col.is_not_null()
        if low is not None:
            expr = expr & _bound_expr(col, dtype, low, ">=")
        if high is not None:
            expr = expr & _bound_expr(col, dtype, high, "<=")
        return expr
    if isinstance(target, (list, tuple, set, frozenset)):
        return str_col.is_in([stringify(t) for t in target])
    if isinstance(target, (datetime.date, datetime.time)) and dtype.is_temporal():
        return col == target
    return str_col == stringify(target)


def _global_filter_expr(text: str, schema: pl.Schema, exclude: Sequence[str] = ()) -> pl.Expr | None:
    needle = text.lower()
    exprs = [
        _col_to_str_expr(pl.col(name), dtype).str.to_lowercase().str.contains(needle, literal=True)
        for name, dtype in schema.items()
        if name not in exclude
    ]
    if not exprs:
        return None
    return pl.any_horizontal(exprs)


def apply_filter_state(
    lf: pl.LazyFrame,
    filter_state: FilterState,
    schema: pl.Schema | None = None,
    *,
    exclude: Sequence[str] = (),
) -> pl.LazyFrame:
    """Apply the global filter and every column filter -- **no collect**.

    Args:
        lf: The polars LazyFrame to filter.
        filter_state: Global and per-column filters.  Filters on columns
            missing from the schema are ignored.
        schema: Optional schema override.  If ``None``, the schema is
            obtained from ``lf.collect_schema()``.
        exclude: Columns the global filter must not scan (synthetic ids).
    """
    if not filter_state.is_active:
        return lf
    if schema is None:
        schema = lf.collect_schema()

    exprs: list[pl.Expr] = []
    if filter_state.global_filter:
        expr = _global_filter_expr(filter_state.global_filter, schema, exclude)
        if expr is not None:
            exprs.append(expr)
    for flt in filter_state.column_filters:
        expr = _column_filter_expr(flt, schema)
        if expr is not None:
            exprs.append(expr)

    if not exprs:
        return lf
    return lf.filter(pl.all_horizontal(exprs))


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------

def apply_sort(
    lf: pl.LazyFrame,
    sort: Sequence[SortItem],
    schema: pl.Schema | None = None,
) -> pl.LazyFrame:
    """Apply a multi-key sort to a LazyFrame -- **no collect**.

    Nulls (and float NaN) come first in both directions.  String columns
    sort case-insensitively, with the raw value breaking case-only ties.
    The sort is stable.
    """
    if not sort:
        return lf
    if schema is None:
        schema = lf.collect_schema()

    by: list[pl.Expr] = []
    descending: list[bool] = []
    for item in sort:
        dtype = schema.get(item.column_id)
        if dtype is None:
            continue
        col = pl.col(item.column_id)
        if isinstance(dtype, pl.String):
            by.extend([col.str.to_lowercase(), col])
            descending.extend([item.descending, item.descending])
            continue
        by.append(col.fill_nan(None) if dtype.is_float() else col)
        descending.append(item.descending)

    if not by:
        return lf
    return lf.sort(by=by, descending=descending, nulls_last=False, maintain_order=True)


# ---------------------------------------------------------------------------
# LazyFrameSource
# ---------------------------------------------------------------------------

class LazyFrameSource:
    """Server-side host for a grid backed by a polars LazyFrame.

    All operations are lazy: row counts run as ``select(pl.len())`` and
    only the requested page slice is ever collected.

    Rows are identified by *id_field*.  When it is not given, an ``"id"``
    column is used if the frame has one; otherwise a ``"__row_id__"``
    index is attached to the unfiltered frame, so ids stay stable across
    filtering and sorting.

    Args:
        lf: The LazyFrame to browse.
        id_field: Name of the column that uniquely identifies a row.
        descriptions: Optional ``{column: description}`` mapping for
            header tooltips.
    """

    def __init__(
        self,
        lf: pl.LazyFrame,
        *,
        id_field: str | None = None,
        descriptions: dict[str, str] | None = None,
    ) -> None:
        schema = lf.collect_schema()
        if id_field is None:
            if "id" in schema:
                id_field = "id"
            else:
                lf = lf.with_row_index(ROW_ID_FIELD)
                id_field = ROW_ID_FIELD
        elif id_field not in schema:
            raise ValueError(f"id_field {id_field!r} is not a column of the LazyFrame")

        self.lf = lf
        self.id_field = id_field
        self.descriptions = descriptions or {}
        self.schema: pl.Schema = lf.collect_schema()
        self.engine: DataGridEngine | None = None

    def columns(self, *, show_id_field: bool | None = None) -> list[ColumnDescriptor]:
        """Descriptors for every column; the synthetic row index is hidden by default."""
        if show_id_field is None:
            show_id_field = self.id_field != ROW_ID_FIELD
        return columns_from_schema(
            self.schema,
            descriptions=self.descriptions,
            id_field=self.id_field,
            show_id_field=show_id_field,
        )

    def _synthetic_columns(self) -> tuple[str, ...]:
        return (ROW_ID_FIELD,) if self.id_field == ROW_ID_FIELD else ()

    def query(self, sorting: Sequence[SortItem], filters: FilterState) -> pl.LazyFrame:
        """The filtered and sorted frame, not yet sliced or collected."""
        lf = apply_filter_state(self.lf, filters, self.schema, exclude=self._synthetic_columns())
        return apply_sort(lf, sorting, self.schema)

    def count(self, filters: FilterState | None = None) -> int:
        lf = self.lf
        if filters is not None:
            lf = apply_filter_state(lf, filters, self.schema, exclude=self._synthetic_columns())
        return lf.select(pl.len()).collect().item()

    def fetch(
        self,
        sorting: Sequence[SortItem],
        filters: FilterState,
        pagination: PaginationState,
    ) -> tuple[list[dict[str, Any]], int]:
        """Collect one page.

        Builds a lazy query: filter -> count -> sort -> slice, then
        collects only the page slice.

        Returns:
            ``(rows, total_rows)`` where *total_rows* counts every row
            matching *filters*.
        """
        t0 = time.perf_counter()
        filtered = apply_filter_state(self.lf, filters, self.schema, exclude=self._synthetic_columns())

        t_count = time.perf_counter()
        total = filtered.select(pl.len()).collect().item()
        logger.debug(
            "[LazyFrameSource] row count: %d (%.1fms)",
            total,
            (time.perf_counter() - t_count) * 1000,
        )

        ordered = apply_sort(filtered, sorting, self.schema)
        page_df = ordered.slice(pagination.offset, pagination.page_size).collect()
        rows = frame_to_rows(page_df)

        elapsed_ms = (time.perf_counter() - t0) * 1000
        logger.debug(
            "[LazyFrameSource] page fetch: offset=%d, slice=%d, total=%d, elapsed=%.1fms",
            pagination.offset,
            len(rows),
            total,
            elapsed_ms,
        )
        return rows, total

    def fetch_all(self, sorting: Sequence[SortItem], filters: FilterState) -> list[dict[str, Any]]:
        """Collect every matching row (for exports of the filtered set)."""
        return frame_to_rows(self.query(sorting, filters).collect())

    # ------------------------------------------------------------------
    # Engine binding
    # ------------------------------------------------------------------

    def create_engine(self, *, filter_debounce_ms: int = 0, **kwargs: Any) -> DataGridEngine:
        """Build a server-side engine whose emissions refresh from this source.

        Every emitted change triggers :meth:`refresh`.  Debouncing is off by
        default because the query runs synchronously in the caller; pass
        *filter_debounce_ms* when the engine lives inside an event loop.

        Args:
            filter_debounce_ms: Quiet period before filter emissions.
            **kwargs: Passed to :class:`DataGridEngine` (initial sort and
                filters, page size, export and selection options, ...).
        """
        kwargs.setdefault("row_id", self.id_field)
        options = ServerSideOptions(
            enabled=True,
            on_pagination_change=self._on_change,
            on_sorting_change=self._on_change,
            on_global_filter_change=self._on_change,
            on_column_filters_change=self._on_change,
            filter_debounce_ms=filter_debounce_ms,
        )
        self.engine = DataGridEngine(self.columns(), [], server_side=options, **kwargs)
        self.refresh()
        return self.engine

    def refresh(self) -> bool:
        """Fetch the page for the engine's current state and hand it over.

        Returns:
            Whether the engine displayed the page.
        """
        if self.engine is None:
            raise RuntimeError("LazyFrameSource.refresh() called before create_engine()")
        engine = self.engine
        generation = engine.generation
        rows, total = self.fetch(engine.sorting, engine.filters, engine.pagination)
        return engine.receive_page(rows, total_rows=total, generation=generation)

    def _on_change(self, _descriptor: Any) -> None:
        self.refresh()
