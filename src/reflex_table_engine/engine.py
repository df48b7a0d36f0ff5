"""The data-grid engine: one state contract over local or delegated views.

:class:`DataGridEngine` owns the sort, filter, pagination, visibility and
selection state of one grid.  State changes only through its transition
methods; each committed transition is handed to the engine's
:class:`~reflex_table_engine.computation.ViewComputation` and the view is
rebuilt before the method returns.

Typical client-side usage::

    engine = DataGridEngine(
        [ColumnDescriptor("name"), ColumnDescriptor("age", type="number")],
        data=rows,
        default_page_size=20,
    )
    engine.toggle_sort("age")
    engine.set_global_filter("jo")
    engine.visible_rows

Server-side usage hands ``ServerSideOptions`` with the host callbacks;
the host answers each emission by calling :meth:`DataGridEngine.receive_page`
with the page it fetched and the generation it fetched it for.
"""

import logging
from collections.abc import Callable, Hashable, Iterable, Mapping, Sequence
from typing import Any

from reflex_table_engine.columns import Accessor, ColumnDescriptor, ColumnModel
from reflex_table_engine.computation import (
    DelegatedComputation,
    LocalComputation,
    Scheduler,
    ViewComputation,
    call_later,
)
from reflex_table_engine.export import FileSink, export_rows
from reflex_table_engine.models import (
    AggregateState,
    ChangeKind,
    ColumnFilter,
    ExportOptions,
    ExportScope,
    FilterState,
    PaginationState,
    SelectionOptions,
    ServerSideOptions,
    SortItem,
    ViewResult,
)
from reflex_table_engine.selection import SelectionManager
from reflex_table_engine.view_engine import (
    clamp_page_index,
    normalize_column_filters,
    normalize_sort,
    resolve_page_size,
    toggle_sort,
)

logger = logging.getLogger(__name__)

_DEFAULT_PAGE_SIZE: int = 10
_DEFAULT_PAGE_SIZE_OPTIONS: tuple[int, ...] = (5, 10, 20, 50, 100)


class DataGridEngine:
    """Sorted, filtered, paginated, selectable and exportable view of rows.

    Args:
        columns: Column descriptors, or a ready :class:`ColumnModel`.
        data: The full dataset (client-side) or the current page
            (server-side).  Never mutated.
        loading: Host-controlled busy flag, surfaced in snapshots.
        row_id: Key or callable giving each row its identity.
        initial_sorting: Sort entries applied at mount.
        initial_column_filters: Column filters applied at mount.
        initial_global_filter: Global filter text applied at mount.
        default_page_size: Initial page size, snapped to *page_size_options*.
        page_size_options: Page sizes the grid offers.
        server_side: Enables delegated computation when ``enabled``.
        export: Export configuration.
        selection: Selection configuration.
        on_debug_snapshot: Development hook receiving :meth:`snapshot`
            after every recomputation.
        scheduler: Timer factory for filter debouncing (server-side only).
    """

    def __init__(
        self,
        columns: Iterable[ColumnDescriptor] | ColumnModel,
        data: Iterable[Any] | None = None,
        *,
        loading: bool = False,
        row_id: Accessor = "id",
        initial_sorting: Iterable[SortItem] = (),
        initial_column_filters: Iterable[ColumnFilter] = (),
        initial_global_filter: str = "",
        default_page_size: int = _DEFAULT_PAGE_SIZE,
        page_size_options: Sequence[int] = _DEFAULT_PAGE_SIZE_OPTIONS,
        server_side: ServerSideOptions | None = None,
        export: ExportOptions | None = None,
        selection: SelectionOptions | None = None,
        on_debug_snapshot: Callable[[dict[str, Any]], Any] | None = None,
        scheduler: Scheduler = call_later,
    ) -> None:
        self.columns = columns if isinstance(columns, ColumnModel) else ColumnModel(columns, row_id=row_id)

        options = tuple(int(size) for size in page_size_options)
        if not options:
            raise ValueError("page_size_options must not be empty")
        if any(size <= 0 for size in options):
            raise ValueError(f"page sizes must be positive, got {list(options)}")
        self.page_size_options: tuple[int, ...] = tuple(sorted(set(options)))

        self.server_side_options = server_side or ServerSideOptions()
        self.export_options = export or ExportOptions()
        self._computation: ViewComputation
        if self.server_side_options.enabled:
            self._computation = DelegatedComputation(self.server_side_options, scheduler=scheduler)
        else:
            self._computation = LocalComputation()

        self.selection = SelectionManager(selection, identify=self.columns.row_identity)
        self._on_debug_snapshot = on_debug_snapshot

        self._sorting: tuple[SortItem, ...] = normalize_sort(initial_sorting, self.columns)
        self._filters = FilterState(
            global_filter=initial_global_filter or "",
            column_filters=normalize_column_filters(initial_column_filters, self.columns),
        )
        self._pagination = PaginationState(
            0, resolve_page_size(default_page_size, self.page_size_options)
        )
        self._visibility: dict[str, bool] = {}
        self._loading = loading
        self._mounted = True

        self._rows: list[Any] = list(data or [])
        self._positions: dict[int, int] = {id(row): i for i, row in enumerate(self._rows)}
        self._total_rows: int | None = self.server_side_options.total_rows
        self.selection.sync(self._rows, retain=False)
        self._view: ViewResult = self._recompute()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def server_side(self) -> bool:
        return self._computation.server_side

    @property
    def sorting(self) -> tuple[SortItem, ...]:
        return self._sorting

    @property
    def filters(self) -> FilterState:
        return self._filters

    @property
    def global_filter(self) -> str:
        return self._filters.global_filter

    @property
    def column_filters(self) -> tuple[ColumnFilter, ...]:
        return self._filters.column_filters

    @property
    def pagination(self) -> PaginationState:
        return self._pagination

    @property
    def rows(self) -> list[Any]:
        """The dataset as last supplied."""
        return list(self._rows)

    @property
    def total_rows(self) -> int | None:
        return self._total_rows

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def view(self) -> ViewResult:
        return self._view

    @property
    def visible_rows(self) -> list[Any]:
        return list(self._view.visible_rows)

    @property
    def visible_ids(self) -> list[Hashable]:
        return [self.row_identity(row) for row in self._view.visible_rows]

    @property
    def filtered_count(self) -> int:
        return self._view.filtered_count

    @property
    def page_count(self) -> int | None:
        """Number of pages, or ``None`` when the host gave no total."""
        return self._view.page_count

    @property
    def generation(self) -> int:
        """Emission counter in server-side mode; always ``0`` client-side."""
        if isinstance(self._computation, DelegatedComputation):
            return self._computation.generation
        return 0

    @property
    def has_active_filters(self) -> bool:
        return self._filters.is_active

    def row_identity(self, row: Any) -> Hashable:
        return self.columns.row_identity(row, self._positions.get(id(row), -1))

    # ------------------------------------------------------------------
    # Sorting
    # ------------------------------------------------------------------

    def set_sorting(self, sort: Iterable[SortItem]) -> None:
        normalized = normalize_sort(sort, self.columns)
        if normalized == self._sorting:
            return
        self._sorting = normalized
        self._commit("sort", normalized)

    def toggle_sort(self, column_id: str, *, multi: bool = False) -> None:
        """Cycle *column_id* none -> asc -> desc -> none.

        Without *multi* the column replaces any existing sort; with it the
        column is added to (or cycled within) the current sort list.
        """
        if not self.columns.is_sortable(column_id):
            logger.warning("[DataGrid] cannot sort by %r: unknown or not sortable", column_id)
            return
        self.set_sorting(toggle_sort(self._sorting, column_id, multi=multi))

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def set_global_filter(self, value: str | None) -> None:
        value = value or ""
        if value == self._filters.global_filter:
            return
        self._filters = self._filters.with_global_filter(value)
        self._commit("globalFilter", value, induced=self._reset_page_index())

    def set_column_filter(self, column_id: str, value: Any, operator: str | None = None) -> None:
        """Set (or with an empty value, remove) the filter on *column_id*."""
        if not self.columns.is_filterable(column_id):
            logger.warning("[DataGrid] cannot filter on %r: unknown or not filterable", column_id)
            return
        self._set_column_filters(
            self._filters.with_column_filter(ColumnFilter(column_id, value, operator)).column_filters
        )

    def set_column_filters(self, filters: Iterable[ColumnFilter]) -> None:
        self._set_column_filters(normalize_column_filters(filters, self.columns))

    def clear_filters(self) -> None:
        """Drop the global filter and every column filter."""
        self.set_global_filter("")
        self._set_column_filters(())

    def _set_column_filters(self, filters: tuple[ColumnFilter, ...]) -> None:
        if filters == self._filters.column_filters:
            return
        self._filters = FilterState(self._filters.global_filter, filters)
        self._commit("columnFilter", filters, induced=self._reset_page_index())

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    def set_page_index(self, page_index: int) -> None:
        page_index = clamp_page_index(int(page_index), self.page_count)
        if page_index == self._pagination.page_index:
            return
        self._pagination = PaginationState(page_index, self._pagination.page_size)
        self._commit("pagination", self._pagination)

    def set_page_size(self, page_size: int | str) -> None:
        """Change the page size (snapped to the offered options) and go to page 0."""
        size = resolve_page_size(page_size, self.page_size_options)
        if size != page_size:
            logger.debug("[DataGrid] page size %r snapped to %d", page_size, size)
        if size == self._pagination.page_size:
            return
        self._pagination = PaginationState(0, size)
        self._commit("pagination", self._pagination)

    def can_previous_page(self) -> bool:
        return self._pagination.page_index > 0

    def can_next_page(self) -> bool:
        pages = self.page_count
        if pages is None:
            # Unknown total: a full page suggests there may be more.
            return len(self._view.visible_rows) >= self._pagination.page_size
        return self._pagination.page_index < pages - 1

    def can_last_page(self) -> bool:
        return self.page_count is not None and self.can_next_page()

    def first_page(self) -> None:
        self.set_page_index(0)

    def previous_page(self) -> None:
        if self.can_previous_page():
            self.set_page_index(self._pagination.page_index - 1)

    def next_page(self) -> None:
        if self.can_next_page():
            self.set_page_index(self._pagination.page_index + 1)

    def last_page(self) -> None:
        if self.page_count is None:
            logger.debug("[DataGrid] last page unavailable: total row count unknown")
            return
        self.set_page_index(self.page_count - 1)

    def range_summary(self) -> tuple[int, int, int]:
        """``(first, last, total)`` one-based row numbers of the visible window."""
        total = self._view.filtered_count
        shown = len(self._view.visible_rows)
        if shown == 0:
            return (0, 0, total)
        first = self._pagination.offset + 1
        return (first, first + shown - 1, total)

    def _reset_page_index(self) -> list[tuple[ChangeKind, Any]]:
        if self._pagination.page_index == 0:
            return []
        self._pagination = PaginationState(0, self._pagination.page_size)
        return [("pagination", self._pagination)]

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def set_data(self, rows: Iterable[Any], *, total_rows: int | None = None) -> None:
        """Replace the dataset (client-side) and recompute."""
        self._adopt(list(rows), total_rows)

    def receive_page(
        self,
        rows: Iterable[Any],
        *,
        total_rows: int | None = None,
        generation: int | None = None,
    ) -> bool:
        """Display a page fetched by the host.

        Args:
            rows: The already-windowed page.
            total_rows: Total matching rows on the host; ``None`` keeps the
                previous total.
            generation: :attr:`generation` at the time the fetch started.
                Pages for a generation older than the one displayed, or
                arriving after :meth:`unmount`, are ignored.

        Returns:
            Whether the page was displayed.
        """
        if not self._mounted or not self._computation.accept(generation):
            return False
        self._adopt(list(rows), self._total_rows if total_rows is None else total_rows)
        return True

    def set_loading(self, loading: bool) -> None:
        self._loading = bool(loading)
        self._debug_snapshot()

    def _adopt(self, rows: list[Any], total_rows: int | None) -> None:
        self._rows = rows
        self._positions = {id(row): i for i, row in enumerate(rows)}
        if total_rows is not None or not self.server_side:
            self._total_rows = total_rows
        # A client-side dataset replacement always prunes; fetched pages
        # follow retain_selection_across_fetch.
        self.selection.sync(rows, retain=None if self.server_side else False)
        self._view = self._recompute()

        # A shrunken server-side total can leave the page index stranded.
        pages = self._view.page_count
        if self.server_side and pages is not None and 0 < pages <= self._pagination.page_index:
            self._pagination = PaginationState(0, self._pagination.page_size)
            self._commit("pagination", self._pagination)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def toggle_row(self, row_id: Hashable) -> None:
        self.selection.toggle_row(row_id)

    def toggle_all_on_page(self) -> None:
        self.selection.toggle_all_on_page(self.visible_ids)

    def clear_selection(self) -> None:
        self.selection.clear()

    def aggregate_state(self) -> AggregateState:
        return self.selection.get_aggregate_state(self.visible_ids)

    def run_batch_action(self, action_id: str) -> list[Any]:
        return self.selection.run_batch_action(action_id)

    # ------------------------------------------------------------------
    # Column visibility
    # ------------------------------------------------------------------

    def is_column_visible(self, column_id: str) -> bool:
        return self._visibility.get(column_id, self.columns[column_id].visible)

    def set_column_visibility(self, column_id: str, visible: bool) -> None:
        column = self.columns.get(column_id)
        if column is None:
            logger.warning("[DataGrid] unknown column %r", column_id)
            return
        if not visible and not column.hideable:
            logger.warning("[DataGrid] column %r cannot be hidden", column_id)
            return
        self._visibility[column_id] = bool(visible)
        self._debug_snapshot()

    def toggle_column_visibility(self, column_id: str) -> None:
        if column_id in self.columns:
            self.set_column_visibility(column_id, not self.is_column_visible(column_id))

    def visible_columns(self) -> list[ColumnDescriptor]:
        return self.columns.visible(self._visibility)

    def footer_values(self) -> dict[str, str]:
        """Footer text of every column that has an aggregator."""
        rows = self._view.filtered_rows
        footers: dict[str, str] = {}
        for column in self.columns:
            value = column.footer(rows)
            if value is not None:
                footers[column.id] = value
        return footers

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def rows_for_scope(self, scope: ExportScope) -> list[Any]:
        if scope == "filtered":
            return list(self._view.filtered_rows)
        if scope == "page":
            return list(self._view.visible_rows)
        if scope == "selected":
            return self.selection.selected_rows()
        return list(self._rows)

    def export(self, sink: FileSink | None = None, *, scope: ExportScope | None = None) -> str | None:
        """Export the configured row set as CSV through *sink*.

        Returns the CSV text, or ``None`` when export is disabled, the host
        handled it through ``on_export``, or there was nothing to write.
        """
        if not self.export_options.enabled:
            logger.warning("[DataGrid] export requested but export is not enabled")
            return None
        rows = self.rows_for_scope(scope or self.export_options.scope)
        return export_rows(rows, list(self.columns), self.export_options, sink)

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    def export_preset(self) -> dict[str, Any]:
        """Sort and filter state as a JSON-safe dict."""
        return {
            "filter_model": {
                "items": [f.to_dict() for f in self._filters.column_filters],
                "quickFilter": self._filters.global_filter,
            },
            "sort_model": [s.to_dict() for s in self._sorting],
        }

    def apply_preset(self, preset: Mapping[str, Any]) -> None:
        """Restore state saved by :meth:`export_preset`."""
        filter_model: Mapping[str, Any] = preset.get("filter_model") or {}
        sort_model: list[dict[str, Any]] = preset.get("sort_model") or []
        self.set_sorting(SortItem.from_dict(item) for item in sort_model)
        self.set_global_filter(filter_model.get("quickFilter", ""))
        self.set_column_filters(ColumnFilter.from_dict(item) for item in filter_model.get("items", []))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Emit debounced filter changes now (server-side)."""
        if isinstance(self._computation, DelegatedComputation):
            self._computation.flush()

    def unmount(self) -> None:
        """Cancel pending debounce timers and ignore late host responses."""
        self._computation.cancel()
        self._mounted = False
        logger.debug("[DataGrid] unmounted")

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe summary of the engine state (no row contents)."""
        aggregate = self.aggregate_state()
        return {
            "mode": "server" if self.server_side else "client",
            "loading": self._loading,
            "sorting": [s.to_dict() for s in self._sorting],
            "global_filter": self._filters.global_filter,
            "column_filters": [f.to_dict() for f in self._filters.column_filters],
            "pagination": self._pagination.to_dict(),
            "page_count": self._view.page_count,
            "filtered_count": self._view.filtered_count,
            "visible_count": len(self._view.visible_rows),
            "total_rows": self._total_rows,
            "selected_count": len(self.selection),
            "all_selected": aggregate.all_selected,
            "some_selected": aggregate.some_selected,
            "hidden_columns": [c.id for c in self.columns if not self.is_column_visible(c.id)],
            "generation": self.generation,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _commit(
        self,
        kind: ChangeKind,
        descriptor: Any,
        *,
        induced: Sequence[tuple[ChangeKind, Any]] = (),
    ) -> None:
        self._computation.on_state_change(kind, descriptor, induced=induced)
        self._view = self._recompute()

    def _recompute(self) -> ViewResult:
        view = self._computation.compute(
            self._rows,
            self._sorting,
            self._filters,
            self._pagination,
            self.columns,
            self._total_rows,
        )
        # Local mode resets a stranded page index while computing.
        self._pagination = view.pagination
        self._view = view
        self._debug_snapshot()
        return view

    def _debug_snapshot(self) -> None:
        if self._on_debug_snapshot is not None:
            self._on_debug_snapshot(self.snapshot())
