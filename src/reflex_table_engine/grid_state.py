"""Reflex state binding for a :class:`~reflex_table_engine.engine.DataGridEngine`.

Users inherit from :class:`DataGridMixin` **and** ``rx.State``, hand it an
engine (or a LazyFrame) from an event handler, and bind their components
to the ``dg_*`` vars and ``handle_dg_*`` handlers::

    class StationsState(DataGridMixin, rx.State):
        def load(self):
            rows = fetch_stations()
            engine = DataGridEngine(STATION_COLUMNS, rows, default_page_size=20)
            yield from self.set_data_grid(engine)

Engines hold callbacks and arbitrary row objects, so they cannot live
inside ``rx.State``.  They are stored in a module-level registry keyed by
the state class name; the state only carries the JSON-safe view that the
frontend renders.
"""

import json
import logging
from typing import Any

import polars as pl
import reflex as rx

from reflex_table_engine.columns import is_missing
from reflex_table_engine.engine import DataGridEngine
from reflex_table_engine.export import ReflexDownloadSink
from reflex_table_engine.models import ColumnFilter, SortItem
from reflex_table_engine.polars_utils import LazyFrameSource

logger = logging.getLogger(__name__)

_DEFAULT_PRESET_FILENAME: str = "filter_preset.json"

_JSON_SCALARS = (str, int, float, bool)


# ---------------------------------------------------------------------------
# Module-level engine registry
# ---------------------------------------------------------------------------

_engine_registry: dict[str, DataGridEngine] = {}


def _get_engine(cache_id: str) -> DataGridEngine | None:
    """Return the engine registered for *cache_id*, if any."""
    return _engine_registry.get(cache_id)


def _register_engine(cache_id: str, engine: DataGridEngine) -> None:
    previous = _engine_registry.get(cache_id)
    if previous is not None and previous is not engine:
        previous.unmount()
    _engine_registry[cache_id] = engine


# ---------------------------------------------------------------------------
# View serialisation
# ---------------------------------------------------------------------------

def grid_columns(engine: DataGridEngine) -> list[dict[str, Any]]:
    """Column definitions for the frontend, hidden columns flagged ``hide``."""
    return [
        c.to_column_def(hidden=not engine.is_column_visible(c.id)).dict()
        for c in engine.columns
    ]


def grid_rows(engine: DataGridEngine) -> list[dict[str, Any]]:
    """The visible page as JSON-safe dicts keyed by column id.

    Cells keep their raw value when it is a JSON scalar and the column has
    no formatter; everything else is sent as its formatted text.  Each row
    also carries its identity under ``"id"``.
    """
    rows: list[dict[str, Any]] = []
    for row, row_id in zip(engine.visible_rows, engine.visible_ids):
        cells: dict[str, Any] = {}
        for column in engine.columns:
            value = column.value(row)
            if column.cell_formatter is None and (value is None or isinstance(value, _JSON_SCALARS)):
                cells[column.id] = None if is_missing(value) else value
            else:
                cells[column.id] = column.formatted(row)
        cells["id"] = row_id if isinstance(row_id, _JSON_SCALARS) else str(row_id)
        rows.append(cells)
    return rows


def grid_footer(engine: DataGridEngine) -> dict[str, str]:
    return engine.footer_values()


def range_label(engine: DataGridEngine) -> str:
    """``"11-20 of 47"`` style summary of the visible window."""
    first, last, total = engine.range_summary()
    if engine.server_side and engine.total_rows is None:
        return f"{first}-{last} of more"
    return f"{first}-{last} of {total:,}"


def filter_summary(engine: DataGridEngine) -> str:
    """Compact one-line description of the active filters and sorts."""
    parts: list[str] = []
    if engine.global_filter:
        parts.append(f"search {engine.global_filter!r}")
    fields = [f.column_id for f in engine.column_filters]
    if fields:
        names = ", ".join(fields) if len(fields) <= 3 else f"{len(fields)} columns"
        parts.append(f"{len(fields)} filter(s) on {names}")
    if engine.sorting:
        sort_fields = ", ".join(s.column_id for s in engine.sorting)
        parts.append(f"{len(engine.sorting)} sort(s): {sort_fields}")
    return " | ".join(parts) if parts else "No active filters or sorts."


def grid_view(engine: DataGridEngine) -> dict[str, Any]:
    """Every ``dg_*`` var value for the engine's current view.

    Debounced filter emissions are flushed first.  A Reflex handler's
    state delta is sent when the handler returns, so a filter emission
    waiting on a timer would otherwise fetch its page after nothing is
    left to sync it.  Keystroke debouncing belongs on the input
    component (``rx.input(debounce_timeout=...)``).
    """
    engine.flush()
    aggregate = engine.aggregate_state()
    page_count = engine.page_count
    return {
        "dg_rows": grid_rows(engine),
        "dg_columns": grid_columns(engine),
        "dg_footer": grid_footer(engine),
        "dg_row_count": engine.filtered_count,
        "dg_page_count": -1 if page_count is None else page_count,
        "dg_pagination_model": {
            "page": engine.pagination.page_index,
            "pageSize": engine.pagination.page_size,
        },
        "dg_page_size_options": list(engine.page_size_options),
        "dg_sort_model": [s.to_dict() for s in engine.sorting],
        "dg_global_filter": engine.global_filter,
        "dg_has_active_filters": engine.has_active_filters,
        "dg_filter_debug": filter_summary(engine),
        "dg_selected_ids": list(engine.selection.selected_ids),
        "dg_all_selected": aggregate.all_selected,
        "dg_some_selected": aggregate.some_selected,
        "dg_range_label": range_label(engine),
        "dg_can_previous": engine.can_previous_page(),
        "dg_can_next": engine.can_next_page(),
        "dg_can_last": engine.can_last_page(),
        "dg_loading": engine.loading,
    }


# ---------------------------------------------------------------------------
# DataGridMixin
# ---------------------------------------------------------------------------

class DataGridMixin(rx.State, mixin=True):
    """Reflex State mixin exposing a data-grid engine to the frontend.

    This is a Reflex **mixin** (``mixin=True``): every concrete subclass
    gets its own independent set of ``dg_*`` reactive variables, so
    multiple grids on the same page do not interfere with each other.

    .. important::

       Subclasses **must** also inherit from ``rx.State``::

           class MyGrid(DataGridMixin, rx.State):
               ...

    The engine decides everything: handlers translate frontend payloads
    into engine transitions and then mirror the engine's view back into
    the state vars.
    """

    # -- Frontend state vars --
    dg_rows: list[dict[str, Any]] = []
    dg_columns: list[dict[str, Any]] = []
    dg_footer: dict[str, str] = {}
    dg_row_count: int = 0
    dg_page_count: int = -1
    dg_pagination_model: dict[str, int] = {"page": 0, "pageSize": 10}
    dg_page_size_options: list[int] = []
    dg_sort_model: list[dict[str, str]] = []
    dg_filter_model: dict[str, Any] = {"items": []}
    dg_global_filter: str = ""
    dg_has_active_filters: bool = False
    dg_filter_debug: str = "No active filters or sorts."
    dg_selected_ids: list[Any] = []
    dg_all_selected: bool = False
    dg_some_selected: bool = False
    dg_range_label: str = ""
    dg_can_previous: bool = False
    dg_can_next: bool = False
    dg_can_last: bool = False
    dg_loading: bool = False
    dg_loaded: bool = False

    # -- Backend-only vars (not sent to frontend) --
    _dg_cache_id: str = ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def set_data_grid(self, engine: DataGridEngine):
        """Attach *engine* to this state.

        This is a **generator** -- use ``yield from self.set_data_grid(...)``
        inside your event handler so the loading state is sent to the
        frontend immediately.
        """
        self.dg_loading = True  # type: ignore[assignment]
        yield  # send loading state to the frontend immediately

        cache_id = type(self).__name__
        self._dg_cache_id = cache_id  # type: ignore[assignment]
        _register_engine(cache_id, engine)

        self.dg_loaded = True  # type: ignore[assignment]
        self._sync_dg_view()
        self.dg_loading = False  # type: ignore[assignment]

    def set_lazyframe(
        self,
        lf: pl.LazyFrame,
        descriptions: dict[str, str] | None = None,
        **engine_kwargs: Any,
    ):
        """Attach a server-side engine backed by *lf*.

        Generator, like :meth:`set_data_grid`.  Only the schema, the first
        page and a row count are computed.
        """
        source = LazyFrameSource(lf, descriptions=descriptions)
        yield from self.set_data_grid(source.create_engine(**engine_kwargs))

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def handle_dg_sort(self, sort_model: list[dict[str, Any]]):
        """Replace the sort with the MUI ``sortModel``."""
        engine = self._dg_engine()
        if engine is None:
            return
        self.dg_loading = True  # type: ignore[assignment]
        yield

        engine.set_sorting(SortItem.from_dict(item) for item in sort_model)
        self._sync_dg_view()
        self.dg_loading = False  # type: ignore[assignment]

    def handle_dg_toggle_sort(self, field: str, multi: bool = False) -> None:
        """Header click: cycle *field* none -> asc -> desc -> none."""
        engine = self._dg_engine()
        if engine is None:
            return
        engine.toggle_sort(field, multi=multi)
        self._sync_dg_view()

    def handle_dg_filter(self, filter_model: dict[str, Any]):
        """Apply a MUI ``filterModel`` with multi-column accumulation.

        The community grid sends one filter item at a time, so items are
        **merged** into the engine's column filters:

        * An item **with a value** (or a value-less operator) upserts the
          filter for its column.
        * An item **without a value** leaves the column's existing filter
          in place (the user just opened the filter panel).
        * An **empty items list** clears all column filters.

        ``quickFilterValues`` drives the global filter.
        """
        engine = self._dg_engine()
        if engine is None:
            return
        self.dg_loading = True  # type: ignore[assignment]
        yield

        # Keep the frontend filter model in sync (controlled component).
        self.dg_filter_model = filter_model  # type: ignore[assignment]

        items: list[dict[str, Any]] = filter_model.get("items", [])
        if not items:
            engine.set_column_filters(())
        for item in items:
            flt = ColumnFilter.from_dict(item)
            if flt.is_active:
                engine.set_column_filter(flt.column_id, flt.value, flt.operator)

        quick = filter_model.get("quickFilterValues")
        if quick is not None:
            engine.set_global_filter(" ".join(str(v) for v in quick))
        self._sync_dg_view()
        self.dg_loading = False  # type: ignore[assignment]

    def handle_dg_global_filter(self, value: str) -> None:
        engine = self._dg_engine()
        if engine is None:
            return
        engine.set_global_filter(value)
        self._sync_dg_view()

    def handle_dg_column_filter(self, field: str, value: Any, operator: str | None = None) -> None:
        engine = self._dg_engine()
        if engine is None:
            return
        # JSON arrays of two bounds mean a range.
        if operator is None and isinstance(value, list) and len(value) == 2:
            value = tuple(value)
        engine.set_column_filter(field, value, operator)
        self._sync_dg_view()

    def clear_dg_filters(self):
        """Clear the global filter and every column filter."""
        engine = self._dg_engine()
        if engine is None:
            return
        self.dg_loading = True  # type: ignore[assignment]
        yield

        engine.clear_filters()
        self.dg_filter_model = {"items": []}  # type: ignore[assignment]
        self._sync_dg_view()
        self.dg_loading = False  # type: ignore[assignment]

    def handle_dg_pagination(self, model: dict[str, int]) -> None:
        """Apply a MUI ``paginationModel`` (``{"page", "pageSize"}``)."""
        engine = self._dg_engine()
        if engine is None:
            return
        page_size = model.get("pageSize", engine.pagination.page_size)
        if page_size != engine.pagination.page_size:
            engine.set_page_size(page_size)
        else:
            engine.set_page_index(model.get("page", 0))
        self._sync_dg_view()

    def handle_dg_page_size(self, page_size: int | str) -> None:
        engine = self._dg_engine()
        if engine is None:
            return
        engine.set_page_size(page_size)
        self._sync_dg_view()

    def handle_dg_first_page(self) -> None:
        self._navigate("first_page")

    def handle_dg_previous_page(self) -> None:
        self._navigate("previous_page")

    def handle_dg_next_page(self) -> None:
        self._navigate("next_page")

    def handle_dg_last_page(self) -> None:
        self._navigate("last_page")

    def handle_dg_column_visibility(self, model: dict[str, bool]) -> None:
        """Apply a MUI ``columnVisibilityModel``."""
        engine = self._dg_engine()
        if engine is None:
            return
        for field, visible in model.items():
            engine.set_column_visibility(field, visible)
        self._sync_dg_view()

    def handle_dg_toggle_row(self, row_id: Any) -> None:
        engine = self._dg_engine()
        if engine is None:
            return
        engine.toggle_row(row_id)
        self._sync_dg_view()

    def handle_dg_toggle_page(self) -> None:
        """Header checkbox: select or deselect every row on the page."""
        engine = self._dg_engine()
        if engine is None:
            return
        engine.toggle_all_on_page()
        self._sync_dg_view()

    def clear_dg_selection(self) -> None:
        engine = self._dg_engine()
        if engine is None:
            return
        engine.clear_selection()
        self._sync_dg_view()

    def handle_dg_batch_action(self, action_id: str) -> None:
        engine = self._dg_engine()
        if engine is None:
            return
        try:
            engine.run_batch_action(action_id)
        finally:
            self._sync_dg_view()

    def download_dg_csv(self) -> list[rx.event.EventSpec] | None:
        """Export through the engine and return ``rx.download`` events."""
        engine = self._dg_engine()
        if engine is None:
            return None
        sink = ReflexDownloadSink()
        engine.export(sink)
        return sink.events or None

    def download_dg_preset(self) -> rx.event.EventSpec | None:
        """Download the current filter/sort state as a JSON preset file."""
        engine = self._dg_engine()
        if engine is None:
            return None
        return rx.download(  # type: ignore[return-value]
            data=json.dumps(engine.export_preset(), indent=2, ensure_ascii=False),
            filename=_DEFAULT_PRESET_FILENAME,
        )

    async def handle_dg_preset_upload(self, files: list[rx.UploadFile]):
        """Apply an uploaded JSON filter/sort preset.

        This is an async generator so loading state is pushed to the
        frontend immediately.
        """
        engine = self._dg_engine()
        if engine is None or not files:
            return
        self.dg_loading = True  # type: ignore[assignment]
        yield

        content = await files[0].read()
        text = content.decode("utf-8") if isinstance(content, bytes) else content
        try:
            preset = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("[DataGrid] ignoring malformed preset: %s", exc)
            self.dg_loading = False  # type: ignore[assignment]
            return
        engine.apply_preset(preset)
        self.dg_filter_model = {  # type: ignore[assignment]
            "items": [f.to_dict() for f in engine.column_filters],
        }
        self._sync_dg_view()
        self.dg_loading = False  # type: ignore[assignment]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _dg_engine(self) -> DataGridEngine | None:
        engine = _get_engine(self._dg_cache_id) if self._dg_cache_id else None
        if engine is None:
            logger.warning(
                "[DataGrid] %s: no engine attached; call set_data_grid first", type(self).__name__
            )
        return engine

    def _navigate(self, method: str) -> None:
        engine = self._dg_engine()
        if engine is None:
            return
        getattr(engine, method)()
        self._sync_dg_view()

    def _sync_dg_view(self) -> None:
        """Mirror the engine's current view into the ``dg_*`` vars."""
        engine = self._dg_engine()
        if engine is None:
            return
        for name, value in grid_view(engine).items():
            setattr(self, name, value)
