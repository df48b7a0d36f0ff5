"""reflex-table-engine – sortable, filterable, paginated, selectable data grids for Reflex.

The engine works on any row type, in memory (client-side) or by delegating
each state change to a host that fetches pages (server-side)::

    pip install reflex-table-engine

Polars LazyFrames plug in as a server-side host through
:class:`LazyFrameSource`; :class:`DataGridMixin` exposes an engine to a
Reflex app.
"""

from reflex_table_engine.columns import ColumnDescriptor, ColumnModel, stringify
from reflex_table_engine.computation import (
    DelegatedComputation,
    Debouncer,
    LocalComputation,
    ViewComputation,
)
from reflex_table_engine.engine import DataGridEngine
from reflex_table_engine.export import (
    CSV_MIME_TYPE,
    DirectorySink,
    FileSink,
    MemorySink,
    ReflexDownloadSink,
    escape_csv_field,
    export_rows,
    to_csv,
)
from reflex_table_engine.grid_state import DataGridMixin
from reflex_table_engine.models import (
    AggregateState,
    BatchAction,
    ColumnDef,
    ColumnFilter,
    ExportOptions,
    FilterState,
    PaginationState,
    SelectionOptions,
    ServerSideOptions,
    SortItem,
    ViewResult,
)
from reflex_table_engine.polars_utils import (
    LazyFrameSource,
    apply_filter_state,
    apply_sort,
    columns_from_schema,
    frame_to_rows,
    polars_dtype_to_column_type,
    scan_file,
)
from reflex_table_engine.selection import SelectionManager
from reflex_table_engine.view_engine import (
    compute_view,
    filter_rows,
    page_count,
    paginate,
    sort_rows,
    toggle_sort,
)
