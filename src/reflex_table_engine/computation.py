"""Client-side versus server-side view computation.

The engine picks one :class:`ViewComputation` at construction and never
switches:

* :class:`LocalComputation` recomputes the view synchronously from the
  full dataset through :func:`~reflex_table_engine.view_engine.compute_view`.
* :class:`DelegatedComputation` forwards every committed change to the
  host as one event per change kind, and shows whatever page the host
  hands back, sized by the host's ``total_rows``.

Delegated filter emissions go through a single-flight :class:`Debouncer`
per filter kind, so a burst of keystrokes produces one emission after the
quiet period.  Every emission advances a generation counter; a page
delivered for an older generation than the one already displayed is
dropped.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from reflex_table_engine.columns import ColumnModel
from reflex_table_engine.models import (
    ChangeKind,
    FilterState,
    PaginationState,
    ServerSideOptions,
    SortItem,
    ViewResult,
)
from reflex_table_engine.view_engine import compute_view, page_count

logger = logging.getLogger(__name__)

_DEFAULT_FILTER_DEBOUNCE_MS: int = 300

#: Change kinds whose server-side emission is debounced.
_DEBOUNCED_KINDS: frozenset[str] = frozenset({"globalFilter", "columnFilter"})


# ---------------------------------------------------------------------------
# Timers
# ---------------------------------------------------------------------------

class TimerHandle(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


class _FiredHandle:
    """Handle for a callback that already ran; cancelling is a no-op."""

    def cancel(self) -> None:
        pass


def call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    """Schedule *callback* on the running asyncio loop after *delay* seconds.

    Outside a running loop (plain synchronous hosts, scripts) there is no
    timer to wait on, so the callback runs immediately.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        callback()
        return _FiredHandle()
    return loop.call_later(delay, callback)


class Debouncer:
    """Single-flight trailing-edge debounce.

    Each :meth:`call` cancels the pending timer, if any, and reschedules,
    so at most one callback is ever pending.
    """

    def __init__(self, delay_ms: int, scheduler: Scheduler = call_later) -> None:
        self.delay_ms = delay_ms
        self._scheduler = scheduler
        self._handle: TimerHandle | None = None
        self._callback: Callable[[], None] | None = None

    @property
    def pending(self) -> bool:
        return self._callback is not None

    def call(self, callback: Callable[[], None]) -> None:
        self.cancel()
        self._callback = callback
        self._handle = self._scheduler(self.delay_ms / 1000, self._fire)

    def flush(self) -> None:
        """Run the pending callback now instead of waiting for the timer."""
        if self._handle is not None:
            self._handle.cancel()
        self._fire()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._callback = None

    def _fire(self) -> None:
        callback = self._callback
        self._handle = None
        self._callback = None
        if callback is not None:
            callback()


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class ViewComputation(ABC):
    """How a grid turns its state and rows into a :class:`ViewResult`."""

    server_side: bool = False

    @abstractmethod
    def on_state_change(
        self,
        kind: ChangeKind,
        descriptor: Any,
        *,
        induced: Sequence[tuple[ChangeKind, Any]] = (),
    ) -> None:
        """React to a committed transition of *kind*.

        *induced* lists transitions committed as a side effect of this one
        (a filter change resetting the page index).
        """

    @abstractmethod
    def compute(
        self,
        rows: Sequence[Any],
        sort: Sequence[SortItem],
        filter_state: FilterState,
        pagination: PaginationState,
        columns: ColumnModel,
        total_rows: int | None = None,
    ) -> ViewResult:
        """Produce the view for the current rows and state."""

    def accept(self, generation: int | None) -> bool:
        """Whether a dataset delivered for *generation* may be displayed."""
        return True

    def cancel(self) -> None:
        """Drop pending work; called when the grid unmounts."""


class LocalComputation(ViewComputation):
    """Sort, filter and paginate in process over the full dataset."""

    server_side = False

    def on_state_change(
        self,
        kind: ChangeKind,
        descriptor: Any,
        *,
        induced: Sequence[tuple[ChangeKind, Any]] = (),
    ) -> None:
        # Nothing leaves the process; the engine recomputes right after.
        pass

    def compute(
        self,
        rows: Sequence[Any],
        sort: Sequence[SortItem],
        filter_state: FilterState,
        pagination: PaginationState,
        columns: ColumnModel,
        total_rows: int | None = None,
    ) -> ViewResult:
        t0 = time.perf_counter()
        view = compute_view(rows, sort, filter_state, pagination, columns)
        elapsed_ms = (time.perf_counter() - t0) * 1000
        logger.debug(
            "[DataGrid] local view: rows=%d, filtered=%d, page=%d, elapsed=%.1fms",
            len(rows),
            view.filtered_count,
            view.pagination.page_index,
            elapsed_ms,
        )
        return view


class DelegatedComputation(ViewComputation):
    """Emit change descriptors to the host and display its pages as-is."""

    server_side = True

    def __init__(
        self,
        options: ServerSideOptions,
        *,
        scheduler: Scheduler = call_later,
    ) -> None:
        self._handlers: dict[str, Callable[[Any], Any] | None] = {
            "pagination": options.on_pagination_change,
            "sort": options.on_sorting_change,
            "globalFilter": options.on_global_filter_change,
            "columnFilter": options.on_column_filters_change,
        }
        debounce_ms = options.filter_debounce_ms
        if debounce_ms is None:
            debounce_ms = _DEFAULT_FILTER_DEBOUNCE_MS
        self._debouncers: dict[str, Debouncer] = {
            kind: Debouncer(debounce_ms, scheduler) for kind in _DEBOUNCED_KINDS
        } if debounce_ms > 0 else {}
        # Induced transitions waiting on a debounced emission, by kind.
        self._pending_induced: dict[str, dict[str, Any]] = {}
        self._generation = 0
        self._applied_generation = 0
        self._closed = False

    @property
    def generation(self) -> int:
        """Number of emissions so far; identifies the newest requested state."""
        return self._generation

    @property
    def has_pending_emission(self) -> bool:
        return any(d.pending for d in self._debouncers.values())

    def on_state_change(
        self,
        kind: ChangeKind,
        descriptor: Any,
        *,
        induced: Sequence[tuple[ChangeKind, Any]] = (),
    ) -> None:
        if self._closed:
            return
        debouncer = self._debouncers.get(kind)
        if debouncer is None:
            for induced_kind, induced_descriptor in induced:
                self._supersede(induced_kind)
                self._emit(induced_kind, induced_descriptor)
            self._supersede(kind)
            self._emit(kind, descriptor)
            return

        pending = self._pending_induced.setdefault(kind, {})
        pending.update(dict(induced))
        debouncer.call(lambda: self._flush(kind, descriptor))

    def flush(self) -> None:
        """Emit every pending debounced change immediately."""
        for debouncer in self._debouncers.values():
            if debouncer.pending:
                debouncer.flush()

    def _flush(self, kind: str, descriptor: Any) -> None:
        for induced_kind, induced_descriptor in self._pending_induced.pop(kind, {}).items():
            self._emit(induced_kind, induced_descriptor)
        self._emit(kind, descriptor)

    def _supersede(self, kind: str) -> None:
        """Forget induced *kind* descriptors still waiting on a debounce."""
        for pending in self._pending_induced.values():
            pending.pop(kind, None)

    def _emit(self, kind: str, descriptor: Any) -> None:
        if self._closed:
            return
        self._generation += 1
        handler = self._handlers.get(kind)
        logger.debug(
            "[DataGrid] emit %s (generation=%d, handled=%s)",
            kind,
            self._generation,
            handler is not None,
        )
        if handler is not None:
            handler(descriptor)

    def accept(self, generation: int | None) -> bool:
        if self._closed:
            return False
        if generation is None:
            generation = self._generation
        if generation < self._applied_generation:
            logger.debug(
                "[DataGrid] dropped stale page (generation=%d, displayed=%d)",
                generation,
                self._applied_generation,
            )
            return False
        self._applied_generation = generation
        return True

    def compute(
        self,
        rows: Sequence[Any],
        sort: Sequence[SortItem],
        filter_state: FilterState,
        pagination: PaginationState,
        columns: ColumnModel,
        total_rows: int | None = None,
    ) -> ViewResult:
        pages = None if total_rows is None else page_count(total_rows, pagination.page_size)
        filtered_count = len(rows) if total_rows is None else total_rows
        return ViewResult(
            visible_rows=list(rows),
            filtered_count=filtered_count,
            page_count=pages,
            pagination=pagination,
            filtered_rows=list(rows),
        )

    def cancel(self) -> None:
        for debouncer in self._debouncers.values():
            debouncer.cancel()
        self._pending_induced.clear()
        self._closed = True
