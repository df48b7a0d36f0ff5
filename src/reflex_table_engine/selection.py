"""Row selection by identity, independent of the page being shown."""

import logging
from collections.abc import Callable, Hashable, Iterable, Sequence
from typing import Any

from reflex_table_engine.models import AggregateState, SelectionOptions

logger = logging.getLogger(__name__)


class SelectionManager:
    """Tracks selected row identities and resolves them to rows.

    Identities, never positions, are stored, so a selection survives
    sorting, filtering and paging.  :meth:`sync` is called with every new
    dataset: identities whose rows disappeared are pruned, unless
    ``retain_selection_across_fetch`` is set, in which case the rows of
    selected identities stay resolvable for batch actions.  Rows of
    earlier datasets that are not selected are never held.

    Args:
        options: Selection configuration.  ``None`` disables selection and
            turns every mutation into a no-op.
        identify: ``(row, position) -> identity``.
    """

    def __init__(
        self,
        options: SelectionOptions | None = None,
        identify: Callable[[Any, int], Hashable] | None = None,
    ) -> None:
        self.options = options or SelectionOptions()
        self._identify = identify or (lambda row, position: position)
        # dict keeps selection order for the host callbacks.
        self._selected: dict[Hashable, None] = {}
        # Rows of the current dataset.
        self._rows: dict[Hashable, Any] = {}
        # Selected rows carried over from earlier datasets.
        self._retained: dict[Hashable, Any] = {}

    @property
    def enabled(self) -> bool:
        return self.options.enabled

    @property
    def retain(self) -> bool:
        return self.options.retain_selection_across_fetch

    @property
    def selected_ids(self) -> list[Hashable]:
        return list(self._selected)

    @property
    def held_row_count(self) -> int:
        """Number of row objects kept for resolving identities."""
        return len(self._rows) + len(self._retained)

    def __len__(self) -> int:
        return len(self._selected)

    def is_selected(self, row_id: Hashable) -> bool:
        return row_id in self._selected

    def is_known(self, row_id: Hashable) -> bool:
        return row_id in self._rows or row_id in self._retained

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def toggle_row(self, row_id: Hashable) -> None:
        """Flip membership of *row_id*; other identities are untouched.

        Selecting an identity that is not part of the dataset is ignored
        unless selections are retained across fetches.
        """
        if not self._check_enabled("toggle_row"):
            return
        if row_id in self._selected:
            self._deselect(row_id)
        elif self.is_known(row_id) or self.retain:
            self._selected[row_id] = None
        else:
            logger.warning("[DataGrid] cannot select %r: no such row in the dataset", row_id)
            return
        self._notify()

    def toggle_all_on_page(self, visible_ids: Sequence[Hashable]) -> None:
        """Select the whole page, or deselect it if it is fully selected."""
        if not self._check_enabled("toggle_all_on_page"):
            return
        if self.get_aggregate_state(visible_ids).all_selected:
            for row_id in visible_ids:
                self._deselect(row_id)
        else:
            for row_id in visible_ids:
                self._selected[row_id] = None
        self._notify()

    def clear(self) -> None:
        if not self._selected:
            return
        self._selected.clear()
        self._retained.clear()
        self._notify()

    def get_aggregate_state(self, visible_ids: Sequence[Hashable]) -> AggregateState:
        """All/some flags for the page's bulk-select checkbox."""
        selected_on_page = sum(1 for row_id in visible_ids if row_id in self._selected)
        all_selected = len(visible_ids) > 0 and selected_on_page == len(visible_ids)
        return AggregateState(
            all_selected=all_selected,
            some_selected=selected_on_page > 0 and not all_selected,
        )

    # ------------------------------------------------------------------
    # Dataset tracking
    # ------------------------------------------------------------------

    def identify_rows(self, rows: Iterable[Any]) -> dict[Hashable, Any]:
        return {self._identify(row, position): row for position, row in enumerate(rows)}

    def sync(self, rows: Iterable[Any], *, retain: bool | None = None) -> None:
        """Adopt a new dataset, pruning identities that left it.

        Args:
            rows: The dataset now known to the grid.
            retain: Keep selected identities, and their rows, across the
                change.  Defaults to the configured
                ``retain_selection_across_fetch``.
        """
        if retain is None:
            retain = self.retain
        fresh = self.identify_rows(rows)
        if retain:
            carried = {**self._retained, **self._rows}
            self._retained = {
                row_id: carried[row_id]
                for row_id in self._selected
                if row_id in carried and row_id not in fresh
            }
            self._rows = fresh
            return
        self._rows = fresh
        self._retained = {}
        stale = [row_id for row_id in self._selected if row_id not in fresh]
        if stale:
            for row_id in stale:
                del self._selected[row_id]
            logger.debug("[DataGrid] dropped %d selected row(s) no longer present", len(stale))
            self._notify()

    def selected_rows(self) -> list[Any]:
        """Selected rows that can still be resolved, in selection order."""
        rows: list[Any] = []
        for row_id in self._selected:
            if row_id in self._rows:
                rows.append(self._rows[row_id])
            elif row_id in self._retained:
                rows.append(self._retained[row_id])
        return rows

    def run_batch_action(self, action_id: str) -> list[Any]:
        """Hand the selected rows to the host's batch handler, then clear.

        Only identifiers listed in ``batch_actions`` are accepted.  The
        selection is cleared whether or not the handler raises.

        Returns:
            The rows passed to the handler (empty if nothing ran).
        """
        if not self._check_enabled("run_batch_action"):
            return []
        handler = self.options.on_batch_action
        if handler is None:
            logger.warning("[DataGrid] batch action requested but no on_batch_action handler is set")
            return []
        registered = [action.value for action in self.options.batch_actions]
        if action_id not in registered:
            logger.warning(
                "[DataGrid] unknown batch action %r; registered actions: %s",
                action_id,
                registered,
            )
            return []

        rows = self.selected_rows()
        try:
            handler(action_id, rows)
        finally:
            self.clear()
        return rows

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _deselect(self, row_id: Hashable) -> None:
        self._selected.pop(row_id, None)
        self._retained.pop(row_id, None)

    def _check_enabled(self, operation: str) -> bool:
        if not self.enabled:
            logger.debug("[DataGrid] %s ignored: selection is disabled", operation)
        return self.enabled

    def _notify(self) -> None:
        if self.options.on_selection_change is not None:
            self.options.on_selection_change(self.selected_ids)
