"""CSV export and the file-emission boundary.

Serialisation is pure (:func:`to_csv`); delivering the bytes is the job of
a :class:`FileSink`.  The CSV dialect is fixed:

* header row = accessor identifiers of exportable columns, in column order
* one line per row with each column's formatted cell text
* fields joined by ``,``, lines joined by ``\\n`` (no trailing newline)
* a field containing ``,``, ``"`` or ``\\n`` is wrapped in double quotes and
  every inner ``"`` is doubled
"""

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import reflex as rx
from reflex.event import EventSpec

from reflex_table_engine.columns import ColumnDescriptor
from reflex_table_engine.models import ExportOptions

logger = logging.getLogger(__name__)

CSV_MIME_TYPE: str = "text/csv;charset=utf-8"

_DEFAULT_EXPORT_FILENAME: str = "export"

_QUOTE_TRIGGERS: tuple[str, ...] = (",", '"', "\n")


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------

class FileSink(Protocol):
    """Receives a finished file.  Implementations decide where it goes."""

    def emit(self, filename: str, mime_type: str, data: bytes) -> None: ...


@dataclass
class EmittedFile:
    filename: str
    mime_type: str
    data: bytes

    @property
    def text(self) -> str:
        return self.data.decode("utf-8")


@dataclass
class MemorySink:
    """Keeps emitted files in memory, newest last."""

    files: list[EmittedFile] = field(default_factory=list)

    def emit(self, filename: str, mime_type: str, data: bytes) -> None:
        self.files.append(EmittedFile(filename, mime_type, data))

    @property
    def last(self) -> EmittedFile | None:
        return self.files[-1] if self.files else None


class DirectorySink:
    """Writes each emitted file into *directory*, replacing same-named files."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self.last_path: Path | None = None

    def emit(self, filename: str, mime_type: str, data: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / Path(filename).name
        path.write_bytes(data)
        self.last_path = path


class ReflexDownloadSink:
    """Turns an emitted file into an ``rx.download`` event.

    Event handlers return :attr:`events` so the browser saves the file::

        def download_csv(self):
            sink = ReflexDownloadSink()
            engine.export(sink)
            return sink.events
    """

    def __init__(self) -> None:
        self.events: list[EventSpec] = []

    def emit(self, filename: str, mime_type: str, data: bytes) -> None:
        self.events.append(rx.download(data=data, filename=filename))  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

def escape_csv_field(text: str) -> str:
    """Quote *text* when it contains a comma, a double quote or a newline."""
    if any(trigger in text for trigger in _QUOTE_TRIGGERS):
        return '"' + text.replace('"', '""') + '"'
    return text


def to_csv(rows: Sequence[Any], columns: Sequence[ColumnDescriptor]) -> str:
    lines = [",".join(escape_csv_field(c.accessor_key) for c in columns)]
    for row in rows:
        lines.append(",".join(escape_csv_field(c.formatted(row)) for c in columns))
    return "\n".join(lines)


def export_filename(options: ExportOptions) -> str:
    return f"{options.filename or _DEFAULT_EXPORT_FILENAME}.csv"


def export_rows(
    rows: Sequence[Any],
    columns: Sequence[ColumnDescriptor],
    options: ExportOptions,
    sink: FileSink | None = None,
) -> str | None:
    """Export *rows* as CSV through *sink*.

    ``options.export_formatter`` reshapes the rows first.  When
    ``options.on_export`` is set the host takes over: it receives the
    (formatted) rows and nothing is serialised.  Columns with
    ``exportable=False`` are skipped; with no exportable column at all the
    export is declined.

    Returns:
        The CSV text that was emitted, or ``None`` when the host handled
        the export or there was nothing to write.
    """
    rows = list(rows)
    if options.export_formatter is not None:
        rows = list(options.export_formatter(rows))

    if options.on_export is not None:
        options.on_export(rows)
        return None

    exportable = [c for c in columns if c.exportable]
    if not exportable:
        logger.warning("[DataGrid] export skipped: no exportable columns")
        return None

    t0 = time.perf_counter()
    text = to_csv(rows, exportable)
    filename = export_filename(options)
    if sink is not None:
        sink.emit(filename, CSV_MIME_TYPE, text.encode("utf-8"))
    elapsed_ms = (time.perf_counter() - t0) * 1000
    logger.debug(
        "[DataGrid] export %s: %d rows x %d columns (%.1fms)",
        filename,
        len(rows),
        len(exportable),
        elapsed_ms,
    )
    return text
