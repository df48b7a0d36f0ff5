"""CLI for reflex-table-engine -- sort, filter, page and export tabular files.

Usage::

    # Export the rows of a CSV that match a search, sorted by price
    reflex-table-engine export stations.csv --search diesel --sort price:desc

    # Column filters: = != > >= < <= and ~ (contains)
    reflex-table-engine export stations.parquet --filter "price<1.9" --filter "brand~shell"

    # Print one page, computed lazily without loading the whole file
    reflex-table-engine page big_file.parquet --page 3 --page-size 50

Both commands run the same grid engine the Reflex state binding uses:
``export`` computes the view in memory, ``page`` delegates it to a polars
``LazyFrame``.
"""

import logging
import re
from pathlib import Path
from typing import Annotated, Optional

import polars as pl
import typer

from reflex_table_engine.engine import DataGridEngine
from reflex_table_engine.export import DirectorySink, to_csv
from reflex_table_engine.models import ColumnFilter, ExportOptions, SortItem
from reflex_table_engine.polars_utils import (
    LazyFrameSource,
    columns_from_schema,
    frame_to_rows,
    scan_file,
)
from reflex_table_engine.view_engine import _coerce_numeric

app = typer.Typer(
    name="reflex-table-engine",
    help="Sort, filter, page and export tabular data files.",
    no_args_is_help=True,
)

_SCOPES: tuple[str, ...] = ("all", "filtered", "page")

_FILTER_RE = re.compile(r"^(?P<field>[^<>=!~]+?)\s*(?P<op>>=|<=|!=|=|>|<|~)\s*(?P<value>.*)$")

_NUMERIC_OPERATORS: dict[str, str] = {"=": "=", "!=": "!=", ">": ">", ">=": ">=", "<": "<", "<=": "<="}
_TEXT_OPERATORS: dict[str, str] = {"=": "equals", "!=": "not", "~": "contains"}


def _parse_sort(specs: list[str]) -> list[SortItem]:
    """``["price:desc", "name"]`` -> sort items (direction defaults to asc)."""
    items: list[SortItem] = []
    for spec in specs:
        field, _, direction = spec.partition(":")
        direction = direction.lower() or "asc"
        if direction not in ("asc", "desc"):
            raise typer.BadParameter(f"sort direction must be asc or desc, got {direction!r}")
        items.append(SortItem(field.strip(), direction))  # type: ignore[arg-type]
    return items


def _parse_filter(spec: str) -> ColumnFilter:
    """``"price<1.9"`` -> ``ColumnFilter("price", "1.9", "<")``.

    ``=`` and ``!=`` compare numerically when the value is a number and
    as text otherwise; ``~`` is a case-insensitive substring match.
    """
    match = _FILTER_RE.match(spec)
    if match is None:
        raise typer.BadParameter(f"cannot parse filter {spec!r}; expected FIELD<op>VALUE")
    field, op, value = match["field"].strip(), match["op"], match["value"]
    if op == "~":
        return ColumnFilter(field, value, "contains")
    if _coerce_numeric(value) is not None:
        return ColumnFilter(field, value, _NUMERIC_OPERATORS[op])
    if op in _TEXT_OPERATORS:
        return ColumnFilter(field, value, _TEXT_OPERATORS[op])
    raise typer.BadParameter(f"operator {op!r} needs a numeric value in {spec!r}")


def _check_fields(known: list[str], sorting: list[SortItem], filters: list[ColumnFilter]) -> None:
    unknown = [s.column_id for s in sorting if s.column_id not in known]
    unknown += [f.column_id for f in filters if f.column_id not in known]
    if unknown:
        typer.echo(f"Error: unknown column(s): {', '.join(unknown)}", err=True)
        typer.echo(f"Available: {', '.join(known)}", err=True)
        raise typer.Exit(code=1)


def _open(file: Path) -> pl.LazyFrame:
    try:
        return scan_file(file)
    except (FileNotFoundError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.callback()
def default(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log engine timings")] = False,
) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


@app.command()
def export(
    file: Annotated[Path, typer.Argument(help="Path to the data file (CSV, TSV, Parquet, JSON, etc.)")],
    out: Annotated[Path, typer.Option("--out", "-o", help="Directory to write the CSV into")] = Path("."),
    filename: Annotated[Optional[str], typer.Option("--filename", "-f", help="Output name without .csv")] = None,
    sort: Annotated[Optional[list[str]], typer.Option("--sort", "-s", help="FIELD[:asc|desc], repeatable")] = None,
    filter_: Annotated[Optional[list[str]], typer.Option("--filter", help="FIELD<op>VALUE, repeatable")] = None,
    search: Annotated[str, typer.Option("--search", "-q", help="Case-insensitive text across all columns")] = "",
    scope: Annotated[str, typer.Option("--scope", help="Rows to export: filtered, all or page")] = "filtered",
    page: Annotated[int, typer.Option("--page", help="Page index for --scope page")] = 0,
    page_size: Annotated[int, typer.Option("--page-size", help="Page size for --scope page")] = 10,
) -> None:
    """Export the sorted and filtered rows of a data file as CSV."""
    if scope not in _SCOPES:
        raise typer.BadParameter(f"scope must be one of {', '.join(_SCOPES)}")
    if page_size <= 0:
        raise typer.BadParameter("--page-size must be positive")
    sorting = _parse_sort(sort or [])
    filters = [_parse_filter(spec) for spec in filter_ or []]

    df = _open(file).collect()
    columns = columns_from_schema(df.schema)
    _check_fields([c.id for c in columns], sorting, filters)

    engine = DataGridEngine(
        columns,
        frame_to_rows(df),
        initial_sorting=sorting,
        initial_column_filters=filters,
        initial_global_filter=search,
        default_page_size=page_size,
        page_size_options=(page_size,),
        export=ExportOptions(enabled=True, filename=filename or file.stem, scope=scope),  # type: ignore[arg-type]
    )
    engine.set_page_index(page)

    sink = DirectorySink(out)
    engine.export(sink)
    count = len(engine.rows_for_scope(scope))  # type: ignore[arg-type]
    typer.echo(f"Wrote {count:,} rows to {sink.last_path}")


@app.command(name="page")
def show_page(
    file: Annotated[Path, typer.Argument(help="Path to the data file (CSV, TSV, Parquet, JSON, etc.)")],
    page: Annotated[int, typer.Option("--page", "-p", help="Zero-based page index")] = 0,
    page_size: Annotated[int, typer.Option("--page-size", "-n", help="Rows per page")] = 10,
    sort: Annotated[Optional[list[str]], typer.Option("--sort", "-s", help="FIELD[:asc|desc], repeatable")] = None,
    filter_: Annotated[Optional[list[str]], typer.Option("--filter", help="FIELD<op>VALUE, repeatable")] = None,
    search: Annotated[str, typer.Option("--search", "-q", help="Case-insensitive text across all columns")] = "",
) -> None:
    """Print one page of a data file as CSV, computed lazily."""
    if page_size <= 0:
        raise typer.BadParameter("--page-size must be positive")
    sorting = _parse_sort(sort or [])
    filters = [_parse_filter(spec) for spec in filter_ or []]

    source = LazyFrameSource(_open(file))
    _check_fields([c.id for c in source.columns()], sorting, filters)

    engine = source.create_engine(
        initial_sorting=sorting,
        initial_column_filters=filters,
        initial_global_filter=search,
        default_page_size=page_size,
        page_size_options=(page_size,),
    )
    engine.set_page_index(page)

    typer.echo(to_csv(engine.visible_rows, engine.columns.exportable()))
    first, last, total = engine.range_summary()
    typer.echo(f"rows {first}-{last} of {total:,} (page {engine.pagination.page_index + 1} of {engine.page_count})", err=True)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
