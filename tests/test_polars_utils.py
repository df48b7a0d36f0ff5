import datetime

import polars as pl
import pytest

from reflex_table_engine.columns import ColumnModel
from reflex_table_engine.engine import DataGridEngine
from reflex_table_engine.models import (
    ColumnFilter,
    FilterState,
    PaginationState,
    SelectionOptions,
    SortItem,
)
from reflex_table_engine.polars_utils import (
    ROW_ID_FIELD,
    LazyFrameSource,
    apply_filter_state,
    apply_sort,
    columns_from_schema,
    frame_to_rows,
    polars_dtype_to_column_type,
    scan_file,
)
from reflex_table_engine.view_engine import compute_view


@pytest.fixture
def stations() -> pl.LazyFrame:
    return pl.LazyFrame(
        {
            "id": [1, 2, 3, 4, 5, 6],
            "brand": ["Shell", "BP", "shell", "Avia", None, "Eni"],
            "price": [1.79, 1.85, None, 1.65, 1.92, 1.79],
            "open": [True, False, True, None, True, False],
            "opened_on": [
                datetime.date(2020, 1, 1),
                datetime.date(2019, 6, 1),
                datetime.date(2021, 3, 15),
                None,
                datetime.date(2018, 12, 24),
                datetime.date(2022, 7, 4),
            ],
        }
    )


def _ids(rows):
    return [row["id"] for row in rows]


def _filtered_ids(lf, state: FilterState) -> list[int]:
    return apply_filter_state(lf, state).collect()["id"].to_list()


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------

def test_polars_dtype_to_column_type():
    assert polars_dtype_to_column_type(pl.Int64()) == "number"
    assert polars_dtype_to_column_type(pl.Float32()) == "number"
    assert polars_dtype_to_column_type(pl.Boolean()) == "boolean"
    assert polars_dtype_to_column_type(pl.Date()) == "date"
    assert polars_dtype_to_column_type(pl.Datetime()) == "dateTime"
    assert polars_dtype_to_column_type(pl.Categorical()) == "singleSelect"
    assert polars_dtype_to_column_type(pl.String()) == "string"
    assert polars_dtype_to_column_type(pl.List(pl.Int64)) == "string"


def test_columns_from_schema(stations):
    columns = columns_from_schema(
        stations.collect_schema(),
        descriptions={"price": "Price per litre"},
        id_field="id",
    )
    assert [c.id for c in columns] == ["brand", "price", "open", "opened_on"]
    assert columns[1].type == "number"
    assert columns[1].description == "Price per litre"
    assert columns[3].header_name == "Opened On"


def test_frame_to_rows_makes_values_json_safe():
    df = pl.DataFrame(
        {
            "d": [datetime.date(2024, 1, 2)],
            "tags": [["a", "b"]],
            "n": [1],
        }
    )
    assert frame_to_rows(df) == [{"d": "2024-01-02", "tags": "a,b", "n": 1}]


def test_scan_file_formats(tmp_path):
    df = pl.DataFrame({"id": [1, 2], "name": ["a", "b"]})
    df.write_csv(tmp_path / "data.csv")
    df.write_parquet(tmp_path / "data.parquet")
    (tmp_path / "data.tsv").write_text("id\tname\n1\ta\n2\tb\n")

    for name in ("data.csv", "data.parquet", "data.tsv"):
        assert scan_file(tmp_path / name).collect().equals(df)


def test_scan_file_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        scan_file(tmp_path / "missing.csv")
    (tmp_path / "data.xlsx").write_text("")
    with pytest.raises(ValueError, match="Unsupported file extension"):
        scan_file(tmp_path / "data.xlsx")


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def test_global_filter_is_case_insensitive_across_columns(stations):
    assert _filtered_ids(stations, FilterState(global_filter="SHELL")) == [1, 3]
    assert _filtered_ids(stations, FilterState(global_filter="1.79")) == [1, 6]
    assert _filtered_ids(stations, FilterState(global_filter="2021")) == [3]


@pytest.mark.parametrize(
    ("flt", "expected"),
    [
        (ColumnFilter("brand", "sh"), [1, 3]),
        (ColumnFilter("price", 1.79), [1, 6]),
        (ColumnFilter("price", (1.7, 1.86)), [1, 2, 6]),
        (ColumnFilter("price", (None, 1.7)), [4]),
        (ColumnFilter("brand", ["BP", "Eni"]), [2, 6]),
        (ColumnFilter("open", True), [1, 3, 5]),
        (ColumnFilter("opened_on", (datetime.date(2020, 1, 1), None)), [1, 3, 6]),
        (ColumnFilter("brand", None, "isEmpty"), [5]),
        (ColumnFilter("brand", None, "isNotEmpty"), [1, 2, 3, 4, 6]),
        (ColumnFilter("brand", "shell", "equals"), [1, 3]),
        (ColumnFilter("brand", "s", "startsWith"), [1, 3]),
        (ColumnFilter("brand", "Shell", "is"), [1]),
        (ColumnFilter("brand", "Shell", "not"), [2, 3, 4, 5, 6]),
        (ColumnFilter("brand", ["BP", "Avia"], "isAnyOf"), [2, 4]),
        (ColumnFilter("price", "1.8", ">"), [2, 5]),
        (ColumnFilter("price", 1.79, "<="), [1, 4, 6]),
        (ColumnFilter("price", 1.79, "!="), [2, 3, 4, 5]),
        (ColumnFilter("price", 1, "someFutureOperator"), [1, 2, 3, 4, 5, 6]),
        (ColumnFilter("nope", "x"), [1, 2, 3, 4, 5, 6]),
    ],
)
def test_column_filters(stations, flt, expected):
    assert _filtered_ids(stations, FilterState(column_filters=(flt,))) == expected


def test_lazy_filters_agree_with_in_memory_engine(stations):
    df = stations.collect()
    rows = df.to_dicts()
    model = ColumnModel(columns_from_schema(df.schema, id_field="id", show_id_field=True))
    states = [
        FilterState(global_filter="e"),
        FilterState(column_filters=(ColumnFilter("brand", "sh"), ColumnFilter("price", (1.7, 2)))),
        FilterState(column_filters=(ColumnFilter("open", False),)),
        FilterState(column_filters=(ColumnFilter("price", 1.8, ">="),)),
    ]
    for state in states:
        view = compute_view(rows, [], state, PaginationState(0, 100), model)
        assert _filtered_ids(stations, state) == _ids(view.visible_rows), state


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------

def test_sort_puts_nulls_first_in_both_directions(stations):
    asc = apply_sort(stations, [SortItem("price", "asc")]).collect()["id"].to_list()
    desc = apply_sort(stations, [SortItem("price", "desc")]).collect()["id"].to_list()
    assert asc == [3, 4, 1, 6, 2, 5]
    assert desc == [3, 5, 2, 1, 6, 4]


def test_sort_strings_case_insensitively_and_stably(stations):
    ordered = apply_sort(stations, [SortItem("brand", "asc")]).collect()["id"].to_list()
    assert ordered == [5, 4, 2, 6, 1, 3]


def test_multi_key_sort(stations):
    ordered = apply_sort(stations, [SortItem("price", "desc"), SortItem("id", "desc")]).collect()
    assert ordered["id"].to_list() == [3, 5, 2, 6, 1, 4]


# ---------------------------------------------------------------------------
# LazyFrameSource
# ---------------------------------------------------------------------------

def test_source_uses_id_column_or_row_index(stations):
    assert LazyFrameSource(stations).id_field == "id"
    source = LazyFrameSource(stations.drop("id"))
    assert source.id_field == ROW_ID_FIELD
    assert ROW_ID_FIELD not in [c.id for c in source.columns()]
    with pytest.raises(ValueError):
        LazyFrameSource(stations, id_field="nope")


def test_fetch_returns_page_and_total(stations):
    source = LazyFrameSource(stations)
    rows, total = source.fetch(
        [SortItem("id", "desc")],
        FilterState(global_filter="e"),
        PaginationState(1, 2),
    )
    assert total == 5
    assert _ids(rows) == [3, 2]
    assert source.count() == 6
    assert source.count(FilterState(global_filter="e")) == 5


def test_engine_over_source_refreshes_on_every_change(stations):
    source = LazyFrameSource(stations)
    engine = source.create_engine(default_page_size=5, page_size_options=[2, 5])
    assert engine.server_side
    assert engine.total_rows == 6
    assert engine.page_count == 2
    assert _ids(engine.visible_rows) == [1, 2, 3, 4, 5]

    engine.next_page()
    assert _ids(engine.visible_rows) == [6]

    engine.set_global_filter("shell")
    assert engine.pagination.page_index == 0
    assert _ids(engine.visible_rows) == [1, 3]
    assert engine.total_rows == 2

    engine.toggle_sort("id")
    engine.toggle_sort("id")
    assert _ids(engine.visible_rows) == [3, 1]

    engine.clear_filters()
    engine.set_page_size(2)
    assert engine.page_count == 3
    assert _ids(engine.visible_rows) == [6, 5]


def test_row_index_ids_are_stable_across_sort_and_filter(stations):
    source = LazyFrameSource(stations.drop("id"))
    engine = source.create_engine(selection=SelectionOptions(enabled=True, retain_selection_across_fetch=True))
    first_shell = engine.visible_rows[0]
    engine.toggle_row(first_shell[ROW_ID_FIELD])

    engine.toggle_sort("brand")
    engine.toggle_sort("brand")
    engine.set_column_filter("brand", "shell")
    assert [r[ROW_ID_FIELD] for r in engine.visible_rows] == [2, 0]
    assert engine.selection.selected_ids == [0]


def test_refresh_requires_engine(stations):
    with pytest.raises(RuntimeError):
        LazyFrameSource(stations).refresh()


def test_initial_state_is_used_for_first_page(stations):
    engine = LazyFrameSource(stations).create_engine(
        initial_sorting=[SortItem("price", "desc")],
        initial_column_filters=[ColumnFilter("open", True)],
    )
    assert _ids(engine.visible_rows) == [3, 5, 1]
    assert isinstance(engine, DataGridEngine)
