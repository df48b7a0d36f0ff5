import copy
import datetime
import math

import pytest

from reflex_table_engine.columns import ColumnDescriptor, ColumnModel
from reflex_table_engine.models import ColumnFilter, FilterState, PaginationState, SortItem
from reflex_table_engine.view_engine import (
    clamp_page_index,
    compute_view,
    filter_rows,
    match_column_filter,
    normalize_column_filters,
    normalize_sort,
    page_count,
    paginate,
    resolve_page_size,
    sort_rows,
    toggle_sort,
)


def _ids(rows):
    return [row["id"] for row in rows]


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("n", [0, 1, 2, 9, 10, 11, 47, 100])
@pytest.mark.parametrize("p", [1, 3, 10, 50])
def test_pagination_law(n, p):
    assert page_count(n, p) == math.ceil(n / p)
    assert (page_count(n, p) == 0) == (n == 0)


def test_paginate_slices_window():
    rows = list(range(25))
    assert paginate(rows, PaginationState(0, 10)) == list(range(10))
    assert paginate(rows, PaginationState(2, 10)) == [20, 21, 22, 23, 24]
    assert paginate(rows, PaginationState(3, 10)) == []


@pytest.mark.parametrize(
    ("requested", "expected"),
    [(10, 10), (12, 10), (15, 10), (16, 20), (1000, 100), (0, 5), ("20", 20), ("bogus", 5), (None, 5)],
)
def test_resolve_page_size_snaps_to_nearest(requested, expected):
    assert resolve_page_size(requested, [5, 10, 20, 50, 100]) == expected


def test_resolve_page_size_requires_options():
    with pytest.raises(ValueError):
        resolve_page_size(10, [])


def test_clamp_page_index():
    assert clamp_page_index(-3, 4) == 0
    assert clamp_page_index(9, 4) == 3
    assert clamp_page_index(2, 0) == 0
    assert clamp_page_index(9, None) == 9


# ---------------------------------------------------------------------------
# Scenario
# ---------------------------------------------------------------------------

def test_people_scenario(people, people_model):
    no_filter = FilterState()
    first = PaginationState(0, 2)

    view = compute_view(people, [], no_filter, first, people_model)
    assert [r["name"] for r in view.visible_rows] == ["John", "Jane"]
    assert view.page_count == 2

    by_age = [SortItem("age", "asc")]
    view = compute_view(people, by_age, no_filter, first, people_model)
    assert [r["name"] for r in view.visible_rows] == ["Jane", "John"]
    view = compute_view(people, by_age, no_filter, PaginationState(1, 2), people_model)
    assert [r["name"] for r in view.visible_rows] == ["Bob"]

    view = compute_view(people, [], FilterState(global_filter="jo"), first, people_model)
    assert set(_ids(view.visible_rows)) == {1}
    assert view.page_count == 1

    view = compute_view(people, [], FilterState(global_filter="J"), first, people_model)
    assert set(_ids(view.visible_rows)) == {1, 2}
    assert view.filtered_count == 2
    assert view.page_count == 1


def test_compute_view_does_not_mutate_input(people, people_model):
    snapshot = copy.deepcopy(people)
    compute_view(people, [SortItem("age", "desc")], FilterState("o"), PaginationState(0, 1), people_model)
    assert people == snapshot


def test_compute_view_resets_stranded_page_index(many_rows, many_columns):
    model = ColumnModel(many_columns)
    view = compute_view(many_rows, [], FilterState(global_filter="row-0"), PaginationState(4, 10), model)
    assert view.filtered_count == 9
    assert view.pagination.page_index == 0
    assert len(view.visible_rows) == 9


def test_compute_view_empty_result(people, people_model):
    view = compute_view(people, [], FilterState(global_filter="zzz"), PaginationState(0, 10), people_model)
    assert view.visible_rows == []
    assert view.filtered_count == 0
    assert view.page_count == 0


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------

def test_stable_sort_keeps_input_order_for_ties():
    rows = [
        {"id": 1, "group": "b"},
        {"id": 2, "group": "a"},
        {"id": 3, "group": "b"},
        {"id": 4, "group": "a"},
        {"id": 5, "group": "b"},
    ]
    model = ColumnModel([ColumnDescriptor("group")])
    assert _ids(sort_rows(rows, model, [SortItem("group", "asc")])) == [2, 4, 1, 3, 5]
    assert _ids(sort_rows(rows, model, [SortItem("group", "desc")])) == [1, 3, 5, 2, 4]


def test_multi_key_sort(many_rows, many_columns):
    model = ColumnModel(many_columns)
    ordered = sort_rows(many_rows, model, [SortItem("category", "asc"), SortItem("id", "desc")])
    assert [r["category"] for r in ordered[:16]] == ["a"] * 15 + ["b"]
    assert _ids(ordered[:3]) == [45, 42, 39]


def test_missing_values_sort_first_in_both_directions():
    rows = [{"id": 1, "v": 2}, {"id": 2, "v": None}, {"id": 3, "v": 1}, {"id": 4, "v": float("nan")}]
    model = ColumnModel([ColumnDescriptor("v")])
    assert _ids(sort_rows(rows, model, [SortItem("v", "asc")])) == [2, 4, 3, 1]
    assert _ids(sort_rows(rows, model, [SortItem("v", "desc")])) == [2, 4, 1, 3]


def test_string_sort_is_case_insensitive():
    rows = [{"id": 1, "n": "beta"}, {"id": 2, "n": "Alpha"}, {"id": 3, "n": "alpha"}, {"id": 4, "n": "Gamma"}]
    model = ColumnModel([ColumnDescriptor("n")])
    assert _ids(sort_rows(rows, model, [SortItem("n", "asc")])) == [2, 3, 1, 4]


def test_numbers_sort_numerically():
    rows = [{"id": 1, "v": 10}, {"id": 2, "v": 9}, {"id": 3, "v": 100}]
    model = ColumnModel([ColumnDescriptor("v")])
    assert _ids(sort_rows(rows, model, [SortItem("v", "asc")])) == [2, 1, 3]


def test_dates_sort_chronologically():
    rows = [
        {"id": 1, "d": datetime.date(2024, 5, 1)},
        {"id": 2, "d": datetime.date(2023, 12, 31)},
        {"id": 3, "d": datetime.date(2024, 1, 15)},
    ]
    model = ColumnModel([ColumnDescriptor("d")])
    assert _ids(sort_rows(rows, model, [SortItem("d", "desc")])) == [1, 3, 2]


def test_toggle_sort_cycles_none_asc_desc_none():
    state: tuple[SortItem, ...] = ()
    state = toggle_sort(state, "age")
    assert state == (SortItem("age", "asc"),)
    state = toggle_sort(state, "age")
    assert state == (SortItem("age", "desc"),)
    state = toggle_sort(state, "age")
    assert state == ()


def test_toggle_sort_single_replaces_other_columns():
    state = (SortItem("age", "desc"),)
    assert toggle_sort(state, "name") == (SortItem("name", "asc"),)


def test_toggle_sort_multi_appends_and_cycles_in_place():
    state = toggle_sort((SortItem("age", "asc"),), "name", multi=True)
    assert state == (SortItem("age", "asc"), SortItem("name", "asc"))
    state = toggle_sort(state, "age", multi=True)
    assert state == (SortItem("age", "desc"), SortItem("name", "asc"))
    state = toggle_sort(state, "age", multi=True)
    assert state == (SortItem("name", "asc"),)


def test_normalize_sort_drops_unknown_unsortable_and_duplicates():
    model = ColumnModel([ColumnDescriptor("a"), ColumnDescriptor("b", sortable=False)])
    result = normalize_sort(
        [SortItem("a"), SortItem("b"), SortItem("zzz"), SortItem("a", "desc")],
        model,
    )
    assert result == (SortItem("a"),)


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def test_filter_idempotence(many_rows, many_columns):
    model = ColumnModel(many_columns)
    state = FilterState(global_filter="row-1")
    once = filter_rows(many_rows, model, state)
    twice = filter_rows(once, model, state)
    assert once == twice
    assert _ids(once) == list(range(10, 20))


def test_global_filter_scans_formatted_values_of_all_columns():
    model = ColumnModel([
        ColumnDescriptor("id", filterable=False),
        ColumnDescriptor("price", cell_formatter=lambda value, row: f"EUR {value}"),
    ])
    rows = [{"id": 1, "price": 1.5}, {"id": 22, "price": 2}]
    assert _ids(filter_rows(rows, model, FilterState(global_filter="eur 2"))) == [22]
    assert _ids(filter_rows(rows, model, FilterState(global_filter="22"))) == [22]


def test_column_filters_combine_with_and(many_rows, many_columns):
    model = ColumnModel(many_columns)
    state = FilterState(column_filters=(ColumnFilter("category", "a"), ColumnFilter("score", (30, 45))))
    assert _ids(filter_rows(many_rows, model, state)) == [21, 24, 27]


@pytest.mark.parametrize(
    ("value", "flt", "expected"),
    [
        ("Diesel Plus", ColumnFilter("c", "diesel"), True),
        ("Super", ColumnFilter("c", "diesel"), False),
        (None, ColumnFilter("c", "x"), False),
        (30, ColumnFilter("c", 30), True),
        (30.0, ColumnFilter("c", 30), True),
        ("30", ColumnFilter("c", 30), True),
        (31, ColumnFilter("c", 30), False),
        (True, ColumnFilter("c", True), True),
        (False, ColumnFilter("c", True), False),
        (None, ColumnFilter("c", False), False),
        (5, ColumnFilter("c", (5, 10)), True),
        (10, ColumnFilter("c", (5, 10)), True),
        (11, ColumnFilter("c", (5, 10)), False),
        (11, ColumnFilter("c", (5, None)), True),
        (4, ColumnFilter("c", (None, 4)), True),
        (None, ColumnFilter("c", (None, 4)), False),
        ("b", ColumnFilter("c", ["a", "b"]), True),
        ("c", ColumnFilter("c", {"a", "b"}), False),
        (datetime.date(2024, 1, 2), ColumnFilter("c", (datetime.date(2024, 1, 1), datetime.date(2024, 1, 31))), True),
        (datetime.date(2024, 2, 2), ColumnFilter("c", (datetime.date(2024, 1, 1), datetime.date(2024, 1, 31))), False),
        (datetime.date(2024, 1, 2), ColumnFilter("c", datetime.date(2024, 1, 2)), True),
    ],
)
def test_default_column_filter_rules(value, flt, expected):
    assert match_column_filter(value, flt) is expected


@pytest.mark.parametrize(
    ("value", "operator", "target", "expected"),
    [
        ("Shell Station", "contains", "shell", True),
        ("Shell", "equals", "shell", True),
        ("Shell Station", "equals", "shell", False),
        ("Shell Station", "startsWith", "SHE", True),
        ("Shell Station", "endsWith", "tion", True),
        ("", "isEmpty", None, True),
        (None, "isEmpty", None, True),
        ("x", "isNotEmpty", None, True),
        ("a", "is", "a", True),
        ("a", "not", "a", False),
        (None, "not", "a", True),
        ("b", "isAnyOf", ["a", "b"], True),
        (5, ">", 3, True),
        (5, ">=", 5, True),
        (5, "<", "7.5", True),
        (5, "<=", 4, False),
        (5, "=", "5", True),
        (5, "!=", 5, False),
        (None, "!=", 5, True),
        (None, ">", 5, False),
        ("abc", "someFutureOperator", "x", True),
    ],
)
def test_operator_rules(value, operator, target, expected):
    assert match_column_filter(value, ColumnFilter("c", target, operator)) is expected


def test_normalize_column_filters_keeps_last_active_per_filterable_column():
    model = ColumnModel([ColumnDescriptor("a"), ColumnDescriptor("b", filterable=False)])
    result = normalize_column_filters(
        [ColumnFilter("a", "x"), ColumnFilter("b", "y"), ColumnFilter("a", "z"), ColumnFilter("a", "")],
        model,
    )
    assert result == (ColumnFilter("a", "z"),)


def test_filters_on_unfilterable_columns_are_ignored(people, people_model):
    model = ColumnModel([ColumnDescriptor("id"), ColumnDescriptor("name", filterable=False)])
    state = FilterState(column_filters=(ColumnFilter("name", "bob"),))
    assert _ids(filter_rows(people, model, state)) == [1, 2, 3]
