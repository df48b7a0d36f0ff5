from pathlib import Path

import pytest
from typer.testing import CliRunner

from reflex_table_engine.cli import _parse_filter, _parse_sort, app
from reflex_table_engine.models import ColumnFilter, SortItem

runner = CliRunner()


@pytest.fixture
def data_file(tmp_path) -> Path:
    path = tmp_path / "stations.csv"
    path.write_text(
        "id,brand,price\n"
        "1,Shell,1.79\n"
        "2,BP,1.85\n"
        "3,shell,1.69\n"
        "4,Avia,1.65\n"
    )
    return path


@pytest.mark.parametrize(
    ("spec", "expected"),
    [
        ("price<1.9", ColumnFilter("price", "1.9", "<")),
        ("price >= 2", ColumnFilter("price", "2", ">=")),
        ("brand~shell", ColumnFilter("brand", "shell", "contains")),
        ("brand=BP", ColumnFilter("brand", "BP", "equals")),
        ("brand!=BP", ColumnFilter("brand", "BP", "not")),
        ("id=3", ColumnFilter("id", "3", "=")),
    ],
)
def test_parse_filter(spec, expected):
    assert _parse_filter(spec) == expected


def test_parse_sort():
    assert _parse_sort(["price:desc", "brand"]) == [SortItem("price", "desc"), SortItem("brand", "asc")]


def test_export_writes_sorted_filtered_rows(data_file, tmp_path):
    out = tmp_path / "out"
    result = runner.invoke(
        app,
        [
            "export", str(data_file),
            "--out", str(out),
            "--sort", "price:desc",
            "--filter", "price<1.8",
            "--search", "SH",
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Wrote 2 rows" in result.output
    assert (out / "stations.csv").read_text(encoding="utf-8") == "id,brand,price\n1,Shell,1.79\n3,shell,1.69"


def test_export_page_scope(data_file, tmp_path):
    result = runner.invoke(
        app,
        [
            "export", str(data_file),
            "-o", str(tmp_path),
            "-f", "second_page",
            "--scope", "page",
            "--page", "1",
            "--page-size", "3",
        ],
    )
    assert result.exit_code == 0, result.output
    assert (tmp_path / "second_page.csv").read_text(encoding="utf-8") == "id,brand,price\n4,Avia,1.65"


def test_export_all_scope_ignores_filters(data_file, tmp_path):
    result = runner.invoke(
        app,
        ["export", str(data_file), "-o", str(tmp_path), "--scope", "all", "--filter", "brand=BP"],
    )
    assert result.exit_code == 0, result.output
    assert "Wrote 4 rows" in result.output


def test_page_prints_one_lazy_page(data_file):
    result = runner.invoke(
        app,
        ["page", str(data_file), "--page", "1", "--page-size", "2", "--sort", "id"],
    )
    assert result.exit_code == 0, result.output
    assert "id,brand,price\n3,shell,1.69\n4,Avia,1.65" in result.output
    assert "rows 3-4 of 4 (page 2 of 2)" in result.output


def test_page_with_filter(data_file):
    result = runner.invoke(app, ["page", str(data_file), "--filter", "brand~SHELL", "-s", "price"])
    assert result.exit_code == 0, result.output
    assert "id,brand,price\n3,shell,1.69\n1,Shell,1.79" in result.output
    assert "rows 1-2 of 2" in result.output


def test_unknown_column_exits_with_error(data_file, tmp_path):
    result = runner.invoke(app, ["export", str(data_file), "-o", str(tmp_path), "--sort", "nope"])
    assert result.exit_code == 1
    assert "unknown column(s): nope" in result.output


def test_missing_file_exits_with_error(tmp_path):
    result = runner.invoke(app, ["page", str(tmp_path / "missing.csv")])
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_bad_scope_is_rejected(data_file, tmp_path):
    result = runner.invoke(app, ["export", str(data_file), "-o", str(tmp_path), "--scope", "selected"])
    assert result.exit_code != 0
    assert not (tmp_path / "stations.csv").exists()
