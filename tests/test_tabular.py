"""
tests/test_tabular.py — Delimited text parsing and header resolution.

Covers:
    - Quoting, doubled quotes, line endings, BOM, blank lines, short rows
    - Delimiter sniffing (CSV vs TSV)
    - Tagged header resolution: exact → synonym → fuzzy → missing
    - Numeric cell conversion and its error context
"""

from __future__ import annotations

import pytest

from alignment_index.errors import InputError, MissingColumnError, ParseError
from alignment_index.tabular import (
    ColumnFound,
    ColumnMissing,
    canonicalize_header,
    is_missing,
    optional_column,
    parse_float,
    parse_table,
    parse_year,
    require_column,
    resolve_column,
)


class TestParseTable:
    def test_quoted_delimiter_and_doubled_quotes(self) -> None:
        """Commas inside quotes stay in the cell; "" is one quote."""
        table = parse_table('country,note\n"Korea, Rep.","said ""hi"""\n')
        assert table.headers == ("country", "note")
        assert table.records[0] == {"country": "Korea, Rep.", "note": 'said "hi"'}

    @pytest.mark.parametrize("newline", ["\n", "\r\n", "\r"])
    def test_line_endings(self, newline: str) -> None:
        """LF, CRLF and CR all split rows the same way."""
        text = newline.join(["iso3,year", "USA,2020", "FRA,2021"]) + newline
        table = parse_table(text)
        assert [r["iso3"] for r in table] == ["USA", "FRA"]

    def test_bom_and_blank_lines(self) -> None:
        """A leading BOM is dropped and blank lines are skipped."""
        table = parse_table("\ufeffiso3,year\n\nUSA,2020\n   \n\nFRA,2021\n")
        assert table.headers == ("iso3", "year")
        assert len(table) == 2

    def test_short_rows_padded(self) -> None:
        """Missing trailing cells become empty strings."""
        table = parse_table("a,b,c\n1\n")
        assert table.records[0] == {"a": "1", "b": "", "c": ""}

    def test_cells_and_headers_stripped(self) -> None:
        table = parse_table(" iso3 , value \n USA , 1.5 \n")
        assert table.records[0] == {"iso3": "USA", "value": "1.5"}

    def test_tsv_sniffed(self) -> None:
        """A header with tabs and no comma selects the tab delimiter."""
        table = parse_table("country\tstart_date\nIndia\t2019-01-01\n")
        assert table.headers == ("country", "start_date")
        assert table.records[0]["country"] == "India"

    def test_explicit_delimiter(self) -> None:
        table = parse_table("a;b\n1;2\n", delimiter=";")
        assert table.records[0] == {"a": "1", "b": "2"}

    def test_empty_input_has_no_headers(self) -> None:
        """Zero non-blank lines parse, but require_headers raises."""
        table = parse_table("\n\n  \n", label="empty")
        assert table.headers == ()
        with pytest.raises(ParseError) as exc_info:
            table.require_headers()
        assert exc_info.value.label == "empty"


class TestHeaderResolution:
    def test_canonicalize(self) -> None:
        assert canonicalize_header("Country Code") == "country_code"
        assert canonicalize_header(" ISO-3 ") == "iso_3"

    def test_exact_candidate_first(self) -> None:
        """The first candidate present wins, whatever the header order."""
        result = resolve_column(["ISO", "iso3"], ["iso3", "iso"])
        assert result == ColumnFound(column="iso3", matched="iso3")

    def test_synonym(self) -> None:
        result = resolve_column(["Country Code", "Year"], ["iso3", "country_code"])
        assert isinstance(result, ColumnFound)
        assert result.column == "Country Code"
        assert result.fuzzy is False

    def test_fuzzy_fallback(self) -> None:
        result = resolve_column(["Total Battle Deaths (best)"], ["bd_best"], fuzzy=["deaths"])
        assert isinstance(result, ColumnFound)
        assert result.column == "Total Battle Deaths (best)"
        assert result.fuzzy is True

    def test_missing_lists_tried(self) -> None:
        result = resolve_column(["a", "b"], ["iso3", "iso"], fuzzy=["code"], concept="country")
        assert result == ColumnMissing(concept="country", tried=("iso3", "iso", "*code*"))

    def test_require_column_raises_named(self) -> None:
        table = parse_table("a,b\n1,2\n", label="raw.csv")
        with pytest.raises(MissingColumnError) as exc_info:
            require_column(table, ["year"], concept="year")
        assert exc_info.value.concept == "year"
        assert exc_info.value.tried == ("year",)
        assert "raw.csv" in str(exc_info.value)

    def test_optional_column(self) -> None:
        table = parse_table("Source,value\nUNODC,1\n")
        assert optional_column(table, ["source"]) == "Source"
        assert optional_column(table, ["iso3"]) is None


class TestCellConversion:
    @pytest.mark.parametrize("cell", ["", "NA", "n/a", "..", "null", None])
    def test_missing_markers(self, cell: str | None) -> None:
        assert is_missing(cell)
        assert parse_float(cell, label="t", field_name="value") is None

    def test_thousands_separators(self) -> None:
        assert parse_float("1,234,567", label="t", field_name="value") == 1234567.0

    def test_garbage_raises_with_context(self) -> None:
        with pytest.raises(InputError) as exc_info:
            parse_float("abc", label="t", field_name="value", row=7)
        assert exc_info.value.field == "value"
        assert exc_info.value.row == 7

    def test_infinite_rejected(self) -> None:
        with pytest.raises(InputError):
            parse_float("inf", label="t", field_name="value")

    def test_year(self) -> None:
        assert parse_year("2020", label="t") == 2020
        assert parse_year("2020.0", label="t") == 2020
        assert parse_year("", label="t") is None
        with pytest.raises(InputError):
            parse_year("2020.5", label="t")
