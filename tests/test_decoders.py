"""Tests des décodeurs de lignes déclarés par schéma."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from src.db.decoders import (
    ColumnSpec,
    RowDecoder,
    as_bool,
    as_date,
    as_datetime,
    as_float,
    as_int,
    as_str,
    optional,
    with_default,
)
from src.db.queries import ROUND_DECODER
from src.models import Round


class TestAccessors:
    def test_as_int(self) -> None:
        assert as_int(3) == 3
        assert as_int(3.9) == 3
        assert as_int("7") == 7
        with pytest.raises(ValueError):
            as_int(None)
        with pytest.raises(ValueError):
            as_int(float("nan"))

    def test_as_float_rejects_non_finite(self) -> None:
        assert as_float("1.5") == 1.5
        with pytest.raises(ValueError):
            as_float(float("inf"))

    def test_as_bool(self) -> None:
        assert as_bool("yes") is True
        assert as_bool(0) is False
        with pytest.raises(ValueError):
            as_bool("peut-être")

    def test_as_datetime_naive_is_utc(self) -> None:
        assert as_datetime(datetime(2024, 6, 1, 20, 0)) == datetime(
            2024, 6, 1, 20, 0, tzinfo=timezone.utc
        )
        assert as_datetime("2024-06-01T20:00:00Z").tzinfo is not None

    def test_as_date(self) -> None:
        assert as_date("2024-06-01 10:00:00") == date(2024, 6, 1)
        with pytest.raises(TypeError):
            as_date(12)

    def test_optional_and_default(self) -> None:
        assert optional(as_int)(None) is None
        assert with_default(as_int, 0)(None) == 0
        assert with_default(as_int, 0)("abc") == 0
        assert as_str(5) == "5"


class TestRowDecoder:
    def _decoder(self) -> RowDecoder:
        return RowDecoder(
            "test",
            (ColumnSpec("name", as_str), ColumnSpec("count", as_int)),
        )

    def test_decode_to_dict(self) -> None:
        assert self._decoder().decode(("a", 2)) == {"name": "a", "count": 2}

    def test_malformed_rows_skipped(self) -> None:
        result = self._decoder().decode_all([("a", 1), ("b",), ("c", None), ("d", "4")])
        assert [r["name"] for r in result.records] == ["a", "d"]
        assert result.skipped == 2

    def test_select_list(self) -> None:
        assert self._decoder().select_list("m.") == "m.name, m.count"

    def test_rejects_duplicate_or_empty_columns(self) -> None:
        with pytest.raises(ValueError):
            RowDecoder("dup", (ColumnSpec("a", as_str), ColumnSpec("a", as_str)))
        with pytest.raises(ValueError):
            RowDecoder("empty", ())

    def test_round_decoder_builds_round(self) -> None:
        row = (
            "ABCDEF0123456789",
            "Alice",
            "srv-1",
            None,
            datetime(2024, 6, 1, 20, 0),
            datetime(2024, 6, 1, 20, 10),
            12,
            3,
            None,
            10.0,
            "Axis",
            "conquest",
            False,
            "bf1942",
            None,
        )
        decoded = ROUND_DECODER.decode(row)
        assert isinstance(decoded, Round)
        assert decoded.map_name == ""
        assert decoded.final_score == 0
        assert decoded.start_time.tzinfo is not None
        assert decoded.kill_rate == pytest.approx(1.2)
