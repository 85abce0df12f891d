import math

import pytest

from kvsql.errors import DatabaseError, ValueError_
from kvsql.sql.values import (
    DataType,
    as_boolean,
    as_float,
    as_integer,
    as_string,
    compare_values,
    datatype_of,
    format_value,
    values_equal,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, None),
        (True, DataType.BOOLEAN),
        (False, DataType.BOOLEAN),
        (3, DataType.INTEGER),
        (3.5, DataType.FLOAT),
        ("x", DataType.STRING),
    ],
)
def test_datatype_of(value, expected):
    assert datatype_of(value) is expected


def test_datatype_of_rejects_foreign_types():
    with pytest.raises(TypeError):
        datatype_of([1])


def test_datatype_display():
    names = [str(datatype_of(v)) for v in (True, 1, 1.0, "s")]
    assert names == ["BOOLEAN", "INTEGER", "FLOAT", "STRING"]


def test_format_simple_values():
    assert format_value(None) == "NULL"
    assert format_value(True) == "TRUE"
    assert format_value(False) == "FALSE"
    assert format_value(-42) == str(-42)
    assert format_value("abc") == "abc"


def test_format_float_without_fraction():
    assert format_value(2.0) == "2"


def test_format_float_nan():
    assert format_value(float("nan")) == "NaN"


@pytest.mark.parametrize("f", [1.5, 0.1, 1e-7, 1e20, -3.25, 123456.789])
def test_format_float_round_trips_without_exponent(f):
    text = format_value(f)
    assert "e" not in text.lower()
    assert float(text) == f


def test_compare_nulls_first():
    assert compare_values(None, None) == 0
    assert compare_values(None, 1) == -1
    assert compare_values("a", None) == 1


def test_compare_numeric_mixed():
    assert compare_values(1, 2.5) == -1
    assert compare_values(3.0, 3) == 0
    assert compare_values(4, 3) == 1


def test_compare_same_type():
    assert compare_values("a", "b") == -1
    assert compare_values(False, True) == -1
    assert compare_values(True, True) == 0


def test_compare_incomparable():
    assert compare_values("a", 1) is None
    assert compare_values(True, 1) is None
    assert compare_values(float("nan"), 1.0) is None


def test_values_equal_is_strict():
    assert values_equal(1, 1)
    assert values_equal(None, None)
    assert not values_equal(1, 1.0)
    assert not values_equal(True, 1)
    assert not values_equal(math.nan, math.nan)


def test_accessors_return_inner():
    assert as_boolean(True) is True
    assert as_integer(7) == 7
    assert as_float(1.5) == 1.5
    assert as_string("s") == "s"


def test_accessor_errors():
    with pytest.raises(ValueError_, match=r"Not a boolean: Integer\(1\)"):
        as_boolean(1)
    with pytest.raises(ValueError_, match="Not an integer: Boolean"):
        as_integer(True)
    with pytest.raises(ValueError_, match="Not a float: Null"):
        as_float(None)
    with pytest.raises(DatabaseError, match="Not a string"):
        as_string(2.0)