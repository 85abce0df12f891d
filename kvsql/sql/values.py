"""SQL data types and values.

Values are plain Python objects: ``None`` is NULL, and ``bool``, ``int``,
``float`` and ``str`` are BOOLEAN, INTEGER, FLOAT and STRING respectively.
"""

from __future__ import annotations

import math
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Union

from kvsql.errors import ValueError_

Value = Union[None, bool, int, float, str]
Row = List[Value]


class DataType(Enum):
    """A column or value datatype."""

    BOOLEAN = "BOOLEAN"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    STRING = "STRING"

    def __str__(self) -> str:
        return self.value


def datatype_of(value: Value) -> Optional[DataType]:
    """Returns the datatype of a value, or None for NULL."""
    if value is None:
        return None
    if isinstance(value, bool):
        return DataType.BOOLEAN
    if isinstance(value, int):
        return DataType.INTEGER
    if isinstance(value, float):
        return DataType.FLOAT
    if isinstance(value, str):
        return DataType.STRING
    raise TypeError(f"not a SQL value: {value!r}")


def _format_float(f: float) -> str:
    if math.isnan(f):
        return "NaN"
    if math.isinf(f):
        return "inf" if f > 0 else "-inf"
    text = format(Decimal(repr(f)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_value(value: Value) -> str:
    """Formats a value for display, e.g. NULL, TRUE, 3.5 or a raw string."""
    datatype = datatype_of(value)
    if datatype is None:
        return "NULL"
    if datatype is DataType.BOOLEAN:
        return "TRUE" if value else "FALSE"
    if datatype is DataType.FLOAT:
        return _format_float(value)  # type: ignore[arg-type]
    return str(value)


def _debug(value: Value) -> str:
    datatype = datatype_of(value)
    if datatype is None:
        return "Null"
    if datatype is DataType.BOOLEAN:
        return f"Boolean({'true' if value else 'false'})"
    if datatype is DataType.INTEGER:
        return f"Integer({value})"
    if datatype is DataType.FLOAT:
        return f"Float({value!r})"
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'String("{escaped}")'


def values_equal(a: Value, b: Value) -> bool:
    """Strict value equality: datatypes must match, and NaN never equals NaN."""
    return datatype_of(a) == datatype_of(b) and a == b


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def compare_values(a: Value, b: Value) -> Optional[int]:
    """Compares two values, returning -1, 0 or 1, or None if incomparable.

    NULL sorts before everything else. Integers and floats compare
    numerically; other mixed types are incomparable, as is NaN.
    """
    ta, tb = datatype_of(a), datatype_of(b)
    if ta is None and tb is None:
        return 0
    if ta is None:
        return -1
    if tb is None:
        return 1
    numeric = (DataType.INTEGER, DataType.FLOAT)
    if ta is DataType.INTEGER and tb is DataType.INTEGER:
        return _cmp(a, b)
    if ta in numeric and tb in numeric:
        x, y = float(a), float(b)  # type: ignore[arg-type]
        if math.isnan(x) or math.isnan(y):
            return None
        return _cmp(x, y)
    if ta is tb:
        return _cmp(a, b)
    return None


def as_boolean(value: Value) -> bool:
    """Returns the value if it is a boolean, otherwise raises."""
    if datatype_of(value) is DataType.BOOLEAN:
        return value  # type: ignore[return-value]
    raise ValueError_(f"Not a boolean: {_debug(value)}")


def as_integer(value: Value) -> int:
    """Returns the value if it is an integer, otherwise raises."""
    if datatype_of(value) is DataType.INTEGER:
        return value  # type: ignore[return-value]
    raise ValueError_(f"Not an integer: {_debug(value)}")


def as_float(value: Value) -> float:
    """Returns the value if it is a float, otherwise raises."""
    if datatype_of(value) is DataType.FLOAT:
        return value  # type: ignore[return-value]
    raise ValueError_(f"Not a float: {_debug(value)}")


def as_string(value: Value) -> str:
    """Returns the value if it is a string, otherwise raises."""
    if datatype_of(value) is DataType.STRING:
        return value  # type: ignore[return-value]
    raise ValueError_(f"Not a string: {_debug(value)}")