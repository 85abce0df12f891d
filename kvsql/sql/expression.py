"""SQL expressions: constants, field references and operations on them."""

from __future__ import annotations

import dataclasses
import math
import re
from dataclasses import dataclass
from functools import reduce
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from kvsql.errors import ValueError_
from kvsql.sql.values import DataType, Value, datatype_of, format_value, values_equal

Label = Optional[Tuple[Optional[str], str]]
Transform = Callable[["Expression"], "Expression"]
Visitor = Callable[["Expression"], bool]

I64_MIN = -(2**63)
I64_MAX = 2**63 - 1

_NUMERIC = (DataType.INTEGER, DataType.FLOAT)


def _checked(n: int) -> int:
    if not I64_MIN <= n <= I64_MAX:
        raise ValueError_("Integer overflow")
    return n


def _is_odd_int(x: float) -> bool:
    return math.isfinite(x) and x == int(x) and int(x) % 2 == 1


def _powf(a: float, b: float) -> float:
    try:
        return math.pow(a, b)
    except OverflowError:
        return -math.inf if a < 0 and _is_odd_int(b) else math.inf
    except ValueError:
        if a == 0:
            return math.copysign(math.inf, a) if _is_odd_int(b) else math.inf
        return math.nan


def _fdiv(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _fmod(a: float, b: float) -> float:
    try:
        return math.fmod(a, b)
    except ValueError:
        return math.nan


def _int_div(a: int, b: int) -> int:
    if b == 0:
        raise ValueError_("Can't divide by zero")
    q = abs(a) // abs(b)
    return _checked(-q if (a < 0) != (b < 0) else q)


def _int_mod(a: int, b: int) -> int:
    if b == 0:
        raise ValueError_("Can't divide by zero")
    r = abs(a) % abs(b)
    return -r if a < 0 else r


def _int_pow(a: int, b: int) -> Value:
    if b < 0:
        return _powf(float(a), float(b))
    exp = b & 0xFFFFFFFF
    if abs(a) > 1 and exp > 64:
        raise ValueError_("Integer overflow")
    return _checked(a**exp)


class Expression:
    """An expression, made up of constants and operations."""

    def evaluate(self, row: Optional[Sequence[Value]] = None) -> Value:
        """Evaluates the expression to a value, given an optional row."""
        raise NotImplementedError

    def _children(self) -> Tuple["Expression", ...]:
        return ()

    def _map_children(self, fn: Transform) -> "Expression":
        return self

    def contains(self, visitor: Visitor) -> bool:
        """Returns True as soon as the visitor returns True for any node."""
        return not self.walk(lambda e: not visitor(e))

    def transform(self, before: Transform, after: Transform) -> "Expression":
        """Transforms the tree, applying before/after around descending."""
        expr = before(self)
        expr = expr._map_children(lambda child: child.transform(before, after))
        return after(expr)

    def walk(self, visitor: Visitor) -> bool:
        """Visits every node; halts and returns False once the visitor does."""
        return visitor(self) and all(child.walk(visitor) for child in self._children())

    def into_nnf(self) -> "Expression":
        """Pushes NOT operators down using De Morgan's laws."""

        def before(e: Expression) -> Expression:
            if isinstance(e, Not):
                inner = e.expr
                if isinstance(inner, And):
                    return Or(Not(inner.lhs), Not(inner.rhs))
                if isinstance(inner, Or):
                    return And(Not(inner.lhs), Not(inner.rhs))
                if isinstance(inner, Not):
                    return inner.expr
            return e

        return self.transform(before, _identity)

    def into_cnf(self) -> "Expression":
        """Converts to conjunctive normal form (an AND of ORs)."""

        def before(e: Expression) -> Expression:
            if isinstance(e, Or):
                if isinstance(e.lhs, And):
                    return And(Or(e.lhs.lhs, e.rhs), Or(e.lhs.rhs, e.rhs))
                if isinstance(e.rhs, And):
                    return And(Or(e.lhs, e.rhs.lhs), Or(e.lhs, e.rhs.rhs))
            return e

        return self.into_nnf().transform(before, _identity)

    def into_cnf_vec(self) -> List["Expression"]:
        """Converts to conjunctive normal form as a list of conjuncts."""
        return list(_flatten(self.into_cnf(), And))

    def into_dnf(self) -> "Expression":
        """Converts to disjunctive normal form (an OR of ANDs)."""

        def before(e: Expression) -> Expression:
            if isinstance(e, And):
                if isinstance(e.lhs, Or):
                    return Or(And(e.lhs.lhs, e.rhs), And(e.lhs.rhs, e.rhs))
                if isinstance(e.rhs, Or):
                    return Or(And(e.lhs, e.rhs.lhs), And(e.lhs, e.rhs.rhs))
            return e

        return self.into_nnf().transform(before, _identity)

    def into_dnf_vec(self) -> List["Expression"]:
        """Converts to disjunctive normal form as a list of disjuncts."""
        return list(_flatten(self.into_dnf(), Or))

    def as_lookup(self, field: int) -> Optional[List[Value]]:
        """Returns the looked-up values if this is a lookup on the given field.

        Only combinations of =, IS NULL and OR qualify.
        """
        if isinstance(self, Equal):
            lhs, rhs = self.lhs, self.rhs
            if isinstance(lhs, Field) and isinstance(rhs, Constant) and lhs.index == field:
                return [rhs.value]
            if isinstance(lhs, Constant) and isinstance(rhs, Field) and rhs.index == field:
                return [lhs.value]
            return None
        if isinstance(self, IsNull):
            if isinstance(self.expr, Field) and self.expr.index == field:
                return [None]
            return None
        if isinstance(self, Or):
            left = self.lhs.as_lookup(field)
            right = self.rhs.as_lookup(field)
            if left is not None and right is not None:
                return left + right
        return None


def _identity(e: Expression) -> Expression:
    return e


def _flatten(expr: Expression, kind: type) -> Iterator[Expression]:
    if isinstance(expr, kind):
        yield from _flatten(expr.lhs, kind)  # type: ignore[attr-defined]
        yield from _flatten(expr.rhs, kind)  # type: ignore[attr-defined]
    else:
        yield expr


@dataclass(frozen=True, eq=False)
class Constant(Expression):
    """A constant value."""

    value: Value

    def evaluate(self, row: Optional[Sequence[Value]] = None) -> Value:
        return self.value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Constant):
            return NotImplemented
        return values_equal(self.value, other.value)

    def __hash__(self) -> int:
        return hash((datatype_of(self.value), self.value))

    def __str__(self) -> str:
        return format_value(self.value)


@dataclass(frozen=True)
class Field(Expression):
    """A reference to a row field by index, with an optional (table, name) label."""

    index: int
    label: Label = None

    def evaluate(self, row: Optional[Sequence[Value]] = None) -> Value:
        if row is not None and 0 <= self.index < len(row):
            return row[self.index]
        return None

    def __str__(self) -> str:
        if self.label is None:
            return f"#{self.index}"
        table, name = self.label
        return name if table is None else f"{table}.{name}"


@dataclass(frozen=True)
class _Unary(Expression):
    expr: Expression

    def _children(self) -> Tuple[Expression, ...]:
        return (self.expr,)

    def _map_children(self, fn: Transform) -> Expression:
        return dataclasses.replace(self, expr=fn(self.expr))

    def evaluate(self, row: Optional[Sequence[Value]] = None) -> Value:
        return self._apply(self.expr.evaluate(row))

    def _apply(self, value: Value) -> Value:
        raise NotImplementedError


@dataclass(frozen=True)
class _Binary(Expression):
    lhs: Expression
    rhs: Expression

    _symbol = ""

    def _children(self) -> Tuple[Expression, ...]:
        return (self.lhs, self.rhs)

    def _map_children(self, fn: Transform) -> Expression:
        lhs = fn(self.lhs)
        rhs = fn(self.rhs)
        return dataclasses.replace(self, lhs=lhs, rhs=rhs)

    def evaluate(self, row: Optional[Sequence[Value]] = None) -> Value:
        return self._apply(self.lhs.evaluate(row), self.rhs.evaluate(row))

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        raise NotImplementedError

    def __str__(self) -> str:
        return f"{self.lhs} {self._symbol} {self.rhs}"


def _logic(lhs: Value, rhs: Value, verb: str, dominant: bool) -> Value:
    tl, tr = datatype_of(lhs), datatype_of(rhs)
    if tl is DataType.BOOLEAN and tr is DataType.BOOLEAN:
        return (lhs or rhs) if dominant else (lhs and rhs)
    if tl is DataType.BOOLEAN and tr is None:
        return dominant if lhs is dominant else None
    if tl is None and tr is DataType.BOOLEAN:
        return dominant if rhs is dominant else None
    if tl is None and tr is None:
        return None
    raise ValueError_(f"Can't {verb} {format_value(lhs)} and {format_value(rhs)}")


class And(_Binary):
    """Logical AND, with SQL three-valued logic."""

    _symbol = "AND"

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        return _logic(lhs, rhs, "and", False)


class Or(_Binary):
    """Logical OR, with SQL three-valued logic."""

    _symbol = "OR"

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        return _logic(lhs, rhs, "or", True)


class Not(_Unary):
    """Logical NOT."""

    def _apply(self, value: Value) -> Value:
        if datatype_of(value) is DataType.BOOLEAN:
            return not value
        if value is None:
            return None
        raise ValueError_(f"Can't negate {format_value(value)}")

    def __str__(self) -> str:
        return f"NOT {self.expr}"


def _compare(lhs: Value, rhs: Value, op: Callable[[object, object], bool]) -> Value:
    tl, tr = datatype_of(lhs), datatype_of(rhs)
    if tl is tr and tl in (DataType.BOOLEAN, DataType.INTEGER, DataType.STRING, DataType.FLOAT):
        return op(lhs, rhs)
    if tl in _NUMERIC and tr in _NUMERIC:
        return op(float(lhs), float(rhs))  # type: ignore[arg-type]
    if tl is None or tr is None:
        return None
    raise ValueError_(f"Can't compare {format_value(lhs)} and {format_value(rhs)}")


class Equal(_Binary):
    """Equality comparison."""

    _symbol = "="

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        return _compare(lhs, rhs, lambda a, b: a == b)


class GreaterThan(_Binary):
    """Greater-than comparison."""

    _symbol = ">"

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        return _compare(lhs, rhs, lambda a, b: a > b)  # type: ignore[operator]


class LessThan(_Binary):
    """Less-than comparison."""

    _symbol = "<"

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        return _compare(lhs, rhs, lambda a, b: a < b)  # type: ignore[operator]


class IsNull(_Unary):
    """Checks whether a value is NULL."""

    def _apply(self, value: Value) -> Value:
        return value is None

    def __str__(self) -> str:
        return f"{self.expr} IS NULL"


def _arith(
    lhs: Value,
    rhs: Value,
    message: str,
    int_op: Callable[[int, int], Value],
    float_op: Callable[[float, float], float],
) -> Value:
    tl, tr = datatype_of(lhs), datatype_of(rhs)
    if tl is DataType.INTEGER and tr is DataType.INTEGER:
        return int_op(lhs, rhs)  # type: ignore[arg-type]
    if tl in _NUMERIC and tr in _NUMERIC:
        return float_op(float(lhs), float(rhs))  # type: ignore[arg-type]
    if (tl in _NUMERIC or tl is None) and (tr in _NUMERIC or tr is None):
        return None
    raise ValueError_(message.format(format_value(lhs), format_value(rhs)))


class Add(_Binary):
    """Addition."""

    _symbol = "+"

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        return _arith(
            lhs, rhs, "Can't add {} and {}", lambda a, b: _checked(a + b), lambda a, b: a + b
        )


class Subtract(_Binary):
    """Subtraction."""

    _symbol = "-"

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        return _arith(
            lhs, rhs, "Can't subtract {} and {}", lambda a, b: _checked(a - b), lambda a, b: a - b
        )


class Multiply(_Binary):
    """Multiplication."""

    _symbol = "*"

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        return _arith(
            lhs, rhs, "Can't multiply {} and {}", lambda a, b: _checked(a * b), lambda a, b: a * b
        )


class Divide(_Binary):
    """Division; integer division truncates toward zero."""

    _symbol = "/"

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        return _arith(lhs, rhs, "Can't divide {} and {}", _int_div, _fdiv)


class Modulo(_Binary):
    """Remainder, taking the sign of the dividend."""

    _symbol = "%"

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        return _arith(lhs, rhs, "Can't take modulo of {} and {}", _int_mod, _fmod)


class Exponentiate(_Binary):
    """Exponentiation."""

    _symbol = "^"

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        return _arith(lhs, rhs, "Can't exponentiate {} and {}", _int_pow, _powf)


class Assert(_Unary):
    """Unary plus: passes numbers through unchanged."""

    def _apply(self, value: Value) -> Value:
        if value is None or datatype_of(value) in _NUMERIC:
            return value
        raise ValueError_(f"Can't take the positive of {format_value(value)}")

    def __str__(self) -> str:
        return str(self.expr)


class Negate(_Unary):
    """Unary minus."""

    def _apply(self, value: Value) -> Value:
        datatype = datatype_of(value)
        if datatype is DataType.INTEGER:
            return _checked(-value)  # type: ignore[operator]
        if datatype is DataType.FLOAT:
            return -value  # type: ignore[operator]
        if value is None:
            return None
        raise ValueError_(f"Can't negate {format_value(value)}")

    def __str__(self) -> str:
        return f"-{self.expr}"


class Factorial(_Unary):
    """Integer factorial."""

    def _apply(self, value: Value) -> Value:
        datatype = datatype_of(value)
        if datatype is DataType.INTEGER:
            if value < 0:  # type: ignore[operator]
                raise ValueError_("Can't take factorial of negative number")
            if value > 20:  # type: ignore[operator]
                raise ValueError_("Integer overflow")
            return math.factorial(value)  # type: ignore[arg-type]
        if value is None:
            return None
        raise ValueError_(f"Can't take factorial of {format_value(value)}")

    def __str__(self) -> str:
        return f"!{self.expr}"


def _like_pattern(pattern: str) -> "re.Pattern[str]":
    translated = (
        re.escape(pattern)
        .replace("%", ".*")
        .replace(".*.*", "%")
        .replace("_", ".")
        .replace("..", "_")
    )
    try:
        return re.compile(r"\A(?:" + translated + r")\Z")
    except re.error as error:
        raise ValueError_(str(error)) from error


class Like(_Binary):
    """SQL LIKE pattern match: % matches any run, _ any single character."""

    _symbol = "LIKE"

    def _apply(self, lhs: Value, rhs: Value) -> Value:
        tl, tr = datatype_of(lhs), datatype_of(rhs)
        if tl is DataType.STRING and tr is DataType.STRING:
            return _like_pattern(rhs).search(lhs) is not None  # type: ignore[arg-type]
        if (tl is DataType.STRING and tr is None) or (tl is None and tr is DataType.STRING):
            return None
        raise ValueError_(f"Can't LIKE {format_value(lhs)} and {format_value(rhs)}")


def from_cnf_vec(cnf: Sequence[Expression]) -> Optional[Expression]:
    """Joins conjuncts with AND, or returns None if there are none."""
    if not cnf:
        return None
    return reduce(And, cnf)


def from_dnf_vec(dnf: Sequence[Expression]) -> Optional[Expression]:
    """Joins disjuncts with OR, or returns None if there are none."""
    if not dnf:
        return None
    return reduce(Or, dnf)


def from_lookup(field: int, label: Label, values: Sequence[Value]) -> Expression:
    """Builds an expression matching the field against any of the values."""
    if not values:
        return Equal(Field(field, label), Constant(None))
    expr = from_dnf_vec([Equal(Field(field, label), Constant(v)) for v in values])
    assert expr is not None
    return expr