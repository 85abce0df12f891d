"""Query plan nodes, and transformation and display of plan trees."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, ClassVar, List, Optional, Tuple

from kvsql.sql.expression import Expression, Label
from kvsql.sql.schema import Table
from kvsql.sql.values import Value, format_value

NodeTransform = Callable[["Node"], "Node"]
ExpressionTransform = Callable[[Expression], Expression]

JoinField = Tuple[int, Label]


class Aggregate(Enum):
    """An aggregate operation."""

    AVERAGE = "average"
    COUNT = "count"
    MAX = "maximum"
    MIN = "minimum"
    SUM = "sum"

    def __str__(self) -> str:
        return self.value


class Direction(Enum):
    """A sort order direction."""

    ASCENDING = "asc"
    DESCENDING = "desc"

    def __str__(self) -> str:
        return self.value


class Node:
    """A query plan node."""

    _SOURCES: ClassVar[Tuple[str, ...]] = ()

    def _describe(self) -> str:
        raise NotImplementedError

    def _map_expressions(self, fn: ExpressionTransform) -> "Node":
        return self

    def transform(self, before: NodeTransform, after: NodeTransform) -> "Node":
        """Recursively transforms nodes, applying before/after around descending."""
        node = before(self)
        if node._SOURCES:
            node = dataclasses.replace(
                node,  # type: ignore[arg-type]
                **{name: getattr(node, name).transform(before, after) for name in node._SOURCES},
            )
        return after(node)

    def transform_expressions(
        self, before: ExpressionTransform, after: ExpressionTransform
    ) -> "Node":
        """Transforms all expressions held directly by this node."""
        return self._map_expressions(lambda e: e.transform(before, after))

    def format(self, indent: str, root: bool, last: bool) -> str:
        """Formats the node tree, drawing branches after the given indent."""
        s = indent
        if not last:
            s += "├─ "
            indent += "│  "
        elif not root:
            s += "└─ "
            indent += "   "
        s += self._describe() + "\n"
        sources = [getattr(self, name) for name in self._SOURCES]
        for position, source in enumerate(sources):
            s += source.format(indent, False, position == len(sources) - 1)
        if root:
            s = s.rstrip()
        return s

    def __str__(self) -> str:
        return self.format("", True, True)


def _join_values(values: List[Value]) -> str:
    return ", ".join(format_value(v) for v in values)


def _format_join_field(join_field: JoinField, side: str) -> str:
    index, label = join_field
    if label is None:
        return f"{side} #{index}"
    table, name = label
    return name if table is None else f"{table}.{name}"


@dataclass
class Aggregation(Node):
    """Computes aggregates over its source, grouping by any trailing columns."""

    source: Node
    aggregates: List[Aggregate] = field(default_factory=list)

    _SOURCES: ClassVar[Tuple[str, ...]] = ("source",)

    def _describe(self) -> str:
        return "Aggregation: " + ", ".join(str(a) for a in self.aggregates)


@dataclass
class CreateTable(Node):
    """Creates a table."""

    schema: Table

    def _describe(self) -> str:
        return f"CreateTable: {self.schema.name}"


@dataclass
class Delete(Node):
    """Deletes the rows produced by its source from a table."""

    table: str
    source: Node

    _SOURCES: ClassVar[Tuple[str, ...]] = ("source",)

    def _describe(self) -> str:
        return f"Delete: {self.table}"


@dataclass
class DropTable(Node):
    """Drops a table."""

    table: str

    def _describe(self) -> str:
        return f"DropTable: {self.table}"


@dataclass
class Filter(Node):
    """Filters source rows by a predicate."""

    source: Node
    predicate: Expression

    _SOURCES: ClassVar[Tuple[str, ...]] = ("source",)

    def _describe(self) -> str:
        return f"Filter: {self.predicate}"

    def _map_expressions(self, fn: ExpressionTransform) -> Node:
        return dataclasses.replace(self, predicate=fn(self.predicate))


@dataclass
class HashJoin(Node):
    """Joins two sources on equality of one field from each."""

    left: Node
    left_field: JoinField
    right: Node
    right_field: JoinField
    outer: bool = False

    _SOURCES: ClassVar[Tuple[str, ...]] = ("left", "right")

    def _describe(self) -> str:
        kind = "outer" if self.outer else "inner"
        return (
            f"HashJoin: {kind} on {_format_join_field(self.left_field, 'left')} = "
            f"{_format_join_field(self.right_field, 'right')}"
        )


@dataclass
class IndexLookup(Node):
    """Looks up rows through a secondary index."""

    table: str
    alias: Optional[str]
    column: str
    values: List[Value] = field(default_factory=list)

    def _describe(self) -> str:
        s = f"IndexLookup: {self.table}"
        if self.alias is not None:
            s += f" as {self.alias}"
        s += f" column {self.column}"
        if 0 < len(self.values) < 10:
            s += f" ({_join_values(self.values)})"
        else:
            s += f" ({len(self.values)} values)"
        return s


@dataclass
class Insert(Node):
    """Inserts rows of expressions into a table."""

    table: str
    columns: List[str] = field(default_factory=list)
    expressions: List[List[Expression]] = field(default_factory=list)

    def _describe(self) -> str:
        return f"Insert: {self.table} ({len(self.expressions)} rows)"

    def _map_expressions(self, fn: ExpressionTransform) -> Node:
        return dataclasses.replace(
            self, expressions=[[fn(e) for e in row] for row in self.expressions]
        )


@dataclass
class KeyLookup(Node):
    """Looks up rows by primary key."""

    table: str
    alias: Optional[str]
    keys: List[Value] = field(default_factory=list)

    def _describe(self) -> str:
        s = f"KeyLookup: {self.table}"
        if self.alias is not None:
            s += f" as {self.alias}"
        if 0 < len(self.keys) < 10:
            s += f" ({_join_values(self.keys)})"
        else:
            s += f" ({len(self.keys)} keys)"
        return s


@dataclass
class Limit(Node):
    """Emits at most a given number of source rows."""

    source: Node
    limit: int

    _SOURCES: ClassVar[Tuple[str, ...]] = ("source",)

    def _describe(self) -> str:
        return f"Limit: {self.limit}"


@dataclass
class NestedLoopJoin(Node):
    """Joins every left row with every right row, optionally by a predicate."""

    left: Node
    left_size: int
    right: Node
    predicate: Optional[Expression] = None
    outer: bool = False

    _SOURCES: ClassVar[Tuple[str, ...]] = ("left", "right")

    def _describe(self) -> str:
        s = f"NestedLoopJoin: {'outer' if self.outer else 'inner'}"
        if self.predicate is not None:
            s += f" on {self.predicate}"
        return s

    def _map_expressions(self, fn: ExpressionTransform) -> Node:
        if self.predicate is None:
            return self
        return dataclasses.replace(self, predicate=fn(self.predicate))


@dataclass
class Nothing(Node):
    """Emits a single empty row."""

    def _describe(self) -> str:
        return "Nothing"


@dataclass
class Offset(Node):
    """Skips a given number of source rows."""

    source: Node
    offset: int

    _SOURCES: ClassVar[Tuple[str, ...]] = ("source",)

    def _describe(self) -> str:
        return f"Offset: {self.offset}"


@dataclass
class Order(Node):
    """Sorts source rows by expressions."""

    source: Node
    orders: List[Tuple[Expression, Direction]] = field(default_factory=list)

    _SOURCES: ClassVar[Tuple[str, ...]] = ("source",)

    def _describe(self) -> str:
        return "Order: " + ", ".join(f"{expr} {direction}" for expr, direction in self.orders)

    def _map_expressions(self, fn: ExpressionTransform) -> Node:
        return dataclasses.replace(self, orders=[(fn(e), d) for e, d in self.orders])


@dataclass
class Projection(Node):
    """Evaluates expressions over source rows, with optional labels."""

    source: Node
    expressions: List[Tuple[Expression, Optional[str]]] = field(default_factory=list)

    _SOURCES: ClassVar[Tuple[str, ...]] = ("source",)

    def _describe(self) -> str:
        return "Projection: " + ", ".join(str(expr) for expr, _ in self.expressions)

    def _map_expressions(self, fn: ExpressionTransform) -> Node:
        return dataclasses.replace(
            self, expressions=[(fn(e), label) for e, label in self.expressions]
        )


@dataclass
class Scan(Node):
    """Scans a table, optionally filtering rows."""

    table: str
    alias: Optional[str] = None
    filter: Optional[Expression] = None

    def _describe(self) -> str:
        s = f"Scan: {self.table}"
        if self.alias is not None:
            s += f" as {self.alias}"
        if self.filter is not None:
            s += f" ({self.filter})"
        return s

    def _map_expressions(self, fn: ExpressionTransform) -> Node:
        if self.filter is None:
            return self
        return dataclasses.replace(self, filter=fn(self.filter))


@dataclass
class Update(Node):
    """Updates source rows, setting column indexes to expressions."""

    table: str
    source: Node
    expressions: List[Tuple[int, Optional[str], Expression]] = field(default_factory=list)

    _SOURCES: ClassVar[Tuple[str, ...]] = ("source",)

    def _describe(self) -> str:
        sets = ",".join(
            f"{label if label is not None else f'#{index}'}={expr}"
            for index, label, expr in self.expressions
        )
        return f"Update: {self.table} ({sets})"

    def _map_expressions(self, fn: ExpressionTransform) -> Node:
        return dataclasses.replace(
            self, expressions=[(i, label, fn(e)) for i, label, e in self.expressions]
        )