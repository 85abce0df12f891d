"""Query plan optimizers, which rewrite plan trees into cheaper equivalents."""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from kvsql.errors import InternalError
from kvsql.sql.expression import (
    And,
    Constant,
    Equal,
    Expression,
    Field,
    Or,
    from_cnf_vec,
    from_lookup,
)
from kvsql.sql.plan import (
    Filter,
    HashJoin,
    IndexLookup,
    KeyLookup,
    NestedLoopJoin,
    Node,
    Scan,
)
from kvsql.sql.schema import Catalog


def _same(node: Node) -> Node:
    return node


def _same_expr(expr: Expression) -> Expression:
    return expr


def _is_true(expr: Expression) -> bool:
    return isinstance(expr, Constant) and expr.value is True


def _is_false_or_null(expr: Expression) -> bool:
    return isinstance(expr, Constant) and (expr.value is False or expr.value is None)


class Optimizer(ABC):
    """A plan optimizer."""

    @abstractmethod
    def optimize(self, node: Node) -> Node:
        """Returns an optimized version of the plan tree."""


class ConstantFolder(Optimizer):
    """Replaces constant expressions with their evaluated value."""

    def optimize(self, node: Node) -> Node:
        def fold(expr: Expression) -> Expression:
            if expr.contains(lambda e: isinstance(e, Field)):
                return expr
            return Constant(expr.evaluate(None))

        return node.transform(_same, lambda n: n.transform_expressions(fold, _same_expr))


class FilterPushdown(Optimizer):
    """Moves filter predicates into or closer to their source nodes."""

    def optimize(self, node: Node) -> Node:
        def before(n: Node) -> Node:
            if isinstance(n, Filter):
                # The filter node is kept (as a no-op if fully pushed down), so that
                # transform() still descends into its source; NoopCleaner removes it.
                source, remainder = self._pushdown(n.predicate, n.source)
                if remainder is None:
                    remainder = Constant(True)
                return Filter(source, remainder)
            if isinstance(n, NestedLoopJoin) and n.predicate is not None:
                left, right, predicate = self._pushdown_join(
                    n.predicate, n.left, n.right, n.left_size
                )
                return dataclasses.replace(n, left=left, right=right, predicate=predicate)
            return n

        return node.transform(before, _same)

    @staticmethod
    def _pushdown(expr: Expression, target: Node) -> Tuple[Node, Optional[Expression]]:
        """Pushes an expression into a target node, returning it and any remainder."""
        if isinstance(target, Scan):
            if target.filter is not None:
                expr = And(expr, target.filter)
            return dataclasses.replace(target, filter=expr), None
        if isinstance(target, NestedLoopJoin):
            if target.predicate is not None:
                expr = And(expr, target.predicate)
            return dataclasses.replace(target, predicate=expr), None
        if isinstance(target, Filter):
            return dataclasses.replace(target, predicate=And(target.predicate, expr)), None
        return target, expr

    def _pushdown_join(
        self, predicate: Expression, left: Node, right: Node, boundary: int
    ) -> Tuple[Node, Node, Optional[Expression]]:
        """Partitions a join predicate, pushing parts into either source."""

        def refs_right(e: Expression) -> bool:
            return e.contains(lambda x: isinstance(x, Field) and x.index >= boundary)

        def refs_left(e: Expression) -> bool:
            return e.contains(lambda x: isinstance(x, Field) and x.index < boundary)

        push_left: List[Expression] = []
        push_right: List[Expression] = []
        cnf: List[Expression] = []
        for expr in predicate.into_cnf_vec():
            if not refs_right(expr):
                push_left.append(expr)
            elif not refs_left(expr):
                push_right.append(expr)
            else:
                cnf.append(expr)

        # Transfer constant lookups across equijoins, so both sides can use them.
        for expr in cnf:
            if not (
                isinstance(expr, Equal)
                and isinstance(expr.lhs, Field)
                and isinstance(expr.rhs, Field)
            ):
                continue
            lf, rf = expr.lhs, expr.rhs
            if lf.index > rf.index:
                lf, rf = rf, lf
            lvals = next(
                (v for v in (e.as_lookup(lf.index) for e in push_left) if v is not None), None
            )
            if lvals is not None:
                push_right.append(from_lookup(rf.index, rf.label, lvals))
                continue
            rvals = next(
                (v for v in (e.as_lookup(rf.index) for e in push_right) if v is not None), None
            )
            if rvals is not None:
                push_left.append(from_lookup(lf.index, lf.label, rvals))

        left_expr = from_cnf_vec(push_left)
        if left_expr is not None:
            left, remainder = self._pushdown(left_expr, left)
            if remainder is not None:
                cnf.append(remainder)

        right_expr = from_cnf_vec(push_right)
        if right_expr is not None:

            def shift(e: Expression) -> Expression:
                if isinstance(e, Field):
                    return Field(e.index - boundary, e.label)
                return e

            right_expr = right_expr.transform(shift, _same_expr)
            right, remainder = self._pushdown(right_expr, right)
            if remainder is not None:
                cnf.append(remainder)

        return left, right, from_cnf_vec(cnf)


class IndexLookupOptimizer(Optimizer):
    """Converts filtered table scans into primary key or index lookups."""

    def __init__(self, catalog: Catalog) -> None:
        self.catalog = catalog

    @staticmethod
    def _wrap_cnf(node: Node, cnf: List[Expression]) -> Node:
        predicate = from_cnf_vec(cnf)
        return node if predicate is None else Filter(node, predicate)

    def optimize(self, node: Node) -> Node:
        def after(n: Node) -> Node:
            if not isinstance(n, Scan) or n.filter is None:
                return n
            columns = self.catalog.must_read_table(n.table).columns
            pk = next((i for i, c in enumerate(columns) if c.primary_key), None)
            if pk is None:
                raise InternalError(f"Primary key not found in table {n.table}")

            cnf = n.filter.into_cnf_vec()
            for i, expr in enumerate(cnf):
                keys = expr.as_lookup(pk)
                if keys is not None:
                    rest = cnf[:i] + cnf[i + 1 :]
                    return self._wrap_cnf(KeyLookup(n.table, n.alias, keys), rest)
                for ci, column in enumerate(columns):
                    if not column.index:
                        continue
                    values = expr.as_lookup(ci)
                    if values is not None:
                        rest = cnf[:i] + cnf[i + 1 :]
                        lookup = IndexLookup(n.table, n.alias, column.name, values)
                        return self._wrap_cnf(lookup, rest)
            return n

        return node.transform(_same, after)


class NoopCleaner(Optimizer):
    """Removes no-ops, such as constant boolean terms and always-true filters."""

    @staticmethod
    def _clean(expr: Expression) -> Expression:
        if isinstance(expr, And):
            if _is_false_or_null(expr.lhs) or _is_false_or_null(expr.rhs):
                return Constant(False)
            if _is_true(expr.lhs):
                return expr.rhs
            if _is_true(expr.rhs):
                return expr.lhs
        elif isinstance(expr, Or):
            if _is_false_or_null(expr.lhs):
                return expr.rhs
            if _is_false_or_null(expr.rhs):
                return expr.lhs
            if _is_true(expr.lhs) or _is_true(expr.rhs):
                return Constant(True)
        return expr

    def optimize(self, node: Node) -> Node:
        def before(n: Node) -> Node:
            return n.transform_expressions(_same_expr, self._clean)

        def after(n: Node) -> Node:
            if isinstance(n, Filter) and _is_true(n.predicate):
                return n.source
            return n

        return node.transform(before, after)


class JoinTypeOptimizer(Optimizer):
    """Replaces nested-loop equijoins on two fields with hash joins."""

    def optimize(self, node: Node) -> Node:
        def before(n: Node) -> Node:
            if not isinstance(n, NestedLoopJoin):
                return n
            pred = n.predicate
            if not (
                isinstance(pred, Equal)
                and isinstance(pred.lhs, Field)
                and isinstance(pred.rhs, Field)
            ):
                return n
            a, b = pred.lhs, pred.rhs
            if a.index < n.left_size:
                left_field = (a.index, a.label)
                right_field = (b.index - n.left_size, b.label)
            else:
                left_field = (b.index, b.label)
                right_field = (a.index - n.left_size, a.label)
            return HashJoin(n.left, left_field, n.right, right_field, n.outer)

        return node.transform(before, _same)


def optimize(node: Node, catalog: Catalog) -> Node:
    """Runs all optimizers over a plan tree, in order."""
    node = ConstantFolder().optimize(node)
    node = FilterPushdown().optimize(node)
    node = IndexLookupOptimizer(catalog).optimize(node)
    node = NoopCleaner().optimize(node)
    node = JoinTypeOptimizer().optimize(node)
    return node