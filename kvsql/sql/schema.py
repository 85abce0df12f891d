"""Table schemas, their validation, and the catalog interface."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple, Union

from kvsql.errors import ValueError_
from kvsql.sql.values import DataType, Row, Value, datatype_of, format_value, values_equal

MAX_STRING_BYTES = 1024


class _Unset(Enum):
    TOKEN = 0

    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT = _Unset.TOKEN
"""Marks a column without a default value (as opposed to a NULL default)."""


class _Transaction(Protocol):
    def read_table(self, table: str) -> Optional["Table"]: ...

    def read(self, table: str, id: Value) -> Optional[Row]: ...

    def scan(self, table: str, filter: object) -> Iterable[Row]: ...


@dataclass
class Column:
    """A table column schema."""

    name: str
    datatype: DataType
    primary_key: bool = False
    nullable: bool = False
    default: Union[Value, _Unset] = NO_DEFAULT
    unique: bool = False
    references: Optional[str] = None
    index: bool = False

    def validate(self, table: "Table", txn: _Transaction) -> None:
        """Validates the column schema, raising on problems."""
        if self.primary_key and self.nullable:
            raise ValueError_(f"Primary key {self.name} cannot be nullable")
        if self.primary_key and not self.unique:
            raise ValueError_(f"Primary key {self.name} must be unique")

        if self.default is not NO_DEFAULT:
            datatype = datatype_of(self.default)  # type: ignore[arg-type]
            if datatype is not None:
                if datatype != self.datatype:
                    raise ValueError_(
                        f"Default value for column {self.name} has datatype "
                        f"{datatype}, must be {self.datatype}"
                    )
            elif not self.nullable:
                raise ValueError_(
                    f"Can't use NULL as default value for non-nullable column {self.name}"
                )
        elif self.nullable:
            raise ValueError_(f"Nullable column {self.name} must have a default value")

        if self.references is not None:
            if self.references == table.name:
                target = table
            else:
                found = txn.read_table(self.references)
                if found is None:
                    raise ValueError_(
                        f"Table {self.references} referenced by column {self.name} "
                        "does not exist"
                    )
                target = found
            target_type = target.get_primary_key().datatype
            if self.datatype != target_type:
                raise ValueError_(
                    f"Can't reference {target_type} primary key of table {target.name} "
                    f"from {self.datatype} column {self.name}"
                )

    def validate_value(self, table: "Table", pk: Value, value: Value, txn: _Transaction) -> None:
        """Validates a value for this column in a row with primary key pk."""
        datatype = datatype_of(value)
        if datatype is None:
            if not self.nullable:
                raise ValueError_(f"NULL value not allowed for column {self.name}")
        elif datatype != self.datatype:
            raise ValueError_(
                f"Invalid datatype {datatype} for {self.datatype} column {self.name}"
            )

        if isinstance(value, str) and len(value.encode("utf-8")) > MAX_STRING_BYTES:
            raise ValueError_("Strings cannot be more than 1024 bytes")

        target = self.references
        if target is not None and value is not None:
            is_nan = isinstance(value, float) and math.isnan(value)
            self_ref = target == table.name and values_equal(value, pk)
            if not is_nan and not self_ref and txn.read(target, value) is None:
                raise ValueError_(
                    f"Referenced primary key {format_value(value)} in table {target} "
                    "does not exist"
                )

        if self.unique and not self.primary_key and value is not None:
            index = table.get_column_index(self.name)
            for row in txn.scan(table.name, None):
                existing = row[index] if index < len(row) else None
                if values_equal(existing, value) and not values_equal(
                    table.get_row_key(row), pk
                ):
                    raise ValueError_(
                        f"Unique value {format_value(value)} already exists "
                        f"for column {self.name}"
                    )

    def __str__(self) -> str:
        sql = f"{self.name} {self.datatype}"
        if self.primary_key:
            sql += " PRIMARY KEY"
        if not self.nullable and not self.primary_key:
            sql += " NOT NULL"
        if self.default is not NO_DEFAULT:
            sql += f" DEFAULT {format_value(self.default)}"  # type: ignore[arg-type]
        if self.unique and not self.primary_key:
            sql += " UNIQUE"
        if self.references is not None:
            sql += f" REFERENCES {self.references}"
        if self.index:
            sql += " INDEX"
        return sql


@dataclass
class Table:
    """A table schema."""

    name: str
    columns: List[Column] = field(default_factory=list)

    def get_column(self, name: str) -> Column:
        """Fetches a column by name."""
        for column in self.columns:
            if column.name == name:
                return column
        raise ValueError_(f"Column {name} not found in table {self.name}")

    def get_column_index(self, name: str) -> int:
        """Fetches a column's position by name."""
        for index, column in enumerate(self.columns):
            if column.name == name:
                return index
        raise ValueError_(f"Column {name} not found in table {self.name}")

    def get_primary_key(self) -> Column:
        """Returns the primary key column."""
        for column in self.columns:
            if column.primary_key:
                return column
        raise ValueError_(f"Primary key not found in table {self.name}")

    def get_row_key(self, row: Sequence[Value]) -> Value:
        """Returns the primary key value of a row."""
        index = next((i for i, c in enumerate(self.columns) if c.primary_key), None)
        if index is None:
            raise ValueError_("Primary key not found")
        if index >= len(row):
            raise ValueError_("Primary key value not found for row")
        return row[index]

    def validate(self, txn: _Transaction) -> None:
        """Validates the table schema, raising on problems."""
        if not self.columns:
            raise ValueError_(f"Table {self.name} has no columns")
        keys = sum(1 for c in self.columns if c.primary_key)
        if keys == 0:
            raise ValueError_(f"No primary key in table {self.name}")
        if keys > 1:
            raise ValueError_(f"Multiple primary keys in table {self.name}")
        for column in self.columns:
            column.validate(self, txn)

    def validate_row(self, row: Sequence[Value], txn: _Transaction) -> None:
        """Validates a row against the schema."""
        if len(row) != len(self.columns):
            raise ValueError_(f"Invalid row size for table {self.name}")
        pk = self.get_row_key(row)
        for column, value in zip(self.columns, row):
            column.validate_value(self, pk, value, txn)

    def __str__(self) -> str:
        body = ",\n".join(f"  {c}" for c in self.columns)
        return f"CREATE TABLE {self.name} (\n{body}\n)"


class Catalog(ABC):
    """Stores schema information."""

    @abstractmethod
    def create_table(self, table: Table) -> None:
        """Creates a new table."""

    @abstractmethod
    def delete_table(self, table: str) -> None:
        """Deletes an existing table, or raises if it does not exist."""

    @abstractmethod
    def read_table(self, table: str) -> Optional[Table]:
        """Reads a table, if it exists."""

    @abstractmethod
    def scan_tables(self) -> Iterator[Table]:
        """Iterates over all tables."""

    def must_read_table(self, table: str) -> Table:
        """Reads a table, raising if it does not exist."""
        found = self.read_table(table)
        if found is None:
            raise ValueError_(f"Table {table} does not exist")
        return found

    def table_references(self, table: str, with_self: bool) -> List[Tuple[str, List[str]]]:
        """Returns all references to a table, as (table, columns) pairs."""
        references = []
        for t in self.scan_tables():
            if not with_self and t.name == table:
                continue
            columns = [c.name for c in t.columns if c.references == table]
            if columns:
                references.append((t.name, columns))
        return references