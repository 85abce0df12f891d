# kvsql

A small database toolkit in two layers:

- **Storage engines** (`kvsql.storage`): ordered key/value stores over raw
  byte strings.
  - `Memory` (`kvsql.storage.memory`): an in-memory sorted map.
  - `BitCask` (`kvsql.storage.bitcask`): a log-structured store backed by one
    append-only file. It holds an exclusive lock on that file and can compact
    away garbage.
  - `DebugEngine` (`kvsql.storage.debug_engine`): wraps another engine and
    records every write.
- **SQL layer** (`kvsql.sql`): SQL values and data types, table schemas with
  validation, expression trees with evaluation and normal-form conversion,
  query plan nodes, and a set of plan optimizers.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Storage engines

Every engine subclasses `kvsql.storage.engine.Engine` and has the same
interface: `get`, `set`, `delete`, `scan`, `scan_prefix`, `flush` and
`status`. Keys are kept in lexicographical byte order. `status()` returns a
`Status` with the engine name, the number of live keys, their logical size,
and the total, live and garbage sizes on disk.

```python
from kvsql.storage.memory import Memory

engine = Memory()
engine.set(b"a", b"\x01")
engine.set(b"ba", b"\x02\x01")
engine.set(b"bb", b"\x02\x02")

engine.get(b"a")                        # b"\x01"
list(engine.scan(b"b", b"bz"))          # [(b"ba", b"\x02\x01"), (b"bb", b"\x02\x02")]
list(engine.scan_prefix(b"b", reverse=True))
engine.status().keys                    # 3
```

`scan(start, end)` covers the range from `start` (inclusive) up to `end`
(exclusive). Pass `None` for an open end. The `start_inclusive`,
`end_inclusive` and `reverse` keywords change the bounds and the order.

### BitCask

```python
from kvsql.storage.bitcask import BitCask

db = BitCask("data/kv.log")
db.set(b"key", b"value")
db.delete(b"key")
db.flush()
db.close()

# Reopen the file, and compact it when at least 20% of it is garbage.
with BitCask.open_compact("data/kv.log", 0.2) as db:
    print(db.status())
```

Each entry in the log has a 4-byte big-endian key length, then a 4-byte
big-endian value length (-1 marks a tombstone), then the key and value bytes.
When the file is opened, an incomplete entry at its end is cut off.
`compact()` rewrites the log with only the live entries, in key order.
Opening a file that is already open raises `kvsql.errors.DatabaseError`.

### Recording writes

```python
from kvsql.storage.debug_engine import DebugEngine
from kvsql.storage.memory import Memory

engine = DebugEngine(Memory())
engine.set(b"a", b"1")
engine.delete(b"a")
engine.take_write_log()   # [(b"a", b"1"), (b"a", None)]
```

## SQL layer

SQL values are plain Python values: `None`, `bool`, `int`, `float` and `str`.
`kvsql.sql.values` provides `DataType`, `datatype_of`, `format_value`,
`compare_values`, and `as_boolean`, `as_integer`, `as_float` and `as_string`.

`kvsql.sql.schema` holds `Table` and `Column` schemas and the abstract
`Catalog`. `Table.validate` and `Table.validate_row` take a transaction
object that you supply, with `read_table(name)`, `read(table, key)` and
`scan(table, filter)` methods.

An expression is a tree built from `Constant`, `Field`, `And`, `Or`, `Not`,
`Equal`, `GreaterThan`, `LessThan`, `IsNull`, `Like` and the arithmetic nodes
`Add`, `Subtract`, `Multiply`, `Divide`, `Modulo`, `Exponentiate`, `Negate`,
`Assert` and `Factorial`:

```python
from kvsql.sql.expression import Add, Constant, Equal, Field, Or

expr = Add(Constant(1), Field(0, None))
expr.evaluate([41])                                  # 42

lookup = Or(Equal(Field(0, None), Constant(1)), Equal(Field(0, None), Constant(2)))
lookup.as_lookup(0)                                  # [1, 2]
```

Expressions can be converted with `into_nnf`, `into_cnf`, `into_cnf_vec`,
`into_dnf` and `into_dnf_vec`, and rebuilt with `from_cnf_vec`,
`from_dnf_vec` and `from_lookup`.

`kvsql.sql.plan` holds the query plan nodes, such as `Scan`, `Filter`,
`Projection` and `NestedLoopJoin`. Printing a plan gives an indented tree.
`kvsql.sql.optimizer.optimize(node, catalog)` runs constant folding, filter
pushdown, index lookups, no-op cleanup and join-type selection, in that
order. The catalog can be any `kvsql.sql.schema.Catalog`.

Failures raise `kvsql.errors.ValueError_`, for invalid values and schemas, or
`kvsql.errors.InternalError`. Both derive from `kvsql.errors.DatabaseError`.

## What is not included

kvsql has no SQL parser, no way to build plans from SQL text, and no plan
executor: plans are built and optimized by hand and cannot be run. There are
no transactions over the storage engines, and no server or command-line
tool. The SQL layer does not store tables or rows in the storage engines.