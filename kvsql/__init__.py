"""Key/value storage engines with a SQL expression, schema and query-plan layer."""

__version__ = "0.1.0"