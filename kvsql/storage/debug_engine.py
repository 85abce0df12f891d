"""A storage engine wrapper that records mutations."""

from __future__ import annotations

from typing import Iterator, List, Optional, Tuple

from kvsql.storage.engine import Engine, KeyValue, Status

WriteLogEntry = Tuple[bytes, Optional[bytes]]


class DebugEngine(Engine):
    """Wraps another engine and logs its writes; deletes are logged with None."""

    def __init__(self, inner: Engine) -> None:
        self.inner = inner
        self._write_log: List[WriteLogEntry] = []

    def __str__(self) -> str:
        return f"debug:{self.inner}"

    def take_write_log(self) -> List[WriteLogEntry]:
        """Returns and resets the write log; the next call only returns new writes."""
        write_log, self._write_log = self._write_log, []
        return write_log

    def delete(self, key: bytes) -> None:
        self.inner.delete(key)
        self._write_log.append((bytes(key), None))

    def flush(self) -> None:
        self.inner.flush()

    def get(self, key: bytes) -> Optional[bytes]:
        return self.inner.get(key)

    def scan(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        *,
        start_inclusive: bool = True,
        end_inclusive: bool = False,
        reverse: bool = False,
    ) -> Iterator[KeyValue]:
        return self.inner.scan(
            start,
            end,
            start_inclusive=start_inclusive,
            end_inclusive=end_inclusive,
            reverse=reverse,
        )

    def set(self, key: bytes, value: bytes) -> None:
        self.inner.set(key, value)
        self._write_log.append((bytes(key), bytes(value)))

    def status(self) -> Status:
        return self.inner.status()