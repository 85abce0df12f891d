"""An in-memory storage engine. Data is not persisted."""

from __future__ import annotations

from typing import Iterator, Optional

from sortedcontainers import SortedDict

from kvsql.storage.engine import Engine, KeyValue, Status


class Memory(Engine):
    """An in-memory key/value engine backed by a sorted dictionary."""

    def __init__(self) -> None:
        self._data: SortedDict = SortedDict()

    def __str__(self) -> str:
        return "memory"

    def delete(self, key: bytes) -> None:
        self._data.pop(bytes(key), None)

    def flush(self) -> None:
        """Does nothing: there is no underlying storage medium."""

    def get(self, key: bytes) -> Optional[bytes]:
        return self._data.get(bytes(key))

    def scan(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        *,
        start_inclusive: bool = True,
        end_inclusive: bool = False,
        reverse: bool = False,
    ) -> Iterator[KeyValue]:
        keys = self._data.irange(
            None if start is None else bytes(start),
            None if end is None else bytes(end),
            inclusive=(start_inclusive, end_inclusive),
            reverse=reverse,
        )
        for key in keys:
            yield key, self._data[key]

    def set(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    def status(self) -> Status:
        return Status(
            name=str(self),
            keys=len(self._data),
            size=sum(len(k) + len(v) for k, v in self._data.items()),
            total_disk_size=0,
            live_disk_size=0,
            garbage_disk_size=0,
        )