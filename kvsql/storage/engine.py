"""The key/value storage engine interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

KeyValue = Tuple[bytes, bytes]


@dataclass(frozen=True)
class Status:
    """Engine status."""

    name: str
    """The name of the storage engine."""
    keys: int
    """The number of live keys in the engine."""
    size: int
    """The logical size of live key/value pairs."""
    total_disk_size: int
    """The on-disk size of all data, live and garbage."""
    live_disk_size: int
    """The on-disk size of live data."""
    garbage_disk_size: int
    """The on-disk size of garbage data."""


def _prefix_end(prefix: bytes) -> Optional[bytes]:
    """Returns the exclusive upper bound of keys starting with prefix, or None."""
    stripped = prefix.rstrip(b"\xff")
    if not stripped:
        return None
    return stripped[:-1] + bytes([stripped[-1] + 1])


class Engine(ABC):
    """A key/value store of arbitrary byte strings, kept in key order.

    Writes are only guaranteed durable after calling flush().
    """

    @abstractmethod
    def delete(self, key: bytes) -> None:
        """Deletes a key, or does nothing if it does not exist."""

    @abstractmethod
    def flush(self) -> None:
        """Flushes any buffered data to the underlying storage medium."""

    @abstractmethod
    def get(self, key: bytes) -> Optional[bytes]:
        """Gets the value for a key, if it exists."""

    @abstractmethod
    def scan(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        *,
        start_inclusive: bool = True,
        end_inclusive: bool = False,
        reverse: bool = False,
    ) -> Iterator[KeyValue]:
        """Iterates over key/value pairs in a key range; None bounds are open."""

    @abstractmethod
    def set(self, key: bytes, value: bytes) -> None:
        """Sets the value for a key, replacing any existing value."""

    @abstractmethod
    def status(self) -> Status:
        """Returns engine status."""

    def scan_prefix(self, prefix: bytes, *, reverse: bool = False) -> Iterator[KeyValue]:
        """Iterates over all key/value pairs whose key starts with prefix."""
        prefix = bytes(prefix)
        return self.scan(
            prefix,
            _prefix_end(prefix),
            start_inclusive=True,
            end_inclusive=False,
            reverse=reverse,
        )