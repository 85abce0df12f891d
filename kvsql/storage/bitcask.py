"""A simple log-structured key/value engine in the style of BitCask.

Key/value pairs are appended to a single log file, and an in-memory key
directory maps each live key to the position and length of its value in the
file. Deletes append a tombstone. All live keys must fit in memory. Old
garbage is removed by compaction, which rewrites the log with live data only.

Each log entry is encoded as:

- key length as a big-endian u32,
- value length as a big-endian i32, or -1 for tombstones,
- the key bytes,
- the value bytes.
"""

from __future__ import annotations

import logging
import os
import struct
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union

import portalocker
from sortedcontainers import SortedDict

from kvsql.errors import DatabaseError, InternalError
from kvsql.storage.engine import Engine, KeyValue, Status

logger = logging.getLogger(__name__)

_HEADER = struct.Struct(">Ii")
_TOMBSTONE = -1

PathLike = Union[str, "os.PathLike[str]"]


class _Log:
    """An append-only log file, exclusively locked while open."""

    def __init__(self, path: PathLike) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        self.file = os.fdopen(fd, "r+b")
        try:
            portalocker.lock(
                self.file, portalocker.LockFlags.EXCLUSIVE | portalocker.LockFlags.NON_BLOCKING
            )
        except portalocker.exceptions.LockException as error:
            self.file.close()
            raise DatabaseError(f"Log file {self.path} is locked by another process") from error

    def size(self) -> int:
        self.file.flush()
        return os.fstat(self.file.fileno()).st_size

    def _read_entry(
        self, pos: int, file_len: int
    ) -> Optional[Tuple[bytes, int, Optional[int]]]:
        """Reads the entry at the current position, or None if it is incomplete."""
        header = self.file.read(_HEADER.size)
        if len(header) < _HEADER.size:
            return None
        key_len, value_len = _HEADER.unpack(header)
        key = self.file.read(key_len)
        if len(key) < key_len:
            return None
        value_pos = pos + _HEADER.size + key_len
        if value_len < 0:
            return key, value_pos, None
        if value_pos + value_len > file_len:
            return None
        self.file.seek(value_len, os.SEEK_CUR)
        return key, value_pos, value_len

    def build_keydir(self) -> SortedDict:
        """Scans the log into a key directory, truncating an incomplete tail entry."""
        keydir: SortedDict = SortedDict()
        file_len = self.size()
        self.file.seek(0)
        pos = 0
        while pos < file_len:
            entry = self._read_entry(pos, file_len)
            if entry is None:
                logger.error("Found incomplete entry at offset %d, truncating file", pos)
                self.file.truncate(pos)
                break
            key, value_pos, value_len = entry
            if value_len is None:
                keydir.pop(key, None)
                pos = value_pos
            else:
                keydir[key] = (value_pos, value_len)
                pos = value_pos + value_len
        return keydir

    def read_value(self, value_pos: int, value_len: int) -> bytes:
        self.file.seek(value_pos)
        value = self.file.read(value_len)
        if len(value) != value_len:
            raise InternalError(f"Short read of value at offset {value_pos} in {self.path}")
        return value

    def write_entry(self, key: bytes, value: Optional[bytes]) -> Tuple[int, int]:
        """Appends an entry, None meaning a tombstone; returns its position and length."""
        value_len = _TOMBSTONE if value is None else len(value)
        entry = _HEADER.pack(len(key), value_len) + key + (value or b"")
        pos = self.file.seek(0, os.SEEK_END)
        self.file.write(entry)
        self.file.flush()
        return pos, len(entry)

    def sync(self) -> None:
        self.file.flush()
        os.fsync(self.file.fileno())

    def close(self) -> None:
        self.file.close()


class BitCask(Engine):
    """A log-structured key/value engine stored in a single file."""

    def __init__(self, path: PathLike) -> None:
        self._log = _Log(path)
        self._keydir = self._log.build_keydir()
        self._closed = False

    @classmethod
    def open_compact(cls, path: PathLike, garbage_ratio_threshold: float) -> "BitCask":
        """Opens a database, compacting it if its garbage ratio reaches the threshold."""
        engine = cls(path)
        status = engine.status()
        if status.garbage_disk_size > 0:
            garbage_ratio = status.garbage_disk_size / status.total_disk_size
            if garbage_ratio >= garbage_ratio_threshold:
                logger.info(
                    "Compacting %s to remove %.3fMB garbage (%.0f%% of %.3fMB)",
                    engine.path,
                    status.garbage_disk_size / 1024 / 1024,
                    garbage_ratio * 100.0,
                    status.total_disk_size / 1024 / 1024,
                )
                engine.compact()
                logger.info(
                    "Compacted %s to size %.3fMB",
                    engine.path,
                    (status.total_disk_size - status.garbage_disk_size) / 1024 / 1024,
                )
        return engine

    @property
    def path(self) -> Path:
        """The path of the log file."""
        return self._log.path

    def __str__(self) -> str:
        return "bitcask"

    def __enter__(self) -> "BitCask":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Flushes and closes the log file, releasing its lock."""
        if self._closed:
            return
        self._closed = True
        try:
            self._log.sync()
        except OSError as error:
            logger.error("failed to flush file: %s", error)
        finally:
            self._log.close()

    def compact(self) -> None:
        """Rewrites the log with only live entries, in key order, and swaps it in."""
        new_log = _Log(self._log.path.with_suffix(".new"))
        try:
            new_log.file.truncate(0)
            new_keydir: SortedDict = SortedDict()
            for key, (value_pos, value_len) in self._keydir.items():
                value = self._log.read_value(value_pos, value_len)
                pos, length = new_log.write_entry(key, value)
                new_keydir[key] = (pos + length - value_len, value_len)
            os.replace(new_log.path, self._log.path)
        except BaseException:
            new_log.close()
            raise
        new_log.path = self._log.path
        self._log.close()
        self._log = new_log
        self._keydir = new_keydir

    def delete(self, key: bytes) -> None:
        key = bytes(key)
        self._log.write_entry(key, None)
        self._keydir.pop(key, None)

    def flush(self) -> None:
        self._log.sync()

    def get(self, key: bytes) -> Optional[bytes]:
        location = self._keydir.get(bytes(key))
        if location is None:
            return None
        return self._log.read_value(*location)

    def scan(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        *,
        start_inclusive: bool = True,
        end_inclusive: bool = False,
        reverse: bool = False,
    ) -> Iterator[KeyValue]:
        keys = self._keydir.irange(
            None if start is None else bytes(start),
            None if end is None else bytes(end),
            inclusive=(start_inclusive, end_inclusive),
            reverse=reverse,
        )
        for key in keys:
            yield key, self._log.read_value(*self._keydir[key])

    def set(self, key: bytes, value: bytes) -> None:
        key, value = bytes(key), bytes(value)
        pos, length = self._log.write_entry(key, value)
        self._keydir[key] = (pos + length - len(value), len(value))

    def status(self) -> Status:
        keys = len(self._keydir)
        size = sum(len(key) + value_len for key, (_, value_len) in self._keydir.items())
        total_disk_size = self._log.size()
        live_disk_size = size + _HEADER.size * keys
        return Status(
            name=str(self),
            keys=keys,
            size=size,
            total_disk_size=total_disk_size,
            live_disk_size=live_disk_size,
            garbage_disk_size=total_disk_size - live_disk_size,
        )