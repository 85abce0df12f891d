import random
import shutil

import pytest

from kvsql.errors import DatabaseError
from kvsql.storage.bitcask import BitCask
from kvsql.storage.engine import Status


@pytest.fixture
def engine(tmp_path):
    s = BitCask(tmp_path / "kvsql")
    yield s
    s.close()


def setup_log(s):
    s.set(b"b", b"\x01")
    s.set(b"b", b"\x02")

    s.set(b"e", b"\x05")
    s.delete(b"e")

    s.set(b"c", b"\x00")
    s.delete(b"c")
    s.set(b"c", b"\x03")

    s.set(b"", b"")

    s.set(b"a", b"\x01")

    s.delete(b"f")

    s.delete(b"d")
    s.set(b"d", b"\x04")

    assert list(s.scan()) == [
        (b"", b""),
        (b"a", b"\x01"),
        (b"b", b"\x02"),
        (b"c", b"\x03"),
        (b"d", b"\x04"),
    ]


def test_point_ops(engine):
    s = engine
    assert s.get(b"a") is None
    s.set(b"a", b"\x01")
    assert s.get(b"a") == b"\x01"
    s.set(b"b", b"\x02")
    assert s.get(b"b") == b"\x02"
    assert s.get(b"a") == b"\x01"
    assert s.get(b"c") is None
    assert s.get(b"A") is None
    s.set(b"a", b"\x00")
    assert s.get(b"a") == b"\x00"
    s.delete(b"a")
    assert s.get(b"a") is None
    assert s.get(b"b") == b"\x02"
    s.delete(b"a")
    assert s.get(b"a") is None


def test_point_ops_empty(engine):
    assert engine.get(b"") is None
    engine.set(b"", b"")
    assert engine.get(b"") == b""
    engine.delete(b"")
    assert engine.get(b"") is None


def test_point_ops_sizes(engine):
    for size in (1 << i for i in range(1, 21)):
        data = b"x" * size
        assert engine.get(data) is None
        engine.set(data, data)
        assert engine.get(data) == data
        engine.delete(data)
        assert engine.get(data) is None


def test_scan(engine):
    s = engine
    s.set(b"a", b"\x01")
    s.set(b"b", b"\x02")
    s.set(b"ba", b"\x02\x01")
    s.set(b"bb", b"\x02\x02")
    s.set(b"c", b"\x03")
    s.set(b"C", b"\x03")

    assert list(s.scan(b"b", b"bz")) == [
        (b"b", b"\x02"),
        (b"ba", b"\x02\x01"),
        (b"bb", b"\x02\x02"),
    ]
    assert list(s.scan(b"b", b"bz", reverse=True)) == [
        (b"bb", b"\x02\x02"),
        (b"ba", b"\x02\x01"),
        (b"b", b"\x02"),
    ]
    assert list(s.scan(b"b", b"bb")) == [(b"b", b"\x02"), (b"ba", b"\x02\x01")]
    assert list(s.scan(b"b", b"bb", end_inclusive=True)) == [
        (b"b", b"\x02"),
        (b"ba", b"\x02\x01"),
        (b"bb", b"\x02\x02"),
    ]
    assert list(s.scan(b"bb")) == [(b"bb", b"\x02\x02"), (b"c", b"\x03")]
    assert list(s.scan(None, b"b", end_inclusive=True)) == [
        (b"C", b"\x03"),
        (b"a", b"\x01"),
        (b"b", b"\x02"),
    ]
    assert list(s.scan()) == [
        (b"C", b"\x03"),
        (b"a", b"\x01"),
        (b"b", b"\x02"),
        (b"ba", b"\x02\x01"),
        (b"bb", b"\x02\x02"),
        (b"c", b"\x03"),
    ]


def test_scan_prefix(engine):
    s = engine
    entries = [
        (b"a", bytes([1])),
        (b"b", bytes([2])),
        (b"ba", bytes([2, 1])),
        (b"bb", bytes([2, 2])),
        (b"b\xff", bytes([2, 0xFF])),
        (b"b\xff\x00", bytes([2, 0xFF, 0x00])),
        (b"b\xffb", bytes([2, 0xFF, 2])),
        (b"b\xff\xff", bytes([2, 0xFF, 0xFF])),
        (b"c", bytes([3])),
        (b"\xff", bytes([0xFF])),
        (b"\xff\xff", bytes([0xFF, 0xFF])),
        (b"\xff\xff\xff", bytes([0xFF, 0xFF, 0xFF])),
        (b"\xff\xff\xff\xff", bytes([0xFF, 0xFF, 0xFF, 0xFF])),
    ]
    for key, value in entries:
        s.set(key, value)

    assert list(s.scan_prefix(b"")) == entries
    assert list(s.scan_prefix(b"b")) == entries[1:8]
    assert list(s.scan_prefix(b"bb")) == [(b"bb", bytes([2, 2]))]
    assert list(s.scan_prefix(b"bq")) == []
    assert list(s.scan_prefix(b"b\xff")) == entries[4:8]
    assert list(s.scan_prefix(b"b\xff\x00")) == [entries[5]]
    assert list(s.scan_prefix(b"b\xff\xff")) == [entries[7]]
    assert list(s.scan_prefix(b"\xff")) == entries[9:]
    assert list(s.scan_prefix(b"\xff\xff")) == entries[10:]
    assert list(s.scan_prefix(b"\xff\xff\xff")) == entries[11:]
    assert list(s.scan_prefix(b"\xff\xff\xff\xff")) == entries[12:]
    assert list(s.scan_prefix(b"\xff\xff\xff\xff\xff")) == []


def test_random_ops(engine):
    rng = random.Random(20240101)
    keys = []
    model = {}

    def random_key():
        if keys and rng.random() < 0.8:
            return rng.choice(keys)
        key = rng.randbytes(rng.randint(0, 16))
        keys.append(key)
        return key

    for _ in range(1000):
        op = rng.randint(0, 3)
        if op == 0:
            key = random_key()
            value = rng.randbytes(rng.randint(0, 16))
            engine.set(key, value)
            model[key] = value
        elif op == 1:
            key = random_key()
            engine.delete(key)
            model.pop(key, None)
        elif op == 2:
            key = random_key()
            assert engine.get(key) == model.get(key)
        else:
            start, end = sorted((random_key(), random_key()))
            expect = sorted((k, v) for k, v in model.items() if start <= k < end)
            assert list(engine.scan(start, end)) == expect

    assert list(engine.scan()) == sorted(model.items())


def test_status_common(engine):
    s = engine
    s.set(b"foo", b"\x01\x02\x03")
    s.set(b"bar", b"\x01")
    s.delete(b"bar")
    s.set(b"baz", b"\x01")
    s.set(b"baz", b"\x02")
    s.set(b"baz", b"\x03")
    s.delete(b"qux")
    status = s.status()
    assert len(status.name) > 0
    assert status.keys == 2
    assert status.size == 10


def test_log_encoding(tmp_path):
    path = tmp_path / "kvsql"
    with BitCask(path) as s:
        s.set(b"a", b"\x01")
        s.delete(b"a")
        assert path.read_bytes() == (
            b"\x00\x00\x00\x01\x00\x00\x00\x01a\x01" b"\x00\x00\x00\x01\xff\xff\xff\xffa"
        )
    assert str(s) == "bitcask"


def test_reopen(tmp_path):
    path = tmp_path / "kvsql"
    s = BitCask(path)
    setup_log(s)
    expect = list(s.scan())
    s.close()
    with BitCask(path) as s:
        assert list(s.scan()) == expect


def test_compact(tmp_path):
    path = tmp_path / "kvsql"
    s = BitCask(path)
    setup_log(s)
    expect = list(s.scan())
    before = path.stat().st_size

    s.compact()
    assert s.path == path
    assert list(s.scan()) == expect
    assert path.stat().st_size < before
    assert not path.with_suffix(".new").exists()
    s.close()

    with BitCask(path) as s:
        assert list(s.scan()) == expect


def test_open_compact(tmp_path):
    path = tmp_path / "orig"
    compact_path = tmp_path / "compact"

    s = BitCask.open_compact(path, 0.2)
    setup_log(s)
    status = s.status()
    garbage_ratio = status.garbage_disk_size / status.total_disk_size
    s.close()

    cases = [
        (-1.0, True),
        (0.0, True),
        (garbage_ratio - 0.001, True),
        (garbage_ratio, True),
        (garbage_ratio + 0.001, False),
        (1.0, False),
        (2.0, False),
    ]
    for threshold, expect_compact in cases:
        shutil.copy(path, compact_path)
        with BitCask.open_compact(compact_path, threshold) as s:
            new_status = s.status()
        assert new_status.live_disk_size == status.live_disk_size
        if expect_compact:
            assert new_status.total_disk_size == status.live_disk_size
            assert new_status.garbage_disk_size == 0
        else:
            assert new_status == status


def test_log_lock(tmp_path):
    path = tmp_path / "kvsql"
    s = BitCask(path)
    with pytest.raises(DatabaseError):
        BitCask(path)
    s.close()
    with BitCask(path) as reopened:
        reopened.set(b"k", b"v")
        assert reopened.get(b"k") == b"v"


def test_recovery(tmp_path):
    path = tmp_path / "complete"
    trunc_path = tmp_path / "truncated"

    ends = []
    with BitCask(path) as s:
        s.set(b"deleted", bytes([1, 2, 3]))
        ends.append(s.status().total_disk_size)
        s.delete(b"deleted")
        ends.append(s.status().total_disk_size)
        s.set(b"", b"")
        ends.append(s.status().total_disk_size)
        s.set(b"key", bytes([1, 2, 3, 4, 5]))
        ends.append(s.status().total_disk_size)

    size = path.stat().st_size
    assert size == ends[-1]
    for pos in range(size + 1):
        shutil.copy(path, trunc_path)
        with open(trunc_path, "r+b") as f:
            f.truncate(pos)

        expect = []
        if pos >= ends[0]:
            expect.append((b"deleted", bytes([1, 2, 3])))
        if pos >= ends[1]:
            expect.pop()
        if pos >= ends[2]:
            expect.append((b"", b""))
        if pos >= ends[3]:
            expect.append((b"key", bytes([1, 2, 3, 4, 5])))

        with BitCask(trunc_path) as s:
            assert list(s.scan()) == expect
            assert s.status().total_disk_size in [0] + ends


def test_status_full(engine):
    setup_log(engine)
    assert engine.status() == Status(
        name="bitcask",
        keys=5,
        size=8,
        total_disk_size=114,
        live_disk_size=48,
        garbage_disk_size=66,
    )
    engine.compact()
    assert engine.status() == Status(
        name="bitcask",
        keys=5,
        size=8,
        total_disk_size=48,
        live_disk_size=48,
        garbage_disk_size=0,
    )