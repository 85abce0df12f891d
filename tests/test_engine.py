import pytest

from kvsql.storage.engine import Engine, Status


class _ListEngine(Engine):
    """A minimal engine that records scan bounds and filters a plain dict."""

    def __init__(self):
        self.data = {}
        self.scans = []

    def delete(self, key):
        self.data.pop(key, None)

    def flush(self):
        pass

    def get(self, key):
        return self.data.get(key)

    def scan(self, start=None, end=None, *, start_inclusive=True, end_inclusive=False,
             reverse=False):
        self.scans.append((start, end, start_inclusive, end_inclusive, reverse))
        items = []
        for key in sorted(self.data):
            if start is not None and (key < start or (key == start and not start_inclusive)):
                continue
            if end is not None and (key > end or (key == end and not end_inclusive)):
                continue
            items.append((key, self.data[key]))
        if reverse:
            items.reverse()
        return iter(items)

    def set(self, key, value):
        self.data[key] = value

    def status(self):
        return Status("list", len(self.data), 0, 0, 0, 0)


def test_engine_is_abstract():
    with pytest.raises(TypeError):
        Engine()


@pytest.mark.parametrize(
    "prefix, end",
    [
        (b"", None),
        (b"b", b"c"),
        (b"bb", b"bc"),
        (b"b\xff", b"c"),
        (b"b\xff\xff", b"c"),
        (b"b\xff\x00", b"b\xff\x01"),
        (b"\xff", None),
        (b"\xff\xff\xff", None),
    ],
)
def test_scan_prefix_bounds(prefix, end):
    engine = _ListEngine()
    list(Engine.scan_prefix(engine, prefix))
    assert engine.scans == [(prefix, end, True, False, False)]


def test_scan_prefix_reverse_passes_through():
    engine = _ListEngine()
    list(Engine.scan_prefix(engine, b"a", reverse=True))
    assert engine.scans == [(b"a", b"b", True, False, True)]


@pytest.fixture
def prefix_engine():
    engine = _ListEngine()
    for key, value in [
        (b"a", b"\x01"),
        (b"b", b"\x02"),
        (b"ba", b"\x02\x01"),
        (b"bb", b"\x02\x02"),
        (b"b\xff", b"\x02\xff"),
        (b"b\xff\x00", b"\x02\xff\x00"),
        (b"b\xffb", b"\x02\xff\x02"),
        (b"b\xff\xff", b"\x02\xff\xff"),
        (b"c", b"\x03"),
        (b"\xff", b"\xff"),
        (b"\xff\xff", b"\xff\xff"),
    ]:
        engine.set(key, value)
    return engine


def test_scan_prefix_results(prefix_engine):
    assert [k for k, _ in Engine.scan_prefix(prefix_engine, b"b\xff")] == [
        b"b\xff", b"b\xff\x00", b"b\xffb", b"b\xff\xff",
    ]
    assert [k for k, _ in Engine.scan_prefix(prefix_engine, b"\xff")] == [b"\xff", b"\xff\xff"]
    assert list(Engine.scan_prefix(prefix_engine, b"bq")) == []


def test_status_equality():
    a = Status("memory", 2, 10, 0, 0, 0)
    b = Status(name="memory", keys=2, size=10, total_disk_size=0, live_disk_size=0,
               garbage_disk_size=0)
    assert a == b
    assert a != Status("memory", 3, 10, 0, 0, 0)