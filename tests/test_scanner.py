import pytest

from nostrkv.scanner import Found, Group, MatchResult, Scanner, SortedKeyList, TimeKey
from nostrkv.store import DUPFIXED, DUPSORT, INTEGERDUP, Bound, Db


class SimpleKey(TimeKey):
    def __init__(self, time):
        self._time = time

    def time(self):
        return self._time

    def change_time(self, key, time):
        return b""


class Key(TimeKey):
    def __init__(self, k, v):
        self.k = k
        self.v = v

    @staticmethod
    def encode(kind, time):
        return kind.to_bytes(8, "big") + time.to_bytes(8, "big")

    def uid(self):
        return self.v

    def time(self):
        return int.from_bytes(self.k[8:16], "big")

    def cmp(self, other):
        mine = (self.time(), self.uid())
        theirs = (other.time(), other.uid())
        return (mine > theirs) - (mine < theirs)

    def change_time(self, key, time):
        return key[0:8] + time.to_bytes(8, "big")


class LongQuery(Exception):
    pass


def u64(value):
    return value.to_bytes(8, "big")


def prefix_matcher(scanner, entry):
    k, v = entry
    if k.startswith(scanner.prefix):
        return Found(Key(k, v))
    return MatchResult.STOP


@pytest.fixture
def store(tmp_path):
    db = Db.open_with(tmp_path / "db", 20, 100, 10_000_000, 0)
    tree = db.open_tree("t1", DUPSORT | DUPFIXED | INTEGERDUP)
    writer = db.writer()
    for i in range(1, 4):
        writer.put(tree, Key.encode(1, 10), u64(i))
    writer.put(tree, Key.encode(2, 10), u64(3))
    for i in range(4, 6):
        writer.put(tree, Key.encode(2, 30), u64(i))
    writer.put(tree, Key.encode(3, 30), u64(5))
    for i in range(6, 8):
        writer.put(tree, Key.encode(3, 20), u64(i))
    writer.commit()
    reader = db.reader()
    yield reader, tree
    reader.abort()
    db.close()


def make_scanner(reader, tree, kind, since=None, until=None):
    prefix = u64(kind)
    inner = reader.iter_from(tree, Bound.included(prefix), False)
    return Scanner(inner, prefix, prefix, False, since, until, prefix_matcher)


def test_sorted_key_list_reverse():
    sl = SortedKeyList(True)
    for t in (1, 10, 5, 6):
        sl.add([t], SimpleKey(t))
    assert len(sl) == 4
    assert sl.pop()[0] == [10]
    assert sl.pop()[0] == [6]
    assert len(sl) == 2


def test_sorted_key_list_forward():
    sl = SortedKeyList(False)
    for t in (1, 10, 5, 6):
        sl.add([t], SimpleKey(t))
    assert len(sl) == 4
    assert sl.pop()[0] == [1]
    assert sl.pop()[0] == [5]
    assert len(sl) == 2
    sl.clear()
    assert len(sl) == 0


def test_sorted_key_list_indexing():
    sl = SortedKeyList(False)
    sl.add("a", SimpleKey(3))
    sl.add("b", SimpleKey(7))
    assert sl[-1][0] == "a"
    assert sl[0][0] == "b"


def test_group_or(store):
    reader, tree = store
    group = Group(False, False, True)
    for kind in range(1, 4):
        group.add(make_scanner(reader, tree, kind))

    k = next(group)
    assert (k.time(), k.uid()) == (10, u64(1))
    k = next(group)
    assert (k.time(), k.uid()) == (10, u64(2))
    k = next(group)
    assert (k.time(), k.uid()) == (10, u64(3))
    k = next(group)
    assert (k.time(), k.uid()) == (20, u64(6))


def test_group_and(store):
    reader, tree = store
    group = Group(False, True, True)
    for kind in range(1, 3):
        group.add(make_scanner(reader, tree, kind))

    k = next(group)
    assert k.uid() == u64(3)
    assert next(group, None) is None


def test_group_and_with_empty_scanner(store):
    reader, tree = store
    group = Group(False, True, True)
    group.add(make_scanner(reader, tree, 1))
    group.add(make_scanner(reader, tree, 9))
    assert list(group) == []


def test_group_watcher_stops(store):
    reader, tree = store
    group = Group(False, False, True)
    counts = []

    def watcher(count):
        counts.append(count)
        if count > 3:
            raise LongQuery

    group.set_watcher(watcher)
    for kind in range(1, 4):
        group.add(make_scanner(reader, tree, kind))

    seen = []
    with pytest.raises(LongQuery):
        for key in group:
            seen.append(key)

    assert group.scan_times > 3
    assert counts[-1] == group.scan_times
    assert len(seen) < 9


def test_single_scanner_group(store):
    reader, tree = store
    group = Group(False, False, False)
    group.add(make_scanner(reader, tree, 2))
    assert [k.uid() for k in group] == [u64(3), u64(4), u64(5)]
    assert group.scan_times == 4


def test_scanner_until(store):
    reader, tree = store
    scanner = make_scanner(reader, tree, 3, until=25)
    assert [k.uid() for k in scanner] == [u64(6), u64(7)]


def test_scanner_since(store):
    reader, tree = store
    scanner = make_scanner(reader, tree, 3, since=25)
    keys = list(scanner)
    assert [(k.time(), k.uid()) for k in keys] == [(30, u64(5))]


def test_scanner_reverse_until(store):
    reader, tree = store
    prefix = u64(2)
    inner = reader.iter_from(tree, Bound.included(Key.encode(2, 2**64 - 1)), True)
    scanner = Scanner(inner, prefix, prefix, True, None, 20, prefix_matcher)
    assert [(k.time(), k.uid()) for k in scanner] == [(10, u64(3))]


def test_scanner_continue_skips(store):
    reader, tree = store
    prefix = u64(1)

    def odd_only(scanner, entry):
        k, v = entry
        if not k.startswith(scanner.prefix):
            return MatchResult.STOP
        if int.from_bytes(v, "big") % 2 == 0:
            return MatchResult.CONTINUE
        return Found(Key(k, v))

    inner = reader.iter_from(tree, Bound.included(prefix), False)
    scanner = Scanner(inner, prefix, prefix, False, None, None, odd_only)
    assert [k.uid() for k in scanner] == [u64(1), u64(3)]
    assert scanner.times == 4