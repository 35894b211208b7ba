"""A thin, ordered key-value store on top of LMDB with seekable cursors."""

from __future__ import annotations

import contextlib
import os
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional, Union

import lmdb

from nostrkv.errors import KvError, LmdbError

KeyLike = Union[bytes, bytearray, memoryview, str]

# Tree (database) flags, with the values LMDB uses.
REVERSEKEY = 0x02
DUPSORT = 0x04
INTEGERKEY = 0x08
DUPFIXED = 0x10
INTEGERDUP = 0x20
CREATE = 0x40000

# Environment flags, with the values LMDB uses.
NOSUBDIR = 0x4000
NOSYNC = 0x10000
RDONLY = 0x20000
NOMETASYNC = 0x40000
WRITEMAP = 0x80000
MAPASYNC = 0x100000
NOTLS = 0x200000
NOLOCK = 0x400000
NORDAHEAD = 0x800000
NOMEMINIT = 0x1000000

_TREE_OPTIONS = {
    REVERSEKEY: "reverse_key",
    DUPSORT: "dupsort",
    INTEGERKEY: "integerkey",
    DUPFIXED: "dupfixed",
    INTEGERDUP: "integerdup",
}

_ENV_OPTIONS: dict[int, tuple[tuple[str, bool], ...]] = {
    NOSUBDIR: (("subdir", False),),
    NOSYNC: (("sync", False),),
    RDONLY: (("readonly", True),),
    NOMETASYNC: (("metasync", False),),
    WRITEMAP: (("writemap", True),),
    MAPASYNC: (("map_async", True),),
    NOTLS: (),  # always in effect
    NOLOCK: (("lock", False),),
    NORDAHEAD: (("readahead", False),),
    NOMEMINIT: (("meminit", False),),
}


@contextlib.contextmanager
def _lmdb_errors() -> Iterator[None]:
    try:
        yield
    except lmdb.Error as exc:
        raise LmdbError(str(exc)) from exc


def _to_bytes(key: KeyLike) -> bytes:
    if isinstance(key, str):
        return key.encode("utf-8")
    return bytes(key)


class _BoundKind(Enum):
    INCLUDED = "included"
    EXCLUDED = "excluded"
    UNBOUNDED = "unbounded"


@dataclass(frozen=True)
class Bound:
    """Start position of an iteration: a key included, excluded, or none."""

    kind: _BoundKind
    key: bytes = b""

    @classmethod
    def included(cls, key: KeyLike) -> "Bound":
        return cls(_BoundKind.INCLUDED, _to_bytes(key))

    @classmethod
    def excluded(cls, key: KeyLike) -> "Bound":
        return cls(_BoundKind.EXCLUDED, _to_bytes(key))

    @classmethod
    def unbounded(cls) -> "Bound":
        return cls(_BoundKind.UNBOUNDED)


@dataclass(frozen=True)
class Tree:
    """A handle to a named (or the unnamed) database inside the store."""

    handle: Any
    flags: int

    @property
    def dup(self) -> bool:
        """Whether the tree holds several sorted values per key."""
        return self.flags & DUPSORT == DUPSORT


class _Op(Enum):
    FIRST = "first"
    LAST = "last"
    NEXT = "next"
    PREV = "prev"
    NEXT_NODUP = "next_nodup"
    PREV_NODUP = "prev_nodup"
    LAST_DUP = "last_dup"
    CURRENT = "current"


class Iter:
    """Cursor iterator yielding ``(key, value)`` pairs from a tree."""

    def __init__(self, txn: "Transaction", tree: Tree) -> None:
        self._dup = tree.dup
        with _lmdb_errors():
            self._cursor = txn._txn.cursor(db=tree.handle)
        self._rev = False
        self._op = _Op.FIRST
        self._next_op = _Op.NEXT
        self._positioned = False
        self._done = False

    def _move(self, op: _Op) -> Optional[tuple[bytes, bytes]]:
        if op is _Op.CURRENT:
            if not self._positioned:
                return None
        else:
            self._positioned = getattr(self._cursor, op.value)()
            if not self._positioned:
                return None
        return bytes(self._cursor.key()), bytes(self._cursor.value())

    def _set_range(self, key: bytes) -> Optional[bytes]:
        with _lmdb_errors():
            self._positioned = self._cursor.set_range(key)
        return bytes(self._cursor.key()) if self._positioned else None

    def seek(self, start: Bound, rev: bool) -> None:
        """Reposition the iterator at ``start``, walking backwards if ``rev``."""
        self._rev = rev
        self._done = False
        if rev:
            self._next_op = _Op.PREV
            if start.kind is _BoundKind.UNBOUNDED:
                self._op = _Op.LAST
                return
            found = self._set_range(start.key)
            if found is None:
                # bigger than every key
                self._op = _Op.LAST
            elif start.kind is _BoundKind.INCLUDED:
                self._op = _Op.CURRENT
                if found > start.key:
                    self._op = _Op.PREV
                elif found == start.key and self._dup:
                    with _lmdb_errors():
                        self._move(_Op.LAST_DUP)
            else:
                self._op = _Op.PREV_NODUP if self._dup else _Op.PREV
        else:
            self._next_op = _Op.NEXT
            if start.kind is _BoundKind.UNBOUNDED:
                self._op = _Op.FIRST
                return
            found = self._set_range(start.key)
            self._op = _Op.CURRENT
            if start.kind is _BoundKind.EXCLUDED and found == start.key:
                self._op = _Op.NEXT_NODUP if self._dup else _Op.NEXT

    def __iter__(self) -> "Iter":
        return self

    def __next__(self) -> tuple[bytes, bytes]:
        if self._done:
            raise StopIteration
        op, self._op = self._op, self._next_op
        with _lmdb_errors():
            item = self._move(op)
        if item is None:
            self._done = True
            raise StopIteration
        return item


class Transaction:
    """A transaction over the store; aborted on exit unless committed."""

    def __init__(self, txn: Any) -> None:
        self._txn = txn
        self._finished = False

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.abort()

    def commit(self) -> None:
        """Commit the transaction; it cannot be used afterwards."""
        if self._finished:
            raise KvError("transaction already finished")
        self._finished = True
        with _lmdb_errors():
            self._txn.commit()

    def abort(self) -> None:
        """Discard the transaction; does nothing if already finished."""
        if self._finished:
            return
        self._finished = True
        with _lmdb_errors():
            self._txn.abort()

    def get(self, tree: Tree, key: KeyLike) -> Optional[bytes]:
        """Return the (first) value stored under ``key``, or None."""
        with _lmdb_errors():
            value = self._txn.get(_to_bytes(key), db=tree.handle)
        return None if value is None else bytes(value)

    def iter_from(self, tree: Tree, start: Bound, rev: bool) -> Iter:
        """Iterate ``tree`` from ``start``, backwards if ``rev``."""
        iterator = Iter(self, tree)
        iterator.seek(start, rev)
        return iterator

    def iter(self, tree: Tree) -> Iter:
        """Iterate the whole of ``tree`` in key order."""
        return self.iter_from(tree, Bound.unbounded(), False)


class Reader(Transaction):
    """A read-only transaction."""


class Writer(Transaction):
    """A read-write transaction."""

    def put(self, tree: Tree, key: KeyLike, value: KeyLike) -> None:
        """Store ``value`` under ``key``; adds a duplicate in dup trees."""
        with _lmdb_errors():
            self._txn.put(_to_bytes(key), _to_bytes(value), db=tree.handle)

    def delete(self, tree: Tree, key: KeyLike, value: Optional[KeyLike] = None) -> None:
        """Delete ``key`` (or one of its values); missing entries are ignored."""
        data = b"" if value is None else _to_bytes(value)
        with _lmdb_errors():
            self._txn.delete(_to_bytes(key), data, db=tree.handle)


def _check_path(path: Union[str, os.PathLike]) -> str:
    text = os.fspath(path)
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    if "\0" in text:
        raise KvError("nul byte found in path")
    return text


class Db:
    """An LMDB environment holding any number of named trees."""

    def __init__(self, env: Any) -> None:
        self._env = env
        self._trees: dict[Optional[str], Any] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "Db":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @classmethod
    def open(cls, path: Union[str, os.PathLike]) -> "Db":
        """Open (creating if needed) a store with the default limits."""
        return cls.open_with(path, 20, 100, 1_000_000_000_000, 0)

    @classmethod
    def open_with(
        cls,
        path: Union[str, os.PathLike],
        maxdbs: Optional[int] = None,
        maxreaders: Optional[int] = None,
        mapsize: Optional[int] = None,
        flags: int = 0,
    ) -> "Db":
        """Open a store with explicit limits and LMDB environment flags."""
        text = _check_path(path)
        unknown = flags & ~sum(_ENV_OPTIONS)
        if unknown:
            raise KvError(f"unsupported environment flags: {unknown:#x}")
        try:
            Path(text).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise KvError(f"Failed to create LMDB directory: `{exc!r}`.") from exc

        options: dict[str, Any] = {"mode": 0o644}
        for bit, settings in _ENV_OPTIONS.items():
            if flags & bit:
                options.update(settings)
        if maxdbs is not None:
            options["max_dbs"] = maxdbs
        if maxreaders is not None:
            options["max_readers"] = maxreaders
        if mapsize is not None:
            options["map_size"] = mapsize
        with _lmdb_errors():
            env = lmdb.open(text, **options)
        return cls(env)

    def writer(self) -> Writer:
        """Begin a read-write transaction."""
        with _lmdb_errors():
            return Writer(self._env.begin(write=True))

    def reader(self) -> Reader:
        """Begin a read-only transaction."""
        with _lmdb_errors():
            return Reader(self._env.begin(write=False))

    def open_tree(self, name: Optional[str] = None, flags: int = 0) -> Tree:
        """Open the tree ``name`` (None for the unnamed one), creating it."""
        if name is not None and "\0" in name:
            raise KvError("nul byte found in tree name")
        unknown = flags & ~(sum(_TREE_OPTIONS) | CREATE)
        if unknown:
            raise KvError(f"unsupported tree flags: {unknown:#x}")
        with self._lock:
            handle = self._trees.get(name)
            if handle is not None:
                return Tree(handle, flags)
            options = {opt: bool(flags & bit) for bit, opt in _TREE_OPTIONS.items()}
            key = None if name is None else name.encode("utf-8")
            with _lmdb_errors():
                handle = self._env.open_db(key, create=True, **options)
            self._trees[name] = handle
            return Tree(handle, flags | CREATE)

    def drop_tree(self, name: Optional[str] = None) -> bool:
        """Delete an opened tree and its content; False if it was not open."""
        with self._lock:
            handle = self._trees.pop(name, None)
            if handle is None:
                return False
            with self.writer() as writer:
                with _lmdb_errors():
                    writer._txn.drop(handle, delete=True)
                writer.commit()
            return True

    def flush(self) -> None:
        """Force the data to disk."""
        with _lmdb_errors():
            self._env.sync(True)

    def close(self) -> None:
        """Close the environment; its trees and transactions become invalid."""
        with self._lock:
            self._trees.clear()
            self._env.close()