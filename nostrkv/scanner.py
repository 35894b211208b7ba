"""Time-ordered scanning over store cursors, alone or merged in groups."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar, Union

from nostrkv.store import Bound, Iter

U64_MAX = 2**64 - 1

I = TypeVar("I")
K = TypeVar("K", bound="TimeKey")

Watcher = Callable[[int], None]


class TimeKey(abc.ABC):
    """An index key ordered by a timestamp."""

    @abc.abstractmethod
    def time(self) -> int:
        """The timestamp the key is ordered by."""

    def cmp(self, other: "TimeKey") -> int:
        """Compare with ``other``: negative, zero or positive."""
        mine, theirs = self.time(), other.time()
        return (mine > theirs) - (mine < theirs)

    @abc.abstractmethod
    def change_time(self, key: bytes, time: int) -> bytes:
        """Return the raw ``key`` with its time part replaced, to seek to."""


class SortedKeyList(Generic[I, K]):
    """Pairs of ``(item, key)`` kept so that ``pop`` yields the next key in time order.

    Without ``reverse`` the smallest time is at the back; with it, the biggest.
    """

    def __init__(self, reverse: bool = False) -> None:
        self.reverse = reverse
        self._entries: list[tuple[I, K]] = []

    def _cmp(self, existing: K, key: K) -> int:
        return existing.cmp(key) if self.reverse else key.cmp(existing)

    def add(self, item: I, key: K) -> None:
        """Insert ``item`` at the place its ``key`` belongs."""
        lo, hi = 0, len(self._entries)
        while lo < hi:
            mid = (lo + hi) // 2
            order = self._cmp(self._entries[mid][1], key)
            if order < 0:
                lo = mid + 1
            elif order > 0:
                hi = mid
            else:
                lo = mid
                break
        self._entries.insert(lo, (item, key))

    def pop(self) -> tuple[I, K]:
        """Remove and return the next pair; IndexError when empty."""
        return self._entries.pop()

    def clear(self) -> None:
        """Remove every pair."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: Any) -> Any:
        return self._entries[index]

    def __iter__(self) -> Iterator[tuple[I, K]]:
        return iter(self._entries)


class MatchResult(enum.Enum):
    """What a scanner does with a raw entry that is not a match."""

    CONTINUE = "continue"
    STOP = "stop"


@dataclass(frozen=True)
class Found(Generic[K]):
    """A matcher result carrying the key that was found."""

    key: K


Matcher = Callable[["Scanner"], Union[MatchResult, Found]]


class Scanner:
    """Walks a cursor, turning raw entries into keys and keeping to a time range."""

    def __init__(
        self,
        inner: Iter,
        key: bytes,
        prefix: bytes,
        reverse: bool,
        since: Optional[int],
        until: Optional[int],
        matcher: Callable[["Scanner", tuple[bytes, bytes]], Union[MatchResult, Found]],
    ) -> None:
        self.inner = inner
        self.key = key
        self.prefix = prefix
        self.reverse = reverse
        self.since = since
        self.until = until
        self._matcher = matcher
        self.times = 0
        self.cur_times = 0

    def set_watcher(self, watcher: Watcher) -> None:
        """Scanners are watched by the group they belong to; nothing to do."""

    def __iter__(self) -> "Scanner":
        return self

    def _out_of_range(self, found: TimeKey, raw_key: bytes) -> bool:
        """Seek past ``found`` if its time is outside the range; True if it was."""
        time = found.time()
        if self.reverse:
            if self.until is not None and time > self.until:
                self.inner.seek(Bound.included(found.change_time(raw_key, self.until)), True)
                return True
            if self.since is not None and time < self.since:
                self.inner.seek(Bound.excluded(found.change_time(raw_key, 0)), True)
                return True
        else:
            if self.since is not None and time < self.since:
                self.inner.seek(Bound.included(found.change_time(raw_key, self.since)), False)
                return True
            if self.until is not None and time > self.until:
                self.inner.seek(Bound.excluded(found.change_time(raw_key, U64_MAX)), False)
                return True
        return False

    def __next__(self) -> Any:
        self.cur_times = 0
        while True:
            self.times += 1
            self.cur_times += 1
            entry = next(self.inner, None)
            if entry is None:
                raise StopIteration
            result = self._matcher(self, entry)
            if result is MatchResult.CONTINUE:
                continue
            if result is MatchResult.STOP:
                raise StopIteration
            if self._out_of_range(result.key, entry[0]):
                continue
            return result.key


class Group:
    """Merges scanners in time order: their union, or their intersection if ``and_``.

    With ``dup``, equal keys coming from several scanners are yielded once.
    """

    def __init__(self, reverse: bool = False, and_: bool = False, dup: bool = False) -> None:
        self._onlyone: Optional[Any] = None
        self._items: list[Any] = []
        self._founds: SortedKeyList[int, Any] = SortedKeyList(reverse)
        self.scan_times = 0
        self.cur_times = 0
        self._and = and_
        self._done = False
        self._dup = dup
        self._watcher: Optional[Watcher] = None

    def set_watcher(self, watcher: Watcher) -> None:
        """Call ``watcher`` with the total scan count; it raises to stop the scan."""
        self._watcher = watcher
        if self._onlyone is not None:
            self._onlyone.set_watcher(watcher)
        for item in self._items:
            item.set_watcher(watcher)

    def _watch(self, count: int) -> None:
        self.scan_times += count
        self.cur_times += count
        if self._watcher is not None:
            self._watcher(self.scan_times)

    def _step(self, scanner: Any) -> Any:
        try:
            return next(scanner, None)
        finally:
            self._watch(scanner.cur_times)

    def add(self, scanner: Any) -> None:
        """Add a scanner (or a nested group) to the merge."""
        if self._done:
            return
        if not self._items and self._onlyone is None:
            self._onlyone = scanner
            return
        if self._onlyone is not None:
            first, self._onlyone = self._onlyone, None
            self._add_to_list(first)
        self._add_to_list(scanner)

    def _add_to_list(self, scanner: Any) -> None:
        if self._done:
            return
        index = len(self._items)
        try:
            found = next(scanner, None)
        finally:
            self.scan_times += scanner.cur_times
            self.cur_times += scanner.cur_times
        if found is not None:
            self._founds.add(index, found)
        elif self._and:
            self._done = True
            self._founds.clear()
            return
        self._items.append(scanner)

    def _advance(self, index: int) -> bool:
        found = self._step(self._items[index])
        if found is None:
            return False
        self._founds.add(index, found)
        return True

    def _next_and(self) -> Optional[Any]:
        while True:
            index, key = self._founds.pop()
            if any(other.cmp(key) != 0 for _, other in self._founds):
                if not self._advance(index):
                    # one scanner ran out, so the intersection is complete
                    self._founds.clear()
                    return None
                continue
            if not self._advance(index):
                self._founds.clear()
            return key

    def _next_or(self) -> Any:
        if self._dup:
            same = [self._founds.pop()]
            while self._founds and self._founds[-1][1].cmp(same[0][1]) == 0:
                same.append(self._founds.pop())
            index, key = same.pop()
            for other, _ in same:
                self._advance(other)
        else:
            index, key = self._founds.pop()
        self._advance(index)
        return key

    def __iter__(self) -> "Group":
        return self

    def __next__(self) -> Any:
        self.cur_times = 0
        if self._onlyone is not None:
            found = self._step(self._onlyone)
            if found is None:
                raise StopIteration
            return found
        if not self._founds or self._done:
            raise StopIteration
        found = self._next_and() if self._and else self._next_or()
        if found is None:
            raise StopIteration
        return found