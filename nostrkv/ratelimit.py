"""Per-IP rate limiting of written events, with kind filters and IP whitelists."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

U64_MAX = 2**64 - 1
U32_MAX = 2**32 - 1
NANOS_PER_SECOND = 1_000_000_000

Clock = Callable[[], int]
Seconds = Union[int, float]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _to_nanos(seconds: Seconds) -> int:
    if _is_int(seconds):
        return seconds * NANOS_PER_SECOND
    if isinstance(seconds, float):
        return round(seconds * NANOS_PER_SECOND)
    raise ValueError("a duration must be a number of seconds")


def _positive_duration(name: str, value: Any) -> float:
    if not (_is_int(value) or isinstance(value, float)) or value <= 0:
        raise ValueError(f"{name} must be a positive number of seconds")
    return value


def _positive_limit(value: Any) -> int:
    if not _is_int(value) or not 0 < value <= U32_MAX:
        raise ValueError("limit must be a positive 32-bit integer")
    return value


def _u64(value: Any) -> int:
    if not _is_int(value) or not 0 <= value <= U64_MAX:
        raise ValueError("a kind must be an unsigned 64-bit integer")
    return value


@dataclass(frozen=True)
class KindRange:
    """A range of event kinds, ``start`` included and ``end`` excluded."""

    start: int
    end: int

    @classmethod
    def parse(cls, value: Any) -> "KindRange":
        """Parse a single kind ``n`` (meaning ``[n, n+1)``) or a pair ``[start, end]``."""
        if _is_int(value):
            kind = _u64(value)
            if kind == U64_MAX:
                raise ValueError("kind is too large to form a range")
            return cls(kind, kind + 1)
        if isinstance(value, (list, tuple)):
            if len(value) != 2:
                raise ValueError("a kind range must have exactly two bounds")
            return cls(_u64(value[0]), _u64(value[1]))
        raise ValueError("a kind range must be an integer or a pair of integers")

    def contains(self, value: int) -> bool:
        """Whether ``value`` lies in the range."""
        return self.start <= value < self.end


def parse_ranges(values: Iterable[Any]) -> tuple[KindRange, ...]:
    """Parse a list mixing single kinds and ``[start, end]`` pairs."""
    if isinstance(values, (str, bytes, Mapping)) or not isinstance(values, Iterable):
        raise ValueError("kinds must be a list")
    return tuple(KindRange.parse(value) for value in values)


@dataclass(frozen=True)
class Quota:
    """A cell rate: one cell replenished per interval, at most ``max_burst`` at once."""

    replenish_interval_ns: int
    max_burst: int

    @classmethod
    def with_period(cls, period: Seconds, limit: int) -> "Quota":
        """Allow ``limit`` cells per ``period`` seconds, all of them in one burst."""
        limit = _positive_limit(limit)
        interval = _to_nanos(_positive_duration("period", period)) // limit
        if interval <= 0:
            raise ValueError("period is too short for the limit")
        return cls(interval, limit)

    @classmethod
    def per_second(cls, limit: int) -> "Quota":
        """Allow ``limit`` cells per second."""
        return cls.with_period(1, limit)


class RateLimitExceeded(Exception):
    """Raised when a key has used up its quota."""

    def __init__(self, reason: str = "", *, name: str = "", wait: float = 0.0) -> None:
        super().__init__(reason)
        self.reason = reason
        self.name = name
        self.wait = wait

    def __str__(self) -> str:
        return f"rate-limited: {self.reason}"


class KeyedRateLimiter:
    """A generic cell rate limiter keeping one state per key."""

    def __init__(self, quota: Quota, clock: Clock = time.monotonic_ns) -> None:
        self.quota = quota
        self._clock = clock
        self._tats: dict[str, int] = {}
        self._lock = threading.Lock()

    def check_key(self, key: str) -> None:
        """Take one cell for ``key``; raise RateLimitExceeded if none is left."""
        interval = self.quota.replenish_interval_ns
        tolerance = interval * self.quota.max_burst
        with self._lock:
            now = self._clock()
            arrival = max(self._tats.get(key, now), now) + interval
            if arrival - now > tolerance:
                wait_ns = arrival - now - tolerance
                raise RateLimitExceeded(wait=wait_ns / NANOS_PER_SECOND)
            self._tats[key] = arrival

    def retain_recent(self) -> None:
        """Forget keys whose quota has fully replenished."""
        with self._lock:
            now = self._clock()
            self._tats = {key: tat for key, tat in self._tats.items() if tat > now}

    def __len__(self) -> int:
        return len(self._tats)


@dataclass(frozen=True)
class EventQuota:
    """A limit on writing events, optionally only for some kinds."""

    period: float
    limit: int
    name: str = ""
    description: str = ""
    kinds: Optional[tuple[KindRange, ...]] = None
    ip_whitelist: Optional[frozenset[str]] = None

    def __post_init__(self) -> None:
        _positive_duration("period", self.period)
        _positive_limit(self.limit)
        if self.kinds is not None:
            object.__setattr__(self, "kinds", tuple(self.kinds))
        if self.ip_whitelist is not None:
            object.__setattr__(self, "ip_whitelist", frozenset(self.ip_whitelist))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EventQuota":
        """Build from a configuration mapping; ``period`` and ``limit`` are required."""
        if not isinstance(data, Mapping):
            raise ValueError("event quota must be a mapping")
        for required in ("period", "limit"):
            if required not in data:
                raise ValueError(f"missing field `{required}`")
        name = data.get("name", "")
        description = data.get("description", "")
        if not isinstance(name, str) or not isinstance(description, str):
            raise ValueError("name and description must be strings")
        kinds = data.get("kinds")
        whitelist = data.get("ip_whitelist")
        if whitelist is not None:
            if isinstance(whitelist, (str, bytes)) or not all(
                isinstance(ip, str) for ip in whitelist
            ):
                raise ValueError("ip_whitelist must be a list of strings")
        return cls(
            period=data["period"],
            limit=data["limit"],
            name=name,
            description=description,
            kinds=None if kinds is None else parse_ranges(kinds),
            ip_whitelist=None if whitelist is None else frozenset(whitelist),
        )

    def hit(self, kind: int, ip: str) -> bool:
        """Whether an event of ``kind`` from ``ip`` counts against this quota."""
        if self.ip_whitelist is not None and ip in self.ip_whitelist:
            return False
        if self.kinds is not None:
            return any(kind_range.contains(kind) for kind_range in self.kinds)
        return True

    def quota(self) -> Quota:
        """The cell rate this quota allows."""
        return Quota.with_period(self.period, self.limit)


@dataclass(frozen=True)
class RatelimiterSetting:
    """Settings of the rate limiter."""

    enabled: bool = False
    event: tuple[EventQuota, ...] = ()
    clear_interval: float = 60

    def __post_init__(self) -> None:
        _positive_duration("clear_interval", self.clear_interval)
        object.__setattr__(self, "event", tuple(self.event))

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "RatelimiterSetting":
        """Build from a configuration mapping; missing keys take their defaults."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError("rate limiter setting must be a mapping")
        enabled = data.get("enabled", False)
        if not isinstance(enabled, bool):
            raise ValueError("enabled must be a boolean")
        events = data.get("event", [])
        if not isinstance(events, Sequence) or isinstance(events, (str, bytes)):
            raise ValueError("event must be a list of quotas")
        return cls(
            enabled=enabled,
            event=tuple(EventQuota.from_dict(item) for item in events),
            clear_interval=data.get("clear_interval", 60),
        )


class Ratelimiter:
    """Applies every configured event quota to incoming events, keyed by IP."""

    name = "rate_limiter"

    def __init__(self, clock: Clock = time.monotonic_ns) -> None:
        self._clock = clock
        self.setting = RatelimiterSetting()
        self.event_limiters: list[KeyedRateLimiter] = []
        self._clear_time = clock()
        self._clear_lock = threading.Lock()

    def configure(self, setting: Union[RatelimiterSetting, Mapping[str, Any], None]) -> None:
        """Apply new settings, replacing every limiter."""
        if not isinstance(setting, RatelimiterSetting):
            setting = RatelimiterSetting.from_dict(setting)
        self.setting = setting
        self.event_limiters = [
            KeyedRateLimiter(quota.quota(), self._clock) for quota in setting.event
        ]

    def clear(self) -> None:
        """Free memory of replenished keys, at most once per clear interval."""
        interval = _to_nanos(self.setting.clear_interval)
        with self._clear_lock:
            now = self._clock()
            if now - self._clear_time <= interval:
                return
            self._clear_time = now
        for limiter in self.event_limiters:
            limiter.retain_recent()

    def check_event(self, kind: int, ip: str) -> None:
        """Count an event of ``kind`` from ``ip``; raise RateLimitExceeded if over quota."""
        if not self.setting.enabled:
            return
        self.clear()
        for quota, limiter in zip(self.setting.event, self.event_limiters):
            if not quota.hit(kind, ip):
                continue
            try:
                limiter.check_key(ip)
            except RateLimitExceeded as exc:
                raise RateLimitExceeded(
                    quota.description, name=quota.name, wait=exc.wait
                ) from exc