"""Helpers for benchmarks: random data generation and rate formatting."""

from __future__ import annotations

import math
import random
import string
from typing import Sequence, TypeVar

T = TypeVar("T")

_ALPHANUMERIC = string.ascii_letters + string.digits


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into lists of at most ``size`` elements."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


def gen_bytes(length: int) -> bytes:
    """Random bytes of the given length."""
    return random.randbytes(length)


def gen_str(length: int) -> bytes:
    """Random ASCII alphanumeric bytes of the given length."""
    return "".join(random.choices(_ALPHANUMERIC, k=length)).encode("ascii")


def gen_pairs(klen: int, vlen: int, length: int) -> list[tuple[bytes, bytes]]:
    """``length`` pairs of random byte keys and alphanumeric values."""
    return [(gen_bytes(klen), gen_str(vlen)) for _ in range(length)]


def gen_num_pair() -> tuple[bytes, bytes]:
    """A pair of random unsigned 64-bit numbers, big-endian encoded."""
    return random.getrandbits(64).to_bytes(8, "big"), random.getrandbits(64).to_bytes(8, "big")


def fmt_num(count: float) -> str:
    """Format a count with one decimal and a K, M or G suffix."""
    if count < 1_000.0:
        return f"{count:.1f}"
    if count < 1_000_000.0:
        return f"{count / 1_000.0:.1f}K"
    if count < 1_000_000_000.0:
        return f"{count / 1_000_000.0:.1f}M"
    return f"{count / 1_000_000_000.0:.1f}G"


def fmt_per_sec(count: int, seconds: float) -> str:
    """Format ``count`` events over ``seconds`` as a rate per second."""
    if seconds:
        rate = count / seconds
    else:
        rate = math.inf if count else math.nan
    return f"{fmt_num(rate)}/s"