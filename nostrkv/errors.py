"""Exceptions raised by the key-value store."""


class KvError(Exception):
    """Base error of the key-value store."""


class LmdbError(KvError):
    """An error reported by the LMDB engine."""

    def __str__(self) -> str:
        return f"Lmdb error: {super().__str__()}"