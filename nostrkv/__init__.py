"""Time-ordered key-value scanning over LMDB, with relay permission, authentication and rate-limit helpers."""

__version__ = "0.1.0"

__all__ = [
    "authstate",
    "benchutil",
    "errors",
    "permission",
    "ratelimit",
    "scanner",
    "store",
]