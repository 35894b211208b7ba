"""Access lists for reading and writing, and the check against them."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Iterable, Mapping, Optional


class PermissionDenied(Exception):
    """Raised when a client is not allowed to do what it asked."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def _string_set(name: str, value: Any) -> Optional[frozenset[str]]:
    if value is None:
        return None
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise ValueError(f"{name} must be a list of strings")
    items = list(value)
    if not all(isinstance(item, str) for item in items):
        raise ValueError(f"{name} must be a list of strings")
    return frozenset(items)


@dataclass(frozen=True)
class Permission:
    """White- and blacklists of client IPs, authenticated pubkeys and event authors.

    A list that is None is not checked.
    """

    ip_whitelist: Optional[frozenset[str]] = None
    pubkey_whitelist: Optional[frozenset[str]] = None
    ip_blacklist: Optional[frozenset[str]] = None
    pubkey_blacklist: Optional[frozenset[str]] = None
    event_pubkey_whitelist: Optional[frozenset[str]] = None
    event_pubkey_blacklist: Optional[frozenset[str]] = None

    def __post_init__(self) -> None:
        for field in fields(self):
            object.__setattr__(
                self, field.name, _string_set(field.name, getattr(self, field.name))
            )

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Permission":
        """Build from a configuration mapping; unknown keys are ignored."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError("permission must be a mapping")
        names = {field.name for field in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in names})


@dataclass(frozen=True)
class AuthSetting:
    """Settings of authentication: ``req`` guards reading, ``event`` guards writing."""

    enabled: bool = False
    req: Optional[Permission] = None
    event: Optional[Permission] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "AuthSetting":
        """Build from a configuration mapping; missing keys take their defaults."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError("auth setting must be a mapping")
        enabled = data.get("enabled", False)
        if not isinstance(enabled, bool):
            raise ValueError("enabled must be a boolean")
        req = data.get("req")
        event = data.get("event")
        return cls(
            enabled=enabled,
            req=None if req is None else Permission.from_dict(req),
            event=None if event is None else Permission.from_dict(event),
        )


def verify_permission(
    permission: Optional[Permission],
    pubkey: Optional[str],
    event_pubkey: Optional[str],
    ip: str,
) -> None:
    """Raise PermissionDenied if ``permission`` forbids this client.

    ``pubkey`` is the authenticated key of the client, if any; ``event_pubkey``
    is the author of the event being written, if any.
    """
    if permission is None:
        return

    if permission.ip_whitelist is not None and ip not in permission.ip_whitelist:
        raise PermissionDenied("ip not in whitelist")
    if permission.ip_blacklist is not None and ip in permission.ip_blacklist:
        raise PermissionDenied("ip in blacklist")

    if event_pubkey is not None:
        whitelist = permission.event_pubkey_whitelist
        if whitelist is not None and event_pubkey not in whitelist:
            raise PermissionDenied("event author pubkey not in whitelist")
        blacklist = permission.event_pubkey_blacklist
        if blacklist is not None and event_pubkey in blacklist:
            raise PermissionDenied("event author pubkey in blacklist")

    if permission.pubkey_whitelist is not None:
        if pubkey is None:
            raise PermissionDenied("NIP-42 auth required")
        if pubkey not in permission.pubkey_whitelist:
            raise PermissionDenied("pubkey not in whitelist")
    if permission.pubkey_blacklist is not None:
        if pubkey is None:
            raise PermissionDenied("NIP-42 auth required")
        if pubkey in permission.pubkey_blacklist:
            raise PermissionDenied("pubkey in blacklist")