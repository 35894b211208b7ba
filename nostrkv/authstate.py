"""Per-connection authentication state and the checks that depend on it."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

AUTH_EVENT_KIND = 22242
PROTECTED_TAG = "-"


class AuthRequired(Exception):
    """Raised when a message needs an authentication the client does not have."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def __str__(self) -> str:
        return f"auth-required: {self.reason}"


class _Stage(enum.Enum):
    CHALLENGE = "challenge"
    PUBKEY = "pubkey"


@dataclass(frozen=True)
class AuthState:
    """Either a pending challenge sent to the client, or the pubkey it proved."""

    stage: _Stage
    value: str

    @classmethod
    def challenge(cls, value: Optional[str] = None) -> "AuthState":
        """A pending challenge; a random one is made when ``value`` is None."""
        return cls(_Stage.CHALLENGE, str(uuid.uuid4()) if value is None else value)

    @classmethod
    def authenticated(cls, pubkey: str) -> "AuthState":
        """The state of a client that proved it holds ``pubkey``."""
        return cls(_Stage.PUBKEY, pubkey)

    def authed(self) -> bool:
        """Whether the client has authenticated."""
        return self.stage is _Stage.PUBKEY

    def pubkey(self) -> Optional[str]:
        """The authenticated pubkey, or None while the challenge is pending."""
        return self.value if self.authed() else None


def authenticate(
    state: Optional[AuthState],
    kind: int,
    tags: Iterable[Sequence[str]],
    pubkey: str,
) -> AuthState:
    """Answer a pending challenge with an auth event and return the new state.

    The event must be of the auth kind and carry a ``challenge`` tag holding
    the challenge that was sent; otherwise AuthRequired is raised.
    """
    if state is not None and state.stage is _Stage.CHALLENGE and kind == AUTH_EVENT_KIND:
        for tag in tags:
            if len(tag) > 1 and tag[0] == "challenge" and tag[1] == state.value:
                return AuthState.authenticated(pubkey)
    raise AuthRequired("need reconnect")


def check_protected(
    state: Optional[AuthState],
    tags: Iterable[Sequence[str]],
    event_pubkey: str,
) -> bool:
    """Check that a protected event is published by its authenticated author.

    Returns whether the event is protected; raises AuthRequired if it is and
    the client may not publish it.
    """
    for tag in tags:
        if len(tag) == 1 and tag[0] == PROTECTED_TAG:
            if state is None or not state.authed():
                raise AuthRequired("this event require authorization")
            if state.pubkey() != event_pubkey:
                raise AuthRequired("this event may only be published by its author")
            return True
    return False