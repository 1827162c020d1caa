"""Authenticated identity and the auth event channel.

Services never look up "the current user" on their own: the HTTP layer builds
a :class:`Session` for the authenticated user and hands it to each service
constructor. Sign-up, sign-in and sign-out are published on an
:class:`AuthEventChannel` owned by the application.
"""
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class AuthEvent(str, Enum):
    SIGNED_UP = "signed_up"
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"


@dataclass(frozen=True)
class Session:
    user_id: uuid.UUID
    email: str
    organization_name: str | None = None

    @classmethod
    def from_user(cls, user) -> "Session":
        return cls(user_id=user.id, email=user.email, organization_name=user.organization_name)


AuthListener = Callable[[AuthEvent, "Session | None"], None]


class AuthEventChannel:
    """Observer channel for auth state changes."""

    def __init__(self) -> None:
        self._listeners: list[AuthListener] = []

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener and return the function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: AuthEvent, session: Session | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:
                logger.exception("Auth listener failed for event %s", event.value)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
