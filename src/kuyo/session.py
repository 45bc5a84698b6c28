"""Session manager: owns the single process-wide session record."""

from __future__ import annotations

import platform
import random
import socket
import string
import sys

import structlog

from config import KuyoEnvironment

from .models import Session, now_ms
from .stores import SessionStore

logger = structlog.get_logger(__name__)

SDK_NAME = "kuyo-sdk"
SDK_VERSION = "0.1.0"

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    """Encode a non-negative integer in base 36."""
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_session_id() -> str:
    """Return `kuyo_<ms base36>_<random base36>`.

    Unique enough for session scope; not meant to be unguessable.
    """
    return f"kuyo_{_to_base36(now_ms())}_{_to_base36(random.getrandbits(64))}"


def default_user_agent() -> str:
    """Describe this SDK, interpreter and OS, in user-agent form."""
    return (
        f"{SDK_NAME}/{SDK_VERSION} "
        f"{platform.python_implementation()}/{platform.python_version()} ({sys.platform})"
    )


def default_ip_address() -> str:
    """Best-effort local address of this host."""
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError:
        return "127.0.0.1"


class SessionManager:
    """Creates the session lazily and reuses it for the process lifetime.

    Other components only read `current_session().id`; the manager is the
    single place where the record is created, persisted and ended.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        environment: KuyoEnvironment,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> None:
        self._store = store
        self._environment = environment
        self._user_agent = user_agent
        self._ip_address = ip_address
        self._session: Session | None = None

    def current_session(self) -> Session:
        """Return the live session, loading or synthesizing it on first use."""
        if self._session is not None:
            return self._session

        session = self._store.load()
        if session is None:
            session = Session(
                id=generate_session_id(),
                environment=self._environment,
                started_at=now_ms(),
                user_agent=self._user_agent or default_user_agent(),
                ip_address=self._ip_address or default_ip_address(),
            )
            self._store.save(session)
            logger.debug("Session started", session_id=session.id)
        else:
            logger.debug("Session resumed", session_id=session.id)

        self._session = session
        return session

    def end_session(self) -> Session | None:
        """End the live session.

        Returns a snapshot stamped with `ended_at`/`duration`, or None if no
        session was live. The persisted record is cleared so the next
        `current_session()` starts a new one.
        """
        session = self._session or self._store.load()
        self._store.clear()
        self._session = None
        if session is None:
            return None

        ended_at = now_ms()
        ended = session.model_copy(update={"ended_at": ended_at, "duration": ended_at - session.started_at})
        logger.debug("Session ended", session_id=ended.id, duration_ms=ended.duration)
        return ended
