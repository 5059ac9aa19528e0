"""Session identifier bookkeeping, one session per connection generation."""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime

from infobyte.exceptions import SessionTimeoutError
from infobyte.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class Session:
    """A live MCP session bound to one connection generation."""

    id: str
    established_at: datetime
    generation: int


class SessionManager:
    """Holds the current session and the monotonic generation counter.

    The generation is bumped on every invalidation, so anything tagged with an
    older generation can be recognised as belonging to a dead connection.
    Waiters are woken through a future resolved exactly once per generation.
    """

    def __init__(self) -> None:
        self._session: Session | None = None
        self._generation = 0
        self._ready: asyncio.Future[Session] | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def session_id(self) -> str | None:
        return self._session.id if self._session else None

    @property
    def is_established(self) -> bool:
        return self._session is not None

    def establish(self, session_id: str) -> bool:
        """Seed the session for the current generation.

        Returns:
            True if a new session was created, False if one already exists
        """
        if self._session is not None:
            if session_id != self._session.id:
                log.debug(
                    "Ignoring session ID for already established session",
                    current=self._session.id,
                    offered=session_id,
                )
            return False

        self._session = Session(
            id=session_id,
            established_at=datetime.now(UTC),
            generation=self._generation,
        )
        log.info("Session ID established", session_id=session_id, generation=self._generation)

        if self._ready is not None and not self._ready.done():
            self._ready.set_result(self._session)
        return True

    def invalidate(self, reason: str = "") -> Session | None:
        """Tear down the current session and start a new generation."""
        previous = self._session
        self._session = None
        self._generation += 1
        if self._ready is not None and self._ready.done():
            self._ready = None
        if previous is not None:
            log.info(
                "Resetting session ID",
                session_id=previous.id,
                reason=reason or "disconnect",
                generation=self._generation,
            )
        return previous

    async def wait_established(self, timeout: float) -> Session:
        """Return the live session, waiting up to ``timeout`` seconds for one.

        Raises:
            SessionTimeoutError: If no session appears in time
        """
        if self._session is not None:
            return self._session

        if self._ready is None:
            self._ready = asyncio.get_running_loop().create_future()
        ready = self._ready

        try:
            session = await asyncio.wait_for(asyncio.shield(ready), timeout=timeout)
        except asyncio.TimeoutError:
            raise SessionTimeoutError(timeout) from None
        return self._session or session
