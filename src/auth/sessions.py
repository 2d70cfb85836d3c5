"""In-memory browser sessions: delegated Graph token plus user profile, with expiry sweep."""

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from pydantic import BaseModel

from src.config import (
    SESSION_REFRESH_EXTENSION_SECONDS,
    SESSION_REFRESH_THRESHOLD_SECONDS,
    SESSION_SWEEP_INTERVAL_SECONDS,
)
from src.errors import AuthError, ProviderError
from src.graph.models import UserProfile
from src.utils.logger import get_logger
from src.utils.periodic import PeriodicTask

logger = get_logger("change_relay.auth.sessions")

ProfileFetcher = Callable[[str], Awaitable[UserProfile]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    session_id: str
    access_token: str
    expires_at: datetime
    user_profile: UserProfile


class SessionStore:
    """Owns every live session for this process.

    A session is visible through :meth:`get` only while ``now < expires_at``.
    Expired entries are dropped lazily on lookup and eagerly by the periodic sweep.
    """

    def __init__(
        self,
        fetch_profile: ProfileFetcher,
        clock: Callable[[], datetime] = _utcnow,
        sweep_interval_seconds: float = SESSION_SWEEP_INTERVAL_SECONDS,
    ):
        self._sessions: dict[str, Session] = {}
        self._fetch_profile = fetch_profile
        self._clock = clock
        self._sweeper = PeriodicTask("session_sweep", sweep_interval_seconds, self.sweep)

    def __len__(self) -> int:
        return len(self._sessions)

    def create(
        self,
        session_id: str,
        access_token: str,
        expires_at: datetime,
        profile: UserProfile,
    ) -> Session:
        session = Session(
            session_id=session_id,
            access_token=access_token,
            expires_at=expires_at,
            user_profile=profile,
        )
        self._sessions[session_id] = session
        logger.info("sessions.created", session_id=session_id[:8], expires_at=expires_at.isoformat())
        return session

    def get(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.expires_at <= self._clock():
            self._sessions.pop(session_id, None)
            logger.info("sessions.expired_on_lookup", session_id=session_id[:8])
            return None
        return session

    def require(self, session_id: str | None) -> Session:
        session = self.get(session_id)
        if session is None:
            raise AuthError("Not signed in or session expired")
        return session

    def delete(self, session_id: str | None) -> None:
        if session_id and self._sessions.pop(session_id, None) is not None:
            logger.info("sessions.deleted", session_id=session_id[:8])

    async def refresh_if_near_expiry(self, session: Session) -> bool:
        """Re-validate a session close to expiry by re-fetching the profile.

        Returns False when re-validation failed; the caller must delete the session.
        """
        now = self._clock()
        remaining = (session.expires_at - now).total_seconds()
        if remaining >= SESSION_REFRESH_THRESHOLD_SECONDS:
            return True
        logger.info("sessions.refresh_attempt", session_id=session.session_id[:8], remaining=int(remaining))
        try:
            profile = await self._fetch_profile(session.access_token)
        except (ProviderError, AuthError) as e:
            logger.warning("sessions.refresh_failed", session_id=session.session_id[:8], error=str(e))
            return False
        session.expires_at = now + timedelta(seconds=SESSION_REFRESH_EXTENSION_SECONDS)
        session.user_profile = profile
        logger.info("sessions.refreshed", session_id=session.session_id[:8], expires_at=session.expires_at.isoformat())
        return True

    def sweep(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("sessions.sweep", removed=len(expired), remaining=len(self._sessions))
        return len(expired)

    def start(self) -> None:
        self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()
