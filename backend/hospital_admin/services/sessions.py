from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from hospital_admin.core.clock import Clock, as_utc
from hospital_admin.models.auth_log import AuthAction
from hospital_admin.models.session import AuthSession
from hospital_admin.models.user import User
from hospital_admin.services.audit import AuditLogger, AuthEvent
from hospital_admin.services.devices import ClientContext


class SessionDuration(str, Enum):
    one_hour = "1h"
    eight_hours = "8h"
    one_day = "24h"
    one_week = "7d"

    @property
    def hours(self) -> int:
        return SESSION_DURATION_HOURS[self]


SESSION_DURATION_HOURS: dict[SessionDuration, int] = {
    SessionDuration.one_hour: 1,
    SessionDuration.eight_hours: 8,
    SessionDuration.one_day: 24,
    SessionDuration.one_week: 24 * 7,
}


def calculate_expiry(now: datetime, duration: SessionDuration) -> datetime:
    return now + timedelta(hours=duration.hours)


class SessionStore:
    """Creates, looks up and terminates sessions.

    Termination is a hard delete of the ``sessions`` row, preceded by one
    ``session_logs`` row and at least one ``auth_logs`` row. All writes join
    the caller's transaction; the caller commits once per operation so a
    batch either lands completely or not at all.
    """

    def __init__(self, db: Session, *, clock: Clock, audit: AuditLogger) -> None:
        self.db = db
        self.clock = clock
        self.audit = audit

    def create(
        self,
        user: User,
        *,
        duration: SessionDuration,
        client: ClientContext,
        login_method: str,
    ) -> AuthSession:
        now = self.clock.now()
        expires_at = calculate_expiry(now, duration)
        session = AuthSession(
            user_id=user.id,
            created_at=now,
            expires_at=expires_at,
            last_activity_at=now,
            **client.as_columns(),
        )
        self.db.add(session)
        self.db.flush()

        self.audit.stage(
            self.db,
            AuthEvent(
                user_id=user.id,
                action=AuthAction.login,
                timestamp=now,
                session_id=session.id,
                client=client,
                details={"method": login_method, "session_duration": duration.value},
            ),
        )
        self.audit.stage(
            self.db,
            AuthEvent(
                user_id=user.id,
                action=AuthAction.session_created,
                timestamp=now,
                session_id=session.id,
                client=client,
                details={"expires_at": expires_at.isoformat()},
            ),
        )
        return session

    def get(self, session_id: str) -> AuthSession | None:
        return self.db.get(AuthSession, session_id)

    def is_live(self, session: AuthSession) -> bool:
        return as_utc(session.expires_at) > self.clock.now()

    def verify(self, session_id: str) -> AuthSession | None:
        session = self.get(session_id)
        if session is None or not self.is_live(session):
            return None
        session.last_activity_at = self.clock.now()
        return session

    def list_active(self, user_id: str) -> list[AuthSession]:
        query = (
            select(AuthSession)
            .where(AuthSession.user_id == user_id, AuthSession.expires_at > self.clock.now())
            .order_by(AuthSession.last_activity_at.desc())
        )
        return list(self.db.execute(query).scalars())

    def _terminate(
        self,
        session: AuthSession,
        *,
        action: AuthAction,
        acting_session_id: str | None,
        client: ClientContext,
        now: datetime,
        details: dict | None = None,
    ) -> None:
        self.audit.stage_session_log(self.db, session, logged_at=now, revoked_at=now)
        self.audit.stage(
            self.db,
            AuthEvent(
                user_id=session.user_id,
                action=action,
                timestamp=now,
                session_id=session.id,
                acting_session_id=acting_session_id,
                client=client,
                details=details,
            ),
        )
        self.db.delete(session)

    def revoke(self, session: AuthSession, *, acting_session: AuthSession | None, client: ClientContext) -> None:
        now = self.clock.now()
        acting_id = acting_session.id if acting_session is not None else session.id
        if acting_id == session.id:
            self._terminate(session, action=AuthAction.logout_self, acting_session_id=acting_id, client=client, now=now)
            return
        self._terminate(
            session,
            action=AuthAction.logout_other,
            acting_session_id=acting_id,
            client=client,
            now=now,
            details={
                "target_session_id": session.id,
                "target_device": {
                    "browser": session.browser,
                    "os": session.os,
                    "device_type": session.device_type,
                },
            },
        )

    def _sessions_for(self, user_id: str) -> list[AuthSession]:
        query = select(AuthSession).where(AuthSession.user_id == user_id).order_by(AuthSession.created_at)
        return list(self.db.execute(query).scalars())

    def revoke_all(self, user_id: str, *, acting_session_id: str | None, client: ClientContext) -> int:
        sessions = self._sessions_for(user_id)
        current = [session for session in sessions if session.id == acting_session_id]
        others = [session for session in sessions if session.id != acting_session_id]
        now = self.clock.now()
        # Peers first, the acting session last.
        for session in others + current:
            self._terminate(
                session,
                action=AuthAction.logout_all,
                acting_session_id=acting_session_id,
                client=client,
                now=now,
            )
        return len(sessions)

    def revoke_others(self, user_id: str, *, current_session_id: str, client: ClientContext) -> int:
        others = [session for session in self._sessions_for(user_id) if session.id != current_session_id]
        now = self.clock.now()
        for session in others:
            self._terminate(
                session,
                action=AuthAction.logout_other,
                acting_session_id=current_session_id,
                client=client,
                now=now,
                details={"target_session_id": session.id},
            )
        return len(others)

    def expire_stale(self) -> list[str]:
        """Bulk path for the cleanup sweep; returns the ids that were expired."""
        now = self.clock.now()
        stale = list(self.db.execute(select(AuthSession).where(AuthSession.expires_at <= now)).scalars())
        if not stale:
            return []
        for session in stale:
            self.audit.stage_session_log(self.db, session, logged_at=now, expired_at=now)
            self.audit.stage(
                self.db,
                AuthEvent(
                    user_id=session.user_id,
                    action=AuthAction.session_expired,
                    timestamp=now,
                    session_id=session.id,
                    client=ClientContext(
                        ip_address=session.ip_address,
                        user_agent=session.user_agent,
                        browser=session.browser,
                        os=session.os,
                        device_type=session.device_type,
                    ),
                    details={"expired_at": as_utc(session.expires_at).isoformat()},
                ),
            )
        stale_ids = [session.id for session in stale]
        self.db.flush()
        self.db.execute(
            delete(AuthSession).where(AuthSession.id.in_(stale_ids)).execution_options(synchronize_session=False)
        )
        for session in stale:
            self.db.expunge(session)
        return stale_ids
