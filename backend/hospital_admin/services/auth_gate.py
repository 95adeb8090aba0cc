from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hospital_admin.core.clock import Clock, as_utc
from hospital_admin.core.security import is_valid_session_token
from hospital_admin.models.auth_log import AuthAction
from hospital_admin.models.session import AuthSession
from hospital_admin.models.user import User
from hospital_admin.services.audit import AuditLogger, AuthEvent
from hospital_admin.services.devices import ClientContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionResolution:
    valid: bool
    user: User | None = None
    session: AuthSession | None = None


INVALID = SessionResolution(valid=False)


def resolve_session(
    db: Session,
    session_id: str | None,
    *,
    clock: Clock,
    audit: AuditLogger,
    client: ClientContext,
) -> SessionResolution:
    """Turn a session token into its user and session, or report it invalid.

    The only write on the invalid path is the audit row for a session that a
    live request found expired; the expired row itself is left for the
    cleanup sweep.
    """
    if not is_valid_session_token(session_id):
        return INVALID

    try:
        row = db.execute(
            select(AuthSession, User)
            .join(User, User.id == AuthSession.user_id)
            .where(AuthSession.id == session_id)
        ).first()
        if row is None:
            return INVALID
        session, user = row

        now = clock.now()
        expires_at = as_utc(session.expires_at)
        if expires_at <= now:
            audit.record(
                AuthEvent(
                    user_id=session.user_id,
                    action=AuthAction.session_expired_client_validate,
                    timestamp=now,
                    session_id=session.id,
                    client=client,
                    details={"expired_at": expires_at.isoformat(), "checked_at": now.isoformat()},
                )
            )
            return INVALID

        if not user.is_active:
            return INVALID

        session.last_activity_at = now
        db.commit()
        return SessionResolution(valid=True, user=user, session=session)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Session verification failed")
        return INVALID
