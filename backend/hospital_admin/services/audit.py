from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hospital_admin.models.auth_log import AuthAction, AuthLog
from hospital_admin.models.session import AuthSession
from hospital_admin.models.session_log import SessionLog
from hospital_admin.services.devices import ClientContext

logger = logging.getLogger(__name__)


@dataclass
class AuthEvent:
    user_id: str
    action: AuthAction
    timestamp: datetime
    session_id: str | None = None
    acting_session_id: str | None = None
    client: ClientContext = field(default_factory=ClientContext)
    details: dict | None = None

    def to_row(self) -> AuthLog:
        return AuthLog(
            user_id=self.user_id,
            session_id=self.session_id,
            acting_session_id=self.acting_session_id,
            action=self.action.value,
            timestamp=self.timestamp,
            details=self.details,
            **self.client.as_columns(),
        )


def session_log_row(
    session: AuthSession,
    *,
    logged_at: datetime,
    revoked_at: datetime | None = None,
    expired_at: datetime | None = None,
) -> SessionLog:
    return SessionLog(
        session_id=session.id,
        user_id=session.user_id,
        created_at=session.created_at,
        revoked_at=revoked_at,
        expired_at=expired_at,
        logged_at=logged_at,
        ip_address=session.ip_address,
        user_agent=session.user_agent,
        browser=session.browser,
        os=session.os,
        device_type=session.device_type,
    )


class AuditLogger:
    """Append-only writer for ``auth_logs`` and ``session_logs``.

    ``stage`` joins the caller's unit of work so the audit row commits or rolls
    back together with the state change it documents. ``record`` is
    fire-and-forget: it writes through its own short-lived session and a
    database error there is logged, never raised to the caller.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def stage(self, db: Session, event: AuthEvent) -> AuthLog:
        row = event.to_row()
        db.add(row)
        return row

    def stage_session_log(
        self,
        db: Session,
        session: AuthSession,
        *,
        logged_at: datetime,
        revoked_at: datetime | None = None,
        expired_at: datetime | None = None,
    ) -> SessionLog:
        row = session_log_row(session, logged_at=logged_at, revoked_at=revoked_at, expired_at=expired_at)
        db.add(row)
        return row

    def record(self, event: AuthEvent) -> bool:
        db = self._session_factory()
        try:
            db.add(event.to_row())
            db.commit()
            return True
        except SQLAlchemyError:
            db.rollback()
            logger.warning("Failed to write auth log %s for user %s", event.action.value, event.user_id, exc_info=True)
            return False
        finally:
            db.close()


def list_auth_logs(db: Session, *, user_id: str, limit: int = 100) -> list[AuthLog]:
    query = (
        select(AuthLog)
        .where(AuthLog.user_id == user_id)
        .order_by(AuthLog.timestamp.desc())
        .limit(limit)
    )
    return list(db.execute(query).scalars())
