from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import timedelta
import logging

from sqlalchemy import delete, func
from sqlalchemy.orm import Session

from hospital_admin.core.clock import Clock
from hospital_admin.core.config import Settings
from hospital_admin.core.security import PasswordHasher
from hospital_admin.models.auth_log import AuthLog
from hospital_admin.models.session_log import SessionLog
from hospital_admin.services.audit import AuditLogger
from hospital_admin.services.otp import OtpEngine
from hospital_admin.services.rate_limit import InMemoryRateLimiter
from hospital_admin.services.sessions import SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupReport:
    expired_sessions: int
    expired_otp_requests: int
    pruned_session_logs: int
    pruned_auth_logs: int
    purged_rate_limit_keys: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def run_cleanup(
    db: Session,
    *,
    clock: Clock,
    settings: Settings,
    audit: AuditLogger,
    hasher: PasswordHasher,
    rate_limiter: InMemoryRateLimiter | None = None,
) -> CleanupReport:
    """Expire stale sessions and OTP rows, then prune logs past retention.

    Everything runs in one transaction. A second run with nothing newly
    expired changes nothing.
    """
    now = clock.now()
    store = SessionStore(db, clock=clock, audit=audit)
    otp_engine = OtpEngine(db, hasher=hasher, clock=clock)

    try:
        expired_ids = store.expire_stale()
        expired_otps = otp_engine.purge_expired()

        horizon = now - timedelta(days=settings.log_retention_days)
        terminal_at = func.coalesce(SessionLog.revoked_at, SessionLog.expired_at, SessionLog.logged_at)
        pruned_session_logs = db.execute(delete(SessionLog).where(terminal_at < horizon)).rowcount or 0
        pruned_auth_logs = db.execute(delete(AuthLog).where(AuthLog.timestamp < horizon)).rowcount or 0
        db.commit()
    except Exception:
        db.rollback()
        raise

    purged_keys = rate_limiter.purge_expired() if rate_limiter is not None else 0
    report = CleanupReport(
        expired_sessions=len(expired_ids),
        expired_otp_requests=expired_otps,
        pruned_session_logs=pruned_session_logs,
        pruned_auth_logs=pruned_auth_logs,
        purged_rate_limit_keys=purged_keys,
    )
    logger.info("Cleanup finished: %s", report.as_dict())
    return report
