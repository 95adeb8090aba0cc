import logging

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from hospital_admin.api.deps import get_audit_logger, get_clock, get_db, get_hasher
from hospital_admin.core.clock import Clock
from hospital_admin.core.config import Settings, get_settings
from hospital_admin.core.exceptions import SessionInvalidError
from hospital_admin.core.security import PasswordHasher, constant_time_equals
from hospital_admin.services.audit import AuditLogger
from hospital_admin.services.cleanup import run_cleanup

router = APIRouter()
logger = logging.getLogger(__name__)


def require_cron_secret(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    # With no secret configured the endpoint is closed.
    expected = f"Bearer {settings.cron_secret}" if settings.cron_secret else None
    if not constant_time_equals(authorization, expected):
        logger.warning("Rejected cleanup trigger with missing or wrong cron secret")
        raise SessionInvalidError("Unauthorized")


@router.get("/cleanup", dependencies=[Depends(require_cron_secret)])
def cleanup(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
    audit: AuditLogger = Depends(get_audit_logger),
    hasher: PasswordHasher = Depends(get_hasher),
) -> dict:
    report = run_cleanup(
        db,
        clock=clock,
        settings=settings,
        audit=audit,
        hasher=hasher,
        rate_limiter=request.app.state.rate_limiter,
    )
    return {"success": True, **report.as_dict()}
