from collections.abc import Callable, Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from hospital_admin.core.clock import Clock, SystemClock
from hospital_admin.core.config import Settings, get_settings
from hospital_admin.core.exceptions import SessionInvalidError
from hospital_admin.core.security import PasswordHasher, get_password_hasher
from hospital_admin.db.session import SessionLocal
from hospital_admin.models.otp_request import OtpChannel
from hospital_admin.services.audit import AuditLogger
from hospital_admin.services.auth_flows import AuthContext, AuthService
from hospital_admin.services.auth_gate import resolve_session
from hospital_admin.services.devices import ClientContext, extract_ip_address
from hospital_admin.services.notifications import EmailOtpSender, OtpSender, SmsOtpSender
from hospital_admin.services.rate_limit import RateLimiter

_system_clock = SystemClock()


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_db(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_clock() -> Clock:
    return _system_clock


def get_hasher() -> PasswordHasher:
    return get_password_hasher()


def get_audit_logger(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> AuditLogger:
    return AuditLogger(session_factory)


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_otp_senders(settings: Settings = Depends(get_settings)) -> dict[OtpChannel, OtpSender]:
    return {
        OtpChannel.email: EmailOtpSender(settings),
        OtpChannel.sms: SmsOtpSender(settings),
    }


def get_client_context(request: Request) -> ClientContext:
    ip_address = extract_ip_address(
        forwarded_for=request.headers.get("x-forwarded-for"),
        real_ip=request.headers.get("x-real-ip"),
        peer_host=request.client.host if request.client else None,
    )
    return ClientContext.from_headers(user_agent=request.headers.get("user-agent"), ip_address=ip_address)


def get_auth_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
    hasher: PasswordHasher = Depends(get_hasher),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    audit: AuditLogger = Depends(get_audit_logger),
    senders: dict[OtpChannel, OtpSender] = Depends(get_otp_senders),
) -> AuthService:
    return AuthService(
        db,
        settings=settings,
        clock=clock,
        hasher=hasher,
        rate_limiter=rate_limiter,
        audit=audit,
        senders=senders,
    )


def get_session_token(request: Request, settings: Settings = Depends(get_settings)) -> str | None:
    return request.cookies.get(settings.session_cookie_name)


def get_optional_auth_context(
    session_token: str | None = Depends(get_session_token),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    audit: AuditLogger = Depends(get_audit_logger),
    client: ClientContext = Depends(get_client_context),
) -> AuthContext | None:
    resolution = resolve_session(db, session_token, clock=clock, audit=audit, client=client)
    if not resolution.valid:
        return None
    return AuthContext(user=resolution.user, session=resolution.session, client=client)


def get_auth_context(context: AuthContext | None = Depends(get_optional_auth_context)) -> AuthContext:
    if context is None:
        raise SessionInvalidError()
    return context
