import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from hospital_admin.api.deps import (
    get_auth_context,
    get_auth_service,
    get_client_context,
    get_db,
    get_optional_auth_context,
)
from hospital_admin.core.clock import as_utc
from hospital_admin.core.config import Settings, get_settings
from hospital_admin.models.otp_request import OtpChannel
from hospital_admin.models.session import AuthSession
from hospital_admin.schemas.auth import (
    EmailOtpRequest,
    LogoutManyOut,
    OtpRequestOut,
    OtpVerifyRequest,
    PasswordConfirm,
    PhoneOtpRequest,
    SuccessOut,
    ValidateOut,
)
from hospital_admin.schemas.auth_log import AuthLogListOut, AuthLogOut
from hospital_admin.schemas.session import LoginOut, SessionListOut, SessionOut
from hospital_admin.schemas.user import UserOut
from hospital_admin.services.audit import list_auth_logs
from hospital_admin.services.auth_flows import AuthContext, AuthService
from hospital_admin.services.devices import ClientContext
from hospital_admin.services.sessions import SessionDuration

router = APIRouter()
logger = logging.getLogger(__name__)


def set_session_cookie(response: Response, session: AuthSession, duration: SessionDuration, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session.id,
        max_age=duration.hours * 3600,
        expires=as_utc(session.expires_at),
        path="/",
        domain=settings.cookie_domain,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="lax",
    )


@router.post("/email/request-otp", response_model=OtpRequestOut)
def request_email_otp(
    payload: EmailOtpRequest,
    service: AuthService = Depends(get_auth_service),
    client: ClientContext = Depends(get_client_context),
) -> OtpRequestOut:
    dispatch = service.request_otp(
        identifier=payload.email,
        password=payload.password,
        channel=OtpChannel.email,
        client=client,
    )
    return OtpRequestOut(expires_at=dispatch.expires_at, otp_hint=dispatch.otp_hint)


@router.post("/phone/request-otp", response_model=OtpRequestOut)
def request_phone_otp(
    payload: PhoneOtpRequest,
    service: AuthService = Depends(get_auth_service),
    client: ClientContext = Depends(get_client_context),
) -> OtpRequestOut:
    dispatch = service.request_otp(
        identifier=payload.phone,
        password=payload.password,
        channel=OtpChannel.sms,
        client=client,
    )
    return OtpRequestOut(expires_at=dispatch.expires_at, otp_hint=dispatch.otp_hint)


@router.post("/verify-otp", response_model=LoginOut)
def verify_otp(
    payload: OtpVerifyRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    client: ClientContext = Depends(get_client_context),
    settings: Settings = Depends(get_settings),
) -> LoginOut:
    duration = payload.session_duration or SessionDuration(settings.default_session_duration)
    result = service.verify_otp(
        identifier=payload.identifier,
        password=payload.password,
        otp=payload.otp,
        duration=duration,
        client=client,
    )
    set_session_cookie(response, result.session, duration, settings)
    logger.info("User %s signed in with a %s session", result.user.id, duration.value)
    return LoginOut(
        user=UserOut.model_validate(result.user),
        expires_at=as_utc(result.session.expires_at),
        session_duration=duration.value,
    )


@router.post("/logout", response_model=SuccessOut)
def logout(
    response: Response,
    context: AuthContext | None = Depends(get_optional_auth_context),
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> SuccessOut:
    # An absent or dead session is already logged out; only the cookie needs clearing.
    if context is not None:
        service.logout(context)
    clear_session_cookie(response, settings)
    return SuccessOut()


@router.post("/logout-all", response_model=LogoutManyOut)
def logout_all(
    payload: PasswordConfirm,
    response: Response,
    context: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> LogoutManyOut:
    count = service.logout_all(context, password=payload.password)
    clear_session_cookie(response, settings)
    return LogoutManyOut(sessions_deleted=count)


@router.post("/logout-other", response_model=LogoutManyOut)
def logout_other(
    payload: PasswordConfirm,
    context: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
) -> LogoutManyOut:
    count = service.logout_other(context, password=payload.password)
    return LogoutManyOut(sessions_deleted=count)


@router.get("/sessions", response_model=SessionListOut)
def list_sessions(
    context: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
) -> SessionListOut:
    sessions = [
        SessionOut.model_validate(session).model_copy(update={"is_current": is_current})
        for session, is_current in service.list_sessions(context)
    ]
    return SessionListOut(sessions=sessions)


@router.delete("/sessions/{session_id}", response_model=SuccessOut, status_code=status.HTTP_200_OK)
def revoke_session(
    session_id: str,
    response: Response,
    context: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> SuccessOut:
    if service.revoke_session(context, session_id):
        clear_session_cookie(response, settings)
    return SuccessOut()


@router.get("/me", response_model=UserOut)
def me(context: AuthContext = Depends(get_auth_context)) -> UserOut:
    return UserOut.model_validate(context.user)


@router.get("/logs", response_model=AuthLogListOut)
def my_auth_logs(
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
) -> AuthLogListOut:
    rows = list_auth_logs(db, user_id=context.user.id, limit=100)
    return AuthLogListOut(logs=[AuthLogOut.model_validate(row) for row in rows])


@router.get("/validate", response_model=ValidateOut)
def validate_session(
    response: Response,
    context: AuthContext | None = Depends(get_optional_auth_context),
) -> ValidateOut:
    if context is None:
        response.status_code = status.HTTP_401_UNAUTHORIZED
        return ValidateOut(valid=False)
    return ValidateOut(
        valid=True,
        user_id=context.user.id,
        expires_at=as_utc(context.session.expires_at),
    )
