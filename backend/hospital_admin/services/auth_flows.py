from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging

from sqlalchemy.orm import Session

from hospital_admin.core.clock import Clock
from hospital_admin.core.config import Settings
from hospital_admin.core.exceptions import (
    AccountSuspendedError,
    DeliveryFailedError,
    InvalidCredentialsError,
    InvalidInputError,
    OtpExhaustedError,
    OtpExpiredError,
    OtpInvalidError,
    OtpNotFoundError,
    RateLimitedError,
    SessionNotFoundError,
    UnauthorizedError,
)
from hospital_admin.core.security import PasswordHasher
from hospital_admin.models.auth_log import AuthAction
from hospital_admin.models.otp_request import OtpChannel
from hospital_admin.models.session import AuthSession
from hospital_admin.models.user import User, UserStatus
from hospital_admin.services.audit import AuditLogger, AuthEvent
from hospital_admin.services.credentials import (
    CredentialFailure,
    CredentialResult,
    IdentifierKind,
    find_user,
    verify_credentials,
)
from hospital_admin.services.devices import ClientContext
from hospital_admin.services.notifications import OtpSender
from hospital_admin.services.otp import OtpEngine, OtpOutcome
from hospital_admin.services.rate_limit import RateLimiter, RateLimitRule, enforce_rate_limits
from hospital_admin.services.sessions import SessionDuration, SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtpDispatch:
    channel: OtpChannel
    expires_at: datetime
    otp_hint: str | None = None


@dataclass(frozen=True)
class LoginResult:
    user: User
    session: AuthSession


@dataclass(frozen=True)
class AuthContext:
    """The resolved caller of a protected request."""

    user: User
    session: AuthSession
    client: ClientContext


class AuthService:
    """Request-level authentication flows.

    Each public method is one user-facing operation. Collaborators arrive
    through the constructor; nothing is read from ambient request state.
    """

    def __init__(
        self,
        db: Session,
        *,
        settings: Settings,
        clock: Clock,
        hasher: PasswordHasher,
        rate_limiter: RateLimiter,
        audit: AuditLogger,
        senders: dict[OtpChannel, OtpSender],
    ) -> None:
        self.db = db
        self.settings = settings
        self.clock = clock
        self.hasher = hasher
        self.rate_limiter = rate_limiter
        self.audit = audit
        self.senders = senders
        self.otp = OtpEngine(db, hasher=hasher, clock=clock)
        self.sessions = SessionStore(db, clock=clock, audit=audit)

    @property
    def otp_request_rule(self) -> RateLimitRule:
        return RateLimitRule(
            self.settings.rate_limit_otp_request_max_attempts,
            self.settings.rate_limit_otp_request_window_seconds,
        )

    @property
    def otp_verify_rule(self) -> RateLimitRule:
        return RateLimitRule(
            self.settings.rate_limit_otp_verify_max_attempts,
            self.settings.rate_limit_otp_verify_window_seconds,
        )

    def _event(self, user_id: str, action: AuthAction, client: ClientContext, **kwargs) -> AuthEvent:
        return AuthEvent(user_id=user_id, action=action, timestamp=self.clock.now(), client=client, **kwargs)

    def _record_login_failure(self, user: User, client: ClientContext, reason: str) -> None:
        self.audit.record(self._event(user.id, AuthAction.login_failed, client, details={"reason": reason}))

    def _check_credentials(self, identifier: str, password: str, client: ClientContext) -> CredentialResult:
        result: CredentialResult = verify_credentials(
            self.db, identifier=identifier, password=password, hasher=self.hasher
        )
        if result.failure == CredentialFailure.invalid_input:
            raise InvalidInputError("Invalid identifier")
        if result.failure == CredentialFailure.account_suspended:
            raise AccountSuspendedError()
        if not result.ok:
            # Only attempts against a known account are audited.
            known = find_user(self.db, result.identifier) if result.identifier is not None else None
            if known is not None and known.status != UserStatus.deleted.value:
                self._record_login_failure(known, client, "invalid_password")
            raise InvalidCredentialsError()
        return result

    def _confirm_password(self, context: AuthContext, password: str) -> None:
        if not self.hasher.verify(password, context.user.password_hash) or not context.user.is_active:
            self._record_login_failure(context.user, context.client, "password_confirmation")
            raise InvalidCredentialsError()

    # -- OTP login -----------------------------------------------------------

    def request_otp(
        self,
        *,
        identifier: str,
        password: str,
        channel: OtpChannel,
        client: ClientContext,
    ) -> OtpDispatch:
        enforce_rate_limits(
            self.rate_limiter,
            scope="auth.otp.request",
            rule=self.otp_request_rule,
            identities=[f"ip:{client.ip_address}" if client.ip_address else None],
        )
        user = self._check_credentials(identifier, password, client).user
        enforce_rate_limits(
            self.rate_limiter,
            scope="auth.otp.request",
            rule=self.otp_request_rule,
            identities=[f"user:{user.id}"],
        )

        cooldown = self.otp.can_request(user.id, self.settings.login_otp_cooldown_seconds)
        if not cooldown.allowed:
            raise RateLimitedError(
                cooldown.wait_seconds,
                f"Please wait {cooldown.wait_seconds} second(s) before requesting a new OTP.",
            )

        destination = user.email if channel == OtpChannel.email else user.phone
        if not destination:
            raise InvalidInputError(f"No {channel.value} destination on file for this account")

        issued = self.otp.issue(user.id, expiry_minutes=self.settings.login_otp_expire_minutes, channel=channel)
        self.db.commit()

        if self.settings.login_otp_log_to_terminal:
            logger.warning("LOGIN OTP | user=%s | channel=%s | otp=%s", user.id, channel.value, issued.code)

        sender = self.senders[channel]
        delivery = sender.send_otp(destination, issued.code)
        if not delivery.ok:
            # Never leave a code behind that the user did not receive.
            self.otp.discard(user.id)
            self.db.commit()
            failed_action = (
                AuthAction.otp_send_failed_email if channel == OtpChannel.email else AuthAction.otp_send_failed_sms
            )
            self.audit.record(
                self._event(
                    user.id,
                    failed_action,
                    client,
                    details={"reason": delivery.error_text or "unknown", "status_code": delivery.status_code},
                )
            )
            logger.error("OTP delivery via %s failed for user %s: %s", channel.value, user.id, delivery.error_text)
            raise DeliveryFailedError(channel.value)

        requested_action = AuthAction.otp_requested_email if channel == OtpChannel.email else AuthAction.otp_requested_sms
        self.audit.record(
            self._event(
                user.id,
                requested_action,
                client,
                details={"method": channel.value, "expires_at": issued.expires_at.isoformat()},
            )
        )
        return OtpDispatch(
            channel=channel,
            expires_at=issued.expires_at,
            otp_hint=issued.code if self.settings.expose_login_otp else None,
        )

    def verify_otp(
        self,
        *,
        identifier: str,
        password: str,
        otp: str,
        duration: SessionDuration,
        client: ClientContext,
    ) -> LoginResult:
        enforce_rate_limits(
            self.rate_limiter,
            scope="auth.otp.verify",
            rule=self.otp_verify_rule,
            identities=[f"ip:{client.ip_address}" if client.ip_address else None],
        )
        credentials = self._check_credentials(identifier, password, client)
        user = credentials.user
        enforce_rate_limits(
            self.rate_limiter,
            scope="auth.otp.verify",
            rule=self.otp_verify_rule,
            identities=[f"user:{user.id}"],
        )

        verification = self.otp.verify(user.id, otp, max_attempts=self.settings.login_otp_max_attempts)
        if not verification.ok:
            self.db.commit()
            self.audit.record(
                self._event(user.id, AuthAction.otp_verify_failed, client, details={"reason": verification.outcome.value})
            )
            if verification.outcome == OtpOutcome.not_found:
                raise OtpNotFoundError()
            if verification.outcome == OtpOutcome.expired:
                raise OtpExpiredError()
            if verification.outcome == OtpOutcome.too_many_attempts:
                raise OtpExhaustedError()
            raise OtpInvalidError(verification.remaining_attempts)

        method = "email_otp" if credentials.identifier.kind == IdentifierKind.email else "phone_otp"
        session = self.sessions.create(user, duration=duration, client=client, login_method=method)
        # OTP deletion, session row and LOGIN/SESSION_CREATED rows commit together.
        self.db.commit()
        return LoginResult(user=user, session=session)

    # -- Session management --------------------------------------------------

    def logout(self, context: AuthContext) -> None:
        self.sessions.revoke(context.session, acting_session=context.session, client=context.client)
        self.db.commit()

    def logout_all(self, context: AuthContext, *, password: str) -> int:
        self._confirm_password(context, password)
        count = self.sessions.revoke_all(
            context.user.id, acting_session_id=context.session.id, client=context.client
        )
        self.db.commit()
        return count

    def logout_other(self, context: AuthContext, *, password: str) -> int:
        self._confirm_password(context, password)
        count = self.sessions.revoke_others(
            context.user.id, current_session_id=context.session.id, client=context.client
        )
        self.db.commit()
        return count

    def list_sessions(self, context: AuthContext) -> list[tuple[AuthSession, bool]]:
        return [
            (session, session.id == context.session.id)
            for session in self.sessions.list_active(context.user.id)
        ]

    def revoke_session(self, context: AuthContext, target_session_id: str) -> bool:
        """Revoke one of the caller's sessions. Returns True when it was the caller's own."""
        target = self.sessions.get(target_session_id)
        if target is None:
            raise SessionNotFoundError()
        if target.user_id != context.user.id:
            logger.warning(
                "User %s attempted to revoke session %s owned by another user",
                context.user.id,
                target_session_id,
            )
            raise UnauthorizedError()
        self.sessions.revoke(target, acting_session=context.session, client=context.client)
        self.db.commit()
        return target_session_id == context.session.id

