from __future__ import annotations

from dataclasses import dataclass
from email.message import EmailMessage
import logging
import smtplib
import ssl
import time

from hospital_admin.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    pass


@dataclass(frozen=True)
class _SmtpEndpoint:
    host: str
    port: int
    username: str | None
    password: str
    from_email: str
    from_name: str | None
    use_tls: bool
    use_ssl: bool

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}:{self.username or ''}:{self.from_email}"


# Endpoints that just rate-limited us are skipped until this timestamp.
_SMTP_ENDPOINT_COOLDOWN_UNTIL: dict[str, float] = {}


def _classify_smtp_data_error(exc: smtplib.SMTPDataError) -> str:
    smtp_error = exc.smtp_error
    if isinstance(smtp_error, bytes):
        message = smtp_error.decode("utf-8", errors="ignore").lower()
    else:
        message = str(smtp_error).lower()

    if "sending limit" in message or "quota" in message or "rate limit" in message or "too many messages" in message:
        return "SMTP sender rate limited"
    if "recipient" in message and "rejected" in message:
        return "SMTP recipient rejected"
    if "sender" in message and "rejected" in message:
        return "SMTP sender rejected"
    return "SMTP data rejected"


def _build_message(endpoint: _SmtpEndpoint, *, to_email: str, subject: str, text_content: str, html_content: str | None) -> EmailMessage:
    message = EmailMessage()
    message["From"] = f"{endpoint.from_name} <{endpoint.from_email}>" if endpoint.from_name else endpoint.from_email
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(text_content)
    if html_content:
        message.add_alternative(html_content, subtype="html")
    return message


def _resolve_endpoints(settings: Settings) -> list[_SmtpEndpoint]:
    candidates: list[_SmtpEndpoint] = []
    if settings.smtp_host and settings.smtp_from_email:
        candidates.append(
            _SmtpEndpoint(
                host=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username,
                password=settings.smtp_password or "",
                from_email=settings.smtp_from_email,
                from_name=settings.smtp_from_name,
                use_tls=settings.smtp_use_tls,
                use_ssl=settings.smtp_use_ssl,
            )
        )
    backup_from = settings.smtp_backup_from_email or settings.smtp_from_email
    if settings.smtp_backup_host and backup_from:
        candidates.append(
            _SmtpEndpoint(
                host=settings.smtp_backup_host,
                port=settings.smtp_backup_port,
                username=settings.smtp_backup_username,
                password=settings.smtp_backup_password or "",
                from_email=backup_from,
                from_name=settings.smtp_backup_from_name or settings.smtp_from_name,
                use_tls=settings.smtp_backup_use_tls,
                use_ssl=settings.smtp_backup_use_ssl,
            )
        )

    endpoints: list[_SmtpEndpoint] = []
    seen: set[str] = set()
    for candidate in candidates:
        if candidate.key in seen:
            continue
        seen.add(candidate.key)
        endpoints.append(candidate)

    if not endpoints:
        raise EmailDeliveryError("SMTP is not configured")

    now = time.time()
    active = [endpoint for endpoint in endpoints if _SMTP_ENDPOINT_COOLDOWN_UNTIL.get(endpoint.key, 0.0) <= now]
    return active or endpoints


def _deliver(endpoint: _SmtpEndpoint, message: EmailMessage, *, timeout: int) -> None:
    if endpoint.use_ssl:
        with smtplib.SMTP_SSL(endpoint.host, endpoint.port, timeout=timeout) as smtp:
            if endpoint.username:
                smtp.login(endpoint.username, endpoint.password)
            smtp.send_message(message)
        return

    with smtplib.SMTP(endpoint.host, endpoint.port, timeout=timeout) as smtp:
        if endpoint.use_tls:
            smtp.starttls(context=ssl.create_default_context())
        if endpoint.username:
            smtp.login(endpoint.username, endpoint.password)
        smtp.send_message(message)


def _is_connection_issue(exc: Exception) -> bool:
    return isinstance(
        exc,
        (
            smtplib.SMTPConnectError,
            smtplib.SMTPServerDisconnected,
            smtplib.SMTPHeloError,
            OSError,
            TimeoutError,
        ),
    )


def send_email(
    *,
    to_email: str,
    subject: str,
    text_content: str,
    html_content: str | None = None,
    settings: Settings | None = None,
) -> None:
    """Send through the primary SMTP endpoint, falling back to the backup.

    Connection failures are retried with linear backoff; authentication,
    rejection and quota errors move straight on to the next endpoint. Raises
    ``EmailDeliveryError`` with a short classification when every endpoint
    fails.
    """
    settings = settings or get_settings()
    endpoints = _resolve_endpoints(settings)
    timeout = max(1, settings.smtp_timeout_seconds)
    retry_attempts = max(1, settings.smtp_retry_attempts)
    retry_backoff_seconds = max(0.0, settings.smtp_retry_backoff_seconds)
    cooldown_seconds = max(0, settings.smtp_rate_limit_cooldown_seconds)

    last_error: Exception | None = None
    last_error_message = "Unable to deliver email"

    for endpoint in endpoints:
        message = _build_message(
            endpoint,
            to_email=to_email,
            subject=subject,
            text_content=text_content,
            html_content=html_content,
        )
        for attempt in range(1, retry_attempts + 1):
            try:
                _deliver(endpoint, message, timeout=timeout)
                return
            except smtplib.SMTPAuthenticationError as exc:
                last_error, last_error_message = exc, "SMTP authentication failed"
                break
            except smtplib.SMTPDataError as exc:
                last_error, last_error_message = exc, _classify_smtp_data_error(exc)
                if last_error_message == "SMTP sender rate limited" and cooldown_seconds > 0:
                    _SMTP_ENDPOINT_COOLDOWN_UNTIL[endpoint.key] = time.time() + cooldown_seconds
                break
            except smtplib.SMTPRecipientsRefused as exc:
                last_error, last_error_message = exc, "SMTP recipient rejected"
                break
            except smtplib.SMTPSenderRefused as exc:
                last_error, last_error_message = exc, "SMTP sender rejected"
                break
            except Exception as exc:  # pragma: no cover - transport-specific behavior
                last_error = exc
                if not _is_connection_issue(exc):
                    last_error_message = "Unable to deliver email"
                    break
                last_error_message = "SMTP connection failed"
                if attempt < retry_attempts and retry_backoff_seconds > 0:
                    time.sleep(retry_backoff_seconds * attempt)
        logger.warning("SMTP endpoint %s failed: %s", endpoint.host, last_error_message)

    raise EmailDeliveryError(last_error_message) from last_error
