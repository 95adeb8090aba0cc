from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Protocol

import httpx

from hospital_admin.core.config import Settings
from hospital_admin.services.email import EmailDeliveryError, send_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    status_code: int
    error_text: str | None = None


class OtpSender(Protocol):
    channel: str

    def send_otp(self, destination: str, code: str) -> DeliveryResult: ...


class EmailOtpSender:
    channel = "email"

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _render(self, code: str) -> tuple[str, str, str]:
        minutes = self._settings.login_otp_expire_minutes
        subject = "Your HospitalManage OTP"
        text = (
            f"Your one-time login code is: {code}\n"
            f"This code will expire in {minutes} minutes.\n\n"
            "If you did not request this, please ignore this email."
        )
        html = (
            "<div style=\"font-family: system-ui, Arial; line-height:1.4; color:#111;\">"
            "<h2 style=\"margin:0 0 8px 0\">Your one-time code</h2>"
            f"<p>Use the code below to complete your login. This code will expire in {minutes} minutes.</p>"
            "<div style=\"padding:12px 18px; display:inline-block; background:#f7f7f8; border-radius:6px;"
            f" font-weight:700; font-size:20px; letter-spacing:4px;\">{code}</div>"
            "<p style=\"margin-top:16px;color:#666;font-size:13px\">If you did not request this, please ignore this email.</p>"
            "</div>"
        )
        return subject, text, html

    def send_otp(self, destination: str, code: str) -> DeliveryResult:
        subject, text, html = self._render(code)
        try:
            send_email(
                to_email=destination,
                subject=subject,
                text_content=text,
                html_content=html,
                settings=self._settings,
            )
        except EmailDeliveryError as exc:
            return DeliveryResult(ok=False, status_code=502, error_text=str(exc))
        return DeliveryResult(ok=True, status_code=200)


class SmsOtpSender:
    """MSG91 flow-template SMS."""

    channel = "sms"

    def __init__(self, settings: Settings, *, client: httpx.Client | None = None) -> None:
        self._settings = settings
        self._client = client

    def send_otp(self, destination: str, code: str) -> DeliveryResult:
        settings = self._settings
        if not settings.sms_configured:
            return DeliveryResult(ok=False, status_code=500, error_text="MSG91 SMS is not configured")

        payload = {
            "template_id": settings.msg91_sms_template_id,
            "sender": settings.msg91_sms_sender_id,
            "mobile": f"{settings.sms_country_code}{destination}",
            "otp": code,
        }
        headers = {"authkey": settings.msg91_auth_key, "Content-Type": "application/json"}
        try:
            if self._client is not None:
                response = self._client.post(
                    settings.msg91_flow_url, json=payload, headers=headers, timeout=settings.sms_timeout_seconds
                )
            else:
                with httpx.Client(timeout=settings.sms_timeout_seconds) as client:
                    response = client.post(settings.msg91_flow_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("MSG91 request failed: %s", exc)
            return DeliveryResult(ok=False, status_code=502, error_text=str(exc) or "Network error")

        if response.is_success:
            return DeliveryResult(ok=True, status_code=response.status_code)
        return DeliveryResult(ok=False, status_code=response.status_code, error_text=response.text[:500])
