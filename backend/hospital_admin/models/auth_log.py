import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from hospital_admin.db.base import Base


class AuthAction(str, Enum):
    login = "LOGIN"
    login_failed = "LOGIN_FAILED"
    logout_self = "LOGOUT_SELF"
    logout_other = "LOGOUT_OTHER"
    logout_all = "LOGOUT_ALL"
    session_created = "SESSION_CREATED"
    session_expired = "SESSION_EXPIRED"
    session_expired_client_validate = "SESSION_EXPIRED_CLIENT_VALIDATE"
    otp_requested_email = "OTP_REQUESTED_EMAIL"
    otp_requested_sms = "OTP_REQUESTED_SMS"
    otp_send_failed_email = "OTP_SEND_FAILED_EMAIL"
    otp_send_failed_sms = "OTP_SEND_FAILED_SMS"
    otp_verify_failed = "OTP_VERIFY_FAILED"


class AuthLog(Base):
    __tablename__ = "auth_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    session_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    acting_session_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(100), nullable=True)
    os: Mapped[str | None] = mapped_column(String(100), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
