from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from hospital_admin.services.sessions import SessionDuration


class EmailOtpRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class PhoneOtpRequest(BaseModel):
    phone: str = Field(pattern=r"^\d{10}$")
    password: str = Field(min_length=1, max_length=128)

    @field_validator("phone", mode="before")
    @classmethod
    def strip_phone(cls, value: str) -> str:
        return value.strip() if isinstance(value, str) else value


class OtpRequestOut(BaseModel):
    success: bool = True
    message: str = "otp_sent"
    expires_at: datetime
    otp_hint: str | None = None


class OtpVerifyRequest(BaseModel):
    identifier: str = Field(min_length=1, max_length=254)
    password: str = Field(min_length=1, max_length=128)
    otp: str = Field(pattern=r"^\d{6}$")
    session_duration: SessionDuration | None = None


class PasswordConfirm(BaseModel):
    password: str = Field(min_length=1, max_length=128)


class SuccessOut(BaseModel):
    success: bool = True


class LogoutManyOut(SuccessOut):
    sessions_deleted: int = Field(ge=0)


class ValidateOut(BaseModel):
    valid: bool
    user_id: str | None = None
    expires_at: datetime | None = None
