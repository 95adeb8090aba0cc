from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
import math
import secrets

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from hospital_admin.core.clock import Clock, as_utc
from hospital_admin.core.security import PasswordHasher
from hospital_admin.models.otp_request import OtpChannel, OtpRequest

OTP_MIN = 100_000
OTP_MAX_EXCLUSIVE = 1_000_000


class OtpOutcome(str, Enum):
    success = "success"
    not_found = "not_found"
    expired = "expired"
    too_many_attempts = "too_many_attempts"
    invalid = "invalid"


@dataclass(frozen=True)
class CooldownResult:
    allowed: bool
    wait_seconds: int = 0


@dataclass(frozen=True)
class IssuedOtp:
    code: str
    expires_at: datetime


@dataclass(frozen=True)
class OtpVerification:
    outcome: OtpOutcome
    remaining_attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome == OtpOutcome.success


def generate_otp() -> str:
    return str(OTP_MIN + secrets.randbelow(OTP_MAX_EXCLUSIVE - OTP_MIN))


class OtpEngine:
    """One-time code lifecycle for a user.

    Row states: absent -> pending (issue) -> deleted on success, expiry,
    exhaustion, or replacement by a newer issue. Every method works inside the
    caller's transaction; the caller commits.
    """

    def __init__(self, db: Session, *, hasher: PasswordHasher, clock: Clock) -> None:
        self.db = db
        self.hasher = hasher
        self.clock = clock

    def _get(self, user_id: str) -> OtpRequest | None:
        return self.db.execute(select(OtpRequest).where(OtpRequest.user_id == user_id)).scalar_one_or_none()

    def can_request(self, user_id: str, cooldown_seconds: int) -> CooldownResult:
        existing = self._get(user_id)
        if existing is None:
            return CooldownResult(allowed=True)
        elapsed = (self.clock.now() - as_utc(existing.last_sent_at)).total_seconds()
        if elapsed < cooldown_seconds:
            return CooldownResult(allowed=False, wait_seconds=max(1, math.ceil(cooldown_seconds - elapsed)))
        return CooldownResult(allowed=True)

    def issue(
        self,
        user_id: str,
        *,
        expiry_minutes: int,
        channel: OtpChannel = OtpChannel.email,
    ) -> IssuedOtp:
        now = self.clock.now()
        code = generate_otp()
        expires_at = now + timedelta(minutes=expiry_minutes)

        self.db.execute(delete(OtpRequest).where(OtpRequest.user_id == user_id))
        self.db.add(
            OtpRequest(
                user_id=user_id,
                otp_hash=self.hasher.hash(code),
                channel=channel.value,
                expires_at=expires_at,
                attempts=0,
                last_sent_at=now,
            )
        )
        # Surface a concurrent insert (unique user_id) here rather than at commit.
        self.db.flush()
        return IssuedOtp(code=code, expires_at=expires_at)

    def verify(self, user_id: str, candidate: str, *, max_attempts: int) -> OtpVerification:
        row = self._get(user_id)
        if row is None:
            return OtpVerification(OtpOutcome.not_found)

        if as_utc(row.expires_at) <= self.clock.now():
            self.db.delete(row)
            return OtpVerification(OtpOutcome.expired)

        if row.attempts >= max_attempts:
            self.db.delete(row)
            return OtpVerification(OtpOutcome.too_many_attempts)

        if not self.hasher.verify(candidate, row.otp_hash):
            row.attempts += 1
            remaining = max(0, max_attempts - row.attempts)
            return OtpVerification(OtpOutcome.invalid, remaining_attempts=remaining)

        self.db.delete(row)
        return OtpVerification(OtpOutcome.success)

    def discard(self, user_id: str) -> None:
        self.db.execute(delete(OtpRequest).where(OtpRequest.user_id == user_id))

    def purge_expired(self) -> int:
        result = self.db.execute(delete(OtpRequest).where(OtpRequest.expires_at <= self.clock.now()))
        return result.rowcount or 0
