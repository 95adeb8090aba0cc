from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re

from sqlalchemy import select
from sqlalchemy.orm import Session

from hospital_admin.core.security import PasswordHasher
from hospital_admin.models.user import User, UserStatus

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[0-9]{10}$")
MAX_EMAIL_LENGTH = 254


class IdentifierKind(str, Enum):
    email = "email"
    phone = "phone"


@dataclass(frozen=True)
class Identifier:
    kind: IdentifierKind
    value: str


class CredentialFailure(str, Enum):
    invalid_input = "invalid_input"
    invalid_credentials = "invalid_credentials"
    account_suspended = "account_suspended"


@dataclass(frozen=True)
class CredentialResult:
    user: User | None = None
    identifier: Identifier | None = None
    failure: CredentialFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.user is not None


def parse_identifier(raw: str | None) -> Identifier | None:
    if not raw or not isinstance(raw, str):
        return None
    value = raw.strip()
    if "@" in value:
        normalized = value.lower()
        if len(normalized) > MAX_EMAIL_LENGTH or not EMAIL_PATTERN.match(normalized):
            return None
        return Identifier(IdentifierKind.email, normalized)
    if PHONE_PATTERN.match(value):
        return Identifier(IdentifierKind.phone, value)
    return None


def find_user(db: Session, identifier: Identifier) -> User | None:
    if identifier.kind == IdentifierKind.email:
        statement = select(User).where(User.email == identifier.value)
    else:
        statement = select(User).where(User.phone == identifier.value)
    return db.execute(statement).scalar_one_or_none()


def verify_credentials(
    db: Session,
    *,
    identifier: str,
    password: str,
    hasher: PasswordHasher,
) -> CredentialResult:
    """Check an email/phone + password pair.

    Exactly one hash comparison runs for every well-formed identifier, against
    the stored digest when the account exists and against the hasher's dummy
    digest otherwise. Suspension is only reported once the password has been
    confirmed; deleted accounts look exactly like unknown ones.
    """
    parsed = parse_identifier(identifier)
    if parsed is None or not password:
        return CredentialResult(failure=CredentialFailure.invalid_input)

    user = find_user(db, parsed)
    digest = user.password_hash if user is not None else hasher.dummy_hash
    password_ok = hasher.verify(password, digest)

    if user is None or not password_ok or user.status == UserStatus.deleted.value:
        return CredentialResult(identifier=parsed, failure=CredentialFailure.invalid_credentials)
    if user.status == UserStatus.suspended.value:
        return CredentialResult(user=user, identifier=parsed, failure=CredentialFailure.account_suspended)
    if user.status != UserStatus.active.value:
        return CredentialResult(identifier=parsed, failure=CredentialFailure.invalid_credentials)
    return CredentialResult(user=user, identifier=parsed)
