from __future__ import annotations

from functools import lru_cache
import re
import secrets
import uuid

from passlib.context import CryptContext

from hospital_admin.core.config import get_settings

UUID_V4_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


class PasswordHasher:
    """bcrypt hashing for passwords and OTP codes.

    ``dummy_hash`` is a real digest produced with the same cost factor, so a
    comparison against it takes as long as a comparison against a stored
    password hash. Negative paths use it to keep response latency flat.
    """

    def __init__(self, *, rounds: int = 12) -> None:
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__ident="2b",
            bcrypt__rounds=rounds,
        )
        self._dummy_hash: str | None = None

    def hash(self, plaintext: str) -> str:
        return self._context.hash(plaintext)

    def verify(self, plaintext: str, digest: str | None) -> bool:
        if not digest:
            self._context.verify(plaintext, self.dummy_hash)
            return False
        try:
            return self._context.verify(plaintext, digest)
        except ValueError:
            # Unparseable stored digest: still spend one comparison.
            self._context.verify(plaintext, self.dummy_hash)
            return False

    @property
    def dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self._context.hash(secrets.token_urlsafe(24))
        return self._dummy_hash


@lru_cache
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher(rounds=get_settings().password_bcrypt_rounds)


def get_password_hash(password: str) -> str:
    return get_password_hasher().hash(password)


def new_session_token() -> str:
    return str(uuid.uuid4())


def is_valid_session_token(value: str | None) -> bool:
    if not value or not isinstance(value, str):
        return False
    return UUID_V4_PATTERN.match(value) is not None


def constant_time_equals(left: str | None, right: str | None) -> bool:
    if left is None or right is None:
        return False
    return secrets.compare_digest(left.encode("utf-8"), right.encode("utf-8"))
