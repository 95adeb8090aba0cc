"""Provision SUPER_ADMIN accounts for the hospital admin console.

Accounts come from the environment:
  ADMIN_SEED_ACCOUNTS="Shankar,shankar@example.com;Pratham,pratham@example.com,9876543210"
  ADMIN_SEED_PASSWORD="..."

Run:
  PYTHONPATH=backend python scripts/seed_admin_users.py

Existing accounts (matched by email) are left untouched unless
ADMIN_SEED_RESET_PASSWORD=true, in which case their password is replaced and
their status set back to active.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import os
import sys

from sqlalchemy import select

from hospital_admin.core.security import get_password_hash
from hospital_admin.db.session import SessionLocal
from hospital_admin.models.user import User, UserRole, UserStatus
from hospital_admin.services.credentials import parse_identifier


@dataclass(frozen=True)
class SeedAccount:
    name: str
    email: str
    phone: str | None = None


def _parse_accounts(raw: str) -> list[SeedAccount]:
    accounts: list[SeedAccount] = []
    for chunk in raw.split(";"):
        parts = [part.strip() for part in chunk.split(",")]
        if len(parts) < 2 or not parts[0]:
            continue
        email = parse_identifier(parts[1])
        if email is None or "@" not in email.value:
            raise ValueError(f"Invalid email in ADMIN_SEED_ACCOUNTS: {parts[1]!r}")
        phone = parts[2] if len(parts) > 2 and parts[2] else None
        if phone is not None and parse_identifier(phone) is None:
            raise ValueError(f"Phone numbers must be 10 digits: {phone!r}")
        accounts.append(SeedAccount(name=parts[0], email=email.value, phone=phone))
    return accounts


def _upsert_admin(account: SeedAccount, *, password: str, reset_password: bool) -> tuple[User, bool]:
    now = datetime.now(timezone.utc)
    with SessionLocal() as session:
        existing = session.execute(select(User).where(User.email == account.email)).scalar_one_or_none()
        created = existing is None
        if existing is None:
            existing = User(
                name=account.name,
                email=account.email,
                phone=account.phone,
                role=UserRole.super_admin.value,
                status=UserStatus.active.value,
                password_hash=get_password_hash(password),
                password_changed_at=now,
                created_at=now,
            )
            session.add(existing)
        elif reset_password:
            existing.password_hash = get_password_hash(password)
            existing.password_changed_at = now
            existing.status = UserStatus.active.value
        session.commit()
        session.refresh(existing)
        return existing, created


def main() -> int:
    raw_accounts = os.getenv("ADMIN_SEED_ACCOUNTS", "").strip()
    password = os.getenv("ADMIN_SEED_PASSWORD", "")
    reset_password = os.getenv("ADMIN_SEED_RESET_PASSWORD", "").strip().lower() in {"1", "true", "yes"}
    if not raw_accounts or not password:
        print("ADMIN_SEED_ACCOUNTS and ADMIN_SEED_PASSWORD must both be set.", file=sys.stderr)
        return 1
    if len(password) < 8:
        print("ADMIN_SEED_PASSWORD must be at least 8 characters.", file=sys.stderr)
        return 1

    try:
        accounts = _parse_accounts(raw_accounts)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    for account in accounts:
        user, created = _upsert_admin(account, password=password, reset_password=reset_password)
        state = "created" if created else ("password reset" if reset_password else "exists, skipped")
        print(f"  - {user.name} <{user.email}> [{user.role}] {state}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
