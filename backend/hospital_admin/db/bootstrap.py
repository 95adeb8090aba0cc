from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from hospital_admin import models  # noqa: F401
from hospital_admin.db.base import Base

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "users": {"id", "email", "phone", "role", "status", "password_hash"},
    "sessions": {"id", "user_id", "created_at", "expires_at", "last_activity_at"},
    "otp_requests": {"id", "user_id", "otp_hash", "expires_at", "attempts", "last_sent_at"},
    "session_logs": {"id", "session_id", "user_id", "revoked_at", "expired_at", "logged_at"},
    "auth_logs": {"id", "user_id", "session_id", "acting_session_id", "action", "timestamp", "details"},
}


def find_schema_gaps(bind: Engine) -> tuple[list[str], dict[str, list[str]]]:
    """Return (missing tables, missing columns per table) for the auth schema."""
    with bind.connect() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        missing_tables: list[str] = []
        missing_columns: dict[str, list[str]] = {}
        for table_name, required in REQUIRED_COLUMNS.items():
            if table_name not in table_names:
                missing_tables.append(table_name)
                continue
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            missing = sorted(required - existing)
            if missing:
                missing_columns[table_name] = missing
    return sorted(missing_tables), missing_columns


def _assert_required_columns(bind: Engine) -> None:
    missing_tables, missing_columns = find_schema_gaps(bind)
    if missing_tables:
        raise RuntimeError(f"Missing required tables: {', '.join(missing_tables)}")
    if missing_columns:
        flattened = [f"{table}.{column}" for table, columns in missing_columns.items() for column in columns]
        raise RuntimeError(f"Missing required columns: {', '.join(flattened)}")


def ensure_runtime_schema(bind: Engine) -> None:
    """Create any missing auth tables, then check the columns the engine relies on.

    Production schemas are owned by Alembic; this path is for local runs with
    ``DB_AUTO_CREATE_SCHEMA=true``.
    """
    try:
        Base.metadata.create_all(bind=bind)
        _assert_required_columns(bind)
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema bootstrap failed")
        raise RuntimeError("Runtime schema bootstrap failed") from exc
