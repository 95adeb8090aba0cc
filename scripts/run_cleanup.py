"""Run the session/OTP cleanup sweep once.

Run:
  PYTHONPATH=backend python scripts/run_cleanup.py

Meant for a system cron when the HTTP trigger (/api/cron/cleanup) is not used.
The in-process rate limiter lives in the API workers, so it is not purged here.
"""

from __future__ import annotations

import logging

from hospital_admin.core.clock import SystemClock
from hospital_admin.core.config import get_settings
from hospital_admin.core.security import get_password_hasher
from hospital_admin.db.session import SessionLocal
from hospital_admin.services.audit import AuditLogger
from hospital_admin.services.cleanup import run_cleanup


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    with SessionLocal() as db:
        report = run_cleanup(
            db,
            clock=SystemClock(),
            settings=settings,
            audit=AuditLogger(SessionLocal),
            hasher=get_password_hasher(),
        )
    for key, value in report.as_dict().items():
        print(f"{key}: {value}")


if __name__ == "__main__":
    main()
