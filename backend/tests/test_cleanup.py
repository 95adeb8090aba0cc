from types import SimpleNamespace

from sqlalchemy import func, select

from hospital_admin.models.auth_log import AuthAction, AuthLog
from hospital_admin.models.otp_request import OtpRequest
from hospital_admin.models.session import AuthSession
from hospital_admin.models.session_log import SessionLog
from hospital_admin.services.cleanup import run_cleanup
from hospital_admin.services.otp import OtpEngine
from hospital_admin.services.rate_limit import RateLimitRule
from hospital_admin.services.sessions import SessionDuration, SessionStore


def _count(db, model) -> int:
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def _run(db, clock, audit, hasher, rate_limiter=None, retention_days=180):
    return run_cleanup(
        db,
        clock=clock,
        settings=SimpleNamespace(log_retention_days=retention_days),
        audit=audit,
        hasher=hasher,
        rate_limiter=rate_limiter,
    )


def test_cleanup_expires_sessions_and_otps_once(db, clock, audit, hasher, client_context, make_user):
    user = make_user()
    store = SessionStore(db, clock=clock, audit=audit)
    store.create(user, duration=SessionDuration("1h"), client=client_context, login_method="email_otp")
    store.create(user, duration=SessionDuration("7d"), client=client_context, login_method="email_otp")
    OtpEngine(db, hasher=hasher, clock=clock).issue(user.id, expiry_minutes=5)
    db.commit()

    clock.advance(hours=2)
    first = _run(db, clock, audit, hasher)
    second = _run(db, clock, audit, hasher)

    assert first.expired_sessions == 1
    assert first.expired_otp_requests == 1
    assert second.expired_sessions == 0
    assert second.expired_otp_requests == 0
    assert _count(db, AuthSession) == 1
    assert _count(db, OtpRequest) == 0
    expired_events = db.execute(
        select(func.count()).select_from(AuthLog).where(AuthLog.action == AuthAction.session_expired.value)
    ).scalar_one()
    assert expired_events == 1


def test_cleanup_prunes_logs_past_retention(db, clock, audit, hasher, client_context, make_user):
    user = make_user()
    store = SessionStore(db, clock=clock, audit=audit)
    old = store.create(user, duration=SessionDuration("1h"), client=client_context, login_method="email_otp")
    db.commit()
    store.revoke(old, acting_session=old, client=client_context)
    db.commit()
    assert _count(db, SessionLog) == 1

    clock.advance(days=31)
    store.create(user, duration=SessionDuration("8h"), client=client_context, login_method="email_otp")
    db.commit()

    report = _run(db, clock, audit, hasher, retention_days=30)

    assert report.pruned_session_logs == 1
    # LOGIN, SESSION_CREATED and LOGOUT_SELF from the first login are gone.
    assert report.pruned_auth_logs == 3
    assert _count(db, SessionLog) == 0
    assert _count(db, AuthLog) == 2


def test_cleanup_purges_idle_rate_limit_windows(db, clock, audit, hasher, rate_limiter):
    rate_limiter.check("auth.otp.request|ip:1.1.1.1", RateLimitRule(5, 60))
    clock.advance(minutes=5)

    report = _run(db, clock, audit, hasher, rate_limiter=rate_limiter)

    assert report.purged_rate_limit_keys == 1
