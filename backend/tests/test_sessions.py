from datetime import timedelta

from sqlalchemy import select

from hospital_admin.core.clock import as_utc
from hospital_admin.core.security import is_valid_session_token
from hospital_admin.models.auth_log import AuthAction, AuthLog
from hospital_admin.models.session import AuthSession
from hospital_admin.models.session_log import SessionLog
from hospital_admin.services.sessions import SessionDuration, SessionStore, calculate_expiry


def _store(db, clock, audit) -> SessionStore:
    return SessionStore(db, clock=clock, audit=audit)


def _actions(db, user_id):
    return sorted(db.execute(select(AuthLog.action).where(AuthLog.user_id == user_id)).scalars())


def test_durations_map_to_hours(clock):
    now = clock.now()
    assert calculate_expiry(now, SessionDuration.one_hour) - now == timedelta(hours=1)
    assert calculate_expiry(now, SessionDuration("8h")) - now == timedelta(hours=8)
    assert calculate_expiry(now, SessionDuration("24h")) - now == timedelta(hours=24)
    assert calculate_expiry(now, SessionDuration("7d")) - now == timedelta(days=7)


def test_create_sets_fixed_expiry_and_logs_login(db, clock, audit, client_context, make_user):
    user = make_user()
    store = _store(db, clock, audit)

    session = store.create(user, duration=SessionDuration("1h"), client=client_context, login_method="email_otp")
    db.commit()

    assert is_valid_session_token(session.id)
    assert as_utc(session.expires_at) - clock.now() == timedelta(seconds=3600)
    assert session.browser.startswith("Chrome")
    assert _actions(db, user.id) == sorted([AuthAction.login.value, AuthAction.session_created.value])


def test_verify_updates_last_activity_but_not_expiry(db, clock, audit, client_context, make_user):
    user = make_user()
    store = _store(db, clock, audit)
    session = store.create(user, duration=SessionDuration("1h"), client=client_context, login_method="email_otp")
    db.commit()
    original_expiry = as_utc(session.expires_at)

    clock.advance(minutes=20)
    verified = store.verify(session.id)

    assert verified is not None
    assert as_utc(verified.last_activity_at) == clock.now()
    assert as_utc(verified.expires_at) == original_expiry

    clock.advance(minutes=41)
    assert store.verify(session.id) is None


def test_revoke_all_terminates_every_session_with_acting_id(db, clock, audit, client_context, make_user):
    user = make_user()
    store = _store(db, clock, audit)
    sessions = [
        store.create(user, duration=SessionDuration("8h"), client=client_context, login_method="email_otp")
        for _ in range(3)
    ]
    db.commit()
    session_ids = {session.id for session in sessions}
    acting_id = sessions[1].id

    count = store.revoke_all(user.id, acting_session_id=acting_id, client=client_context)
    db.commit()

    assert count == 3
    assert db.execute(select(AuthSession)).first() is None
    rows = db.execute(select(AuthLog).where(AuthLog.action == AuthAction.logout_all.value)).scalars().all()
    assert len(rows) == 3
    assert {row.acting_session_id for row in rows} == {acting_id}
    assert {row.session_id for row in rows} == session_ids
    logs = db.execute(select(SessionLog)).scalars().all()
    assert len(logs) == 3 and all(log.revoked_at is not None for log in logs)


def test_revoke_others_keeps_current(db, clock, audit, client_context, make_user):
    user = make_user()
    store = _store(db, clock, audit)
    current = store.create(user, duration=SessionDuration("8h"), client=client_context, login_method="email_otp")
    store.create(user, duration=SessionDuration("8h"), client=client_context, login_method="email_otp")
    store.create(user, duration=SessionDuration("8h"), client=client_context, login_method="email_otp")
    db.commit()

    count = store.revoke_others(user.id, current_session_id=current.id, client=client_context)
    db.commit()

    assert count == 2
    remaining = db.execute(select(AuthSession.id)).scalars().all()
    assert remaining == [current.id]


def test_revoke_one_from_another_device_logs_logout_other(db, clock, audit, client_context, make_user):
    user = make_user()
    store = _store(db, clock, audit)
    mine = store.create(user, duration=SessionDuration("8h"), client=client_context, login_method="email_otp")
    other = store.create(user, duration=SessionDuration("8h"), client=client_context, login_method="email_otp")
    db.commit()
    other_id = other.id
    mine_id = mine.id

    store.revoke(other, acting_session=mine, client=client_context)
    db.commit()

    row = db.execute(select(AuthLog).where(AuthLog.action == AuthAction.logout_other.value)).scalar_one()
    assert row.session_id == other_id
    assert row.acting_session_id == mine_id
    assert row.details["target_session_id"] == other_id


def test_list_active_orders_by_last_activity(db, clock, audit, client_context, make_user):
    user = make_user()
    store = _store(db, clock, audit)
    older = store.create(user, duration=SessionDuration("8h"), client=client_context, login_method="email_otp")
    clock.advance(minutes=1)
    newer = store.create(user, duration=SessionDuration("8h"), client=client_context, login_method="email_otp")
    clock.advance(minutes=1)
    store.create(user, duration=SessionDuration("1h"), client=client_context, login_method="email_otp")
    db.commit()

    clock.advance(hours=2)
    listed = store.list_active(user.id)

    assert [session.id for session in listed] == [newer.id, older.id]


def test_expire_stale_logs_and_deletes(db, clock, audit, client_context, make_user):
    user = make_user()
    store = _store(db, clock, audit)
    short = store.create(user, duration=SessionDuration("1h"), client=client_context, login_method="email_otp")
    keep = store.create(user, duration=SessionDuration("8h"), client=client_context, login_method="email_otp")
    db.commit()
    short_id = short.id

    clock.advance(hours=1)
    expired = store.expire_stale()
    db.commit()

    assert expired == [short_id]
    assert db.execute(select(AuthSession.id)).scalars().all() == [keep.id]
    log = db.execute(select(SessionLog).where(SessionLog.session_id == short_id)).scalar_one()
    assert log.expired_at is not None and log.revoked_at is None
    assert AuthAction.session_expired.value in _actions(db, user.id)


def test_session_log_is_written_once_at_termination(db, clock, audit, client_context, make_user):
    user = make_user()
    store = _store(db, clock, audit)
    session = store.create(user, duration=SessionDuration("8h"), client=client_context, login_method="email_otp")
    db.commit()
    session_id = session.id

    assert db.execute(select(SessionLog)).first() is None

    store.revoke(session, acting_session=session, client=client_context)
    db.commit()

    rows = db.execute(select(SessionLog).where(SessionLog.session_id == session_id)).scalars().all()
    assert len(rows) == 1
    assert rows[0].revoked_at is not None
    assert rows[0].expired_at is None
    assert store.verify(session_id) is None
