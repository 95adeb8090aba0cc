import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from hospital_admin.models.otp_request import OtpChannel, OtpRequest
from hospital_admin.services.otp import OtpEngine, OtpOutcome, generate_otp


def _engine(db, hasher, clock) -> OtpEngine:
    return OtpEngine(db, hasher=hasher, clock=clock)


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


def test_generate_otp_is_six_digits():
    for _ in range(200):
        code = generate_otp()
        assert len(code) == 6 and code.isdigit()
        assert 100000 <= int(code) <= 999999


def test_issue_stores_only_a_hash(db, hasher, clock, make_user):
    user = make_user()
    issued = _engine(db, hasher, clock).issue(user.id, expiry_minutes=5, channel=OtpChannel.email)
    db.commit()

    row = db.execute(select(OtpRequest).where(OtpRequest.user_id == user.id)).scalar_one()
    assert row.otp_hash != issued.code
    assert hasher.verify(issued.code, row.otp_hash)
    assert row.attempts == 0


def test_reissue_replaces_previous_code(db, hasher, clock, make_user):
    user = make_user()
    engine = _engine(db, hasher, clock)
    first = engine.issue(user.id, expiry_minutes=5)
    db.commit()
    second = engine.issue(user.id, expiry_minutes=5)
    db.commit()

    count = db.execute(select(func.count()).select_from(OtpRequest)).scalar_one()
    assert count == 1
    if first.code != second.code:
        assert engine.verify(user.id, first.code, max_attempts=5).outcome == OtpOutcome.invalid
    assert engine.verify(user.id, second.code, max_attempts=5).ok


def test_success_is_single_use(db, hasher, clock, make_user):
    user = make_user()
    engine = _engine(db, hasher, clock)
    issued = engine.issue(user.id, expiry_minutes=5)
    db.commit()

    assert engine.verify(user.id, issued.code, max_attempts=5).ok
    db.commit()
    assert engine.verify(user.id, issued.code, max_attempts=5).outcome == OtpOutcome.not_found


def test_expired_code_is_deleted(db, hasher, clock, make_user):
    user = make_user()
    engine = _engine(db, hasher, clock)
    issued = engine.issue(user.id, expiry_minutes=5)
    db.commit()
    clock.advance(minutes=5)

    assert engine.verify(user.id, issued.code, max_attempts=5).outcome == OtpOutcome.expired
    db.commit()
    assert db.execute(select(OtpRequest)).first() is None


def test_wrong_guesses_count_down_then_exhaust(db, hasher, clock, make_user):
    user = make_user()
    engine = _engine(db, hasher, clock)
    issued = engine.issue(user.id, expiry_minutes=5)
    db.commit()

    remaining = []
    for _ in range(5):
        result = engine.verify(user.id, _wrong(issued.code), max_attempts=5)
        db.commit()
        assert result.outcome == OtpOutcome.invalid
        remaining.append(result.remaining_attempts)

    assert remaining == [4, 3, 2, 1, 0]
    # The right code after the cap is still refused, and the row goes away.
    assert engine.verify(user.id, issued.code, max_attempts=5).outcome == OtpOutcome.too_many_attempts
    db.commit()
    assert engine.verify(user.id, issued.code, max_attempts=5).outcome == OtpOutcome.not_found


def test_cooldown_reports_wait(db, hasher, clock, make_user):
    user = make_user()
    engine = _engine(db, hasher, clock)
    assert engine.can_request(user.id, 30).allowed

    engine.issue(user.id, expiry_minutes=5)
    db.commit()
    clock.advance(seconds=12)

    cooldown = engine.can_request(user.id, 30)
    assert not cooldown.allowed
    assert cooldown.wait_seconds == 18

    clock.advance(seconds=18)
    assert engine.can_request(user.id, 30).allowed


def test_purge_expired_only_removes_stale_rows(db, hasher, clock, make_user):
    stale_user = make_user("stale@example.com")
    fresh_user = make_user("fresh@example.com")
    engine = _engine(db, hasher, clock)
    engine.issue(stale_user.id, expiry_minutes=1)
    db.commit()
    clock.advance(minutes=2)
    engine.issue(fresh_user.id, expiry_minutes=5)
    db.commit()

    assert engine.purge_expired() == 1
    db.commit()
    remaining = db.execute(select(OtpRequest.user_id)).scalars().all()
    assert remaining == [fresh_user.id]


def test_second_pending_row_for_a_user_is_rejected(db, hasher, clock, make_user):
    user = make_user()
    _engine(db, hasher, clock).issue(user.id, expiry_minutes=5)
    db.commit()

    db.add(
        OtpRequest(
            user_id=user.id,
            otp_hash=hasher.hash("123456"),
            channel=OtpChannel.email.value,
            expires_at=clock.now(),
            attempts=0,
            last_sent_at=clock.now(),
        )
    )
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()

    assert db.execute(select(func.count(OtpRequest.id))).scalar_one() == 1
