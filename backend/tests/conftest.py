import os

# Must be set before hospital_admin.core.config caches its settings.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("PASSWORD_BCRYPT_ROUNDS", "4")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hospital_admin.api.deps import get_clock, get_hasher, get_otp_senders, get_session_factory
from hospital_admin.api.routes.health import get_engine
from hospital_admin.core.security import PasswordHasher
from hospital_admin.db.base import Base
from hospital_admin.main import app
from hospital_admin.models.otp_request import OtpChannel
from hospital_admin.models.user import User, UserRole, UserStatus
from hospital_admin.services.audit import AuditLogger
from hospital_admin.services.devices import ClientContext
from hospital_admin.services.notifications import DeliveryResult
from hospital_admin.services.rate_limit import InMemoryRateLimiter

DEFAULT_PASSWORD = "Admin@12345"
CHROME_WINDOWS_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)
SAFARI_IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_5 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.5 Mobile/15E148 Safari/604.1"
)


class FrozenClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class RecordingSender:
    """Stands in for the email/SMS provider and keeps every code it was asked to send."""

    def __init__(self, channel: str) -> None:
        self.channel = channel
        self.sent: list[tuple[str, str]] = []
        self.fail_with: str | None = None

    def send_otp(self, destination: str, code: str) -> DeliveryResult:
        if self.fail_with is not None:
            return DeliveryResult(ok=False, status_code=502, error_text=self.fail_with)
        self.sent.append((destination, code))
        return DeliveryResult(ok=True, status_code=200)

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture(scope="session")
def hasher():
    return PasswordHasher(rounds=4)


@pytest.fixture()
def audit(session_factory):
    return AuditLogger(session_factory)


@pytest.fixture()
def client_context():
    return ClientContext.from_headers(user_agent=CHROME_WINDOWS_UA, ip_address="203.0.113.7")


@pytest.fixture()
def rate_limiter(clock):
    return InMemoryRateLimiter(time_source=lambda: clock.now().timestamp())


@pytest.fixture()
def senders():
    return {OtpChannel.email: RecordingSender("email"), OtpChannel.sms: RecordingSender("sms")}


@pytest.fixture()
def make_user(db, hasher, clock):
    def _make_user(
        email: str = "admin@example.com",
        *,
        password: str = DEFAULT_PASSWORD,
        phone: str | None = None,
        status: UserStatus = UserStatus.active,
        name: str = "Hospital Admin",
    ) -> User:
        user = User(
            email=email,
            phone=phone,
            name=name,
            role=UserRole.super_admin.value,
            status=status.value,
            password_hash=hasher.hash(password),
            password_changed_at=clock.now(),
            created_at=clock.now(),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def client(engine, session_factory, clock, hasher, rate_limiter, senders):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_hasher] = lambda: hasher
    app.dependency_overrides[get_otp_senders] = lambda: senders
    app.dependency_overrides[get_engine] = lambda: engine
    previous_limiter = app.state.rate_limiter
    app.state.rate_limiter = rate_limiter

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    app.state.rate_limiter = previous_limiter


@pytest.fixture()
def use_session(client):
    def _use_session(session_id: str) -> None:
        client.cookies.clear()
        client.cookies.set("session_id", session_id)

    return _use_session


@pytest.fixture()
def login(client, senders):
    """Run the two-step OTP login and return the verify response."""

    def _login(
        email: str = "admin@example.com",
        *,
        password: str = DEFAULT_PASSWORD,
        duration: str | None = None,
        user_agent: str = CHROME_WINDOWS_UA,
    ):
        headers = {"user-agent": user_agent}
        requested = client.post(
            "/api/auth/email/request-otp", json={"email": email, "password": password}, headers=headers
        )
        assert requested.status_code == 200, requested.text
        payload = {"identifier": email, "password": password, "otp": senders[OtpChannel.email].last_code}
        if duration is not None:
            payload["session_duration"] = duration
        verified = client.post("/api/auth/verify-otp", json=payload, headers=headers)
        assert verified.status_code == 200, verified.text
        return verified

    return _login
