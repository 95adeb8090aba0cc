from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from hospital_admin.api.routes.health import get_engine


def test_health_endpoints(client):
    assert client.get("/api/health").json() == {"status": "ok"}

    live = client.get("/api/health/live")
    assert live.status_code == 200
    assert live.json()["status"] == "ok"

    ready = client.get("/api/health/ready")
    assert ready.status_code == 200
    payload = ready.json()
    assert payload["database"]["schema_ok"] is True
    assert "smtp" in payload
    assert "sms" in payload


def test_ready_reports_missing_tables(client):
    bare = create_engine("sqlite+pysqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    with bare.begin() as connection:
        connection.execute(text("CREATE TABLE users (id VARCHAR(36) PRIMARY KEY, email VARCHAR(320))"))
    client.app.dependency_overrides[get_engine] = lambda: bare

    ready = client.get("/api/health/ready")

    assert ready.status_code == 503
    database = ready.json()["database"]
    assert database["ok"] is True
    assert "sessions" in database["missing_tables"]
    assert database["missing_columns"]["users"] == ["password_hash", "phone", "role", "status"]
