from datetime import datetime

from pydantic import BaseModel


class AuthLogOut(BaseModel):
    id: str
    action: str
    session_id: str | None
    acting_session_id: str | None
    ip_address: str | None
    browser: str | None
    os: str | None
    device_type: str | None
    timestamp: datetime
    details: dict | None

    model_config = {"from_attributes": True}


class AuthLogListOut(BaseModel):
    logs: list[AuthLogOut]
