from datetime import datetime

from pydantic import BaseModel

from hospital_admin.schemas.user import UserOut


class SessionOut(BaseModel):
    id: str
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    browser: str | None = None
    os: str | None = None
    device_type: str | None = None
    is_current: bool = False

    model_config = {"from_attributes": True}


class SessionListOut(BaseModel):
    sessions: list[SessionOut]


class LoginOut(BaseModel):
    success: bool = True
    user: UserOut
    expires_at: datetime
    session_duration: str
