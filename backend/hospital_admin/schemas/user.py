from datetime import datetime

from pydantic import BaseModel


class UserOut(BaseModel):
    id: str
    email: str
    phone: str | None = None
    name: str
    role: str
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}
