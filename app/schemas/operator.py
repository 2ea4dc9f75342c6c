from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class OperatorResponse(BaseModel):
    id: str
    name: str
    is_online: bool
    is_available: bool
    active_chats: int
    max_chats: int
    last_seen: datetime

    model_config = ConfigDict(from_attributes=True)


class OperatorListResponse(BaseModel):
    items: list[OperatorResponse]


class SetOperatorStatusRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    is_online: bool | None = None
    is_available: bool | None = None
    max_chats: int | None = Field(default=None, ge=1, le=50)
