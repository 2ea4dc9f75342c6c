from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.domain.enums import ChatRequestStatus


class ChatRequestResponse(BaseModel):
    id: str
    customer_id: str
    customer_name: str
    message: str
    status: ChatRequestStatus
    created_at: datetime
    assigned_operator_id: str | None
    assigned_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class PendingRequestsResponse(BaseModel):
    items: list[ChatRequestResponse]


class CreateChatRequest(BaseModel):
    customer_name: str = Field(min_length=1, max_length=120)
    message: str = Field(default="", max_length=4000)
    auto_assign: bool = True
