from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.domain.enums import AssignmentStatus, EndedBy, RejectionReason
from app.schemas.chat_request import ChatRequestResponse
from app.schemas.operator import OperatorResponse


class AssignmentResponse(BaseModel):
    id: str
    request_id: str
    customer_id: str
    customer_name: str
    operator_id: str
    operator_name: str
    status: AssignmentStatus
    created_at: datetime
    accepted_at: datetime | None
    completed_at: datetime | None
    last_message_at: datetime | None
    ended_by: EndedBy | None

    model_config = ConfigDict(from_attributes=True)


class AssignmentListResponse(BaseModel):
    items: list[AssignmentResponse]


class ClaimRejectedResponse(BaseModel):
    reason: RejectionReason
    request_id: str
    operator_id: str
    detail: str

    model_config = ConfigDict(from_attributes=True)


class RecordActivityRequest(BaseModel):
    at: datetime | None = None


class ChatRequestResultResponse(BaseModel):
    request: ChatRequestResponse
    assignment: AssignmentResponse | None


class CustomerStateResponse(BaseModel):
    request: ChatRequestResponse | None
    assignment: AssignmentResponse | None
    operator: OperatorResponse | None


class EndCustomerChatRequest(BaseModel):
    operator_id: str | None = Field(default=None, min_length=1, max_length=128)
