from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from educonnect.models.role_request import RequestStatus
from educonnect.models.user import UserRole


# ── Request Bodies ────────────────────────────────────────────────────
class RoleChangeRequest(BaseModel):
    requested_role: UserRole
    reason: str = Field(..., min_length=1, max_length=1000)
    program: str | None = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "requested_role": "faculty",
                "reason": "promotion",
                "program": "CS",
            }
        }
    }


class DecisionRequest(BaseModel):
    status: Literal["approved", "rejected"]
    remarks: str | None = Field(None, max_length=1000)


class BatchDecisionRequest(BaseModel):
    request_ids: list[int] = Field(..., min_length=1, max_length=200)
    status: Literal["approved", "rejected"] = "approved"
    remarks: str | None = Field(None, max_length=1000)


# ── Response Bodies ───────────────────────────────────────────────────
class RequesterInfo(BaseModel):
    id: int
    name: str
    email: str
    role: UserRole

    model_config = {"from_attributes": True}


class RoleRequestResponse(BaseModel):
    """Staged password_hash is never included here."""
    id: int
    user_id: int | None
    user: RequesterInfo | None = None
    requested_role: UserRole
    current_role: str
    reason: str
    program: str | None
    status: RequestStatus
    name: str | None
    email: str | None
    branch: str | None
    course: str | None
    reviewed_by_id: int | None
    reviewed_at: datetime | None
    remarks: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class DecisionResponse(BaseModel):
    detail: str
    request: RoleRequestResponse


class BatchDecisionItem(BaseModel):
    request_id: int
    success: bool
    kind: str | None = None
    message: str


class BatchDecisionResponse(BaseModel):
    detail: str
    results: list[BatchDecisionItem]


class VerificationSummary(BaseModel):
    total_approved: int
    total_pending: int
    total_rejected: int
    users_created: int
    users_missing: int


class ApprovedRequestCheck(BaseModel):
    request_id: int
    name: str | None
    email: str | None
    requested_role: UserRole
    user_exists: bool
    user_verified: bool
    reviewed_at: datetime | None


class RequestBrief(BaseModel):
    id: int
    name: str | None
    email: str | None
    requested_role: UserRole
    remarks: str | None = None
    created_at: datetime
    reviewed_at: datetime | None = None


class VerificationStatusResponse(BaseModel):
    summary: VerificationSummary
    approved_requests: list[ApprovedRequestCheck]
    pending_requests: list[RequestBrief]
    rejected_requests: list[RequestBrief]


class FixedUser(BaseModel):
    request_id: int
    email: str
    name: str | None
    role: UserRole


class FixError(BaseModel):
    request_id: int
    email: str | None
    error: str


class FixMissingUsersResponse(BaseModel):
    detail: str
    fixed_users: list[FixedUser]
    errors: list[FixError]


class RequestSubmittedResponse(BaseModel):
    detail: str
    request: RoleRequestResponse
