from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.controllers import verification_controller
from educonnect.core.database import get_db
from educonnect.core.dependencies import require_roles
from educonnect.core.notifications import NotificationDispatcher, get_notifier
from educonnect.models.user import User, UserRole
from educonnect.schemas.auth import UserInfo
from educonnect.schemas.role_request import (
    BatchDecisionRequest,
    BatchDecisionResponse,
    DecisionRequest,
    DecisionResponse,
    FixMissingUsersResponse,
    RoleRequestResponse,
    VerificationStatusResponse,
)

router = APIRouter(prefix="/verification", tags=["Verification"])

reviewer_required = require_roles(UserRole.ADMIN, UserRole.FACULTY)
admin_required = require_roles(UserRole.ADMIN)


@router.get(
    "/requests",
    response_model=list[RoleRequestResponse],
    summary="Pending Requests",
    description="""
Pending requests the caller may decide, newest first.

- Faculty: student requests for their own program.
- Program admin: student + faculty requests for administered programs (or with no program).
- Super admin: admin / library / placement requests, and student requests with no program.
    """,
)
async def list_requests(
    current_user: User = Depends(reviewer_required),
    db: AsyncSession = Depends(get_db),
) -> list[RoleRequestResponse]:
    return await verification_controller.list_pending_requests(current_user, db)


@router.post(
    "/requests/{request_id}/decision",
    response_model=DecisionResponse,
    summary="Approve / Reject Request",
    description="""
Approving guarantees the account exists before the request is marked approved.
If the account cannot be written the request stays pending and the call can be retried.
    """,
)
async def decide_request(
    request_id: int,
    payload: DecisionRequest,
    current_user: User = Depends(reviewer_required),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> DecisionResponse:
    return await verification_controller.decide(
        request_id, payload.status, payload.remarks, current_user, db, notifier
    )


@router.post(
    "/requests/batch-decision",
    response_model=BatchDecisionResponse,
    summary="Batch Approve / Reject",
    description="Applies one decision to many requests. Each id gets its own result.",
)
async def decide_batch(
    payload: BatchDecisionRequest,
    current_user: User = Depends(reviewer_required),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> BatchDecisionResponse:
    return await verification_controller.batch_decide(
        payload.request_ids, payload.status, payload.remarks, current_user, db, notifier
    )


@router.get("/status", response_model=VerificationStatusResponse, summary="Verification Status")
async def status_report(
    current_user: User = Depends(admin_required),
    db: AsyncSession = Depends(get_db),
) -> VerificationStatusResponse:
    return await verification_controller.verification_status(db)


@router.post(
    "/fix-missing-users",
    response_model=FixMissingUsersResponse,
    summary="Repair Approved Requests",
    description="Re-creates accounts for approved requests whose account is missing.",
)
async def repair_missing_users(
    current_user: User = Depends(admin_required),
    db: AsyncSession = Depends(get_db),
) -> FixMissingUsersResponse:
    return await verification_controller.fix_missing_users(current_user, db)


@router.get("/admins", response_model=list[UserInfo], summary="Admins By Program")
async def list_program_admins(
    program: str | None = Query(None, description="Program name, e.g. CS"),
    current_user: User = Depends(admin_required),
    db: AsyncSession = Depends(get_db),
) -> list[UserInfo]:
    return await verification_controller.admins_by_program(program, db)
