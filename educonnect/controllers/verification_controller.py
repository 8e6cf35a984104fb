"""
Role request decisions with guaranteed user provisioning.

Approve, in order:
  1. request must still be pending                     -> AlreadyProcessed
  2. reviewer must be allowed to decide it             -> Forbidden
  3./4. resolve the target account: the linked user, else an existing
     user with the staged email, else a new user from staged data
     (name, email and password hash required)          -> ValidationError
  5. write the account and re-read it by id, then compare-and-set the
     request to approved (only where status is still pending), all in one
     transaction. The UPDATE is the single linearization point; losing it
     rolls the account write back                      -> AlreadyProcessed
     Attempts are bounded; on exhaustion the request
     stays pending                                     -> PersistenceFailure
  6. final existence check of the linked user          -> ConsistencyError

Reject is the compare-and-set alone.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.core.config import settings
from educonnect.core.errors import (
    AlreadyProcessed,
    AppError,
    ConsistencyError,
    Forbidden,
    NotFound,
    PersistenceFailure,
    ValidationError,
)
from educonnect.core.logging import get_logger
from educonnect.core.notifications import NotificationDispatcher, dispatch_quietly
from educonnect.core.retry import RetryExhausted, with_retry
from educonnect.models.role_request import RequestStatus, RoleRequest
from educonnect.models.user import User, UserRole
from educonnect.schemas.auth import UserInfo
from educonnect.schemas.role_request import (
    ApprovedRequestCheck,
    BatchDecisionItem,
    BatchDecisionResponse,
    DecisionResponse,
    FixError,
    FixedUser,
    FixMissingUsersResponse,
    RequestBrief,
    RoleRequestResponse,
    VerificationStatusResponse,
    VerificationSummary,
)
from educonnect.services.review_policy import can_review, visible_requests_clause

logger = get_logger(__name__)


class IdentityNotDurable(Exception):
    """The account write returned but the row could not be read back."""


@dataclass(frozen=True)
class StagedAccount:
    """
    Plain snapshot of everything provisioning needs from a request. ORM
    instances expire on rollback, so the retry loop never touches them.
    """
    request_id: int
    user_id: Optional[int]
    requested_role: UserRole
    program: Optional[str]
    name: Optional[str]
    email: Optional[str]
    password_hash: Optional[str]
    branch: Optional[str]
    course: Optional[str]

    @classmethod
    def from_request(cls, request: RoleRequest) -> "StagedAccount":
        email = _clean(request.email)
        return cls(
            request_id=request.id,
            user_id=request.user_id,
            requested_role=request.requested_role,
            program=_clean(request.program),
            name=_clean(request.name),
            email=email.lower() if email else None,
            password_hash=request.password_hash or None,
            branch=_clean(request.branch),
            course=_clean(request.course),
        )

    @property
    def has_registration_data(self) -> bool:
        return bool(self.name and self.email and self.password_hash)


# ---------------------------
# Helpers
# ---------------------------

def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _get_request(request_id: int, db: AsyncSession) -> RoleRequest:
    result = await db.execute(
        select(RoleRequest)
        .where(RoleRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFound("Request not found")
    return request


async def _find_user_by_email(email: str, db: AsyncSession) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def _user_exists(user_id: int, db: AsyncSession) -> bool:
    found = await db.scalar(select(User.id).where(User.id == user_id))
    return found is not None


def _grant_role(user: User, staged: StagedAccount) -> None:
    """Apply an approved role to an existing account."""
    user.role = staged.requested_role
    user.is_verified = True
    if staged.requested_role == UserRole.ADMIN and staged.program:
        # union, an admin may administer several programs
        user.admin_programs = sorted(set(user.admin_programs or []) | {staged.program})
    if staged.branch:
        user.branch = staged.branch
    if staged.program and staged.requested_role != UserRole.ADMIN:
        user.program = staged.program
    if staged.course:
        user.course = staged.course


def _new_user(staged: StagedAccount, created_by_id: Optional[int]) -> User:
    return User(
        name=staged.name,
        email=staged.email,
        password_hash=staged.password_hash,
        role=staged.requested_role,
        is_verified=True,
        branch=staged.branch,
        program=staged.program,
        course=staged.course,
        admin_programs=(
            [staged.program]
            if staged.requested_role == UserRole.ADMIN and staged.program
            else []
        ),
        created_by_id=created_by_id,
    )


async def _find_account(staged: StagedAccount, db: AsyncSession) -> Optional[User]:
    """The linked account, else an existing account under the staged email."""
    if staged.user_id is not None:
        result = await db.execute(
            select(User)
            .where(User.id == staged.user_id)
            .execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if user is not None:
            return user
    if staged.email:
        # the account may have been created through another path (or by
        # an interrupted earlier approval) since the request was filed
        return await _find_user_by_email(staged.email, db)
    return None


async def _compare_and_set(request_id: int, values: dict, db: AsyncSession) -> None:
    """
    pending -> decided, without committing. Whoever updates the row first
    wins; everyone else gets AlreadyProcessed.
    """
    result = await db.execute(
        update(RoleRequest)
        .where(RoleRequest.id == request_id, RoleRequest.status == RequestStatus.PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise AlreadyProcessed()


def _decision_values(status: RequestStatus, reviewer_id: int, remarks: Optional[str]) -> dict:
    values = {
        "status": status,
        "reviewed_by_id": reviewer_id,
        "reviewed_at": _now(),
    }
    if remarks:
        values["remarks"] = remarks
    return values


async def _write_identity(
    staged: StagedAccount,
    created_by_id: Optional[int],
    db: AsyncSession,
    decision: Optional[dict] = None,
) -> int:
    """
    One provisioning attempt, in a single transaction: upsert the account,
    read it back by id, then either claim the pending request with
    `decision` or just link the account to it. Nothing is committed unless
    every step succeeds, so a lost claim never leaves a granted role behind.
    Safe to repeat; every attempt starts from a fresh lookup.
    """
    try:
        user = await _find_account(staged, db)
        if user is not None:
            _grant_role(user, staged)
            action = "updated"
        else:
            if not staged.has_registration_data:
                raise ValidationError("Cannot approve request: missing required user data")
            user = _new_user(staged, created_by_id)
            db.add(user)
            action = "created"

        await db.flush()
        user_id = user.id
        if not await _user_exists(user_id, db):
            raise IdentityNotDurable(f"User {user_id} not found after write")

        if decision is not None:
            await _compare_and_set(staged.request_id, {**decision, "user_id": user_id}, db)
        else:
            await db.execute(
                update(RoleRequest)
                .where(RoleRequest.id == staged.request_id)
                .values(user_id=user_id)
                .execution_options(synchronize_session=False)
            )

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("identity_provisioned", request_id=staged.request_id, user_id=user_id, action=action)
    return user_id


async def _provision_identity(
    staged: StagedAccount,
    created_by_id: Optional[int],
    db: AsyncSession,
    decision: Optional[dict] = None,
) -> int:
    try:
        return await with_retry(
            lambda: _write_identity(staged, created_by_id, db, decision),
            max_attempts=settings.USER_CREATE_MAX_ATTEMPTS,
            backoff=settings.USER_CREATE_RETRY_BACKOFF_SECONDS,
            retry_on=(SQLAlchemyError, IdentityNotDurable),
            label="identity_write",
        )
    except RetryExhausted as exc:
        logger.error(
            "identity_provisioning_failed",
            request_id=staged.request_id,
            attempts=exc.attempts,
            error=str(exc.last_error),
        )
        raise PersistenceFailure()


async def _mark_rejected(
    request_id: int,
    reviewer_id: int,
    remarks: Optional[str],
    db: AsyncSession,
) -> None:
    try:
        await _compare_and_set(request_id, _decision_values(RequestStatus.REJECTED, reviewer_id, remarks), db)
        await db.commit()
    except AlreadyProcessed:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("role_request_status_write_failed", request_id=request_id, error=str(exc))
        raise PersistenceFailure("Failed to record the decision. Please try again.")


# ==========================================================
# LISTING
# ==========================================================

async def list_pending_requests(reviewer: User, db: AsyncSession) -> list[RoleRequestResponse]:
    result = await db.execute(
        select(RoleRequest)
        .where(RoleRequest.status == RequestStatus.PENDING)
        .where(visible_requests_clause(reviewer))
        .order_by(RoleRequest.created_at.desc(), RoleRequest.id.desc())
    )
    return [RoleRequestResponse.model_validate(r) for r in result.scalars().all()]


# ==========================================================
# DECISION
# ==========================================================

async def decide(
    request_id: int,
    decision: str,
    remarks: Optional[str],
    reviewer: User,
    db: AsyncSession,
    notifier: NotificationDispatcher,
) -> DecisionResponse:
    try:
        status = RequestStatus(decision)
    except ValueError:
        raise ValidationError('Invalid status. Must be "approved" or "rejected"')
    if status == RequestStatus.PENDING:
        raise ValidationError('Invalid status. Must be "approved" or "rejected"')

    reviewer_id = reviewer.id
    remarks = _clean(remarks)

    request = await _get_request(request_id, db)
    logger.info(
        "role_request_decision_started",
        request_id=request_id,
        decision=status.value,
        reviewer_id=reviewer_id,
        requested_role=request.requested_role.value,
    )

    if request.status != RequestStatus.PENDING:
        raise AlreadyProcessed()

    if not can_review(reviewer, request):
        raise Forbidden("You are not authorized to decide this request")

    staged = StagedAccount.from_request(request)
    linked_user_id: Optional[int] = None

    if status == RequestStatus.APPROVED:
        linked_user_id = await _provision_identity(
            staged,
            reviewer_id,
            db,
            decision=_decision_values(status, reviewer_id, remarks),
        )
    else:
        await _mark_rejected(request_id, reviewer_id, remarks, db)

    if status == RequestStatus.APPROVED and not await _user_exists(linked_user_id, db):
        logger.critical(
            "role_request_identity_diverged",
            request_id=request_id,
            user_id=linked_user_id,
        )
        raise ConsistencyError()

    request = await _get_request(request_id, db)
    logger.info(
        "role_request_decided",
        request_id=request_id,
        status=status.value,
        user_id=request.user_id,
        reviewer_id=reviewer_id,
    )

    recipient = staged.email or (request.user.email if request.user else None)
    if recipient:
        await dispatch_quietly(
            notifier,
            recipient=recipient,
            subject=f"Your role request has been {status.value}",
            template_name="role_request_decision",
            data={
                "name": staged.name or (request.user.name if request.user else None),
                "status": status.value,
                "role": staged.requested_role.value,
                "remarks": remarks,
            },
        )

    message = f"Request {status.value} successfully."
    if status == RequestStatus.APPROVED:
        message += " User has been created and can now login."
    return DecisionResponse(detail=message, request=RoleRequestResponse.model_validate(request))


async def batch_decide(
    request_ids: list[int],
    decision: str,
    remarks: Optional[str],
    reviewer: User,
    db: AsyncSession,
    notifier: NotificationDispatcher,
) -> BatchDecisionResponse:
    """Same checks and algorithm as `decide`, one result per id."""
    results: list[BatchDecisionItem] = []
    reviewer_id = reviewer.id

    for request_id in dict.fromkeys(request_ids):
        # a failed item may have rolled back the session and expired the reviewer
        reviewer = await db.get(User, reviewer_id, populate_existing=True)
        try:
            outcome = await decide(request_id, decision, remarks, reviewer, db, notifier)
            results.append(BatchDecisionItem(request_id=request_id, success=True, message=outcome.detail))
        except AppError as exc:
            results.append(
                BatchDecisionItem(request_id=request_id, success=False, kind=exc.kind, message=exc.message)
            )

    succeeded = sum(1 for r in results if r.success)
    return BatchDecisionResponse(
        detail=f"Batch decision completed: {succeeded} of {len(results)} processed",
        results=results,
    )


# ==========================================================
# RECONCILIATION
# ==========================================================

async def _approved_identity(request: RoleRequest, db: AsyncSession) -> Optional[User]:
    """The account an approved request should have produced, if it exists."""
    if request.email:
        return await _find_user_by_email(request.email, db)
    if request.user_id is not None:
        result = await db.execute(select(User).where(User.id == request.user_id))
        return result.scalar_one_or_none()
    return None


async def verification_status(db: AsyncSession) -> VerificationStatusResponse:
    result = await db.execute(
        select(RoleRequest).order_by(RoleRequest.created_at.desc(), RoleRequest.id.desc())
    )
    requests = result.scalars().all()

    approved: list[ApprovedRequestCheck] = []
    pending: list[RequestBrief] = []
    rejected: list[RequestBrief] = []

    for r in requests:
        if r.status == RequestStatus.APPROVED:
            user = await _approved_identity(r, db)
            approved.append(
                ApprovedRequestCheck(
                    request_id=r.id,
                    name=r.name,
                    email=r.email,
                    requested_role=r.requested_role,
                    user_exists=user is not None,
                    user_verified=bool(user and user.is_verified),
                    reviewed_at=r.reviewed_at,
                )
            )
        elif r.status == RequestStatus.PENDING:
            pending.append(
                RequestBrief(
                    id=r.id, name=r.name, email=r.email,
                    requested_role=r.requested_role, created_at=r.created_at,
                )
            )
        else:
            rejected.append(
                RequestBrief(
                    id=r.id, name=r.name, email=r.email,
                    requested_role=r.requested_role, remarks=r.remarks,
                    created_at=r.created_at, reviewed_at=r.reviewed_at,
                )
            )

    created = sum(1 for a in approved if a.user_exists)
    logger.info(
        "verification_status_checked",
        approved=len(approved),
        pending=len(pending),
        rejected=len(rejected),
        users_missing=len(approved) - created,
    )

    return VerificationStatusResponse(
        summary=VerificationSummary(
            total_approved=len(approved),
            total_pending=len(pending),
            total_rejected=len(rejected),
            users_created=created,
            users_missing=len(approved) - created,
        ),
        approved_requests=approved,
        pending_requests=pending,
        rejected_requests=rejected,
    )


async def fix_missing_users(operator: User, db: AsyncSession) -> FixMissingUsersResponse:
    """
    Re-create the account for every approved request whose account is gone.
    The decision was already made, so authorization is not re-checked.
    """
    operator_id = operator.id
    result = await db.execute(
        select(RoleRequest.id).where(RoleRequest.status == RequestStatus.APPROVED)
    )
    approved_ids = list(result.scalars().all())

    fixed: list[FixedUser] = []
    errors: list[FixError] = []

    for request_id in approved_ids:
        request = await _get_request(request_id, db)
        if await _approved_identity(request, db) is not None:
            continue

        staged = StagedAccount.from_request(request)
        if not staged.has_registration_data:
            errors.append(
                FixError(request_id=request_id, email=staged.email, error="No staged registration data to rebuild the account from")
            )
            continue

        try:
            user_id = await _provision_identity(replace(staged, user_id=None), operator_id, db)
        except AppError as exc:
            message = exc.message
            logger.error("fix_missing_user_failed", request_id=request_id, error=message)
            errors.append(FixError(request_id=request_id, email=staged.email, error=message))
            continue

        logger.info("fix_missing_user_repaired", request_id=request_id, user_id=user_id)
        fixed.append(
            FixedUser(request_id=request_id, email=staged.email, name=staged.name, role=staged.requested_role)
        )

    return FixMissingUsersResponse(
        detail=f"Fixed {len(fixed)} missing users",
        fixed_users=fixed,
        errors=errors,
    )


# ==========================================================
# ADMINS
# ==========================================================

async def admins_by_program(program: Optional[str], db: AsyncSession) -> list[UserInfo]:
    """Admins whose admin_programs include `program`."""
    program = _clean(program)
    if not program:
        raise ValidationError("Program parameter is required")

    result = await db.execute(
        select(User).where(User.role == UserRole.ADMIN).order_by(User.name, User.id)
    )
    # admin_programs is a JSON list; membership is checked here to stay portable
    admins = [u for u in result.scalars().all() if program in (u.admin_programs or [])]
    return [UserInfo.model_validate(u) for u in admins]
