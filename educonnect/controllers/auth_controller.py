from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.controllers.two_factor_controller import issue_sms_challenge
from educonnect.core.config import settings
from educonnect.core.errors import AccountState, InvalidCredentials, NotFound, ValidationError
from educonnect.core.logging import get_logger
from educonnect.core.notifications import NotificationDispatcher
from educonnect.core.security import (
    create_access_token,
    create_pending_2fa_token,
    hash_password,
    verify_password,
)
from educonnect.core.totp import mask_phone
from educonnect.models.role_request import (
    REQUESTABLE_ROLES,
    ROLES_NEEDING_BRANCH_COURSE,
    RequestStatus,
    RoleRequest,
)
from educonnect.models.user import TwoFactorMethod, User, UserRole
from educonnect.schemas.auth import (
    ChallengePending,
    LoginRequest,
    NoChallenge,
    ProfileUpdateRequest,
    RegisterRequest,
    RegistrationRequest,
    UserInfo,
)
from educonnect.schemas.role_request import (
    RequestSubmittedResponse,
    RoleChangeRequest,
    RoleRequestResponse,
)

logger = get_logger(__name__)


def _session(user: User) -> NoChallenge:
    return NoChallenge(
        access_token=create_access_token(user),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserInfo.model_validate(user),
    )


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


async def _email_taken(email: str, db: AsyncSession, exclude_id: int | None = None) -> bool:
    query = select(User.id).where(User.email == email)
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    return (await db.scalar(query)) is not None


# ==========================================================
# ACCOUNTS
# ==========================================================

async def register(payload: RegisterRequest, db: AsyncSession) -> NoChallenge:
    """
    Open self-registration. The account starts as role=pending and
    unverified; its session only reaches /me, /profile and
    /request-verification until a role request is approved.
    """
    email = payload.email.lower()
    if await _email_taken(email, db):
        raise ValidationError("User already exists")

    user = User(
        name=payload.name.strip(),
        email=email,
        password_hash=hash_password(payload.password),
        role=UserRole.PENDING,
        is_verified=False,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("User already exists")
    await db.refresh(user)

    logger.info("user_registered", user_id=user.id)
    return _session(user)


async def request_registration(
    payload: RegistrationRequest,
    db: AsyncSession,
) -> RequestSubmittedResponse:
    """
    Pre-account role request. Nothing is written to users until a reviewer
    approves; the hashed password waits on the request row.
    """
    if payload.password != payload.confirm_password:
        raise ValidationError("Passwords do not match")

    if payload.requested_role not in REQUESTABLE_ROLES:
        raise ValidationError(f"Role {payload.requested_role.value} cannot be requested")

    branch = _optional(payload.branch)
    course = _optional(payload.course)
    if payload.requested_role in ROLES_NEEDING_BRANCH_COURSE and not (branch and course):
        raise ValidationError(
            f"Branch and course are required for {payload.requested_role.value} registration"
        )

    email = payload.email.lower()
    if await _email_taken(email, db):
        raise ValidationError("User with this email already exists")

    result = await db.execute(
        select(RoleRequest.status).where(
            RoleRequest.email == email,
            RoleRequest.status.in_([RequestStatus.PENDING, RequestStatus.APPROVED]),
        )
    )
    statuses = set(result.scalars().all())
    if RequestStatus.PENDING in statuses:
        raise ValidationError("Registration request already pending for this email")
    if RequestStatus.APPROVED in statuses:
        raise ValidationError("A request for this email has already been approved")

    # a previously rejected email files a fresh request; the rejected row stays rejected
    request = RoleRequest(
        requested_role=payload.requested_role,
        current_role="none",
        reason="New user registration request",
        program=_optional(payload.program) or course,
        name=payload.name.strip(),
        email=email,
        password_hash=hash_password(payload.password),
        branch=branch,
        course=course,
    )
    db.add(request)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("Registration request already pending for this email")
    await db.refresh(request)

    logger.info(
        "registration_request_submitted",
        request_id=request.id,
        requested_role=request.requested_role.value,
        program=request.program,
    )
    return RequestSubmittedResponse(
        detail="Registration request submitted successfully. You will be notified once approved.",
        request=RoleRequestResponse.model_validate(request),
    )


# ==========================================================
# SESSION
# ==========================================================

async def login(
    payload: LoginRequest,
    db: AsyncSession,
    notifier: NotificationDispatcher,
) -> NoChallenge | ChallengePending:
    """
    Password check, then either a full session or a second-factor challenge.

    verify_password runs even for unknown emails and both failures share
    one message, so responses do not reveal which emails exist.
    """
    result = await db.execute(select(User).where(User.email == payload.email.lower()))
    user = result.scalar_one_or_none()

    password_ok = verify_password(payload.password, user.password_hash if user else None)
    if not user or not password_ok:
        logger.info("login_failed")
        raise InvalidCredentials("Invalid email or password")

    if not user.is_verified and user.role != UserRole.ADMIN:
        raise AccountState("Account not verified. Please contact administrator.")

    if user.two_factor_enabled:
        pending_token = create_pending_2fa_token(user)
        expires_in = settings.TWO_FACTOR_PENDING_EXPIRE_MINUTES * 60

        if user.two_factor_method == TwoFactorMethod.SMS:
            code = await issue_sms_challenge(user, db, notifier)
            logger.info("login_challenge_issued", user_id=user.id, method="sms")
            return ChallengePending(
                method=TwoFactorMethod.SMS,
                masked_contact=mask_phone(user.sms_phone),
                pending_token=pending_token,
                expires_in=expires_in,
                dev_code=None if settings.is_production else code,
            )

        logger.info("login_challenge_issued", user_id=user.id, method="totp")
        return ChallengePending(
            method=TwoFactorMethod.TOTP,
            pending_token=pending_token,
            expires_in=expires_in,
        )

    user.last_login_at = datetime.now(timezone.utc)
    db.add(user)
    await db.commit()

    logger.info("login_succeeded", user_id=user.id)
    return _session(user)


async def get_me(user: User) -> UserInfo:
    """Current user, already loaded by the dependency."""
    return UserInfo.model_validate(user)


async def update_profile(user: User, payload: ProfileUpdateRequest, db: AsyncSession) -> UserInfo:
    result = await db.execute(select(User).where(User.id == user.id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")

    name = _optional(payload.name)
    if name:
        user.name = name

    if payload.email and payload.email.lower() != user.email:
        email = payload.email.lower()
        if await _email_taken(email, db, exclude_id=user.id):
            raise ValidationError("Email already exists")
        user.email = email

    if payload.branch is not None:
        user.branch = _optional(payload.branch)
    if payload.course is not None:
        user.course = _optional(payload.course)

    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("Email already exists")
    await db.refresh(user)

    logger.info("profile_updated", user_id=user.id)
    return UserInfo.model_validate(user)


# ==========================================================
# ROLE CHANGE
# ==========================================================

async def request_role_change(
    user: User,
    payload: RoleChangeRequest,
    db: AsyncSession,
) -> RequestSubmittedResponse:
    if payload.requested_role not in REQUESTABLE_ROLES:
        raise ValidationError(f"Role {payload.requested_role.value} cannot be requested")

    if user.role == payload.requested_role:
        raise ValidationError("You already have this role")

    existing = await db.scalar(
        select(RoleRequest.id).where(
            RoleRequest.user_id == user.id,
            RoleRequest.status == RequestStatus.PENDING,
        )
    )
    if existing is not None:
        raise ValidationError("You already have a pending role change request")

    request = RoleRequest(
        user_id=user.id,
        requested_role=payload.requested_role,
        current_role=user.role.value,
        reason=payload.reason.strip(),
        program=_optional(payload.program),
    )
    db.add(request)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("You already have a pending role change request")

    result = await db.execute(
        select(RoleRequest)
        .where(RoleRequest.id == request.id)
        .execution_options(populate_existing=True)
    )
    request = result.scalar_one()

    logger.info(
        "role_change_requested",
        request_id=request.id,
        user_id=request.user_id,
        requested_role=request.requested_role.value,
    )
    return RequestSubmittedResponse(
        detail="Role change request submitted successfully",
        request=RoleRequestResponse.model_validate(request),
    )
