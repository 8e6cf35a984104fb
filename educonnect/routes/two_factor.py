from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.controllers import two_factor_controller
from educonnect.core.database import get_db
from educonnect.core.dependencies import require_verified
from educonnect.core.notifications import NotificationDispatcher, get_notifier
from educonnect.models.user import User
from educonnect.schemas.auth import NoChallenge
from educonnect.schemas.two_factor import (
    TwoFactorCodeRequest,
    TwoFactorConfirmRequest,
    TwoFactorLoginRequest,
    TwoFactorResendResponse,
    TwoFactorSetupRequest,
    TwoFactorSetupResponse,
    TwoFactorStatusResponse,
)

router = APIRouter(prefix="/auth/2fa", tags=["Two-Factor Auth"])


# ---------------------------
# Enrollment (full session required)
# ---------------------------

@router.post(
    "/setup",
    response_model=TwoFactorSetupResponse,
    summary="Begin 2FA Enrollment",
    description="""
`totp`: returns a secret, an `otpauth://` URI and a QR code for an authenticator app.
`sms`: sends a 6-digit code to `phone`.
Confirm with `POST /auth/2fa/verify-setup`.
    """,
)
async def setup(
    payload: TwoFactorSetupRequest,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> TwoFactorSetupResponse:
    return await two_factor_controller.begin_enrollment(
        current_user, payload.method, payload.phone, db, notifier
    )


@router.post("/verify-setup", response_model=TwoFactorStatusResponse, summary="Confirm 2FA Enrollment")
async def verify_setup(
    payload: TwoFactorConfirmRequest,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
) -> TwoFactorStatusResponse:
    return await two_factor_controller.confirm_enrollment(current_user, payload.method, payload.code, db)


@router.post("/disable", response_model=TwoFactorStatusResponse, summary="Disable 2FA")
async def disable(
    payload: TwoFactorCodeRequest,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
) -> TwoFactorStatusResponse:
    return await two_factor_controller.disable(current_user, payload.code, db)


@router.post(
    "/resend",
    response_model=TwoFactorResendResponse,
    summary="Resend SMS Code",
    description="Issues a fresh SMS code. The previous code stops working.",
)
async def resend(
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> TwoFactorResendResponse:
    return await two_factor_controller.resend_code(current_user, db, notifier)


# ---------------------------
# Login challenge (pending token in body)
# ---------------------------

@router.post(
    "/verify-login",
    response_model=NoChallenge,
    summary="Complete 2FA Login",
    description="Exchanges the `pending_token` from `/auth/login` plus a code for a full session.",
)
async def verify_login(
    payload: TwoFactorLoginRequest,
    db: AsyncSession = Depends(get_db),
) -> NoChallenge:
    return await two_factor_controller.verify_login_challenge(payload.pending_token, payload.code, db)
