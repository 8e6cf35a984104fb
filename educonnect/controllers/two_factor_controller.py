import re
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.core.config import settings
from educonnect.core.errors import (
    AccountState,
    CodeExpired,
    InvalidCode,
    NoEnrollmentInProgress,
    NotConfigured,
    NotEnabled,
    NotFound,
    TooManyAttempts,
    ValidationError,
)
from educonnect.core.logging import get_logger
from educonnect.core.notifications import NotificationDispatcher, dispatch_quietly
from educonnect.core.security import create_access_token, decode_pending_2fa_token
from educonnect.core.totp import (
    constant_time_equals,
    generate_numeric_code,
    generate_secret,
    hash_code,
    mask_phone,
    provisioning_uri,
    qr_data_uri,
    verify_totp,
)
from educonnect.models.user import TwoFactorMethod, User
from educonnect.schemas.auth import NoChallenge, UserInfo
from educonnect.schemas.two_factor import (
    TwoFactorResendResponse,
    TwoFactorSetupResponse,
    TwoFactorStatusResponse,
)

logger = get_logger(__name__)

_PHONE_RE = re.compile(r"^\+?[0-9]{7,15}$")


# ---------------------------
# Helpers
# ---------------------------

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _normalize_phone(phone: str | None) -> str:
    if not phone or not phone.strip():
        raise ValidationError("Phone number is required for SMS two-factor authentication")
    cleaned = re.sub(r"[\s\-()]", "", phone.strip())
    if not _PHONE_RE.match(cleaned):
        raise ValidationError("Please enter a valid phone number")
    return cleaned


def _dev_code(code: str) -> str | None:
    # Surface the code directly outside production so flows stay testable
    # without an SMS provider.
    return None if settings.is_production else code


async def issue_sms_challenge(
    user: User,
    db: AsyncSession,
    notifier: NotificationDispatcher,
) -> str:
    """
    Generate a fresh 6-digit code for user.sms_phone, overwriting any previous
    one (two valid codes never coexist), persist its hash + expiry and send it.
    Dispatch failure is logged; the stored code stays valid.
    Returns the plain code.
    """
    code = generate_numeric_code()
    user.sms_code_hash = hash_code(code)
    user.sms_code_expires_at = _now() + timedelta(minutes=settings.SMS_CODE_EXPIRE_MINUTES)
    user.sms_code_attempts = 0
    db.add(user)
    await db.commit()

    await dispatch_quietly(
        notifier,
        recipient=user.sms_phone,
        subject="Verification code",
        template_name="two_factor_code",
        data={"code": code, "expires_in_minutes": settings.SMS_CODE_EXPIRE_MINUTES},
    )
    return code


async def _check_sms_code(user: User, code: str, db: AsyncSession) -> None:
    """
    Validate `code` against the stored SMS code. Failed attempts are counted;
    after SMS_CODE_MAX_ATTEMPTS the code is burned. Does not consume the code.
    """
    if not user.sms_code_hash or not user.sms_code_expires_at:
        raise NoEnrollmentInProgress("No code has been issued. Please request a new code.")

    if _as_utc(user.sms_code_expires_at) < _now():
        raise CodeExpired()

    if user.sms_code_attempts >= settings.SMS_CODE_MAX_ATTEMPTS:
        user.clear_sms_code()
        await db.commit()
        raise TooManyAttempts()

    if not constant_time_equals(user.sms_code_hash, hash_code(code)):
        user.sms_code_attempts += 1
        await db.commit()
        raise InvalidCode()


async def _check_active_code(user: User, code: str, db: AsyncSession) -> None:
    """Validate a code against the user's active second factor."""
    if user.two_factor_method == TwoFactorMethod.TOTP:
        if not verify_totp(user.totp_secret or "", code):
            raise InvalidCode()
        return

    if user.two_factor_method == TwoFactorMethod.SMS:
        await _check_sms_code(user, code, db)
        return

    raise InvalidCode()


async def _load_user(user_id: int, db: AsyncSession) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    return user


# ==========================================================
# ENROLLMENT
# 1) setup      -> temp secret (totp) or code sent (sms)
# 2) verify     -> 2FA enabled
# ==========================================================

async def begin_enrollment(
    user: User,
    method: str,
    phone: str | None,
    db: AsyncSession,
    notifier: NotificationDispatcher,
) -> TwoFactorSetupResponse:
    user = await _load_user(user.id, db)

    if user.two_factor_enabled:
        raise ValidationError("Two-factor authentication is already enabled. Disable it first.")

    if method == TwoFactorMethod.TOTP.value:
        secret = generate_secret()
        user.totp_temp_secret = secret
        uri = provisioning_uri(secret, user.email, settings.TOTP_ISSUER)
        db.add(user)
        await db.commit()

        logger.info("two_factor_setup_started", user_id=user.id, method="totp")
        return TwoFactorSetupResponse(
            method="totp",
            secret=secret,
            otpauth_uri=uri,
            qr_code=qr_data_uri(uri),
            detail="Scan the QR code with your authenticator app, then confirm with a code.",
        )

    if method == TwoFactorMethod.SMS.value:
        user.sms_phone = _normalize_phone(phone)
        user.two_factor_method = TwoFactorMethod.SMS
        user.totp_temp_secret = None
        code = await issue_sms_challenge(user, db, notifier)

        logger.info("two_factor_setup_started", user_id=user.id, method="sms")
        return TwoFactorSetupResponse(
            method="sms",
            masked_phone=mask_phone(user.sms_phone),
            expires_in=settings.SMS_CODE_EXPIRE_MINUTES * 60,
            dev_code=_dev_code(code),
            detail="Verification code sent.",
        )

    raise ValidationError("Invalid two-factor method. Must be 'totp' or 'sms'")


async def confirm_enrollment(
    user: User,
    method: str,
    code: str,
    db: AsyncSession,
) -> TwoFactorStatusResponse:
    user = await _load_user(user.id, db)

    if method == TwoFactorMethod.TOTP.value:
        if not user.totp_temp_secret:
            raise NoEnrollmentInProgress()
        if not verify_totp(user.totp_temp_secret, code):
            raise InvalidCode()

        secret = user.totp_temp_secret
        user.clear_two_factor()
        user.totp_secret = secret
        user.two_factor_method = TwoFactorMethod.TOTP
        user.two_factor_enabled = True

    elif method == TwoFactorMethod.SMS.value:
        if user.two_factor_method != TwoFactorMethod.SMS or not user.sms_code_hash:
            raise NoEnrollmentInProgress()
        await _check_sms_code(user, code, db)

        user.clear_sms_code()
        user.totp_secret = None
        user.totp_temp_secret = None
        user.two_factor_enabled = True

    else:
        raise ValidationError("Invalid two-factor method. Must be 'totp' or 'sms'")

    db.add(user)
    await db.commit()
    logger.info("two_factor_enabled", user_id=user.id, method=user.two_factor_method.value)

    return TwoFactorStatusResponse(
        enabled=True,
        method=user.two_factor_method.value,
        detail="Two-factor authentication enabled.",
    )


async def disable(user: User, code: str, db: AsyncSession) -> TwoFactorStatusResponse:
    user = await _load_user(user.id, db)

    if not user.two_factor_enabled:
        raise NotEnabled()

    try:
        await _check_active_code(user, code, db)
    except (CodeExpired, NoEnrollmentInProgress):
        raise InvalidCode()

    user.clear_two_factor()
    db.add(user)
    await db.commit()
    logger.info("two_factor_disabled", user_id=user.id)

    return TwoFactorStatusResponse(
        enabled=False,
        method="none",
        detail="Two-factor authentication disabled.",
    )


async def resend_code(
    user: User,
    db: AsyncSession,
    notifier: NotificationDispatcher,
) -> TwoFactorResendResponse:
    user = await _load_user(user.id, db)

    if user.two_factor_method != TwoFactorMethod.SMS or not user.sms_phone:
        raise NotConfigured()

    code = await issue_sms_challenge(user, db, notifier)
    return TwoFactorResendResponse(
        masked_phone=mask_phone(user.sms_phone),
        expires_in=settings.SMS_CODE_EXPIRE_MINUTES * 60,
        dev_code=_dev_code(code),
        detail="A new verification code has been sent.",
    )


# ==========================================================
# LOGIN CHALLENGE
# ==========================================================

async def verify_login_challenge(
    pending_token: str,
    code: str,
    db: AsyncSession,
) -> NoChallenge:
    """
    Second step of login. The pending token proves the password check; the
    code proves the second factor. Expired and wrong codes get the same
    generic answer here.
    """
    payload = decode_pending_2fa_token(pending_token)
    user = await _load_user(int(payload["sub"]), db)

    if not user.two_factor_enabled:
        raise AccountState("Two-factor authentication is not enabled for this account")

    try:
        await _check_active_code(user, code, db)
    except (CodeExpired, NoEnrollmentInProgress):
        raise InvalidCode()

    if user.two_factor_method == TwoFactorMethod.SMS:
        user.clear_sms_code()

    user.last_login_at = _now()
    db.add(user)
    await db.commit()
    logger.info("two_factor_login_verified", user_id=user.id, method=user.two_factor_method.value)

    return NoChallenge(
        access_token=create_access_token(user),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserInfo.model_validate(user),
    )
