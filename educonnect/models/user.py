from __future__ import annotations

from enum import Enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column

from educonnect.core.database import Base


# --------------------------------------------------
# ENUMS
# --------------------------------------------------

class UserRole(str, Enum):
    STUDENT = "student"
    FACULTY = "faculty"
    ADMIN = "admin"
    PENDING = "pending"
    LIBRARY = "library"
    PLACEMENT = "placement"
    PARENT = "parent"


class TwoFactorMethod(str, Enum):
    NONE = "none"
    TOTP = "totp"
    SMS = "sms"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# shared by users.role and role_requests.requested_role
user_role_type = SAEnum(UserRole, name="user_role_enum", values_callable=_enum_values)


# --------------------------------------------------
# MODEL
# --------------------------------------------------

class User(Base):
    """
    One row per principal (student, faculty, admin, ...).

    email is always stored lower-cased, so the unique index doubles as a
    case-insensitive uniqueness constraint.

    Two-factor material lives on the row:
      totp_secret        active TOTP secret
      totp_temp_secret   secret issued by setup, not yet confirmed
      sms_code_hash      sha256 of the last issued SMS code (single use)
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True, index=True)

    # --------------------------------------------------
    # IDENTITY
    # --------------------------------------------------

    name: Mapped[str] = mapped_column(String(150), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)

    role: Mapped[UserRole] = mapped_column(
        user_role_type,
        nullable=False,
        default=UserRole.PENDING,
        server_default=UserRole.PENDING.value,
        index=True,
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())

    # --------------------------------------------------
    # ACADEMIC SCOPE
    # --------------------------------------------------

    branch: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    program: Mapped[Optional[str]] = mapped_column(String(80), nullable=True, index=True)
    course: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    # programs an admin administers; empty list = super admin
    admin_programs: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # --------------------------------------------------
    # TWO-FACTOR
    # --------------------------------------------------

    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    two_factor_method: Mapped[TwoFactorMethod] = mapped_column(
        SAEnum(TwoFactorMethod, name="two_factor_method_enum", values_callable=_enum_values),
        nullable=False,
        default=TwoFactorMethod.NONE,
        server_default=TwoFactorMethod.NONE.value,
    )
    totp_secret: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    totp_temp_secret: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    sms_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    sms_code_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sms_code_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sms_code_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # --------------------------------------------------
    # AUDIT
    # --------------------------------------------------

    created_by_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def is_program_admin(self) -> bool:
        return self.role == UserRole.ADMIN and bool(self.admin_programs)

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.ADMIN and not self.admin_programs

    def clear_two_factor(self) -> None:
        """Drop every piece of two-factor state so nothing stale can be reused."""
        self.two_factor_enabled = False
        self.two_factor_method = TwoFactorMethod.NONE
        self.totp_secret = None
        self.totp_temp_secret = None
        self.sms_phone = None
        self.sms_code_hash = None
        self.sms_code_expires_at = None
        self.sms_code_attempts = 0

    def clear_sms_code(self) -> None:
        self.sms_code_hash = None
        self.sms_code_expires_at = None
        self.sms_code_attempts = 0

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"
