from __future__ import annotations

from enum import Enum
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import (
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from educonnect.core.database import Base
from educonnect.models.user import UserRole, utcnow, user_role_type, _enum_values

if TYPE_CHECKING:
    from educonnect.models.user import User


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Roles an applicant may ask for. "pending" and "parent" are never granted
# through the verification workflow.
REQUESTABLE_ROLES = (
    UserRole.STUDENT,
    UserRole.FACULTY,
    UserRole.ADMIN,
    UserRole.LIBRARY,
    UserRole.PLACEMENT,
)

# Roles that must carry branch + course on a registration request
ROLES_NEEDING_BRANCH_COURSE = (UserRole.STUDENT, UserRole.FACULTY, UserRole.PLACEMENT)


class RoleRequest(Base):
    """
    An applicant's request to hold a role, pending reviewer decision.

    user_id is NULL for pre-account registration requests; those carry
    staged registration data (name, email, password_hash, branch, course)
    that the approval step turns into a users row.

    status only ever moves pending -> approved | rejected.
    """
    __tablename__ = "role_requests"

    __table_args__ = (
        Index("ix_role_requests_status_created", "status", "created_at"),
        # at most one pending request per requester
        Index(
            "uq_role_requests_pending_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending' AND user_id IS NOT NULL"),
            sqlite_where=text("status = 'pending' AND user_id IS NOT NULL"),
        ),
        Index(
            "uq_role_requests_pending_email",
            "email",
            unique=True,
            postgresql_where=text("status = 'pending' AND email IS NOT NULL"),
            sqlite_where=text("status = 'pending' AND email IS NOT NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True, index=True)

    user_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    requested_role: Mapped[UserRole] = mapped_column(
        user_role_type,
        nullable=False,
    )
    # role at submission time, "none" for pre-account requests
    current_role: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="New user registration request")
    program: Mapped[Optional[str]] = mapped_column(String(80), nullable=True, index=True)

    status: Mapped[RequestStatus] = mapped_column(
        SAEnum(RequestStatus, name="request_status_enum", values_callable=_enum_values),
        nullable=False,
        default=RequestStatus.PENDING,
        server_default=RequestStatus.PENDING.value,
    )

    # --------------------------------------------------
    # DECISION
    # --------------------------------------------------

    reviewed_by_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # --------------------------------------------------
    # STAGED REGISTRATION DATA (pre-account requests)
    # --------------------------------------------------

    name: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    password_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    branch: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    course: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    user: Mapped[Optional["User"]] = relationship(
        "User",
        foreign_keys=[user_id],
        lazy="joined",
    )

    def __repr__(self) -> str:
        return (
            f"<RoleRequest id={self.id} requested_role={self.requested_role} "
            f"status={self.status}>"
        )
