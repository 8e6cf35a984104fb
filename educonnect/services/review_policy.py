"""
Who may review which role requests.

  faculty        student requests of their own program only. A faculty member
                 without a program sees nothing.
  program admin  (admin with admin_programs) student + faculty requests for
                 their programs, plus requests with no program.
  super admin    (admin without admin_programs) admin / library / placement
                 requests, plus student requests with no program.

`can_review` is the decision-time check, `visible_requests_clause` the same
policy as a SQL filter for listings. Keep the two in step.
"""
from __future__ import annotations

from enum import Enum

from sqlalchemy import and_, false, or_
from sqlalchemy.sql.elements import ColumnElement

from educonnect.models.role_request import RoleRequest
from educonnect.models.user import User, UserRole


class ReviewerKind(str, Enum):
    FACULTY = "faculty"
    PROGRAM_ADMIN = "program_admin"
    SUPER_ADMIN = "super_admin"
    NONE = "none"


PROGRAM_ADMIN_ROLES = (UserRole.STUDENT, UserRole.FACULTY)
SUPER_ADMIN_ROLES = (UserRole.ADMIN, UserRole.LIBRARY, UserRole.PLACEMENT)


def _is_unscoped(program: str | None) -> bool:
    return program is None or not program.strip()


def reviewer_kind(reviewer: User) -> ReviewerKind:
    if reviewer.role == UserRole.FACULTY:
        return ReviewerKind.FACULTY
    if reviewer.role == UserRole.ADMIN:
        return ReviewerKind.PROGRAM_ADMIN if reviewer.admin_programs else ReviewerKind.SUPER_ADMIN
    return ReviewerKind.NONE


def can_review(reviewer: User, request: RoleRequest) -> bool:
    kind = reviewer_kind(reviewer)
    role = request.requested_role
    program = request.program

    if kind == ReviewerKind.FACULTY:
        return (
            role == UserRole.STUDENT
            and not _is_unscoped(reviewer.program)
            and not _is_unscoped(program)
            and program == reviewer.program
        )

    if kind == ReviewerKind.PROGRAM_ADMIN:
        return role in PROGRAM_ADMIN_ROLES and (
            _is_unscoped(program) or program in reviewer.admin_programs
        )

    if kind == ReviewerKind.SUPER_ADMIN:
        return role in SUPER_ADMIN_ROLES or (
            role == UserRole.STUDENT and _is_unscoped(program)
        )

    return False


def _unscoped_clause() -> ColumnElement[bool]:
    return or_(RoleRequest.program.is_(None), RoleRequest.program == "")


def visible_requests_clause(reviewer: User) -> ColumnElement[bool]:
    kind = reviewer_kind(reviewer)

    if kind == ReviewerKind.FACULTY:
        if _is_unscoped(reviewer.program):
            return false()
        return and_(
            RoleRequest.requested_role == UserRole.STUDENT,
            RoleRequest.program == reviewer.program,
        )

    if kind == ReviewerKind.PROGRAM_ADMIN:
        return and_(
            RoleRequest.requested_role.in_(PROGRAM_ADMIN_ROLES),
            or_(RoleRequest.program.in_(list(reviewer.admin_programs)), _unscoped_clause()),
        )

    if kind == ReviewerKind.SUPER_ADMIN:
        return or_(
            RoleRequest.requested_role.in_(SUPER_ADMIN_ROLES),
            and_(RoleRequest.requested_role == UserRole.STUDENT, _unscoped_clause()),
        )

    return false()
