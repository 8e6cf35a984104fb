"""create users and role_requests tables

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision  = "001"
down_revision = None
branch_labels = None
depends_on    = None

USER_ROLES = ("student", "faculty", "admin", "pending", "library", "placement", "parent")


def upgrade() -> None:
    user_role_enum = postgresql.ENUM(*USER_ROLES, name="user_role_enum", create_type=False)
    two_factor_method_enum = postgresql.ENUM("none", "totp", "sms", name="two_factor_method_enum", create_type=False)
    request_status_enum = postgresql.ENUM("pending", "approved", "rejected", name="request_status_enum", create_type=False)

    # user_role_enum is shared by both tables, so types are created up front
    bind = op.get_bind()
    for enum_type in (user_role_enum, two_factor_method_enum, request_status_enum):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id",                  sa.Integer(),               primary_key=True, autoincrement=True),
        sa.Column("name",                sa.String(150),             nullable=False),
        sa.Column("email",               sa.String(255),             nullable=False),
        sa.Column("password_hash",       sa.Text(),                  nullable=False),
        sa.Column("role",                user_role_enum,             nullable=False, server_default="pending"),
        sa.Column("is_verified",         sa.Boolean(),               nullable=False, server_default=sa.false()),
        sa.Column("branch",              sa.String(120),             nullable=True),
        sa.Column("program",             sa.String(80),              nullable=True),
        sa.Column("course",              sa.String(120),             nullable=True),
        sa.Column("admin_programs",      sa.JSON(),                  nullable=False, server_default=sa.text("'[]'")),
        sa.Column("two_factor_enabled",  sa.Boolean(),               nullable=False, server_default=sa.false()),
        sa.Column("two_factor_method",   two_factor_method_enum,     nullable=False, server_default="none"),
        sa.Column("totp_secret",         sa.String(64),              nullable=True),
        sa.Column("totp_temp_secret",    sa.String(64),              nullable=True),
        sa.Column("sms_phone",           sa.String(32),              nullable=True),
        sa.Column("sms_code_hash",       sa.String(64),              nullable=True),
        sa.Column("sms_code_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sms_code_attempts",   sa.Integer(),               nullable=False, server_default="0"),
        sa.Column("created_by_id",       sa.Integer(),               sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("last_login_at",       sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at",          sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at",          sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_id",      "users", ["id"],      unique=False)
    op.create_index("ix_users_email",   "users", ["email"],   unique=True)
    op.create_index("ix_users_role",    "users", ["role"],    unique=False)
    op.create_index("ix_users_program", "users", ["program"], unique=False)

    op.create_table(
        "role_requests",
        sa.Column("id",             sa.Integer(),               primary_key=True, autoincrement=True),
        sa.Column("user_id",        sa.Integer(),               sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("requested_role", user_role_enum,             nullable=False),
        sa.Column("current_role",   sa.String(20),              nullable=False, server_default="none"),
        sa.Column("reason",         sa.Text(),                  nullable=False),
        sa.Column("program",        sa.String(80),              nullable=True),
        sa.Column("status",         request_status_enum,        nullable=False, server_default="pending"),
        sa.Column("reviewed_by_id", sa.Integer(),               sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reviewed_at",    sa.DateTime(timezone=True), nullable=True),
        sa.Column("remarks",        sa.Text(),                  nullable=True),
        sa.Column("name",           sa.String(150),             nullable=True),
        sa.Column("email",          sa.String(255),             nullable=True),
        sa.Column("password_hash",  sa.Text(),                  nullable=True),
        sa.Column("branch",         sa.String(120),             nullable=True),
        sa.Column("course",         sa.String(120),             nullable=True),
        sa.Column("created_at",     sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_role_requests_id",      "role_requests", ["id"],      unique=False)
    op.create_index("ix_role_requests_user_id", "role_requests", ["user_id"], unique=False)
    op.create_index("ix_role_requests_program", "role_requests", ["program"], unique=False)
    op.create_index("ix_role_requests_email",   "role_requests", ["email"],   unique=False)
    op.create_index("ix_role_requests_status_created", "role_requests", ["status", "created_at"], unique=False)

    # one pending request per requester, whether identified by account or by email
    op.create_index(
        "uq_role_requests_pending_user",
        "role_requests",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending' AND user_id IS NOT NULL"),
    )
    op.create_index(
        "uq_role_requests_pending_email",
        "role_requests",
        ["email"],
        unique=True,
        postgresql_where=sa.text("status = 'pending' AND email IS NOT NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_role_requests_pending_email",  table_name="role_requests")
    op.drop_index("uq_role_requests_pending_user",   table_name="role_requests")
    op.drop_index("ix_role_requests_status_created", table_name="role_requests")
    op.drop_index("ix_role_requests_email",          table_name="role_requests")
    op.drop_index("ix_role_requests_program",        table_name="role_requests")
    op.drop_index("ix_role_requests_user_id",        table_name="role_requests")
    op.drop_index("ix_role_requests_id",             table_name="role_requests")
    op.drop_table("role_requests")

    op.drop_index("ix_users_program", table_name="users")
    op.drop_index("ix_users_role",    table_name="users")
    op.drop_index("ix_users_email",   table_name="users")
    op.drop_index("ix_users_id",      table_name="users")
    op.drop_table("users")

    postgresql.ENUM(name="request_status_enum").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="two_factor_method_enum").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="user_role_enum").drop(op.get_bind(), checkfirst=True)
