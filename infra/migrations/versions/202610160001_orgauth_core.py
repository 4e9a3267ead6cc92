"""orgauth core tables

Revision ID: 202610160001
Revises:
Create Date: 2026-10-16
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610160001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "sys_dept",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("tree_path", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("status", sa.Integer(), nullable=False),
        sa.Column("sort", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_sys_dept_code"),
    )
    op.create_index("ix_sys_dept_parent_id", "sys_dept", ["parent_id"])
    op.create_index("ix_sys_dept_tree_path", "sys_dept", ["tree_path"])
    op.create_index("ix_sys_dept_name", "sys_dept", ["name"])
    op.create_index("ix_sys_dept_created_by", "sys_dept", ["created_by"])

    op.create_table(
        "sys_role",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("data_scope", sa.Integer(), nullable=False),
        sa.Column("status", sa.Integer(), nullable=False),
        sa.Column("sort", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_sys_role_code"),
    )
    op.create_index("ix_sys_role_code", "sys_role", ["code"])

    op.create_table(
        "sys_menu",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=False),
        sa.Column("tree_path", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("perm", sa.String(), nullable=True),
        sa.Column("sort", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sys_menu_parent_id", "sys_menu", ["parent_id"])

    op.create_table(
        "sys_role_menu",
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("menu_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["sys_role.id"]),
        sa.ForeignKeyConstraint(["menu_id"], ["sys_menu.id"]),
        sa.PrimaryKeyConstraint("role_id", "menu_id"),
    )

    op.create_table(
        "sys_user",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("nickname", sa.String(), nullable=True),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("dept_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username", name="uq_sys_user_username"),
    )
    op.create_index("ix_sys_user_username", "sys_user", ["username"])
    op.create_index("ix_sys_user_dept_id", "sys_user", ["dept_id"])
    op.create_index("ix_sys_user_created_by", "sys_user", ["created_by"])

    op.create_table(
        "sys_user_role",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["sys_user.id"]),
        sa.ForeignKeyConstraint(["role_id"], ["sys_role.id"]),
        sa.PrimaryKeyConstraint("user_id", "role_id"),
    )


def downgrade() -> None:
    op.drop_table("sys_user_role")
    op.drop_index("ix_sys_user_created_by", table_name="sys_user")
    op.drop_index("ix_sys_user_dept_id", table_name="sys_user")
    op.drop_index("ix_sys_user_username", table_name="sys_user")
    op.drop_table("sys_user")
    op.drop_table("sys_role_menu")
    op.drop_index("ix_sys_menu_parent_id", table_name="sys_menu")
    op.drop_table("sys_menu")
    op.drop_index("ix_sys_role_code", table_name="sys_role")
    op.drop_table("sys_role")
    op.drop_index("ix_sys_dept_created_by", table_name="sys_dept")
    op.drop_index("ix_sys_dept_name", table_name="sys_dept")
    op.drop_index("ix_sys_dept_tree_path", table_name="sys_dept")
    op.drop_index("ix_sys_dept_parent_id", table_name="sys_dept")
    op.drop_table("sys_dept")
