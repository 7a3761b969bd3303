"""Initial opportunity, task, subtask and activity log schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "opportunities",
        sa.Column("opportunity_id", sa.String(), nullable=False),
        sa.Column("tenant_scope", sa.String(), nullable=False),
        sa.Column("priority_rank", sa.Integer(), nullable=False),
        sa.Column("priority_tier", sa.String(), nullable=False),
        sa.Column("priority_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("customer_name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("renewal_date", sa.Date(), nullable=True),
        sa.Column("current_products", sa.String(), nullable=False, server_default=""),
        sa.Column("recommended_product", sa.String(), nullable=False),
        sa.Column("current_premium", sa.Float(), nullable=True),
        sa.Column("potential_premium_add", sa.Float(), nullable=True),
        sa.Column("talking_point_1", sa.String(), nullable=True),
        sa.Column("talking_point_2", sa.String(), nullable=True),
        sa.Column("talking_point_3", sa.String(), nullable=True),
        sa.Column("dismissed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("dismissed_reason", sa.String(), nullable=True),
        sa.Column("task_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("opportunity_id"),
    )
    op.create_index("ix_opportunities_tenant_scope", "opportunities", ["tenant_scope"])
    op.create_index("ix_opportunities_priority_tier", "opportunities", ["priority_tier"])
    op.create_index(
        "idx_opportunities_scope_eligible_rank",
        "opportunities",
        ["tenant_scope", "dismissed", "priority_rank"],
    )
    op.create_index(
        "uq_opportunities_task_id",
        "opportunities",
        ["task_id"],
        unique=True,
        sqlite_where=sa.text("task_id IS NOT NULL"),
    )

    op.create_table(
        "tasks",
        sa.Column(
            "task_id",
            sa.String(),
            nullable=False,
            server_default=sa.text("(lower(hex(randomblob(16))))"),
        ),
        sa.Column("tenant_scope", sa.String(), nullable=False),
        sa.Column("correlation_key", sa.String(), nullable=False),
        sa.Column("opportunity_id", sa.String(), nullable=True),
        sa.Column("text", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="todo"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("priority", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("assigned_to", sa.String(), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("customer_name", sa.String(), nullable=True),
        sa.Column("premium_amount", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_tasks_tenant_scope", "tasks", ["tenant_scope"])
    op.create_index("ix_tasks_correlation_key", "tasks", ["correlation_key"], unique=True)
    op.create_index("ix_tasks_opportunity_id", "tasks", ["opportunity_id"])

    op.create_table(
        "task_subtasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("subtask_id", sa.String(), nullable=False),
        sa.Column("text", sa.String(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("priority", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("task_id", "position", name="pk_task_subtasks"),
        sa.UniqueConstraint("subtask_id"),
    )

    op.create_table(
        "activity_log",
        sa.Column("entry_id", sa.Integer(), nullable=False),
        sa.Column("tenant_scope", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=True),
        sa.Column("task_text", sa.String(), nullable=True),
        sa.Column("opportunity_id", sa.String(), nullable=True),
        sa.Column("actor", sa.String(), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("entry_id"),
    )
    op.create_index("ix_activity_log_tenant_scope", "activity_log", ["tenant_scope"])
    op.create_index("ix_activity_log_action", "activity_log", ["action"])
    op.create_index("ix_activity_log_task_id", "activity_log", ["task_id"])
    op.create_index("ix_activity_log_created_at", "activity_log", ["created_at"])


def downgrade() -> None:
    op.drop_table("activity_log")
    op.drop_table("task_subtasks")
    op.drop_index("ix_tasks_opportunity_id", table_name="tasks")
    op.drop_index("ix_tasks_correlation_key", table_name="tasks")
    op.drop_index("ix_tasks_tenant_scope", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("uq_opportunities_task_id", table_name="opportunities")
    op.drop_index("idx_opportunities_scope_eligible_rank", table_name="opportunities")
    op.drop_index("ix_opportunities_priority_tier", table_name="opportunities")
    op.drop_index("ix_opportunities_tenant_scope", table_name="opportunities")
    op.drop_table("opportunities")
