"""SQLModel ORM tables for opportunity, task and activity storage."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    PrimaryKeyConstraint,
    String,
    Text,
    text,
)
from sqlmodel import Field, SQLModel

# SQLite has no uuid generator; hex of 16 random bytes is the store-side id.
TASK_ID_SERVER_DEFAULT = "(lower(hex(randomblob(16))))"


class OpportunityRow(SQLModel, table=True):
    __tablename__ = "opportunities"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "uq_opportunities_task_id",
            "task_id",
            unique=True,
            sqlite_where=text("task_id IS NOT NULL"),
        ),
        Index(
            "idx_opportunities_scope_eligible_rank",
            "tenant_scope",
            "dismissed",
            "priority_rank",
        ),
    )

    opportunity_id: str = Field(primary_key=True)
    tenant_scope: str = Field(index=True)
    priority_rank: int
    priority_tier: str = Field(index=True)
    priority_score: int = 0
    customer_name: str
    phone: str | None = None
    email: str | None = None
    renewal_date: date | None = Field(default=None, sa_column=Column(Date, nullable=True))
    current_products: str = ""
    recommended_product: str
    current_premium: float | None = None
    potential_premium_add: float | None = None
    talking_point_1: str | None = None
    talking_point_2: str | None = None
    talking_point_3: str | None = None
    dismissed: bool = False
    dismissed_reason: str | None = None
    task_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]

    task_id: str | None = Field(
        default=None,
        sa_column=Column(
            String,
            primary_key=True,
            server_default=text(TASK_ID_SERVER_DEFAULT),
        ),
    )
    tenant_scope: str = Field(index=True)
    correlation_key: str = Field(unique=True, index=True)
    opportunity_id: str | None = Field(default=None, index=True)
    text: str
    status: str = "todo"
    completed: bool = False
    priority: str
    created_by: str
    assigned_to: str
    due_date: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    notes: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    category: str
    customer_name: str | None = None
    premium_amount: float | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskSubtaskRow(SQLModel, table=True):
    __tablename__ = "task_subtasks"  # type: ignore[bad-override]
    __table_args__ = (PrimaryKeyConstraint("task_id", "position", name="pk_task_subtasks"),)

    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    position: int
    subtask_id: str = Field(unique=True)
    text: str
    completed: bool = False
    priority: str


class ActivityLogRow(SQLModel, table=True):
    __tablename__ = "activity_log"  # type: ignore[bad-override]

    entry_id: int | None = Field(default=None, primary_key=True)
    tenant_scope: str = Field(index=True)
    action: str = Field(index=True)
    task_id: str | None = Field(default=None, index=True)
    task_text: str | None = None
    opportunity_id: str | None = None
    actor: str
    details_json: str = Field(sa_column=Column(Text, nullable=False, server_default="{}"))
    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), index=True, nullable=False),
    )
