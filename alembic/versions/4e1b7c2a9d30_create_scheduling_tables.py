"""Create task, recurring instance, calendar event and preference tables

Revision ID: 4e1b7c2a9d30
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4e1b7c2a9d30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "tasks",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="open"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("start_instant", sa.DateTime(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("task_type", sa.String(), nullable=False, server_default="one_off"),
        sa.Column("recurrence_pattern", sa.String(), nullable=True),
        sa.Column("recurrence_ends", sa.Date(), nullable=True),
        sa.Column("recurrence_day_of_month", sa.Integer(), nullable=True),
    )
    op.create_index(op.f("ix_tasks_user_id"), "tasks", ["user_id"], unique=False)
    op.create_index(op.f("ix_tasks_project_id"), "tasks", ["project_id"], unique=False)
    op.create_index(op.f("ix_tasks_deleted_at"), "tasks", ["deleted_at"], unique=False)
    op.create_index(op.f("ix_tasks_start_instant"), "tasks", ["start_instant"], unique=False)

    op.create_table(
        "recurring_task_instances",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("task_id", sa.String(), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("instance_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="scheduled"),
        sa.Column("exception", sa.JSON(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("task_id", "instance_date", name="uq_recurring_instance_task_date"),
    )
    op.create_index(op.f("ix_recurring_task_instances_task_id"), "recurring_task_instances", ["task_id"], unique=False)
    op.create_index(op.f("ix_recurring_task_instances_user_id"), "recurring_task_instances", ["user_id"], unique=False)
    op.create_index(op.f("ix_recurring_task_instances_instance_date"), "recurring_task_instances", ["instance_date"], unique=False)

    op.create_table(
        "task_calendar_events",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("task_id", sa.String(), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("calendar_event_id", sa.String(), nullable=False),
        sa.Column("calendar_id", sa.String(), nullable=False, server_default="primary"),
        sa.Column("event_start", sa.DateTime(), nullable=True),
        sa.Column("event_end", sa.DateTime(), nullable=True),
        sa.Column("event_link", sa.String(), nullable=True),
        sa.Column("is_master_event", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_exception", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("exception_type", sa.String(), nullable=True),
        sa.Column("recurrence_master_id", sa.String(), nullable=True),
        sa.Column("recurrence_instance_date", sa.Date(), nullable=True),
        sa.Column("series_update_scope", sa.String(), nullable=True),
        sa.Column("sync_status", sa.String(), nullable=False, server_default="synced"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_task_calendar_events_task_id"), "task_calendar_events", ["task_id"], unique=False)
    op.create_index(op.f("ix_task_calendar_events_user_id"), "task_calendar_events", ["user_id"], unique=False)
    op.create_index(op.f("ix_task_calendar_events_calendar_event_id"), "task_calendar_events", ["calendar_event_id"], unique=False)
    op.create_index(op.f("ix_task_calendar_events_recurrence_master_id"), "task_calendar_events", ["recurrence_master_id"], unique=False)

    op.create_table(
        "user_calendar_preferences",
        sa.Column("user_id", sa.String(), primary_key=True),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("working_days", sa.JSON(), nullable=False),
        sa.Column("work_start_time", sa.Time(), nullable=False),
        sa.Column("work_end_time", sa.Time(), nullable=False),
        sa.Column("default_task_duration_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("user_calendar_preferences")
    op.drop_index(op.f("ix_task_calendar_events_recurrence_master_id"), table_name="task_calendar_events")
    op.drop_index(op.f("ix_task_calendar_events_calendar_event_id"), table_name="task_calendar_events")
    op.drop_index(op.f("ix_task_calendar_events_user_id"), table_name="task_calendar_events")
    op.drop_index(op.f("ix_task_calendar_events_task_id"), table_name="task_calendar_events")
    op.drop_table("task_calendar_events")
    op.drop_index(op.f("ix_recurring_task_instances_instance_date"), table_name="recurring_task_instances")
    op.drop_index(op.f("ix_recurring_task_instances_user_id"), table_name="recurring_task_instances")
    op.drop_index(op.f("ix_recurring_task_instances_task_id"), table_name="recurring_task_instances")
    op.drop_table("recurring_task_instances")
    op.drop_index(op.f("ix_tasks_start_instant"), table_name="tasks")
    op.drop_index(op.f("ix_tasks_deleted_at"), table_name="tasks")
    op.drop_index(op.f("ix_tasks_project_id"), table_name="tasks")
    op.drop_index(op.f("ix_tasks_user_id"), table_name="tasks")
    op.drop_table("tasks")
