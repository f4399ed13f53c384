"""create deployments table

Revision ID: 0001
Revises:
Create Date: 2026-10-16 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

deployment_status = sa.Enum("INSTALLING", "RUNNING", "FAILED", "REMOVED", name="deployment_status")
operation_mode = sa.Enum("NORMAL", "MAINTENANCE", "MIGRATING", "FAILED", "STOPPED", name="operation_mode")
maintenance_source = sa.Enum("MANUAL", "OBSERVER", name="maintenance_source")


def upgrade() -> None:
    op.create_table(
        "deployments",
        sa.Column("deployment_id", sa.Uuid(), nullable=False),
        sa.Column("environment_id", sa.String(length=255), nullable=False),
        sa.Column("stack_id", sa.String(length=512), nullable=False),
        sa.Column("stack_name", sa.String(length=255), nullable=False),
        sa.Column("status", deployment_status, nullable=False),
        sa.Column("operation_mode", operation_mode, nullable=False),
        sa.Column("variables", sa.JSON(), nullable=False),
        sa.Column("stack_version", sa.String(length=100), nullable=True),
        sa.Column("target_version", sa.String(length=100), nullable=True),
        sa.Column("previous_version", sa.String(length=100), nullable=True),
        sa.Column("observer_config", sa.JSON(), nullable=True),
        sa.Column("observer_enabled", sa.Boolean(), nullable=False),
        sa.Column("maintenance_source", maintenance_source, nullable=True),
        sa.Column("mode_reason", sa.Text(), nullable=True),
        sa.Column("deployed_containers", sa.JSON(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("deployment_id"),
    )
    op.create_index("ix_deployments_status", "deployments", ["status"])
    op.create_index("idx_deployments_environment_stack", "deployments", ["environment_id", "stack_name"])


def downgrade() -> None:
    op.drop_index("idx_deployments_environment_stack", table_name="deployments")
    op.drop_index("ix_deployments_status", table_name="deployments")
    op.drop_table("deployments")
    maintenance_source.drop(op.get_bind(), checkfirst=True)
    operation_mode.drop(op.get_bind(), checkfirst=True)
    deployment_status.drop(op.get_bind(), checkfirst=True)
