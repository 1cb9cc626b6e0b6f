"""Add location retention and history indexes

Revision ID: 0002_location_verification_indexes
Revises: 0001_initial
Create Date: 2026-09-20 00:00:00
"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002_location_verification_indexes"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_index(
        "ix_location_verifications_verification_time",
        "location_verifications",
        ["verification_time"],
        unique=False,
    )
    op.create_index(
        "ix_location_accuracy_logs_created_at",
        "location_accuracy_logs",
        ["created_at"],
        unique=False,
    )
    op.create_index(
        "ix_location_permissions_created_at",
        "location_permissions",
        ["created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_location_permissions_created_at", table_name="location_permissions")
    op.drop_index("ix_location_accuracy_logs_created_at", table_name="location_accuracy_logs")
    op.drop_index("ix_location_verifications_verification_time", table_name="location_verifications")
