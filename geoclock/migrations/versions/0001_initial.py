"""Initial location verification schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-09-14 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

location_source = postgresql.ENUM(
    "gps",
    "network",
    "passive",
    "manual",
    name="location_source",
    create_type=False,
)
location_verification_type = postgresql.ENUM(
    "clock_in",
    "clock_out",
    name="location_verification_type",
    create_type=False,
)
location_verification_status = postgresql.ENUM(
    "approved",
    "flagged",
    "rejected",
    name="location_verification_status",
    create_type=False,
)
location_permission_status = postgresql.ENUM(
    "granted",
    "denied",
    "prompt",
    "not_requested",
    name="location_permission_status",
    create_type=False,
)
location_permission_type = postgresql.ENUM(
    "precise",
    "approximate",
    "denied",
    name="location_permission_type",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "STUDENT",
    "ADMIN",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    location_source.create(bind, checkfirst=True)
    location_verification_type.create(bind, checkfirst=True)
    location_verification_status.create(bind, checkfirst=True)
    location_permission_status.create(bind, checkfirst=True)
    location_permission_type.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "clinical_sites",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "clinical_site_locations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("clinical_site_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("radius_m", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("strict_geofence", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["clinical_site_id"], ["clinical_sites.id"], ondelete="CASCADE"),
        sa.CheckConstraint("radius_m > 0", name="ck_clinical_site_locations_radius_positive"),
    )
    op.create_index(
        "ix_clinical_site_locations_clinical_site_id",
        "clinical_site_locations",
        ["clinical_site_id"],
        unique=False,
    )

    op.create_table(
        "time_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("student_id", sa.String(length=255), nullable=False),
        sa.Column("clinical_site_id", sa.Integer(), nullable=True),
        sa.Column("clock_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clock_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clock_in_latitude", sa.Float(), nullable=True),
        sa.Column("clock_in_longitude", sa.Float(), nullable=True),
        sa.Column("clock_in_accuracy", sa.Float(), nullable=True),
        sa.Column("clock_in_source", location_source, nullable=True),
        sa.Column("clock_out_latitude", sa.Float(), nullable=True),
        sa.Column("clock_out_longitude", sa.Float(), nullable=True),
        sa.Column("clock_out_accuracy", sa.Float(), nullable=True),
        sa.Column("clock_out_source", location_source, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["clinical_site_id"], ["clinical_sites.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_time_records_student_id", "time_records", ["student_id"], unique=False)
    op.create_index("ix_time_records_clinical_site_id", "time_records", ["clinical_site_id"], unique=False)

    op.create_table(
        "location_verifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("time_record_id", sa.Integer(), nullable=False),
        sa.Column("verification_type", location_verification_type, nullable=False),
        sa.Column("user_latitude", sa.Text(), nullable=False),
        sa.Column("user_longitude", sa.String(length=64), nullable=False),
        sa.Column("encryption_version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("user_accuracy", sa.Float(), nullable=False),
        sa.Column("location_source", location_source, nullable=False),
        sa.Column("clinical_site_location_id", sa.Integer(), nullable=True),
        sa.Column("distance_from_site", sa.Float(), nullable=True),
        sa.Column("is_within_geofence", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("verification_status", location_verification_status, nullable=False),
        sa.Column("flag_reason", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("verification_time", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["time_record_id"], ["time_records.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["clinical_site_location_id"],
            ["clinical_site_locations.id"],
            ondelete="SET NULL",
        ),
    )
    op.create_index(
        "ix_location_verifications_time_record_id",
        "location_verifications",
        ["time_record_id"],
        unique=False,
    )

    op.create_table(
        "location_accuracy_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("time_record_id", sa.Integer(), nullable=True),
        sa.Column("latitude", sa.Text(), nullable=False),
        sa.Column("longitude", sa.String(length=64), nullable=False),
        sa.Column("accuracy", sa.Float(), nullable=False),
        sa.Column("location_source", location_source, nullable=False),
        sa.Column("verification_type", location_verification_type, nullable=True),
        sa.Column("verification_status", location_verification_status, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["time_record_id"], ["time_records.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_location_accuracy_logs_user_id", "location_accuracy_logs", ["user_id"], unique=False)

    op.create_table(
        "location_permissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("permission_status", location_permission_status, nullable=False),
        sa.Column("permission_type", location_permission_type, nullable=True),
        sa.Column("browser_info", sa.String(length=1024), nullable=True),
        sa.Column("device_info", sa.String(length=1024), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_location_permissions_user_id", "location_permissions", ["user_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_location_permissions_user_id", table_name="location_permissions")
    op.drop_table("location_permissions")
    op.drop_index("ix_location_accuracy_logs_user_id", table_name="location_accuracy_logs")
    op.drop_table("location_accuracy_logs")
    op.drop_index("ix_location_verifications_time_record_id", table_name="location_verifications")
    op.drop_table("location_verifications")
    op.drop_index("ix_time_records_clinical_site_id", table_name="time_records")
    op.drop_index("ix_time_records_student_id", table_name="time_records")
    op.drop_table("time_records")
    op.drop_index("ix_clinical_site_locations_clinical_site_id", table_name="clinical_site_locations")
    op.drop_table("clinical_site_locations")
    op.drop_table("clinical_sites")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    location_permission_type.drop(bind, checkfirst=True)
    location_permission_status.drop(bind, checkfirst=True)
    location_verification_status.drop(bind, checkfirst=True)
    location_verification_type.drop(bind, checkfirst=True)
    location_source.drop(bind, checkfirst=True)
