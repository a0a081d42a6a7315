"""Initial geofenced attendance schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
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

user_role = postgresql.ENUM(
    "admin",
    "regional_manager",
    "department_head",
    "staff",
    name="user_role",
    create_type=False,
)
check_in_method = postgresql.ENUM(
    "proximity",
    "qr",
    "offpremises_confirmed",
    name="check_in_method",
    create_type=False,
)
check_out_method = postgresql.ENUM(
    "proximity",
    "qr",
    "emergency",
    "auto_system",
    name="check_out_method",
    create_type=False,
)
offpremises_status = postgresql.ENUM(
    "pending",
    "approved",
    "denied",
    name="offpremises_status",
    create_type=False,
)
device_class = postgresql.ENUM(
    "mobile",
    "tablet",
    "laptop",
    "desktop",
    name="device_class",
    create_type=False,
)
violation_type = postgresql.ENUM(
    "device_sharing",
    "double_checkin_attempt",
    name="violation_type",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "USER",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)

_ENUMS = (
    user_role,
    check_in_method,
    check_out_method,
    offpremises_status,
    device_class,
    violation_type,
    audit_actor_type,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        _created_at(),
        sa.UniqueConstraint("code", name="uq_departments_code"),
    )

    op.create_table(
        "geofence_locations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=512), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("radius_m", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "requires_early_checkout_reason",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "working_hours",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "user_profiles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=True),
        sa.Column("last_name", sa.String(length=255), nullable=True),
        sa.Column("role", user_role, nullable=False, server_default="staff"),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("assigned_location_id", sa.Integer(), nullable=True),
        sa.Column("manager_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["assigned_location_id"], ["geofence_locations.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["manager_id"], ["user_profiles.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("email", name="uq_user_profiles_email"),
    )
    op.create_index("ix_user_profiles_department_id", "user_profiles", ["department_id"], unique=False)
    op.create_index("ix_user_profiles_manager_id", "user_profiles", ["manager_id"], unique=False)

    op.create_table(
        "user_assigned_locations",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["location_id"], ["geofence_locations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "location_id"),
    )

    op.create_table(
        "device_radius_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("device_type", device_class, nullable=False),
        sa.Column("check_in_radius_m", sa.Integer(), nullable=False),
        sa.Column("check_out_radius_m", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("updated_by_id", sa.Integer(), nullable=True),
        _updated_at(),
        sa.ForeignKeyConstraint(["updated_by_id"], ["user_profiles.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("device_type", name="uq_device_radius_settings_device_type"),
    )

    op.create_table(
        "pending_offpremises_checkins",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("current_location_name", sa.String(length=512), nullable=False),
        sa.Column("google_maps_name", sa.String(length=512), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("accuracy", sa.Float(), nullable=True),
        sa.Column("device_info", sa.String(length=1024), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", offpremises_status, nullable=False, server_default="pending"),
        sa.Column("approved_by_id", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["user_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approved_by_id"], ["user_profiles.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_pending_offpremises_checkins_user_id",
        "pending_offpremises_checkins",
        ["user_id"],
        unique=False,
    )
    op.create_index(
        "ix_pending_offpremises_checkins_status",
        "pending_offpremises_checkins",
        ["status"],
        unique=False,
    )

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("check_in_location_id", sa.Integer(), nullable=True),
        sa.Column("check_in_location_name", sa.String(length=255), nullable=True),
        sa.Column("check_in_method", check_in_method, nullable=False),
        sa.Column("check_in_latitude", sa.Float(), nullable=True),
        sa.Column("check_in_longitude", sa.Float(), nullable=True),
        sa.Column("check_in_distance_m", sa.Float(), nullable=True),
        sa.Column("gps_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("proximity_verified", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("device_class", sa.String(length=32), nullable=True),
        sa.Column("is_late_arrival", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("lateness_reason", sa.Text(), nullable=True),
        sa.Column("check_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_location_id", sa.Integer(), nullable=True),
        sa.Column("check_out_location_name", sa.String(length=255), nullable=True),
        sa.Column("check_out_method", check_out_method, nullable=True),
        sa.Column("check_out_latitude", sa.Float(), nullable=True),
        sa.Column("check_out_longitude", sa.Float(), nullable=True),
        sa.Column("is_remote_checkout", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("early_checkout_reason", sa.Text(), nullable=True),
        sa.Column("work_hours", sa.Float(), nullable=True),
        sa.Column(
            "on_official_duty_outside_premises",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("off_premises_request_id", sa.Integer(), nullable=True),
        sa.Column("is_emergency_checkout", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("emergency_reason", sa.Text(), nullable=True),
        sa.Column("auto_checkout", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["user_id"], ["user_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["check_in_location_id"], ["geofence_locations.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["check_out_location_id"], ["geofence_locations.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(
            ["off_premises_request_id"],
            ["pending_offpremises_checkins.id"],
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint("off_premises_request_id", name="uq_attendance_records_off_premises_request_id"),
    )
    op.create_index(
        "uq_attendance_records_open_per_day",
        "attendance_records",
        ["user_id", "attendance_date"],
        unique=True,
        postgresql_where=sa.text("check_out_time IS NULL"),
    )
    op.create_index(
        "ix_attendance_records_user_date",
        "attendance_records",
        ["user_id", "attendance_date"],
        unique=False,
    )

    op.create_table(
        "device_user_bindings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("device_id", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "device_info",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("ip_address", sa.String(length=128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["user_profiles.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_device_user_bindings_device_id", "device_user_bindings", ["device_id"], unique=False)
    op.create_index("ix_device_user_bindings_user_id", "device_user_bindings", ["user_id"], unique=False)
    op.create_index(
        "uq_device_user_bindings_active_device",
        "device_user_bindings",
        ["device_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "device_security_violations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("device_id", sa.String(length=255), nullable=False),
        sa.Column("ip_address", sa.String(length=128), nullable=True),
        sa.Column("attempted_user_id", sa.Integer(), nullable=False),
        sa.Column("bound_user_id", sa.Integer(), nullable=True),
        sa.Column("violation_type", violation_type, nullable=False),
        sa.Column(
            "device_info",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _created_at(),
        sa.ForeignKeyConstraint(["attempted_user_id"], ["user_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["bound_user_id"], ["user_profiles.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_device_security_violations_device_id",
        "device_security_violations",
        ["device_id"],
        unique=False,
    )
    op.create_index(
        "ix_device_security_violations_created_at",
        "device_security_violations",
        ["created_at"],
        unique=False,
    )

    op.create_table(
        "leave_status",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("leave_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="on_leave"),
        sa.Column("leave_request_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user_profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "leave_date", name="uq_leave_status_user_date"),
    )

    op.create_table(
        "staff_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("recipient_id", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("notification_type", sa.String(length=64), nullable=False),
        sa.Column(
            "data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.ForeignKeyConstraint(["recipient_id"], ["user_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["user_profiles.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_staff_notifications_recipient_id",
        "staff_notifications",
        ["recipient_id"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
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
    op.drop_index("ix_staff_notifications_recipient_id", table_name="staff_notifications")
    op.drop_table("staff_notifications")
    op.drop_table("leave_status")
    op.drop_index("ix_device_security_violations_created_at", table_name="device_security_violations")
    op.drop_index("ix_device_security_violations_device_id", table_name="device_security_violations")
    op.drop_table("device_security_violations")
    op.drop_index("uq_device_user_bindings_active_device", table_name="device_user_bindings")
    op.drop_index("ix_device_user_bindings_user_id", table_name="device_user_bindings")
    op.drop_index("ix_device_user_bindings_device_id", table_name="device_user_bindings")
    op.drop_table("device_user_bindings")
    op.drop_index("ix_attendance_records_user_date", table_name="attendance_records")
    op.drop_index("uq_attendance_records_open_per_day", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_index("ix_pending_offpremises_checkins_status", table_name="pending_offpremises_checkins")
    op.drop_index("ix_pending_offpremises_checkins_user_id", table_name="pending_offpremises_checkins")
    op.drop_table("pending_offpremises_checkins")
    op.drop_table("device_radius_settings")
    op.drop_table("user_assigned_locations")
    op.drop_index("ix_user_profiles_manager_id", table_name="user_profiles")
    op.drop_index("ix_user_profiles_department_id", table_name="user_profiles")
    op.drop_table("user_profiles")
    op.drop_table("geofence_locations")
    op.drop_table("departments")

    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
