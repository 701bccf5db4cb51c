"""rollout control plane schema

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 09:30:00

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "distributions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("architecture", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_distributions_name", "distributions", ["name"], unique=True)

    op.create_table(
        "releases",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("distribution_id", sa.Integer(), nullable=False),
        sa.Column("version", sa.String(length=64), nullable=False),
        sa.Column("draft", sa.Boolean(), nullable=False),
        sa.Column("yanked", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["distribution_id"], ["distributions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_releases_distribution_id", "releases", ["distribution_id"], unique=False)

    op.create_table(
        "release_services",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("release_id", sa.Integer(), nullable=False),
        sa.Column("service_name", sa.String(length=255), nullable=False),
        sa.Column("watchdog_sec", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["release_id"], ["releases.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("release_id", "service_name", name="uq_release_services_release_service"),
    )
    op.create_index("ix_release_services_release_id", "release_services", ["release_id"], unique=False)

    op.create_table(
        "devices",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("serial_number", sa.String(length=128), nullable=False),
        sa.Column("release_id", sa.Integer(), nullable=True),
        sa.Column("target_release_id", sa.Integer(), nullable=True),
        sa.Column("last_ping", sa.DateTime(timezone=True), nullable=True),
        sa.Column("system_info", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["release_id"], ["releases.id"]),
        sa.ForeignKeyConstraint(["target_release_id"], ["releases.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_devices_serial_number", "devices", ["serial_number"], unique=True)
    op.create_index("ix_devices_release_id", "devices", ["release_id"], unique=False)
    op.create_index("ix_devices_target_release_id", "devices", ["target_release_id"], unique=False)
    op.create_index("ix_devices_last_ping", "devices", ["last_ping"], unique=False)

    op.create_table(
        "device_labels",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("device_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("value", sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("device_id", "name", name="uq_device_labels_device_name"),
    )
    op.create_index("ix_device_labels_device_id", "device_labels", ["device_id"], unique=False)
    op.create_index("ix_device_labels_name", "device_labels", ["name"], unique=False)

    op.create_table(
        "device_networks",
        sa.Column("device_id", sa.Integer(), nullable=False),
        sa.Column("network_score", sa.Integer(), nullable=True),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("download_speed_mbps", sa.Float(), nullable=True),
        sa.Column("upload_speed_mbps", sa.Float(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "network_score >= 1 AND network_score <= 5",
            name="ck_device_networks_score_range",
        ),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"]),
        sa.PrimaryKeyConstraint("device_id"),
    )

    op.create_table(
        "deployments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("release_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["release_id"], ["releases.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deployments_release_id", "deployments", ["release_id"], unique=False)
    op.create_index("ix_deployments_status", "deployments", ["status"], unique=False)
    op.create_index(
        "uq_deployments_release_in_progress",
        "deployments",
        ["release_id"],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
        sqlite_where=sa.text("status = 'in_progress'"),
    )

    op.create_table(
        "deployment_devices",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("deployment_id", sa.Integer(), nullable=False),
        sa.Column("device_id", sa.Integer(), nullable=False),
        sa.Column("serial_number", sa.String(length=128), nullable=False),
        sa.Column("release_id", sa.Integer(), nullable=True),
        sa.Column("target_release_id", sa.Integer(), nullable=True),
        sa.Column("last_ping", sa.DateTime(timezone=True), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["deployment_id"], ["deployments.id"]),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("deployment_id", "device_id", name="uq_deployment_devices_deployment_device"),
    )
    op.create_index("ix_deployment_devices_deployment_id", "deployment_devices", ["deployment_id"], unique=False)
    op.create_index("ix_deployment_devices_device_id", "deployment_devices", ["device_id"], unique=False)

    op.create_table(
        "deployment_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("deployment_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("status_from", sa.String(length=32), nullable=True),
        sa.Column("status_to", sa.String(length=32), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["deployment_id"], ["deployments.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deployment_events_deployment_id", "deployment_events", ["deployment_id"], unique=False)
    op.create_index("ix_deployment_events_event_type", "deployment_events", ["event_type"], unique=False)

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("payload_hash", sa.String(length=128), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"], unique=False)
    op.create_index("ix_audit_log_action", "audit_log", ["action"], unique=False)
    op.create_index("ix_audit_log_payload_hash", "audit_log", ["payload_hash"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_log_payload_hash", table_name="audit_log")
    op.drop_index("ix_audit_log_action", table_name="audit_log")
    op.drop_index("ix_audit_log_actor_id", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("ix_deployment_events_event_type", table_name="deployment_events")
    op.drop_index("ix_deployment_events_deployment_id", table_name="deployment_events")
    op.drop_table("deployment_events")

    op.drop_index("ix_deployment_devices_device_id", table_name="deployment_devices")
    op.drop_index("ix_deployment_devices_deployment_id", table_name="deployment_devices")
    op.drop_table("deployment_devices")

    op.drop_index("uq_deployments_release_in_progress", table_name="deployments")
    op.drop_index("ix_deployments_status", table_name="deployments")
    op.drop_index("ix_deployments_release_id", table_name="deployments")
    op.drop_table("deployments")

    op.drop_table("device_networks")

    op.drop_index("ix_device_labels_name", table_name="device_labels")
    op.drop_index("ix_device_labels_device_id", table_name="device_labels")
    op.drop_table("device_labels")

    op.drop_index("ix_devices_last_ping", table_name="devices")
    op.drop_index("ix_devices_target_release_id", table_name="devices")
    op.drop_index("ix_devices_release_id", table_name="devices")
    op.drop_index("ix_devices_serial_number", table_name="devices")
    op.drop_table("devices")

    op.drop_index("ix_release_services_release_id", table_name="release_services")
    op.drop_table("release_services")

    op.drop_index("ix_releases_distribution_id", table_name="releases")
    op.drop_table("releases")

    op.drop_index("ix_distributions_name", table_name="distributions")
    op.drop_table("distributions")
