"""Initial biohost schema: accounts, biolinks and page modules.

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a0b1c2d3e4f5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BIGINT = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    # ---------- Accounts ----------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "role_id"),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("role_id", "permission_id"),
    )
    op.create_table(
        "user_entitlements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("feature_code", sa.String(64), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("limit_value", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "feature_code", name="uq_user_entitlements_user_feature"),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )
    op.create_index("idx_audit_events_actor_created", "audit_events", ["actor_user_id", "created_at"])

    # ---------- Projects / domains / themes ----------
    op.create_table(
        "biolink_projects",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("color", sa.String(16), nullable=False, server_default="#6366f1"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_biolink_projects_user_created", "biolink_projects", ["user_id", "created_at"])

    # biolink_id gets its foreign key once biolinks exists (the two tables reference each other).
    op.create_table(
        "biolink_domains",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("host", sa.String(256), nullable=False),
        sa.Column("scheme", sa.String(8), nullable=False, server_default="https"),
        sa.Column("biolink_id", sa.Integer(), nullable=True),
        sa.Column("custom_index_url", sa.String(512), nullable=True),
        sa.Column("custom_not_found_url", sa.String(512), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("verification_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("verification_token", sa.String(64), nullable=True),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("host"),
    )
    op.create_index("idx_biolink_domains_user_enabled", "biolink_domains", ["user_id", "is_enabled"])

    op.create_table(
        "biolink_themes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("slug", sa.String(64), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_gallery", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("category", sa.String(32), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("slug"),
    )
    op.create_index("idx_biolink_themes_system_active_sort", "biolink_themes", ["is_system", "is_active", "sort_order"])
    op.create_index("idx_biolink_themes_user_active", "biolink_themes", ["user_id", "is_active"])

    op.create_table(
        "theme_favourites",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("theme_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["theme_id"], ["biolink_themes.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "theme_id", name="uq_theme_favourites_user_theme"),
    )

    # ---------- Biolinks ----------
    op.create_table(
        "biolinks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("domain_id", sa.Integer(), nullable=True),
        sa.Column("theme_id", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(32), nullable=False, server_default="biolink"),
        sa.Column("url", sa.String(256), nullable=False),
        sa.Column("location_url", sa.String(2048), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("clicks", BIGINT, nullable=False, server_default="0"),
        sa.Column("unique_clicks", BIGINT, nullable=False, server_default="0"),
        sa.Column("last_click_at", sa.DateTime(), nullable=True),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["biolink_projects.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["domain_id"], ["biolink_domains.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["theme_id"], ["biolink_themes.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("domain_id", "url", name="uq_biolinks_domain_url"),
    )
    op.create_index("idx_biolinks_user_type_enabled", "biolinks", ["user_id", "type", "is_enabled"])
    op.create_index("idx_biolinks_user_project", "biolinks", ["user_id", "project_id"])

    with op.batch_alter_table("biolink_domains") as batch:
        batch.create_foreign_key(
            "fk_biolink_domains_biolink_id", "biolinks", ["biolink_id"], ["id"], ondelete="SET NULL"
        )

    op.create_table(
        "biolink_blocks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("biolink_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("region", sa.String(16), nullable=False, server_default="content"),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("location_url", sa.String(512), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("breakpoint_visibility", sa.JSON(), nullable=True),
        sa.Column("clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["biolink_id"], ["biolinks.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_biolink_blocks_biolink_region_order", "biolink_blocks", ["biolink_id", "region", "order"])

    op.create_table(
        "biolink_pixels",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("pixel_id", sa.String(128), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_biolink_pixels_user_type", "biolink_pixels", ["user_id", "type"])

    op.create_table(
        "biolink_pixel",
        sa.Column("biolink_id", sa.Integer(), nullable=False),
        sa.Column("pixel_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["biolink_id"], ["biolinks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["pixel_id"], ["biolink_pixels.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("biolink_id", "pixel_id"),
    )

    op.create_table(
        "biolink_clicks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("biolink_id", sa.Integer(), nullable=False),
        sa.Column("block_id", sa.Integer(), nullable=True),
        sa.Column("visitor_hash", sa.String(64), nullable=True),
        sa.Column("country_code", sa.String(2), nullable=True),
        sa.Column("device_type", sa.String(16), nullable=False, server_default="other"),
        sa.Column("os_name", sa.String(32), nullable=True),
        sa.Column("browser_name", sa.String(32), nullable=True),
        sa.Column("referrer_host", sa.String(256), nullable=True),
        sa.Column("utm_source", sa.String(64), nullable=True),
        sa.Column("utm_medium", sa.String(64), nullable=True),
        sa.Column("utm_campaign", sa.String(64), nullable=True),
        sa.Column("is_unique", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["biolink_id"], ["biolinks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["block_id"], ["biolink_blocks.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_biolink_clicks_biolink_created", "biolink_clicks", ["biolink_id", "created_at"])
    op.create_index("idx_biolink_clicks_biolink_country", "biolink_clicks", ["biolink_id", "country_code"])
    op.create_index("idx_biolink_clicks_biolink_device", "biolink_clicks", ["biolink_id", "device_type"])
    op.create_index("idx_biolink_clicks_block_created", "biolink_clicks", ["block_id", "created_at"])

    op.create_table(
        "biolink_notification_handlers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("biolink_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("events", sa.JSON(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("trigger_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_triggered_at", sa.DateTime(), nullable=True),
        sa.Column("last_failed_at", sa.DateTime(), nullable=True),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["biolink_id"], ["biolinks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "idx_notification_handlers_biolink_enabled", "biolink_notification_handlers", ["biolink_id", "is_enabled"]
    )

    op.create_table(
        "biolink_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("slug", sa.String(128), nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("blocks_json", sa.JSON(), nullable=False),
        sa.Column("settings_json", sa.JSON(), nullable=False),
        sa.Column("placeholders", sa.JSON(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("slug"),
    )
    op.create_index(
        "idx_biolink_templates_category_active_sort", "biolink_templates", ["category", "is_active", "sort_order"]
    )
    op.create_index("idx_biolink_templates_user_active", "biolink_templates", ["user_id", "is_active"])

    op.create_table(
        "biolink_pwas",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("biolink_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("short_name", sa.String(32), nullable=True),
        sa.Column("description", sa.String(256), nullable=True),
        sa.Column("theme_color", sa.String(16), nullable=False, server_default="#6366f1"),
        sa.Column("background_color", sa.String(16), nullable=False, server_default="#ffffff"),
        sa.Column("display", sa.String(16), nullable=False, server_default="standalone"),
        sa.Column("orientation", sa.String(16), nullable=False, server_default="any"),
        sa.Column("icon_url", sa.String(512), nullable=True),
        sa.Column("icon_maskable_url", sa.String(512), nullable=True),
        sa.Column("screenshots", sa.JSON(), nullable=True),
        sa.Column("shortcuts", sa.JSON(), nullable=True),
        sa.Column("start_url", sa.String(512), nullable=True),
        sa.Column("scope", sa.String(512), nullable=True),
        sa.Column("lang", sa.String(8), nullable=False, server_default="en-GB"),
        sa.Column("dir", sa.String(8), nullable=False, server_default="auto"),
        sa.Column("installs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["biolink_id"], ["biolinks.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("biolink_id"),
    )

    op.create_table(
        "biolink_submissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("biolink_id", sa.Integer(), nullable=False),
        sa.Column("block_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("ip_hash", sa.String(64), nullable=True),
        sa.Column("country_code", sa.String(2), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["biolink_id"], ["biolinks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["block_id"], ["biolink_blocks.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_biolink_submissions_biolink_created", "biolink_submissions", ["biolink_id", "created_at"])
    op.create_index("idx_biolink_submissions_biolink_type", "biolink_submissions", ["biolink_id", "type"])


def downgrade() -> None:
    op.drop_index("idx_biolink_submissions_biolink_type", table_name="biolink_submissions")
    op.drop_index("idx_biolink_submissions_biolink_created", table_name="biolink_submissions")
    op.drop_table("biolink_submissions")
    op.drop_table("biolink_pwas")
    op.drop_index("idx_biolink_templates_user_active", table_name="biolink_templates")
    op.drop_index("idx_biolink_templates_category_active_sort", table_name="biolink_templates")
    op.drop_table("biolink_templates")
    op.drop_index("idx_notification_handlers_biolink_enabled", table_name="biolink_notification_handlers")
    op.drop_table("biolink_notification_handlers")
    op.drop_index("idx_biolink_clicks_block_created", table_name="biolink_clicks")
    op.drop_index("idx_biolink_clicks_biolink_device", table_name="biolink_clicks")
    op.drop_index("idx_biolink_clicks_biolink_country", table_name="biolink_clicks")
    op.drop_index("idx_biolink_clicks_biolink_created", table_name="biolink_clicks")
    op.drop_table("biolink_clicks")
    op.drop_table("biolink_pixel")
    op.drop_index("idx_biolink_pixels_user_type", table_name="biolink_pixels")
    op.drop_table("biolink_pixels")
    op.drop_index("idx_biolink_blocks_biolink_region_order", table_name="biolink_blocks")
    op.drop_table("biolink_blocks")
    with op.batch_alter_table("biolink_domains") as batch:
        batch.drop_constraint("fk_biolink_domains_biolink_id", type_="foreignkey")
    op.drop_index("idx_biolinks_user_project", table_name="biolinks")
    op.drop_index("idx_biolinks_user_type_enabled", table_name="biolinks")
    op.drop_table("biolinks")
    op.drop_table("theme_favourites")
    op.drop_index("idx_biolink_themes_user_active", table_name="biolink_themes")
    op.drop_index("idx_biolink_themes_system_active_sort", table_name="biolink_themes")
    op.drop_table("biolink_themes")
    op.drop_index("idx_biolink_domains_user_enabled", table_name="biolink_domains")
    op.drop_table("biolink_domains")
    op.drop_index("idx_biolink_projects_user_created", table_name="biolink_projects")
    op.drop_table("biolink_projects")
    op.drop_index("idx_audit_events_actor_created", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("user_entitlements")
    op.drop_table("role_permissions")
    op.drop_table("user_roles")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_table("users")
