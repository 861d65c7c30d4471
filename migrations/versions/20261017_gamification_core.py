"""Create users, activity log and gamification tables."""

from alembic import op
import sqlalchemy as sa

revision = "20261017_gamification_core"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.func.now(),
    )


def _points(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), nullable=False, server_default="0")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=True),
        sa.Column("avatar_url", sa.String(length=512), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
        _timestamp("created_at"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint("email = lower(email)", name="ck_users_email_lowercase"),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        _timestamp("timestamp"),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("resource_ref", sa.String(length=128), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "event_type", "resource_ref", name="uq_events_user_type_ref"),
    )
    op.create_index("ix_events_user_id_timestamp", "events", ["user_id", "timestamp"])

    op.create_table(
        "point_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        _points("feedback_points"),
        _points("voting_points"),
        _points("research_points"),
        _points("quality_points"),
        _points("bonus_points"),
        _points("weekly_points"),
        _points("monthly_points"),
        _points("total_points"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("last_week_reset", nullable=True),
        _timestamp("last_month_reset", nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", name="uq_point_accounts_user_id"),
        sa.CheckConstraint("total_points >= 0", name="ck_point_accounts_total_non_negative"),
        sa.CheckConstraint("weekly_points >= 0", name="ck_point_accounts_weekly_non_negative"),
        sa.CheckConstraint("monthly_points >= 0", name="ck_point_accounts_monthly_non_negative"),
        sa.CheckConstraint("level >= 1", name="ck_point_accounts_level_positive"),
    )

    op.create_table(
        "point_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("resource_ref", sa.String(length=128), nullable=True),
        sa.Column("resource_type", sa.String(length=50), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "user_id", "resource_ref", "action", name="uq_point_transactions_user_ref_action"
        ),
    )
    op.create_index(
        "ix_point_transactions_user_created",
        "point_transactions",
        ["user_id", "created_at"],
    )

    op.create_table(
        "badges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("tier", sa.String(length=20), nullable=False),
        sa.Column("requirement", sa.Integer(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("key", name="uq_badges_key"),
        sa.CheckConstraint("requirement > 0", name="ck_badges_requirement_positive"),
        sa.CheckConstraint("points >= 0", name="ck_badges_points_non_negative"),
    )
    op.create_index("ix_badges_category", "badges", ["category"])

    op.create_table(
        "user_badges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("badge_id", sa.Integer(), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("earned_at", nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["badge_id"], ["badges.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
    )
    op.create_index("ix_user_badges_user_id", "user_badges", ["user_id"])

    op.create_table(
        "achievements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("requirement", sa.JSON(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("hidden", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.UniqueConstraint("key", name="uq_achievements_key"),
    )
    op.create_index("ix_achievements_category", "achievements", ["category"])

    op.create_table(
        "user_achievements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("achievement_id", sa.Integer(), nullable=False),
        sa.Column("progress", sa.JSON(), nullable=True),
        _timestamp("earned_at", nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["achievement_id"], ["achievements.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "user_id", "achievement_id", name="uq_user_achievements_user_achievement"
        ),
    )
    op.create_index("ix_user_achievements_user_id", "user_achievements", ["user_id"])

    op.create_table(
        "leaderboard_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("period", sa.String(length=20), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        _timestamp("generated_at"),
        _timestamp("period_start", nullable=True),
        _timestamp("period_end", nullable=True),
        sa.Column("entry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index(
        "ix_leaderboard_snapshots_lookup",
        "leaderboard_snapshots",
        ["period", "category", "is_current"],
    )

    op.create_table(
        "leaderboard_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("snapshot_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=True),
        sa.Column("avatar_url", sa.String(length=512), nullable=True),
        sa.ForeignKeyConstraint(["snapshot_id"], ["leaderboard_snapshots.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_leaderboard_entries_snapshot_user",
        "leaderboard_entries",
        ["snapshot_id", "user_id"],
    )

    op.create_table(
        "cron_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        _timestamp("created_at"),
        sa.Column("job_type", sa.String(length=32), nullable=False),
        sa.Column("ok", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("duration_ms", sa.Float(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("error_type", sa.String(length=120), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_cron_runs_job_type", "cron_runs", ["job_type"])


def downgrade() -> None:
    op.drop_index("ix_cron_runs_job_type", table_name="cron_runs")
    op.drop_table("cron_runs")
    op.drop_index("ix_leaderboard_entries_snapshot_user", table_name="leaderboard_entries")
    op.drop_table("leaderboard_entries")
    op.drop_index("ix_leaderboard_snapshots_lookup", table_name="leaderboard_snapshots")
    op.drop_table("leaderboard_snapshots")
    op.drop_index("ix_user_achievements_user_id", table_name="user_achievements")
    op.drop_table("user_achievements")
    op.drop_index("ix_achievements_category", table_name="achievements")
    op.drop_table("achievements")
    op.drop_index("ix_user_badges_user_id", table_name="user_badges")
    op.drop_table("user_badges")
    op.drop_index("ix_badges_category", table_name="badges")
    op.drop_table("badges")
    op.drop_index("ix_point_transactions_user_created", table_name="point_transactions")
    op.drop_table("point_transactions")
    op.drop_table("point_accounts")
    op.drop_index("ix_events_user_id_timestamp", table_name="events")
    op.drop_table("events")
    op.drop_table("users")
