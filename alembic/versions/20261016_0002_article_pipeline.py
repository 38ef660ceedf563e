"""Article pipeline jobs, agent steps and personas."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261016_0002"
down_revision = "20261016_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ai_personas",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("agent_type", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("system_prompt", sa.Text(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("temperature", sa.Float(), nullable=False, server_default=sa.text("0.7")),
        sa.Column("max_tokens", sa.Integer(), nullable=False, server_default=sa.text("4096")),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_ai_personas_agent_type", "ai_personas", ["agent_type"], unique=False)
    op.create_index(
        "uq_ai_personas_default_per_agent",
        "ai_personas",
        ["agent_type"],
        unique=True,
        sqlite_where=sa.text("is_default = 1 AND is_active = 1"),
        postgresql_where=sa.text("is_default AND is_active"),
    )

    op.create_table(
        "article_jobs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("keyword", sa.String(), nullable=False),
        sa.Column("settings_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("current_agent", sa.String(), nullable=True),
        sa.Column("current_iteration", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("max_iterations", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("progress_percent", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_tokens_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "estimated_cost_usd",
            sa.Float(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("final_output_json", sa.Text(), nullable=True),
        sa.Column("page_id", sa.String(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("background_job_id", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["background_job_id"],
            ["background_jobs.id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_article_jobs_status_time",
        "article_jobs",
        ["status", "created_at"],
        unique=False,
    )

    op.create_table(
        "article_job_steps",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("agent_type", sa.String(), nullable=False),
        sa.Column("persona_id", sa.String(), nullable=True),
        sa.Column("iteration", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("input_json", sa.Text(), nullable=True),
        sa.Column("output_json", sa.Text(), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("completion_tokens", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tokens_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("logs_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["article_jobs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["persona_id"], ["ai_personas.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_article_job_steps_job_time",
        "article_job_steps",
        ["job_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_article_job_steps_job_time", table_name="article_job_steps")
    op.drop_table("article_job_steps")
    op.drop_index("idx_article_jobs_status_time", table_name="article_jobs")
    op.drop_table("article_jobs")
    op.drop_index("uq_ai_personas_default_per_agent", table_name="ai_personas")
    op.drop_index("idx_ai_personas_agent_type", table_name="ai_personas")
    op.drop_table("ai_personas")
