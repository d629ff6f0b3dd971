"""progress_core_schema

Revision ID: 001_progress_core
Revises:
Create Date: 2026-10-19

Adds tables for:
- progress_templates (versioned milestone weight tables, system + project)
- components (identity key, milestones, cached percent, optimistic version)

The identity index is partial: only live (non-retired) components must have
unique (project_id, component_type, identity_token).

All DDL checks for existing tables first so the migration is idempotent and
safe to run after Base.metadata.create_all().
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy import text
from sqlalchemy.dialects.postgresql import JSONB

revision = '001_progress_core'
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.001")


def _table_exists(conn, table_name: str) -> bool:
    result = conn.execute(
        text(
            "SELECT EXISTS("
            "  SELECT 1 FROM information_schema.tables"
            "  WHERE table_name = :tname"
            ")"
        ),
        {"tname": table_name},
    )
    return bool(result.scalar())


def upgrade() -> None:
    conn = op.get_bind()

    # ── progress_templates ────────────────────────────────────────────────────
    if not _table_exists(conn, 'progress_templates'):
        op.create_table(
            'progress_templates',
            sa.Column('id', sa.String(64), primary_key=True),
            sa.Column('project_id', sa.String(36), nullable=True, index=True),
            sa.Column('component_type', sa.String(50), nullable=False),
            sa.Column('version', sa.Integer, nullable=False, server_default='1'),
            sa.Column('workflow_type', sa.String(20), nullable=False, server_default='discrete'),
            sa.Column('milestones_config', JSONB, nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index(
            'idx_progress_templates_type',
            'progress_templates',
            ['project_id', 'component_type', 'version'],
        )
        logger.info("Created table: progress_templates")
    else:
        logger.info("Table progress_templates already exists — skipping create")

    # ── components ────────────────────────────────────────────────────────────
    if not _table_exists(conn, 'components'):
        op.create_table(
            'components',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('project_id', sa.String(36), nullable=False, index=True),
            sa.Column('drawing_id', sa.String(255), nullable=True, index=True),
            sa.Column('component_type', sa.String(50), nullable=False),
            sa.Column(
                'progress_template_id', sa.String(64),
                sa.ForeignKey('progress_templates.id', ondelete='RESTRICT'),
                nullable=True,
            ),
            sa.Column('identity_token', sa.String(512), nullable=False),
            sa.Column('identity_key', JSONB, nullable=False),
            sa.Column('attributes', JSONB, nullable=False, server_default='{}'),
            sa.Column('current_milestones', JSONB, nullable=False, server_default='{}'),
            sa.Column('percent_complete', sa.Integer, nullable=False, server_default='0'),
            sa.Column('version', sa.Integer, nullable=False, server_default='1'),
            sa.Column('is_retired', sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column('area_id', sa.String(36), nullable=True),
            sa.Column('system_id', sa.String(36), nullable=True),
            sa.Column('test_package_id', sa.String(36), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('last_updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint('percent_complete BETWEEN 0 AND 100', name='ck_components_percent_range'),
        )
        op.create_index(
            'idx_components_identity_unique',
            'components',
            ['project_id', 'component_type', 'identity_token'],
            unique=True,
            postgresql_where=text('NOT is_retired'),
        )
        logger.info("Created table: components")
    else:
        logger.info("Table components already exists — skipping create")


def downgrade() -> None:
    conn = op.get_bind()

    if _table_exists(conn, 'components'):
        op.drop_index('idx_components_identity_unique', table_name='components')
        op.drop_table('components')
    if _table_exists(conn, 'progress_templates'):
        op.drop_index('idx_progress_templates_type', table_name='progress_templates')
        op.drop_table('progress_templates')
