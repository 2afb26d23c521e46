"""Initial schema for the analysis pipeline

Revision ID: 001_initial
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('uuid_generate_v4()'))


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(), server_default=sa.func.now())


def upgrade() -> None:
    # Create extensions
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # Projects, branches and pull requests
    op.create_table(
        'projects',
        _id(),
        sa.Column('key', sa.String(length=255), nullable=False, unique=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('leak_period_type', sa.String(length=20), server_default='LAST_ANALYSIS'),
        sa.Column('leak_period_value', sa.String(length=255), nullable=True),
        sa.Column('active_rule_profile_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('languages', postgresql.JSONB(), server_default='[]'),
        _created_at(),
    )

    op.create_table(
        'branches',
        _id(),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        _created_at(),
        sa.UniqueConstraint('project_id', 'name', name='uq_branches_project_name'),
    )

    op.create_table(
        'pull_requests',
        _id(),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('repo', sa.String(length=500), nullable=False),
        sa.Column('pr_number', sa.Integer(), nullable=False),
        sa.Column('source_branch', sa.String(length=255), nullable=False),
        sa.Column('target_branch', sa.String(length=255), nullable=False),
        _created_at(),
    )

    # Rule catalog and profiles
    op.create_table(
        'rules',
        _id(),
        sa.Column('key', sa.String(length=255), nullable=False, unique=True),
        sa.Column('analyzer_key', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), server_default=''),
        sa.Column('default_severity', sa.String(length=20), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=True),
        _created_at(),
    )

    op.create_table(
        'rule_profiles',
        _id(),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        _created_at(),
    )
    op.create_foreign_key(
        'fk_projects_active_rule_profile', 'projects', 'rule_profiles',
        ['active_rule_profile_id'], ['id'], ondelete='SET NULL',
    )

    op.create_table(
        'rule_profile_rules',
        _id(),
        sa.Column('rule_profile_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('rule_profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rule_key', sa.String(length=255), nullable=False),
        sa.Column('enabled', sa.Boolean(), server_default='true'),
        sa.UniqueConstraint('rule_profile_id', 'rule_key', name='uq_rule_profile_rules_key'),
    )

    # Analyzer registry
    op.create_table(
        'analyzers',
        _id(),
        sa.Column('key', sa.String(length=100), nullable=False, unique=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('docker_image', sa.String(length=500), nullable=False),
        sa.Column('enabled', sa.Boolean(), server_default='true'),
        _created_at(),
    )

    op.create_table(
        'project_analyzers',
        _id(),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('analyzer_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('analyzers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=True),
        sa.Column('config_json', postgresql.JSONB(), nullable=True),
        sa.UniqueConstraint('project_id', 'analyzer_id', name='uq_project_analyzers'),
    )

    # Analyses
    op.create_table(
        'analyses',
        _id(),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('branch_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='CASCADE'), nullable=True),
        sa.Column('pull_request_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('pull_requests.id', ondelete='CASCADE'), nullable=True),
        sa.Column('commit_sha', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='PENDING'),
        sa.Column('baseline_analysis_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('analyses.id', ondelete='SET NULL'), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('debt_ratio', sa.Float(), nullable=True),
        sa.Column('remediation_cost', sa.Integer(), nullable=True),
        sa.Column('maintainability_rating', sa.String(length=1), nullable=True),
        _created_at(),
        sa.CheckConstraint('(branch_id IS NULL) <> (pull_request_id IS NULL)', name='ck_analyses_branch_or_pr'),
    )
    op.create_index('ix_analyses_branch_status', 'analyses', ['project_id', 'branch_id', 'status'])

    op.create_table(
        'issues',
        _id(),
        sa.Column('analysis_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('analyses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('analyzer_key', sa.String(length=100), nullable=False),
        sa.Column('rule_key', sa.String(length=255), nullable=False),
        sa.Column('severity', sa.String(length=20), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('file_path', sa.String(length=1000), nullable=False),
        sa.Column('line', sa.Integer(), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('language', sa.String(length=50), nullable=True),
        sa.Column('fingerprint', sa.String(length=128), nullable=False),
        sa.Column('is_new', sa.Boolean(), server_default='false'),
        sa.Column('baseline_analysis_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('analyses.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='OPEN'),
        _created_at(),
        sa.UniqueConstraint('analysis_id', 'fingerprint', name='uq_issues_analysis_fingerprint'),
    )

    op.create_table(
        'analysis_artifacts',
        _id(),
        sa.Column('analysis_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('analyses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('analyzer_key', sa.String(length=100), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('bucket', sa.String(length=255), nullable=False),
        sa.Column('object_key', sa.String(length=1000), nullable=False),
        sa.Column('content_type', sa.String(length=100), nullable=False),
        sa.Column('size', sa.BigInteger(), server_default='0'),
        _created_at(),
        sa.UniqueConstraint('analysis_id', 'analyzer_key', 'kind', name='uq_analysis_artifacts_key_kind'),
    )

    op.create_table(
        'analysis_metrics',
        _id(),
        sa.Column('analysis_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('analyses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('branch_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('metric_key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.Float(), nullable=False),
        _created_at(),
    )
    op.create_index('ix_analysis_metrics_analysis_key', 'analysis_metrics', ['analysis_id', 'metric_key'])

    # Quality gates
    op.create_table(
        'quality_gates',
        _id(),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        _created_at(),
    )

    op.create_table(
        'quality_gate_conditions',
        _id(),
        sa.Column('gate_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('quality_gates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('metric', sa.String(length=100), nullable=False),
        sa.Column('operator', sa.String(length=2), nullable=False),
        sa.Column('threshold', sa.Float(), nullable=False),
        sa.Column('scope', sa.String(length=3), server_default='ALL'),
    )


def downgrade() -> None:
    op.drop_table('quality_gate_conditions')
    op.drop_table('quality_gates')
    op.drop_index('ix_analysis_metrics_analysis_key', table_name='analysis_metrics')
    op.drop_table('analysis_metrics')
    op.drop_table('analysis_artifacts')
    op.drop_table('issues')
    op.drop_index('ix_analyses_branch_status', table_name='analyses')
    op.drop_table('analyses')
    op.drop_table('project_analyzers')
    op.drop_table('analyzers')
    op.drop_table('rule_profile_rules')
    op.drop_constraint('fk_projects_active_rule_profile', 'projects', type_='foreignkey')
    op.drop_table('rule_profiles')
    op.drop_table('rules')
    op.drop_table('pull_requests')
    op.drop_table('branches')
    op.drop_table('projects')
