"""Initial schema - sources, funding programs, scrape jobs, match records

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

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


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    ]


def upgrade() -> None:
    # Enums are stored as VARCHAR (native_enum=False), no CREATE TYPE needed
    op.create_table(
        'source',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('source_key', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('agency', sa.String(100), nullable=False),
        sa.Column('fetch_mode', sa.String(20), nullable=False, server_default='html'),
        sa.Column('base_url', sa.String(500), nullable=False),
        sa.Column('listing_url', sa.String(500), nullable=False),
        sa.Column('config', postgresql.JSONB, nullable=False, server_default='{}'),
        sa.Column('requests_per_minute', sa.Integer, nullable=True, server_default='10'),
        sa.Column('min_delay_seconds', sa.Float, nullable=True, server_default='5.0'),
        sa.Column('max_pages', sa.Integer, nullable=True, server_default='5'),
        sa.Column('is_enabled', sa.Boolean, nullable=True, server_default='true'),
        sa.Column('suspended_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consecutive_access_failures', sa.Integer, nullable=True, server_default='0'),
        sa.Column('last_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_success_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error_message', sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_source_source_key', 'source', ['source_key'], unique=True)
    op.create_index('ix_source_agency', 'source', ['agency'])
    op.create_index('ix_source_is_enabled', 'source', ['is_enabled'])

    op.create_table(
        'funding_program',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('agency', sa.String(100), nullable=False),
        sa.Column('external_id', sa.String(500), nullable=False),
        sa.Column('source_key', sa.String(50), nullable=False),
        sa.Column('title', sa.String(1000), nullable=False),
        sa.Column('raw_text', sa.Text, nullable=False, server_default=''),
        sa.Column('source_url', sa.String(1000), nullable=False),
        sa.Column('canonical_url', sa.String(1000), nullable=False),
        sa.Column('attachment_urls', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('content_hash', sa.String(64), nullable=False,
                  comment='SHA-256 over normalized agency|title|canonical_url|body'),
        sa.Column('scraped_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
        sa.Column('deadline', sa.Date, nullable=True),
        sa.Column('eligibility', postgresql.JSONB, nullable=False, server_default='{}',
                  comment='Eligibility profile fields with source and confidence'),
        sa.Column('extraction_meta', postgresql.JSONB, nullable=False, server_default='{}',
                  comment='Tiers run, skipped tiers, errors, unresolved fields'),
        *_timestamps(),
        sa.UniqueConstraint('agency', 'external_id', name='uq_funding_program_agency_external_id'),
    )
    op.create_index('ix_funding_program_agency', 'funding_program', ['agency'])
    op.create_index('ix_funding_program_source_key', 'funding_program', ['source_key'])
    op.create_index('ix_funding_program_content_hash', 'funding_program', ['content_hash'])
    op.create_index('ix_funding_program_status', 'funding_program', ['status'])
    op.create_index('ix_funding_program_deadline', 'funding_program', ['deadline'])

    op.create_table(
        'scrape_job',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('source_key', sa.String(50), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False, server_default='FETCH'),
        sa.Column('priority', sa.String(20), nullable=False, server_default='STANDARD'),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('dedupe_key', sa.String(200), nullable=False, comment='source + scheduled window'),
        sa.Column('attempts', sa.Integer, nullable=True, server_default='0'),
        sa.Column('max_attempts', sa.Integer, nullable=True, server_default='3'),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_type', sa.String(50), nullable=True),
        sa.Column('last_error_message', sa.Text, nullable=True),
        sa.Column('payload', postgresql.JSONB, nullable=False, server_default='{}'),
        sa.Column('result', postgresql.JSONB, nullable=False, server_default='{}',
                  comment='Counters reported by the handler'),
        *_timestamps(),
    )
    op.create_index('ix_scrape_job_source_key', 'scrape_job', ['source_key'])
    op.create_index('ix_scrape_job_status', 'scrape_job', ['status'])
    op.create_index('ix_scrape_job_dedupe_key', 'scrape_job', ['dedupe_key'])

    op.create_table(
        'match_record',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.String(100), nullable=False),
        sa.Column('program_id', sa.Uuid(),
                  sa.ForeignKey('funding_program.id', ondelete='CASCADE'), nullable=False),
        sa.Column('score', sa.Integer, nullable=False),
        sa.Column('gate_passed', sa.Boolean, nullable=False),
        sa.Column('notified', sa.Boolean, nullable=True, server_default='false',
                  comment='Counted in a newMatchCount notification'),
        sa.Column('blocked_reasons', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('warning_reasons', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('factor_breakdown', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('organization_id', 'program_id', name='uq_match_record_org_program'),
    )
    op.create_index('ix_match_record_organization_id', 'match_record', ['organization_id'])
    op.create_index('ix_match_record_program_id', 'match_record', ['program_id'])


def downgrade() -> None:
    op.drop_table('match_record')
    op.drop_table('scrape_job')
    op.drop_table('funding_program')
    op.drop_table('source')
