"""Create refurbishment lifecycle tables.

Revision ID: 001_refurb_lifecycle
Revises:
Create Date: 2026-10-17

Tables:
- identifier_counters / identifier_counter_audit: QLID and certification ticks
- refurb_jobs / job_transitions: job state and its append-only history
- job_step_completions: per-step operator data
- job_diagnoses: defects and repairs
- certifications: one active certification per job (partial unique index)
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision: str = '001_refurb_lifecycle'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))


def upgrade() -> None:
    """Create lifecycle tables."""

    # ==================== Identifier counters ====================
    op.create_table(
        'identifier_counters',
        _id_column(),
        sa.Column('name', sa.String(30), nullable=False, unique=True),
        sa.Column('current_value', sa.BigInteger, nullable=False, server_default='0'),
        sa.Column('description', sa.Text, nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
    )

    op.create_table(
        'identifier_counter_audit',
        _id_column(),
        sa.Column('namespace', sa.String(30), nullable=False),
        sa.Column('operation', sa.String(20), nullable=False),
        sa.Column('old_value', sa.BigInteger, nullable=True),
        sa.Column('new_value', sa.BigInteger, nullable=True),
        sa.Column('actor', sa.String(100), nullable=True),
        sa.Column('source', sa.String(50), nullable=True),
        _timestamp('created_at'),
    )
    op.create_index('ix_identifier_counter_audit_namespace', 'identifier_counter_audit', ['namespace'])

    # ==================== Jobs ====================
    op.create_table(
        'refurb_jobs',
        _id_column(),
        sa.Column('qlid', sa.String(30), nullable=False, unique=True),
        sa.Column('tick', sa.BigInteger, nullable=False, unique=True),
        sa.Column('pallet_id', sa.String(50), nullable=True),
        sa.Column('category', sa.String(30), nullable=False),
        sa.Column('manufacturer', sa.String(100), nullable=True),
        sa.Column('model', sa.String(100), nullable=True),
        sa.Column('serial_number', sa.String(100), nullable=True),
        sa.Column('current_state', sa.String(50), nullable=False, server_default='QUEUED'),
        sa.Column('current_step_index', sa.Integer, nullable=False, server_default='0'),
        sa.Column('resume_state', sa.String(50), nullable=True),
        sa.Column('assigned_technician_id', sa.String(100), nullable=True),
        sa.Column('assigned_technician_name', sa.String(200), nullable=True),
        _timestamp('assigned_at', nullable=True),
        sa.Column('attempt_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer, nullable=False, server_default='2'),
        sa.Column('final_grade', sa.String(10), nullable=True),
        sa.Column('warranty_eligible', sa.Boolean, nullable=True),
        sa.Column('disposition', sa.String(100), nullable=True),
        sa.Column('priority', sa.String(20), nullable=False, server_default='NORMAL'),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('transition_seq', sa.Integer, nullable=False, server_default='0'),
        sa.Column('version', sa.Integer, nullable=False),
        _timestamp('started_at', nullable=True),
        _timestamp('completed_at', nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint('attempt_count >= 0', name='ck_refurb_jobs_attempts_non_negative'),
        sa.CheckConstraint('attempt_count <= max_attempts', name='ck_refurb_jobs_attempt_limit'),
    )
    op.create_index('ix_refurb_jobs_pallet_id', 'refurb_jobs', ['pallet_id'])
    op.create_index('ix_refurb_jobs_category', 'refurb_jobs', ['category'])
    op.create_index('ix_refurb_jobs_current_state', 'refurb_jobs', ['current_state'])
    op.create_index('ix_refurb_jobs_assigned_technician_id', 'refurb_jobs', ['assigned_technician_id'])

    op.create_table(
        'job_transitions',
        _id_column(),
        sa.Column('job_id', UUID(as_uuid=True), sa.ForeignKey('refurb_jobs.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('qlid', sa.String(30), nullable=False),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('from_state', sa.String(50), nullable=True),
        sa.Column('to_state', sa.String(50), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('actor', sa.String(100), nullable=False),
        sa.Column('actor_name', sa.String(200), nullable=True),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('is_override', sa.Boolean, nullable=False, server_default='false'),
        _timestamp('created_at'),
        sa.UniqueConstraint('job_id', 'sequence', name='uq_job_transitions_job_sequence'),
    )
    op.create_index('ix_job_transitions_job_id', 'job_transitions', ['job_id'])
    op.create_index('ix_job_transitions_qlid', 'job_transitions', ['qlid'])

    # ==================== Step ledger ====================
    op.create_table(
        'job_step_completions',
        _id_column(),
        sa.Column('job_id', UUID(as_uuid=True), sa.ForeignKey('refurb_jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('qlid', sa.String(30), nullable=False),
        sa.Column('state_code', sa.String(50), nullable=False),
        sa.Column('step_code', sa.String(100), nullable=False),
        sa.Column('checklist_results', JSONB, nullable=True),
        sa.Column('input_values', JSONB, nullable=True),
        sa.Column('measurements', JSONB, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('photo_urls', JSONB, nullable=True),
        sa.Column('photo_types', JSONB, nullable=True),
        sa.Column('completed_by', sa.String(100), nullable=False),
        sa.Column('completed_by_name', sa.String(200), nullable=True),
        sa.Column('duration_seconds', sa.Integer, nullable=True),
        _timestamp('completed_at'),
        sa.Column('revision', sa.Integer, nullable=False, server_default='1'),
        sa.UniqueConstraint('job_id', 'state_code', 'step_code', name='uq_job_step_completion'),
    )
    op.create_index('ix_job_step_completions_job_id', 'job_step_completions', ['job_id'])
    op.create_index('ix_job_step_completions_qlid', 'job_step_completions', ['qlid'])

    # ==================== Diagnoses ====================
    op.create_table(
        'job_diagnoses',
        _id_column(),
        sa.Column('job_id', UUID(as_uuid=True), sa.ForeignKey('refurb_jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('qlid', sa.String(30), nullable=False),
        sa.Column('defect_code', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('measurements', JSONB, nullable=True),
        sa.Column('photo_urls', JSONB, nullable=True),
        sa.Column('diagnosed_state', sa.String(50), nullable=False),
        sa.Column('diagnosed_by', sa.String(100), nullable=False),
        _timestamp('diagnosed_at'),
        sa.Column('repair_action', sa.String(200), nullable=True),
        sa.Column('parts_required', JSONB, nullable=True),
        sa.Column('repair_status', sa.String(20), nullable=False, server_default='PENDING'),
        _timestamp('repair_started_at', nullable=True),
        sa.Column('repaired_by', sa.String(100), nullable=True),
        _timestamp('repaired_at', nullable=True),
        sa.Column('parts_used', JSONB, nullable=True),
        sa.Column('resolution_notes', sa.Text, nullable=True),
        _timestamp('updated_at'),
    )
    op.create_index('ix_job_diagnoses_job_id', 'job_diagnoses', ['job_id'])
    op.create_index('ix_job_diagnoses_qlid', 'job_diagnoses', ['qlid'])
    op.create_index('ix_job_diagnoses_defect_code', 'job_diagnoses', ['defect_code'])
    op.create_index('ix_job_diagnoses_repair_status', 'job_diagnoses', ['repair_status'])

    # ==================== Certifications ====================
    op.create_table(
        'certifications',
        _id_column(),
        sa.Column('certification_id', sa.String(40), nullable=False, unique=True),
        sa.Column('job_id', UUID(as_uuid=True), sa.ForeignKey('refurb_jobs.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('qlid', sa.String(30), nullable=False),
        sa.Column('category', sa.String(30), nullable=False),
        sa.Column('manufacturer', sa.String(100), nullable=True),
        sa.Column('model', sa.String(100), nullable=True),
        sa.Column('serial_number', sa.String(100), nullable=True),
        sa.Column('certification_level', sa.String(20), nullable=False),
        sa.Column('final_grade', sa.String(10), nullable=False),
        sa.Column('warranty_type', sa.String(20), nullable=False, server_default='NONE'),
        sa.Column('warranty_status', sa.String(20), nullable=False, server_default='UNKNOWN'),
        sa.Column('warranty_provider', sa.String(100), nullable=True),
        sa.Column('warranty_start_date', sa.Date, nullable=True),
        sa.Column('warranty_end_date', sa.Date, nullable=True),
        sa.Column('warranty_coverage', sa.String(100), nullable=True),
        sa.Column('warranty_notes', sa.Text, nullable=True),
        sa.Column('guarantee_days', sa.Integer, nullable=False, server_default='0'),
        _timestamp('guarantee_expires_at', nullable=True),
        sa.Column('certified_by', sa.String(100), nullable=False),
        sa.Column('certified_by_name', sa.String(200), nullable=True),
        _timestamp('certified_at'),
        _timestamp('valid_until', nullable=True),
        sa.Column('is_revoked', sa.Boolean, nullable=False, server_default='false'),
        _timestamp('revoked_at', nullable=True),
        sa.Column('revoked_by', sa.String(100), nullable=True),
        sa.Column('revoked_reason', sa.Text, nullable=True),
        _timestamp('updated_at'),
    )
    op.create_index('ix_certifications_job_id', 'certifications', ['job_id'])
    op.create_index('ix_certifications_qlid', 'certifications', ['qlid'])
    op.create_index('ix_certifications_certification_level', 'certifications', ['certification_level'])
    op.create_index(
        'uq_certifications_active_job', 'certifications', ['job_id'],
        unique=True, postgresql_where=sa.text('NOT is_revoked'),
    )

    # Seed counters so the first UPDATE never races an INSERT
    op.execute(
        "INSERT INTO identifier_counters (name, current_value, description) VALUES "
        "('QLID', 0, 'Item identifiers (QLID)'), "
        "('CERTIFICATION', 0, 'Certification identifiers')"
    )

    print("Created refurbishment lifecycle tables")


def downgrade() -> None:
    """Drop lifecycle tables."""
    op.drop_table('certifications')
    op.drop_table('job_diagnoses')
    op.drop_table('job_step_completions')
    op.drop_table('job_transitions')
    op.drop_table('refurb_jobs')
    op.drop_table('identifier_counter_audit')
    op.drop_table('identifier_counters')
