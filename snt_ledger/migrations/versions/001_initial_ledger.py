"""Create ledger tables.

Revision ID: 001_initial_ledger
Revises: None
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_initial_ledger'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create ledger tables."""
    # Create plots table
    op.create_table(
        'plots',
        *_timestamps(),
        sa.Column('plot_number', sa.String(20), nullable=False),
        sa.Column('street', sa.String(100), nullable=True),
        sa.Column('label', sa.String(200), nullable=False),
        sa.Column('owner_name', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('telegram_chat_id', sa.String(50), nullable=True),
        sa.Column('membership_status', sa.String(32), nullable=False),
        sa.Column('is_archived', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_plots_plot_number', 'plots', ['plot_number'], unique=True)
    op.create_index('ix_plots_is_archived', 'plots', ['is_archived'])
    op.create_index('idx_plot_archived_number', 'plots', ['is_archived', 'plot_number'])

    # Create accrual_periods table
    op.create_table(
        'accrual_periods',
        *_timestamps(),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(32), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('year', 'month', 'category', name='uq_accrual_period'),
    )
    op.create_index('idx_accrual_period_year_month', 'accrual_periods', ['year', 'month'])

    # Create charges table
    op.create_table(
        'charges',
        *_timestamps(),
        sa.Column('plot_id', sa.Integer(), nullable=False),
        sa.Column('accrual_period_id', sa.Integer(), nullable=False),
        sa.Column('amount_accrued', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('amount_paid', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('note', sa.String(500), nullable=True),
        sa.ForeignKeyConstraint(['plot_id'], ['plots.id'], ),
        sa.ForeignKeyConstraint(['accrual_period_id'], ['accrual_periods.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_charges_plot_id', 'charges', ['plot_id'])
    op.create_index('ix_charges_accrual_period_id', 'charges', ['accrual_period_id'])
    op.create_index('idx_charge_plot_period', 'charges', ['plot_id', 'accrual_period_id'])

    # Create import_batches table
    op.create_table(
        'import_batches',
        *_timestamps(),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('file_name', sa.String(255), nullable=True),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('totals', sa.JSON(), nullable=True),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('rolled_back_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rolled_back_by', sa.String(100), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    # Create payments table
    op.create_table(
        'payments',
        *_timestamps(),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('paid_at', sa.Date(), nullable=False),
        sa.Column('payer', sa.String(255), nullable=True),
        sa.Column('purpose', sa.String(1000), nullable=True),
        sa.Column('method', sa.String(32), nullable=False),
        sa.Column('bank_ref', sa.String(100), nullable=True),
        sa.Column('fingerprint', sa.String(100), nullable=True),
        sa.Column('match_status', sa.String(32), nullable=False),
        sa.Column('matched_plot_id', sa.Integer(), nullable=True),
        sa.Column('match_candidates', sa.JSON(), nullable=True),
        sa.Column('match_reason', sa.String(50), nullable=True),
        sa.Column('match_confidence', sa.Float(), nullable=True),
        sa.Column('allocation_status', sa.String(32), nullable=False),
        sa.Column('allocated_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('remaining_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('auto_allocate_disabled', sa.Boolean(), nullable=False),
        sa.Column('is_voided', sa.Boolean(), nullable=False),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_by', sa.String(100), nullable=True),
        sa.Column('void_reason', sa.String(500), nullable=True),
        sa.Column('import_batch_id', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['matched_plot_id'], ['plots.id'], ),
        sa.ForeignKeyConstraint(['import_batch_id'], ['import_batches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('fingerprint'),
    )
    op.create_index('ix_payments_paid_at', 'payments', ['paid_at'])
    op.create_index('ix_payments_match_status', 'payments', ['match_status'])
    op.create_index('ix_payments_matched_plot_id', 'payments', ['matched_plot_id'])
    op.create_index('ix_payments_is_voided', 'payments', ['is_voided'])
    op.create_index('ix_payments_import_batch_id', 'payments', ['import_batch_id'])
    op.create_index('idx_payment_plot_status', 'payments', ['matched_plot_id', 'is_voided'])

    # Create allocations table
    op.create_table(
        'allocations',
        *_timestamps(),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('charge_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('kind', sa.String(32), nullable=False),
        sa.Column('reverses_allocation_id', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.String(100), nullable=True),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ),
        sa.ForeignKeyConstraint(['charge_id'], ['charges.id'], ),
        sa.ForeignKeyConstraint(['reverses_allocation_id'], ['allocations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reverses_allocation_id'),
    )
    op.create_index('ix_allocations_payment_id', 'allocations', ['payment_id'])
    op.create_index('ix_allocations_charge_id', 'allocations', ['charge_id'])
    op.create_index('idx_allocation_payment_charge', 'allocations', ['payment_id', 'charge_id'])

    # Create penalty_accruals table
    op.create_table(
        'penalty_accruals',
        *_timestamps(),
        sa.Column('plot_id', sa.Integer(), nullable=False),
        sa.Column('accrual_period_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('as_of', sa.Date(), nullable=False),
        sa.Column('rate', sa.Numeric(precision=10, scale=6), nullable=False),
        sa.Column('rate_per_day', sa.Numeric(precision=14, scale=10), nullable=False),
        sa.Column('base_debt', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('days_overdue', sa.Integer(), nullable=False),
        sa.Column('policy_version', sa.String(20), nullable=False),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('void_reason', sa.String(500), nullable=True),
        sa.Column('voided_by', sa.String(100), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('freeze_reason', sa.String(500), nullable=True),
        sa.Column('frozen_by', sa.String(100), nullable=True),
        sa.Column('frozen_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unfrozen_by', sa.String(100), nullable=True),
        sa.Column('unfrozen_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['plot_id'], ['plots.id'], ),
        sa.ForeignKeyConstraint(['accrual_period_id'], ['accrual_periods.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_penalty_accruals_plot_id', 'penalty_accruals', ['plot_id'])
    op.create_index('ix_penalty_accruals_accrual_period_id', 'penalty_accruals', ['accrual_period_id'])
    op.create_index('ix_penalty_accruals_status', 'penalty_accruals', ['status'])
    op.create_index('idx_penalty_plot_period', 'penalty_accruals', ['plot_id', 'accrual_period_id'])
    op.create_index(
        'uq_penalty_live_plot_period',
        'penalty_accruals',
        ['plot_id', 'accrual_period_id'],
        unique=True,
        sqlite_where=sa.text("status IN ('active', 'frozen')"),
        postgresql_where=sa.text("status IN ('active', 'frozen')"),
    )

    # Create period_close_records table
    op.create_table(
        'period_close_records',
        *_timestamps(),
        sa.Column('association_id', sa.String(50), nullable=False),
        sa.Column('period', sa.String(7), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('snapshot', sa.JSON(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by', sa.String(100), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('association_id', 'period', name='uq_period_close_association_period'),
    )
    op.create_index('ix_period_close_records_period', 'period_close_records', ['period'])

    # Create post_close_changes table
    op.create_table(
        'post_close_changes',
        *_timestamps(),
        sa.Column('association_id', sa.String(50), nullable=False),
        sa.Column('period', sa.String(7), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('reason', sa.String(500), nullable=False),
        sa.Column('actor_id', sa.String(100), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_post_close_changes_period', 'post_close_changes', ['period'])
    op.create_index('ix_post_close_changes_association_id', 'post_close_changes', ['association_id'])

    # Create jobs table
    op.create_table(
        'jobs',
        *_timestamps(),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('progress', sa.Integer(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('available_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actor_id', sa.String(100), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_jobs_type', 'jobs', ['type'])
    op.create_index('idx_job_status_available', 'jobs', ['status', 'available_at'])

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        *_timestamps(),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('actor_id', sa.String(100), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])


def downgrade() -> None:
    """Drop ledger tables."""
    for table in (
        'audit_logs',
        'jobs',
        'post_close_changes',
        'period_close_records',
        'penalty_accruals',
        'allocations',
        'payments',
        'import_batches',
        'charges',
        'accrual_periods',
        'plots',
    ):
        op.drop_table(table)
