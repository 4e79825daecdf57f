"""reconciliation_core

Revision ID: reconciliation_core_2026
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'reconciliation_core_2026'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _base_columns():
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    # Fee directory (read model of the children domain)
    op.create_table('children',
        sa.Column('member_number', sa.String(length=20), nullable=False),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_children_id'), 'children', ['id'], unique=False)
    op.create_index(op.f('ix_children_member_number'), 'children', ['member_number'], unique=True)

    op.create_table('parents',
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_parents_id'), 'parents', ['id'], unique=False)

    op.create_table('child_parents',
        sa.Column('child_id', sa.Integer(), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['child_id'], ['children.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_id'], ['parents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('child_id', 'parent_id'),
    )

    op.create_table('fees',
        sa.Column('child_id', sa.Integer(), nullable=False),
        sa.Column('fee_type', sa.String(length=20), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('reminder_for_id', sa.Integer(), nullable=True, comment='Original fee a REMINDER fee was raised for'),
        sa.Column('paid_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(['child_id'], ['children.id']),
        sa.ForeignKeyConstraint(['reminder_for_id'], ['fees.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_fees_id'), 'fees', ['id'], unique=False)
    op.create_index(op.f('ix_fees_child_id'), 'fees', ['child_id'], unique=False)
    op.create_index(op.f('ix_fees_reminder_for_id'), 'fees', ['reminder_for_id'], unique=False)
    op.create_index('idx_fees_child_open', 'fees', ['child_id', 'paid_at'], unique=False)

    # Banking
    op.create_table('banking_configs',
        sa.Column('bank_name', sa.String(), nullable=False),
        sa.Column('bank_code', sa.String(length=20), nullable=False, comment='BLZ / BIC'),
        sa.Column('login_id', sa.String(), nullable=False),
        sa.Column('encrypted_secret', sa.Text(), nullable=False),
        sa.Column('endpoint_url', sa.String(), nullable=False),
        sa.Column('account_number', sa.String(length=34), nullable=False),
        sa.Column('sync_enabled', sa.Boolean(), nullable=False),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True, comment='End of the last completed sync window'),
        sa.Column('last_sync_error', sa.Text(), nullable=True),
        sa.Column('sync_lock_token', sa.String(length=36), nullable=True),
        sa.Column('sync_lock_expires_at', sa.DateTime(timezone=True), nullable=True),
        *_base_columns(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_banking_configs_id'), 'banking_configs', ['id'], unique=False)

    op.create_table('sync_runs',
        sa.Column('banking_config_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('trigger', sa.String(length=20), nullable=False),
        sa.Column('acquisition_method', sa.String(length=20), nullable=True),
        sa.Column('window_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('window_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fetched_count', sa.Integer(), nullable=False),
        sa.Column('imported_count', sa.Integer(), nullable=False),
        sa.Column('skipped_count', sa.Integer(), nullable=False),
        sa.Column('blacklisted_count', sa.Integer(), nullable=False),
        sa.Column('matched_count', sa.Integer(), nullable=False),
        sa.Column('warnings_count', sa.Integer(), nullable=False),
        sa.Column('failed_count', sa.Integer(), nullable=False),
        sa.Column('errors', sa.JSON(), nullable=True),
        *_base_columns(),
        sa.ForeignKeyConstraint(['banking_config_id'], ['banking_configs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_sync_runs_id'), 'sync_runs', ['id'], unique=False)
    op.create_index(op.f('ix_sync_runs_banking_config_id'), 'sync_runs', ['banking_config_id'], unique=False)

    op.create_table('import_batches',
        sa.Column('file_name', sa.String(), nullable=False),
        sa.Column('total_rows', sa.Integer(), nullable=False),
        sa.Column('imported_count', sa.Integer(), nullable=False),
        sa.Column('skipped_count', sa.Integer(), nullable=False, comment='Duplicates, outgoing and unreadable rows'),
        sa.Column('matched_count', sa.Integer(), nullable=False),
        sa.Column('warnings_count', sa.Integer(), nullable=False),
        sa.Column('blacklisted_count', sa.Integer(), nullable=False),
        sa.Column('failed_count', sa.Integer(), nullable=False),
        sa.Column('uploaded_by', sa.String(length=20), nullable=True, comment='operator or import_token'),
        *_base_columns(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_import_batches_id'), 'import_batches', ['id'], unique=False)

    # Transactions
    op.create_table('bank_transactions',
        sa.Column('booking_date', sa.Date(), nullable=False),
        sa.Column('value_date', sa.Date(), nullable=False),
        sa.Column('payer_name', sa.String(), nullable=True),
        sa.Column('payer_iban', sa.String(length=34), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('imported_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('source', sa.String(length=10), nullable=False),
        sa.Column('dedup_key', sa.String(length=64), nullable=False, comment='sha256 of the normalized transaction identity'),
        sa.Column('match_state', sa.String(length=20), nullable=False),
        sa.Column('matched_fee_id', sa.Integer(), nullable=True),
        sa.Column('matched_child_id', sa.Integer(), nullable=True),
        sa.Column('matched_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('matched_by', sa.String(length=20), nullable=True, comment='trusted_iban, member_number, name, combined or manual'),
        sa.Column('match_confidence', sa.Float(), nullable=True),
        sa.Column('matched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dismissed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('hidden', sa.Boolean(), nullable=False),
        sa.Column('hidden_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('import_batch_id', sa.Integer(), nullable=True),
        sa.Column('sync_run_id', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(['matched_fee_id'], ['fees.id']),
        sa.ForeignKeyConstraint(['matched_child_id'], ['children.id']),
        sa.ForeignKeyConstraint(['import_batch_id'], ['import_batches.id']),
        sa.ForeignKeyConstraint(['sync_run_id'], ['sync_runs.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dedup_key', name='uq_bank_transactions_dedup_key'),
    )
    op.create_index(op.f('ix_bank_transactions_id'), 'bank_transactions', ['id'], unique=False)
    op.create_index(op.f('ix_bank_transactions_matched_fee_id'), 'bank_transactions', ['matched_fee_id'], unique=False)
    op.create_index(op.f('ix_bank_transactions_matched_child_id'), 'bank_transactions', ['matched_child_id'], unique=False)
    op.create_index(op.f('ix_bank_transactions_import_batch_id'), 'bank_transactions', ['import_batch_id'], unique=False)
    op.create_index(op.f('ix_bank_transactions_sync_run_id'), 'bank_transactions', ['sync_run_id'], unique=False)
    op.create_index('idx_bank_transactions_state', 'bank_transactions', ['match_state', 'hidden'], unique=False)
    op.create_index('idx_bank_transactions_booking_date', 'bank_transactions', ['booking_date'], unique=False)
    op.create_index('idx_bank_transactions_payer_iban', 'bank_transactions', ['payer_iban'], unique=False)

    op.create_table('payment_allocations',
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('fee_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(['transaction_id'], ['bank_transactions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['fee_id'], ['fees.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id', 'fee_id', name='uq_payment_allocations_tx_fee'),
    )
    op.create_index(op.f('ix_payment_allocations_id'), 'payment_allocations', ['id'], unique=False)
    op.create_index(op.f('ix_payment_allocations_transaction_id'), 'payment_allocations', ['transaction_id'], unique=False)
    op.create_index(op.f('ix_payment_allocations_fee_id'), 'payment_allocations', ['fee_id'], unique=False)

    # Known IBANs and warnings
    op.create_table('known_ibans',
        sa.Column('iban', sa.String(length=34), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('child_id', sa.Integer(), nullable=True),
        sa.Column('payer_name', sa.String(), nullable=True, comment='Account holder name as last seen on a transaction'),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('source_transaction_id', sa.Integer(), nullable=True, comment='Transaction that caused the entry, if any'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint(
            "(status = 'trusted' AND child_id IS NOT NULL) OR (status = 'blacklisted')",
            name='ck_known_ibans_trusted_child',
        ),
        sa.ForeignKeyConstraint(['child_id'], ['children.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('iban'),
    )
    op.create_index(op.f('ix_known_ibans_status'), 'known_ibans', ['status'], unique=False)
    op.create_index(op.f('ix_known_ibans_child_id'), 'known_ibans', ['child_id'], unique=False)

    op.create_table('transaction_warnings',
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=30), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('child_id', sa.Integer(), nullable=True),
        sa.Column('fee_id', sa.Integer(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_type', sa.String(length=20), nullable=True),
        sa.Column('resolution_note', sa.String(), nullable=True),
        *_base_columns(),
        sa.ForeignKeyConstraint(['transaction_id'], ['bank_transactions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['child_id'], ['children.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['fee_id'], ['fees.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_transaction_warnings_id'), 'transaction_warnings', ['id'], unique=False)
    op.create_index(op.f('ix_transaction_warnings_transaction_id'), 'transaction_warnings', ['transaction_id'], unique=False)
    op.create_index(op.f('ix_transaction_warnings_child_id'), 'transaction_warnings', ['child_id'], unique=False)
    op.create_index(op.f('ix_transaction_warnings_resolved_at'), 'transaction_warnings', ['resolved_at'], unique=False)
    # One open warning of a kind per transaction
    op.create_index(
        'uq_transaction_warnings_open_kind',
        'transaction_warnings',
        ['transaction_id', 'kind'],
        unique=True,
        sqlite_where=sa.text('resolved_at IS NULL'),
        postgresql_where=sa.text('resolved_at IS NULL'),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('uq_transaction_warnings_open_kind', table_name='transaction_warnings')
    op.drop_table('transaction_warnings')
    op.drop_table('known_ibans')
    op.drop_table('payment_allocations')
    op.drop_table('bank_transactions')
    op.drop_table('import_batches')
    op.drop_table('sync_runs')
    op.drop_table('banking_configs')
    op.drop_table('fees')
    op.drop_table('child_parents')
    op.drop_table('parents')
    op.drop_table('children')
