"""initial_schema

Revision ID: 3f9c1e7a2b40
Revises:
Create Date: 2025-01-06 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c1e7a2b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(precision=14, scale=2), nullable=nullable, server_default='0')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('hashed_password', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='manager'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )

    op.create_table(
        'workers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('matricule', sa.String(length=50), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('payment_method', sa.String(length=50), nullable=False, server_default='bank_transfer'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('matricule'),
    )

    op.create_table(
        'work_contracts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('contract_number', sa.String(length=50), nullable=True),
        sa.Column('worker_id', sa.Uuid(), nullable=False),
        sa.Column('contract_type', sa.String(length=50), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('position', sa.String(length=255), nullable=False),
        sa.Column('base_salary', sa.Numeric(precision=14, scale=2), nullable=False),
        _money('indemnities', nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='draft'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['worker_id'], ['workers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('contract_number'),
    )
    op.create_index('ix_work_contracts_worker_status', 'work_contracts', ['worker_id', 'status'])

    op.create_table(
        'number_counters',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('value', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entity_type', 'year', name='uq_number_counter_entity_year'),
    )

    op.create_table(
        'payrolls',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('number', sa.String(length=50), nullable=False),
        sa.Column('worker_id', sa.Uuid(), nullable=False),
        sa.Column('work_contract_id', sa.Uuid(), nullable=True),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        _money('base_salary'),
        _money('transport'),
        _money('risk'),
        _money('total_indemnities'),
        _money('overtime_hours'),
        _money('sursalaire'),
        _money('gross_salary'),
        _money('accompte'),
        _money('autres_retenues'),
        _money('absences'),
        _money('total_retenues'),
        _money('cnps_employer'),
        _money('net_amount'),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_method', sa.String(length=50), nullable=False, server_default='bank_transfer'),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['worker_id'], ['workers.id']),
        sa.ForeignKeyConstraint(['work_contract_id'], ['work_contracts.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('number'),
        sa.UniqueConstraint('worker_id', 'period_start', name='uq_payroll_worker_period_start'),
    )
    op.create_index('ix_payrolls_worker_period', 'payrolls', ['worker_id', 'period_start', 'period_end'])
    op.create_index('ix_payrolls_paid_period_end', 'payrolls', ['paid', 'period_end'])

    op.create_table(
        'payroll_advance_applications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payroll_id', sa.Uuid(), nullable=False),
        sa.Column('advance_id', sa.Uuid(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['payroll_id'], ['payrolls.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payroll_advance_applications_payroll_id', 'payroll_advance_applications', ['payroll_id'])
    op.create_index('ix_payroll_advance_applications_advance_id', 'payroll_advance_applications', ['advance_id'])

    op.create_table(
        'advances',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('number', sa.String(length=50), nullable=False),
        sa.Column('worker_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('remaining', sa.Numeric(precision=14, scale=2), nullable=False),
        _money('total_repaid'),
        _money('monthly_recovery', nullable=True),
        sa.Column('recovery_percentage', sa.Numeric(precision=5, scale=2), nullable=True, server_default='0'),
        _money('max_recovery_amount', nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='requested'),
        sa.Column('reason', sa.String(length=50), nullable=False, server_default='other'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('payment_method', sa.String(length=50), nullable=False, server_default='bank_transfer'),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by', sa.Uuid(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_by', sa.Uuid(), nullable=True),
        sa.Column('rejected_reason', sa.Text(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_by', sa.Uuid(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.Uuid(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['worker_id'], ['workers.id']),
        sa.ForeignKeyConstraint(['approved_by'], ['users.id']),
        sa.ForeignKeyConstraint(['rejected_by'], ['users.id']),
        sa.ForeignKeyConstraint(['paid_by'], ['users.id']),
        sa.ForeignKeyConstraint(['cancelled_by'], ['users.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('number'),
    )
    op.create_index('ix_advances_worker_id', 'advances', ['worker_id'])
    op.create_index('ix_advances_status', 'advances', ['status'])

    op.create_table(
        'advance_repayments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('advance_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('repayment_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payroll_id', sa.Uuid(), nullable=True),
        sa.Column('payment_method', sa.String(length=50), nullable=False, server_default='payroll_deduction'),
        sa.Column('recorded_by', sa.Uuid(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['advance_id'], ['advances.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['recorded_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_advance_repayments_advance_id', 'advance_repayments', ['advance_id'])
    op.create_index('ix_advance_repayments_payroll_id', 'advance_repayments', ['payroll_id'])

    op.create_table(
        'sursalaires',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('number', sa.String(length=50), nullable=False),
        sa.Column('beneficiary_id', sa.Uuid(), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('total_advance_deductions', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('credited_amount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='pending'),
        sa.Column('credited_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('credited_by', sa.Uuid(), nullable=True),
        sa.Column('beneficiary_payroll_id', sa.Uuid(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.Uuid(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['beneficiary_id'], ['workers.id']),
        sa.ForeignKeyConstraint(['beneficiary_payroll_id'], ['payrolls.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['credited_by'], ['users.id']),
        sa.ForeignKeyConstraint(['cancelled_by'], ['users.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('number'),
    )
    op.create_index('ix_sursalaires_beneficiary_period', 'sursalaires',
                    ['beneficiary_id', 'period_start', 'period_end'])
    op.create_index('ix_sursalaires_status', 'sursalaires', ['status'])

    op.create_table(
        'sursalaire_deductions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('sursalaire_id', sa.Uuid(), nullable=False),
        sa.Column('advance_id', sa.Uuid(), nullable=False),
        sa.Column('advance_number', sa.String(length=50), nullable=True),
        sa.Column('payroll_id', sa.Uuid(), nullable=False),
        sa.Column('agent_id', sa.Uuid(), nullable=False),
        sa.Column('deduction_amount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('deduction_date', sa.Date(), nullable=False),
        sa.ForeignKeyConstraint(['sursalaire_id'], ['sursalaires.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sursalaire_deductions_sursalaire_id', 'sursalaire_deductions', ['sursalaire_id'])


def downgrade() -> None:
    op.drop_index('ix_sursalaire_deductions_sursalaire_id', table_name='sursalaire_deductions')
    op.drop_table('sursalaire_deductions')
    op.drop_index('ix_sursalaires_status', table_name='sursalaires')
    op.drop_index('ix_sursalaires_beneficiary_period', table_name='sursalaires')
    op.drop_table('sursalaires')
    op.drop_index('ix_advance_repayments_payroll_id', table_name='advance_repayments')
    op.drop_index('ix_advance_repayments_advance_id', table_name='advance_repayments')
    op.drop_table('advance_repayments')
    op.drop_index('ix_advances_status', table_name='advances')
    op.drop_index('ix_advances_worker_id', table_name='advances')
    op.drop_table('advances')
    op.drop_index('ix_payroll_advance_applications_advance_id', table_name='payroll_advance_applications')
    op.drop_index('ix_payroll_advance_applications_payroll_id', table_name='payroll_advance_applications')
    op.drop_table('payroll_advance_applications')
    op.drop_index('ix_payrolls_paid_period_end', table_name='payrolls')
    op.drop_index('ix_payrolls_worker_period', table_name='payrolls')
    op.drop_table('payrolls')
    op.drop_table('number_counters')
    op.drop_index('ix_work_contracts_worker_status', table_name='work_contracts')
    op.drop_table('work_contracts')
    op.drop_table('workers')
    op.drop_table('users')
