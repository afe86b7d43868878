"""Initial CRM schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

WHAT: Creates the tenant, client and project tables together with the
billing (invoices, payments, recurring templates), bookkeeping
(transactions), budget and task tables.

HOW: Enum types are created once up front and referenced with
create_type=False, because several tables share the same type
(discounttype, taskpriority).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


MONEY = sa.Numeric(12, 2)
RATE = sa.Numeric(7, 3)

ENUMS = {
    'userrole': ('ADMIN', 'MEMBER'),
    'projectstatus': ('planning', 'active', 'on_hold', 'completed', 'cancelled'),
    'invoicestatus': ('draft', 'sent', 'viewed', 'partial', 'paid', 'overdue', 'cancelled'),
    'discounttype': ('percentage', 'fixed'),
    'emaileventtype': ('sent', 'viewed', 'reminder'),
    'recurrenceinterval': ('weekly', 'monthly', 'quarterly', 'yearly', 'custom'),
    'transactiontype': ('income', 'expense'),
    'transactionstatus': ('pending', 'completed', 'cancelled'),
    'taskstatus': ('pending', 'in_progress', 'completed', 'cancelled'),
    'taskpriority': ('low', 'medium', 'high'),
    'taskfrequency': ('daily', 'weekly', 'monthly', 'yearly'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def _org_fk() -> sa.Column:
    return sa.Column(
        'org_id',
        sa.Integer(),
        sa.ForeignKey('organizations.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )


def _project_fk(nullable: bool = False, ondelete: str = 'CASCADE') -> sa.Column:
    return sa.Column(
        'project_id',
        sa.Integer(),
        sa.ForeignKey('projects.id', ondelete=ondelete),
        nullable=nullable,
        index=True,
    )


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ------------------------------------------------------------------
    # Tenants and people
    # ------------------------------------------------------------------
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(255), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('settings', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('role', _enum('userrole'), nullable=False),
        sa.Column(
            'org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False, index=True
        ),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        _org_fk(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('company', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'projects',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        _org_fk(),
        sa.Column(
            'client_id',
            sa.Integer(),
            sa.ForeignKey('clients.id', ondelete='SET NULL'),
            nullable=True,
            index=True,
        ),
        sa.Column('name', sa.String(255), nullable=False, comment='Project name/title'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', _enum('projectstatus'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        *_timestamps(),
    )

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------
    op.create_table(
        'recurring_invoice_templates',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        _org_fk(),
        sa.Column(
            'client_id',
            sa.Integer(),
            sa.ForeignKey('clients.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        _project_fk(nullable=True, ondelete='SET NULL'),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, index=True),
        sa.Column('recurrence_interval', _enum('recurrenceinterval'), nullable=False),
        sa.Column('custom_days', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('next_generation_date', sa.Date(), nullable=False, index=True),
        sa.Column('last_generated_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('line_items', sa.JSON(), nullable=False),
        sa.Column('tax_rate', RATE, nullable=False),
        sa.Column('discount', MONEY, nullable=False),
        sa.Column('due_days', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('terms', sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        _org_fk(),
        sa.Column('invoice_number', sa.String(50), nullable=False, index=True),
        sa.Column('status', _enum('invoicestatus'), nullable=False, index=True),
        sa.Column(
            'client_id',
            sa.Integer(),
            sa.ForeignKey('clients.id', ondelete='RESTRICT'),
            nullable=False,
            index=True,
        ),
        _project_fk(nullable=True, ondelete='SET NULL'),
        sa.Column('tax_rate', RATE, nullable=False),
        sa.Column('discount', MONEY, nullable=False),
        sa.Column('discount_rate', RATE, nullable=False),
        sa.Column('discount_type', _enum('discounttype'), nullable=False),
        sa.Column('shipping_amount', MONEY, nullable=False),
        sa.Column('shipping_tax_rate', RATE, nullable=False),
        sa.Column('subtotal', MONEY, nullable=False, comment='Sum of line item amounts'),
        sa.Column('tax_amount', MONEY, nullable=False),
        sa.Column('discount_amount', MONEY, nullable=False),
        sa.Column('shipping_tax_amount', MONEY, nullable=False),
        sa.Column('total', MONEY, nullable=False, comment='Final total amount due'),
        sa.Column('amount_paid', MONEY, nullable=False, comment='Sum of all payments'),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('issue_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('viewed_at', sa.DateTime(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('terms', sa.Text(), nullable=True),
        sa.Column('reminders_sent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_reminder_at', sa.DateTime(), nullable=True),
        sa.Column(
            'recurring_template_id',
            sa.Integer(),
            sa.ForeignKey('recurring_invoice_templates.id', ondelete='SET NULL'),
            nullable=True,
            index=True,
        ),
        sa.Column('recurrence_date', sa.Date(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('org_id', 'invoice_number', name='uq_invoices_org_number'),
        sa.UniqueConstraint(
            'recurring_template_id', 'recurrence_date', name='uq_invoices_template_occurrence'
        ),
    )

    # ------------------------------------------------------------------
    # Tasks (invoice line items may reference a task)
    # ------------------------------------------------------------------
    op.create_table(
        'recurring_tasks',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        _org_fk(),
        _project_fk(),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('frequency', _enum('taskfrequency'), nullable=False),
        sa.Column('interval', sa.Integer(), nullable=False),
        sa.Column('days_of_week', sa.JSON(), nullable=True),
        sa.Column('day_of_month', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('next_due', sa.Date(), nullable=False, index=True),
        sa.Column('last_generated', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, index=True),
        sa.Column('assigned_to', sa.String(255), nullable=True),
        sa.Column('priority', _enum('taskpriority'), nullable=False),
        sa.Column('estimated_hours', MONEY, nullable=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'tasks',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        _org_fk(),
        _project_fk(),
        sa.Column(
            'recurring_task_id',
            sa.Integer(),
            sa.ForeignKey('recurring_tasks.id', ondelete='SET NULL'),
            nullable=True,
            index=True,
        ),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', _enum('taskstatus'), nullable=False, index=True),
        sa.Column('priority', _enum('taskpriority'), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('assigned_to', sa.String(255), nullable=True),
        sa.Column('estimated_hours', MONEY, nullable=True),
        sa.Column('actual_hours', MONEY, nullable=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            'recurring_task_id', 'due_date', name='uq_tasks_recurring_occurrence'
        ),
    )

    op.create_table(
        'invoice_line_items',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column(
            'invoice_id',
            sa.Integer(),
            sa.ForeignKey('invoices.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('quantity', MONEY, nullable=False),
        sa.Column('rate', MONEY, nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('amount_overridden', sa.Boolean(), nullable=False),
        sa.Column('tax_rate', RATE, nullable=False),
        sa.Column('tax_amount', MONEY, nullable=False),
        sa.Column('discount_rate', RATE, nullable=False),
        sa.Column('discount_amount', MONEY, nullable=False),
        sa.Column('discount_type', _enum('discounttype'), nullable=True),
        sa.Column(
            'project_id',
            sa.Integer(),
            sa.ForeignKey('projects.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'task_id', sa.Integer(), sa.ForeignKey('tasks.id', ondelete='SET NULL'), nullable=True
        ),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('hours', MONEY, nullable=True),
        sa.Column('period_start', sa.Date(), nullable=True),
        sa.Column('period_end', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )

    op.create_table(
        'invoice_payments',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column(
            'invoice_id',
            sa.Integer(),
            sa.ForeignKey('invoices.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        _org_fk(),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('method', sa.String(50), nullable=False, comment='bank, card, cash, check, ...'),
        sa.Column('reference', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column(
            'created_by_user_id',
            sa.Integer(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'invoice_email_history',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column(
            'invoice_id',
            sa.Integer(),
            sa.ForeignKey('invoices.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column('event_type', _enum('emaileventtype'), nullable=False),
        sa.Column('recipient', sa.String(255), nullable=True),
        sa.Column('subject', sa.String(500), nullable=True),
        sa.Column('reminder_type', sa.String(50), nullable=True),
        sa.Column('days_overdue', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'invoice_number_sequences',
        sa.Column('id', sa.Integer(), primary_key=True),
        _org_fk(),
        sa.Column('period', sa.String(6), nullable=False, comment='YYYYMM'),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('org_id', 'period', name='uq_invoice_sequences_org_period'),
    )

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        _org_fk(),
        sa.Column('type', _enum('transactiontype'), nullable=False, index=True),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('category', sa.String(100), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('transaction_date', sa.Date(), nullable=False, index=True),
        sa.Column('status', _enum('transactionstatus'), nullable=False),
        _project_fk(nullable=True, ondelete='SET NULL'),
        sa.Column(
            'client_id',
            sa.Integer(),
            sa.ForeignKey('clients.id', ondelete='SET NULL'),
            nullable=True,
            index=True,
        ),
        sa.Column(
            'invoice_id',
            sa.Integer(),
            sa.ForeignKey('invoices.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('reference_number', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
    )

    # ------------------------------------------------------------------
    # Project budgets
    # ------------------------------------------------------------------
    op.create_table(
        'project_budgets',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        _org_fk(),
        sa.Column(
            'project_id',
            sa.Integer(),
            sa.ForeignKey('projects.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('total_budget', MONEY, nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('project_id', name='uq_project_budgets_project'),
    )

    op.create_table(
        'budget_categories',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        _org_fk(),
        _project_fk(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('allocated_amount', MONEY, nullable=False),
        sa.Column('spent_amount', MONEY, nullable=False),
        sa.Column(
            'alert_threshold',
            sa.Integer(),
            nullable=False,
            comment='Percent of allocation that triggers an alert',
        ),
        sa.Column('color', sa.String(7), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'budget_expenses',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        _org_fk(),
        _project_fk(),
        sa.Column(
            'category_id',
            sa.Integer(),
            sa.ForeignKey('budget_categories.id', ondelete='RESTRICT'),
            nullable=True,
            index=True,
        ),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('expense_date', sa.Date(), nullable=False),
        sa.Column('receipt_url', sa.String(500), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'budget_history',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        _org_fk(),
        _project_fk(),
        sa.Column(
            'change_type',
            sa.String(50),
            nullable=False,
            comment='budget_created, budget_update, category_*, expense_*',
        ),
        sa.Column('field_changed', sa.String(50), nullable=True),
        sa.Column('old_value', MONEY, nullable=True),
        sa.Column('new_value', MONEY, nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    for table in (
        'budget_history',
        'budget_expenses',
        'budget_categories',
        'project_budgets',
        'transactions',
        'invoice_number_sequences',
        'invoice_email_history',
        'invoice_payments',
        'invoice_line_items',
        'tasks',
        'recurring_tasks',
        'invoices',
        'recurring_invoice_templates',
        'projects',
        'clients',
        'users',
        'organizations',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
