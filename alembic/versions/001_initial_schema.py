"""Initial schema - subscriptions, services, payments, payouts, referrals

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

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


ENUM_TYPES = {
    'plan_type': ('MONTHLY', 'ONE_TIME'),
    'subscription_status': ('ACTIVE', 'PAST_DUE', 'CANCELLED', 'PAUSED'),
    'weekday': ('MONDAY', 'TUESDAY', 'WEDNESDAY', 'THURSDAY', 'FRIDAY', 'SATURDAY', 'SUNDAY'),
    'payment_method': ('CARD', 'ACH'),
    'referral_type': ('CUSTOMER', 'BUSINESS'),
    'service_status': ('SCHEDULED', 'CLAIMED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED'),
    'service_payment_status': ('PENDING', 'PAYOUT_REQUESTED', 'PAID'),
    'photo_kind': ('BEFORE', 'AFTER'),
    'charge_status': ('PENDING', 'COMPLETED', 'FAILED'),
    'retry_status': ('SCHEDULED', 'SUCCESS', 'FAILED'),
    'payout_status': ('REQUESTED', 'PAID', 'REJECTED'),
    'commission_status': ('PENDING', 'BATCHED', 'PAID'),
    'referral_payout_status': ('PENDING', 'PAID'),
}


def enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='Row creation time (UTC)'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='Last modification time (UTC)'),
    ]


def upgrade() -> None:
    # Create enum types
    for name, values in ENUM_TYPES.items():
        quoted = ", ".join(f"'{value}'" for value in values)
        op.execute(f"CREATE TYPE {name} AS ENUM ({quoted})")

    op.create_table('service_plans',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False, comment='Display name of the plan'),
        sa.Column('price_cents', sa.BigInteger(), nullable=False, comment='Price per billing cycle in cents'),
        sa.Column('plan_type', enum('plan_type'), nullable=False, comment='Billing cadence'),
        sa.Column('is_active', sa.Boolean(), nullable=False, comment='Whether the plan can be subscribed to'),
        *timestamps(),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('customers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment="Identity of the customer's user account"),
        sa.Column('name', sa.String(length=120), nullable=False, comment='Display name'),
        sa.Column('email', sa.String(length=255), nullable=True, comment='Contact email'),
        sa.Column('referral_type', enum('referral_type'), nullable=True, comment='Referral source, if the customer was referred'),
        sa.Column('referrer_user_id', sa.String(length=64), nullable=True, comment='User who referred this customer'),
        sa.Column('gateway_customer_reference', sa.String(length=64), nullable=True, comment='Customer id at the payment gateway'),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )
    op.create_index('idx_customer_referrer', 'customers', ['referrer_user_id'])

    op.create_table('employees',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment="Identity of the employee's user account"),
        sa.Column('name', sa.String(length=120), nullable=False, comment='Display name'),
        sa.Column('has_completed_service_area_setup', sa.Boolean(), nullable=False, comment='Whether the employee configured the zip codes they serve'),
        sa.Column('is_active', sa.Boolean(), nullable=False, comment='Inactive employees cannot claim jobs'),
        sa.Column('payout_account_reference', sa.String(length=64), nullable=True, comment='Connected payout account at the payment provider'),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )

    op.create_table('subscriptions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False, comment='Owning customer'),
        sa.Column('plan_id', sa.Integer(), nullable=False, comment='Subscribed plan'),
        sa.Column('status', enum('subscription_status'), nullable=False, comment='Billing status'),
        sa.Column('start_date', sa.Date(), nullable=False, comment='First day services may be scheduled'),
        sa.Column('end_date', sa.Date(), nullable=True, comment='Last day services may be scheduled (null = open ended)'),
        sa.Column('service_day', enum('weekday'), nullable=False, comment='Weekday the service is performed'),
        sa.Column('payment_method', enum('payment_method'), nullable=False, comment='Payment method used for billing'),
        sa.Column('last_payment_date', sa.DateTime(), nullable=True, comment='Last successful charge'),
        *timestamps(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['plan_id'], ['service_plans.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_subscription_status_day', 'subscriptions', ['status', 'service_day'])
    op.create_index('idx_subscription_customer', 'subscriptions', ['customer_id'])

    op.create_table('payout_requests',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('employee_id', sa.Integer(), nullable=False, comment='Requesting employee'),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False, comment="Sum of the referenced services' earnings in cents"),
        sa.Column('service_count', sa.Integer(), nullable=False, comment='Number of services settled by this payout'),
        sa.Column('status', enum('payout_status'), nullable=False, comment='Payout status'),
        sa.Column('requested_at', sa.DateTime(), nullable=False, comment='When the payout was requested'),
        sa.Column('paid_at', sa.DateTime(), nullable=True, comment='When the payout was sent'),
        sa.Column('transaction_reference', sa.String(length=128), nullable=True, comment='Transfer id at the payout provider'),
        *timestamps(),
        sa.ForeignKeyConstraint(['employee_id'], ['employees.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_payout_employee_status', 'payout_requests', ['employee_id', 'status'])

    op.create_table('service_instances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False, comment='Customer being serviced'),
        sa.Column('subscription_id', sa.Integer(), nullable=True, comment='Subscription this instance was generated from'),
        sa.Column('service_plan_id', sa.Integer(), nullable=False, comment='Plan inherited from the subscription'),
        sa.Column('status', enum('service_status'), nullable=False, comment='Lifecycle status'),
        sa.Column('scheduled_date', sa.DateTime(), nullable=False, comment='When the service is due (UTC)'),
        sa.Column('period_key', sa.String(length=10), nullable=False, comment='ISO week of the occurrence, e.g. 2026-W42'),
        sa.Column('employee_id', sa.Integer(), nullable=True, comment='Employee who claimed the service'),
        sa.Column('claimed_at', sa.DateTime(), nullable=True, comment='When the service was claimed'),
        sa.Column('started_at', sa.DateTime(), nullable=True, comment='When work started'),
        sa.Column('completed_date', sa.DateTime(), nullable=True, comment='When the service was completed'),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True, comment='When the service was cancelled'),
        sa.Column('cancellation_reason', sa.String(length=255), nullable=True, comment='Reason given on cancellation'),
        sa.Column('potential_earnings_cents', sa.BigInteger(), nullable=False, comment='Employee payout for this instance in cents'),
        sa.Column('payment_status', enum('service_payment_status'), nullable=False, comment='Employee payout status'),
        sa.Column('payout_id', sa.Integer(), nullable=True, comment='Payout request that settles this instance'),
        sa.Column('paid_at', sa.DateTime(), nullable=True, comment='When the employee was paid'),
        sa.Column('notes', sa.Text(), nullable=True, comment='Append-only audit trail, one line per entry'),
        sa.Column('is_locked', sa.Boolean(), nullable=False, comment='Locked jobs are hidden from employees until unlocked'),
        sa.Column('unlocked_at', sa.DateTime(), nullable=True, comment='When the job was unlocked'),
        *timestamps(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id']),
        sa.ForeignKeyConstraint(['service_plan_id'], ['service_plans.id']),
        sa.ForeignKeyConstraint(['employee_id'], ['employees.id']),
        sa.ForeignKeyConstraint(['payout_id'], ['payout_requests.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('customer_id', 'period_key', name='uq_service_customer_period')
    )
    op.create_index('idx_service_status_date', 'service_instances', ['status', 'scheduled_date'])
    op.create_index('idx_service_employee_status', 'service_instances', ['employee_id', 'status'])
    op.create_index('idx_service_payment_status', 'service_instances', ['payment_status'])

    op.create_table('service_photos',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('service_instance_id', sa.Integer(), nullable=False, comment='Photographed service'),
        sa.Column('kind', enum('photo_kind'), nullable=False, comment='BEFORE or AFTER'),
        sa.Column('url', sa.Text(), nullable=False, comment='Location of the stored image'),
        sa.Column('uploaded_by', sa.String(length=64), nullable=True, comment='User who attached the photo'),
        *timestamps(),
        sa.ForeignKeyConstraint(['service_instance_id'], ['service_instances.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_photo_service_kind', 'service_photos', ['service_instance_id', 'kind'])

    op.create_table('checklist_item_completions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('service_instance_id', sa.Integer(), nullable=False, comment='Completed service'),
        sa.Column('item_key', sa.String(length=64), nullable=False, comment='Checklist item identifier'),
        sa.Column('done', sa.Boolean(), nullable=False, comment='Whether the item was done'),
        *timestamps(),
        sa.ForeignKeyConstraint(['service_instance_id'], ['service_instances.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('service_instance_id', 'item_key', name='uq_checklist_service_item')
    )

    op.create_table('payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False, comment='Charged customer'),
        sa.Column('subscription_id', sa.Integer(), nullable=True, comment='Subscription the charge belongs to'),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False, comment='Charged amount in cents'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='ISO currency code'),
        sa.Column('status', enum('charge_status'), nullable=False, comment='Charge status'),
        sa.Column('gateway_customer_reference', sa.String(length=64), nullable=True, comment='Customer id at the gateway, overrides the customer record'),
        sa.Column('failure_reason', sa.String(length=255), nullable=True, comment='Gateway reason of the last failure'),
        *timestamps(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_payment_subscription', 'payments', ['subscription_id'])
    op.create_index('idx_payment_status', 'payments', ['status'])

    op.create_table('payment_retries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False, comment='Failed payment being retried'),
        sa.Column('status', enum('retry_status'), nullable=False, comment='Retry status'),
        sa.Column('attempt_count', sa.Integer(), nullable=False, comment="1-based attempt number within the payment's retry chain"),
        sa.Column('scheduled_date', sa.DateTime(), nullable=False, comment='Earliest time the retry may run'),
        sa.Column('processed_at', sa.DateTime(), nullable=True, comment='When the retry reached a terminal status'),
        sa.Column('failure_reason', sa.String(length=255), nullable=True, comment='Reason code when the retry failed'),
        sa.Column('transaction_id', sa.String(length=128), nullable=True, comment='Gateway transaction id on success'),
        sa.Column('version', sa.Integer(), nullable=False, comment='Optimistic concurrency counter'),
        *timestamps(),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_id', 'attempt_count', name='uq_retry_payment_attempt')
    )
    op.create_index('idx_retry_status_scheduled', 'payment_retries', ['status', 'scheduled_date'])

    op.create_table('payment_retry_status_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('payment_retry_id', sa.Integer(), nullable=False, comment='Retry this entry belongs to'),
        sa.Column('sequence', sa.Integer(), nullable=False, comment='1-based position in the history'),
        sa.Column('status', enum('retry_status'), nullable=False, comment='Status entered'),
        sa.Column('timestamp', sa.DateTime(), nullable=False, comment='When the status was entered (UTC)'),
        sa.Column('note', sa.Text(), nullable=True, comment='Optional reason'),
        sa.ForeignKeyConstraint(['payment_retry_id'], ['payment_retries.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_retry_id', 'sequence', name='uq_retry_history_sequence')
    )

    op.create_table('referral_payouts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('referrer_user_id', sa.String(length=64), nullable=False, comment='Payee'),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False, comment='Sum of batched commissions in cents'),
        sa.Column('commission_count', sa.Integer(), nullable=False, comment='Number of commissions in the batch'),
        sa.Column('status', enum('referral_payout_status'), nullable=False, comment='Payout status'),
        sa.Column('paid_at', sa.DateTime(), nullable=True, comment='When the payout was sent'),
        *timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_referral_payout_referrer', 'referral_payouts', ['referrer_user_id'])

    op.create_table('referral_commissions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('referrer_user_id', sa.String(length=64), nullable=False, comment='User who referred the customer'),
        sa.Column('customer_id', sa.Integer(), nullable=False, comment='Referred customer'),
        sa.Column('subscription_id', sa.Integer(), nullable=False, comment='Subscription whose charge triggered the commission'),
        sa.Column('referral_type', enum('referral_type'), nullable=False, comment='CUSTOMER or BUSINESS referral'),
        sa.Column('period_key', sa.String(length=7), nullable=False, comment='Billing month, e.g. 2026-10'),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False, comment='Commission in cents'),
        sa.Column('status', enum('commission_status'), nullable=False, comment='Commission status'),
        sa.Column('referral_payout_id', sa.Integer(), nullable=True, comment='Payout batch containing this commission'),
        *timestamps(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id']),
        sa.ForeignKeyConstraint(['referral_payout_id'], ['referral_payouts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('subscription_id', 'period_key', name='uq_commission_subscription_period')
    )
    op.create_index('idx_commission_referrer_status', 'referral_commissions', ['referrer_user_id', 'status'])


def downgrade() -> None:
    for table in (
        'referral_commissions',
        'referral_payouts',
        'payment_retry_status_history',
        'payment_retries',
        'payments',
        'checklist_item_completions',
        'service_photos',
        'service_instances',
        'payout_requests',
        'subscriptions',
        'employees',
        'customers',
        'service_plans',
    ):
        op.drop_table(table)

    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
