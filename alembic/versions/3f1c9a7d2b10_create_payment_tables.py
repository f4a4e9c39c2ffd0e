"""create payment tables

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    """Create users, plans, subscriptions and the payment transaction ledger."""

    # 1. users (owned by the account service; created here only if missing)
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        if_not_exists=True,
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False, if_not_exists=True)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True, if_not_exists=True)

    # 2. plans
    op.create_table(
        'plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='MWK'),
        sa.Column('duration_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('text_sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('voice_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('video_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_plans_id'), 'plans', ['id'], unique=False)
    op.create_index(op.f('ix_plans_is_active'), 'plans', ['is_active'], unique=False)

    # 3. subscriptions (plan_id survives plan deletion as NULL)
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=True),
        sa.Column('plan_name', sa.String(length=255), nullable=True),
        sa.Column('plan_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('plan_currency', sa.String(length=3), nullable=True),
        sa.Column('plan_duration_days', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('text_sessions_remaining', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('voice_calls_remaining', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('video_calls_remaining', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_text_sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_voice_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_video_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_transaction_reference', sa.String(length=100), nullable=True),
        sa.Column('payment_gateway', sa.String(length=20), nullable=True),
        sa.Column('payment_metadata', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'], unique=False)
    op.create_index(op.f('ix_subscriptions_user_id'), 'subscriptions', ['user_id'], unique=False)
    op.create_index(op.f('ix_subscriptions_plan_id'), 'subscriptions', ['plan_id'], unique=False)
    op.create_index(op.f('ix_subscriptions_is_active'), 'subscriptions', ['is_active'], unique=False)
    op.create_index(op.f('ix_subscriptions_end_date'), 'subscriptions', ['end_date'], unique=False)
    op.create_index(
        op.f('ix_subscriptions_payment_transaction_reference'),
        'subscriptions', ['payment_transaction_reference'], unique=False
    )
    # At most one active subscription per user
    op.create_index(
        'uq_subscriptions_user_active', 'subscriptions', ['user_id'], unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active = 1'),
    )

    # 4. payment_transactions (user_id / plan_id carry no FKs so unknown ids are still recorded)
    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('gateway_reference', sa.String(length=100), nullable=False),
        sa.Column('gateway_transaction_id', sa.String(length=100), nullable=True),
        sa.Column('gateway', sa.String(length=20), nullable=False, server_default='paychangu'),
        sa.Column('amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('payment_method', sa.String(length=100), nullable=True),
        sa.Column('payment_channel', sa.String(length=100), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('plan_id', sa.Integer(), nullable=True),
        sa.Column('requires_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('anomaly_reason', sa.String(length=200), nullable=True),
        sa.Column('failure_reason', sa.String(length=200), nullable=True),
        sa.Column('raw_payload', JSONType, nullable=True),
        sa.Column('delivery_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('extra_metadata', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payment_transactions_id'), 'payment_transactions', ['id'], unique=False)
    op.create_index(op.f('ix_payment_transactions_gateway_reference'), 'payment_transactions', ['gateway_reference'], unique=True)
    op.create_index(op.f('ix_payment_transactions_gateway_transaction_id'), 'payment_transactions', ['gateway_transaction_id'], unique=False)
    op.create_index(op.f('ix_payment_transactions_status'), 'payment_transactions', ['status'], unique=False)
    op.create_index(op.f('ix_payment_transactions_user_id'), 'payment_transactions', ['user_id'], unique=False)
    op.create_index(op.f('ix_payment_transactions_requires_review'), 'payment_transactions', ['requires_review'], unique=False)
    op.create_index('idx_payment_transactions_user_status', 'payment_transactions', ['user_id', 'status'], unique=False)


def downgrade() -> None:
    """Drop payment tables (users is left to the account service)."""

    op.drop_index('idx_payment_transactions_user_status', table_name='payment_transactions')
    op.drop_index(op.f('ix_payment_transactions_requires_review'), table_name='payment_transactions')
    op.drop_index(op.f('ix_payment_transactions_user_id'), table_name='payment_transactions')
    op.drop_index(op.f('ix_payment_transactions_status'), table_name='payment_transactions')
    op.drop_index(op.f('ix_payment_transactions_gateway_transaction_id'), table_name='payment_transactions')
    op.drop_index(op.f('ix_payment_transactions_gateway_reference'), table_name='payment_transactions')
    op.drop_index(op.f('ix_payment_transactions_id'), table_name='payment_transactions')
    op.drop_table('payment_transactions')

    op.drop_index('uq_subscriptions_user_active', table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_payment_transaction_reference'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_end_date'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_is_active'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_plan_id'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_user_id'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_id'), table_name='subscriptions')
    op.drop_table('subscriptions')

    op.drop_index(op.f('ix_plans_is_active'), table_name='plans')
    op.drop_index(op.f('ix_plans_id'), table_name='plans')
    op.drop_table('plans')
