"""add_stripe_mirror_tables

Revision ID: 3c1f5a9e2b47
Revises:
Create Date: 2025-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c1f5a9e2b47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'stripe_customers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False, comment='付款人邮箱'),
        sa.Column('customer_id', sa.String(length=255), nullable=False, comment='Stripe customer id'),
        sa.Column('is_live', sa.Boolean(), nullable=False, comment='是否为 live 模式'),
        sa.Column('processor_id', sa.Integer(), nullable=False, comment='CRM 支付处理器ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_stripe_customers')),
        sa.UniqueConstraint('email', 'is_live', 'processor_id', name='uq_stripe_customers_email_mode_processor'),
    )
    op.create_index('ix_stripe_customers_id', 'stripe_customers', ['id'], unique=False)
    op.create_index('ix_stripe_customers_customer_id', 'stripe_customers', ['customer_id'], unique=False)

    op.create_table(
        'stripe_plans',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('plan_id', sa.String(length=255), nullable=False, comment='Stripe plan id'),
        sa.Column('is_live', sa.Boolean(), nullable=False),
        sa.Column('processor_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_stripe_plans')),
        sa.UniqueConstraint('plan_id', 'is_live', 'processor_id', name='uq_stripe_plans_plan_mode_processor'),
    )
    op.create_index('ix_stripe_plans_id', 'stripe_plans', ['id'], unique=False)

    op.create_table(
        'stripe_subscriptions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('subscription_id', sa.String(length=255), nullable=False, comment='Stripe subscription id'),
        sa.Column('customer_id', sa.String(length=255), nullable=False),
        sa.Column('contribution_recur_id', sa.Integer(), nullable=True, comment='CRM 定期捐款ID'),
        sa.Column('processor_id', sa.Integer(), nullable=False),
        sa.Column('is_live', sa.Boolean(), nullable=False),
        sa.Column('end_time', sa.BigInteger(), nullable=True, comment='结束时间（epoch 秒），无限期为空'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_stripe_subscriptions')),
        sa.UniqueConstraint('subscription_id', name=op.f('uq_stripe_subscriptions_subscription_id')),
    )
    op.create_index('ix_stripe_subscriptions_id', 'stripe_subscriptions', ['id'], unique=False)
    op.create_index('ix_stripe_subscriptions_customer_id', 'stripe_subscriptions', ['customer_id'], unique=False)
    op.create_index(
        'ix_stripe_subscriptions_contribution_recur_id', 'stripe_subscriptions', ['contribution_recur_id'], unique=False
    )

    op.create_table(
        'stripe_event_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('processor_id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=True, comment='Stripe event id'),
        sa.Column('event_type', sa.String(length=100), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False, comment='事件原文'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_stripe_event_log')),
    )
    op.create_index('ix_stripe_event_log_id', 'stripe_event_log', ['id'], unique=False)
    op.create_index('ix_stripe_event_log_event_id', 'stripe_event_log', ['event_id'], unique=False)
    op.create_index('ix_stripe_event_log_created_at', 'stripe_event_log', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_stripe_event_log_created_at', table_name='stripe_event_log')
    op.drop_index('ix_stripe_event_log_event_id', table_name='stripe_event_log')
    op.drop_index('ix_stripe_event_log_id', table_name='stripe_event_log')
    op.drop_table('stripe_event_log')

    op.drop_index('ix_stripe_subscriptions_contribution_recur_id', table_name='stripe_subscriptions')
    op.drop_index('ix_stripe_subscriptions_customer_id', table_name='stripe_subscriptions')
    op.drop_index('ix_stripe_subscriptions_id', table_name='stripe_subscriptions')
    op.drop_table('stripe_subscriptions')

    op.drop_index('ix_stripe_plans_id', table_name='stripe_plans')
    op.drop_table('stripe_plans')

    op.drop_index('ix_stripe_customers_customer_id', table_name='stripe_customers')
    op.drop_index('ix_stripe_customers_id', table_name='stripe_customers')
    op.drop_table('stripe_customers')
