"""Add telegram_subscriptions and notification_attempts tables

- telegram_subscriptions: bot subscribers per alert tier
- notification_attempts: audit of every Telegram send

Revision ID: 8f4d2c6a1e93
Revises: 3c1e9a7d2b40
Create Date: 2026-10-14 16:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8f4d2c6a1e93'
down_revision: Union[str, Sequence[str], None] = '3c1e9a7d2b40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create telegram_subscriptions and notification_attempts."""
    op.create_table(
        'telegram_subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('chat_id', sa.BigInteger(), nullable=False),
        sa.Column('subscription_type', sa.String(30), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        # Constraints
        sa.UniqueConstraint('user_id', 'subscription_type', name='uq_subscription_user_type'),
        sa.CheckConstraint(
            "subscription_type IN ('critical_whales', 'exchange_deposits', 'whale_movements', 'system_alerts')",
            name='subscription_valid_type'
        ),
    )
    op.create_index('ix_telegram_subscriptions_id', 'telegram_subscriptions', ['id'])
    op.create_index('ix_telegram_subscriptions_user_id', 'telegram_subscriptions', ['user_id'])
    op.create_index('idx_subscription_type_active', 'telegram_subscriptions', ['subscription_type', 'is_active'])

    op.create_table(
        'notification_attempts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('whale_alert_id', sa.Integer(), sa.ForeignKey('whale_alerts.id'), nullable=True),
        sa.Column('channel_type', sa.String(20), nullable=False, server_default='telegram'),
        sa.Column('channel_id', sa.String(64), nullable=False),
        sa.Column('attempt_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(10), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint("status IN ('success', 'failed')", name='attempt_valid_status'),
    )
    op.create_index('ix_notification_attempts_id', 'notification_attempts', ['id'])
    op.create_index('ix_notification_attempts_whale_alert_id', 'notification_attempts', ['whale_alert_id'])


def downgrade() -> None:
    """Drop telegram_subscriptions and notification_attempts."""
    op.drop_index('ix_notification_attempts_whale_alert_id', table_name='notification_attempts')
    op.drop_index('ix_notification_attempts_id', table_name='notification_attempts')
    op.drop_table('notification_attempts')

    op.drop_index('idx_subscription_type_active', table_name='telegram_subscriptions')
    op.drop_index('ix_telegram_subscriptions_user_id', table_name='telegram_subscriptions')
    op.drop_index('ix_telegram_subscriptions_id', table_name='telegram_subscriptions')
    op.drop_table('telegram_subscriptions')
