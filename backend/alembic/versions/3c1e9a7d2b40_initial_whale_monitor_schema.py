"""Initial whale monitor schema

Monitored wallets with scan cursor, normalized ledger transactions,
whale alerts and the health log.

Revision ID: 3c1e9a7d2b40
Revises:
Create Date: 2026-10-12 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1e9a7d2b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create wallet_monitoring, wallet_transactions, whale_alerts, monitoring_health."""
    op.create_table(
        'wallet_monitoring',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('address', sa.String(35), nullable=False),
        sa.Column('owner_name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_ledger_index', sa.BigInteger(), nullable=True),
        sa.Column('last_checked_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('alert_threshold', sa.Numeric(28, 6), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('alert_threshold IS NULL OR alert_threshold > 0', name='wallet_positive_threshold'),
    )
    op.create_index('ix_wallet_monitoring_id', 'wallet_monitoring', ['id'])
    op.create_index('ix_wallet_monitoring_address', 'wallet_monitoring', ['address'], unique=True)
    op.create_index('ix_wallet_monitoring_is_active', 'wallet_monitoring', ['is_active'])

    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_address', sa.String(35), nullable=False),
        sa.Column('transaction_hash', sa.String(64), nullable=False),
        sa.Column('amount', sa.Numeric(28, 6), nullable=False),
        sa.Column('currency', sa.String(40), nullable=False, server_default='XRP'),
        sa.Column('transaction_type', sa.String(40), nullable=False),
        sa.Column('source_address', sa.String(35), nullable=True),
        sa.Column('destination_address', sa.String(35), nullable=True),
        sa.Column('destination_tag', sa.String(10), nullable=True),
        sa.Column('exchange_name', sa.String(100), nullable=True),
        sa.Column('ledger_index', sa.BigInteger(), nullable=False),
        sa.Column('transaction_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_wallet_transactions_id', 'wallet_transactions', ['id'])
    op.create_index('ix_wallet_transactions_wallet_address', 'wallet_transactions', ['wallet_address'])
    op.create_index('ix_wallet_transactions_transaction_hash', 'wallet_transactions', ['transaction_hash'], unique=True)
    op.create_index('idx_wallet_tx_wallet_ledger', 'wallet_transactions', ['wallet_address', 'ledger_index'])

    op.create_table(
        'whale_alerts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_address', sa.String(35), nullable=False),
        sa.Column('owner_name', sa.String(255), nullable=False),
        sa.Column('transaction_hash', sa.String(64), nullable=False),
        sa.Column('amount', sa.Numeric(28, 6), nullable=False),
        sa.Column('transaction_type', sa.String(40), nullable=False),
        sa.Column('alert_type', sa.String(30), nullable=False),
        sa.Column('alert_category', sa.String(30), nullable=False, server_default='direct_transfer'),
        sa.Column('exchange_name', sa.String(100), nullable=True),
        sa.Column('destination_tag', sa.String(10), nullable=True),
        sa.Column('is_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('channel_used', sa.String(30), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        # Constraints
        sa.CheckConstraint(
            "alert_type IN ('critical_whales', 'exchange_deposits', 'whale_movements', 'system_alerts')",
            name='whale_alert_valid_type'
        ),
        sa.CheckConstraint("alert_category IN ('direct_transfer', 'exchange_deposit')", name='whale_alert_valid_category'),
        sa.CheckConstraint('amount > 0', name='whale_alert_positive_amount'),
        sa.CheckConstraint('NOT is_sent OR sent_at IS NOT NULL', name='whale_alert_sent_has_timestamp'),
    )
    op.create_index('ix_whale_alerts_id', 'whale_alerts', ['id'])
    op.create_index('ix_whale_alerts_wallet_address', 'whale_alerts', ['wallet_address'])
    op.create_index('ix_whale_alerts_transaction_hash', 'whale_alerts', ['transaction_hash'], unique=True)
    op.create_index('ix_whale_alerts_alert_type', 'whale_alerts', ['alert_type'])
    op.create_index('ix_whale_alerts_is_sent', 'whale_alerts', ['is_sent'])
    op.create_index('ix_whale_alerts_created_at', 'whale_alerts', ['created_at'])
    op.create_index('idx_whale_alerts_pending', 'whale_alerts', ['is_sent', 'created_at'])

    op.create_table(
        'monitoring_health',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('service_name', sa.String(100), nullable=False),
        sa.Column('status', sa.String(10), nullable=False),
        sa.Column('last_check_at', sa.DateTime(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=True),
        sa.CheckConstraint("status IN ('ok', 'error')", name='health_valid_status'),
    )
    op.create_index('ix_monitoring_health_id', 'monitoring_health', ['id'])
    op.create_index('ix_monitoring_health_service_name', 'monitoring_health', ['service_name'])
    op.create_index('ix_monitoring_health_last_check_at', 'monitoring_health', ['last_check_at'])
    op.create_index('idx_health_service_checked', 'monitoring_health', ['service_name', 'last_check_at'])


def downgrade() -> None:
    """Drop all whale monitor tables."""
    op.drop_index('idx_health_service_checked', table_name='monitoring_health')
    op.drop_index('ix_monitoring_health_last_check_at', table_name='monitoring_health')
    op.drop_index('ix_monitoring_health_service_name', table_name='monitoring_health')
    op.drop_index('ix_monitoring_health_id', table_name='monitoring_health')
    op.drop_table('monitoring_health')

    op.drop_index('idx_whale_alerts_pending', table_name='whale_alerts')
    op.drop_index('ix_whale_alerts_created_at', table_name='whale_alerts')
    op.drop_index('ix_whale_alerts_is_sent', table_name='whale_alerts')
    op.drop_index('ix_whale_alerts_alert_type', table_name='whale_alerts')
    op.drop_index('ix_whale_alerts_transaction_hash', table_name='whale_alerts')
    op.drop_index('ix_whale_alerts_wallet_address', table_name='whale_alerts')
    op.drop_index('ix_whale_alerts_id', table_name='whale_alerts')
    op.drop_table('whale_alerts')

    op.drop_index('idx_wallet_tx_wallet_ledger', table_name='wallet_transactions')
    op.drop_index('ix_wallet_transactions_transaction_hash', table_name='wallet_transactions')
    op.drop_index('ix_wallet_transactions_wallet_address', table_name='wallet_transactions')
    op.drop_index('ix_wallet_transactions_id', table_name='wallet_transactions')
    op.drop_table('wallet_transactions')

    op.drop_index('ix_wallet_monitoring_is_active', table_name='wallet_monitoring')
    op.drop_index('ix_wallet_monitoring_address', table_name='wallet_monitoring')
    op.drop_index('ix_wallet_monitoring_id', table_name='wallet_monitoring')
    op.drop_table('wallet_monitoring')
