"""Initial schema: users, wallets, invoices, transactions.

Revision ID: 001
Revises: 
Create Date: 2026-10-19

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

NETWORKS = ('ETHEREUM', 'POLYGON', 'BSC', 'SEPOLIA', 'MUMBAI')


def upgrade() -> None:
    # Shared by three tables; created once up front
    sa.Enum(*NETWORKS, name='network').create(op.get_bind(), checkfirst=True)
    network_enum = postgresql.ENUM(*NETWORKS, name='network', create_type=False)

    # Users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), unique=True, nullable=False, index=True),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('auth_provider', sa.Enum('JWT', 'AUTH0', 'FIREBASE', name='authprovider'), nullable=False),
        sa.Column('auth_subject', sa.String(255), nullable=False),
        sa.Column('default_network', sa.String(32), default='ethereum'),
        sa.Column('currency', sa.String(8), default='USD'),
        sa.Column('daily_limit_usd', sa.Numeric(18, 2), nullable=True),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )
    op.create_index('ix_users_provider_subject', 'users', ['auth_provider', 'auth_subject'], unique=True)

    # Wallets table
    op.create_table(
        'wallets',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('network', network_enum, nullable=False),
        sa.Column('address', sa.String(42), nullable=False, index=True),
        sa.Column('status', sa.Enum('ACTIVE', 'ARCHIVED', name='walletstatus'), default='ACTIVE'),
        sa.Column('encrypted_private_key', sa.Text(), nullable=False),
        sa.Column('key_algorithm', sa.String(32), nullable=False),
        sa.Column('cached_balance', sa.String(80), nullable=True),
        sa.Column('balance_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
        sa.UniqueConstraint('address', 'network', name='uq_wallets_address_network'),
    )
    op.create_index(
        'uq_wallets_user_network_active',
        'wallets',
        ['user_id', 'network'],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    # Invoices table
    op.create_table(
        'invoices',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('wallet_id', sa.String(36), sa.ForeignKey('wallets.id'), nullable=False),
        sa.Column('network', network_enum, nullable=False),
        sa.Column('token', sa.String(16), nullable=False),
        sa.Column('token_address', sa.String(42), nullable=True),
        sa.Column('token_decimals', sa.Integer(), default=18),
        sa.Column('amount', sa.String(80), nullable=False),
        sa.Column('address', sa.String(42), nullable=False, index=True),
        sa.Column('memo', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('PENDING', 'PAID', 'EXPIRED', 'CANCELLED', name='invoicestatus'), default='PENDING'),
        sa.Column('tx_hash', sa.String(66), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )
    op.create_index('ix_invoices_status_expires', 'invoices', ['status', 'expires_at'])

    # Transactions table
    op.create_table(
        'transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('wallet_id', sa.String(36), sa.ForeignKey('wallets.id'), nullable=False, index=True),
        sa.Column('invoice_id', sa.String(36), sa.ForeignKey('invoices.id'), nullable=True),
        sa.Column('network', network_enum, nullable=False),
        sa.Column('direction', sa.Enum('SEND', 'RECEIVE', name='txdirection'), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'CONFIRMED', 'FAILED', 'CANCELLED', name='txstatus'), default='PENDING', index=True),
        sa.Column('from_address', sa.String(42), nullable=False),
        sa.Column('to_address', sa.String(42), nullable=False),
        sa.Column('asset_symbol', sa.String(16), nullable=False),
        sa.Column('token_address', sa.String(42), nullable=True),
        sa.Column('token_decimals', sa.Integer(), default=18),
        sa.Column('amount', sa.String(80), nullable=False),
        sa.Column('amount_base_units', sa.String(80), nullable=False),
        sa.Column('usd_value', sa.Numeric(24, 2), nullable=True),
        sa.Column('tx_hash', sa.String(66), nullable=True, index=True),
        sa.Column('nonce', sa.Integer(), nullable=True),
        sa.Column('gas_limit', sa.String(40), nullable=True),
        sa.Column('gas_price', sa.String(40), nullable=True),
        sa.Column('gas_used', sa.String(40), nullable=True),
        sa.Column('block_number', sa.Integer(), nullable=True),
        sa.Column('confirmations', sa.Integer(), default=0),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('network', 'tx_hash', name='uq_transactions_network_hash'),
    )
    op.create_index('ix_transactions_status_created', 'transactions', ['status', 'created_at'])
    op.create_index('ix_transactions_user_created', 'transactions', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('transactions')
    op.drop_table('invoices')
    op.drop_table('wallets')
    op.drop_table('users')

    for name in ('txstatus', 'txdirection', 'invoicestatus', 'walletstatus', 'network', 'authprovider'):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
