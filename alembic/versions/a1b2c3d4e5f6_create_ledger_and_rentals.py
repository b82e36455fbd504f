"""create accounts, transactions, rentals and messages

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'accounts',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('email', sa.String(255), server_default='', nullable=False),
        sa.Column('first_name', sa.String(100), server_default='', nullable=False),
        sa.Column('last_name', sa.String(100), server_default='', nullable=False),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('balance', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('role', sa.String(10), server_default='user', nullable=False),
        sa.Column('status', sa.String(10), server_default='active', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_accounts_email', 'accounts', ['email'])

    op.create_table(
        'rentals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.String(128), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider_rental_id', sa.String(64), nullable=False),
        sa.Column('phone_number', sa.String(32), nullable=False),
        sa.Column('service', sa.String(50), nullable=False),
        sa.Column('status', sa.String(12), server_default='active', nullable=False),
        sa.Column('price_charged', sa.BigInteger(), nullable=False),
        sa.Column('provider_price', sa.Float(), nullable=True),
        sa.Column('funding_transaction_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_rentals_account_id', 'rentals', ['account_id'])
    op.create_index('ix_rentals_provider_rental_id', 'rentals', ['provider_rental_id'], unique=True)
    op.create_index('ix_rentals_account_created', 'rentals', ['account_id', 'created_at'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.String(128), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('balance_before', sa.BigInteger(), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=False),
        sa.Column('description', sa.String(200), server_default='', nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('rental_id', sa.Integer(), sa.ForeignKey('rentals.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_transactions_account_id', 'transactions', ['account_id'])
    op.create_index('ix_transactions_account_created', 'transactions', ['account_id', 'created_at'])

    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rental_id', sa.Integer(), sa.ForeignKey('rentals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('account_id', sa.String(128), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('code', sa.String(32), nullable=False),
        sa.Column('text', sa.Text(), server_default='', nullable=False),
        sa.Column('received_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_messages_rental_id', 'messages', ['rental_id'])
    op.create_index('ix_messages_account_id', 'messages', ['account_id'])


def downgrade() -> None:
    op.drop_table('messages')
    op.drop_table('transactions')
    op.drop_table('rentals')
    op.drop_table('accounts')
