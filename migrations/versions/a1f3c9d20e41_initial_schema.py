"""initial_schema

Revision ID: a1f3c9d20e41
Revises: 
Create Date: 2026-10-18 09:12:44.310552

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1f3c9d20e41'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Orders, work queues and chat sessions."""

    # Orders table (must be first due to FK dependencies)
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('buyer_id', sa.String(length=64), nullable=False),
        sa.Column('buyer_handle', sa.String(length=64), nullable=False),
        sa.Column('gift_recipient', sa.String(length=128), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price_primary', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('price_secondary', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=True),
        sa.Column('payment_provider', sa.String(length=32), nullable=True),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('provider_tx', sa.String(length=128), nullable=True),
        sa.Column('delivery_tx', sa.String(length=128), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('admin_thread_ref', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_orders_buyer_id'), 'orders', ['buyer_id'], unique=False)
    op.create_index(op.f('ix_orders_status'), 'orders', ['status'], unique=False)
    op.create_index('ix_orders_status_updated', 'orders', ['status', 'updated_at'], unique=False)

    # Delivery queue
    op.create_table(
        'delivery_queue',
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('try_count', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('order_id')
    )
    op.create_index(op.f('ix_delivery_queue_updated_at'), 'delivery_queue', ['updated_at'], unique=False)

    # Payment watch
    op.create_table(
        'payment_watch',
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('operation_reference', sa.String(length=128), nullable=False),
        sa.Column('tries', sa.Integer(), nullable=False),
        sa.Column('next_check_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('order_id')
    )
    op.create_index(op.f('ix_payment_watch_next_check_at'), 'payment_watch', ['next_check_at'], unique=False)

    # Chat sessions
    op.create_table(
        'chat_sessions',
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('state', sa.String(length=32), nullable=False),
        sa.Column('gift_recipient', sa.String(length=128), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('user_id')
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('chat_sessions')
    op.drop_index(op.f('ix_payment_watch_next_check_at'), table_name='payment_watch')
    op.drop_table('payment_watch')
    op.drop_index(op.f('ix_delivery_queue_updated_at'), table_name='delivery_queue')
    op.drop_table('delivery_queue')
    op.drop_index('ix_orders_status_updated', table_name='orders')
    op.drop_index(op.f('ix_orders_status'), table_name='orders')
    op.drop_index(op.f('ix_orders_buyer_id'), table_name='orders')
    op.drop_table('orders')
