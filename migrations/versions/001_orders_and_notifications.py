"""orders and payment notifications

Revision ID: 001_orders_and_notifications
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_orders_and_notifications'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('user_type', sa.String(length=16), nullable=False, server_default='apoderado'),
        sa.Column('week_start', sa.String(length=10), nullable=False),
        sa.Column('selections', sa.JSON(), nullable=False),
        sa.Column('total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='draft'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_id', sa.String(length=128), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_week_start', 'orders', ['week_start'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_id', 'orders', ['payment_id'])

    op.create_table(
        'payment_notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider', sa.String(length=32), nullable=True),
        sa.Column('headers', sa.JSON(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='received'),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_payment_notifications_id', 'payment_notifications', ['id'])
    op.create_index('ix_payment_notifications_provider', 'payment_notifications', ['provider'])
    op.create_index('ix_payment_notifications_status', 'payment_notifications', ['status'])
    op.create_index('ix_payment_notifications_order_id', 'payment_notifications', ['order_id'])


def downgrade() -> None:
    op.drop_table('payment_notifications')
    op.drop_table('orders')
