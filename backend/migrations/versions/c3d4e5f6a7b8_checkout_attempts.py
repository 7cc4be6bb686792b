"""checkout attempts

Revision ID: c3d4e5f6a7b8
Revises: b7c1d2e3f4a5
Create Date: 2026-10-19 12:00:00.000000

Adds checkout_attempts: the marker a keyed checkout writes together with its
stock decrements, so a retry after a failed receipt write records the receipt
without decrementing stock again.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c3d4e5f6a7b8'
down_revision = 'b7c1d2e3f4a5'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'checkout_attempts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('lines', sa.JSON(), nullable=False),
        sa.Column('committed', sa.JSON(), nullable=False),
        sa.Column('total_quantity', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('amount_paid_cents', sa.Integer(), nullable=False),
        sa.Column('change_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('transaction_id', sa.String(length=24), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'idempotency_key', name='uq_checkout_attempts_user_idempotency_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_checkout_attempts_user_id', 'checkout_attempts', ['user_id'])


def downgrade():
    op.drop_index('ix_checkout_attempts_user_id', table_name='checkout_attempts')
    op.drop_table('checkout_attempts')
