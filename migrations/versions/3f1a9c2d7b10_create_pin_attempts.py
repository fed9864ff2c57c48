"""create pin attempts ledger and meta store

Revision ID: 3f1a9c2d7b10
Revises: 
Create Date: 2026-02-14 08:04:41.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f1a9c2d7b10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'pin_attempts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ip', sa.String(length=64), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('pin_attempts', schema=None) as batch_op:
        batch_op.create_index('idx_pin_attempts_ip_time', ['ip', 'created_at'], unique=False)

    op.create_table(
        'pin_attempts_meta',
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value', sa.Text(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('key')
    )


def downgrade():
    op.drop_table('pin_attempts_meta')

    with op.batch_alter_table('pin_attempts', schema=None) as batch_op:
        batch_op.drop_index('idx_pin_attempts_ip_time')

    op.drop_table('pin_attempts')
