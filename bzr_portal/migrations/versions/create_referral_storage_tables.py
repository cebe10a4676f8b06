"""create accounts, referral_codes and referral_events

Revision ID: create_referral_storage_tables
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'create_referral_storage_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'accounts',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('email', sa.String(320), nullable=True),
        sa.Column('is_pro', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('is_admin', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'referral_codes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(16), nullable=False),
        sa.Column('owner_account_id', sa.String(64), nullable=False),
        sa.Column('total_referral_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_pro_referral_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('earned_bonus_bytes', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('active_bonus_bytes', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_referral_codes_code'),
        sa.UniqueConstraint('owner_account_id', name='uq_referral_codes_owner'),
    )

    op.create_table(
        'referral_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('referrer_account_id', sa.String(64), nullable=False),
        sa.Column('referred_account_id', sa.String(64), nullable=False),
        sa.Column('used_code', sa.String(16), nullable=False),
        sa.Column('is_pro_at_registration', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('reward_size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('source', sa.String(32), server_default='direct_link', nullable=False),
        sa.Column('social_platform', sa.String(64), nullable=True),
        sa.Column('post_link', sa.String(2048), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('referred_account_id', name='uq_referral_events_referred'),
    )
    op.create_index(
        'ix_referral_events_referrer_active',
        'referral_events',
        ['referrer_account_id', 'is_active', 'expires_at'],
    )


def downgrade() -> None:
    op.drop_index('ix_referral_events_referrer_active', 'referral_events')
    op.drop_table('referral_events')
    op.drop_table('referral_codes')
    op.drop_table('accounts')
