"""Create user token tables

Revision ID: a1f3c9d2e7b4
Revises:
Create Date: 2026-10-16 09:12:41.508317

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a1f3c9d2e7b4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create user_tokens, seen IPs, daily usage buckets and the access log."""
    # pgcrypto encrypts the stored secret
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')

    op.create_table(
        'user_tokens',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('encrypted_token', postgresql.BYTEA(), nullable=False),
        sa.Column('username', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('expires_type', sa.String(length=10), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('max_ips', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('curfew_start', sa.String(length=5), nullable=True),
        sa.Column('curfew_end', sa.String(length=5), nullable=True),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_requests', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_tokens_used', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_hash'),
        sa.CheckConstraint('max_ips >= 0', name='ck_user_tokens_max_ips'),
        sa.CheckConstraint(
            '(curfew_start IS NULL) = (curfew_end IS NULL)', name='ck_user_tokens_curfew_pair'
        ),
        sa.CheckConstraint(
            "(expires_type = 'never') = (expires_at IS NULL)", name='ck_user_tokens_expiry'
        ),
    )
    op.create_index('ix_user_tokens_username', 'user_tokens', ['username'])
    op.create_index('ix_user_tokens_expires_at', 'user_tokens', ['expires_at'])
    op.create_index('ix_user_token_active', 'user_tokens', ['enabled', 'expires_at'])

    op.create_table(
        'user_token_ips',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('token_id', sa.String(length=36), nullable=False),
        sa.Column('ip_address', sa.String(length=45), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['token_id'], ['user_tokens.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_id', 'ip_address', name='uq_user_token_ip'),
    )
    op.create_index('ix_user_token_ips_token_id', 'user_token_ips', ['token_id'])

    op.create_table(
        'user_token_daily_usage',
        sa.Column('token_id', sa.String(length=36), nullable=False),
        sa.Column('usage_date', sa.Date(), nullable=False),
        sa.Column('request_count', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tokens_used', sa.BigInteger(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('token_id', 'usage_date'),
    )
    op.create_index('ix_user_token_daily_usage_date', 'user_token_daily_usage', ['usage_date'])

    op.create_table(
        'user_token_access_log',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('token_id', sa.String(length=36), nullable=True),
        sa.Column('client_ip', sa.String(length=45), nullable=True),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('context', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_token_access_log_token_id', 'user_token_access_log', ['token_id'])
    op.create_index(
        'ix_user_token_access_log_occurred_at', 'user_token_access_log', ['occurred_at']
    )


def downgrade() -> None:
    """Drop the user token tables."""
    op.drop_index('ix_user_token_access_log_occurred_at', table_name='user_token_access_log')
    op.drop_index('ix_user_token_access_log_token_id', table_name='user_token_access_log')
    op.drop_table('user_token_access_log')
    op.drop_index('ix_user_token_daily_usage_date', table_name='user_token_daily_usage')
    op.drop_table('user_token_daily_usage')
    op.drop_index('ix_user_token_ips_token_id', table_name='user_token_ips')
    op.drop_table('user_token_ips')
    op.drop_index('ix_user_token_active', table_name='user_tokens')
    op.drop_index('ix_user_tokens_expires_at', table_name='user_tokens')
    op.drop_index('ix_user_tokens_username', table_name='user_tokens')
    op.drop_table('user_tokens')
