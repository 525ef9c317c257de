"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create profiles, provider_secrets and otp_codes."""

    # ========================================================================
    # profiles: one row per identity-provider user
    # ========================================================================
    op.create_table(
        'profiles',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('plan', sa.String(20), nullable=False, server_default='free'),
        sa.Column('credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('monthly_project_creations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('import_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('credits >= 0', name='ck_profiles_credits_non_negative'),
        sa.CheckConstraint("plan IN ('free', 'pro', 'premium')", name='ck_profiles_plan'),
        sa.CheckConstraint('monthly_project_creations >= 0', name='ck_profiles_projects_non_negative'),
        sa.CheckConstraint('import_count >= 0', name='ck_profiles_imports_non_negative'),
    )
    op.create_index('idx_profiles_plan', 'profiles', ['plan'])

    # ========================================================================
    # provider_secrets: encrypted key per (user, provider)
    # ========================================================================
    op.create_table(
        'provider_secrets',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('envelope', sa.Text(), nullable=False),
        sa.Column('is_valid', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('user_id', 'provider', name='uq_provider_secrets_user_provider'),
        sa.CheckConstraint(
            "provider IN ('gemini', 'openai', 'perplexity', 'huggingface')",
            name='ck_provider_secrets_provider',
        ),
    )
    op.create_index('idx_provider_secrets_user_id', 'provider_secrets', ['user_id'])

    # ========================================================================
    # otp_codes: salted HMAC of each issued code
    # ========================================================================
    op.create_table(
        'otp_codes',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('otp_hash', sa.String(64), nullable=False),
        sa.Column('salt', sa.String(64), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('used', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),

        sa.CheckConstraint('attempts >= 0', name='ck_otp_codes_attempts_non_negative'),
    )
    op.create_index('idx_otp_codes_email_created_at', 'otp_codes', ['email', 'created_at'])
    op.create_index(
        'idx_otp_codes_active', 'otp_codes', ['email', 'expires_at'],
        postgresql_where=sa.text('used = false'),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('otp_codes')
    op.drop_table('provider_secrets')
    op.drop_table('profiles')
