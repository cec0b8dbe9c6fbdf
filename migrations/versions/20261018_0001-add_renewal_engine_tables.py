"""Add renewal engine tables

Revision ID: 3c9e1a7f5b20
Revises:
Create Date: 2026-10-18 00:01:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c9e1a7f5b20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # =========================================================================
    # Users
    # =========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # =========================================================================
    # Accounts and Estimates
    # Source records; the engine only writes accounts.status
    # =========================================================================
    op.create_table(
        'accounts',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revenue_segment', sa.String(length=1), nullable=True),
        sa.Column('icp_status', sa.String(), nullable=True),
        sa.Column('last_interaction_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_accounts_status', 'accounts', ['status'])

    op.create_table(
        'estimates',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('account_id', sa.String(), nullable=True),
        sa.Column('estimate_number', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('pipeline_status', sa.String(), nullable=True),
        sa.Column('contract_end', sa.String(), nullable=True),
        sa.Column('division', sa.String(), nullable=True),
        sa.Column('address', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_estimates_account_id', 'estimates', ['account_id'])

    # =========================================================================
    # At-Risk Cache
    # One row per account inside the renewal window, keyed by account_id
    # =========================================================================
    op.create_table(
        'at_risk_accounts',
        sa.Column('account_id', sa.String(), nullable=False),
        sa.Column('account_name', sa.String(), nullable=True),
        sa.Column('renewal_date', sa.Date(), nullable=False),
        sa.Column('days_until_renewal', sa.Integer(), nullable=False),
        sa.Column('expiring_estimate_id', sa.String(), nullable=True),
        sa.Column('expiring_estimate_number', sa.String(), nullable=True),
        sa.Column('has_duplicates', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('duplicate_estimates', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('account_id')
    )
    op.create_index('ix_at_risk_accounts_computed_at', 'at_risk_accounts', ['computed_at'])

    # =========================================================================
    # Notification Snoozes
    # related_account_key is '' for type-wide snoozes
    # =========================================================================
    op.create_table(
        'notification_snoozes',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('notification_type', sa.String(), nullable=False),
        sa.Column('related_account_id', sa.String(), nullable=True),
        sa.Column('related_account_key', sa.String(), nullable=False, server_default=''),
        sa.Column('snoozed_until', sa.DateTime(timezone=True), nullable=False),
        sa.Column('snoozed_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['snoozed_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('notification_type', 'related_account_key', name='uq_notification_snooze_target')
    )
    op.create_index('ix_notification_snoozes_notification_type', 'notification_snoozes', ['notification_type'])

    # =========================================================================
    # Notifications
    # One row per (user, type, account, business day)
    # =========================================================================
    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('related_account_id', sa.String(), nullable=True),
        sa.Column('related_account_key', sa.String(), nullable=False, server_default=''),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('message', sa.String(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('dedupe_day', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'type', 'related_account_key', 'dedupe_day', name='uq_notification_daily')
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])


def downgrade() -> None:
    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_notification_snoozes_notification_type', table_name='notification_snoozes')
    op.drop_table('notification_snoozes')
    op.drop_index('ix_at_risk_accounts_computed_at', table_name='at_risk_accounts')
    op.drop_table('at_risk_accounts')
    op.drop_index('ix_estimates_account_id', table_name='estimates')
    op.drop_table('estimates')
    op.drop_index('ix_accounts_status', table_name='accounts')
    op.drop_table('accounts')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
