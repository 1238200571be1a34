"""Baseline schema for deliverable review and payouts

This migration creates:
1. users table
2. campaigns and campaign_applications tables
3. campaign_deliverables table (review and payment state)
4. payment_transactions table with one completed transfer per deliverable
5. connected_accounts table
6. notifications table

Revision ID: payouts_baseline_001
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = 'payouts_baseline_001'
down_revision = None
branch_labels = None
depends_on = None


def _enum(name, *values):
    return sa.Enum(*values, name=name)


def upgrade():
    # 1. users
    op.create_table('users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255)),
        sa.Column('user_type', _enum('usertype', 'business', 'creator', 'admin'), server_default='creator'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # 2. campaigns and applications
    op.create_table('campaigns',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('business_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('restaurant_id', sa.String(36)),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('status', _enum('campaignstatusdb', 'draft', 'active', 'paused', 'completed', 'cancelled'),
                  server_default='active'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table('campaign_applications',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('creator_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('proposed_rate_cents', sa.Integer, nullable=False),
        sa.Column('status', _enum('applicationstatusdb', 'pending', 'accepted', 'rejected', 'withdrawn', 'completed'),
                  server_default='pending'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # 3. deliverables
    op.create_table('campaign_deliverables',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('campaign_application_id', sa.String(36),
                  sa.ForeignKey('campaign_applications.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('creator_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('business_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('restaurant_id', sa.String(36)),

        # Content
        sa.Column('content_type', _enum('contenttypedb', 'photo', 'video', 'reel', 'story', 'post')),
        sa.Column('content_url', sa.String(1000)),
        sa.Column('thumbnail_url', sa.String(1000)),
        sa.Column('caption', sa.Text),
        sa.Column('post_url', sa.String(1000)),
        sa.Column('social_platform',
                  _enum('socialplatformdb', 'instagram', 'tiktok', 'youtube', 'twitter', 'facebook', 'other')),

        # Review
        sa.Column('review_status', _enum('reviewstatusdb', 'draft', 'pending_review', 'approved', 'auto_approved',
                                         'rejected', 'revision_requested'), nullable=False),
        sa.Column('review_notes', sa.Text),
        sa.Column('reviewed_by', sa.String(36)),
        sa.Column('revision_number', sa.Integer, server_default='0'),
        sa.Column('submitted_at', sa.DateTime),
        sa.Column('auto_approval_deadline', sa.DateTime),
        sa.Column('reviewed_at', sa.DateTime),

        # Payment
        sa.Column('payment_status', _enum('paymentstatusdb', 'not_applicable', 'pending', 'pending_onboarding',
                                          'processing', 'completed', 'failed'), nullable=False),
        sa.Column('payment_amount_cents', sa.Integer),
        sa.Column('payout_attempts', sa.Integer, server_default='0'),
        sa.Column('payment_error', sa.Text),
        sa.Column('paid_at', sa.DateTime),

        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_campaign_deliverables_creator_id', 'campaign_deliverables', ['creator_id'])
    op.create_index('ix_campaign_deliverables_business_id', 'campaign_deliverables', ['business_id'])
    op.create_index('ix_campaign_deliverables_auto_approval_deadline', 'campaign_deliverables',
                    ['auto_approval_deadline'])

    # 4. payment transactions
    op.create_table('payment_transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('deliverable_id', sa.String(36),
                  sa.ForeignKey('campaign_deliverables.id', ondelete='CASCADE'), nullable=False),
        sa.Column('campaign_id', sa.String(36)),
        sa.Column('creator_id', sa.String(36), nullable=False),
        sa.Column('business_id', sa.String(36)),
        sa.Column('amount_cents', sa.Integer, nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', _enum('transactionstatusdb', 'processing', 'completed', 'failed'), nullable=False),
        sa.Column('idempotency_key', sa.String(100), nullable=False),
        sa.Column('stripe_transfer_id', sa.String(100)),
        sa.Column('error_message', sa.Text),
        sa.Column('definitive_failure', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_payment_transactions_deliverable_id', 'payment_transactions', ['deliverable_id'])
    op.create_index('ix_payment_transactions_idempotency_key', 'payment_transactions', ['idempotency_key'])
    op.create_index('ix_payment_transactions_stripe_transfer_id', 'payment_transactions', ['stripe_transfer_id'])
    op.create_index(
        'uq_payment_transactions_completed', 'payment_transactions', ['deliverable_id'],
        unique=True,
        postgresql_where=sa.text("status = 'completed'"),
        sqlite_where=sa.text("status = 'completed'"),
    )

    # 5. connected accounts
    op.create_table('connected_accounts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('creator_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('stripe_account_id', sa.String(100), nullable=False, unique=True),
        sa.Column('onboarding_completed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('last_event_at', sa.DateTime),
        sa.Column('last_event_id', sa.String(100)),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # 6. notifications
    op.create_table('notifications',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text),
        sa.Column('action_url', sa.String(500)),
        sa.Column('data', sa.JSON),
        sa.Column('is_read', sa.Boolean, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table('notifications')
    op.drop_table('connected_accounts')
    op.drop_index('uq_payment_transactions_completed', table_name='payment_transactions')
    op.drop_table('payment_transactions')
    op.drop_table('campaign_deliverables')
    op.drop_table('campaign_applications')
    op.drop_table('campaigns')
    op.drop_table('users')

    bind = op.get_bind()
    for name in ('transactionstatusdb', 'paymentstatusdb', 'reviewstatusdb', 'socialplatformdb',
                 'contenttypedb', 'applicationstatusdb', 'campaignstatusdb', 'usertype'):
        sa.Enum(name=name).drop(bind, checkfirst=True)
