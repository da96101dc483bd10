"""Create loyalty ledger schema.

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c3e5f7b9d2'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create accounts, customers, businesses, programs, enrollments, cards, audit and notification tables."""
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('account_type', sa.String(20), nullable=False, server_default='customer'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_accounts_email'),
    )

    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['id'], ['accounts.id']),
    )

    op.create_table(
        'businesses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['id'], ['accounts.id']),
    )

    op.create_table(
        'customer_business_relationships',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.UniqueConstraint('customer_id', 'business_id', name='uq_customer_business'),
    )

    op.create_table(
        'loyalty_programs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
    )
    op.create_index('ix_loyalty_programs_business', 'loyalty_programs', ['business_id'])

    op.create_table(
        'program_enrollments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('current_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('enrolled_at', sa.DateTime(), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['program_id'], ['loyalty_programs.id']),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.UniqueConstraint('customer_id', 'program_id', name='uq_enrollment_customer_program'),
    )

    op.create_table(
        'loyalty_cards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('card_number', sa.String(40), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tier', sa.String(20), nullable=False, server_default='STANDARD'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['program_id'], ['loyalty_programs.id']),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.UniqueConstraint('card_number', name='uq_loyalty_cards_card_number'),
        sa.UniqueConstraint('customer_id', 'program_id', name='uq_card_customer_program'),
    )

    op.create_table(
        'card_activities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('card_id', sa.Integer(), nullable=False),
        sa.Column('activity_type', sa.String(30), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('source', sa.String(50), nullable=False),
        sa.Column('idempotency_key', sa.String(100), nullable=True),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['card_id'], ['loyalty_cards.id']),
        sa.UniqueConstraint('idempotency_key', name='uq_card_activities_idempotency_key'),
    )
    op.create_index('ix_card_activities_card_created', 'card_activities', ['card_id', 'created_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('kind', sa.String(40), nullable=False),
        sa.Column('recipient', sa.String(20), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.String(1000), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('requires_action', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('action_taken', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reference_id', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.Column('actioned_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['customer_id'], ['accounts.id']),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['program_id'], ['loyalty_programs.id']),
    )
    op.create_index(
        'ix_notifications_dedup', 'notifications',
        ['kind', 'customer_id', 'business_id', 'program_id', 'created_at']
    )

    op.create_table(
        'approval_requests',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('request_type', sa.String(30), nullable=False, server_default='ENROLLMENT'),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('program_id', sa.Integer(), nullable=False),
        sa.Column('notification_id', sa.String(36), nullable=True),
        sa.Column('card_id', sa.Integer(), nullable=True),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('requested_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['customer_id'], ['accounts.id']),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['program_id'], ['loyalty_programs.id']),
        sa.ForeignKeyConstraint(['notification_id'], ['notifications.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['card_id'], ['loyalty_cards.id']),
    )
    op.create_index(
        'ix_approval_requests_customer_program_status', 'approval_requests',
        ['customer_id', 'program_id', 'status']
    )
    op.create_index(
        'uq_approval_requests_one_pending', 'approval_requests',
        ['customer_id', 'program_id'],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'")
    )


def downgrade():
    """Drop the loyalty ledger schema."""
    op.drop_index('uq_approval_requests_one_pending', table_name='approval_requests')
    op.drop_index('ix_approval_requests_customer_program_status', table_name='approval_requests')
    op.drop_table('approval_requests')
    op.drop_index('ix_notifications_dedup', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_card_activities_card_created', table_name='card_activities')
    op.drop_table('card_activities')
    op.drop_table('loyalty_cards')
    op.drop_table('program_enrollments')
    op.drop_index('ix_loyalty_programs_business', table_name='loyalty_programs')
    op.drop_table('loyalty_programs')
    op.drop_table('customer_business_relationships')
    op.drop_table('businesses')
    op.drop_table('customers')
    op.drop_table('accounts')
