"""create training engine tables

Revision ID: 3f9b1c2d4e5a
Revises:
Create Date: 2026-10-19 09:12:44.218305

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9b1c2d4e5a'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

COMPLETION_RULES = ('MANUAL_ACK', 'ALL_STEPS_VIEWED', 'ALL_STEPS_COMPLETED', 'MANUAL_COMPLETE')
ASSIGNMENT_STATUSES = ('ASSIGNED', 'IN_PROGRESS', 'COMPLETED', 'OVERDUE', 'WAIVED', 'REVOKED')


def upgrade() -> None:
    """Upgrade schema."""
    # users / content_items are owned by the auth and content services; they
    # are created here only when missing so a fresh database is usable.
    bind = op.get_bind()
    existing = set(sa.inspect(bind).get_table_names())

    if 'users' not in existing:
        op.create_table('users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('role', sa.Enum('EMPLOYEE', 'ADMIN', 'SUPER_ADMIN', name='user_role', native_enum=False), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index('users_email_unique_idx', 'users', ['email'], unique=True)
        op.create_index('users_role_idx', 'users', ['role'], unique=False)
        op.create_index(op.f('ix_users_is_active'), 'users', ['is_active'], unique=False)

    if 'content_items' not in existing:
        op.create_table('content_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('kind', sa.Enum('ARTICLE', 'VIDEO', 'DOCUMENT', 'TRAINING', name='content_kind', native_enum=False), nullable=False),
        sa.Column('status', sa.Enum('DRAFT', 'PUBLISHED', 'ARCHIVED', name='content_status', native_enum=False), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index('content_items_kind_status_idx', 'content_items', ['kind', 'status'], unique=False)

    op.create_table('training_definitions',
    sa.Column('training_id', sa.String(length=36), nullable=False),
    sa.Column('completion_rule', sa.Enum(*COMPLETION_RULES, name='training_completion_rule'), nullable=False),
    sa.Column('estimated_minutes', sa.Integer(), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('allow_downloads', sa.Boolean(), nullable=False),
    sa.Column('require_acknowledgement', sa.Boolean(), nullable=False),
    sa.CheckConstraint('estimated_minutes IS NULL OR estimated_minutes >= 0', name='ck_training_definitions_estimated_minutes'),
    sa.ForeignKeyConstraint(['training_id'], ['content_items.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('training_id')
    )
    op.create_table('training_steps',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('training_id', sa.String(length=36), nullable=False),
    sa.Column('step_index', sa.Integer(), nullable=False),
    sa.Column('content_item_id', sa.String(length=36), nullable=False),
    sa.Column('is_required', sa.Boolean(), nullable=False),
    sa.Column('min_view_seconds', sa.Integer(), nullable=True),
    sa.Column('requires_ack', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.CheckConstraint('step_index >= 0', name='ck_training_steps_step_index'),
    sa.CheckConstraint('min_view_seconds IS NULL OR min_view_seconds >= 0', name='ck_training_steps_min_view_seconds'),
    sa.ForeignKeyConstraint(['training_id'], ['training_definitions.training_id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['content_item_id'], ['content_items.id']),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('training_id', 'step_index', name='training_steps_training_step_unique_idx')
    )
    op.create_index(op.f('ix_training_steps_training_id'), 'training_steps', ['training_id'], unique=False)
    op.create_index('training_steps_content_item_id_idx', 'training_steps', ['content_item_id'], unique=False)

    op.create_table('training_assignments',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('training_id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=36), nullable=False),
    sa.Column('assigned_by_user_id', sa.String(length=36), nullable=True),
    sa.Column('is_required', sa.Boolean(), nullable=False),
    sa.Column('due_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('waived_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('waived_by_user_id', sa.String(length=36), nullable=True),
    sa.Column('waive_reason', sa.Text(), nullable=True),
    sa.CheckConstraint('revoked_at IS NULL OR waived_at IS NULL', name='ck_training_assignments_single_terminal'),
    sa.ForeignKeyConstraint(['training_id'], ['training_definitions.training_id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['user_id'], ['users.id']),
    sa.ForeignKeyConstraint(['assigned_by_user_id'], ['users.id']),
    sa.ForeignKeyConstraint(['waived_by_user_id'], ['users.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('training_assignments_user_id_revoked_idx', 'training_assignments', ['user_id', 'revoked_at'], unique=False)
    op.create_index('training_assignments_training_id_revoked_idx', 'training_assignments', ['training_id', 'revoked_at'], unique=False)
    op.create_index('training_assignments_due_at_idx', 'training_assignments', ['due_at'], unique=False)

    op.create_table('training_assignment_progress',
    sa.Column('assignment_id', sa.String(length=36), nullable=False),
    sa.Column('status', sa.Enum(*ASSIGNMENT_STATUSES, name='training_assignment_status'), nullable=False),
    sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('first_viewed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('progress_percent', sa.Integer(), nullable=False),
    sa.CheckConstraint('progress_percent >= 0 AND progress_percent <= 100', name='ck_training_assignment_progress_percent'),
    sa.CheckConstraint(
        "(status = 'COMPLETED' AND completed_at IS NOT NULL) "
        "OR (status <> 'COMPLETED' AND completed_at IS NULL)",
        name='ck_training_assignment_progress_completed',
    ),
    sa.ForeignKeyConstraint(['assignment_id'], ['training_assignments.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('assignment_id')
    )
    op.create_index('training_assignment_progress_status_idx', 'training_assignment_progress', ['status'], unique=False)

    op.create_table('training_step_progress',
    sa.Column('assignment_id', sa.String(length=36), nullable=False),
    sa.Column('step_id', sa.String(length=36), nullable=False),
    sa.Column('first_viewed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('last_viewed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('time_spent_seconds', sa.Integer(), nullable=False),
    sa.CheckConstraint('time_spent_seconds >= 0', name='ck_training_step_progress_time_spent'),
    sa.ForeignKeyConstraint(['assignment_id'], ['training_assignments.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['step_id'], ['training_steps.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('assignment_id', 'step_id', name='training_step_progress_pk')
    )
    op.create_index('training_step_progress_assignment_id_idx', 'training_step_progress', ['assignment_id'], unique=False)
    op.create_index('training_step_progress_step_id_idx', 'training_step_progress', ['step_id'], unique=False)

    op.create_table('training_events',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('assignment_id', sa.String(length=36), nullable=False),
    sa.Column('event_type', sa.String(length=64), nullable=False),
    sa.Column('event_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('actor_user_id', sa.String(length=36), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.ForeignKeyConstraint(['assignment_id'], ['training_assignments.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['actor_user_id'], ['users.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('training_events_assignment_id_idx', 'training_events', ['assignment_id'], unique=False)
    op.create_index('training_events_event_at_idx', 'training_events', ['event_at'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('training_events_event_at_idx', table_name='training_events')
    op.drop_index('training_events_assignment_id_idx', table_name='training_events')
    op.drop_table('training_events')
    op.drop_index('training_step_progress_step_id_idx', table_name='training_step_progress')
    op.drop_index('training_step_progress_assignment_id_idx', table_name='training_step_progress')
    op.drop_table('training_step_progress')
    op.drop_index('training_assignment_progress_status_idx', table_name='training_assignment_progress')
    op.drop_table('training_assignment_progress')
    op.drop_index('training_assignments_due_at_idx', table_name='training_assignments')
    op.drop_index('training_assignments_training_id_revoked_idx', table_name='training_assignments')
    op.drop_index('training_assignments_user_id_revoked_idx', table_name='training_assignments')
    op.drop_table('training_assignments')
    op.drop_index('training_steps_content_item_id_idx', table_name='training_steps')
    op.drop_index(op.f('ix_training_steps_training_id'), table_name='training_steps')
    op.drop_table('training_steps')
    op.drop_table('training_definitions')

    bind = op.get_bind()
    sa.Enum(name='training_assignment_status').drop(bind, checkfirst=True)
    sa.Enum(name='training_completion_rule').drop(bind, checkfirst=True)
