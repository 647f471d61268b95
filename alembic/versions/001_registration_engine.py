"""users, events and registrations

Revision ID: 001_registration_engine
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_registration_engine'
down_revision = None
branch_labels = None
depends_on = None

user_role = sa.Enum('ATTENDEE', 'ORGANIZER', 'ADMIN', name='userrole')
event_status = sa.Enum('DRAFT', 'PUBLISHED', 'CANCELLED', 'COMPLETED', name='eventstatus')
registration_status = sa.Enum(
    'REGISTERED', 'WAITLISTED', 'ATTENDED', 'CANCELLED', name='registrationstatus'
)


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=True),
        sa.Column('role', user_role, nullable=False, server_default='ATTENDEE'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('idx_user_active_role', 'users', ['is_active', 'role'])

    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('location', sa.String(length=200), nullable=True),
        sa.Column('event_date', sa.DateTime(), nullable=False),
        sa.Column('event_time', sa.String(length=5), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('status', event_status, nullable=False, server_default='DRAFT'),
        sa.Column('registration_deadline', sa.DateTime(), nullable=True),
        sa.Column('organizer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
    )
    op.create_index('ix_events_id', 'events', ['id'])
    op.create_index('ix_events_title', 'events', ['title'])
    op.create_index('ix_events_event_date', 'events', ['event_date'])
    op.create_index('ix_events_status', 'events', ['status'])
    op.create_index('ix_events_organizer_id', 'events', ['organizer_id'])
    op.create_index('idx_event_date_status', 'events', ['event_date', 'status'])
    op.create_index('idx_event_organizer_status', 'events', ['organizer_id', 'status'])

    op.create_table(
        'registrations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('events.id'), nullable=False),
        sa.Column('attendee_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', registration_status, nullable=False),
        sa.Column('waitlist_position', sa.Integer(), nullable=True),
        sa.Column('check_in_code', sa.String(length=16), nullable=False),
        sa.Column('check_in_time', sa.DateTime(), nullable=True),
        sa.Column('registration_date', sa.DateTime(), nullable=False),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.UniqueConstraint('event_id', 'check_in_code', name='uq_registration_event_code'),
    )
    op.create_index('ix_registrations_id', 'registrations', ['id'])
    op.create_index('ix_registrations_event_id', 'registrations', ['event_id'])
    op.create_index('ix_registrations_attendee_id', 'registrations', ['attendee_id'])
    op.create_index('ix_registrations_status', 'registrations', ['status'])
    op.create_index('idx_registration_event_status', 'registrations', ['event_id', 'status'])
    op.create_index(
        'idx_registration_event_waitlist', 'registrations', ['event_id', 'waitlist_position']
    )
    # One live registration per attendee and event; cancelled rows don't count
    op.create_index(
        'uq_registration_active_attendee',
        'registrations',
        ['attendee_id', 'event_id'],
        unique=True,
        postgresql_where=sa.text("status <> 'CANCELLED'"),
        sqlite_where=sa.text("status <> 'CANCELLED'"),
    )


def downgrade() -> None:
    op.drop_index('uq_registration_active_attendee', table_name='registrations')
    op.drop_table('registrations')
    op.drop_table('events')
    op.drop_table('users')

    bind = op.get_bind()
    registration_status.drop(bind, checkfirst=True)
    event_status.drop(bind, checkfirst=True)
    user_role.drop(bind, checkfirst=True)
