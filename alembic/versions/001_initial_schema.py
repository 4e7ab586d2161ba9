"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


funnel_status = sa.Enum('draft', 'active', 'paused', 'archived', name='funnel_status')
variant_status = sa.Enum('active', 'paused', 'winner', 'archived', name='variant_status')
session_status = sa.Enum('active', 'converted', 'abandoned', 'bounced', name='session_status')
event_type = sa.Enum(
    'page_view', 'button_click', 'form_submit', 'video_play', 'video_complete', 'download',
    'add_to_cart', 'checkout_started', 'purchase', 'exit_intent', 'scroll_depth',
    'time_on_page', 'custom_event', 'conversion_goal',
    name='event_type',
)
condition_type = sa.Enum('page_transition', 'content_display', 'redirect', 'action_trigger', name='condition_type')
goal_type = sa.Enum(
    'page_visit', 'form_submission', 'button_click', 'time_on_site', 'purchase', 'custom_event',
    name='goal_type',
)
goal_status = sa.Enum('active', 'paused', 'archived', name='goal_status')
analytics_period = sa.Enum('hourly', 'daily', 'weekly', 'monthly', name='analytics_period')
outbound_kind = sa.Enum('webhook', 'email', name='outbound_kind')
outbound_status = sa.Enum('pending', 'delivered', 'dead_letter', name='outbound_status')

ALL_ENUMS = (
    funnel_status, variant_status, session_status, event_type, condition_type,
    goal_type, goal_status, analytics_period, outbound_kind, outbound_status,
)


def _org_index(table: str):
    op.create_index(f'ix_{table}_org_id', table, ['org_id'])


def upgrade() -> None:
    # Organizations (tenants)
    op.create_table(
        'organizations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # Funnels
    op.create_table(
        'funnels',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('org_id', sa.Uuid(), sa.ForeignKey('organizations.id', name='fk_funnels_org_id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=True),
        sa.Column('domain', sa.String(), nullable=True),
        sa.Column('status', funnel_status, nullable=False, server_default='draft'),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('slug', name='uq_funnels_slug'),
    )
    _org_index('funnels')

    op.create_table(
        'funnel_pages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('org_id', sa.Uuid(), sa.ForeignKey('organizations.id', name='fk_funnel_pages_org_id'), nullable=False),
        sa.Column('funnel_id', sa.Uuid(), sa.ForeignKey('funnels.id', name='fk_funnel_pages_funnel_id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    _org_index('funnel_pages')
    op.create_index('ix_funnel_pages_funnel_id', 'funnel_pages', ['funnel_id'])

    # A/B variants
    op.create_table(
        'funnel_variants',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('org_id', sa.Uuid(), sa.ForeignKey('organizations.id', name='fk_funnel_variants_org_id'), nullable=False),
        sa.Column('funnel_id', sa.Uuid(), sa.ForeignKey('funnels.id', name='fk_funnel_variants_funnel_id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('variant_key', sa.String(10), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', variant_status, nullable=False, server_default='active'),
        sa.Column('is_control', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('traffic_percentage', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('visitors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversion_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('revenue', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('page_overrides', sa.JSON(), nullable=True),
        sa.Column('declared_winner_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('funnel_id', 'variant_key', name='uq_funnel_variants_funnel_key'),
    )
    _org_index('funnel_variants')
    op.create_index('ix_funnel_variants_funnel_id', 'funnel_variants', ['funnel_id'])
    op.create_index('ix_funnel_variants_variant_key', 'funnel_variants', ['variant_key'])
    op.create_index('ix_funnel_variants_status', 'funnel_variants', ['status'])

    # Visitor sessions
    op.create_table(
        'funnel_sessions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('org_id', sa.Uuid(), sa.ForeignKey('organizations.id', name='fk_funnel_sessions_org_id'), nullable=False),
        sa.Column('funnel_id', sa.Uuid(), sa.ForeignKey('funnels.id', name='fk_funnel_sessions_funnel_id', ondelete='CASCADE'), nullable=False),
        sa.Column('variant_id', sa.Uuid(), sa.ForeignKey('funnel_variants.id', name='fk_funnel_sessions_variant_id', ondelete='SET NULL'), nullable=True),
        sa.Column('contact_id', sa.Uuid(), nullable=True),
        sa.Column('session_key', sa.String(), nullable=False),
        sa.Column('visitor_id', sa.String(), nullable=True),
        sa.Column('status', session_status, nullable=False, server_default='active'),
        sa.Column('ip_address', sa.String(100), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('device', sa.String(20), nullable=True),
        sa.Column('referrer', sa.String(500), nullable=True),
        sa.Column('utm_source', sa.String(), nullable=True),
        sa.Column('utm_medium', sa.String(), nullable=True),
        sa.Column('utm_campaign', sa.String(), nullable=True),
        sa.Column('utm_content', sa.String(), nullable=True),
        sa.Column('utm_term', sa.String(), nullable=True),
        sa.Column('traffic_source', sa.String(20), nullable=True),
        sa.Column('entry_page_id', sa.Uuid(), nullable=False),
        sa.Column('current_page_id', sa.Uuid(), nullable=True),
        sa.Column('exit_page_id', sa.Uuid(), nullable=True),
        sa.Column('page_views', sa.JSON(), nullable=False),
        sa.Column('total_page_views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_time_spent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('converted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('converted_at', sa.DateTime(), nullable=True),
        sa.Column('conversion_page_id', sa.Uuid(), nullable=True),
        sa.Column('conversion_value', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('last_activity_at', sa.DateTime(), nullable=True),
        sa.Column('session_metadata', sa.JSON(), nullable=True),  # Renamed from 'metadata' to avoid SQLAlchemy reserved name
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    _org_index('funnel_sessions')
    op.create_index('ix_funnel_sessions_funnel_id', 'funnel_sessions', ['funnel_id'])
    op.create_index('ix_funnel_sessions_variant_id', 'funnel_sessions', ['variant_id'])
    op.create_index('ix_funnel_sessions_contact_id', 'funnel_sessions', ['contact_id'])
    op.create_index('ix_funnel_sessions_session_key', 'funnel_sessions', ['session_key'], unique=True)
    op.create_index('ix_funnel_sessions_visitor_id', 'funnel_sessions', ['visitor_id'])
    op.create_index('ix_funnel_sessions_status', 'funnel_sessions', ['status'])
    op.create_index('ix_funnel_sessions_referrer', 'funnel_sessions', ['referrer'])
    op.create_index('ix_funnel_sessions_last_activity_at', 'funnel_sessions', ['last_activity_at'])
    op.create_index('ix_funnel_sessions_created_at', 'funnel_sessions', ['created_at'])

    # Append-only event log
    op.create_table(
        'funnel_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('org_id', sa.Uuid(), sa.ForeignKey('organizations.id', name='fk_funnel_events_org_id'), nullable=False),
        sa.Column('funnel_id', sa.Uuid(), sa.ForeignKey('funnels.id', name='fk_funnel_events_funnel_id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', sa.Uuid(), sa.ForeignKey('funnel_sessions.id', name='fk_funnel_events_session_id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('event_type', event_type, nullable=False),
        sa.Column('event_name', sa.String(), nullable=True),
        sa.Column('page_id', sa.Uuid(), nullable=True),
        sa.Column('element_id', sa.String(), nullable=True),
        sa.Column('element_type', sa.String(), nullable=True),
        sa.Column('event_data', sa.JSON(), nullable=True),
        sa.Column('is_conversion', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('conversion_value', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('goal_id', sa.Uuid(), nullable=True),
        sa.Column('event_time', sa.DateTime(), nullable=False),
        sa.Column('time_from_start', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_from_last_event', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('event_metadata', sa.JSON(), nullable=True),  # Renamed from 'metadata' to avoid SQLAlchemy reserved name
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('session_id', 'sequence', name='uq_funnel_events_session_sequence'),
    )
    _org_index('funnel_events')
    op.create_index('ix_funnel_events_funnel_id', 'funnel_events', ['funnel_id'])
    op.create_index('ix_funnel_events_session_id', 'funnel_events', ['session_id'])
    op.create_index('ix_funnel_events_event_type', 'funnel_events', ['event_type'])
    op.create_index('ix_funnel_events_event_name', 'funnel_events', ['event_name'])
    op.create_index('ix_funnel_events_event_time', 'funnel_events', ['event_time'])

    # Conditional rules
    op.create_table(
        'funnel_conditions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('org_id', sa.Uuid(), sa.ForeignKey('organizations.id', name='fk_funnel_conditions_org_id'), nullable=False),
        sa.Column('funnel_id', sa.Uuid(), sa.ForeignKey('funnels.id', name='fk_funnel_conditions_funnel_id', ondelete='CASCADE'), nullable=False),
        sa.Column('page_id', sa.Uuid(), nullable=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', condition_type, nullable=False, server_default='content_display'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('execution_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rules', sa.JSON(), nullable=False),
        sa.Column('logic_operator', sa.String(10), nullable=False, server_default='AND'),
        sa.Column('actions', sa.JSON(), nullable=False),
        sa.Column('else_actions', sa.JSON(), nullable=False),
        sa.Column('targeting', sa.JSON(), nullable=True),
        sa.Column('evaluation_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('passed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pass_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    _org_index('funnel_conditions')
    op.create_index('ix_funnel_conditions_funnel_id', 'funnel_conditions', ['funnel_id'])
    op.create_index('ix_funnel_conditions_page_id', 'funnel_conditions', ['page_id'])

    # Goals
    op.create_table(
        'funnel_goals',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('org_id', sa.Uuid(), sa.ForeignKey('organizations.id', name='fk_funnel_goals_org_id'), nullable=False),
        sa.Column('funnel_id', sa.Uuid(), sa.ForeignKey('funnels.id', name='fk_funnel_goals_funnel_id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', goal_type, nullable=False),
        sa.Column('status', goal_status, nullable=False, server_default='active'),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('config', sa.JSON(), nullable=True),
        sa.Column('value', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('completion_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completion_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total_value', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('average_time_to_complete', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    _org_index('funnel_goals')
    op.create_index('ix_funnel_goals_funnel_id', 'funnel_goals', ['funnel_id'])
    op.create_index('ix_funnel_goals_type', 'funnel_goals', ['type'])
    op.create_index('ix_funnel_goals_status', 'funnel_goals', ['status'])

    # Analytics buckets
    op.create_table(
        'funnel_analytics',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('org_id', sa.Uuid(), sa.ForeignKey('organizations.id', name='fk_funnel_analytics_org_id'), nullable=False),
        sa.Column('funnel_id', sa.Uuid(), sa.ForeignKey('funnels.id', name='fk_funnel_analytics_funnel_id', ondelete='CASCADE'), nullable=False),
        sa.Column('period', analytics_period, nullable=False),
        sa.Column('period_date', sa.DateTime(), nullable=False),
        sa.Column('variant_key', sa.String(), nullable=False, server_default=''),
        sa.Column('variant_id', sa.Uuid(), nullable=True),
        sa.Column('visitors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unique_visitors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('page_views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bounces', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bounce_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('average_time_on_site', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversion_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('revenue', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('average_order_value', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('source_breakdown', sa.JSON(), nullable=False),
        sa.Column('device_breakdown', sa.JSON(), nullable=False),
        sa.Column('page_analytics', sa.JSON(), nullable=False),
        sa.Column('dropoff_points', sa.JSON(), nullable=False),
        sa.Column('computed_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('funnel_id', 'period', 'period_date', 'variant_key', name='uq_funnel_analytics_bucket'),
    )
    _org_index('funnel_analytics')
    op.create_index('ix_funnel_analytics_funnel_id', 'funnel_analytics', ['funnel_id'])
    op.create_index('ix_funnel_analytics_lookup', 'funnel_analytics', ['org_id', 'funnel_id', 'period', 'period_date'])

    # Outbound side-effect queue
    op.create_table(
        'outbound_tasks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('org_id', sa.Uuid(), nullable=False),
        sa.Column('funnel_id', sa.Uuid(), nullable=True),
        sa.Column('session_id', sa.Uuid(), nullable=True),
        sa.Column('kind', outbound_kind, nullable=False),
        sa.Column('target', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('headers', sa.JSON(), nullable=True),
        sa.Column('status', outbound_status, nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    _org_index('outbound_tasks')
    op.create_index('ix_outbound_tasks_funnel_id', 'outbound_tasks', ['funnel_id'])
    op.create_index('ix_outbound_tasks_session_id', 'outbound_tasks', ['session_id'])
    op.create_index('ix_outbound_tasks_status', 'outbound_tasks', ['status'])
    op.create_index('ix_outbound_tasks_next_attempt_at', 'outbound_tasks', ['next_attempt_at'])

    # Side-effect failure notes
    op.create_table(
        'event_errors',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('org_id', sa.Uuid(), nullable=True),
        sa.Column('funnel_id', sa.Uuid(), nullable=True),
        sa.Column('session_id', sa.Uuid(), nullable=True),
        sa.Column('outbound_task_id', sa.Uuid(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    _org_index('event_errors')
    op.create_index('ix_event_errors_funnel_id', 'event_errors', ['funnel_id'])
    op.create_index('ix_event_errors_session_id', 'event_errors', ['session_id'])
    op.create_index('ix_event_errors_outbound_task_id', 'event_errors', ['outbound_task_id'])


def downgrade() -> None:
    for table in (
        'event_errors', 'outbound_tasks', 'funnel_analytics', 'funnel_goals',
        'funnel_conditions', 'funnel_events', 'funnel_sessions', 'funnel_variants',
        'funnel_pages', 'funnels', 'organizations',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum in ALL_ENUMS:
        enum.drop(bind, checkfirst=True)
