"""Initial SafeCircle schema: incidents, live locations, places, SLA engine

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all SafeCircle tables."""
    op.create_table(
        'incidents',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('family_group_id', sa.String(length=36), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('priority', sa.String(length=20), nullable=False),
        sa.Column('emergency_type', sa.String(length=50), nullable=False),
        sa.Column('source', sa.String(length=30), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('resolved_by', sa.String(length=64), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_incidents_user_id', 'incidents', ['user_id'], unique=False)
    op.create_index('ix_incidents_family_group_id', 'incidents', ['family_group_id'], unique=False)
    op.create_index('ix_incidents_status', 'incidents', ['status'], unique=False)
    op.create_index('ix_incidents_priority', 'incidents', ['priority'], unique=False)

    op.create_table(
        'incident_locations',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('incident_id', sa.String(length=36), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('accuracy', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_incident_locations_incident_id', 'incident_locations', ['incident_id'], unique=False)
    op.create_index('ix_incident_locations_incident_created', 'incident_locations', ['incident_id', 'created_at'], unique=False)

    op.create_table(
        'incident_acknowledgements',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('incident_id', sa.String(length=36), nullable=False),
        sa.Column('responder_id', sa.String(length=64), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('incident_id', 'responder_id', name='uq_incident_ack_responder')
    )
    op.create_index('ix_incident_acknowledgements_incident_id', 'incident_acknowledgements', ['incident_id'], unique=False)

    op.create_table(
        'incident_audit_entries',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('incident_id', sa.String(length=36), nullable=False),
        sa.Column('family_group_id', sa.String(length=36), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('action_type', sa.String(length=50), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('trace_id', sa.String(length=128), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_incident_audit_entries_incident_id', 'incident_audit_entries', ['incident_id'], unique=False)
    op.create_index('ix_incident_audit_entries_family_group_id', 'incident_audit_entries', ['family_group_id'], unique=False)

    op.create_table(
        'family_memberships',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('family_group_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('family_group_id', 'user_id', name='uq_family_membership')
    )
    op.create_index('ix_family_memberships_family_group_id', 'family_memberships', ['family_group_id'], unique=False)
    op.create_index('ix_family_memberships_user_id', 'family_memberships', ['user_id'], unique=False)

    op.create_table(
        'live_locations',
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('family_group_id', sa.String(length=36), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('accuracy', sa.Float(), nullable=True),
        sa.Column('heading', sa.Float(), nullable=True),
        sa.Column('speed', sa.Float(), nullable=True),
        sa.Column('battery_level', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('sampled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_seen', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('user_id')
    )
    op.create_index('ix_live_locations_family_group_id', 'live_locations', ['family_group_id'], unique=False)

    op.create_table(
        'places',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('family_group_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('radius_m', sa.Float(), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('radius_m BETWEEN 50 AND 1000', name='ck_places_radius'),
        sa.CheckConstraint('latitude BETWEEN -90 AND 90', name='ck_places_latitude'),
        sa.CheckConstraint('longitude BETWEEN -180 AND 180', name='ck_places_longitude')
    )
    op.create_index('ix_places_family_group_id', 'places', ['family_group_id'], unique=False)

    op.create_table(
        'place_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('place_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('event', sa.String(length=10), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_place_events_place_id', 'place_events', ['place_id'], unique=False)
    op.create_index('ix_place_events_user_id', 'place_events', ['user_id'], unique=False)
    op.create_index('ix_place_events_place_user_time', 'place_events', ['place_id', 'user_id', 'occurred_at'], unique=False)

    op.create_table(
        'sla_policies',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('channel', sa.String(length=30), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=True),
        sa.Column('first_response_target_minutes', sa.Integer(), nullable=False),
        sa.Column('resolution_target_minutes', sa.Integer(), nullable=False),
        sa.Column('escalation_enabled', sa.Boolean(), nullable=False),
        sa.Column('escalation_after_minutes', sa.Integer(), nullable=True),
        sa.Column('escalate_to_user_id', sa.String(length=64), nullable=True),
        sa.Column('business_hours_only', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('precedence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sla_policies_is_active', 'sla_policies', ['is_active'], unique=False)

    op.create_table(
        'tracked_interactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('source_id', sa.String(length=36), nullable=True),
        sa.Column('subject', sa.String(length=255), nullable=True),
        sa.Column('contact_name', sa.String(length=255), nullable=True),
        sa.Column('channel', sa.String(length=30), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('assigned_to', sa.String(length=64), nullable=True),
        sa.Column('first_response_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('response_due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escalated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_tracked_interactions_source_id', 'tracked_interactions', ['source_id'], unique=False)
    op.create_index('ix_tracked_interactions_status', 'tracked_interactions', ['status'], unique=False)
    op.create_index('ix_tracked_interactions_created_at', 'tracked_interactions', ['created_at'], unique=False)

    op.create_table(
        'sla_breaches',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('interaction_id', sa.String(length=36), nullable=False),
        sa.Column('policy_id', sa.String(length=36), nullable=False),
        sa.Column('breach_type', sa.String(length=20), nullable=False),
        sa.Column('target_minutes', sa.Integer(), nullable=False),
        sa.Column('actual_minutes', sa.Integer(), nullable=False),
        sa.Column('breached_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sla_breaches_interaction_id', 'sla_breaches', ['interaction_id'], unique=False)
    op.create_index('ix_sla_breaches_breached_at', 'sla_breaches', ['breached_at'], unique=False)
    # At most one unresolved breach per (interaction, type)
    op.create_index(
        'uq_sla_breaches_open', 'sla_breaches', ['interaction_id', 'breach_type'], unique=True,
        sqlite_where=sa.text('resolved_at IS NULL'),
        postgresql_where=sa.text('resolved_at IS NULL'),
    )

    op.create_table(
        'interaction_assignments',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('interaction_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('role', sa.String(length=30), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_interaction_assignments_interaction_id', 'interaction_assignments', ['interaction_id'], unique=False)

    op.create_table(
        'business_hours',
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('day_of_week')
    )


def downgrade() -> None:
    """Drop all SafeCircle tables."""
    op.drop_table('business_hours')
    op.drop_index('ix_interaction_assignments_interaction_id', table_name='interaction_assignments')
    op.drop_table('interaction_assignments')
    op.drop_index('uq_sla_breaches_open', table_name='sla_breaches')
    op.drop_index('ix_sla_breaches_breached_at', table_name='sla_breaches')
    op.drop_index('ix_sla_breaches_interaction_id', table_name='sla_breaches')
    op.drop_table('sla_breaches')
    op.drop_index('ix_tracked_interactions_created_at', table_name='tracked_interactions')
    op.drop_index('ix_tracked_interactions_status', table_name='tracked_interactions')
    op.drop_index('ix_tracked_interactions_source_id', table_name='tracked_interactions')
    op.drop_table('tracked_interactions')
    op.drop_index('ix_sla_policies_is_active', table_name='sla_policies')
    op.drop_table('sla_policies')
    op.drop_index('ix_place_events_place_user_time', table_name='place_events')
    op.drop_index('ix_place_events_user_id', table_name='place_events')
    op.drop_index('ix_place_events_place_id', table_name='place_events')
    op.drop_table('place_events')
    op.drop_index('ix_places_family_group_id', table_name='places')
    op.drop_table('places')
    op.drop_index('ix_live_locations_family_group_id', table_name='live_locations')
    op.drop_table('live_locations')
    op.drop_index('ix_family_memberships_user_id', table_name='family_memberships')
    op.drop_index('ix_family_memberships_family_group_id', table_name='family_memberships')
    op.drop_table('family_memberships')
    op.drop_index('ix_incident_audit_entries_family_group_id', table_name='incident_audit_entries')
    op.drop_index('ix_incident_audit_entries_incident_id', table_name='incident_audit_entries')
    op.drop_table('incident_audit_entries')
    op.drop_index('ix_incident_acknowledgements_incident_id', table_name='incident_acknowledgements')
    op.drop_table('incident_acknowledgements')
    op.drop_index('ix_incident_locations_incident_created', table_name='incident_locations')
    op.drop_index('ix_incident_locations_incident_id', table_name='incident_locations')
    op.drop_table('incident_locations')
    op.drop_index('ix_incidents_priority', table_name='incidents')
    op.drop_index('ix_incidents_status', table_name='incidents')
    op.drop_index('ix_incidents_family_group_id', table_name='incidents')
    op.drop_index('ix_incidents_user_id', table_name='incidents')
    op.drop_table('incidents')
