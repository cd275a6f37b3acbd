"""Initial schema - reading cycles, meter reading assignments and audit logs.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create reading cycle tables."""
    # Create reading_cycles table
    op.create_table(
        'reading_cycles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('service_id', sa.String(50), nullable=False),
        sa.Column('period_from', sa.Date(), nullable=False),
        sa.Column('period_to', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('status', sa.Enum('OPEN', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', name='cyclestatus'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_reading_cycles_name', 'reading_cycles', ['name'])
    op.create_index('ix_reading_cycles_service_id', 'reading_cycles', ['service_id'])

    # Create meter_reading_assignments table
    op.create_table(
        'meter_reading_assignments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cycle_id', sa.Integer(), nullable=False),
        sa.Column('service_id', sa.String(50), nullable=False),
        sa.Column('building_id', sa.String(100), nullable=False),
        sa.Column('floor_from', sa.Integer(), nullable=True),
        sa.Column('floor_to', sa.Integer(), nullable=True),
        sa.Column('unit_ids', sa.JSON(), nullable=False),
        sa.Column('assigned_to', sa.String(100), nullable=False),
        sa.Column('assigned_by', sa.String(100), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('PENDING', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', 'OVERDUE', name='assignmentstatus'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['cycle_id'], ['reading_cycles.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_meter_reading_assignments_cycle_id', 'meter_reading_assignments', ['cycle_id'])
    op.create_index('ix_meter_reading_assignments_building_id', 'meter_reading_assignments', ['building_id'])
    op.create_index('ix_meter_reading_assignments_assigned_to', 'meter_reading_assignments', ['assigned_to'])

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('actor_id', sa.String(100), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])


def downgrade() -> None:
    """Drop reading cycle tables."""
    op.drop_table('audit_logs')
    op.drop_table('meter_reading_assignments')
    op.drop_table('reading_cycles')
