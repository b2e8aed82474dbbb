"""Create physical count audit tables

Revision ID: create_count_audit_tables
Revises:
Create Date: 2026-10-19

Tables:
- inventory_master: references under audit, ERP quantity, round state and history
- locations: physical spots per reference, with frozen validated quantities
- inventory_counts: one count per (location, round), C1-C5
- reconciliation_claims: per-reference claim rows (non-PostgreSQL deployments)
- audit_logs: append-only trail of reconciliation outcomes and overrides
- user_roles: roles granted to identity provider users
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision: str = 'create_count_audit_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create count audit tables."""

    # ==================== inventory_master ====================
    op.create_table(
        'inventory_master',
        sa.Column('referencia', sa.String(100), primary_key=True),
        sa.Column('material_type', sa.String(2), server_default='MP', nullable=False),
        sa.Column('control', sa.String(100), nullable=True),
        sa.Column('erp_quantity', sa.Numeric(18, 4), nullable=True),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('current_round', sa.Integer, server_default='1', nullable=False),
        sa.Column('count_history', JSONB, server_default='[]', nullable=False),
        sa.Column('assigned_admin_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint('current_round BETWEEN 1 AND 5', name='ck_im_current_round'),
    )
    op.create_index('idx_im_status_round', 'inventory_master', ['status', 'current_round'])
    op.create_index('idx_im_material_type', 'inventory_master', ['material_type'])

    # ==================== locations ====================
    op.create_table(
        'locations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('master_reference', sa.String(100),
                  sa.ForeignKey('inventory_master.referencia', ondelete='CASCADE'), nullable=False),
        sa.Column('location_name', sa.String(200), nullable=True),
        sa.Column('location_detail', sa.String(200), nullable=True),
        sa.Column('punto_referencia', sa.String(200), nullable=True),
        sa.Column('observaciones', sa.Text, nullable=True),
        sa.Column('assigned_supervisor_id', UUID(as_uuid=True), nullable=True),
        sa.Column('discovered_at_round', sa.Integer, nullable=True),
        sa.Column('validated_at_round', sa.Integer, nullable=True),
        sa.Column('validated_quantity', sa.Numeric(18, 4), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('idx_loc_master_reference', 'locations', ['master_reference'])
    op.create_index('idx_loc_supervisor', 'locations', ['assigned_supervisor_id'])

    # ==================== inventory_counts ====================
    op.create_table(
        'inventory_counts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('location_id', UUID(as_uuid=True),
                  sa.ForeignKey('locations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('audit_round', sa.Integer, nullable=False),
        sa.Column('quantity_counted', sa.Numeric(18, 4), nullable=False),
        sa.Column('operario_id', UUID(as_uuid=True), nullable=True),
        sa.Column('supervisor_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('location_id', 'audit_round', name='uq_count_location_round'),
        sa.CheckConstraint('audit_round BETWEEN 1 AND 5', name='ck_count_audit_round'),
        sa.CheckConstraint('quantity_counted >= 0', name='ck_count_quantity_non_negative'),
    )
    op.create_index('idx_count_round', 'inventory_counts', ['audit_round'])

    # ==================== reconciliation_claims ====================
    op.create_table(
        'reconciliation_claims',
        sa.Column('referencia', sa.String(100), primary_key=True),
        sa.Column('claim_token', UUID(as_uuid=True), nullable=False),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ==================== audit_logs ====================
    op.create_table(
        'audit_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('action_type', sa.String(50), nullable=False),
        sa.Column('master_reference', sa.String(100), nullable=False),
        sa.Column('round_number', sa.Integer, nullable=True),
        sa.Column('user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('new_data', JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_audit_logs_action_type', 'audit_logs', ['action_type'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
    op.create_index('idx_audit_reference_created', 'audit_logs', ['master_reference', 'created_at'])

    # ==================== user_roles ====================
    op.create_table(
        'user_roles',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('user_id', 'role', name='uq_user_role'),
    )
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'])


def downgrade() -> None:
    """Drop count audit tables."""
    op.drop_table('user_roles')
    op.drop_table('audit_logs')
    op.drop_table('reconciliation_claims')
    op.drop_table('inventory_counts')
    op.drop_table('locations')
    op.drop_table('inventory_master')
