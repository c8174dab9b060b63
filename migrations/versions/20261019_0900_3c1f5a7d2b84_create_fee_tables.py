"""create fee tables

Revision ID: 3c1f5a7d2b84
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3c1f5a7d2b84'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_DOCUMENT = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _timestamps(updated=True):
    columns = [sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'))]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')))
    return columns


def upgrade():
    op.create_table(
        'classes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('level', sa.String(length=64), nullable=False),
        sa.Column('academic_year', sa.Integer(), nullable=False),
        sa.Column('stream', sa.String(length=16), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'students',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('admission_no', sa.String(length=32), nullable=False),
        sa.Column('first_name', sa.String(length=64), nullable=False),
        sa.Column('last_name', sa.String(length=64), nullable=False),
        sa.Column('class_id', sa.Uuid(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['class_id'], ['classes.id']),
        sa.UniqueConstraint('admission_no'),
    )
    op.create_index('ix_students_class_id', 'students', ['class_id'])

    op.create_table(
        'fee_structures',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('class_id', sa.Uuid(), nullable=False),
        sa.Column('academic_year', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['class_id'], ['classes.id']),
        sa.UniqueConstraint('class_id', 'academic_year', 'name', name='uix_fee_structure_class_year_name'),
        sa.CheckConstraint("status IN ('DRAFT','ACTIVE','ARCHIVED')", name='ck_fee_structures_status'),
    )
    op.create_index('ix_fee_structures_class_id', 'fee_structures', ['class_id'])

    op.create_table(
        'fee_structure_versions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('fee_structure_id', sa.Uuid(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('change_reason', sa.String(length=255), nullable=True),
        sa.Column('snapshot', JSON_DOCUMENT, nullable=False),
        sa.Column('total_annual', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['fee_structure_id'], ['fee_structures.id']),
        sa.UniqueConstraint('fee_structure_id', 'version', name='uix_fee_structure_version'),
        sa.CheckConstraint('version >= 1', name='ck_fee_structure_versions_version_positive'),
    )
    op.create_index('ix_fee_structure_versions_fee_structure_id', 'fee_structure_versions', ['fee_structure_id'])
    op.create_index('ix_fee_structure_versions_effective', 'fee_structure_versions', ['fee_structure_id', 'effective_from'])

    op.create_table(
        'scholarship_definitions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('description', sa.String(length=512), nullable=True),
        sa.Column('value_type', sa.String(length=16), nullable=False),
        sa.Column('value', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("type IN ('MERIT','NEED_BASED','SPORTS','OTHER')", name='ck_scholarship_definitions_type'),
        sa.CheckConstraint("value_type IN ('PERCENTAGE','FIXED')", name='ck_scholarship_definitions_value_type'),
        sa.CheckConstraint('value >= 0', name='ck_scholarship_definitions_value_positive'),
        sa.CheckConstraint("value_type <> 'PERCENTAGE' OR value <= 100", name='ck_scholarship_definitions_percentage_range'),
    )

    op.create_table(
        'scholarship_assignments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('scholarship_id', sa.Uuid(), nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('expires_at', sa.Date(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['scholarship_id'], ['scholarship_definitions.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.CheckConstraint('expires_at IS NULL OR expires_at >= effective_from', name='ck_scholarship_assignments_window'),
    )
    op.create_index('ix_scholarship_assignments_scholarship_id', 'scholarship_assignments', ['scholarship_id'])
    op.create_index('ix_scholarship_assignments_student_id', 'scholarship_assignments', ['student_id'])
    op.create_index(
        'ix_scholarship_assignments_student_window',
        'scholarship_assignments',
        ['student_id', 'effective_from', 'expires_at'],
    )

    op.create_table(
        'charge_definitions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('description', sa.String(length=512), nullable=True),
        sa.Column('value_type', sa.String(length=16), nullable=False),
        sa.Column('value', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("type IN ('FINE','EQUIPMENT','TRANSPORT','OTHER')", name='ck_charge_definitions_type'),
        sa.CheckConstraint("value_type IN ('FIXED','PERCENTAGE')", name='ck_charge_definitions_value_type'),
        sa.CheckConstraint('value >= 0', name='ck_charge_definitions_value_positive'),
    )

    op.create_table(
        'charge_assignments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('charge_id', sa.Uuid(), nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('applied_month', sa.Date(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['charge_id'], ['charge_definitions.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.CheckConstraint('amount >= 0', name='ck_charge_assignments_amount_positive'),
    )
    op.create_index('ix_charge_assignments_charge_id', 'charge_assignments', ['charge_id'])
    op.create_index('ix_charge_assignments_student_id', 'charge_assignments', ['student_id'])
    op.create_index('ix_charge_assignments_student_month', 'charge_assignments', ['student_id', 'applied_month'])
    op.create_index(
        'uix_charge_assignment_live',
        'charge_assignments',
        ['charge_id', 'student_id', 'applied_month'],
        unique=True,
        postgresql_where=sa.text('deleted_at IS NULL'),
        sqlite_where=sa.text('deleted_at IS NULL'),
    )

    op.create_table(
        'student_fee_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('period_month', sa.Date(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('fee_structure_id', sa.Uuid(), nullable=False),
        sa.Column('fee_structure_version_id', sa.Uuid(), nullable=False),
        sa.Column('base_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('scholarship_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('extra_charges_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('final_payable', sa.Numeric(12, 2), nullable=False),
        sa.Column('breakdown', JSON_DOCUMENT, nullable=False),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.ForeignKeyConstraint(['fee_structure_id'], ['fee_structures.id']),
        sa.ForeignKeyConstraint(['fee_structure_version_id'], ['fee_structure_versions.id']),
        sa.UniqueConstraint('student_id', 'period_month', 'version', name='uix_student_fee_history_version'),
        sa.CheckConstraint('version >= 1', name='ck_student_fee_history_version_positive'),
    )
    op.create_index('ix_student_fee_history_fee_structure_id', 'student_fee_history', ['fee_structure_id'])
    op.create_index('ix_student_fee_history_fee_structure_version_id', 'student_fee_history', ['fee_structure_version_id'])
    op.create_index('ix_student_fee_history_month', 'student_fee_history', ['period_month', 'student_id'])

    # the ledger is append-only for every writer, not just the ORM
    if op.get_bind().dialect.name == 'postgresql':
        op.execute("""
            CREATE OR REPLACE FUNCTION reject_fee_history_change() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'student_fee_history is append-only';
            END;
            $$ LANGUAGE plpgsql
        """)
        op.execute("""
            CREATE TRIGGER trg_student_fee_history_append_only
            BEFORE UPDATE OR DELETE ON student_fee_history
            FOR EACH ROW EXECUTE FUNCTION reject_fee_history_change()
        """)


def downgrade():
    if op.get_bind().dialect.name == 'postgresql':
        op.execute("DROP TRIGGER IF EXISTS trg_student_fee_history_append_only ON student_fee_history")
        op.execute("DROP FUNCTION IF EXISTS reject_fee_history_change()")

    op.drop_index('ix_student_fee_history_month', table_name='student_fee_history')
    op.drop_index('ix_student_fee_history_fee_structure_version_id', table_name='student_fee_history')
    op.drop_index('ix_student_fee_history_fee_structure_id', table_name='student_fee_history')
    op.drop_table('student_fee_history')

    op.drop_index('uix_charge_assignment_live', table_name='charge_assignments')
    op.drop_index('ix_charge_assignments_student_month', table_name='charge_assignments')
    op.drop_index('ix_charge_assignments_student_id', table_name='charge_assignments')
    op.drop_index('ix_charge_assignments_charge_id', table_name='charge_assignments')
    op.drop_table('charge_assignments')
    op.drop_table('charge_definitions')

    op.drop_index('ix_scholarship_assignments_student_window', table_name='scholarship_assignments')
    op.drop_index('ix_scholarship_assignments_student_id', table_name='scholarship_assignments')
    op.drop_index('ix_scholarship_assignments_scholarship_id', table_name='scholarship_assignments')
    op.drop_table('scholarship_assignments')
    op.drop_table('scholarship_definitions')

    op.drop_index('ix_fee_structure_versions_effective', table_name='fee_structure_versions')
    op.drop_index('ix_fee_structure_versions_fee_structure_id', table_name='fee_structure_versions')
    op.drop_table('fee_structure_versions')

    op.drop_index('ix_fee_structures_class_id', table_name='fee_structures')
    op.drop_table('fee_structures')

    op.drop_index('ix_students_class_id', table_name='students')
    op.drop_table('students')
    op.drop_table('classes')
