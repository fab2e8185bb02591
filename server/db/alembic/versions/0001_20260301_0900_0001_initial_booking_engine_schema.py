"""Initial booking engine schema

Revision ID: 0001
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _resource_columns() -> list:
    return [
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('capacity_total', sa.Integer(), nullable=False),
        sa.Column('capacity_available', sa.Integer(), nullable=False),
        sa.Column('price_amount', sa.Integer(), nullable=False),
        sa.Column('price_currency', sa.String(length=3), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    ]


def _capacity_checks(prefix: str) -> list:
    return [
        sa.CheckConstraint('capacity_total >= 0', name=f'ck_{prefix}_capacity_total_non_negative'),
        sa.CheckConstraint('capacity_available >= 0', name=f'ck_{prefix}_capacity_available_non_negative'),
        sa.CheckConstraint('capacity_available <= capacity_total', name=f'ck_{prefix}_capacity_available_lte_total'),
        sa.CheckConstraint('price_amount >= 0', name=f'ck_{prefix}_price_amount_non_negative'),
        sa.CheckConstraint('length(price_currency) = 3', name=f'ck_{prefix}_price_currency_length'),
    ]


def upgrade() -> None:
    """Upgrade database schema."""
    # Create tours table
    op.create_table('tours',
        *_resource_columns(),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('starts_at', sa.DateTime(), nullable=False),
        sa.Column('ends_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        *_capacity_checks('tour'),
        sa.CheckConstraint('ends_at > starts_at', name='ck_tour_ends_after_start'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_tours_starts_at'), 'tours', ['starts_at'], unique=False)
    op.create_index(op.f('ix_tours_status'), 'tours', ['status'], unique=False)

    # Create rooms table
    op.create_table('rooms',
        *_resource_columns(),
        sa.Column('hotel_name', sa.String(length=255), nullable=False),
        sa.Column('room_type', sa.String(length=64), nullable=False),
        sa.Column('max_occupancy', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        *_capacity_checks('room'),
        sa.CheckConstraint('max_occupancy > 0', name='ck_room_max_occupancy_positive'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_rooms_hotel_name'), 'rooms', ['hotel_name'], unique=False)
    op.create_index(op.f('ix_rooms_status'), 'rooms', ['status'], unique=False)

    # Create flights table
    op.create_table('flights',
        *_resource_columns(),
        sa.Column('flight_number', sa.String(length=16), nullable=False),
        sa.Column('origin', sa.String(length=64), nullable=False),
        sa.Column('destination', sa.String(length=64), nullable=False),
        sa.Column('departs_at', sa.DateTime(), nullable=False),
        sa.Column('arrives_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        *_capacity_checks('flight'),
        sa.CheckConstraint('arrives_at > departs_at', name='ck_flight_arrives_after_departure'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_flights_flight_number'), 'flights', ['flight_number'], unique=False)
    op.create_index(op.f('ix_flights_departs_at'), 'flights', ['departs_at'], unique=False)
    op.create_index(op.f('ix_flights_status'), 'flights', ['status'], unique=False)

    # Create bookings table
    op.create_table('bookings',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('resource_kind', sa.String(length=10), nullable=False),
        sa.Column('tour_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('room_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('flight_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('customer_ref', sa.String(length=128), nullable=False),
        sa.Column('units', sa.Integer(), nullable=False),
        sa.Column('guests', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('booking_date', sa.DateTime(), nullable=False),
        sa.Column('payment_deadline', sa.DateTime(), nullable=True),
        sa.Column('requires_immediate_payment', sa.Boolean(), nullable=False),
        sa.Column('check_in', sa.DateTime(), nullable=True),
        sa.Column('check_out', sa.DateTime(), nullable=True),
        sa.Column('nights', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint(
            "(resource_kind = 'TOUR' AND tour_id IS NOT NULL AND room_id IS NULL AND flight_id IS NULL)"
            " OR (resource_kind = 'ROOM' AND room_id IS NOT NULL AND tour_id IS NULL AND flight_id IS NULL)"
            " OR (resource_kind = 'FLIGHT' AND flight_id IS NOT NULL AND tour_id IS NULL AND room_id IS NULL)",
            name='ck_booking_exactly_one_resource'
        ),
        sa.CheckConstraint('units > 0', name='ck_booking_units_positive'),
        sa.CheckConstraint('guests > 0', name='ck_booking_guests_positive'),
        sa.CheckConstraint('total_amount >= 0', name='ck_booking_total_amount_non_negative'),
        sa.CheckConstraint('length(customer_ref) > 0', name='ck_booking_customer_ref_not_empty'),
        sa.CheckConstraint(
            'check_in IS NULL OR check_out IS NULL OR check_out > check_in',
            name='ck_booking_check_out_after_check_in'
        ),
        sa.ForeignKeyConstraint(['tour_id'], ['tours.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['flight_id'], ['flights.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookings_resource_kind'), 'bookings', ['resource_kind'], unique=False)
    op.create_index(op.f('ix_bookings_tour_id'), 'bookings', ['tour_id'], unique=False)
    op.create_index(op.f('ix_bookings_room_id'), 'bookings', ['room_id'], unique=False)
    op.create_index(op.f('ix_bookings_flight_id'), 'bookings', ['flight_id'], unique=False)
    op.create_index(op.f('ix_bookings_customer_ref'), 'bookings', ['customer_ref'], unique=False)
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'], unique=False)
    op.create_index(op.f('ix_bookings_payment_deadline'), 'bookings', ['payment_deadline'], unique=False)

    # Create payments table
    op.create_table('payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('amount >= 0', name='ck_payment_amount_non_negative'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('booking_id')
    )
    op.create_index(op.f('ix_payments_booking_id'), 'payments', ['booking_id'], unique=False)
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'], unique=False)

    # Create ledger_entries table; no foreign keys so the trail outlives deleted rows
    op.create_table('ledger_entries',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('resource_kind', sa.String(length=10), nullable=False),
        sa.Column('resource_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=20), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('actor', sa.String(length=255), nullable=False),
        sa.Column('capacity_total_before', sa.Integer(), nullable=False),
        sa.Column('capacity_total_after', sa.Integer(), nullable=False),
        sa.Column('capacity_available_before', sa.Integer(), nullable=False),
        sa.Column('capacity_available_after', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('delta != 0', name='ck_ledger_entry_delta_nonzero'),
        sa.CheckConstraint('length(actor) > 0', name='ck_ledger_entry_actor_not_empty'),
        sa.CheckConstraint('capacity_available_after >= 0', name='ck_ledger_entry_available_after_non_negative'),
        sa.CheckConstraint(
            'capacity_available_after <= capacity_total_after',
            name='ck_ledger_entry_available_lte_total_after'
        ),
        sa.CheckConstraint(
            'capacity_available_after = capacity_available_before + delta',
            name='ck_ledger_entry_delta_consistency'
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_ledger_entries_resource_id'), 'ledger_entries', ['resource_id'], unique=False)
    op.create_index(op.f('ix_ledger_entries_booking_id'), 'ledger_entries', ['booking_id'], unique=False)
    op.create_index(op.f('ix_ledger_entries_created_at'), 'ledger_entries', ['created_at'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('ledger_entries')
    op.drop_table('payments')
    op.drop_table('bookings')
    op.drop_table('flights')
    op.drop_table('rooms')
    op.drop_table('tours')
