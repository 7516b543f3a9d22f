"""Initial schema - providers, slot ledger, bookings, customers, messaging

Revision ID: 0001_initial_schema
Revises: 
Create Date: 2026-10-18

Creates every table the booking core and the notification queue use.
The slots composite primary key (provider_id, slot_id) is the
reservation lock.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Create booking and messaging tables."""

    # ==========================================================================
    # Catalog & Providers
    # ==========================================================================
    op.create_table(
        'catalog_services',
        sa.Column('id', sa.String(50), primary_key=True),
        sa.Column('label', sa.String(100), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        _ts('updated_at'),
    )

    op.create_table(
        'providers',
        sa.Column('id', sa.String(50), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('whatsapp_e164', sa.String(20)),
        sa.Column('schedule', sa.JSON()),
        _ts('created_at', nullable=False),
    )

    # ==========================================================================
    # Reservation ledger
    # ==========================================================================
    op.create_table(
        'slots',
        sa.Column(
            'provider_id', sa.String(50),
            sa.ForeignKey('providers.id', ondelete='CASCADE'), primary_key=True,
        ),
        sa.Column('slot_id', sa.String(13), primary_key=True),  # YYYYMMDD_HHMM
        _ts('slot_start', nullable=False),
        sa.Column('date_key', sa.String(10), nullable=False),
        sa.Column('kind', sa.String(10), nullable=False),
        sa.Column('booking_id', sa.String(32)),
        sa.Column('reason', sa.String(200)),
        sa.Column('created_by', sa.String(50)),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
    )
    op.create_index('idx_slots_provider_date', 'slots', ['provider_id', 'date_key'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('customer_id', sa.String(40), nullable=False),
        sa.Column('provider_id', sa.String(50), sa.ForeignKey('providers.id'), nullable=False),
        sa.Column('service_id', sa.String(50), nullable=False),
        _ts('slot_start', nullable=False),
        sa.Column('date_key', sa.String(10), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='booked'),
        sa.Column('whatsapp_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('cancel_code_hash', sa.String(64), nullable=False),
        sa.Column('customer_first_name', sa.String(50), nullable=False),
        sa.Column('customer_last_name', sa.String(50), nullable=False),
        sa.Column('customer_phone_e164', sa.String(20), nullable=False),
        sa.Column('created_by', sa.String(50)),
        sa.Column('cancelled_by', sa.String(20)),
        sa.Column('rescheduled_from_slot_id', sa.String(13)),
        _ts('confirmed_at'),
        _ts('completed_at'),
        _ts('no_show_at'),
        _ts('cancelled_at'),
        _ts('rescheduled_at'),
        _ts('confirmation_sent_at'),
        _ts('reminder_sent_at'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index('ix_bookings_customer_id', 'bookings', ['customer_id'])
    op.create_index('idx_bookings_provider_date', 'bookings', ['provider_id', 'date_key'])
    op.create_index('idx_bookings_status_start', 'bookings', ['status', 'slot_start'])
    op.create_index(
        'uq_bookings_cancel_code_hash', 'bookings', ['cancel_code_hash'], unique=True
    )

    # ==========================================================================
    # Customers
    # ==========================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.String(40), primary_key=True),
        sa.Column('first_name', sa.String(50), nullable=False),
        sa.Column('last_name', sa.String(50), nullable=False),
        sa.Column('phone_e164', sa.String(20), nullable=False, unique=True),
        sa.Column('birthday', sa.String(10)),
        sa.Column('birthday_mmdd', sa.String(4)),
        sa.Column('notes', sa.Text()),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('marketing_opt_in', sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts('marketing_opt_in_at'),
        _ts('marketing_opt_out_at'),
        sa.Column('total_bookings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('no_show_count', sa.Integer(), nullable=False, server_default='0'),
        _ts('first_booking_at'),
        _ts('last_booking_at'),
        _ts('last_completed_at'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index('idx_customers_birthday_mmdd', 'customers', ['birthday_mmdd'])

    # ==========================================================================
    # Messaging
    # ==========================================================================
    op.create_table(
        'outbound_messages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('booking_id', sa.String(32)),
        sa.Column('customer_id', sa.String(40)),
        sa.Column('target_phone', sa.String(20), nullable=False),
        sa.Column('message_type', sa.String(20), nullable=False),
        sa.Column('message_text', sa.Text(), nullable=False),
        sa.Column('idempotency_key', sa.String(64)),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('last_error', sa.Text()),
        _ts('created_at', nullable=False),
        _ts('last_attempt_at'),
        _ts('sent_at'),
    )
    op.create_index('idx_outbound_status_created', 'outbound_messages', ['status', 'created_at'])
    op.create_index('idx_outbound_idempotency_key', 'outbound_messages', ['idempotency_key'])

    op.create_table(
        'idempotency_records',
        sa.Column('key', sa.String(64), primary_key=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('target', sa.String(20), nullable=False),
        sa.Column('booking_id', sa.String(32)),
        sa.Column('text_length', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        _ts('sent_at'),
    )

    op.create_table(
        'notification_settings',
        sa.Column('id', sa.String(20), primary_key=True),
        sa.Column('confirmation_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('confirmation_message', sa.Text(), nullable=False),
        sa.Column('reminder_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('reminder_minutes_before', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('reminder_message', sa.Text(), nullable=False),
        sa.Column('cancellation_message', sa.Text(), nullable=False),
        sa.Column('birthday_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('birthday_message', sa.Text(), nullable=False),
        _ts('updated_at', nullable=False),
        sa.Column('updated_by', sa.String(50)),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('notification_settings')
    op.drop_table('idempotency_records')
    op.drop_table('outbound_messages')
    op.drop_table('customers')
    op.drop_table('bookings')
    op.drop_table('slots')
    op.drop_table('providers')
    op.drop_table('catalog_services')
