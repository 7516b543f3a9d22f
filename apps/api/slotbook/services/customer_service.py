"""Customer service - profile merge, counters, lookups and consent."""

from datetime import date, datetime, timezone
from typing import NamedTuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from slotbook.db.enums import BookingStatus
from slotbook.db.models import Customer
from slotbook.db.transactions import run_transaction
from slotbook.utils.identifiers import customer_id_for_phone
from slotbook.utils.normalization import is_initial, normalize_name, normalize_phone


class CustomerInput(NamedTuple):
    """Customer details supplied with a booking (phone already E.164)."""
    first_name: str
    last_name: str
    phone_e164: str
    birth_date: str | None = None  # YYYY-MM-DD


def make_customer_input(
    first_name: str,
    last_name: str,
    phone: str,
    birth_date: date | str | None = None,
) -> CustomerInput:
    """
    Build a CustomerInput from raw form values.

    Raises:
        ValueError: if the phone cannot be normalized or a name is empty
    """
    phone_e164 = normalize_phone(phone)
    first = normalize_name(first_name)
    last = normalize_name(last_name)
    if not phone_e164 or not first or not last:
        raise ValueError("first name, last name and phone are required")
    if isinstance(birth_date, date):
        birth_date = birth_date.isoformat()
    return CustomerInput(first, last, phone_e164, birth_date or None)


def birthday_mmdd(birth_date: str | None) -> str | None:
    """MMDD key used to find today's birthdays."""
    if not birth_date:
        return None
    return birth_date[5:7] + birth_date[8:10]


# =============================================================================
# Transaction helpers (no reads, no commits: the caller owns the transaction)
# =============================================================================

def merge_for_booking(
    existing: Customer | None,
    customer_input: CustomerInput,
    now: datetime,
) -> Customer:
    """
    Create-or-merge the customer touched by a new booking.

    New customers start with one booking. Existing ones get their booking
    counters bumped and identity refreshed, except when the caller sent an
    initial-only last name ("S."), which never overwrites a stored full name.
    """
    if existing is None:
        return Customer(
            id=customer_id_for_phone(customer_input.phone_e164),
            first_name=customer_input.first_name,
            last_name=customer_input.last_name,
            phone_e164=customer_input.phone_e164,
            birthday=customer_input.birth_date,
            birthday_mmdd=birthday_mmdd(customer_input.birth_date),
            tags=[],
            marketing_opt_in=False,
            total_bookings=1,
            total_completed=0,
            no_show_count=0,
            first_booking_at=now,
            last_booking_at=now,
            created_at=now,
            updated_at=now,
        )

    existing.total_bookings = (existing.total_bookings or 0) + 1
    existing.last_booking_at = now
    if existing.first_booking_at is None:
        existing.first_booking_at = now
    if not is_initial(customer_input.last_name):
        existing.first_name = customer_input.first_name
        existing.last_name = customer_input.last_name
    if customer_input.birth_date:
        existing.birthday = customer_input.birth_date
        existing.birthday_mmdd = birthday_mmdd(customer_input.birth_date)
    existing.updated_at = now
    return existing


def record_outcome(customer: Customer | None, status: BookingStatus, now: datetime) -> None:
    """Bump visit counters for a completed / no-show booking."""
    if customer is None:
        return
    if status == BookingStatus.COMPLETED:
        customer.total_completed = (customer.total_completed or 0) + 1
        customer.last_completed_at = now
    elif status == BookingStatus.NO_SHOW:
        customer.no_show_count = (customer.no_show_count or 0) + 1
    customer.updated_at = now


# =============================================================================
# Queries
# =============================================================================

def get_customer(db: Session, customer_id: str) -> Customer | None:
    return db.get(Customer, customer_id)


def get_customer_by_phone(db: Session, phone: str) -> Customer | None:
    """Resolve a raw phone to its customer. Raises ValueError on bad phones."""
    phone_e164 = normalize_phone(phone)
    if not phone_e164:
        raise ValueError("phone is required")
    return db.get(Customer, customer_id_for_phone(phone_e164))


def lookup_summary(db: Session, phone: str) -> dict:
    """
    Minimal returning-customer hint for the public booking form.

    Only exposes the first name, last-name initial and whether a birth
    date is on file.
    """
    customer = get_customer_by_phone(db, phone)
    if customer is None:
        return {"found": False, "has_birth_date": False}
    return {
        "found": True,
        "first_name": customer.first_name or None,
        "last_name_initial": customer.last_name[:1].upper() if customer.last_name else None,
        "has_birth_date": bool(customer.birthday),
    }


def list_customers(
    db: Session,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Customer], int]:
    """List customers, most recent booking first."""
    query = db.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Customer.first_name.ilike(like),
                Customer.last_name.ilike(like),
                Customer.phone_e164.like(like),
            )
        )
    total = query.count()
    customers = (
        query.order_by(Customer.last_booking_at.desc(), Customer.id)
        .offset(offset)
        .limit(limit)
        .all()
    )
    return customers, total


def set_marketing_consent(db: Session, customer: Customer, opt_in: bool) -> Customer:
    """Record a marketing opt-in or opt-out."""
    customer_id = customer.id

    def work(tx: Session) -> Customer:
        current = tx.get(Customer, customer_id, populate_existing=True)
        now = datetime.now(timezone.utc)
        current.marketing_opt_in = opt_in
        if opt_in:
            current.marketing_opt_in_at = now
            current.marketing_opt_out_at = None
        else:
            current.marketing_opt_out_at = now
        current.updated_at = now
        return current

    updated = run_transaction(db, work)
    db.refresh(updated)
    return updated


def broadcast_recipients(db: Session) -> list[Customer]:
    """Customers reachable by broadcast: anyone not explicitly opted out."""
    return (
        db.query(Customer)
        .filter(Customer.marketing_opt_out_at.is_(None))
        .order_by(Customer.created_at, Customer.id)
        .all()
    )


def birthdays_on(db: Session, mmdd: str) -> list[Customer]:
    return (
        db.query(Customer)
        .filter(Customer.birthday_mmdd == mmdd)
        .order_by(Customer.id)
        .all()
    )
