"""
Slot store: availability flips on ``time_slots``.

Admission to a slot is decided by a conditional UPDATE whose affected-row
count is the answer, so two concurrent checkouts cannot both win the same
slot. Every write here commits on its own; the slot flags are visible to
other requests as soon as the call returns.
"""
import logging

from sqlalchemy import and_, select, update

from models import db
from models.booking import Booking, BookingStatus
from models.service import Service
from models.time_slot import TimeSlot

logger = logging.getLogger(__name__)


def claim_slot(slot_id: int) -> bool:
    """Flip ``is_available`` true -> false. Returns True only for the caller that flipped it."""
    result = db.session.execute(
        update(TimeSlot)
        .where(TimeSlot.id == slot_id, TimeSlot.is_available.is_(True))
        .values(is_available=False)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def release_slot(slot_id: int) -> bool:
    """Make a slot bookable again unless a live booking still references it."""
    live = (
        Booking.query
        .filter(
            Booking.time_slot_id == slot_id,
            Booking.status.in_([BookingStatus.PENDING, BookingStatus.CONFIRMED]),
        )
        .first()
    )
    if live:
        return False

    result = db.session.execute(
        update(TimeSlot)
        .where(TimeSlot.id == slot_id, TimeSlot.is_available.is_(False))
        .values(is_available=True)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def provider_id_for_slot(slot: TimeSlot) -> int:
    return db.session.execute(
        select(Service.provider_id).where(Service.id == slot.service_id)
    ).scalar_one()


def lock_slot_and_overlaps(slot_id: int) -> int:
    """
    Mark the slot and every overlapping slot of the same provider on the same
    date unavailable. Returns the number of rows flipped (the slot itself
    counts only if it was still available).
    """
    slot = db.session.get(TimeSlot, slot_id)
    if slot is None:
        logger.warning("Slot %s vanished before overlap lock", slot_id)
        return 0

    provider_id = provider_id_for_slot(slot)
    provider_services = select(Service.id).where(Service.provider_id == provider_id)

    result = db.session.execute(
        update(TimeSlot)
        .where(
            TimeSlot.service_id.in_(provider_services),
            TimeSlot.date == slot.date,
            TimeSlot.is_available.is_(True),
            and_(TimeSlot.start_time < slot.end_time, TimeSlot.end_time > slot.start_time),
        )
        .values(is_available=False)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    flipped = result.rowcount or 0
    logger.info(
        "Locked %s overlapping slot(s) for provider %s on %s %s-%s",
        flipped, provider_id, slot.date, slot.start_time, slot.end_time,
    )
    return flipped


def list_available_slots(service_id: int, day=None):
    q = TimeSlot.query.filter_by(service_id=service_id, is_available=True)
    if day is not None:
        q = q.filter(TimeSlot.date == day)
    return q.order_by(TimeSlot.date.asc(), TimeSlot.start_time.asc()).all()
