"""Delivery slot repository: capacity-checked booking counters."""
from datetime import date as date_type
from sqlalchemy import update, case
from sqlalchemy.orm import Session
from dailyfresh.models import DeliverySlot, SlotType


class SlotRepository:
    """Slot booking. Like stock, the capacity test lives in the UPDATE itself."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, slot_id: int):
        return self.session.get(DeliverySlot, slot_id, populate_existing=True)

    def reserve(self, slot_id: int) -> bool:
        """Take one booking; closes the slot when it reaches capacity."""
        stmt = (
            update(DeliverySlot)
            .where(
                DeliverySlot.id == slot_id,
                DeliverySlot.booked_count < DeliverySlot.capacity,
                DeliverySlot.is_available.is_(True),
            )
            .values(
                booked_count=DeliverySlot.booked_count + 1,
                is_available=DeliverySlot.booked_count + 1 < DeliverySlot.capacity,
            )
            .returning(DeliverySlot.booked_count)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def release(self, slot_id: int) -> bool:
        """Give one booking back. Only a slot closed by being full is reopened."""
        stmt = (
            update(DeliverySlot)
            .where(DeliverySlot.id == slot_id, DeliverySlot.booked_count > 0)
            .values(
                booked_count=DeliverySlot.booked_count - 1,
                is_available=case(
                    (DeliverySlot.booked_count >= DeliverySlot.capacity, True),
                    else_=DeliverySlot.is_available
                ),
            )
            .returning(DeliverySlot.booked_count)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def list_available(self, on_date: date_type, slot_type: SlotType = SlotType.STANDARD):
        return self.session.query(DeliverySlot).filter(
            DeliverySlot.date == on_date,
            DeliverySlot.slot_type == slot_type,
            DeliverySlot.is_available.is_(True),
            DeliverySlot.booked_count < DeliverySlot.capacity,
        ).order_by(DeliverySlot.start_time.asc()).all()
