"""Delivery slot listings (cached) and slot reservation wrappers."""
from datetime import date
from decimal import Decimal
from typing import List, Dict, Any, Optional
from dailyfresh.models import DeliverySlot, SlotType
from dailyfresh.repositories import SlotRepository
from dailyfresh.services.cache_service import get_cache
from dailyfresh.exceptions import ValidationError


def parse_slot_type(raw: Optional[str]) -> SlotType:
    try:
        return SlotType((raw or SlotType.STANDARD.value).lower())
    except ValueError:
        raise ValidationError(f'Unknown slot type: {raw}')


def slot_delivery_charge(slot: DeliverySlot, config) -> Decimal:
    """Flat fee for a slot: its own charge if set, otherwise the configured one for its type."""
    if slot.delivery_charge is not None:
        return Decimal(slot.delivery_charge)
    if slot.slot_type == SlotType.EXPRESS:
        return Decimal(config.get('EXPRESS_DELIVERY_CHARGE', '50'))
    return Decimal(config.get('STANDARD_DELIVERY_CHARGE', '25'))


def list_available_slots(session, on_date: date, slot_type: SlotType = SlotType.STANDARD) -> List[Dict[str, Any]]:
    """Open, non-full slots for a date and type, ordered by start time."""
    def _load():
        return [slot.to_dict() for slot in SlotRepository(session).list_available(on_date, slot_type)]

    cache = get_cache()
    if cache is None:
        return _load()
    return cache.listing(on_date, slot_type.value, _load)


def invalidate_slot_listings() -> None:
    """Drop cached listings. Call after the booking change has committed."""
    cache = get_cache()
    if cache is not None:
        cache.invalidate_listings()


def reserve_slot(session, slot_id: int) -> bool:
    return SlotRepository(session).reserve(slot_id)


def release_slot(session, slot_id: int) -> bool:
    return SlotRepository(session).release(slot_id)
