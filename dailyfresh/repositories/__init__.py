"""Repositories: the only place rows are mutated with conditional UPDATEs."""
from dailyfresh.repositories.inventory import InventoryRepository
from dailyfresh.repositories.slots import SlotRepository
from dailyfresh.repositories.coupons import CouponRepository
from dailyfresh.repositories.orders import OrderRepository
from dailyfresh.repositories.carts import CartRepository

__all__ = [
    'InventoryRepository', 'SlotRepository', 'CouponRepository', 'OrderRepository', 'CartRepository',
]
