"""Models package - exports all SQLAlchemy models."""
# Catalog and stock
from dailyfresh.models.product import Product
from dailyfresh.models.inventory_log import InventoryLog, InventoryLogType

# Customer-side
from dailyfresh.models.address import Address
from dailyfresh.models.cart_item import CartItem

# Delivery and coupons
from dailyfresh.models.delivery_slot import DeliverySlot, SlotType
from dailyfresh.models.coupon import Coupon, CouponUsage, DiscountType, normalize_coupon_code

# Orders
from dailyfresh.models.order import (
    Order, OrderStatus, PaymentStatus, PaymentMethod, CANCELLABLE_STATUSES, TERMINAL_STATUSES
)
from dailyfresh.models.order_item import OrderItem
from dailyfresh.models.order_status_history import OrderStatusHistory, HistoryEntryType
from dailyfresh.models.checkout_failure import CheckoutFailure, CheckoutStep

__all__ = [
    'Product', 'InventoryLog', 'InventoryLogType',
    'Address', 'CartItem',
    'DeliverySlot', 'SlotType',
    'Coupon', 'CouponUsage', 'DiscountType', 'normalize_coupon_code',
    'Order', 'OrderStatus', 'PaymentStatus', 'PaymentMethod', 'CANCELLABLE_STATUSES', 'TERMINAL_STATUSES',
    'OrderItem', 'OrderStatusHistory', 'HistoryEntryType',
    'CheckoutFailure', 'CheckoutStep',
]
