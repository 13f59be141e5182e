"""
Payment gateway client and payment result recording.

The gateway is opaque: it answers a charge request with pass/fail and a
reference. This module only records that outcome against the order.
"""
import logging
from dataclasses import dataclass
from typing import Optional
import requests
from flask import current_app
from sqlalchemy import update
from dailyfresh.models import Order, OrderStatus, PaymentStatus, HistoryEntryType
from dailyfresh.repositories import OrderRepository
from dailyfresh.exceptions import NotFoundError, ValidationError
from dailyfresh.services.order_status_service import record_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    reference: Optional[str] = None
    message: Optional[str] = None


class PaymentGatewayClient:
    """Thin client for the external payment gateway."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[int] = None):
        config = current_app.config
        self.base_url = (base_url or config.get('PAYMENT_GATEWAY_URL', '')).rstrip('/')
        self.api_key = api_key if api_key is not None else config.get('PAYMENT_GATEWAY_KEY', '')
        self.timeout = timeout or config.get('PAYMENT_GATEWAY_TIMEOUT', 10)
        self.currency = config.get('CURRENCY', 'INR')

        self.headers = {'Content-Type': 'application/json'}
        if self.api_key:
            self.headers['Authorization'] = f'Bearer {self.api_key}'

    def charge(self, order_number: str, amount, payment_token: str, payment_method: str) -> PaymentResult:
        """
        Charge an order total.

        Transport and HTTP errors become a failed PaymentResult; the order
        stays payable and the customer can retry.
        """
        url = f"{self.base_url}/charges"
        payload = {
            'amount': str(amount),
            'currency': self.currency,
            'order_number': order_number,
            'payment_token': payment_token,
            'payment_method': payment_method,
        }

        logger.info(f"[PAYMENT] order_number={order_number} step=charge status=requested amount={amount}")

        try:
            response = requests.post(url, json=payload, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.HTTPError as e:
            logger.error(f"[PAYMENT] order_number={order_number} step=charge status=http_error detail={e}")
            return PaymentResult(success=False, message='Payment was declined by the gateway')
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[PAYMENT] order_number={order_number} step=charge status=unreachable detail={e}")
            return PaymentResult(success=False, message='Payment gateway unavailable')

        success = data.get('status') in ('succeeded', 'success', 'paid')
        return PaymentResult(success=success, reference=data.get('id') or data.get('reference'),
                             message=data.get('message'))


def _refund_late_payment(session, order_id: int, result: PaymentResult, actor: str):
    """
    Record a charge that succeeded after the order was cancelled.

    The money has moved, so the reference is kept and the payment goes
    straight to refunded with a refund note. Returns the refund amount, or
    None when the order was not cancelled or its payment is already settled.
    """
    amount = session.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.status == OrderStatus.CANCELLED,
            Order.payment_status.in_([PaymentStatus.PENDING, PaymentStatus.FAILED]),
        )
        .values(payment_status=PaymentStatus.REFUNDED, payment_reference=result.reference,
                refund_amount=Order.total_amount)
        .returning(Order.total_amount)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()
    if amount is None:
        return None
    record_status(
        session, order_id, OrderStatus.CANCELLED,
        notes=f'Payment received after cancellation: {result.reference}. Refund initiated: {amount}',
        actor=actor, entry_type=HistoryEntryType.PAYMENT
    )
    return amount


def record_payment_result(session, order_id: int, result: PaymentResult, actor: str) -> Order:
    """
    Apply a gateway outcome to the order.

    Success marks the order paid and confirms it if it is still pending and
    not waiting on reconciliation. A success that arrives after the order was
    cancelled is recorded and refunded. Failure marks it failed. A repeated
    call on an already paid order changes nothing.
    """
    repo = OrderRepository(session)
    try:
        order = repo.get(order_id)
        if order is None:
            raise NotFoundError('Order not found')

        if order.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            logger.info(f"[PAYMENT] order={order_id} step=record status=already_{order.payment_status.value}")
            return order

        if order.status == OrderStatus.CANCELLED and not result.success:
            raise ValidationError('Order has been cancelled')

        if result.success:
            paid = session.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status != OrderStatus.CANCELLED,
                    Order.payment_status.in_([PaymentStatus.PENDING, PaymentStatus.FAILED]),
                )
                .values(payment_status=PaymentStatus.PAID, payment_reference=result.reference)
                .returning(Order.id)
                .execution_options(synchronize_session=False)
            ).scalar_one_or_none()
            if paid is not None:
                note = f'Payment received: {result.reference}' if result.reference else 'Payment received'
                if not order.needs_reconciliation and repo.transition(order_id, [OrderStatus.PENDING], OrderStatus.CONFIRMED):
                    record_status(session, order_id, OrderStatus.CONFIRMED, notes=note, actor=actor)
                else:
                    record_status(session, order_id, order.status, notes=note, actor=actor,
                                  entry_type=HistoryEntryType.PAYMENT)
                status = 'paid'
            elif _refund_late_payment(session, order_id, result, actor) is not None:
                status = 'refunded'
            else:
                session.rollback()
                return repo.get(order_id)
        else:
            session.execute(
                update(Order)
                .where(Order.id == order_id, Order.payment_status == PaymentStatus.PENDING)
                .values(payment_status=PaymentStatus.FAILED)
                .execution_options(synchronize_session=False)
            )
            repo.append_history(order_id, order.status, notes=f'Payment failed: {result.message or "declined"}',
                                actor=actor, entry_type=HistoryEntryType.PAYMENT)
            status = 'failed'

        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[PAYMENT] order={order_id} step=record status={status} reference={result.reference}")
    return repo.get(order_id)


def pay_order(session, order_id: int, customer_ref: str, payment_token: str,
              client: Optional[PaymentGatewayClient] = None) -> Order:
    """Charge a customer's order through the gateway and record the outcome."""
    order = OrderRepository(session).get(order_id, customer_ref=customer_ref)
    if order is None:
        raise NotFoundError('Order not found')
    if order.is_cash_on_delivery:
        return confirm_cash_on_delivery(session, order_id, customer_ref)
    if not payment_token:
        raise ValidationError('payment_token is required')
    if order.payment_status == PaymentStatus.PAID:
        return order
    if order.status != OrderStatus.PENDING:
        raise ValidationError(f'Order cannot be paid in status {order.status.value}')

    # Release the read transaction before the network call
    session.commit()
    client = client or PaymentGatewayClient()
    result = client.charge(order.order_number, order.total_amount, payment_token, order.payment_method)
    return record_payment_result(session, order_id, result, actor=customer_ref)


def confirm_cash_on_delivery(session, order_id: int, actor: str) -> Order:
    """Confirm a pending cash-on-delivery order; payment stays pending until delivery."""
    repo = OrderRepository(session)
    try:
        order = repo.get(order_id)
        if order is None:
            raise NotFoundError('Order not found')
        if not order.is_cash_on_delivery:
            raise ValidationError('Order is not cash on delivery')
        if order.status == OrderStatus.CONFIRMED:
            return order
        if order.needs_reconciliation:
            raise ValidationError('Order is awaiting reconciliation and cannot be confirmed')
        if not repo.transition(order_id, [OrderStatus.PENDING], OrderStatus.CONFIRMED):
            raise ValidationError(f'Order cannot be confirmed in status {order.status.value}')
        repo.append_history(order_id, OrderStatus.CONFIRMED, notes='Cash on delivery confirmed', actor=actor)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[PAYMENT] order={order_id} step=cod_confirm status=ok actor={actor}")
    return repo.get(order_id)
