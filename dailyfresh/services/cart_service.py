"""
Cart service - persistent carts keyed by customer_ref, plus cart validation.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Dict, Any, Optional
from dailyfresh.models import Product
from dailyfresh.repositories import CartRepository
from dailyfresh.exceptions import ValidationError, NotFoundError, StockError
from dailyfresh.services.pricing_service import PricingLine, calculate_subtotal, to_money

logger = logging.getLogger(__name__)


@dataclass
class ValidatedLine:
    product: Product
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)

    def pricing_line(self) -> PricingLine:
        return PricingLine(unit_price=self.unit_price, quantity=self.quantity, tax_rate=self.product.tax_rate)

    def to_dict(self):
        return {
            'product_id': self.product.id,
            'name': self.product.name,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'line_total': str(self.line_total),
        }


@dataclass
class CartValidation:
    valid: bool
    violations: List[str] = field(default_factory=list)
    lines: List[ValidatedLine] = field(default_factory=list)
    # (product, requested, available) for lines the stock cannot cover
    shortages: List[tuple] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return calculate_subtotal(line.pricing_line() for line in self.lines)

    def to_dict(self):
        return {'valid': self.valid, 'violations': list(self.violations)}


def _parse_quantity(raw) -> Optional[int]:
    try:
        quantity = int(raw)
    except (TypeError, ValueError):
        return None
    return quantity


def _merge_lines(lines: List[Dict[str, Any]], violations: List[str]) -> Dict[int, Dict[str, Any]]:
    """Collapse duplicate product lines, summing quantities; keep the first client price."""
    merged: Dict[int, Dict[str, Any]] = {}
    for raw in lines:
        if not isinstance(raw, dict):
            violations.append('Invalid cart line')
            continue
        try:
            product_id = int(raw.get('product_id'))
        except (TypeError, ValueError):
            violations.append('Invalid product reference')
            continue
        quantity = _parse_quantity(raw.get('quantity'))
        if quantity is None or quantity <= 0:
            violations.append(f'Quantity for product {product_id} must be greater than 0')
            continue
        if product_id in merged:
            merged[product_id]['quantity'] += quantity
        else:
            merged[product_id] = {'quantity': quantity, 'price': raw.get('price')}
    return merged


def validate_cart(session, lines: List[Dict[str, Any]], min_order_amount: Decimal) -> CartValidation:
    """
    Check every line against current product state.

    All problems are collected; nothing stops at the first one. Each returned
    line carries the server-side price, never the client's.
    """
    violations: List[str] = []
    shortages: List[tuple] = []
    if not lines:
        return CartValidation(valid=False, violations=['Your cart is empty'])

    merged = _merge_lines(lines, violations)
    products = {}
    if merged:
        products = {
            p.id: p for p in session.query(Product).populate_existing()
            .filter(Product.id.in_(list(merged.keys()))).all()
        }

    validated: List[ValidatedLine] = []
    for product_id, line in merged.items():
        product = products.get(product_id)
        quantity = line['quantity']
        if product is None:
            violations.append(f'Product {product_id} not found')
            continue
        if not product.is_active:
            violations.append(f'{product.name} is no longer available')
            continue
        if not product.is_in_stock(quantity):
            violations.append(f'{product.name}: only {product.stock_quantity} left in stock')
            shortages.append((product, quantity, product.stock_quantity))
        if not product.is_valid_quantity(quantity):
            violations.append(
                f'{product.name}: quantity must be between '
                f'{product.min_order_quantity} and {product.max_order_quantity}'
            )
        if line['price'] is not None:
            try:
                client_price = to_money(line['price'])
            except (InvalidOperation, ValueError):
                client_price = None
            if client_price != to_money(product.price):
                violations.append(f'{product.name}: price changed to {to_money(product.price)}')
        validated.append(ValidatedLine(product=product, quantity=quantity, unit_price=to_money(product.price)))

    result = CartValidation(valid=False, violations=violations, lines=validated, shortages=shortages)
    if validated and not violations:
        min_amount = to_money(min_order_amount)
        if result.subtotal < min_amount:
            violations.append(f'Minimum order amount is {min_amount}')

    result.valid = not violations
    return result


# ---------------------------------------------------------------------------
# Cart storage
# ---------------------------------------------------------------------------

def get_cart_lines(session, customer_ref: str) -> List[Dict[str, Any]]:
    """Stored cart as validator input (no client price: storage never holds one)."""
    return [
        {'product_id': item.product_id, 'quantity': item.quantity}
        for item in CartRepository(session).lines(customer_ref)
    ]


def get_cart(session, customer_ref: str) -> Dict[str, Any]:
    items = CartRepository(session).lines(customer_ref)
    lines = []
    subtotal = Decimal('0.00')
    for item in items:
        line_total = to_money(item.product.price * item.quantity)
        subtotal += line_total
        lines.append({
            'product_id': item.product_id,
            'name': item.product.name,
            'quantity': item.quantity,
            'unit_price': str(to_money(item.product.price)),
            'line_total': str(line_total),
        })
    return {'items': lines, 'subtotal': str(to_money(subtotal))}


def _check_product_quantity(product: Product, quantity: int) -> None:
    if not product.is_active:
        raise ValidationError(f'{product.name} is no longer available')
    if not product.is_valid_quantity(quantity):
        raise ValidationError(
            f'{product.name}: quantity must be between '
            f'{product.min_order_quantity} and {product.max_order_quantity}'
        )
    if not product.is_in_stock(quantity):
        raise StockError(product.name, quantity, product.stock_quantity)


def add_to_cart(session, customer_ref: str, product_id: int, quantity: int = 1) -> Dict[str, Any]:
    """Add to the cart; checks run against the accumulated quantity."""
    if quantity <= 0:
        raise ValidationError('Quantity must be greater than 0')
    try:
        product = session.get(Product, product_id, populate_existing=True)
        if product is None:
            raise NotFoundError(f'Product {product_id} not found')

        repo = CartRepository(session)
        existing = repo.get(customer_ref, product_id)
        new_quantity = quantity + (existing.quantity if existing else 0)
        _check_product_quantity(product, new_quantity)

        repo.upsert(customer_ref, product_id, new_quantity)
        session.commit()
        return get_cart(session, customer_ref)
    except Exception:
        session.rollback()
        raise


def update_cart_item(session, customer_ref: str, product_id: int, quantity: int) -> Dict[str, Any]:
    """Set an absolute quantity; zero removes the line."""
    if quantity < 0:
        raise ValidationError('Quantity must not be negative')
    try:
        repo = CartRepository(session)
        if repo.get(customer_ref, product_id) is None:
            raise NotFoundError('Product is not in your cart')

        if quantity == 0:
            repo.delete(customer_ref, product_id)
        else:
            product = session.get(Product, product_id, populate_existing=True)
            _check_product_quantity(product, quantity)
            repo.upsert(customer_ref, product_id, quantity)
        session.commit()
        return get_cart(session, customer_ref)
    except Exception:
        session.rollback()
        raise


def remove_from_cart(session, customer_ref: str, product_id: int) -> Dict[str, Any]:
    try:
        if not CartRepository(session).delete(customer_ref, product_id):
            raise NotFoundError('Product is not in your cart')
        session.commit()
        return get_cart(session, customer_ref)
    except Exception:
        session.rollback()
        raise


def clear_cart(session, customer_ref: str, commit: bool = True) -> int:
    """Empty the cart. Checkout passes commit=False to fold this into its last step."""
    removed = CartRepository(session).clear(customer_ref)
    if commit:
        session.commit()
    return removed
