"""
Pricing engine.

Pure money maths over Decimal: no session, no Flask, no I/O. Every amount that
leaves this module is quantized to 0.01 with ROUND_HALF_UP, and the order
total is always assembled from already rounded parts.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, ROUND_DOWN
from typing import Iterable, List, Tuple

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
HUNDRED = Decimal('100')


def to_money(value) -> Decimal:
    """Decimal amount rounded to cents (accepts str, int, float or Decimal)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingLine:
    unit_price: Decimal
    quantity: int
    tax_rate: Decimal = Decimal('18')

    @property
    def line_total(self) -> Decimal:
        return to_money(Decimal(self.unit_price) * self.quantity)


@dataclass(frozen=True)
class DeliveryPolicy:
    flat_fee: Decimal
    free_delivery_threshold: Decimal


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    discount: Decimal
    taxable_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    tax_primary: Decimal
    tax_secondary: Decimal
    delivery_charge: Decimal
    total: Decimal

    def to_dict(self):
        return {
            'subtotal': str(self.subtotal),
            'discount': str(self.discount),
            'taxable_amount': str(self.taxable_amount),
            'tax_rate': str(self.tax_rate),
            'tax_amount': str(self.tax_amount),
            'tax_primary': str(self.tax_primary),
            'tax_secondary': str(self.tax_secondary),
            'delivery_charge': str(self.delivery_charge),
            'total': str(self.total),
        }


def _check_lines(lines: Iterable[PricingLine]) -> List[PricingLine]:
    lines = list(lines)
    for line in lines:
        if Decimal(line.unit_price) < 0:
            raise ValueError('Unit price must not be negative')
        if line.quantity < 0:
            raise ValueError('Quantity must not be negative')
    return lines


def calculate_subtotal(lines: Iterable[PricingLine]) -> Decimal:
    """Sum of price x quantity over all lines."""
    lines = _check_lines(lines)
    return to_money(sum((line.line_total for line in lines), ZERO))


def calculate_delivery_charge(subtotal: Decimal, policy: DeliveryPolicy, waive: bool = False) -> Decimal:
    if waive or to_money(subtotal) >= to_money(policy.free_delivery_threshold):
        return ZERO
    return to_money(policy.flat_fee)


def split_tax(tax: Decimal, rate: Decimal, default_rate: Decimal) -> Tuple[Decimal, Decimal]:
    """
    Split a tax amount into its (primary, secondary) components.

    At the default compound rate the two halves are equal, with an odd cent
    going to the primary component. Any other rate is carried entirely by
    the primary component.
    """
    tax = to_money(tax)
    if Decimal(rate) != Decimal(default_rate):
        return tax, ZERO
    secondary = (tax / 2).quantize(CENT, rounding=ROUND_DOWN)
    primary = tax - secondary
    return primary, secondary


def _effective_rate(lines: List[PricingLine], subtotal: Decimal) -> Decimal:
    rates = {Decimal(line.tax_rate) for line in lines}
    if len(rates) == 1:
        return rates.pop()
    if subtotal == 0:
        return ZERO
    weighted = sum((line.line_total * Decimal(line.tax_rate) for line in lines), ZERO)
    return weighted / subtotal


def calculate_totals(lines: Iterable[PricingLine], policy: DeliveryPolicy, discount=ZERO,
                     free_delivery: bool = False, default_tax_rate=Decimal('18')) -> PriceBreakdown:
    """
    Price a set of lines.

    Tax is charged on subtotal minus discount. With mixed line rates the
    discount is prorated over the lines, so the tax is
    sum(line_total x rate) x taxable / subtotal, rounded once. Delivery is
    decided on the pre-discount subtotal.
    """
    lines = _check_lines(lines)
    subtotal = calculate_subtotal(lines)
    discount = to_money(discount)
    if discount < 0:
        raise ValueError('Discount must not be negative')
    if discount > subtotal:
        raise ValueError('Discount cannot exceed the subtotal')

    taxable = subtotal - discount
    rate = _effective_rate(lines, subtotal)
    tax = to_money(taxable * rate / HUNDRED)

    uniform = len({Decimal(line.tax_rate) for line in lines}) <= 1
    if uniform:
        tax_primary, tax_secondary = split_tax(tax, rate, default_tax_rate)
    else:
        tax_primary, tax_secondary = tax, ZERO

    delivery = calculate_delivery_charge(subtotal, policy, waive=free_delivery)
    total = subtotal - discount + tax + delivery

    return PriceBreakdown(
        subtotal=subtotal,
        discount=discount,
        taxable_amount=taxable,
        tax_rate=rate.quantize(CENT, rounding=ROUND_HALF_UP),
        tax_amount=tax,
        tax_primary=tax_primary,
        tax_secondary=tax_secondary,
        delivery_charge=delivery,
        total=total,
    )
