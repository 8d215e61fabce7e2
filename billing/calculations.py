from __future__ import annotations

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Sequence

from .exceptions import ValidationError
from .records import InvoiceStatus, LineItem, PaymentRecord

TWO_PLACES = Decimal('0.01')
HUNDRED = Decimal('100')


def round_money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_decimal(value, field: str) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(field, 'must be a number.')
    if not result.is_finite():
        raise ValidationError(field, 'must be a number.')
    return result


def validate_tax_rate(value, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    rate = to_decimal(value, field)
    if rate < 0 or rate > HUNDRED:
        raise ValidationError(field, 'must be between 0 and 100.')
    return rate


def validate_line_items(items: Sequence[LineItem]) -> list[LineItem]:
    """Return normalised copies of ``items`` or raise on the first bad field."""
    if not items:
        raise ValidationError('items', 'at least one item is required.')
    cleaned = []
    for index, item in enumerate(items):
        prefix = f"items[{index}]"
        description = (item.description or '').strip()
        if not description:
            raise ValidationError(f"{prefix}.description", 'item description is required.')
        quantity = to_decimal(item.quantity, f"{prefix}.quantity")
        if quantity <= 0:
            raise ValidationError(f"{prefix}.quantity", 'item quantity must be a positive number.')
        unit_price = to_decimal(item.unit_price, f"{prefix}.unit_price")
        if unit_price < 0:
            raise ValidationError(f"{prefix}.unit_price", 'item unit price cannot be negative.')
        tax_rate = validate_tax_rate(item.tax_rate, f"{prefix}.tax_rate")
        cleaned.append(LineItem(description=description, quantity=quantity, unit_price=unit_price, tax_rate=tax_rate))
    return cleaned


def effective_tax_rate(item: LineItem, global_tax_rate: Optional[Decimal]) -> Decimal:
    # An explicit item rate of 0 wins over the invoice rate.
    if item.tax_rate is not None:
        return item.tax_rate
    if global_tax_rate is not None:
        return global_tax_rate
    return Decimal('0')


def line_item_total(item: LineItem, global_tax_rate: Optional[Decimal] = None) -> Decimal:
    """Unrounded subtotal plus tax for one item."""
    subtotal = item.quantity * item.unit_price
    tax_amount = subtotal * effective_tax_rate(item, global_tax_rate) / HUNDRED
    return subtotal + tax_amount


def calculate_invoice_total(items: Sequence[LineItem], global_tax_rate=None) -> Decimal:
    """
    Validate ``items`` and return the invoice total.

    Rounding happens once on the sum, never per item, so the result does not
    depend on item order.
    """
    rate = validate_tax_rate(global_tax_rate, 'global_tax_rate')
    cleaned = validate_line_items(items)
    return round_money(sum((line_item_total(item, rate) for item in cleaned), Decimal('0')))


def format_invoice_number(sequence: int, *, year: int, prefix: str = 'INV') -> str:
    return f"{prefix}-{year}-{sequence:05d}"


def total_paid(payments: Iterable[PaymentRecord]) -> Decimal:
    return sum((payment.amount for payment in payments), Decimal('0'))


def balance_due(total_amount: Decimal, payments: Iterable[PaymentRecord]) -> Decimal:
    return total_amount - total_paid(payments)


def status_after_payment(
    current_status: str,
    paid: Decimal,
    total_amount: Decimal,
    *,
    override_cancelled: bool = True,
) -> str:
    """
    Status an invoice moves to once ``paid`` has been received against it.

    This is the only automatic transition. Manually set statuses, cancelled
    included, are replaced as soon as money arrives unless
    ``override_cancelled`` is turned off.
    """
    if current_status == InvoiceStatus.CANCELLED and not override_cancelled:
        return current_status
    if paid >= total_amount:
        return InvoiceStatus.PAID
    if paid > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return current_status


def validate_payment(amount, payment_date, payment_method: str) -> tuple[Decimal, dt.date, str]:
    value = to_decimal(amount, 'amount')
    if value <= 0:
        raise ValidationError('amount', 'payment amount must be positive.')
    if not isinstance(payment_date, dt.date):
        raise ValidationError('payment_date', 'valid payment date is required.')
    if isinstance(payment_date, dt.datetime):
        payment_date = payment_date.date()
    method = (payment_method or '').strip()
    if not method:
        raise ValidationError('payment_method', 'payment method is required.')
    return value, payment_date, method
