# promotions/discounts.py
"""
Discount strategies, one per coupon type.

Each strategy receives the coupon, the cart snapshot and its subtotal and
returns the raw discount. The pricing engine clamps and rounds it.
"""

from decimal import Decimal


def percentage_discount(coupon, snapshot, subtotal):
    discount = subtotal * Decimal(coupon.value) / Decimal('100')
    if coupon.max_discount is not None:
        discount = min(discount, Decimal(coupon.max_discount))
    return discount


def flat_discount(coupon, snapshot, subtotal):
    return min(Decimal(coupon.value), subtotal)


def buy_x_get_y_discount(coupon, snapshot, subtotal):
    buy = coupon.buy_quantity or 0
    get = coupon.get_quantity or 0
    if buy <= 0 or get <= 0:
        return Decimal('0')

    discount = Decimal('0')
    for line in snapshot.lines:
        free_units = (line.quantity // (buy + get)) * get
        discount += line.unit_price * free_units

    if coupon.max_discount is not None:
        discount = min(discount, Decimal(coupon.max_discount))
    return discount


DISCOUNT_STRATEGIES = {
    'percentage':  percentage_discount,
    'flat':        flat_discount,
    'buy_x_get_y': buy_x_get_y_discount,
}


def get_discount_strategy(coupon_type):
    strategy = DISCOUNT_STRATEGIES.get(coupon_type)
    if not strategy:
        raise ValueError(f"Unsupported coupon type: {coupon_type}")
    return strategy


def compute_discount(coupon, snapshot, subtotal):
    """Discount for ``coupon`` clamped to [0, subtotal]."""
    raw = get_discount_strategy(coupon.type)(coupon, snapshot, subtotal)
    return max(Decimal('0'), min(raw, subtotal))
