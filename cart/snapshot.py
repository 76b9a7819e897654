# cart/snapshot.py
"""
Read-only cart snapshots.

Checkout never prices the live cart directly: it takes one snapshot per
order attempt and every later step (pricing, stock reservation, order
items) works from that snapshot.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from .models import Cart


@dataclass(frozen=True)
class CartLine:
    product_id: int
    variant_id: Optional[int]
    product_name: str
    sku: str
    variant_name: str
    unit_price: Decimal
    mrp: Optional[Decimal]
    quantity: int
    stock_available: int
    tax_rate: Decimal = Decimal('0')
    track_inventory: bool = True

    @property
    def line_subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartSnapshot:
    lines: Tuple[CartLine, ...]
    cart_id: Optional[int] = None

    def __iter__(self):
        return iter(self.lines)

    def __len__(self):
        return len(self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)


def get_or_create_cart(request):
    """Get or create cart for user or session"""
    if request.user.is_authenticated:
        cart, created = Cart.objects.get_or_create(customer=request.user)
    else:
        if not request.session.session_key:
            request.session.create()
        cart, created = Cart.objects.get_or_create(
            session_key=request.session.session_key,
            customer=None,
        )
    return cart


def build_cart_snapshot(cart) -> CartSnapshot:
    """Freeze the cart's current contents and catalog prices."""
    items = cart.items.select_related('product', 'variant').order_by('created_at', 'id')

    lines = []
    for item in items:
        product = item.product
        variant = item.variant
        if variant is not None:
            unit_price = variant.effective_price
            mrp = variant.compare_at_price or product.compare_at_price
            stock = variant.stock_quantity
            sku = variant.variant_sku or product.sku
            variant_name = variant.name
        else:
            unit_price = product.base_price
            mrp = product.compare_at_price
            stock = product.stock_quantity
            sku = product.sku
            variant_name = ''

        lines.append(CartLine(
            product_id=product.id,
            variant_id=variant.id if variant is not None else None,
            product_name=product.name,
            sku=sku,
            variant_name=variant_name,
            unit_price=Decimal(unit_price),
            mrp=Decimal(mrp) if mrp is not None else None,
            quantity=item.quantity,
            stock_available=stock,
            tax_rate=Decimal(product.tax_rate or 0),
            track_inventory=product.track_inventory,
        ))

    return CartSnapshot(lines=tuple(lines), cart_id=cart.id)
