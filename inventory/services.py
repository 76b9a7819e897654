# inventory/services.py
"""
Stock reservation for checkout.

Each decrement is a single conditional UPDATE (``stock_quantity >= qty``),
so two checkouts racing for the last unit cannot both succeed. A
reservation is all-or-nothing: the decrements of one call share a savepoint.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional, Tuple

from django.db import transaction
from django.db.models import F

from catalog.models import Product, ProductVariant
from orders.exceptions import InsufficientStock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservedLine:
    product_id: int
    variant_id: Optional[int]
    quantity: int


@dataclass(frozen=True)
class StockReservation:
    lines: Tuple[ReservedLine, ...]

    def quantity_for(self, product_id, variant_id=None):
        for line in self.lines:
            if line.product_id == product_id and line.variant_id == variant_id:
                return line.quantity
        return 0


def merge_lines(lines):
    """Sum quantities per (product, variant), skipping untracked products."""
    merged = OrderedDict()
    for line in lines:
        if not getattr(line, 'track_inventory', True):
            continue
        key = (line.product_id, line.variant_id)
        merged[key] = merged.get(key, 0) + line.quantity
    # Stable lock order across concurrent checkouts
    return [ReservedLine(p, v, q) for (p, v), q in sorted(merged.items(), key=lambda kv: (kv[0][0], kv[0][1] or 0))]


class StockGuard:

    def _decrement(self, line):
        if line.variant_id:
            return ProductVariant.objects.filter(
                pk=line.variant_id, stock_quantity__gte=line.quantity,
            ).update(stock_quantity=F('stock_quantity') - line.quantity)
        return Product.objects.filter(
            pk=line.product_id, stock_quantity__gte=line.quantity,
        ).update(stock_quantity=F('stock_quantity') - line.quantity)

    def _available(self, line):
        if line.variant_id:
            row = ProductVariant.objects.filter(pk=line.variant_id).values('stock_quantity').first()
        else:
            row = Product.objects.filter(pk=line.product_id).values('stock_quantity').first()
        return row['stock_quantity'] if row else 0

    def reserve(self, snapshot):
        """Decrement stock for every tracked line or raise InsufficientStock with nothing changed."""
        reserved = merge_lines(snapshot.lines)

        with transaction.atomic():
            for line in reserved:
                if not self._decrement(line):
                    available = self._available(line)
                    logger.info(
                        f"Stock short for product {line.product_id} "
                        f"(variant {line.variant_id}): requested {line.quantity}, available {available}"
                    )
                    raise InsufficientStock(
                        product_id=line.product_id,
                        requested=line.quantity,
                        available=available,
                    )

        return StockReservation(lines=tuple(reserved))

    @transaction.atomic
    def release(self, lines):
        """Put quantities back, e.g. when an unpaid order expires."""
        for line in merge_lines(lines):
            if line.variant_id:
                ProductVariant.objects.filter(pk=line.variant_id).update(
                    stock_quantity=F('stock_quantity') + line.quantity
                )
            else:
                Product.objects.filter(pk=line.product_id).update(
                    stock_quantity=F('stock_quantity') + line.quantity
                )
        logger.info(f"Released stock for {len(lines)} lines")
