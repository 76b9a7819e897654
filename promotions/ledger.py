# promotions/ledger.py
"""
Coupon usage accounting.

Availability checks are read-only and used while pricing. Redemption runs
inside the checkout transaction: the coupon row is locked and the counter
is bumped with a conditional UPDATE, so the global limit holds even if two
checkouts read the same count.
"""

import logging

from django.db import transaction
from django.db.models import F, Q

from orders.exceptions import CouponLimitExceeded
from .models import Coupon, CouponUsage

logger = logging.getLogger(__name__)


class CouponLedger:

    def usage_count(self, coupon, user):
        if user is None:
            return 0
        return CouponUsage.objects.filter(coupon=coupon, user=user).count()

    def ensure_available(self, coupon, user):
        """Raise CouponLimitExceeded if the coupon has no uses left for ``user``."""
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise CouponLimitExceeded("This coupon has reached its usage limit")
        if coupon.per_user_limit is not None and self.usage_count(coupon, user) >= coupon.per_user_limit:
            raise CouponLimitExceeded("You have already used this coupon")

    @transaction.atomic
    def redeem(self, coupon, user, order, discount_amount):
        """Record one use of ``coupon`` for ``order``; must run in the checkout transaction."""
        locked = Coupon.objects.select_for_update().get(pk=coupon.pk)

        if locked.per_user_limit is not None and self.usage_count(locked, user) >= locked.per_user_limit:
            raise CouponLimitExceeded("You have already used this coupon")

        updated = Coupon.objects.filter(pk=locked.pk).filter(
            Q(usage_limit__isnull=True) | Q(used_count__lt=F('usage_limit'))
        ).update(used_count=F('used_count') + 1)
        if not updated:
            raise CouponLimitExceeded("This coupon has reached its usage limit")

        usage = CouponUsage.objects.create(
            coupon=locked,
            user=user,
            order=order,
            discount_amount=discount_amount,
        )
        logger.info(f"Coupon {locked.code} redeemed on order {order.order_number}")
        return usage

    @transaction.atomic
    def release_for_order(self, order):
        """Give back every use recorded against ``order``; returns the count released."""
        usages = list(CouponUsage.objects.filter(order=order).select_related('coupon'))
        for usage in usages:
            Coupon.objects.filter(pk=usage.coupon_id, used_count__gt=0).update(
                used_count=F('used_count') - 1
            )
            usage.delete()
            logger.info(f"Coupon {usage.coupon.code} released from order {order.order_number}")
        return len(usages)
