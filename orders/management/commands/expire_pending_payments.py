# orders/management/commands/expire_pending_payments.py
from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone
from datetime import timedelta
from orders.settlement import SettlementReconciler
import logging

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Cancel new orders whose online payment was never completed'

    def add_arguments(self, parser):
        parser.add_argument(
            '--minutes',
            type=int,
            default=getattr(settings, 'PENDING_PAYMENT_TIMEOUT_MINUTES', 30),
            help='Age in minutes after which a pending payment is considered abandoned'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be expired without changing anything'
        )

    def handle(self, *args, **options):
        minutes = options['minutes']
        dry_run = options['dry_run']

        cutoff = timezone.now() - timedelta(minutes=minutes)
        reconciler = SettlementReconciler()

        self.stdout.write(
            f'Processing payments pending for more than {minutes} minutes (before {cutoff})'
        )

        if dry_run:
            stale = reconciler.stale_orders(cutoff)
            count = stale.count()
            self.stdout.write(
                self.style.WARNING(f'DRY RUN: Would expire {count} orders')
            )
            for order in stale[:10]:
                self.stdout.write(f'  - Order {order.order_number} (Created: {order.created_at})')
            if count > 10:
                self.stdout.write(f'  ... and {count - 10} more')
            return

        expired = reconciler.expire_stale_payments(cutoff)
        self.stdout.write(
            self.style.SUCCESS(f'Expired {len(expired)} unpaid orders')
        )
        logger.info(f'Pending payment expiry completed: {len(expired)} orders cancelled')
