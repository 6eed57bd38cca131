import time

from django.core.management.base import BaseCommand
from django.utils import timezone

from orders.models import Order, OrderStatus
from orders.services import WebhookOutcome, reconcile_order
from payments.integrations.paymongo import PaymongoClient, PaymongoError


class Command(BaseCommand):
    help = "Poll PayMongo for pending orders and confirm the ones that were paid"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.5)
        parser.add_argument("--older-than-minutes", type=int, default=10)

    def handle(self, *args, **opts):
        cutoff = timezone.now() - timezone.timedelta(minutes=opts["older_than_minutes"])
        qs = (
            Order.objects.filter(status=OrderStatus.PENDING_PAYMENT, created_at__lt=cutoff)
            .exclude(checkout_session_id="")
            .order_by("created_at")[:opts["max"]]
        )

        if not qs.exists():
            self.stdout.write(self.style.SUCCESS("No pending orders to reconcile."))
            return

        gateway = PaymongoClient.from_settings()
        for order in qs:
            try:
                outcome = reconcile_order(order, gateway=gateway)
            except PaymongoError as e:
                self.stdout.write(self.style.WARNING(f"{order.order_id}: {e}"))
            else:
                if outcome == WebhookOutcome.CONFIRMED:
                    self.stdout.write(self.style.SUCCESS(f"Confirmed {order.order_id}"))
                else:
                    self.stdout.write(f"{order.order_id}: {outcome.value}")
            time.sleep(opts["sleep"])
