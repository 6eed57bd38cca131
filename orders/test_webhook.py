import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from django.core import mail
from django.test import TestCase, override_settings
from django.urls import reverse

from catalog.models import Product
from payments.integrations.paymongo import CheckoutSession, PaymongoClient, compute_signature

from .models import PAYMENT_PAID, Order, OrderNote, OrderStatus
from .services import WebhookOutcome, create_order, handle_payment_event

SECRET = "whsk_test_secret"
PAID_AT = 1700000000


def paid_event(order, event_id="evt_paid_1"):
    payment = {"id": "pay_1", "type": "payment", "attributes": {"status": "paid", "source": {"type": "gcash"}}}
    return {
        "data": {
            "id": event_id,
            "type": "event",
            "attributes": {
                "type": "checkout_session.payment.paid",
                "livemode": False,
                "updated_at": PAID_AT + 5,
                "data": {
                    "id": order.checkout_session_id or "cs_1",
                    "type": "checkout_session",
                    "attributes": {
                        "metadata": {"internal_order_id": str(order.pk), "customer_email": order.email},
                        "payment_intent": {
                            "id": order.payment_intent_id or "pi_1",
                            "attributes": {"status": "succeeded", "paid_at": PAID_AT, "payments": [payment]},
                        },
                        "payments": [payment],
                    },
                },
            },
        }
    }


def failed_event(intent_id, event_id="evt_failed_1"):
    return {
        "data": {
            "id": event_id,
            "type": "event",
            "attributes": {
                "type": "payment.failed",
                "data": {
                    "id": "pay_9",
                    "type": "payment",
                    "attributes": {
                        "payment_intent_id": intent_id,
                        "failed_code": "card_declined",
                        "failed_message": "The card was declined.",
                    },
                },
            },
        }
    }


@override_settings(PAYMONGO_WEBHOOK_SECRET=SECRET, ORDERS_ADMIN_EMAILS="")
class PaymongoWebhookTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(
            name="Coffee Mug", description="A sturdy ceramic mug.", price=10000,
            stock_quantity=5, images=["https://cdn.example.com/mug.jpg"],
        )
        gateway = MagicMock(spec=PaymongoClient)
        gateway.create_checkout_session.return_value = CheckoutSession(
            "https://checkout.paymongo.test/cs_1", "cs_1", "pi_1"
        )
        payload = {
            "fullName": "Juan Dela Cruz",
            "email": "juan@example.com",
            "phone": "+639171234567",
            "shippingAddress": {
                "street": "123 Rizal Street", "barangay": "San Roque", "cityMunicipality": "Quezon City",
                "province": "Metro Manila", "postalCode": "1100",
            },
            "orderItems": [{"productId": self.product.pk, "quantity": 2}],
        }
        self.order = create_order(payload, gateway=gateway).order

    def _post(self, raw: bytes, header=None, timestamp="1700000000"):
        if header is None:
            header = f"t={timestamp},s={compute_signature(timestamp, raw, SECRET)}"
        return self.client.post(
            reverse("orders:paymongo_webhook"),
            data=raw,
            content_type="application/json",
            HTTP_PAYMONGO_SIGNATURE=header,
        )

    def _post_event(self, event):
        return self._post(json.dumps(event).encode("utf-8"))

    def test_paid_event_confirms_order_once(self):
        self.assertEqual(self.order.total_amount, 20000)

        with self.captureOnCommitCallbacks(execute=True):
            resp = self._post_event(paid_event(self.order))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"received": True})
        self.order.refresh_from_db()
        self.product.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PAYMENT_CONFIRMED)
        self.assertEqual(self.order.payment_status, PAYMENT_PAID)
        self.assertEqual(self.order.payment_method, "gcash")
        self.assertEqual(self.order.payment_id, "pay_1")
        self.assertEqual(self.order.paid_at, datetime.fromtimestamp(PAID_AT, tz=timezone.utc))
        self.assertEqual(self.product.stock_quantity, 3)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["juan@example.com"])
        self.assertIn(self.order.order_id, mail.outbox[0].subject)

        # The gateway may deliver the same event again
        with self.captureOnCommitCallbacks(execute=True):
            replay = self._post_event(paid_event(self.order))

        self.assertEqual(replay.status_code, 200)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)
        self.assertEqual(len(mail.outbox), 1)

    def test_replayed_event_reports_duplicate(self):
        event = paid_event(self.order)
        self.assertEqual(handle_payment_event(event), WebhookOutcome.CONFIRMED)
        self.assertEqual(handle_payment_event(event), WebhookOutcome.DUPLICATE)

    @override_settings(ORDERS_ADMIN_EMAILS="ops@example.com, OPS@example.com")
    def test_admins_are_notified_once(self):
        with self.captureOnCommitCallbacks(execute=True):
            self._post_event(paid_event(self.order))
        self.assertEqual([m.to for m in mail.outbox], [["juan@example.com"], ["ops@example.com"]])

    def test_confirmation_email_failure_still_acknowledged(self):
        with patch("orders.emails.EmailMultiAlternatives.send", side_effect=OSError("smtp down")):
            with self.captureOnCommitCallbacks(execute=True):
                resp = self._post_event(paid_event(self.order))
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PAYMENT_CONFIRMED)

    def test_tampered_body_is_rejected(self):
        raw = json.dumps(paid_event(self.order)).encode("utf-8")
        header = f"t=1700000000,s={compute_signature('1700000000', raw, SECRET)}"
        tampered = raw.replace(b"gcash", b"cash!")

        with self.assertLogs("orders.services", level="WARNING"):
            resp = self._post(tampered, header=header)

        self.assertEqual(resp.status_code, 403)
        self.order.refresh_from_db()
        self.product.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PENDING_PAYMENT)
        self.assertEqual(self.product.stock_quantity, 5)

    def test_missing_signature(self):
        resp = self._post(json.dumps(paid_event(self.order)).encode("utf-8"), header="")
        self.assertEqual(resp.status_code, 400)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PENDING_PAYMENT)

    def test_malformed_signature_header(self):
        resp = self._post(b"{}", header="garbage")
        self.assertEqual(resp.status_code, 400)

    @override_settings(PAYMONGO_WEBHOOK_SECRET="")
    def test_missing_webhook_secret_is_server_error(self):
        resp = self._post(b"{}", header="t=1,s=abc")
        self.assertEqual(resp.status_code, 500)

    def test_get_not_allowed(self):
        self.assertEqual(self.client.get(reverse("orders:paymongo_webhook")).status_code, 405)

    def test_failed_event_marks_pending_order_failed(self):
        resp = self._post_event(failed_event("pi_1"))

        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PAYMENT_FAILED)
        note = self.order.notes.get()
        self.assertEqual(note.kind, OrderNote.KIND_SYSTEM)
        self.assertEqual(note.status, OrderStatus.PAYMENT_FAILED)
        self.assertEqual(
            note.text, "Payment failed: The card was declined. (Code: card_declined. Payment ID: pay_9)"
        )

    def test_failed_event_after_confirmation_is_a_no_op(self):
        handle_payment_event(paid_event(self.order))

        with self.assertLogs("orders.services", level="INFO") as logs:
            resp = self._post_event(failed_event("pi_1"))

        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PAYMENT_CONFIRMED)
        self.assertFalse(self.order.notes.exists())
        self.assertTrue(any("No action taken" in line for line in logs.output))

    def test_failed_event_for_unknown_intent_is_acknowledged(self):
        with self.assertLogs("orders.services", level="ERROR"):
            resp = self._post_event(failed_event("pi_unknown"))
        self.assertEqual(resp.status_code, 200)

    def test_paid_event_for_unknown_order_is_acknowledged(self):
        event = paid_event(self.order)
        event["data"]["attributes"]["data"]["attributes"]["metadata"]["internal_order_id"] = "999999"
        with self.assertLogs("orders.services", level="ERROR"):
            resp = self._post_event(event)
        self.assertEqual(resp.status_code, 200)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)

    def test_unknown_event_type_is_ignored(self):
        event = paid_event(self.order)
        event["data"]["attributes"]["type"] = "source.chargeable"
        self.assertEqual(self._post_event(event).status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PENDING_PAYMENT)

    def test_invalid_json_after_valid_signature_is_acknowledged(self):
        self.assertEqual(self._post(b"{not json").status_code, 200)

    def test_processing_error_is_logged_and_acknowledged(self):
        with patch("orders.services.confirm_payment", side_effect=RuntimeError("db exploded")):
            with self.assertLogs("orders.services", level="ERROR") as logs:
                resp = self._post_event(paid_event(self.order))
        self.assertEqual(resp.status_code, 200)
        self.assertIn("processing error", logs.output[0])

    def test_concurrent_orders_oversell_is_floored(self):
        other = Order.objects.get(pk=self.order.pk)
        other.pk = None
        other.order_id = "20260101-000000-OTHER1"
        other.save()
        other.items.create(product=self.product, name="Coffee Mug", price_at_purchase=10000, quantity=4)

        handle_payment_event(paid_event(self.order))
        with self.assertLogs("orders.services", level="WARNING"):
            handle_payment_event(paid_event(other, event_id="evt_paid_2"))

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 0)
