import json
import re
from datetime import datetime, timezone
from io import StringIO
from unittest.mock import MagicMock, patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.db import models
from django.test import TestCase
from django.urls import reverse

from catalog.models import Product
from payments.integrations.paymongo import CheckoutSession, PaymongoClient, PaymongoError
from shopfront.auth import issue_admin_token

from .errors import (
    InsufficientStock, InvalidOrderRequest, OrderNotFound, PaymentGatewayError,
    ProductInactive, ProductNotFound, UnchangedStatus,
)
from .models import PAYMENT_AWAITING_GATEWAY, Order, OrderNote, OrderStatus
from .services import create_order, update_order_status
from .utils import ALNUM, format_amount, generate_order_id

IMAGE = "https://cdn.example.com/item.jpg"


def make_product(**kwargs):
    defaults = {
        "name": "Coffee Mug",
        "description": "A sturdy ceramic mug.",
        "price": 10000,
        "stock_quantity": 5,
        "images": [IMAGE],
    }
    defaults.update(kwargs)
    return Product.objects.create(**defaults)


def checkout_payload(items, **overrides):
    payload = {
        "fullName": "Juan Dela Cruz",
        "email": "Juan@Example.com",
        "phone": "09171234567",
        "shippingAddress": {
            "street": "123 Rizal Street",
            "barangay": "San Roque",
            "cityMunicipality": "Quezon City",
            "province": "Metro Manila",
            "postalCode": "1100",
        },
        "orderItems": items,
    }
    payload.update(overrides)
    return payload


def fake_gateway(**session):
    gateway = MagicMock(spec=PaymongoClient)
    gateway.create_checkout_session.return_value = CheckoutSession(
        session.get("checkout_url", "https://checkout.paymongo.test/cs_1"),
        session.get("checkout_session_id", "cs_1"),
        session.get("payment_intent_id", "pi_1"),
    )
    return gateway


class CreateOrderTests(TestCase):
    def setUp(self):
        self.mug = make_product(name="Coffee Mug", price=10000, stock_quantity=5)
        self.tumbler = make_product(name="Tumbler", price=2550, stock_quantity=10)

    def test_creates_pending_order_and_returns_checkout_url(self):
        gateway = fake_gateway()

        result = create_order(checkout_payload([{"productId": self.mug.pk, "quantity": 2}]), gateway=gateway)

        order = Order.objects.get(pk=result.order.pk)
        self.assertEqual(result.checkout_url, "https://checkout.paymongo.test/cs_1")
        self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT)
        self.assertEqual(order.total_amount, 20000)
        self.assertEqual(order.email, "juan@example.com")
        self.assertEqual((order.first_name, order.last_name), ("Juan", "Dela Cruz"))
        self.assertEqual(order.checkout_session_id, "cs_1")
        self.assertEqual(order.payment_intent_id, "pi_1")
        self.assertEqual(order.payment_status, PAYMENT_AWAITING_GATEWAY)
        # Stock only moves once payment is confirmed
        self.mug.refresh_from_db()
        self.assertEqual(self.mug.stock_quantity, 5)

    def test_gateway_receives_correlation_metadata_and_callback_urls(self):
        gateway = fake_gateway()

        result = create_order(checkout_payload([{"productId": self.mug.pk, "quantity": 2}]), gateway=gateway)

        kwargs = gateway.create_checkout_session.call_args.kwargs
        pk = result.order.pk
        self.assertEqual(kwargs["metadata"]["internal_order_id"], str(pk))
        self.assertEqual(kwargs["line_items"], [{"name": "Coffee Mug", "amount": 10000, "quantity": 2}])
        self.assertEqual(kwargs["success_url"], f"https://shop.example.com/checkout/success?order_id_internal={pk}")
        self.assertEqual(kwargs["cancel_url"], f"https://shop.example.com/checkout/cancel?order_id_internal={pk}")
        self.assertEqual(kwargs["billing"]["address"]["country"], "PH")

    def test_total_is_sum_of_snapshotted_lines(self):
        result = create_order(checkout_payload([
            {"productId": self.mug.pk, "quantity": 1},
            {"productId": self.tumbler.pk, "quantity": 3},
        ]), gateway=fake_gateway())

        order = result.order
        self.assertEqual(order.total_amount, 10000 + 3 * 2550)
        self.assertEqual(order.total_amount, order.items_total)

    def test_total_above_32_bit_range_is_stored(self):
        piano = make_product(name="Grand Piano", price=100_000_000, stock_quantity=30)

        result = create_order(checkout_payload([{"productId": piano.pk, "quantity": 30}]), gateway=fake_gateway())

        self.assertIsInstance(Order._meta.get_field("total_amount"), models.PositiveBigIntegerField)
        order = Order.objects.get(pk=result.order.pk)
        self.assertEqual(order.total_amount, 3_000_000_000)

    def test_items_are_snapshots(self):
        result = create_order(checkout_payload([{"productId": self.mug.pk, "quantity": 1}]), gateway=fake_gateway())

        self.mug.name = "Renamed Mug"
        self.mug.price = 99999
        self.mug.save()

        item = result.order.items.get()
        self.assertEqual((item.name, item.price_at_purchase, item.image), ("Coffee Mug", 10000, IMAGE))
        item.quantity = 5
        with self.assertRaises(ValueError):
            item.save()

    def test_repeated_lines_are_merged_before_stock_check(self):
        with self.assertRaises(InsufficientStock):
            create_order(checkout_payload([
                {"productId": self.mug.pk, "quantity": 3},
                {"productId": self.mug.pk, "quantity": 3},
            ]), gateway=fake_gateway())
        self.assertEqual(Order.objects.count(), 0)

    def test_unknown_product_fails_fast_without_writes(self):
        gateway = fake_gateway()
        with self.assertRaises(ProductNotFound):
            create_order(checkout_payload([
                {"productId": self.mug.pk, "quantity": 1},
                {"productId": 999999, "quantity": 1},
            ]), gateway=gateway)
        self.assertEqual(Order.objects.count(), 0)
        gateway.create_checkout_session.assert_not_called()

    def test_inactive_product(self):
        self.mug.is_active = False
        self.mug.save()
        with self.assertRaises(ProductInactive):
            create_order(checkout_payload([{"productId": self.mug.pk, "quantity": 1}]), gateway=fake_gateway())

    def test_validation_errors(self):
        with self.assertRaises(InvalidOrderRequest) as ctx:
            create_order(checkout_payload([], phone="12345", email="not-an-email"), gateway=fake_gateway())
        self.assertIn("phone", ctx.exception.errors)
        self.assertIn("email", ctx.exception.errors)
        self.assertIn("orderItems", ctx.exception.errors)
        self.assertEqual(Order.objects.count(), 0)

    def test_bad_postal_code(self):
        payload = checkout_payload([{"productId": self.mug.pk, "quantity": 1}])
        payload["shippingAddress"]["postalCode"] = "11000"
        with self.assertRaises(InvalidOrderRequest) as ctx:
            create_order(payload, gateway=fake_gateway())
        self.assertIn("shippingAddress", ctx.exception.errors)

    def test_gateway_failure_keeps_pending_order(self):
        gateway = MagicMock(spec=PaymongoClient)
        gateway.create_checkout_session.side_effect = PaymongoError("Gateway request failed: timed out")

        with self.assertRaises(PaymentGatewayError) as ctx:
            create_order(checkout_payload([{"productId": self.mug.pk, "quantity": 2}]), gateway=gateway)

        order = Order.objects.get()
        self.assertEqual(ctx.exception.order_id, order.order_id)
        self.assertEqual(ctx.exception.internal_order_id, order.pk)
        self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT)
        self.assertEqual((order.checkout_session_id, order.payment_intent_id, order.payment_status), ("", "", ""))
        self.assertEqual(order.items.count(), 1)


class CreateOrderViewTests(TestCase):
    def setUp(self):
        self.mug = make_product()

    def _post(self, payload):
        return self.client.post("/api/orders", data=json.dumps(payload), content_type="application/json")

    @patch("orders.services.PaymongoClient.from_settings")
    def test_created(self, mock_from_settings):
        mock_from_settings.return_value = fake_gateway()

        resp = self._post(checkout_payload([{"productId": self.mug.pk, "quantity": 1}]))

        self.assertEqual(resp.status_code, 201)
        order = Order.objects.get()
        self.assertEqual(resp.json()["checkoutUrl"], "https://checkout.paymongo.test/cs_1")
        self.assertEqual(resp.json()["orderId"], order.order_id)
        self.assertEqual(resp.json()["internalOrderId"], order.pk)

    def test_insufficient_stock_is_400(self):
        resp = self._post(checkout_payload([{"productId": self.mug.pk, "quantity": 50}]))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "insufficient_stock")

    @patch("orders.services.PaymongoClient.from_settings")
    def test_gateway_error_is_502_with_order_ids(self, mock_from_settings):
        gateway = MagicMock(spec=PaymongoClient)
        gateway.create_checkout_session.side_effect = PaymongoError("Gateway error 500: boom", status_code=500)
        mock_from_settings.return_value = gateway

        resp = self._post(checkout_payload([{"productId": self.mug.pk, "quantity": 1}]))

        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json()["orderId"], Order.objects.get().order_id)

    def test_invalid_json(self):
        resp = self.client.post("/api/orders", data="{not json", content_type="application/json")
        self.assertEqual(resp.status_code, 400)


def make_order(**kwargs):
    defaults = {
        "order_id": generate_order_id(),
        "first_name": "Juan",
        "last_name": "Dela Cruz",
        "email": "juan@example.com",
        "phone": "09171234567",
        "street": "123 Rizal Street",
        "barangay": "San Roque",
        "city": "Quezon City",
        "province": "Metro Manila",
        "postal_code": "1100",
        "total_amount": 20000,
    }
    defaults.update(kwargs)
    return Order.objects.create(**defaults)


class UpdateOrderStatusTests(TestCase):
    def test_unchanged_status_without_note_is_rejected(self):
        order = make_order(status=OrderStatus.PROCESSING)
        with self.assertRaises(UnchangedStatus):
            update_order_status(order.pk, status=OrderStatus.PROCESSING)

    def test_same_status_with_note_appends_note_without_email(self):
        order = make_order(status=OrderStatus.PROCESSING)

        with self.captureOnCommitCallbacks(execute=True):
            result = update_order_status(order.pk, status=OrderStatus.PROCESSING, note="Packed.", author="admin")

        self.assertFalse(result.changed)
        self.assertEqual(order.notes.get().text, "Packed.")
        self.assertEqual(len(mail.outbox), 0)

    def test_notes_are_appended_in_order(self):
        order = make_order(status=OrderStatus.PAYMENT_CONFIRMED)
        update_order_status(order.pk, status=OrderStatus.PROCESSING, note="Picking items", author="admin")
        update_order_status(order.pk, status=OrderStatus.SHIPPED_LOCAL, note="Handed to courier", author="admin")

        notes = list(order.notes.values_list("status", "text", "kind"))
        self.assertEqual(notes, [
            (OrderStatus.PROCESSING, "Picking items", OrderNote.KIND_ADMIN),
            (OrderStatus.SHIPPED_LOCAL, "Handed to courier", OrderNote.KIND_ADMIN),
        ])

    def test_shipping_sets_dates_and_emails_customer(self):
        order = make_order(status=OrderStatus.PROCESSING)

        with self.captureOnCommitCallbacks(execute=True):
            result = update_order_status(
                order.pk, status=OrderStatus.SHIPPED_LOCAL, courier="LBC", tracking_number="LBC123",
            )

        order.refresh_from_db()
        self.assertTrue(result.changed)
        self.assertFalse(result.flagged)
        self.assertIsNotNone(order.shipped_at)
        self.assertEqual(order.tracking_number, "LBC123")
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("Has Shipped", mail.outbox[0].subject)
        self.assertIn("LBC123", mail.outbox[0].body)

    def test_non_standard_transition_is_flagged_not_refused(self):
        order = make_order(status=OrderStatus.DELIVERED)

        with self.assertLogs("orders.services", level="WARNING"):
            result = update_order_status(order.pk, status=OrderStatus.PENDING_PAYMENT, note="Reopened")

        order.refresh_from_db()
        self.assertTrue(result.flagged)
        self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT)

    def test_email_failure_does_not_fail_update(self):
        order = make_order(status=OrderStatus.SHIPPED_LOCAL)

        with patch("orders.emails.EmailMultiAlternatives.send", side_effect=OSError("smtp down")):
            with self.captureOnCommitCallbacks(execute=True):
                update_order_status(order.pk, status=OrderStatus.DELIVERED)

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.DELIVERED)
        self.assertIsNotNone(order.delivered_at)

    def test_status_without_template_sends_nothing(self):
        order = make_order(status=OrderStatus.PAYMENT_CONFIRMED)
        with self.captureOnCommitCallbacks(execute=True):
            update_order_status(order.pk, status=OrderStatus.REFUNDED)
        self.assertEqual(len(mail.outbox), 0)

    def test_unknown_order(self):
        with self.assertRaises(OrderNotFound):
            update_order_status(999999, status=OrderStatus.PROCESSING)


class AdminOrderApiTests(TestCase):
    def setUp(self):
        self.admin = get_user_model().objects.create_user("admin", "admin@example.com", "pw", is_staff=True)
        self.auth = {"HTTP_AUTHORIZATION": f"Bearer {issue_admin_token(self.admin)}"}

    def test_update_status(self):
        order = make_order(status=OrderStatus.PAYMENT_CONFIRMED)

        with self.captureOnCommitCallbacks(execute=True):
            resp = self.client.put(
                f"/api/admin/orders/{order.pk}",
                data=json.dumps({"status": "PROCESSING", "adminNote": "Started picking"}),
                content_type="application/json", **self.auth,
            )

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["order"]["orderStatus"], "PROCESSING")
        self.assertEqual(body["order"]["notes"][0]["author"], "admin")
        self.assertFalse(body["transitionFlagged"])
        self.assertEqual(len(mail.outbox), 1)

    def test_invalid_status(self):
        order = make_order()
        resp = self.client.put(f"/api/admin/orders/{order.pk}", data=json.dumps({"status": "LOST"}),
                               content_type="application/json", **self.auth)
        self.assertEqual(resp.status_code, 400)

    def test_note_too_long(self):
        order = make_order()
        resp = self.client.put(f"/api/admin/orders/{order.pk}",
                               data=json.dumps({"status": "PROCESSING", "adminNote": "x" * 501}),
                               content_type="application/json", **self.auth)
        self.assertEqual(resp.status_code, 400)

    def test_unchanged_status(self):
        order = make_order(status=OrderStatus.PROCESSING)
        resp = self.client.put(f"/api/admin/orders/{order.pk}", data=json.dumps({"status": "PROCESSING"}),
                               content_type="application/json", **self.auth)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "unchanged_status")

    def test_list_filters_by_status(self):
        make_order(status=OrderStatus.PROCESSING)
        make_order(status=OrderStatus.PENDING_PAYMENT)

        resp = self.client.get("/api/admin/orders?status=PROCESSING", **self.auth)

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["totalOrders"], 1)
        self.assertEqual(resp.json()["orders"][0]["orderStatus"], "PROCESSING")

    def test_list_requires_admin(self):
        self.assertEqual(self.client.get("/api/admin/orders").status_code, 401)

    def test_stats(self):
        make_product()
        make_order(status=OrderStatus.PROCESSING)

        resp = self.client.get("/api/admin/stats", **self.auth)

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["products"]["total"], 1)
        self.assertEqual(resp.json()["orders"]["byStatus"]["PROCESSING"], 1)


class OrderDjangoAdminTests(TestCase):
    def setUp(self):
        self.superuser = get_user_model().objects.create_superuser("root", "root@example.com", "pw")
        self.client.force_login(self.superuser)
        self.order = make_order(status=OrderStatus.PROCESSING)
        self.url = reverse("admin:orders_order_change", args=[self.order.pk])

    def test_change_page_is_view_only(self):
        resp = self.client.get(self.url)
        self.assertEqual(resp.status_code, 200)
        self.assertNotContains(resp, 'name="status"')

    def test_status_cannot_be_changed_from_the_admin_form(self):
        with self.captureOnCommitCallbacks(execute=True):
            resp = self.client.post(self.url, {
                "status": OrderStatus.DELIVERED,
                "items-TOTAL_FORMS": "0", "items-INITIAL_FORMS": "0",
                "notes-TOTAL_FORMS": "0", "notes-INITIAL_FORMS": "0",
            })

        self.assertEqual(resp.status_code, 403)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PROCESSING)
        self.assertFalse(self.order.notes.exists())
        self.assertEqual(len(mail.outbox), 0)

    def test_orders_cannot_be_added_or_deleted(self):
        self.assertEqual(self.client.get(reverse("admin:orders_order_add")).status_code, 403)
        self.assertEqual(self.client.post(reverse("admin:orders_order_delete", args=[self.order.pk])).status_code, 403)
        self.assertTrue(Order.objects.filter(pk=self.order.pk).exists())


class CustomerOrderApiTests(TestCase):
    def test_track_requires_matching_email(self):
        order = make_order()

        ok = self.client.post("/api/orders/track", data=json.dumps({"orderId": order.order_id, "email": "JUAN@example.com"}),
                              content_type="application/json")
        wrong = self.client.post("/api/orders/track", data=json.dumps({"orderId": order.order_id, "email": "x@example.com"}),
                                 content_type="application/json")

        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json()["order"]["orderId"], order.order_id)
        self.assertEqual(wrong.status_code, 404)

    def test_confirmation_hides_private_fields(self):
        order = make_order()

        resp = self.client.get(f"/api/orders/confirmation/{order.pk}")

        self.assertEqual(resp.status_code, 200)
        data = resp.json()["order"]
        self.assertNotIn("paymentDetails", data)
        self.assertNotIn("phone", data["customerDetails"])


class ReconcilePendingOrdersCommandTests(TestCase):
    @patch("orders.management.commands.reconcile_pending_orders.time.sleep")
    @patch("orders.management.commands.reconcile_pending_orders.PaymongoClient.from_settings")
    def test_confirms_paid_session(self, mock_from_settings, _sleep):
        product = make_product(stock_quantity=5)
        order = make_order(checkout_session_id="cs_1", payment_intent_id="pi_1")
        order.items.create(product=product, name=product.name, price_at_purchase=10000, quantity=2, image=IMAGE)
        Order.objects.filter(pk=order.pk).update(created_at=order.created_at.replace(year=2020))

        gateway = MagicMock(spec=PaymongoClient)
        gateway.retrieve_checkout_session.return_value = {
            "id": "cs_1",
            "attributes": {
                "payment_intent": {"id": "pi_1", "attributes": {"status": "succeeded"}},
                "payments": [{"id": "pay_1", "attributes": {"status": "paid", "source": {"type": "gcash"}}}],
            },
        }
        mock_from_settings.return_value = gateway

        out = StringIO()
        with self.captureOnCommitCallbacks(execute=True):
            call_command("reconcile_pending_orders", stdout=out)

        order.refresh_from_db()
        product.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAYMENT_CONFIRMED)
        self.assertEqual(order.payment_method, "gcash")
        self.assertEqual(product.stock_quantity, 3)
        self.assertIn(f"Confirmed {order.order_id}", out.getvalue())

    def test_nothing_to_reconcile(self):
        out = StringIO()
        call_command("reconcile_pending_orders", stdout=out)
        self.assertIn("No pending orders", out.getvalue())


class UtilsTests(TestCase):
    def test_order_id_format(self):
        self.assertRegex(generate_order_id(), re.compile(r"^\d{8}-\d{6}-[A-Z0-9]{6}$"))

    @patch("orders.utils.get_random_string", return_value="K3Z9QA")
    def test_order_id_suffix_uses_django_random_string(self, mock_random):
        now = datetime(2026, 10, 16, 20, 37, 1, tzinfo=timezone.utc)
        self.assertEqual(generate_order_id(now), "20261016-203701-K3Z9QA")
        mock_random.assert_called_once_with(6, allowed_chars=ALNUM)

    def test_format_amount(self):
        self.assertEqual(format_amount(123450), "PHP 1,234.50")
        self.assertEqual(format_amount(5), "PHP 0.05")
