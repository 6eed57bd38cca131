# orders/services.py
"""Order lifecycle: checkout, payment reconciliation and admin status changes.

Correctness under concurrency rests on the database: order rows are locked
with ``select_for_update`` while a payment outcome is applied, and stock is
decremented by a single UPDATE that floors at zero. No in-process locking.
"""
import enum
import json
import logging
from typing import NamedTuple, Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from catalog.services import decrement_stock, find_product
from payments.integrations.paymongo import (
    CheckoutSession, PaymongoClient, PaymongoError, SignatureError, verify_signature,
)

from .emails import send_order_confirmation, send_status_update
from .errors import (
    DuplicateOrderId, InsufficientStock, InvalidOrderRequest, OrderNotFound, PaymentGatewayError,
    ProductInactive, ProductNotFound, SignatureVerificationFailed, UnchangedStatus,
)
from .forms import CheckoutForm
from .models import (
    PAYMENT_AWAITING_GATEWAY, PAYMENT_FAILED, PAYMENT_PAID, SHIPPED_STATUSES,
    Order, OrderItem, OrderNote, OrderStatus, is_standard_transition,
)
from .utils import from_epoch, generate_order_id

logger = logging.getLogger(__name__)

EVENT_PAYMENT_PAID = "checkout_session.payment.paid"
EVENT_PAYMENT_FAILED = "payment.failed"

ORDER_ID_ATTEMPTS = 5
GATEWAY_AUTHOR = "paymongo"


class WebhookOutcome(str, enum.Enum):
    CONFIRMED = "confirmed"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    STALE = "stale"
    UNRESOLVED = "unresolved"
    IGNORED = "ignored"
    MALFORMED = "malformed"
    PENDING = "pending"
    ERROR = "error"


class CheckoutResult(NamedTuple):
    order: Order
    checkout_url: str
    checkout_session_id: str


class StatusUpdate(NamedTuple):
    order: Order
    changed: bool
    flagged: bool


# ---------- Checkout ----------

def _snapshot_items(requested):
    """Validate each cart line in order, failing on the first bad one."""
    snapshots = []
    for product_id, quantity in requested:
        product = find_product(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        if not product.is_active:
            raise ProductInactive(product)
        if product.stock_quantity < quantity:
            raise InsufficientStock(product, quantity)
        snapshots.append({
            "product": product,
            "name": product.name,
            "price_at_purchase": product.price,
            "quantity": quantity,
            "image": product.primary_image,
        })
    return snapshots


def _insert_order(customer: dict, snapshots, total: int) -> Order:
    order_id = generate_order_id()
    try:
        with transaction.atomic():
            order = Order.objects.create(
                order_id=order_id,
                total_amount=total,
                status=OrderStatus.PENDING_PAYMENT,
                country=getattr(settings, "STORE_COUNTRY", "Philippines"),
                **customer,
            )
            OrderItem.objects.bulk_create([OrderItem(order=order, **snap) for snap in snapshots])
    except IntegrityError:
        if Order.objects.filter(order_id=order_id).exists():
            raise DuplicateOrderId(order_id)
        raise
    return order


def _persist_order(customer: dict, snapshots, total: int) -> Order:
    for attempt in range(1, ORDER_ID_ATTEMPTS + 1):
        try:
            return _insert_order(customer, snapshots, total)
        except DuplicateOrderId as e:
            logger.warning("Order id collision on %s (attempt %s)", e.order_id, attempt)
            if attempt == ORDER_ID_ATTEMPTS:
                raise


def _checkout_request(order: Order) -> dict:
    app_url = getattr(settings, "APP_URL", "").rstrip("/")
    items = order.items.all()
    return {
        "line_items": [
            {"name": item.name, "amount": item.price_at_purchase, "quantity": item.quantity}
            for item in items
        ],
        "billing": {
            "name": order.full_name,
            "email": order.email,
            "phone": order.phone,
            "address": {
                "line1": order.street,
                "line2": order.barangay,
                "city": order.city,
                "state": order.province,
                "postal_code": order.postal_code,
                "country": getattr(settings, "STORE_COUNTRY_CODE", "PH"),
            },
        },
        "success_url": f"{app_url}/checkout/success?order_id_internal={order.pk}",
        "cancel_url": f"{app_url}/checkout/cancel?order_id_internal={order.pk}",
        # The internal id is the correlation key for the paid event
        "metadata": {"internal_order_id": str(order.pk), "customer_email": order.email},
        "description": f"Payment for Order #{order.order_id}",
    }


def create_order(payload: dict, *, gateway: Optional[PaymongoClient] = None) -> CheckoutResult:
    """Validate a cart, persist a pending order and open a hosted checkout.

    Nothing is written when validation fails. Once the order is saved it is
    kept even if the gateway call fails; the caller gets a
    :class:`PaymentGatewayError` naming the saved order. Stock is not touched
    here, only when payment is confirmed.
    """
    form = CheckoutForm(data=payload if isinstance(payload, dict) else {})
    if not form.is_valid():
        raise InvalidOrderRequest(form.errors.get_json_data())

    snapshots = _snapshot_items(form.cleaned_data["orderItems"])
    total = round(sum(s["price_at_purchase"] * s["quantity"] for s in snapshots))
    order = _persist_order(form.customer(), snapshots, total)
    logger.info("Order %s created (internal %s), total=%s", order.order_id, order.pk, total)

    gateway = gateway or PaymongoClient.from_settings()
    try:
        session: CheckoutSession = gateway.create_checkout_session(**_checkout_request(order))
    except PaymongoError as e:
        logger.error("Checkout session failed for order %s (internal %s): %s", order.order_id, order.pk, e)
        raise PaymentGatewayError(order, str(e))

    order.checkout_session_id = session.checkout_session_id
    order.payment_intent_id = session.payment_intent_id
    order.payment_status = PAYMENT_AWAITING_GATEWAY
    order.save(update_fields=["checkout_session_id", "payment_intent_id", "payment_status", "updated_at"])
    logger.info(
        "Order %s linked to checkout %s / intent %s",
        order.order_id, session.checkout_session_id, session.payment_intent_id or "-",
    )
    return CheckoutResult(order, session.checkout_url, session.checkout_session_id)


# ---------- Payment reconciliation ----------

def _order_pk(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _payment_details(session: dict, fallback_paid_at=None) -> dict:
    attrs = session.get("attributes") or {}
    intent = attrs.get("payment_intent") or {}
    if isinstance(intent, str):
        intent = {"id": intent}
    intent_attrs = intent.get("attributes") or {}
    payments = intent_attrs.get("payments") or attrs.get("payments") or []
    payment = payments[0] if payments else {}
    pay_attrs = payment.get("attributes") or {}

    method = (
        (pay_attrs.get("source") or {}).get("type")
        or ((intent_attrs.get("payment_method_options") or {}).get("card") or {}).get("brand")
        or "unknown"
    )
    paid_at = from_epoch(
        intent_attrs.get("paid_at") or pay_attrs.get("paid_at") or attrs.get("paid_at") or fallback_paid_at
    )
    return {
        "checkout_session_id": session.get("id") or "",
        "payment_intent_id": intent.get("id") or "",
        "payment_id": payment.get("id") or "",
        "payment_method": str(method)[:32],
        "paid_at": paid_at or timezone.now(),
    }


def _decrement_items(order: Order) -> None:
    for item in order.items.all():
        if item.product_id is None:
            logger.error("Order %s item '%s' has no product; stock not decremented.", order.order_id, item.name)
            continue
        try:
            with transaction.atomic():
                result = decrement_stock(item.product_id, item.quantity)
        except DatabaseError:
            logger.exception("Error decrementing stock for product %s in order %s", item.product_id, order.order_id)
            continue
        if result is None:
            logger.error("Product %s not found during stock decrement for order %s.", item.product_id, order.order_id)
        elif result.clamped:
            logger.warning("Product %s oversold by order %s; stock floored at 0.", item.product_id, order.order_id)


def confirm_payment(order_pk, session: dict, *, event_id: str = "", fallback_paid_at=None,
                    notify: bool = True) -> WebhookOutcome:
    """Mark an order paid and take its items out of stock, exactly once.

    ``session`` is the gateway's checkout session resource. Replays of the
    same confirmation are recognised under the row lock and change nothing.
    """
    with transaction.atomic():
        order = Order.objects.select_for_update().filter(pk=order_pk).first()
        if order is None:
            logger.error("Order with internal ID %s not found for paid event %s", order_pk, event_id)
            return WebhookOutcome.UNRESOLVED

        if order.is_paid:
            logger.info("Order %s (internal %s) already processed as paid. Event %s", order.order_id, order.pk, event_id)
            return WebhookOutcome.DUPLICATE

        if order.status != OrderStatus.PENDING_PAYMENT:
            logger.warning(
                "Order %s not in PENDING_PAYMENT (current: %s). Applying payment anyway. Event %s",
                order.order_id, order.status, event_id,
            )

        details = _payment_details(session, fallback_paid_at)
        order.status = OrderStatus.PAYMENT_CONFIRMED
        order.checkout_session_id = details["checkout_session_id"] or order.checkout_session_id
        order.payment_intent_id = details["payment_intent_id"] or order.payment_intent_id
        order.payment_id = details["payment_id"] or order.payment_id
        order.payment_method = details["payment_method"]
        order.paid_at = details["paid_at"]
        order.payment_status = PAYMENT_PAID

        _decrement_items(order)
        order.save()
        logger.info("Order %s (internal %s) updated to PAYMENT_CONFIRMED. Event %s", order.order_id, order.pk, event_id)

        if notify:
            transaction.on_commit(lambda: send_order_confirmation(order))
    return WebhookOutcome.CONFIRMED


def record_payment_failure(resource: dict, *, event_id: str = "") -> WebhookOutcome:
    attrs = resource.get("attributes") or {}
    intent_id = attrs.get("payment_intent_id")
    if not intent_id:
        logger.error(
            "payment_intent_id missing from payment.failed event %s; cannot link to an order. Data: %s",
            event_id, json.dumps(resource)[:2000],
        )
        return WebhookOutcome.UNRESOLVED

    with transaction.atomic():
        order = Order.objects.select_for_update().filter(payment_intent_id=intent_id).first()
        if order is None:
            logger.error(
                "Order not found for payment intent %s (payment.failed event %s). Data: %s",
                intent_id, event_id, json.dumps(resource)[:2000],
            )
            return WebhookOutcome.UNRESOLVED

        if order.status != OrderStatus.PENDING_PAYMENT:
            logger.info(
                "Order %s not in PENDING_PAYMENT (current: %s). No action taken for payment.failed event %s.",
                order.order_id, order.status, event_id,
            )
            return WebhookOutcome.STALE

        code = attrs.get("failed_code") or "N/A"
        message = attrs.get("failed_message")
        text = f"Payment failed: {message}" if message else "Payment failed."
        text += f" (Code: {code}. Payment ID: {resource.get('id') or 'N/A'})"

        order.status = OrderStatus.PAYMENT_FAILED
        order.payment_status = PAYMENT_FAILED
        order.save(update_fields=["status", "payment_status", "updated_at"])
        OrderNote.objects.create(
            order=order, status=OrderStatus.PAYMENT_FAILED, author=GATEWAY_AUTHOR,
            kind=OrderNote.KIND_SYSTEM, text=text,
        )
    logger.info("Order %s marked PAYMENT_FAILED via payment intent %s.", order.order_id, intent_id)
    return WebhookOutcome.FAILED


def handle_payment_event(event: dict) -> WebhookOutcome:
    """Dispatch a verified gateway event by type."""
    data = event.get("data") or {}
    event_id = data.get("id") or ""
    attrs = data.get("attributes") or {}
    event_type = attrs.get("type") or ""
    resource = attrs.get("data")
    logger.info("Received PayMongo event: type=%s id=%s", event_type, event_id)

    if not isinstance(resource, dict) or not resource.get("attributes"):
        logger.error("Missing event resource data for event %s (type %s)", event_id, event_type)
        return WebhookOutcome.MALFORMED

    if event_type == EVENT_PAYMENT_PAID:
        metadata = resource["attributes"].get("metadata") or {}
        order_pk = _order_pk(metadata.get("internal_order_id"))
        if order_pk is None:
            logger.error("internal_order_id missing from metadata for %s, event %s", event_type, event_id)
            return WebhookOutcome.UNRESOLVED
        return confirm_payment(order_pk, resource, event_id=event_id, fallback_paid_at=attrs.get("updated_at"))

    if event_type == EVENT_PAYMENT_FAILED:
        return record_payment_failure(resource, event_id=event_id)

    logger.info("Unhandled event type: %s. Event %s", event_type, event_id)
    return WebhookOutcome.IGNORED


def process_webhook(raw_body: bytes, signature_header: str) -> WebhookOutcome:
    """Verify and apply one webhook delivery.

    Raises :class:`SignatureVerificationFailed` for unauthenticated payloads.
    Anything that goes wrong after verification is logged and reported as an
    outcome so the endpoint can still acknowledge the delivery.
    """
    secret = getattr(settings, "PAYMONGO_WEBHOOK_SECRET", "")
    if not secret:
        logger.critical("PAYMONGO_WEBHOOK_SECRET not configured; refusing webhook")
        raise ImproperlyConfigured("PAYMONGO_WEBHOOK_SECRET setting is required to verify webhooks")

    try:
        verify_signature(raw_body, signature_header, secret)
    except SignatureError as e:
        logger.warning("Rejected webhook (%s): %s", e.reason, e)
        raise SignatureVerificationFailed(e.reason, str(e))

    try:
        event = json.loads(raw_body.decode("utf-8"))
    except ValueError:
        logger.error("Webhook payload is not valid JSON; acknowledging without processing")
        return WebhookOutcome.MALFORMED
    if not isinstance(event, dict):
        logger.error("Webhook payload is not a JSON object; acknowledging without processing")
        return WebhookOutcome.MALFORMED

    try:
        return handle_payment_event(event)
    except Exception:
        logger.exception("Webhook event processing error for event %s", (event.get("data") or {}).get("id"))
        return WebhookOutcome.ERROR


def _session_is_paid(session: dict) -> bool:
    attrs = session.get("attributes") or {}
    intent = attrs.get("payment_intent") or {}
    if isinstance(intent, dict) and (intent.get("attributes") or {}).get("status") == "succeeded":
        return True
    return any((p.get("attributes") or {}).get("status") == "paid" for p in attrs.get("payments") or [])


def reconcile_order(order: Order, *, gateway: Optional[PaymongoClient] = None) -> WebhookOutcome:
    """Poll the gateway for a pending order and confirm it if it was paid.

    Covers webhook deliveries that never arrived. Raises ``PaymongoError``
    when the gateway cannot be reached.
    """
    if not order.checkout_session_id:
        return WebhookOutcome.UNRESOLVED
    gateway = gateway or PaymongoClient.from_settings()
    session = gateway.retrieve_checkout_session(order.checkout_session_id)
    if not _session_is_paid(session):
        return WebhookOutcome.PENDING
    return confirm_payment(order.pk, session, event_id=f"reconcile:{order.checkout_session_id}")


# ---------- Admin ----------

def update_order_status(order_pk, *, status: str, note: str = "", author: str = "",
                        courier: str = "", tracking_number: str = "") -> StatusUpdate:
    """Apply an admin status change.

    Any status may be set; moves outside the usual lifecycle are flagged in
    the log and the result, not refused. Notes are appended to the order's
    note log with the target status. The customer is emailed only when the
    status actually changed, and a failed email never fails the update.
    """
    note = (note or "").strip()
    courier = (courier or "").strip()
    tracking_number = (tracking_number or "").strip()

    with transaction.atomic():
        order = Order.objects.select_for_update().filter(pk=order_pk).first()
        if order is None:
            raise OrderNotFound(order_pk)

        old_status = order.status
        shipping_changed = (courier and courier != order.courier) or (
            tracking_number and tracking_number != order.tracking_number
        )
        if status == old_status and not note and not shipping_changed:
            raise UnchangedStatus(old_status)

        changed = status != old_status
        flagged = changed and not is_standard_transition(old_status, status)
        if flagged:
            logger.warning(
                "Order %s moved off the standard lifecycle: %s -> %s (by %s)",
                order.order_id, old_status, status, author or "unknown",
            )

        now = timezone.now()
        order.status = status
        if courier:
            order.courier = courier
        if tracking_number:
            order.tracking_number = tracking_number
        if status in SHIPPED_STATUSES and not order.shipped_at:
            order.shipped_at = now
        if status == OrderStatus.DELIVERED and not order.delivered_at:
            order.delivered_at = now
        order.save()

        if note:
            OrderNote.objects.create(
                order=order, status=status, author=author, kind=OrderNote.KIND_ADMIN, text=note,
            )

        if changed:
            transaction.on_commit(lambda: send_status_update(order, status, note))

    logger.info("Order %s status %s -> %s by %s", order.order_id, old_status, status, author or "unknown")
    return StatusUpdate(order, changed, flagged)
