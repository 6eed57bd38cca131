import logging
from typing import List, Optional

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

from .errors import NotificationDeliveryFailure
from .models import OrderStatus
from .utils import format_amount

logger = logging.getLogger(__name__)

STATUS_TEMPLATES = {
    OrderStatus.PROCESSING: ("emails/order_processing.txt", "Your {store} Order #{order_id} is Being Processed"),
    OrderStatus.SHIPPED_LOCAL: ("emails/order_shipped.txt", "Your {store} Order #{order_id} Has Shipped!"),
    OrderStatus.SHIPPED_INTERNATIONAL: ("emails/order_shipped.txt", "Your {store} Order #{order_id} Has Shipped!"),
    OrderStatus.DELIVERED: ("emails/order_delivered.txt", "Your {store} Order #{order_id} Has Been Delivered"),
    OrderStatus.CANCELLED_BY_ADMIN: ("emails/order_cancelled.txt", "Your {store} Order #{order_id} Has Been Cancelled"),
    OrderStatus.CANCELLED_BY_CUSTOMER: ("emails/order_cancelled.txt", "Your {store} Order #{order_id} Has Been Cancelled"),
}


def _fail_silently() -> bool:
    return getattr(settings, "EMAIL_FAIL_SILENTLY", False)


def _from_email() -> Optional[str]:
    return getattr(settings, "DEFAULT_FROM_EMAIL", None) or getattr(settings, "EMAIL_HOST_USER", None)


def _admin_recipients() -> List[str]:
    raw = getattr(settings, "ORDERS_ADMIN_EMAILS", "") or ""
    # Deduplicate while preserving order
    seen = set()
    uniq: List[str] = []
    for e in (e.strip() for e in raw.split(",")):
        if e and e.lower() not in seen:
            seen.add(e.lower())
            uniq.append(e)
    return uniq


def _context(order, **extra) -> dict:
    currency = getattr(settings, "STORE_CURRENCY", "PHP")
    items = [
        {
            "name": item.name,
            "quantity": item.quantity,
            "unit_price": format_amount(item.price_at_purchase, currency),
            "subtotal": format_amount(item.subtotal, currency),
        }
        for item in order.items.all()
    ]
    return {
        "order": order,
        "customer_name": order.full_name,
        "items": items,
        "total": format_amount(order.total_amount, currency),
        "store_name": getattr(settings, "STORE_NAME", "Shopfront"),
        **extra,
    }


def _deliver(subject: str, template: str, context: dict, recipients: List[str]) -> None:
    try:
        text = render_to_string(template, context)
        msg = EmailMultiAlternatives(subject, text, _from_email(), recipients)
        sent = msg.send(fail_silently=_fail_silently())
    except Exception as e:
        raise NotificationDeliveryFailure(f"Could not send '{subject}': {e}") from e
    if not sent:
        raise NotificationDeliveryFailure(f"Mail backend accepted no message for '{subject}'")


def send_order_confirmation(order) -> bool:
    """Email the customer (and admins, if configured) about a paid order.

    Never raises; returns whether the customer email went out.
    """
    if not order.email:
        logger.error("Order %s missing customer email for confirmation.", order.order_id)
        return False

    store = getattr(settings, "STORE_NAME", "Shopfront")
    context = _context(order)
    delivered = True
    try:
        _deliver(
            f"Order Confirmed: {store} - Order #{order.order_id}",
            "emails/order_confirmation.txt", context, [order.email],
        )
        logger.info("Order confirmation email sent for order %s", order.order_id)
    except NotificationDeliveryFailure:
        logger.exception("Failed to send order confirmation for %s", order.order_id)
        delivered = False

    admins = _admin_recipients()
    if admins:
        try:
            _deliver(
                f"New paid order: {order.order_id} - {context['total']}",
                "emails/order_admin_notification.txt", context, admins,
            )
        except NotificationDeliveryFailure:
            logger.exception("Failed to send admin notification for %s", order.order_id)
    return delivered


def send_status_update(order, status: str, note: str = "") -> bool:
    """Email the customer about a status change. Never raises."""
    if status not in STATUS_TEMPLATES:
        logger.info("No email notification configured for status %s (order %s).", status, order.order_id)
        return True
    if not order.email:
        logger.error("Order %s missing customer email for status update.", order.order_id)
        return False

    template, subject = STATUS_TEMPLATES[status]
    subject = subject.format(store=getattr(settings, "STORE_NAME", "Shopfront"), order_id=order.order_id)
    context = _context(order, status=status, note=note)
    try:
        _deliver(subject, template, context, [order.email])
    except NotificationDeliveryFailure:
        logger.exception("Failed to send status update email (%s) for order %s", status, order.order_id)
        return False
    logger.info("Status update email (%s) sent for order %s.", status, order.order_id)
    return True
