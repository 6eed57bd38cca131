import logging

from django.db import DatabaseError
from django.db.models import Count, Q
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from catalog.models import Product
from shopfront.auth import admin_token_required
from shopfront.http import json_body, json_error, method_not_allowed, page_params, sort_param

from .errors import OrderError
from .forms import StatusUpdateForm, TrackOrderForm
from .models import Order, OrderStatus
from .services import create_order, update_order_status

logger = logging.getLogger(__name__)

ADMIN_SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "totalAmount": "total_amount",
    "orderStatus": "status",
    "orderId": "order_id",
}


def _error_response(e: OrderError) -> JsonResponse:
    return JsonResponse(e.as_dict(), status=e.status)


@csrf_exempt
@require_POST
def create_order_view(request):
    body = json_body(request)
    if not isinstance(body, dict):
        return json_error("Invalid JSON body")

    try:
        result = create_order(body)
    except OrderError as e:
        return _error_response(e)
    except DatabaseError:
        logger.exception("Database error while creating order")
        return json_error("Error creating order. Please try again later.", status=500)

    return JsonResponse({
        "message": "Order created. Redirecting to payment.",
        "checkoutUrl": result.checkout_url,
        "orderId": result.order.order_id,
        "internalOrderId": result.order.pk,
    }, status=201)


@require_GET
def order_confirmation_view(request, order_pk: int):
    """Summary shown on the checkout success page; no address or payment data."""
    order = Order.objects.prefetch_related("items").filter(pk=order_pk).first()
    if order is None:
        return json_error("Order not found.", status=404)
    return JsonResponse({"order": order.to_dict(include_private=False)})


@csrf_exempt
@require_POST
def track_order_view(request):
    body = json_body(request)
    form = TrackOrderForm(data=body if isinstance(body, dict) else {})
    if not form.is_valid():
        return json_error("Order ID and email are required.", errors=form.errors.get_json_data())

    order = (
        Order.objects.prefetch_related("items")
        .filter(order_id=form.cleaned_data["orderId"].strip(), email=form.cleaned_data["email"])
        .first()
    )
    if order is None:
        # Same answer for a wrong email and an unknown id
        return json_error("Order not found. Please check the order ID and email.", status=404)
    return JsonResponse({"order": order.to_dict(include_private=False)})


@admin_token_required
def admin_order_list_view(request):
    if request.method != "GET":
        return method_not_allowed(request, ["GET"])

    qs = Order.objects.prefetch_related("items", "notes")
    status = request.GET.get("status")
    if status:
        if status not in OrderStatus.values:
            return json_error("Invalid order status filter.")
        qs = qs.filter(status=status)
    if request.GET.get("orderId"):
        qs = qs.filter(order_id__iexact=request.GET["orderId"].strip())
    if request.GET.get("email"):
        qs = qs.filter(email__iexact=request.GET["email"].strip())

    page, limit = page_params(request)
    qs = qs.order_by(sort_param(request, ADMIN_SORT_FIELDS))
    total = qs.count()
    start = (page - 1) * limit
    return JsonResponse({
        "orders": [o.to_dict() for o in qs[start:start + limit]],
        "currentPage": page,
        "totalPages": (total + limit - 1) // limit,
        "totalOrders": total,
    })


@admin_token_required
def admin_order_detail_view(request, order_pk: int):
    if request.method == "GET":
        order = Order.objects.prefetch_related("items", "notes").filter(pk=order_pk).first()
        if order is None:
            return json_error("Order not found.", status=404)
        return JsonResponse({"order": order.to_dict()})

    if request.method == "PUT":
        body = json_body(request)
        form = StatusUpdateForm(data=body if isinstance(body, dict) else {})
        if not form.is_valid():
            return json_error("Validation error.", errors=form.errors.get_json_data())
        data = form.cleaned_data
        try:
            result = update_order_status(
                order_pk,
                status=data["status"],
                note=data["adminNote"],
                author=request.admin_user.get_username(),
                courier=data["courier"],
                tracking_number=data["trackingNumber"],
            )
        except OrderError as e:
            return _error_response(e)
        return JsonResponse({
            "message": "Order status updated successfully.",
            "order": result.order.to_dict(),
            "statusChanged": result.changed,
            "transitionFlagged": result.flagged,
        })

    return method_not_allowed(request, ["GET", "PUT"])


@admin_token_required
def admin_stats_view(request):
    if request.method != "GET":
        return method_not_allowed(request, ["GET"])

    products = Product.objects.aggregate(
        total=Count("id"),
        active=Count("id", filter=Q(is_active=True)),
        out_of_stock=Count("id", filter=Q(is_active=True, stock_quantity=0)),
    )
    by_status = {status: 0 for status in OrderStatus.values}
    for row in Order.objects.values("status").annotate(n=Count("id")):
        by_status[row["status"]] = row["n"]
    return JsonResponse({
        "products": {
            "total": products["total"],
            "active": products["active"],
            "outOfStock": products["out_of_stock"],
        },
        "orders": {"total": sum(by_status.values()), "byStatus": by_status},
    })
