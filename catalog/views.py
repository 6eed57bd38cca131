import logging

from django.http import JsonResponse
from django.views.decorators.http import require_GET

from shopfront.auth import admin_token_required
from shopfront.http import json_body, json_error, method_not_allowed, page_params, sort_param

from .forms import ProductForm
from .models import Product
from .services import DuplicateSlug, save_product, soft_delete_product

logger = logging.getLogger(__name__)

PUBLIC_SORT_FIELDS = {
    "name": "name",
    "price": "price",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}
ADMIN_SORT_FIELDS = {**PUBLIC_SORT_FIELDS, "stockQuantity": "stock_quantity"}


def _page(qs, request, default_limit, sort_fields):
    page, limit = page_params(request, default_limit=default_limit)
    qs = qs.order_by(sort_param(request, sort_fields))
    total = qs.count()
    start = (page - 1) * limit
    return {
        "products": [p.to_dict() for p in qs[start:start + limit]],
        "currentPage": page,
        "totalPages": (total + limit - 1) // limit,
        "totalProducts": total,
    }


@require_GET
def product_list_view(request):
    """Active products only, paginated."""
    return JsonResponse(_page(Product.objects.filter(is_active=True), request, 12, PUBLIC_SORT_FIELDS))


@require_GET
def product_detail_view(request, slug: str):
    product = Product.objects.filter(slug=slug.lower(), is_active=True).first()
    if product is None:
        return json_error("Product not found.", status=404)
    return JsonResponse({"product": product.to_dict()})


def _save_form(form, status):
    if not form.is_valid():
        return json_error("Invalid product data.", errors=form.errors.get_json_data())
    try:
        product = save_product(form.save(commit=False))
    except DuplicateSlug as e:
        return json_error(str(e), status=409, code="duplicate_slug")
    return JsonResponse({"product": product.to_dict()}, status=status)


@admin_token_required
def admin_product_list_view(request):
    if request.method == "GET":
        qs = Product.objects.all()
        active = request.GET.get("isActive")
        if active in ("true", "false"):
            qs = qs.filter(is_active=(active == "true"))
        return JsonResponse(_page(qs, request, 10, ADMIN_SORT_FIELDS))

    if request.method == "POST":
        body = json_body(request)
        if not isinstance(body, dict):
            return json_error("Invalid JSON body")
        resp = _save_form(ProductForm.from_payload(body), status=201)
        if resp.status_code == 201:
            logger.info("Product created by %s", request.admin_user.get_username())
        return resp

    return method_not_allowed(request, ["GET", "POST"])


@admin_token_required
def admin_product_detail_view(request, product_id: int):
    product = Product.objects.filter(pk=product_id).first()
    if product is None:
        return json_error("Product not found.", status=404)

    if request.method == "GET":
        return JsonResponse({"product": product.to_dict()})

    if request.method == "PUT":
        body = json_body(request)
        if not isinstance(body, dict) or not body:
            return json_error("At least one field must be provided for a product update.")
        return _save_form(ProductForm.from_payload(body, instance=product), status=200)

    if request.method == "DELETE":
        soft_delete_product(product)
        logger.info("Product %s deactivated by %s", product.pk, request.admin_user.get_username())
        return JsonResponse({"message": "Product deactivated.", "product": product.to_dict()})

    return method_not_allowed(request, ["GET", "PUT", "DELETE"])
