import json
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db.models import QuerySet
from django.test import TestCase

from shopfront.auth import issue_admin_token

from .forms import ProductForm
from .models import Product
from .services import DuplicateSlug, decrement_stock, is_active_and_in_stock, save_product

IMAGE = "https://cdn.example.com/mug.jpg"


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


class DecrementStockTests(TestCase):
    def test_decrements_when_stock_covers_quantity(self):
        product = make_product(stock_quantity=5)

        result = decrement_stock(product.pk, 2)

        product.refresh_from_db()
        self.assertEqual(product.stock_quantity, 3)
        self.assertFalse(result.clamped)

    def test_oversold_stock_is_floored_at_zero_with_warning(self):
        product = make_product(stock_quantity=1)

        with self.assertLogs("catalog.services", level="WARNING") as logs:
            result = decrement_stock(product.pk, 3)

        product.refresh_from_db()
        self.assertEqual(product.stock_quantity, 0)
        self.assertTrue(result.clamped)
        self.assertIn("oversold", logs.output[0])

    def test_missing_product_returns_none(self):
        self.assertIsNone(decrement_stock(999999, 1))

    def test_restock_landing_before_the_update_is_kept(self):
        product = make_product(stock_quantity=1)
        original_update = QuerySet.update
        restocked = []

        def restock_then_update(qs, **kwargs):
            if qs.model is Product and not restocked:
                restocked.append(True)
                original_update(Product.objects.filter(pk=product.pk), stock_quantity=100)
            return original_update(qs, **kwargs)

        with patch.object(QuerySet, "update", autospec=True, side_effect=restock_then_update):
            decrement_stock(product.pk, 2)

        product.refresh_from_db()
        self.assertTrue(restocked)
        self.assertEqual(product.stock_quantity, 98)

    def test_exact_stock_is_not_clamped(self):
        product = make_product(stock_quantity=2)
        result = decrement_stock(product.pk, 2)
        product.refresh_from_db()
        self.assertEqual(product.stock_quantity, 0)
        self.assertFalse(result.clamped)

    def test_is_active_and_in_stock(self):
        product = make_product(stock_quantity=2)
        self.assertTrue(is_active_and_in_stock(product.pk, 2))
        self.assertFalse(is_active_and_in_stock(product.pk, 3))
        product.is_active = False
        product.save()
        self.assertFalse(is_active_and_in_stock(product.pk, 1))
        self.assertFalse(is_active_and_in_stock("not-an-id", 1))


class ProductSlugTests(TestCase):
    def test_slug_derived_from_name(self):
        self.assertEqual(make_product(name="Blue Coffee Mug").slug, "blue-coffee-mug")

    def test_slug_follows_renamed_product(self):
        product = make_product(name="Blue Mug")
        product.name = "Red Mug"
        product.save()
        self.assertEqual(product.slug, "red-mug")

    def test_explicit_slug_is_kept(self):
        self.assertEqual(make_product(name="Blue Mug", slug="special-mug").slug, "special-mug")

    def test_duplicate_slug_is_translated(self):
        make_product(name="Blue Mug")
        with self.assertRaises(DuplicateSlug):
            save_product(Product(name="Blue Mug", description="Another one.", price=1, images=[IMAGE]))


class ProductFormTests(TestCase):
    def test_rejects_non_http_image(self):
        form = ProductForm.from_payload({
            "name": "Mug", "description": "A sturdy ceramic mug.", "price": 100,
            "stockQuantity": 1, "images": ["ftp://example.com/a.jpg"],
        })
        self.assertFalse(form.is_valid())
        self.assertIn("images", form.errors)

    def test_partial_update_keeps_other_fields(self):
        product = make_product()
        form = ProductForm.from_payload({"price": 12000}, instance=product)
        self.assertTrue(form.is_valid(), form.errors)
        saved = save_product(form.save(commit=False))
        self.assertEqual((saved.price, saved.name, saved.stock_quantity), (12000, "Coffee Mug", 5))


class ProductApiTests(TestCase):
    def setUp(self):
        self.admin = get_user_model().objects.create_user("admin", "admin@example.com", "pw", is_staff=True)
        self.auth = {"HTTP_AUTHORIZATION": f"Bearer {issue_admin_token(self.admin)}"}

    def test_public_list_shows_active_products_only(self):
        make_product(name="Visible Mug")
        make_product(name="Hidden Mug", is_active=False)

        resp = self.client.get("/api/products")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual([p["name"] for p in resp.json()["products"]], ["Visible Mug"])
        self.assertEqual(resp.json()["totalProducts"], 1)

    def test_inactive_product_detail_is_hidden(self):
        product = make_product(is_active=False)
        self.assertEqual(self.client.get(f"/api/products/{product.slug}").status_code, 404)

    def test_admin_create_requires_token(self):
        resp = self.client.post("/api/admin/products", data="{}", content_type="application/json")
        self.assertEqual(resp.status_code, 401)

    def test_admin_create(self):
        payload = {
            "name": "Travel Tumbler", "description": "Keeps drinks hot for hours.",
            "price": 55000, "stockQuantity": 7, "images": [IMAGE],
        }
        resp = self.client.post("/api/admin/products", data=json.dumps(payload),
                                content_type="application/json", **self.auth)

        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["product"]["slug"], "travel-tumbler")
        self.assertTrue(Product.objects.filter(slug="travel-tumbler", is_active=True).exists())

    def test_admin_create_duplicate_slug_conflicts(self):
        make_product(name="Travel Tumbler")
        payload = {
            "name": "Travel Tumbler", "description": "Keeps drinks hot for hours.",
            "price": 55000, "stockQuantity": 7, "images": [IMAGE],
        }
        resp = self.client.post("/api/admin/products", data=json.dumps(payload),
                                content_type="application/json", **self.auth)
        self.assertEqual(resp.status_code, 409)

    def test_admin_delete_is_soft(self):
        product = make_product()

        resp = self.client.delete(f"/api/admin/products/{product.pk}", **self.auth)

        self.assertEqual(resp.status_code, 200)
        product.refresh_from_db()
        self.assertFalse(product.is_active)
