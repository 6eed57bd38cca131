from django.contrib import admin

from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "price", "stock_quantity", "is_active", "updated_at")
    search_fields = ("name", "slug")
    list_filter = ("is_active", "created_at")
    readonly_fields = ("created_at", "updated_at")
    ordering = ("-created_at",)
