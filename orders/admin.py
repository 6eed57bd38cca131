from django.contrib import admin

from .models import Order, OrderItem, OrderNote


class ReadOnlyInline(admin.TabularInline):
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False


class OrderItemInline(ReadOnlyInline):
    model = OrderItem
    fields = ("name", "product", "price_at_purchase", "quantity", "image")
    readonly_fields = fields


class OrderNoteInline(ReadOnlyInline):
    model = OrderNote
    fields = ("created_at", "status", "kind", "author", "text")
    readonly_fields = fields


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_id", "status", "total_amount", "email", "payment_status", "created_at", "updated_at")
    search_fields = ("order_id", "email", "checkout_session_id", "payment_intent_id", "payment_id")
    list_filter = ("status", "payment_status", "created_at")
    readonly_fields = (
        "order_id", "total_amount", "checkout_session_id", "payment_intent_id", "payment_id",
        "payment_method", "paid_at", "payment_status", "created_at", "updated_at",
    )
    inlines = (OrderItemInline, OrderNoteInline)

    # View only: status changes go through the admin API so they get a note,
    # a transition check and the customer email.
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
