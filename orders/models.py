from django.db import models


class OrderStatus(models.TextChoices):
    PENDING_PAYMENT = "PENDING_PAYMENT", "Pending payment"
    PAYMENT_FAILED = "PAYMENT_FAILED", "Payment failed"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED", "Payment confirmed"
    PROCESSING = "PROCESSING", "Processing"
    SHIPPED_INTERNATIONAL = "SHIPPED_INTERNATIONAL", "Shipped (international)"
    SHIPPED_LOCAL = "SHIPPED_LOCAL", "Shipped (local)"
    DELIVERED = "DELIVERED", "Delivered"
    CANCELLED_BY_CUSTOMER = "CANCELLED_BY_CUSTOMER", "Cancelled by customer"
    CANCELLED_BY_ADMIN = "CANCELLED_BY_ADMIN", "Cancelled by admin"
    REFUNDED = "REFUNDED", "Refunded"


TERMINAL_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED_BY_CUSTOMER,
    OrderStatus.CANCELLED_BY_ADMIN,
    OrderStatus.REFUNDED,
    OrderStatus.PAYMENT_FAILED,
})

SHIPPED_STATUSES = frozenset({OrderStatus.SHIPPED_LOCAL, OrderStatus.SHIPPED_INTERNATIONAL})

_CANCELLED = {OrderStatus.CANCELLED_BY_ADMIN, OrderStatus.CANCELLED_BY_CUSTOMER}

# The regular forward path. Admins may still set anything else; such moves are
# flagged, not refused.
STANDARD_TRANSITIONS = {
    OrderStatus.PENDING_PAYMENT: {OrderStatus.PAYMENT_CONFIRMED, OrderStatus.PAYMENT_FAILED} | _CANCELLED,
    OrderStatus.PAYMENT_CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.REFUNDED} | _CANCELLED,
    OrderStatus.PROCESSING: SHIPPED_STATUSES | _CANCELLED,
    OrderStatus.SHIPPED_LOCAL: {OrderStatus.DELIVERED} | _CANCELLED,
    OrderStatus.SHIPPED_INTERNATIONAL: {OrderStatus.DELIVERED} | _CANCELLED,
}


def is_standard_transition(old: str, new: str) -> bool:
    return new in STANDARD_TRANSITIONS.get(old, set())


# Internal payment status strings kept in Order.payment_status
PAYMENT_AWAITING_GATEWAY = "awaiting_payment_gateway"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"


class Order(models.Model):
    order_id = models.CharField(max_length=32, unique=True, db_index=True)  # human-readable id

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True, default="")
    email = models.EmailField(max_length=100, db_index=True)
    phone = models.CharField(max_length=16)
    street = models.CharField(max_length=200)
    barangay = models.CharField(max_length=100)
    city = models.CharField(max_length=100)
    province = models.CharField(max_length=100)
    postal_code = models.CharField(max_length=4)
    country = models.CharField(max_length=64, default="Philippines")

    total_amount = models.PositiveBigIntegerField(help_text="Minor currency units (centavos)")
    status = models.CharField(
        max_length=32, choices=OrderStatus.choices, default=OrderStatus.PENDING_PAYMENT, db_index=True
    )

    checkout_session_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    payment_intent_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    payment_id = models.CharField(max_length=64, blank=True, default="")
    payment_method = models.CharField(max_length=32, blank=True, default="")
    paid_at = models.DateTimeField(blank=True, null=True)
    payment_status = models.CharField(max_length=32, blank=True, default="")

    courier = models.CharField(max_length=64, blank=True, default="")
    tracking_number = models.CharField(max_length=64, blank=True, default="")
    shipped_at = models.DateTimeField(blank=True, null=True)
    delivered_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    def __str__(self):
        return f"{self.order_id} ({self.status})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_paid(self) -> bool:
        return self.status == OrderStatus.PAYMENT_CONFIRMED or self.payment_status == PAYMENT_PAID

    @property
    def items_total(self) -> int:
        return sum(item.subtotal for item in self.items.all())

    def payment_details(self) -> dict:
        return {
            "checkoutSessionId": self.checkout_session_id,
            "paymentIntentId": self.payment_intent_id,
            "paymentId": self.payment_id,
            "paymentMethod": self.payment_method,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
            "status": self.payment_status,
        }

    def to_dict(self, *, include_private: bool = True) -> dict:
        data = {
            "internalOrderId": self.pk,
            "orderId": self.order_id,
            "orderStatus": self.status,
            "customerDetails": {
                "firstName": self.first_name,
                "lastName": self.last_name,
                "email": self.email,
            },
            "orderItems": [item.to_dict() for item in self.items.all()],
            "totalAmount": self.total_amount,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if self.tracking_number or self.courier:
            data["shippingInfo"] = {
                "courier": self.courier,
                "trackingNumber": self.tracking_number,
                "shippedAt": self.shipped_at.isoformat() if self.shipped_at else None,
                "deliveredAt": self.delivered_at.isoformat() if self.delivered_at else None,
            }
        if include_private:
            data["customerDetails"].update({
                "phone": self.phone,
                "shippingAddress": {
                    "street": self.street,
                    "barangay": self.barangay,
                    "city": self.city,
                    "province": self.province,
                    "postalCode": self.postal_code,
                    "country": self.country,
                },
            })
            data["paymentDetails"] = self.payment_details()
            data["notes"] = [note.to_dict() for note in self.notes.all()]
            data["updatedAt"] = self.updated_at.isoformat() if self.updated_at else None
        return data


class AppendOnlyModel(models.Model):
    """Rows are written once; later saves are refused."""

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError(f"{self.__class__.__name__} rows are immutable once created")
        super().save(*args, **kwargs)


class OrderItem(AppendOnlyModel):
    """Snapshot of a product at purchase time."""

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(
        "catalog.Product", on_delete=models.SET_NULL, null=True, blank=True, related_name="order_items"
    )
    name = models.CharField(max_length=150)
    price_at_purchase = models.PositiveIntegerField()
    quantity = models.PositiveIntegerField()
    image = models.URLField(max_length=500, blank=True, default="")

    class Meta:
        ordering = ("id",)

    def __str__(self):
        return f"{self.name} x{self.quantity}"

    @property
    def subtotal(self) -> int:
        return self.price_at_purchase * self.quantity

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "name": self.name,
            "priceAtPurchase": self.price_at_purchase,
            "quantity": self.quantity,
            "image": self.image,
        }


class OrderNote(AppendOnlyModel):
    KIND_ADMIN = "admin"
    KIND_SYSTEM = "system"
    KIND_CHOICES = [(KIND_ADMIN, "Admin"), (KIND_SYSTEM, "System")]

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="notes")
    created_at = models.DateTimeField(auto_now_add=True)
    status = models.CharField(max_length=32, choices=OrderStatus.choices)
    author = models.CharField(max_length=150, blank=True, default="")
    kind = models.CharField(max_length=8, choices=KIND_CHOICES, default=KIND_ADMIN)
    text = models.TextField()

    class Meta:
        ordering = ("created_at", "id")

    def __str__(self):
        return f"[{self.created_at:%Y-%m-%d %H:%M} - Status: {self.status}] {self.text}"

    def to_dict(self) -> dict:
        return {
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "status": self.status,
            "author": self.author,
            "kind": self.kind,
            "text": self.text,
        }
