from django import forms
from django.core.exceptions import ValidationError
from django.core.validators import RegexValidator

from .models import OrderStatus

phone_validator = RegexValidator(
    r"^(09|\+639)\d{9}$",
    "Invalid Philippine phone number format (e.g., 09xxxxxxxxx or +639xxxxxxxxx).",
)
postal_code_validator = RegexValidator(r"^\d{4}$", "Invalid postal code format (should be 4 digits).")


def _flatten_errors(form) -> list:
    return [f"{field}: {msg}" for field, msgs in form.errors.items() for msg in msgs]


class ShippingAddressForm(forms.Form):
    street = forms.CharField(min_length=5, max_length=200)
    barangay = forms.CharField(min_length=2, max_length=100)
    cityMunicipality = forms.CharField(min_length=2, max_length=100)
    province = forms.CharField(min_length=2, max_length=100)
    postalCode = forms.CharField(validators=[postal_code_validator])


class OrderItemForm(forms.Form):
    productId = forms.IntegerField(min_value=1, error_messages={"invalid": "Invalid Product ID format."})
    quantity = forms.IntegerField(min_value=1)


class CheckoutForm(forms.Form):
    """Guest checkout payload: customer contact, shipping address and cart."""

    fullName = forms.CharField(min_length=3, max_length=100)
    email = forms.EmailField(max_length=100)
    phone = forms.CharField(validators=[phone_validator])
    shippingAddress = forms.JSONField()
    orderItems = forms.JSONField(error_messages={
        "required": "Your cart is empty. Please add at least one item to your order.",
    })

    def clean_email(self):
        return self.cleaned_data["email"].strip().lower()

    def clean_shippingAddress(self):
        value = self.cleaned_data["shippingAddress"]
        if not isinstance(value, dict):
            raise ValidationError("Shipping address must be an object.")
        address = ShippingAddressForm(data=value)
        if not address.is_valid():
            raise ValidationError(_flatten_errors(address))
        return address.cleaned_data

    def clean_orderItems(self):
        value = self.cleaned_data["orderItems"]
        if not isinstance(value, list):
            raise ValidationError("Order items must be a list.")
        merged = {}
        errors = []
        for index, raw in enumerate(value):
            item = OrderItemForm(data=raw if isinstance(raw, dict) else {})
            if not item.is_valid():
                errors.extend(f"[{index}] {msg}" for msg in _flatten_errors(item))
                continue
            pid = item.cleaned_data["productId"]
            # Repeated lines for one product are validated against stock as one
            merged[pid] = merged.get(pid, 0) + item.cleaned_data["quantity"]
        if errors:
            raise ValidationError(errors)
        return list(merged.items())

    def customer(self) -> dict:
        """Split the validated payload into the Order's customer fields."""
        data = self.cleaned_data
        first, _, last = data["fullName"].strip().partition(" ")
        address = data["shippingAddress"]
        return {
            "first_name": first,
            "last_name": " ".join(last.split()),
            "email": data["email"],
            "phone": data["phone"].strip(),
            "street": address["street"],
            "barangay": address["barangay"],
            "city": address["cityMunicipality"],
            "province": address["province"],
            "postal_code": address["postalCode"],
        }


class StatusUpdateForm(forms.Form):
    status = forms.ChoiceField(choices=OrderStatus.choices, error_messages={
        "required": "Order status is required.",
        "invalid_choice": "Invalid order status provided.",
    })
    adminNote = forms.CharField(required=False, max_length=500)
    courier = forms.CharField(required=False, max_length=64)
    trackingNumber = forms.CharField(required=False, max_length=64)


class TrackOrderForm(forms.Form):
    orderId = forms.CharField(max_length=50)
    email = forms.EmailField(max_length=100)

    def clean_email(self):
        return self.cleaned_data["email"].strip().lower()
