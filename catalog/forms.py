from django import forms

from .models import Product

# JSON keys used by the API -> model field names
API_FIELDS = {
    "name": "name",
    "slug": "slug",
    "description": "description",
    "price": "price",
    "stockQuantity": "stock_quantity",
    "images": "images",
    "isActive": "is_active",
}


class ProductForm(forms.ModelForm):
    """Admin create/update form for catalog products."""

    name = forms.CharField(min_length=3, max_length=150)
    description = forms.CharField(min_length=10)
    price = forms.IntegerField(min_value=1)
    stock_quantity = forms.IntegerField(min_value=0)
    slug = forms.SlugField(max_length=170, required=False)
    is_active = forms.BooleanField(required=False)

    class Meta:
        model = Product
        fields = ["name", "slug", "description", "price", "stock_quantity", "images", "is_active"]

    @classmethod
    def from_payload(cls, payload: dict, instance: Product | None = None):
        data = {}
        if instance is not None:
            # Partial updates: start from the stored values
            data = {field: getattr(instance, field) for field in API_FIELDS.values()}
        else:
            data["is_active"] = True
        for key, field in API_FIELDS.items():
            if key in payload:
                data[field] = payload[key]
        if instance is not None and "name" in payload and "slug" not in payload:
            data["slug"] = ""
        return cls(data=data, instance=instance)

    def clean_slug(self):
        slug = self.cleaned_data.get("slug") or ""
        return slug.lower()
