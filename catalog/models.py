from django.core.exceptions import ValidationError
from django.db import models
from django.utils.text import slugify

MAX_IMAGES = 10


def validate_image_urls(value):
    if not isinstance(value, list) or not value:
        raise ValidationError("At least one product image URL is required.")
    if len(value) > MAX_IMAGES:
        raise ValidationError(f"A maximum of {MAX_IMAGES} images are allowed.")
    for url in value:
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            raise ValidationError("Image URL must start with http:// or https://")


class Product(models.Model):
    name = models.CharField(max_length=150)
    slug = models.SlugField(max_length=170, unique=True, blank=True)
    description = models.TextField()
    price = models.PositiveIntegerField(help_text="Minor currency units (centavos)")
    stock_quantity = models.PositiveIntegerField(default=0)
    images = models.JSONField(default=list, validators=[validate_image_urls])
    is_active = models.BooleanField(default=True, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    def __str__(self):
        return f"{self.name} ({self.stock_quantity} in stock)"

    @property
    def primary_image(self) -> str:
        return self.images[0] if self.images else ""

    def save(self, *args, **kwargs):
        # Slug follows the name unless an admin set one explicitly on this save
        if not self.slug or self._name_changed():
            self.slug = slugify(self.name)
        super().save(*args, **kwargs)

    def _name_changed(self) -> bool:
        if self._state.adding or not self.pk:
            return False
        previous = Product.objects.filter(pk=self.pk).values("name", "slug").first()
        if previous is None:
            return False
        return previous["name"] != self.name and previous["slug"] == self.slug

    def to_dict(self) -> dict:
        return {
            "id": self.pk,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "price": self.price,
            "stockQuantity": self.stock_quantity,
            "images": list(self.images or []),
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
