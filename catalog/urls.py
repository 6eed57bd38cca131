from django.urls import path

from . import views

app_name = "catalog"
urlpatterns = [
    path("products", views.product_list_view, name="product_list"),
    path("products/<slug:slug>", views.product_detail_view, name="product_detail"),
    path("admin/products", views.admin_product_list_view, name="admin_product_list"),
    path("admin/products/<int:product_id>", views.admin_product_detail_view, name="admin_product_detail"),
]
