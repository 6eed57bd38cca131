from django.urls import path

from . import views, webhook

app_name = "orders"
urlpatterns = [
    path("orders", views.create_order_view, name="create"),
    path("orders/confirmation/<int:order_pk>", views.order_confirmation_view, name="confirmation"),
    path("orders/track", views.track_order_view, name="track"),
    # Registered in the PayMongo dashboard as https://<domain>/api/webhooks/paymongo
    path("webhooks/paymongo", webhook.paymongo_webhook, name="paymongo_webhook"),
    path("admin/orders", views.admin_order_list_view, name="admin_list"),
    path("admin/orders/<int:order_pk>", views.admin_order_detail_view, name="admin_detail"),
    path("admin/stats", views.admin_stats_view, name="admin_stats"),
]
