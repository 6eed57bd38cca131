from django.contrib import admin
from django.urls import include, path

from .auth import login_view, me_view

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/auth/login", login_view, name="admin_login"),
    path("api/auth/me", me_view, name="admin_me"),
    path("api/", include("catalog.urls")),
    path("api/", include("orders.urls")),
]

handler404 = "shopfront.views.error_404_view"
handler500 = "shopfront.views.error_500_view"
