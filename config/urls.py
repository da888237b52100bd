# config/urls.py
from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/v1/commons/", include("commons.urls")),
    path("api/v1/cpe/", include(("cpe.urls", "cpe"), namespace="cpe")),
]
