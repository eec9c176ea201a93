from django.conf import settings
from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("api/payments/", include("payments.urls")),
    path("api/overstays/", include("overstays.urls")),
]

if settings.ENABLE_DJANGO_ADMIN:
    urlpatterns.insert(0, path("admin/", admin.site.urls))

if settings.ENABLE_OPERATOR:
    urlpatterns += [
        path("api/operator/", include("operator_settings.urls")),
        path("api/operator/overstays/", include("overstays.urls_operator")),
    ]
