from django.urls import path

from operator_settings.api import OperatorOverstayDefaultsView, OperatorSettingsView

app_name = "operator_settings"

urlpatterns = [
    path("settings/", OperatorSettingsView.as_view(), name="operator_settings"),
    path(
        "settings/overstay-defaults/",
        OperatorOverstayDefaultsView.as_view(),
        name="operator_overstay_defaults",
    ),
]
