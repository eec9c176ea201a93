from django.urls import path

from overstays.api_operator import (
    OperatorOverstayChargeView,
    OperatorOverstayDetailView,
    OperatorOverstayListView,
    OperatorOverstayRefundView,
    OperatorOverstayResolveView,
)

app_name = "operator_overstays"

urlpatterns = [
    path("", OperatorOverstayListView.as_view(), name="list"),
    path("<int:pk>/", OperatorOverstayDetailView.as_view(), name="detail"),
    path("<int:pk>/charge/", OperatorOverstayChargeView.as_view(), name="charge"),
    path("<int:pk>/refund/", OperatorOverstayRefundView.as_view(), name="refund"),
    path("<int:pk>/resolve/", OperatorOverstayResolveView.as_view(), name="resolve"),
]
