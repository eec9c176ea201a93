from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .api import ManagerOverstayViewSet, RenterOverstayViewSet

app_name = "overstays"

router = DefaultRouter()
router.register("manager", ManagerOverstayViewSet, basename="manager-overstay")
router.register("mine", RenterOverstayViewSet, basename="renter-overstay")

urlpatterns = [
    path("", include(router.urls)),
]
