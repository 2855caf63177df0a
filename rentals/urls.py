from django.urls import path
from rest_framework.routers import DefaultRouter

from rentals.views import ChallanViewSet, ClientViewSet, DashboardView, LedgerListView, ReturnViewSet

router = DefaultRouter()
router.register(r"clients", ClientViewSet, basename="client")
router.register(r"challans", ChallanViewSet, basename="challan")
router.register(r"returns", ReturnViewSet, basename="return")

urlpatterns = router.urls + [
    path("ledgers/", LedgerListView.as_view(), name="ledgers"),
    path("dashboard/", DashboardView.as_view(), name="dashboard"),
]
