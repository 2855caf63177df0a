from django.urls import path
from rest_framework.routers import DefaultRouter

from billing.views import BillCalculateView, BillViewSet, MatchedBillCalculateView

router = DefaultRouter()
router.register(r"bills", BillViewSet, basename="bill")

urlpatterns = router.urls + [
    path("billing/calculate/", BillCalculateView.as_view(), name="billing-calculate"),
    path("billing/matched/", MatchedBillCalculateView.as_view(), name="billing-matched"),
]
