from rest_framework.routers import DefaultRouter

from inventory.views import StockItemViewSet

router = DefaultRouter()
router.register(r"stock", StockItemViewSet, basename="stock")

urlpatterns = router.urls
