from django.urls import path
from rest_framework.routers import DefaultRouter

from purchases.views import PaymentMadeViewSet, PurchasesSummaryView, PurchaseViewSet, VendorViewSet

router = DefaultRouter()
router.register(r"vendors", VendorViewSet, basename="vendor")
router.register(r"purchases", PurchaseViewSet, basename="purchase")
router.register(r"payments-made", PaymentMadeViewSet, basename="payment-made")

urlpatterns = [
    path("purchases/summary/", PurchasesSummaryView.as_view(), name="purchases-summary"),
] + router.urls
