from datetime import timedelta

from django.db.models import Count, Sum
from django.utils import timezone
from rest_framework import mixins, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from common.money import ZERO, to_money
from core.context import scoped_queryset_for_owner
from core.views import TenantScopedMixin
from ledger.balances import vendor_balance, vendor_balances
from ledger.cache import invalidate_tenant_reports
from purchases.models import PaymentMade, Purchase, Vendor
from purchases.serializers import (
    PaymentMadeSerializer,
    PurchaseSerializer,
    PurchaseStatusSerializer,
    VendorSerializer,
)

RECENT_ACTIVITY_DAYS = 30


def vendor_dependents(vendor):
    return {
        "purchases": vendor.purchases.count(),
        "payments": vendor.payments_made.count(),
    }


class VendorViewSet(TenantScopedMixin, viewsets.ModelViewSet):
    queryset = Vendor.objects.all()
    serializer_class = VendorSerializer
    ledger_entity = "vendor"

    def get_queryset(self):
        queryset = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(name__icontains=search.strip())
        return queryset

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context["balances"] = getattr(self, "_balances", {})
        return context

    def _load_balances(self, vendors):
        ids = [vendor.id for vendor in vendors]
        purchases = Purchase.objects.filter(vendor_id__in=ids).values("vendor_id", "total_amount")
        payments = PaymentMade.objects.filter(vendor_id__in=ids).values("vendor_id", "amount")
        self._balances = vendor_balances(purchases, payments, ids)

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        page = self.paginate_queryset(queryset)
        vendors = list(page if page is not None else queryset)
        self._load_balances(vendors)
        serializer = self.get_serializer(vendors, many=True)
        if page is not None:
            return self.get_paginated_response(serializer.data)
        return Response(serializer.data)

    def retrieve(self, request, *args, **kwargs):
        vendor = self.get_object()
        self._load_balances([vendor])
        payload = self.get_serializer(vendor).data

        since = timezone.now() - timedelta(days=RECENT_ACTIVITY_DAYS)
        recent = vendor.purchases.filter(created_at__gte=since).aggregate(total=Sum("total_amount"), count=Count("id"))
        recent_payments = vendor.payments_made.filter(created_at__gte=since).aggregate(total=Sum("amount"))
        payload["recent_purchase_amount"] = str(to_money(recent["total"] or ZERO))
        payload["recent_purchase_count"] = recent["count"]
        payload["recent_payment_amount"] = str(to_money(recent_payments["total"] or ZERO))
        return Response(payload)

    def perform_destroy(self, instance):
        self.ensure_no_dependents(instance, vendor_dependents(instance))
        super().perform_destroy(instance)

    @action(detail=True, methods=["get"], url_path="delete-check")
    def delete_check(self, request, pk=None):
        dependents = vendor_dependents(self.get_object())
        return Response({"can_delete": not any(dependents.values()), "dependents": dependents})

    @action(detail=True, methods=["get"], pagination_class=None)
    def statement(self, request, pk=None):
        vendor = self.get_object()
        purchases = list(vendor.purchases.order_by("date", "created_at"))
        payments = list(vendor.payments_made.order_by("date", "created_at"))
        balance = vendor_balance(purchases, payments)
        self._balances = {vendor.id: balance}

        return Response(
            {
                "vendor": self.get_serializer(vendor).data,
                "balance": {key: str(value) for key, value in balance.as_dict().items()},
                "purchases": PurchaseSerializer(purchases, many=True, context=self.get_serializer_context()).data,
                "payments": PaymentMadeSerializer(payments, many=True, context=self.get_serializer_context()).data,
            }
        )


class PurchaseViewSet(TenantScopedMixin, viewsets.ModelViewSet):
    queryset = Purchase.objects.select_related("vendor")
    serializer_class = PurchaseSerializer
    ledger_entity = "purchase"

    def get_queryset(self):
        queryset = self.filter_by_reference(super().get_queryset(), "vendor", "vendor_id")
        status = self.request.query_params.get("status")
        if status:
            queryset = queryset.filter(status=status)
        return queryset

    @action(detail=True, methods=["post"], url_path="status")
    def set_status(self, request, pk=None):
        purchase = self.get_object()
        serializer = PurchaseStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        purchase.status = serializer.validated_data["status"]
        purchase.save(update_fields=["status"])
        invalidate_tenant_reports(purchase.owner_id)
        return Response(self.get_serializer(purchase).data)


class PaymentMadeViewSet(
    TenantScopedMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    queryset = PaymentMade.objects.select_related("vendor")
    serializer_class = PaymentMadeSerializer
    ledger_entity = "payment_made"

    def get_queryset(self):
        return self.filter_by_reference(super().get_queryset(), "vendor", "vendor_id")


class PurchasesSummaryView(APIView):
    """Payables across every vendor of the tenant."""

    def get(self, request):
        purchases = scoped_queryset_for_owner(Purchase.objects.all(), request.user).values("vendor_id", "total_amount")
        payments = scoped_queryset_for_owner(PaymentMade.objects.all(), request.user).values("vendor_id", "amount")
        summary = vendor_balance(purchases, payments)
        return Response(
            {
                "total_purchases": str(summary.total_billed),
                "total_paid": str(summary.total_paid),
                "total_pending": str(summary.pending),
            }
        )
