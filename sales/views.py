from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from rest_framework import mixins, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from common.money import ZERO, stringify_amounts, to_money
from core.views import TenantScopedMixin
from ledger.balances import customer_balance, customer_balances
from ledger.cache import invalidate_tenant_reports
from ledger.documents import build_eway_bill, build_invoice_document
from sales.models import Customer, Invoice, Payment
from sales.serializers import CustomerSerializer, InvoiceSerializer, PaymentSerializer
from sales.services import customer_dependents, refresh_invoice_payment_status


class CustomerViewSet(TenantScopedMixin, viewsets.ModelViewSet):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer
    ledger_entity = "customer"

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

    def _load_balances(self, customers):
        ids = [customer.id for customer in customers]
        invoices = Invoice.objects.filter(customer_id__in=ids).values("customer_id", "total_amount")
        payments = Payment.objects.filter(customer_id__in=ids).values("customer_id", "amount_paid")
        self._balances = customer_balances(invoices, payments, ids)

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        page = self.paginate_queryset(queryset)
        customers = list(page if page is not None else queryset)
        self._load_balances(customers)
        serializer = self.get_serializer(customers, many=True)
        if page is not None:
            return self.get_paginated_response(serializer.data)
        return Response(serializer.data)

    def retrieve(self, request, *args, **kwargs):
        customer = self.get_object()
        self._load_balances([customer])
        payload = self.get_serializer(customer).data

        context = self.get_tenant_context()
        month_start = timezone.now().astimezone(context.timezone).date().replace(day=1)
        payload["this_month_sales"] = str(
            to_money(
                customer.invoices.filter(invoice_date__gte=month_start).aggregate(total=Sum("total_amount"))["total"]
                or ZERO
            )
        )
        return Response(payload)

    def perform_destroy(self, instance):
        self.ensure_no_dependents(instance, customer_dependents(instance))
        super().perform_destroy(instance)

    @action(detail=True, methods=["get"], url_path="delete-check")
    def delete_check(self, request, pk=None):
        dependents = customer_dependents(self.get_object())
        return Response({"can_delete": not any(dependents.values()), "dependents": dependents})

    @action(detail=True, methods=["get"], pagination_class=None)
    def statement(self, request, pk=None):
        customer = self.get_object()
        invoices = list(customer.invoices.prefetch_related("items").order_by("invoice_date", "created_at"))
        payments = list(customer.payments.select_related("invoice").order_by("payment_date", "created_at"))
        balance = customer_balance(invoices, payments)
        self._balances = {customer.id: balance}

        return Response(
            {
                "customer": self.get_serializer(customer).data,
                "balance": {key: str(value) for key, value in balance.as_dict().items()},
                "invoices": InvoiceSerializer(invoices, many=True, context=self.get_serializer_context()).data,
                "payments": PaymentSerializer(payments, many=True, context=self.get_serializer_context()).data,
            }
        )


class InvoiceViewSet(
    TenantScopedMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Invoice.objects.select_related("customer").prefetch_related("items")
    serializer_class = InvoiceSerializer
    ledger_entity = "invoice"

    def get_queryset(self):
        queryset = self.filter_by_reference(super().get_queryset(), "customer", "customer_id")
        status = self.request.query_params.get("status")
        if status:
            queryset = queryset.filter(status=status)
        return queryset

    def perform_destroy(self, instance):
        self.ensure_no_dependents(instance, {"payments": instance.payments.count()})
        super().perform_destroy(instance)

    @action(detail=True, methods=["get"])
    def document(self, request, pk=None):
        invoice = self.get_object()
        return Response(stringify_amounts(build_invoice_document(invoice, self.get_tenant_context().profile)))

    @action(detail=True, methods=["get"], url_path="eway-bill")
    def eway_bill(self, request, pk=None):
        invoice = self.get_object()
        inter_state = request.query_params.get("inter_state", "").lower() in {"1", "true", "yes"}
        payload = build_eway_bill(invoice, self.get_tenant_context().profile, inter_state=inter_state)
        response = Response(payload)
        if request.query_params.get("download"):
            response["Content-Disposition"] = f'attachment; filename="eway-bill-{invoice.invoice_number}.json"'
        return response


class PaymentViewSet(
    TenantScopedMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Payment.objects.select_related("customer", "invoice")
    serializer_class = PaymentSerializer
    ledger_entity = "payment"

    def get_queryset(self):
        queryset = self.filter_by_reference(super().get_queryset(), "customer", "customer_id")
        return self.filter_by_reference(queryset, "invoice", "invoice_id")

    def perform_destroy(self, instance):
        with transaction.atomic():
            invoice = instance.invoice
            owner_id = instance.owner_id
            instance.delete()
            if invoice is not None:
                refresh_invoice_payment_status(invoice)
        invalidate_tenant_reports(owner_id)
