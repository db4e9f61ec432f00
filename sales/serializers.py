from django.conf import settings
from django.db import transaction
from rest_framework import serializers

from common.money import ZERO, to_money
from core.context import tenant_context_from_request
from core.serializers import OwnedPrimaryKeyRelatedField
from ledger.invoicing import LineItem, compute_totals, validate_invoice_draft
from sales.models import Customer, Invoice, InvoiceItem, Payment
from sales.services import next_invoice_number, refresh_invoice_payment_status


class CustomerSerializer(serializers.ModelSerializer):
    total_sales = serializers.SerializerMethodField()
    total_paid = serializers.SerializerMethodField()
    pending = serializers.SerializerMethodField()

    class Meta:
        model = Customer
        fields = [
            "id",
            "name",
            "email",
            "phone",
            "address",
            "gst_number",
            "preferred_unit",
            "notes",
            "total_sales",
            "total_paid",
            "pending",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]
        extra_kwargs = {"preferred_unit": {"required": False}}

    def _balance(self, obj):
        return self.context.get("balances", {}).get(obj.id)

    def get_total_sales(self, obj):
        balance = self._balance(obj)
        return str(balance.total_billed if balance else ZERO)

    def get_total_paid(self, obj):
        balance = self._balance(obj)
        return str(balance.total_paid if balance else ZERO)

    def get_pending(self, obj):
        balance = self._balance(obj)
        return str(balance.pending if balance else ZERO)

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Customer name is required.")
        return value.strip()

    def validate_email(self, value):
        return value.strip().lower() if value else value

    def validate_gst_number(self, value):
        return value.strip().upper() if value else value

    def create(self, validated_data):
        validated_data.setdefault("preferred_unit", settings.LEDGER_DEFAULT_UNIT)
        return super().create(validated_data)


class InvoiceItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceItem
        fields = ["id", "item_name", "quantity", "unit", "rate_per_unit", "amount"]
        read_only_fields = ["id", "amount"]
        extra_kwargs = {
            "item_name": {"allow_blank": True},
            "unit": {"required": False},
        }


class InvoiceSerializer(serializers.ModelSerializer):
    customer = OwnedPrimaryKeyRelatedField(queryset=Customer.objects.all(), required=False, allow_null=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    items = InvoiceItemSerializer(many=True)
    tax_percentage = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0, required=False)
    balance_due = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "invoice_date",
            "customer",
            "customer_name",
            "items",
            "subtotal",
            "tax_percentage",
            "tax_amount",
            "transport_charges",
            "total_amount",
            "status",
            "paid_amount",
            "balance_due",
            "transport_company",
            "truck_number",
            "driver_contact",
            "delivery_notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "invoice_number",
            "subtotal",
            "tax_amount",
            "total_amount",
            "status",
            "paid_amount",
            "created_at",
            "updated_at",
        ]
        extra_kwargs = {"transport_charges": {"min_value": 0}}

    def validate(self, attrs):
        lines = [LineItem.from_mapping(item) for item in attrs.get("items", [])]
        errors = validate_invoice_draft(attrs.get("customer"), lines)
        if errors:
            raise serializers.ValidationError(errors)
        attrs["lines"] = lines
        return attrs

    def create(self, validated_data):
        validated_data.pop("items")
        lines = validated_data.pop("lines")
        tax_rate = validated_data.pop("tax_percentage", settings.LEDGER_DEFAULT_TAX_RATE)
        totals = compute_totals(lines, tax_rate, validated_data.pop("transport_charges", ZERO))
        customer = validated_data["customer"]

        if validated_data.get("invoice_date") is None:
            validated_data["invoice_date"] = tenant_context_from_request(self.context["request"]).today()
        invoice_date = validated_data["invoice_date"]

        with transaction.atomic():
            invoice = Invoice.objects.create(
                invoice_number=next_invoice_number(validated_data["owner"], invoice_date),
                subtotal=totals.subtotal,
                tax_percentage=totals.tax_rate,
                tax_amount=totals.tax_amount,
                transport_charges=totals.transport_charges,
                total_amount=totals.grand_total,
                **validated_data,
            )
            InvoiceItem.objects.bulk_create(
                [
                    InvoiceItem(
                        invoice=invoice,
                        item_name=line.item_name,
                        quantity=line.quantity,
                        unit=line.unit or customer.preferred_unit,
                        rate_per_unit=line.rate,
                        amount=line.amount,
                        position=position,
                    )
                    for position, line in enumerate(lines)
                ]
            )
        return invoice


class PaymentSerializer(serializers.ModelSerializer):
    customer = OwnedPrimaryKeyRelatedField(queryset=Customer.objects.all())
    invoice = OwnedPrimaryKeyRelatedField(queryset=Invoice.objects.all(), required=False, allow_null=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    invoice_number = serializers.CharField(source="invoice.invoice_number", read_only=True, default=None)

    class Meta:
        model = Payment
        fields = [
            "id",
            "customer",
            "customer_name",
            "invoice",
            "invoice_number",
            "amount_paid",
            "payment_mode",
            "payment_date",
            "notes",
            "created_at",
        ]
        read_only_fields = ["id", "created_at"]

    def validate(self, attrs):
        amount = attrs["amount_paid"]
        if amount <= 0:
            raise serializers.ValidationError({"amount_paid": "Payment amount must be greater than zero."})

        invoice = attrs.get("invoice")
        if invoice is not None:
            if invoice.customer_id != attrs["customer"].id:
                raise serializers.ValidationError({"invoice": "Invoice does not belong to this customer."})
            _check_within_balance(invoice, amount)
        return attrs

    def create(self, validated_data):
        if validated_data.get("payment_date") is None:
            validated_data["payment_date"] = tenant_context_from_request(self.context["request"]).today()

        with transaction.atomic():
            invoice = validated_data.get("invoice")
            if invoice is not None:
                # Re-read under lock; another payment may have landed since validation.
                invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
                _check_within_balance(invoice, validated_data["amount_paid"])
                validated_data["invoice"] = invoice
            payment = super().create(validated_data)
            if invoice is not None:
                refresh_invoice_payment_status(invoice)
        return payment


def _check_within_balance(invoice, amount):
    if amount > to_money(invoice.total_amount - invoice.paid_amount):
        raise serializers.ValidationError(
            {"amount_paid": "Payment amount cannot be greater than the remaining balance."}
        )
