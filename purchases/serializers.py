from rest_framework import serializers

from common.money import ZERO, to_money
from core.serializers import OwnedPrimaryKeyRelatedField
from purchases.models import PaymentMade, Purchase, Vendor


class VendorSerializer(serializers.ModelSerializer):
    total_purchases = serializers.SerializerMethodField()
    total_paid = serializers.SerializerMethodField()
    pending = serializers.SerializerMethodField()

    class Meta:
        model = Vendor
        fields = [
            "id",
            "name",
            "contact",
            "email",
            "address",
            "gstin",
            "total_purchases",
            "total_paid",
            "pending",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def _balance(self, obj):
        return self.context.get("balances", {}).get(obj.id)

    def get_total_purchases(self, obj):
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
            raise serializers.ValidationError("Vendor name is required.")
        return value.strip()

    def validate_gstin(self, value):
        return value.strip().upper() if value else value


class PurchaseSerializer(serializers.ModelSerializer):
    vendor = OwnedPrimaryKeyRelatedField(queryset=Vendor.objects.all())
    vendor_name = serializers.CharField(source="vendor.name", read_only=True)

    class Meta:
        model = Purchase
        fields = [
            "id",
            "vendor",
            "vendor_name",
            "item",
            "quantity",
            "rate",
            "total_amount",
            "status",
            "date",
            "created_at",
        ]
        read_only_fields = ["id", "total_amount", "created_at"]

    def validate_item(self, value):
        if not value.strip():
            raise serializers.ValidationError("Item is required.")
        return value.strip()

    def validate_quantity(self, value):
        if value <= 0:
            raise serializers.ValidationError("Quantity must be greater than zero.")
        return value

    def validate_rate(self, value):
        if value < 0:
            raise serializers.ValidationError("Rate cannot be negative.")
        return value

    def _with_total(self, validated_data, instance=None):
        quantity = validated_data.get("quantity", getattr(instance, "quantity", None))
        rate = validated_data.get("rate", getattr(instance, "rate", None))
        validated_data["total_amount"] = to_money(quantity * rate)
        return validated_data

    def create(self, validated_data):
        return super().create(self._with_total(validated_data))

    def update(self, instance, validated_data):
        return super().update(instance, self._with_total(validated_data, instance))


class PurchaseStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Purchase.Status.choices)


class PaymentMadeSerializer(serializers.ModelSerializer):
    vendor = OwnedPrimaryKeyRelatedField(queryset=Vendor.objects.all())
    vendor_name = serializers.CharField(source="vendor.name", read_only=True)

    class Meta:
        model = PaymentMade
        fields = ["id", "vendor", "vendor_name", "amount", "mode", "date", "created_at"]
        read_only_fields = ["id", "created_at"]

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Payment amount must be greater than zero.")
        return value
