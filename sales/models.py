import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="customers")
    name = models.CharField(max_length=255)
    email = models.EmailField(null=True, blank=True)
    phone = models.CharField(max_length=64, null=True, blank=True)
    address = models.TextField(null=True, blank=True)
    gst_number = models.CharField(max_length=32, null=True, blank=True)
    preferred_unit = models.CharField(max_length=32, default="kg")
    notes = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["owner", "name"], name="customer_owner_name_idx"),
            models.Index(fields=["owner", "phone"], name="customer_owner_phone_idx"),
        ]

    def __str__(self):
        return self.name


class InvoiceCounter(models.Model):
    """Last invoice sequence handed out per tenant and calendar month."""

    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="invoice_counters")
    year_month = models.CharField(max_length=6)
    count = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["owner", "year_month"], name="uniq_invoice_counter_month"),
        ]


class Invoice(models.Model):
    class Status(models.TextChoices):
        UNPAID = "unpaid", "Unpaid"
        PARTIAL = "partial", "Partially Paid"
        PAID = "paid", "Paid"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="invoices")
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="invoices")
    invoice_number = models.CharField(max_length=32)
    invoice_date = models.DateField(default=timezone.localdate)
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    tax_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    tax_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    transport_charges = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.UNPAID)
    paid_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    transport_company = models.CharField(max_length=255, null=True, blank=True)
    truck_number = models.CharField(max_length=64, null=True, blank=True)
    driver_contact = models.CharField(max_length=64, null=True, blank=True)
    delivery_notes = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-invoice_date", "-created_at"]
        indexes = [
            models.Index(fields=["owner", "invoice_date"], name="invoice_owner_date_idx"),
            models.Index(fields=["customer", "invoice_date"], name="invoice_customer_date_idx"),
            models.Index(fields=["owner", "status"], name="invoice_owner_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["owner", "invoice_number"], name="uniq_invoice_number_per_owner"),
        ]

    def __str__(self):
        return self.invoice_number

    @property
    def balance_due(self):
        return max(self.total_amount - self.paid_amount, 0)


class InvoiceItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="items")
    item_name = models.CharField(max_length=255)
    quantity = models.DecimalField(max_digits=12, decimal_places=3)
    unit = models.CharField(max_length=32, default="kg")
    rate_per_unit = models.DecimalField(max_digits=12, decimal_places=2)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position"]


class Payment(models.Model):
    class Mode(models.TextChoices):
        CASH = "cash", "Cash"
        UPI = "upi", "UPI"
        BANK_TRANSFER = "bank_transfer", "Bank Transfer"
        CHEQUE = "cheque", "Cheque"
        CARD = "card", "Card"
        OTHER = "other", "Other"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="payments_received")
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="payments")
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name="payments", null=True, blank=True)
    amount_paid = models.DecimalField(max_digits=14, decimal_places=2)
    payment_mode = models.CharField(max_length=16, choices=Mode.choices, default=Mode.CASH)
    payment_date = models.DateField(default=timezone.localdate)
    notes = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-payment_date", "-created_at"]
        indexes = [
            models.Index(fields=["owner", "payment_date"], name="payment_owner_date_idx"),
            models.Index(fields=["customer", "payment_date"], name="payment_customer_date_idx"),
        ]
