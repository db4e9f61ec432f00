from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from common.money import to_money
from core.models import BusinessProfile
from ledger.cache import invalidate_tenant_reports
from ledger.invoicing import LineItem, compute_totals
from purchases.models import PaymentMade, Purchase, Vendor
from sales.models import Customer, Invoice, InvoiceItem, Payment
from sales.services import next_invoice_number, refresh_invoice_payment_status

DEMO_CUSTOMERS = [
    ("Shree Ganesh Traders", "9822001100", "Pune, Maharashtra", "27AAAPG1234C1Z5"),
    ("Patel Agro Industries", "9898012345", "Anand, Gujarat", "24AABCP5678D1Z2"),
    ("Kaveri Foods", "9845098450", "Mysuru, Karnataka", None),
]

DEMO_VENDORS = [
    ("Deccan Raw Materials", "9011223344", "27AAACD4321E1Z9"),
    ("Sahyadri Packaging", "9988776655", None),
]

DEMO_INVOICES = [
    # customer index, days ago, lines (name, qty, rate), transport, payment share
    (0, 2, [("Jaggery", "120", "46.50"), ("Turmeric", "25", "138")], "450", Decimal("1")),
    (1, 9, [("Groundnut Oil", "60", "172")], "0", Decimal("0.5")),
    (2, 21, [("Rice (Sona Masoori)", "300", "52"), ("Toor Dal", "80", "118")], "900", Decimal("0")),
    (0, 45, [("Jaggery", "200", "44")], "600", Decimal("0.25")),
]


class Command(BaseCommand):
    help = "Seed a demo tenant with customers, vendors, invoices, purchases and payments."

    def add_arguments(self, parser):
        parser.add_argument("--username", default="demo")
        parser.add_argument("--password", default="demo12345")

    @transaction.atomic
    def handle(self, *args, **options):
        User = get_user_model()
        user, created = User.objects.get_or_create(
            username=options["username"],
            defaults={"email": f"{options['username']}@example.com", "is_active": True},
        )
        if created:
            user.set_password(options["password"])
            user.save(update_fields=["password"])

        BusinessProfile.objects.get_or_create(
            user=user,
            defaults={
                "organization_name": "Demo Wholesale Co.",
                "full_name": "Demo Owner",
                "phone": "9000000000",
                "address": "12 Market Yard, Pune",
                "gst_number": "27AAFCD0000A1Z1",
                "business_type": "Wholesale",
            },
        )

        if Customer.objects.filter(owner=user).exists():
            self.stdout.write(self.style.WARNING(f"Demo data already present for '{user.username}'."))
            return

        today = timezone.localdate()
        customers = [
            Customer.objects.create(owner=user, name=name, phone=phone, address=address, gst_number=gst)
            for name, phone, address, gst in DEMO_CUSTOMERS
        ]
        vendors = [
            Vendor.objects.create(owner=user, name=name, contact=contact, gstin=gstin)
            for name, contact, gstin in DEMO_VENDORS
        ]

        for customer_index, days_ago, raw_lines, transport, paid_share in DEMO_INVOICES:
            customer = customers[customer_index]
            invoice_date = today - timedelta(days=days_ago)
            lines = [LineItem(item_name=name, quantity=qty, rate=rate, unit="kg") for name, qty, rate in raw_lines]
            totals = compute_totals(lines, Decimal("18"), transport)
            invoice = Invoice.objects.create(
                owner=user,
                customer=customer,
                invoice_number=next_invoice_number(user, invoice_date),
                invoice_date=invoice_date,
                subtotal=totals.subtotal,
                tax_percentage=totals.tax_rate,
                tax_amount=totals.tax_amount,
                transport_charges=totals.transport_charges,
                total_amount=totals.grand_total,
                transport_company="Shivneri Roadlines",
                truck_number="MH12AB1234",
            )
            InvoiceItem.objects.bulk_create(
                [
                    InvoiceItem(
                        invoice=invoice,
                        item_name=line.item_name,
                        quantity=line.quantity,
                        unit=line.unit,
                        rate_per_unit=line.rate,
                        amount=line.amount,
                        position=position,
                    )
                    for position, line in enumerate(lines)
                ]
            )
            if paid_share:
                Payment.objects.create(
                    owner=user,
                    customer=customer,
                    invoice=invoice,
                    amount_paid=to_money(totals.grand_total * paid_share),
                    payment_mode=Payment.Mode.UPI,
                    payment_date=invoice_date + timedelta(days=1),
                )
                refresh_invoice_payment_status(invoice)

        for vendor, days_ago, item, quantity, rate, status in [
            (vendors[0], 3, "Raw Jaggery", Decimal("500"), Decimal("38"), Purchase.Status.UNPAID),
            (vendors[1], 12, "Gunny Bags", Decimal("1000"), Decimal("14.5"), Purchase.Status.PAID),
            (vendors[0], 40, "Raw Jaggery", Decimal("400"), Decimal("36"), Purchase.Status.PAID),
        ]:
            Purchase.objects.create(
                owner=user,
                vendor=vendor,
                item=item,
                quantity=quantity,
                rate=rate,
                total_amount=to_money(quantity * rate),
                status=status,
                date=today - timedelta(days=days_ago),
            )

        PaymentMade.objects.create(owner=user, vendor=vendors[1], amount=Decimal("14500"), mode="bank_transfer", date=today - timedelta(days=10))
        PaymentMade.objects.create(owner=user, vendor=vendors[0], amount=Decimal("14400"), mode="cheque", date=today - timedelta(days=35))

        invalidate_tenant_reports(user.id)
        self.stdout.write(self.style.SUCCESS(f"Seeded demo data for '{user.username}'."))
