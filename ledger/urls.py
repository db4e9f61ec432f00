from django.urls import path

from ledger.reports import (
    ActivityView,
    CustomerBalancesView,
    DashboardSummaryView,
    PaymentStatusView,
    SalesTrendView,
    TopCustomersView,
    VendorBalancesView,
)

urlpatterns = [
    path("reports/dashboard-summary/", DashboardSummaryView.as_view(), name="report-dashboard-summary"),
    path("reports/sales-trend/", SalesTrendView.as_view(), name="report-sales-trend"),
    path("reports/top-customers/", TopCustomersView.as_view(), name="report-top-customers"),
    path("reports/payment-status/", PaymentStatusView.as_view(), name="report-payment-status"),
    path("reports/activity/", ActivityView.as_view(), name="report-activity"),
    path("reports/customer-balances/", CustomerBalancesView.as_view(), name="report-customer-balances"),
    path("reports/vendor-balances/", VendorBalancesView.as_view(), name="report-vendor-balances"),
]
