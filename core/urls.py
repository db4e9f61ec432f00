from django.urls import path

from core.views import (
    BusinessProfileView,
    PasswordResetConfirmView,
    PasswordResetRequestView,
    RegisterView,
    healthz,
    readyz,
)

urlpatterns = [
    path("register/", RegisterView.as_view(), name="register"),
    path("profile/", BusinessProfileView.as_view(), name="business-profile"),
    path("password-reset/request/", PasswordResetRequestView.as_view(), name="password_reset_request"),
    path("password-reset/confirm/", PasswordResetConfirmView.as_view(), name="password_reset_confirm"),
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
