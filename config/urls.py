from django.contrib import admin
from django.urls import include, path
from rest_framework_simplejwt.views import TokenRefreshView

from core.views import EmailOrUsernameTokenObtainPairView, SignOutView

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/v1/token/", EmailOrUsernameTokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("api/v1/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("api/v1/token/revoke/", SignOutView.as_view(), name="token_revoke"),
    path("api/v1/", include("core.urls")),
    path("api/v1/", include("sales.urls")),
    path("api/v1/", include("purchases.urls")),
    path("api/v1/", include("ledger.urls")),
]
