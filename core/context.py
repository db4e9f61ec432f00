from __future__ import annotations

from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.utils import timezone
from rest_framework.exceptions import NotAuthenticated, ValidationError


@dataclass(frozen=True)
class TenantContext:
    """Explicit per-request session state handed to services and report builders.

    Built once per request from the authenticated user; nothing downstream reads
    the request or any global auth state. Signing out blacklists the refresh
    token, so no new context can be built from it afterwards.
    """

    user: object
    profile: object | None
    timezone: ZoneInfo

    @property
    def tenant_id(self):
        return self.user.id

    def today(self):
        return timezone.now().astimezone(self.timezone).date()


def resolve_timezone(tz_name):
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError({"timezone": "Invalid IANA timezone."})


def tenant_context_from_request(request) -> TenantContext:
    user = request.user
    if not user or not user.is_authenticated:
        raise NotAuthenticated()

    profile = getattr(user, "business_profile", None)
    tz_name = (
        request.query_params.get("timezone")
        if hasattr(request, "query_params") and request.query_params.get("timezone")
        else getattr(profile, "timezone", None) or settings.LEDGER_DEFAULT_TIMEZONE
    )
    return TenantContext(user=user, profile=profile, timezone=resolve_timezone(tz_name))


def scoped_queryset_for_owner(queryset, user):
    if not user.is_authenticated:
        return queryset.none()

    if user.is_superuser:
        return queryset

    return queryset.filter(owner_id=user.id)
