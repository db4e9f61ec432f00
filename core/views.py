import logging
import uuid

from django.conf import settings
from django.db import connections
from django.contrib.auth import get_user_model
from django.contrib.auth.tokens import default_token_generator
from django.core.mail import send_mail
from django.utils.encoding import force_bytes
from django.utils.http import urlsafe_base64_encode
from rest_framework import generics, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenObtainPairView

from common.exceptions import DependentRecordsExist
from common.permissions import IsOwner
from core.context import scoped_queryset_for_owner, tenant_context_from_request
from core.models import BusinessProfile
from core.serializers import (
    BusinessProfileSerializer,
    EmailOrUsernameTokenObtainPairSerializer,
    PasswordResetConfirmSerializer,
    PasswordResetRequestSerializer,
    SignOutSerializer,
    UserRegistrationSerializer,
)
from ledger.cache import invalidate_tenant_reports

User = get_user_model()
logger = logging.getLogger(__name__)


class TenantScopedMixin:
    """Viewset plumbing shared by every tenant-owned resource.

    Rows are filtered to the signed-in owner, new rows are stamped with that
    owner, and any change drops the owner's cached reports.
    """

    permission_classes = [IsAuthenticated, IsOwner]
    ledger_entity = None

    def get_queryset(self):
        return scoped_queryset_for_owner(super().get_queryset(), self.request.user)

    def get_tenant_context(self):
        return tenant_context_from_request(self.request)

    def perform_create(self, serializer):
        instance = serializer.save(owner=self.request.user)
        invalidate_tenant_reports(instance.owner_id)

    def perform_update(self, serializer):
        instance = serializer.save()
        invalidate_tenant_reports(instance.owner_id)

    def perform_destroy(self, instance):
        owner_id = instance.owner_id
        instance.delete()
        invalidate_tenant_reports(owner_id)

    def filter_by_reference(self, queryset, param, field):
        value = self.request.query_params.get(param)
        if not value:
            return queryset
        try:
            uuid.UUID(str(value))
        except ValueError:
            raise ValidationError({param: "Must be a valid id."})
        return queryset.filter(**{field: value})

    def ensure_no_dependents(self, instance, dependents):
        if not any(dependents.values()):
            return
        logger.warning(
            "counterparty_delete_blocked",
            extra={
                "tenant_id": str(instance.owner_id),
                "entity": self.ledger_entity,
                "entity_id": str(instance.pk),
                "dependents": dependents,
            },
        )
        raise DependentRecordsExist(entity=self.ledger_entity, dependents=dependents)


class RegisterView(generics.CreateAPIView):
    serializer_class = UserRegistrationSerializer
    permission_classes = [AllowAny]

    def perform_create(self, serializer):
        user = serializer.save()
        logger.info("user_registered", extra={"tenant_id": str(user.id)})


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class SignOutView(APIView):
    """End the session by blacklisting the refresh token it was issued with."""

    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = SignOutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            token = RefreshToken(serializer.validated_data["refresh"])
            if str(token.get("user_id")) != str(request.user.id):
                raise ValidationError({"refresh": "Token does not belong to the current user."})
            token.blacklist()
        except TokenError as exc:
            raise ValidationError({"refresh": str(exc)})

        logger.info("user_signed_out", extra={"tenant_id": str(request.user.id)})
        return Response(status=status.HTTP_205_RESET_CONTENT)


class BusinessProfileView(generics.GenericAPIView):
    """Read, create (first-run setup) and update the signed-in tenant's business profile."""

    serializer_class = BusinessProfileSerializer
    permission_classes = [IsAuthenticated]

    def _profile(self):
        return BusinessProfile.objects.filter(user=self.request.user).first()

    def get(self, request):
        profile = self._profile()
        if profile is None:
            raise NotFound("Profile has not been set up yet.")
        return Response(self.get_serializer(profile).data)

    def post(self, request):
        if self._profile() is not None:
            raise ValidationError("Profile already exists. Use PUT or PATCH to update it.")
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        serializer.save(user=request.user)
        return Response(serializer.data, status=status.HTTP_201_CREATED)

    def put(self, request):
        return self._update(request, partial=False)

    def patch(self, request):
        return self._update(request, partial=True)

    def _update(self, request, partial):
        profile = self._profile()
        if profile is None:
            raise NotFound("Profile has not been set up yet.")
        serializer = self.get_serializer(profile, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)


class PasswordResetRequestView(generics.GenericAPIView):
    serializer_class = PasswordResetRequestSerializer
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "password_reset"

    def post(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        email = serializer.validated_data["email"]

        user = User.objects.filter(email__iexact=email).first()
        if user:
            token = default_token_generator.make_token(user)
            uid = urlsafe_base64_encode(force_bytes(user.pk))
            reset_url = f"{settings.PASSWORD_RESET_FRONTEND_URL.rstrip('/')}/{uid}/{token}"
            try:
                send_mail(
                    subject="Password reset request",
                    message=(
                        "We received a request to reset your password.\n\n"
                        f"Reset your password using this link:\n{reset_url}\n\n"
                        "If you did not request this change, you can ignore this message."
                    ),
                    from_email=settings.PASSWORD_RESET_FROM_EMAIL,
                    recipient_list=[user.email],
                    fail_silently=False,
                )
            except Exception:
                logger.exception(
                    "password_reset_email_send_failed",
                    extra={"tenant_id": str(user.id)},
                )

        return Response(
            {"detail": "If an account exists for this email, reset instructions were sent."},
            status=status.HTTP_200_OK,
        )


class PasswordResetConfirmView(generics.GenericAPIView):
    serializer_class = PasswordResetConfirmSerializer
    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response({"detail": "Password reset successful."}, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
