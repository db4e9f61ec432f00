from rest_framework import serializers
from django.contrib.auth import password_validation
from django.contrib.auth.tokens import default_token_generator
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils.encoding import force_str
from django.utils.http import urlsafe_base64_decode
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from core.context import resolve_timezone, scoped_queryset_for_owner
from core.models import BusinessProfile

User = get_user_model()


class OwnedPrimaryKeyRelatedField(serializers.PrimaryKeyRelatedField):
    """Primary-key relation that only resolves rows owned by the requesting user."""

    def get_queryset(self):
        queryset = super().get_queryset()
        request = self.context.get("request")
        if request is None:
            return queryset.none()
        return scoped_queryset_for_owner(queryset, request.user)


class UserRegistrationSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True)

    class Meta:
        model = User
        fields = ["id", "username", "email", "password", "first_name", "last_name"]
        read_only_fields = ["id"]

    def validate_email(self, value):
        normalized_email = value.strip().lower()
        if normalized_email and User.objects.filter(email__iexact=normalized_email).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return normalized_email

    def validate_password(self, value):
        password_validation.validate_password(value)
        return value

    def create(self, validated_data):
        user = User.objects.create_user(
            username=validated_data["username"],
            email=validated_data.get("email", ""),
            password=validated_data["password"],
            first_name=validated_data.get("first_name", ""),
            last_name=validated_data.get("last_name", ""),
        )
        return user


class EmailOrUsernameTokenObtainPairSerializer(TokenObtainPairSerializer):
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["has_profile"] = BusinessProfile.objects.filter(user=user).exists()
        token["is_superuser"] = user.is_superuser
        return token

    def validate(self, attrs):
        username = attrs.get("username", "")
        if username and "@" in username:
            try:
                user = User.objects.get(email__iexact=username)
                attrs["username"] = user.get_username()
            except User.DoesNotExist:
                pass
        return super().validate(attrs)


class SignOutSerializer(serializers.Serializer):
    refresh = serializers.CharField()


class BusinessProfileSerializer(serializers.ModelSerializer):
    email = serializers.EmailField(source="user.email", read_only=True)

    class Meta:
        model = BusinessProfile
        fields = [
            "id",
            "organization_name",
            "full_name",
            "email",
            "phone",
            "address",
            "gst_number",
            "business_type",
            "timezone",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "email", "created_at", "updated_at"]

    def validate_organization_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Organization name is required.")
        return value.strip()

    def validate_full_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Full name is required.")
        return value.strip()

    def validate_gst_number(self, value):
        if value:
            return value.strip().upper()
        return value

    def validate_timezone(self, value):
        resolve_timezone(value)
        return value


class PasswordResetRequestSerializer(serializers.Serializer):
    email = serializers.EmailField()


class PasswordResetConfirmSerializer(serializers.Serializer):
    uid = serializers.CharField(required=True)
    token = serializers.CharField()
    new_password = serializers.CharField(write_only=True, min_length=8)

    default_error_messages = {
        "invalid_reset_credentials": "Invalid password reset credentials.",
    }

    def _get_user(self, attrs):
        uid = attrs.get("uid")

        if uid:
            try:
                user_id = force_str(urlsafe_base64_decode(uid))
                return User.objects.filter(pk=user_id).first()
            except (TypeError, ValueError, OverflowError, DjangoValidationError):
                return None

        return None

    def validate(self, attrs):
        token = attrs.get("token", "")
        user = self._get_user(attrs)

        if not user:
            self.fail("invalid_reset_credentials")

        if not default_token_generator.check_token(user, token):
            self.fail("invalid_reset_credentials")

        password_validation.validate_password(attrs["new_password"], user=user)
        attrs["user"] = user
        return attrs

    def save(self):
        user = self.validated_data["user"]
        user.set_password(self.validated_data["new_password"])
        user.save(update_fields=["password"])
        return user
