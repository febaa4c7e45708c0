"""
Serializers for portal API endpoints.
"""
from rest_framework import serializers

from apps.portal.models import (
    ExternalPortalAccount, ExternalPortalGrant, PERMISSION_FLAGS, PortalAccessToken,
)


class PortalTokenSerializer(serializers.ModelSerializer):
    """Token as shown to internal managers. The raw token is never listed."""

    permissions = serializers.SerializerMethodField()
    token_preview = serializers.SerializerMethodField()

    class Meta:
        model = PortalAccessToken
        fields = [
            'id', 'org_id', 'project_id', 'portal_type', 'name',
            'company_id', 'contact_id', 'token_preview', 'permissions',
            'pin_required', 'pin_locked_until', 'require_account',
            'expires_at', 'revoked_at', 'last_accessed_at',
            'access_count', 'max_access_count', 'created_at',
        ]
        read_only_fields = fields

    def get_permissions(self, obj):
        return obj.permissions

    def get_token_preview(self, obj):
        return f"{obj.token_prefix}..."


class PortalTokenCreatedSerializer(PortalTokenSerializer):
    """Creation response: the only time the raw token is returned."""

    token = serializers.CharField(source='raw_token', read_only=True)

    class Meta(PortalTokenSerializer.Meta):
        fields = PortalTokenSerializer.Meta.fields + ['token']
        read_only_fields = fields


class PortalTokenCreateSerializer(serializers.Serializer):
    portal_type = serializers.ChoiceField(choices=PortalAccessToken.PORTAL_TYPE_CHOICES)
    name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    permissions = serializers.DictField(
        child=serializers.BooleanField(),
        required=False,
        default=dict
    )
    contact_id = serializers.UUIDField(required=False, allow_null=True)
    company_id = serializers.UUIDField(required=False, allow_null=True)
    expires_at = serializers.DateTimeField(required=False, allow_null=True)
    require_account = serializers.BooleanField(required=False, default=False)
    max_access_count = serializers.IntegerField(required=False, allow_null=True, min_value=1)

    def validate_permissions(self, value):
        unknown = sorted(set(value) - set(PERMISSION_FLAGS))
        if unknown:
            raise serializers.ValidationError(f"Unknown permission flags: {', '.join(unknown)}")
        return value


class PinSerializer(serializers.Serializer):
    pin = serializers.RegexField(
        regex=r'^\d{4,8}$',
        error_messages={'invalid': 'PIN must be 4 to 8 digits'}
    )


class PinVerifySerializer(serializers.Serializer):
    pin = serializers.CharField(max_length=8)


class PortalActionSerializer(serializers.Serializer):
    flag = serializers.ChoiceField(choices=[(f, f) for f in PERMISSION_FLAGS])


class ClaimSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(max_length=128, trim_whitespace=False)
    full_name = serializers.CharField(max_length=255, required=False, allow_blank=True)


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(max_length=128, trim_whitespace=False)


class StatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=ExternalPortalGrant.STATUS_CHOICES)


class ExternalPortalGrantSerializer(serializers.ModelSerializer):

    class Meta:
        model = ExternalPortalGrant
        fields = ['id', 'account_id', 'portal_token_id', 'status', 'paused_at', 'revoked_at', 'updated_at']
        read_only_fields = fields


class ExternalPortalAccountSerializer(serializers.ModelSerializer):
    grant_count = serializers.IntegerField(read_only=True, default=0)
    active_grant_count = serializers.IntegerField(read_only=True, default=0)

    class Meta:
        model = ExternalPortalAccount
        fields = [
            'id', 'email', 'full_name', 'status', 'last_login_at',
            'paused_at', 'revoked_at', 'grant_count', 'active_grant_count',
        ]
        read_only_fields = fields
