"""
Serializers for RBAC API endpoints.
"""
from rest_framework import serializers

from apps.rbac.models import AuthorizationAuditLog, is_valid_permission_key


class AuthorizationAuditLogSerializer(serializers.ModelSerializer):
    """Serializer for AuthorizationAuditLog rows."""

    scopes_evaluated = serializers.SerializerMethodField()
    permissions = serializers.SerializerMethodField()

    class Meta:
        model = AuthorizationAuditLog
        fields = [
            'id', 'actor_id', 'org_id', 'project_id', 'permission_key',
            'resource_type', 'resource_id', 'decision', 'reason_code',
            'policy_version', 'scopes_evaluated', 'permissions', 'request_id', 'created_at',
        ]
        read_only_fields = fields

    def get_scopes_evaluated(self, obj):
        return (obj.context or {}).get('scopes_evaluated', [])

    def get_permissions(self, obj):
        return (obj.context or {}).get('permissions', [])


class AuditLogFilterSerializer(serializers.Serializer):
    """Query parameters accepted by the audit log listing."""

    actor_id = serializers.CharField(required=False, max_length=64)
    org_id = serializers.UUIDField(required=False)
    project_id = serializers.UUIDField(required=False)
    decision = serializers.ChoiceField(
        choices=AuthorizationAuditLog.DECISION_CHOICES,
        required=False
    )
    reason_code = serializers.CharField(required=False, max_length=50)
    permission = serializers.CharField(required=False, max_length=100)
    from_date = serializers.DateTimeField(required=False)
    to_date = serializers.DateTimeField(required=False)

    def validate(self, attrs):
        from_date = attrs.get('from_date')
        to_date = attrs.get('to_date')
        if from_date and to_date and from_date > to_date:
            raise serializers.ValidationError({'to_date': 'Must be after from_date'})
        return attrs


class AuthorizationCheckSerializer(serializers.Serializer):
    """Input for the advisory authorization check."""

    permission = serializers.CharField(max_length=100)
    org_id = serializers.UUIDField(required=False, allow_null=True)
    project_id = serializers.UUIDField(required=False, allow_null=True)

    def validate_permission(self, value):
        if not is_valid_permission_key(value):
            raise serializers.ValidationError('Invalid permission key format')
        return value


class AuthorizationDecisionSerializer(serializers.Serializer):
    permission = serializers.CharField()
    allowed = serializers.BooleanField()
    reason_code = serializers.CharField()
    scopes_evaluated = serializers.ListField(child=serializers.CharField())
    org_id = serializers.UUIDField(allow_null=True)
    project_id = serializers.UUIDField(allow_null=True)


class ActorPermissionsSerializer(serializers.Serializer):
    """Permissions of the authenticated actor at org and platform scope."""

    permissions = serializers.ListField(child=serializers.CharField())
    platform_roles = serializers.ListField(child=serializers.CharField())
    platform_access = serializers.BooleanField()
