"""
RBAC REST API views.

Implements endpoints for:
- Advisory authorization checks for the authenticated actor
- The actor's effective permissions
- Authorization audit log viewing, platform-wide and per org
"""
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from drf_spectacular.utils import extend_schema, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import ValidationError
from apps.core.pagination import StandardResultsSetPagination
from apps.rbac.models import AuthorizationAuditLog
from apps.rbac.permissions import requires_permission
from apps.rbac.serializers import (
    ActorPermissionsSerializer, AuditLogFilterSerializer,
    AuthorizationAuditLogSerializer, AuthorizationCheckSerializer,
    AuthorizationDecisionSerializer,
)
from apps.rbac.services import AuthorizationService

AUDIT_READ_PERMISSION = 'audit.read'


class AuthorizationCheckView(APIView):
    """
    POST /v1/authz/check

    Ask whether the authenticated actor holds a permission. Used by clients
    to decide what to render; allows are not written to the audit log.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Check a permission",
        request=AuthorizationCheckSerializer,
        responses={200: AuthorizationDecisionSerializer},
        tags=['Authorization'],
    )
    def post(self, request):
        serializer = AuthorizationCheckSerializer(data=request.data)
        if not serializer.is_valid():
            raise ValidationError('Invalid request', details=serializer.errors)

        data = serializer.validated_data
        decision = AuthorizationService.authorize(
            data['permission'],
            request.user.id,
            org_id=data.get('org_id'),
            project_id=data.get('project_id'),
            log_decision=False,
            request_id=getattr(request, 'request_id', None),
        )
        return Response(AuthorizationDecisionSerializer(decision.to_dict()).data)


class ActorPermissionsView(APIView):
    """
    GET /v1/authz/me?org_id=<uuid>

    Effective permission keys of the authenticated actor at org and platform
    scope, plus their platform roles.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Effective permissions of the current actor",
        parameters=[OpenApiParameter('org_id', OpenApiTypes.UUID, required=False)],
        responses={200: ActorPermissionsSerializer},
        tags=['Authorization'],
    )
    def get(self, request):
        org_id = request.query_params.get('org_id')
        actor_id = request.user.id
        payload = {
            'permissions': sorted(AuthorizationService.get_user_permissions(actor_id, org_id)),
            'platform_roles': AuthorizationService.list_platform_role_keys(actor_id),
            'platform_access': AuthorizationService.has_platform_access(actor_id),
        }
        return Response(ActorPermissionsSerializer(payload).data)


def _filtered_audit_logs(params, org_id=None):
    logs = AuthorizationAuditLog.objects.all()
    org_id = org_id or params.get('org_id')
    if params.get('actor_id'):
        logs = logs.for_actor(params['actor_id'])
    if org_id:
        logs = logs.for_org(org_id)
    if params.get('project_id'):
        logs = logs.for_project(params['project_id'])
    if params.get('decision'):
        logs = logs.filter(decision=params['decision'])
    if params.get('reason_code'):
        logs = logs.filter(reason_code=params['reason_code'])
    if params.get('permission'):
        logs = logs.filter(permission_key=params['permission'])
    if params.get('from_date'):
        logs = logs.filter(created_at__gte=params['from_date'])
    if params.get('to_date'):
        logs = logs.filter(created_at__lte=params['to_date'])
    return logs


AUDIT_LOG_FILTER_PARAMETERS = [
    OpenApiParameter('actor_id', OpenApiTypes.STR, required=False),
    OpenApiParameter('project_id', OpenApiTypes.UUID, required=False),
    OpenApiParameter('decision', OpenApiTypes.STR, required=False, enum=['allow', 'deny']),
    OpenApiParameter('reason_code', OpenApiTypes.STR, required=False),
    OpenApiParameter('permission', OpenApiTypes.STR, required=False),
    OpenApiParameter('from_date', OpenApiTypes.DATETIME, required=False),
    OpenApiParameter('to_date', OpenApiTypes.DATETIME, required=False),
]


class AuditLogListView(APIView):
    """
    GET /v1/authz/audit-logs

    List authorization decisions. Filterable by actor, org, project,
    decision, reason code, permission and date range.

    Required permission: audit.read, at org scope when org_id is given,
    otherwise through a platform role.
    """

    permission_classes = [IsAuthenticated]
    pagination_class = StandardResultsSetPagination

    def _validated_filters(self, request):
        filters = AuditLogFilterSerializer(data=request.query_params)
        if not filters.is_valid():
            raise ValidationError('Invalid filters', details=filters.errors)
        return filters.validated_data

    def _paginated(self, request, logs):
        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs, request, view=self)
        serializer = AuthorizationAuditLogSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    @extend_schema(
        summary="List authorization audit logs",
        parameters=[OpenApiParameter('org_id', OpenApiTypes.UUID, required=False)] + AUDIT_LOG_FILTER_PARAMETERS,
        responses={200: AuthorizationAuditLogSerializer(many=True)},
        tags=['Authorization'],
    )
    def get(self, request):
        params = self._validated_filters(request)

        AuthorizationService.require_authorization(
            AUDIT_READ_PERMISSION,
            request.user.id,
            org_id=params.get('org_id'),
            resource_type='authorization_audit_log',
            request_id=getattr(request, 'request_id', None),
        )

        return self._paginated(request, _filtered_audit_logs(params))


@requires_permission(AUDIT_READ_PERMISSION, org_kwarg='org_id', resource_type='authorization_audit_log')
class OrgAuditLogListView(AuditLogListView):
    """
    GET /v1/authz/orgs/{org_id}/audit-logs

    Authorization decisions for one org. Takes the same filters as the
    platform-wide listing; an org_id query parameter is ignored.

    Required permission: audit.read on the org.
    """

    @extend_schema(
        summary="List an org's authorization audit logs",
        parameters=AUDIT_LOG_FILTER_PARAMETERS,
        responses={200: AuthorizationAuditLogSerializer(many=True)},
        tags=['Authorization'],
    )
    def get(self, request, org_id):
        params = self._validated_filters(request)
        return self._paginated(request, _filtered_audit_logs(params, org_id=org_id))
