"""
RBAC API URLs.

Provides endpoints for:
- Advisory authorization checks
- The current actor's effective permissions
- Authorization audit log viewing, platform-wide and per org
"""
from django.urls import path
from apps.rbac.views import (
    ActorPermissionsView,
    AuditLogListView,
    AuthorizationCheckView,
    OrgAuditLogListView,
)

app_name = 'rbac'

urlpatterns = [
    path('check', AuthorizationCheckView.as_view(), name='authz-check'),
    path('me', ActorPermissionsView.as_view(), name='authz-me'),
    path('audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
    path('orgs/<uuid:org_id>/audit-logs', OrgAuditLogListView.as_view(), name='org-audit-log-list'),
]
