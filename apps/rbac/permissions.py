"""
DRF permission class and decorator for RBAC enforcement.

This module provides:
- RequiresPermission: DRF permission class that runs the decision engine
- @requires_permission: Decorator to declare the required permission on views

Denials raise AuthorizationError so the exception handler can render the
reason code: 403 {"error": {"code": "FORBIDDEN", "reason_code": ...}}.
"""
import logging
from functools import wraps
from rest_framework.exceptions import NotAuthenticated
from rest_framework.permissions import BasePermission

from apps.rbac.services import AuthorizationService

logger = logging.getLogger(__name__)


def _actor(request):
    user = getattr(request, 'user', None)
    if user is None or not getattr(user, 'is_authenticated', False):
        raise NotAuthenticated()
    return user


def _check(request, view_kwargs, permission, project_kwarg=None, org_kwarg=None,
           resource_type='', resource_kwarg=None):
    user = _actor(request)
    project_id = view_kwargs.get(project_kwarg) if project_kwarg else None
    org_id = view_kwargs.get(org_kwarg) if org_kwarg else None
    resource_id = view_kwargs.get(resource_kwarg) if resource_kwarg else None

    # Guards always audit, allows included
    return AuthorizationService.require_authorization(
        permission,
        user.id,
        org_id=org_id,
        project_id=project_id,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=getattr(request, 'request_id', None),
    )


class RequiresPermission(BasePermission):
    """
    Enforce `view.required_permission` through AuthorizationService.

    Scope ids are read from URL kwargs named by `view.project_kwarg` and
    `view.org_kwarg`.

    Usage in views:
        class PortalTokenListView(APIView):
            permission_classes = [RequiresPermission]
            required_permission = 'portal.access.manage'
            project_kwarg = 'project_id'
    """

    def has_permission(self, request, view):
        permission = getattr(view, 'required_permission', None)
        if not permission:
            return True

        decision = _check(
            request,
            getattr(view, 'kwargs', {}) or {},
            permission,
            project_kwarg=getattr(view, 'project_kwarg', None),
            org_kwarg=getattr(view, 'org_kwarg', None),
            resource_type=getattr(view, 'resource_type', ''),
            resource_kwarg=getattr(view, 'resource_kwarg', None),
        )
        logger.debug(
            f"Permission granted: {permission}",
            extra={
                'view': view.__class__.__name__,
                'reason_code': decision.reason_code.value,
            }
        )
        return True


def requires_permission(permission, project_kwarg=None, org_kwarg=None,
                        resource_type='', resource_kwarg=None):
    """
    Decorator to declare the permission a view class or method requires.

    On a class it configures RequiresPermission. On a method it authorizes
    before the method body runs, so different HTTP methods can require
    different permissions.

    Usage:
        @requires_permission('audit.read', org_kwarg='org_id')
        class OrgAuditLogListView(AuditLogListView):
            ...

        class PortalTokenListView(APIView):
            @requires_permission('portal.access.manage', project_kwarg='project_id')
            def post(self, request, project_id):
                ...
    """
    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.required_permission = permission
            view_or_method.project_kwarg = project_kwarg
            view_or_method.org_kwarg = org_kwarg
            view_or_method.resource_type = resource_type
            view_or_method.resource_kwarg = resource_kwarg
            existing = list(getattr(view_or_method, 'permission_classes', []))
            if RequiresPermission not in existing:
                view_or_method.permission_classes = existing + [RequiresPermission]
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            _check(
                request, kwargs, permission,
                project_kwarg=project_kwarg,
                org_kwarg=org_kwarg,
                resource_type=resource_type,
                resource_kwarg=resource_kwarg,
            )
            return view_or_method(self, request, *args, **kwargs)

        wrapped.required_permission = permission
        return wrapped

    return decorator
