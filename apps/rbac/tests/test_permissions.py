"""
Tests for the RequiresPermission class and the requires_permission decorator.
"""
import pytest
from rest_framework.response import Response
from rest_framework.test import APIRequestFactory, force_authenticate
from rest_framework.views import APIView

from apps.rbac.models import AuthorizationAuditLog
from apps.rbac.permissions import RequiresPermission, requires_permission


class ProjectDocumentsView(APIView):
    permission_classes = [RequiresPermission]
    required_permission = 'docs.read'
    project_kwarg = 'project_id'
    resource_type = 'document'

    def get(self, request, project_id):
        return Response({'ok': True})


@requires_permission('budget.read', org_kwarg='org_id')
class OrgBudgetView(APIView):

    def get(self, request, org_id):
        return Response({'ok': True})


class ProjectScheduleView(APIView):

    def get(self, request, project_id):
        return Response({'read': True})

    @requires_permission('schedule.publish', project_kwarg='project_id')
    def post(self, request, project_id):
        return Response({'published': True})


def _call(view_class, method, user, **kwargs):
    factory = APIRequestFactory()
    request = getattr(factory, method)('/v1/anything')
    if user is not None:
        force_authenticate(request, user=user)
    return view_class.as_view()(request, **kwargs)


@pytest.mark.django_db
class TestRequiresPermission:

    def test_allows_project_member(self, grant, user, project):
        grant.project(user, project, 'client')

        response = _call(ProjectDocumentsView, 'get', user, project_id=project.id)

        assert response.status_code == 200
        entry = AuthorizationAuditLog.objects.get()
        assert entry.decision == 'allow'
        assert entry.resource_type == 'document'

    def test_denies_with_reason_code(self, seeded, user, project):
        response = _call(ProjectDocumentsView, 'get', user, project_id=project.id)

        assert response.status_code == 403
        assert response.data['error']['code'] == 'FORBIDDEN'
        assert response.data['error']['reason_code'] == 'deny_no_project_membership'

    def test_anonymous_is_401(self, seeded, project):
        response = _call(ProjectDocumentsView, 'get', None, project_id=project.id)

        assert response.status_code == 401


@pytest.mark.django_db
class TestRequiresPermissionDecorator:

    def test_class_decorator_installs_permission_class(self):
        assert RequiresPermission in OrgBudgetView.permission_classes
        assert OrgBudgetView.required_permission == 'budget.read'

    def test_class_decorator_enforces_org_scope(self, grant, user, org, other_org):
        grant.org(user, org, 'readonly')

        assert _call(OrgBudgetView, 'get', user, org_id=org.id).status_code == 200
        denied = _call(OrgBudgetView, 'get', user, org_id=other_org.id)
        assert denied.status_code == 403
        assert denied.data['error']['reason_code'] == 'deny_no_org_membership'

    def test_method_decorator_only_guards_that_method(self, grant, user, project):
        grant.project(user, project, 'field')

        assert _call(ProjectScheduleView, 'get', user, project_id=project.id).status_code == 200
        denied = _call(ProjectScheduleView, 'post', user, project_id=project.id)
        assert denied.status_code == 403
        assert denied.data['error']['reason_code'] == 'deny_missing_permission'

    def test_method_decorator_allows_pm(self, grant, user, project):
        grant.project(user, project, 'pm')

        response = _call(ProjectScheduleView, 'post', user, project_id=project.id)

        assert response.status_code == 200
        assert response.data == {'published': True}
