"""
Pytest configuration and fixtures.
"""
import itertools

import pytest
from django.core.management import call_command


@pytest.fixture(autouse=True)
def fresh_permission_catalog():
    """The catalog cache is process-wide; start every test cold."""
    from apps.rbac.catalog import get_permission_catalog
    get_permission_catalog().invalidate()
    yield
    get_permission_catalog().invalidate()


@pytest.fixture(autouse=True)
def clear_cache():
    """Rate limit counters live in the default cache."""
    from django.core.cache import cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def seeded(db):
    """Seed the permission catalog and system roles."""
    call_command('seed_permissions', verbosity=0)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def org(db):
    """Create a test organization."""
    from apps.orgs.models import Org
    return Org.objects.create(name='Acme Builders', slug='acme-builders')


@pytest.fixture
def other_org(db):
    """Create another organization for isolation tests."""
    from apps.orgs.models import Org
    return Org.objects.create(name='Other Builders', slug='other-builders')


@pytest.fixture
def project(db, org):
    """Create a project owned by org."""
    from apps.orgs.models import Project
    return Project.objects.create(org=org, name='Harbor View Tower')


@pytest.fixture
def other_project(db, other_org):
    from apps.orgs.models import Project
    return Project.objects.create(org=other_org, name='Ridge Road Duplex')


@pytest.fixture
def make_user(db):
    """Factory for internal actors with unique emails."""
    from apps.rbac.models import User
    counter = itertools.count(1)

    def _make(email=None, **extra):
        extra.setdefault('email_verified', True)
        email = email or f'user{next(counter)}@acme.test'
        return User.objects.create_user(email=email, password='correct-horse-battery', **extra)

    return _make


@pytest.fixture
def user(make_user):
    return make_user(email='pm@acme.test', first_name='Pat', last_name='Manager')


@pytest.fixture
def make_role(db):
    """
    Factory for custom roles.

    Permission keys are added to the catalog when missing.
    """
    from apps.rbac.models import Permission, Role, RolePermission

    def _make(key, scope, permission_keys=()):
        role = Role.objects.create(key=key, label=key.replace('_', ' ').title(), scope=scope)
        for permission_key in permission_keys:
            permission, _ = Permission.objects.get_or_create_permission(permission_key)
            RolePermission.objects.create(role=role, permission=permission)
        return role

    return _make


class MembershipHelper:
    """Grant seeded system roles to actors at each scope."""

    def _role(self, key):
        from apps.rbac.models import Role
        return Role.objects.get(key=key)

    def org(self, user, org, role_key='staff', status='active'):
        from apps.rbac.models import OrgMembership
        return OrgMembership.objects.create(user=user, org=org, role=self._role(role_key), status=status)

    def project(self, user, project, role_key='pm', status='active', with_org=True):
        from apps.rbac.models import ProjectMembership
        return ProjectMembership.objects.create(
            user=user,
            project=project,
            org=project.org if with_org else None,
            role=self._role(role_key),
            status=status,
        )

    def platform(self, user, role_key='platform_support_readonly', status='active', expires_at=None):
        from apps.rbac.models import PlatformMembership
        return PlatformMembership.objects.create(
            user=user, role=self._role(role_key), status=status, expires_at=expires_at
        )


@pytest.fixture
def grant(seeded):
    return MembershipHelper()


@pytest.fixture
def manager(user, project, grant):
    """Project manager allowed to manage portal access on project."""
    grant.project(user, project, 'pm')
    return user


@pytest.fixture
def manager_client(api_client, manager):
    api_client.force_authenticate(user=manager)
    return api_client


@pytest.fixture
def portal_token(manager, project):
    """Client portal token issued by the project manager."""
    from apps.portal.services import PortalTokenService
    return PortalTokenService.create_token(
        manager.id, project.id, 'client',
        permissions={'can_message': True, 'can_view_schedule': True},
        name='Owner link',
    )
