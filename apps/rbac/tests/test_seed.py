"""
Tests for the seed_permissions management command.
"""
import pytest
from io import StringIO
from django.core.management import call_command

from apps.rbac.catalog import get_permission_catalog
from apps.rbac.management.commands.seed_permissions import Command
from apps.rbac.models import Permission, Role, RolePermission


@pytest.mark.django_db
class TestSeedPermissions:

    def test_seeds_catalog_and_roles(self):
        out = StringIO()
        call_command('seed_permissions', stdout=out)

        assert Permission.objects.count() == len(Command().all_permission_keys())
        assert Role.objects.filter(is_system=True).count() == len(Command.SYSTEM_ROLES)
        assert Role.objects.get(key='pm').permission_keys() >= {'portal.access.manage', 'project.manage'}
        assert 'Seeding complete' in out.getvalue()

    def test_rerun_is_idempotent(self):
        call_command('seed_permissions', verbosity=0)
        counts = (Permission.objects.count(), Role.objects.count(), RolePermission.objects.count())

        call_command('seed_permissions', verbosity=0)

        assert (Permission.objects.count(), Role.objects.count(), RolePermission.objects.count()) == counts

    def test_seeding_invalidates_cached_misses(self):
        catalog = get_permission_catalog()
        assert catalog.exists('portal.access.manage') is False

        call_command('seed_permissions', verbosity=0)

        assert catalog.exists('portal.access.manage') is True

    def test_role_scopes(self):
        call_command('seed_permissions', verbosity=0)

        assert Role.objects.get(key='owner').scope == Role.SCOPE_ORG
        assert Role.objects.get(key='field').scope == Role.SCOPE_PROJECT
        assert Role.objects.get(key='platform_admin').scope == Role.SCOPE_PLATFORM
