"""
Tests for the permission catalog.
"""
import pytest
from unittest.mock import patch
from django.db import DatabaseError

from apps.rbac.catalog import PermissionCatalog, get_permission_catalog
from apps.rbac.models import Permission


class FakeClock:

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.django_db
class TestPermissionCatalog:

    def test_known_and_unknown_keys(self):
        Permission.objects.get_or_create_permission('docs.read')
        catalog = PermissionCatalog(ttl=60, clock=FakeClock())

        assert catalog.exists('docs.read') is True
        assert catalog.exists('docs.shred') is False
        assert catalog.exists('') is False

    def test_positive_answer_cached_for_ttl(self):
        permission, _ = Permission.objects.get_or_create_permission('docs.read')
        clock = FakeClock()
        catalog = PermissionCatalog(ttl=60, clock=clock)
        assert catalog.exists('docs.read')

        # Soft-deleted rows are invisible to the catalog lookup
        permission.delete()
        clock.now = 59
        assert catalog.exists('docs.read') is True

        clock.now = 61
        with patch.object(Permission.objects, 'filter', wraps=Permission.objects.filter) as lookup:
            catalog.exists('docs.read')
        lookup.assert_called_once()

    def test_negative_answer_self_heals_after_ttl(self):
        clock = FakeClock()
        catalog = PermissionCatalog(ttl=60, clock=clock)
        assert catalog.exists('schedule.publish') is False

        Permission.objects.get_or_create_permission('schedule.publish')
        assert catalog.exists('schedule.publish') is False

        clock.now = 60
        assert catalog.exists('schedule.publish') is True

    def test_invalidate_single_key(self):
        catalog = PermissionCatalog(ttl=60, clock=FakeClock())
        assert catalog.exists('rfi.close') is False

        Permission.objects.get_or_create_permission('rfi.close')
        catalog.invalidate('rfi.close')

        assert catalog.exists('rfi.close') is True

    def test_database_error_denies_and_is_not_cached(self):
        Permission.objects.get_or_create_permission('docs.read')
        catalog = PermissionCatalog(ttl=60, clock=FakeClock())

        with patch.object(Permission.objects, 'filter', side_effect=DatabaseError('down')):
            assert catalog.exists('docs.read') is False

        assert catalog.exists('docs.read') is True

    def test_default_ttl_from_settings(self, settings):
        settings.PERMISSION_CATALOG_TTL = 5
        assert PermissionCatalog().cache.ttl == 5

    def test_process_catalog_is_shared(self):
        assert get_permission_catalog() is get_permission_catalog()
