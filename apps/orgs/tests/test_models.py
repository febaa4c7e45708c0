"""
Tests for org and project models.
"""
import pytest

from apps.orgs.models import Org, Project


@pytest.mark.django_db
class TestOrgModel:

    def test_active_excludes_suspended(self, org, other_org):
        other_org.status = Org.STATUS_SUSPENDED
        other_org.save()

        assert list(Org.objects.active()) == [org]

    def test_by_slug(self, org):
        assert Org.objects.by_slug('acme-builders') == org
        assert Org.objects.by_slug('nobody') is None

    def test_soft_delete_hides_org(self, org):
        org.delete()

        assert not Org.objects.filter(id=org.id).exists()
        assert org.deleted_at is not None


@pytest.mark.django_db
class TestProjectModel:

    def test_for_org(self, org, project, other_project):
        assert list(Project.objects.for_org(org)) == [project]

    def test_defaults(self, project):
        assert project.status == 'active'
        assert str(project) == 'Acme Builders / Harbor View Tower'
