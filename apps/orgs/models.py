"""
Tenancy anchors: organizations and the projects they own.

Every membership, portal token and audit row is scoped to one of these.
"""
from django.db import models
from apps.core.models import BaseModel, SoftDeleteManager


class OrgManager(SoftDeleteManager):
    """Manager for organization queries."""

    def active(self):
        """Return only active organizations."""
        return self.filter(status=Org.STATUS_ACTIVE)

    def by_slug(self, slug):
        return self.filter(slug=slug).first()


class Org(BaseModel):
    """
    A tenant: one construction company using the platform.
    """

    STATUS_ACTIVE = 'active'
    STATUS_SUSPENDED = 'suspended'
    STATUS_ARCHIVED = 'archived'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_SUSPENDED, 'Suspended'),
        (STATUS_ARCHIVED, 'Archived'),
    ]

    name = models.CharField(
        max_length=255,
        help_text="Company name"
    )
    slug = models.SlugField(
        unique=True,
        max_length=100,
        help_text="URL-friendly identifier"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True,
        help_text="Current organization status"
    )

    objects = OrgManager()

    class Meta:
        db_table = 'orgs'
        ordering = ['name']

    def __str__(self):
        return self.name


class ProjectManager(SoftDeleteManager):
    """Manager for project queries."""

    def for_org(self, org):
        return self.filter(org=org)


class Project(BaseModel):
    """
    A construction job owned by an organization.

    Project-scoped memberships and portal tokens hang off this row.
    """

    STATUS_CHOICES = [
        ('planning', 'Planning'),
        ('active', 'Active'),
        ('on_hold', 'On Hold'),
        ('completed', 'Completed'),
        ('archived', 'Archived'),
    ]

    org = models.ForeignKey(
        Org,
        on_delete=models.CASCADE,
        related_name='projects',
        db_index=True,
        help_text="Owning organization"
    )
    name = models.CharField(
        max_length=255,
        help_text="Project name"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='active',
        db_index=True
    )

    objects = ProjectManager()

    class Meta:
        db_table = 'projects'
        ordering = ['name']
        indexes = [
            models.Index(fields=['org', 'status']),
        ]

    def __str__(self):
        return f"{self.org.name} / {self.name}"
