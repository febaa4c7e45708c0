"""
RBAC models for multi-tenant access control.

Implements:
- Global User identity (internal actor, can belong to many orgs and projects)
- Permission (global permission catalog)
- Role and RolePermission (named permission sets at project, org or platform scope)
- ProjectMembership, OrgMembership, PlatformMembership (actor -> role per scope instance)
- AuthorizationAuditLog (append-only record of authorization decisions)
"""
import logging
import re
from django.core.validators import RegexValidator
from django.db import models
from django.db.models import Q
from django.contrib.auth.hashers import make_password, check_password
from django.utils import timezone
from apps.core.models import AppendOnlyModel, AppendOnlyQuerySet, BaseModel, SoftDeleteManager

logger = logging.getLogger(__name__)

WILDCARD_PERMISSION = '*'
PERMISSION_KEY_PATTERN = re.compile(r'^[a-z_]+(\.[a-z_]+)+$')


def is_valid_permission_key(key) -> bool:
    """Dotted lowercase keys like `project.manage`, or the wildcard `*`."""
    if not isinstance(key, str):
        return False
    return key == WILDCARD_PERMISSION or bool(PERMISSION_KEY_PATTERN.match(key))


class UserManager(SoftDeleteManager):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    """

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email."""
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, password=None, **extra_fields):
        """Create a new user with hashed password."""
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create a Django admin superuser.

        Admin access is unrelated to platform RBAC; platform operators are
        granted through PlatformMembership or the superadmin allow-list.
        """
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('email_verified', True)

        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True')

        return self.create_user(email, password, **extra_fields)

    def normalize_email(self, email):
        """Lowercase the whole address; emails are compared case-insensitively."""
        return (email or '').strip().lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    Global internal actor identity.

    Authentication happens at the User level; authorization happens through
    memberships at project, org and platform scope.

    This is the AUTH_USER_MODEL for the entire application, including Django admin.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        blank=True,
        help_text="Hashed password",
        db_column='password_hash'
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Django admin access (does not grant RBAC permissions)"
    )
    email_verified = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether email has been verified; only verified emails match the superadmin allow-list"
    )
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)
    last_login_at = models.DateTimeField(null=True, blank=True)

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at']),
            models.Index(fields=['email_verified', 'is_active']),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash so Django admin can manage passwords."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def get_username(self):
        return self.email

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        return self.is_active and self.is_superuser

    def has_perms(self, perm_list, obj=None):
        return self.is_active and self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_active and self.is_superuser

    def natural_key(self):
        return (self.email,)


class PermissionManager(SoftDeleteManager):
    """Manager for Permission queries."""

    def by_key(self, key):
        return self.filter(key=key).first()

    def by_category(self, category):
        return self.filter(category=category)

    def get_or_create_permission(self, key, description='', category=''):
        """Get or create a catalog entry, validating the key first."""
        if not is_valid_permission_key(key):
            raise ValueError(f"Invalid permission key: {key!r}")
        return self.get_or_create(
            key=key,
            defaults={'description': description, 'category': category}
        )


class Permission(BaseModel):
    """
    Catalog entry for a permission key.

    The catalog is append-mostly and seeded by `seed_permissions`.
    Authorization requests naming a key absent from this table are denied.
    """

    key = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        validators=[RegexValidator(
            regex=r'^(\*|[a-z_]+(\.[a-z_]+)+)$',
            message="Permission keys are dotted lowercase words, e.g. 'project.manage'",
        )],
        help_text="Permission key (e.g., 'project.manage', 'invoice.approve')"
    )
    description = models.TextField(blank=True)
    category = models.CharField(
        max_length=50,
        blank=True,
        db_index=True,
        help_text="Grouping for display (e.g., 'project', 'billing')"
    )

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['category', 'key']

    def __str__(self):
        return self.key

    def save(self, *args, **kwargs):
        if not is_valid_permission_key(self.key):
            raise ValueError(f"Invalid permission key: {self.key!r}")
        super().save(*args, **kwargs)


class RoleManager(SoftDeleteManager):
    """Manager for Role queries."""

    def for_scope(self, scope):
        return self.filter(scope=scope)

    def by_key(self, key):
        return self.filter(key=key).first()


class Role(BaseModel):
    """
    Named set of permissions assignable at exactly one scope.
    """

    SCOPE_PROJECT = 'project'
    SCOPE_ORG = 'org'
    SCOPE_PLATFORM = 'platform'
    SCOPE_CHOICES = [
        (SCOPE_PROJECT, 'Project'),
        (SCOPE_ORG, 'Organization'),
        (SCOPE_PLATFORM, 'Platform'),
    ]

    key = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Role key (e.g., 'owner', 'pm', 'platform_admin')"
    )
    label = models.CharField(max_length=100)
    scope = models.CharField(
        max_length=20,
        choices=SCOPE_CHOICES,
        db_index=True
    )
    description = models.TextField(blank=True)
    is_system = models.BooleanField(
        default=False,
        help_text="Seeded role; managed by seed_permissions"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['scope', 'key']

    def __str__(self):
        return f"{self.key} ({self.scope})"

    def permission_keys(self) -> frozenset:
        """Return the permission keys granted by this role."""
        return frozenset(
            Permission.objects.filter(
                role_permissions__role=self
            ).values_list('key', flat=True)
        )


class RolePermission(BaseModel):
    """Maps a permission to a role."""

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions'
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions'
    )

    class Meta:
        db_table = 'role_permissions'
        constraints = [
            models.UniqueConstraint(fields=['role', 'permission'], name='uniq_role_permission'),
        ]

    def __str__(self):
        return f"{self.role.key} -> {self.permission.key}"


class MembershipManager(SoftDeleteManager):
    """Manager shared by the membership variants."""

    def active(self):
        return self.filter(status=Membership.STATUS_ACTIVE)

    def for_user(self, user_id):
        return self.filter(user_id=user_id)


class Membership(BaseModel):
    """
    Abstract actor -> role binding. Suspended memberships grant nothing.
    """

    STATUS_ACTIVE = 'active'
    STATUS_SUSPENDED = 'suspended'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_SUSPENDED, 'Suspended'),
    ]

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='%(class)ss'
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.PROTECT,
        related_name='%(class)ss'
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True
    )

    role_scope = None

    objects = MembershipManager()

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if self.role_scope and self.role.scope != self.role_scope:
            raise ValueError(
                f"{self.__class__.__name__} requires a {self.role_scope}-scoped role, "
                f"got {self.role.key} ({self.role.scope})"
            )
        super().save(*args, **kwargs)

    @property
    def is_active(self):
        return self.status == self.STATUS_ACTIVE


class ProjectMembership(Membership):
    """
    Actor membership on a single project.

    `org` is the owning org of the project, denormalized so the decision
    engine can derive an org scope from a project-only request. It is null
    for memberships created before the project was attached to an org.
    """

    role_scope = Role.SCOPE_PROJECT

    project = models.ForeignKey(
        'orgs.Project',
        on_delete=models.CASCADE,
        related_name='memberships'
    )
    org = models.ForeignKey(
        'orgs.Org',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='project_memberships'
    )

    class Meta:
        db_table = 'project_memberships'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['project', 'user'],
                condition=Q(status='active', deleted_at__isnull=True),
                name='uniq_active_project_membership',
            ),
        ]

    def save(self, *args, **kwargs):
        # The org scope derived from this row must be the project's own org
        if self.org_id is not None and self.org_id != self.project.org_id:
            raise ValueError(
                f"ProjectMembership org {self.org_id} does not own project {self.project_id}"
            )
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.user_id} @ project {self.project_id} as {self.role_id}"


class OrgMembership(Membership):
    """Actor membership on an organization."""

    role_scope = Role.SCOPE_ORG

    org = models.ForeignKey(
        'orgs.Org',
        on_delete=models.CASCADE,
        related_name='memberships'
    )

    class Meta:
        db_table = 'org_memberships'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['org', 'user'],
                condition=Q(status='active', deleted_at__isnull=True),
                name='uniq_active_org_membership',
            ),
        ]

    def __str__(self):
        return f"{self.user_id} @ org {self.org_id} as {self.role_id}"


class PlatformMembershipManager(MembershipManager):

    def effective(self, now=None):
        """Active memberships that have not expired."""
        now = now or timezone.now()
        return self.active().filter(
            Q(expires_at__isnull=True) | Q(expires_at__gt=now)
        )


class PlatformMembership(Membership):
    """
    Platform operator membership (support, billing, security roles).
    """

    role_scope = Role.SCOPE_PLATFORM

    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Time-boxed operator access; null means no expiry"
    )

    objects = PlatformMembershipManager()

    class Meta:
        db_table = 'platform_memberships'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'role'],
                condition=Q(status='active', deleted_at__isnull=True),
                name='uniq_active_platform_membership',
            ),
        ]

    def __str__(self):
        return f"{self.user_id} @ platform as {self.role_id}"

    def is_effective(self, now=None):
        now = now or timezone.now()
        return self.is_active and (self.expires_at is None or self.expires_at > now)


class AuthorizationAuditLogQuerySet(AppendOnlyQuerySet):
    """Query helpers for the authorization audit trail."""

    def for_actor(self, actor_id):
        return self.filter(actor_id=str(actor_id))

    def for_org(self, org_id):
        return self.filter(org_id=org_id)

    def for_project(self, project_id):
        return self.filter(project_id=project_id)

    def denials(self):
        return self.filter(decision=AuthorizationAuditLog.DECISION_DENY)

    def by_request(self, request_id):
        return self.filter(request_id=request_id)

    def recent(self, days=30):
        from datetime import timedelta
        cutoff = timezone.now() - timedelta(days=days)
        return self.filter(created_at__gte=cutoff)


class AuthorizationAuditLog(AppendOnlyModel):
    """
    Persisted authorization decision. Never updated after insert.

    Ids are stored as plain values rather than foreign keys so audit rows
    outlive the entities they mention.
    """

    DECISION_ALLOW = 'allow'
    DECISION_DENY = 'deny'
    DECISION_CHOICES = [
        (DECISION_ALLOW, 'Allow'),
        (DECISION_DENY, 'Deny'),
    ]

    actor_id = models.CharField(max_length=64, db_index=True)
    org_id = models.UUIDField(null=True, blank=True, db_index=True)
    project_id = models.UUIDField(null=True, blank=True, db_index=True)
    permission_key = models.CharField(max_length=100, db_index=True)
    resource_type = models.CharField(max_length=50, blank=True)
    resource_id = models.CharField(max_length=64, blank=True)
    decision = models.CharField(max_length=10, choices=DECISION_CHOICES, db_index=True)
    reason_code = models.CharField(max_length=50, db_index=True)
    policy_version = models.CharField(max_length=50)
    context = models.JSONField(
        default=dict,
        blank=True,
        help_text="Evaluation context: scopes_evaluated and the permission union"
    )
    request_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Request correlation id"
    )

    objects = AuthorizationAuditLogQuerySet.as_manager()

    class Meta:
        db_table = 'authorization_audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['actor_id', 'created_at']),
            models.Index(fields=['org_id', 'created_at']),
            models.Index(fields=['decision', 'reason_code', 'created_at']),
        ]

    def __str__(self):
        return f"{self.decision} {self.permission_key} for {self.actor_id} ({self.reason_code})"
