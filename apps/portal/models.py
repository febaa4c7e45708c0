"""
External portal models.

Implements:
- PortalAccessToken: revocable bearer credential with a permission-flag set
- ExternalPortalAccount: optional email/password identity for external parties
- ExternalPortalSession: server-side session for an external account
- ExternalPortalGrant: account -> token grant that can be paused or revoked
"""
import hashlib
import secrets
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.core.models import BaseModel, SoftDeleteManager

TOKEN_ENTROPY_BYTES = 32
TOKEN_PREFIX_LENGTH = 6

# flag name -> default; one boolean column per flag on PortalAccessToken
PERMISSION_FLAG_DEFAULTS = {
    'can_view_schedule': False,
    'can_view_photos': False,
    'can_view_documents': False,
    'can_download_files': True,
    'can_view_daily_logs': False,
    'can_view_budget': False,
    'can_approve_change_orders': False,
    'can_submit_selections': False,
    'can_create_punch_items': False,
    'can_message': False,
    'can_view_invoices': True,
    'can_pay_invoices': False,
    'can_view_rfis': True,
    'can_view_submittals': True,
    'can_respond_rfis': True,
    'can_submit_submittals': True,
    'can_view_commitments': True,
    'can_view_bills': True,
    'can_submit_invoices': True,
    'can_upload_compliance_docs': True,
}
PERMISSION_FLAGS = tuple(PERMISSION_FLAG_DEFAULTS)


def generate_portal_token():
    """Opaque url-safe token with 32 bytes of entropy."""
    return secrets.token_urlsafe(TOKEN_ENTROPY_BYTES)


def hash_portal_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode('utf-8')).hexdigest()


class PortalAccessTokenManager(SoftDeleteManager):
    """Manager for portal token queries."""

    def for_project(self, project_id):
        return self.filter(project_id=project_id)

    def live(self, now=None):
        """Tokens that are neither revoked nor expired."""
        now = now or timezone.now()
        return self.filter(revoked_at__isnull=True).filter(
            Q(expires_at__isnull=True) | Q(expires_at__gt=now)
        )


class PortalAccessToken(BaseModel):
    """
    Long-lived, revocable capability for an external party on one project.

    Possession of the raw token is the credential. Only its sha256 is
    stored; the raw value is available as `raw_token` on the instance that
    issued it and nowhere else. Rows are revoked, never deleted.
    """

    PORTAL_CLIENT = 'client'
    PORTAL_SUB = 'sub'
    PORTAL_BID = 'bid'
    PORTAL_TYPE_CHOICES = [
        (PORTAL_CLIENT, 'Client'),
        (PORTAL_SUB, 'Subcontractor'),
        (PORTAL_BID, 'Bidder'),
    ]

    org = models.ForeignKey(
        'orgs.Org',
        on_delete=models.CASCADE,
        related_name='portal_tokens'
    )
    project = models.ForeignKey(
        'orgs.Project',
        on_delete=models.CASCADE,
        related_name='portal_tokens'
    )
    portal_type = models.CharField(
        max_length=10,
        choices=PORTAL_TYPE_CHOICES,
        db_index=True
    )
    company_id = models.UUIDField(
        null=True,
        blank=True,
        help_text="Subcontractor or client company this link is for"
    )
    contact_id = models.UUIDField(
        null=True,
        blank=True,
        help_text="Contact this link was issued to"
    )
    name = models.CharField(max_length=255, blank=True)
    token_hash = models.CharField(
        max_length=64,
        unique=True,
        editable=False,
        help_text="sha256 of the bearer token"
    )
    token_prefix = models.CharField(
        max_length=TOKEN_PREFIX_LENGTH,
        editable=False,
        help_text="Leading characters of the bearer token, for display"
    )

    # Permission flags
    can_view_schedule = models.BooleanField(default=False)
    can_view_photos = models.BooleanField(default=False)
    can_view_documents = models.BooleanField(default=False)
    can_download_files = models.BooleanField(default=True)
    can_view_daily_logs = models.BooleanField(default=False)
    can_view_budget = models.BooleanField(default=False)
    can_approve_change_orders = models.BooleanField(default=False)
    can_submit_selections = models.BooleanField(default=False)
    can_create_punch_items = models.BooleanField(default=False)
    can_message = models.BooleanField(default=False)
    can_view_invoices = models.BooleanField(default=True)
    can_pay_invoices = models.BooleanField(default=False)
    can_view_rfis = models.BooleanField(default=True)
    can_view_submittals = models.BooleanField(default=True)
    can_respond_rfis = models.BooleanField(default=True)
    can_submit_submittals = models.BooleanField(default=True)
    can_view_commitments = models.BooleanField(default=True)
    can_view_bills = models.BooleanField(default=True)
    can_submit_invoices = models.BooleanField(default=True)
    can_upload_compliance_docs = models.BooleanField(default=True)

    # PIN gate
    pin_required = models.BooleanField(default=False)
    pin_hash = models.CharField(max_length=255, null=True, blank=True)
    pin_attempts = models.PositiveIntegerField(default=0)
    pin_locked_until = models.DateTimeField(null=True, blank=True)

    # Account gate
    require_account = models.BooleanField(
        default=False,
        help_text="Access needs a signed-in account with an active grant on this token"
    )

    # Lifecycle
    expires_at = models.DateTimeField(null=True, blank=True, db_index=True)
    revoked_at = models.DateTimeField(null=True, blank=True, db_index=True)
    last_accessed_at = models.DateTimeField(null=True, blank=True)
    access_count = models.PositiveIntegerField(default=0)
    max_access_count = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Token stops validating once access_count reaches this"
    )
    created_by = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    # Set only on the instance that issued the token, never persisted
    raw_token = None

    objects = PortalAccessTokenManager()

    class Meta:
        db_table = 'portal_access_tokens'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['project', 'created_at']),
            models.Index(fields=['org', 'revoked_at']),
        ]

    def __str__(self):
        return f"{self.portal_type} portal {self.name or self.id}"

    def save(self, *args, **kwargs):
        if not self.token_hash:
            self.issue_token()
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise TypeError("Portal tokens are revoked, never deleted")

    def issue_token(self) -> str:
        """Generate a fresh bearer token and keep only its hash and prefix."""
        raw_token = generate_portal_token()
        self.token_hash = hash_portal_token(raw_token)
        self.token_prefix = raw_token[:TOKEN_PREFIX_LENGTH]
        self.raw_token = raw_token
        return raw_token

    @property
    def permissions(self):
        """Flag name -> value."""
        return {flag: getattr(self, flag) for flag in PERMISSION_FLAGS}

    @property
    def is_revoked(self):
        return self.revoked_at is not None

    def is_expired(self, now=None):
        now = now or timezone.now()
        return self.expires_at is not None and self.expires_at <= now

    def is_exhausted(self):
        return self.max_access_count is not None and self.access_count >= self.max_access_count

    def is_pin_locked(self, now=None):
        now = now or timezone.now()
        return self.pin_locked_until is not None and self.pin_locked_until > now


class ExternalPortalAccountManager(SoftDeleteManager):

    def for_org(self, org_id):
        return self.filter(org_id=org_id)

    def by_email(self, org_id, email):
        return self.filter(org_id=org_id, email=normalize_email(email)).first()


def normalize_email(email):
    return (email or '').strip().lower()


class ExternalPortalAccount(BaseModel):
    """
    Email/password identity for an external party, scoped to one org.
    """

    STATUS_ACTIVE = 'active'
    STATUS_PAUSED = 'paused'
    STATUS_REVOKED = 'revoked'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_PAUSED, 'Paused'),
        (STATUS_REVOKED, 'Revoked'),
    ]

    org = models.ForeignKey(
        'orgs.Org',
        on_delete=models.CASCADE,
        related_name='external_accounts'
    )
    email = models.EmailField(db_index=True)
    full_name = models.CharField(max_length=255, blank=True)
    password_hash = models.CharField(max_length=255)
    status = models.CharField(
        max_length=10,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True
    )
    last_login_at = models.DateTimeField(null=True, blank=True)
    paused_at = models.DateTimeField(null=True, blank=True)
    revoked_at = models.DateTimeField(null=True, blank=True)

    objects = ExternalPortalAccountManager()

    class Meta:
        db_table = 'external_portal_accounts'
        ordering = ['email']
        constraints = [
            models.UniqueConstraint(fields=['org', 'email'], name='uniq_external_account_email'),
        ]

    def __str__(self):
        return self.email

    def save(self, *args, **kwargs):
        self.email = normalize_email(self.email)
        super().save(*args, **kwargs)

    @property
    def is_active(self):
        return self.status == self.STATUS_ACTIVE


class ExternalPortalSessionManager(SoftDeleteManager):

    def open(self, now=None):
        now = now or timezone.now()
        return self.filter(revoked_at__isnull=True, expires_at__gt=now)


class ExternalPortalSession(BaseModel):
    """
    Server-side session for an external account.

    Only the sha256 of the session token is stored; the raw value leaves
    the server once, when the session is opened.
    """

    org = models.ForeignKey(
        'orgs.Org',
        on_delete=models.CASCADE,
        related_name='external_sessions'
    )
    account = models.ForeignKey(
        ExternalPortalAccount,
        on_delete=models.CASCADE,
        related_name='sessions'
    )
    session_token_hash = models.CharField(max_length=64, unique=True)
    expires_at = models.DateTimeField(db_index=True)
    revoked_at = models.DateTimeField(null=True, blank=True)
    last_seen_at = models.DateTimeField(null=True, blank=True)

    objects = ExternalPortalSessionManager()

    class Meta:
        db_table = 'external_portal_sessions'
        ordering = ['-created_at']

    def __str__(self):
        return f"session {self.id} for {self.account_id}"


class ExternalPortalGrantManager(SoftDeleteManager):

    def active(self):
        return self.filter(status=ExternalPortalGrant.STATUS_ACTIVE)


class ExternalPortalGrant(BaseModel):
    """
    Links an external account to a portal token.

    Pausing or revoking a grant cuts off one account without touching the
    token or anyone else holding it.
    """

    STATUS_ACTIVE = 'active'
    STATUS_PAUSED = 'paused'
    STATUS_REVOKED = 'revoked'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_PAUSED, 'Paused'),
        (STATUS_REVOKED, 'Revoked'),
    ]

    org = models.ForeignKey(
        'orgs.Org',
        on_delete=models.CASCADE,
        related_name='external_grants'
    )
    account = models.ForeignKey(
        ExternalPortalAccount,
        on_delete=models.CASCADE,
        related_name='grants'
    )
    portal_token = models.ForeignKey(
        PortalAccessToken,
        on_delete=models.CASCADE,
        related_name='grants'
    )
    status = models.CharField(
        max_length=10,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True
    )
    paused_at = models.DateTimeField(null=True, blank=True)
    revoked_at = models.DateTimeField(null=True, blank=True)

    objects = ExternalPortalGrantManager()

    class Meta:
        db_table = 'external_portal_grants'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['account', 'portal_token'], name='uniq_external_grant'),
        ]

    def __str__(self):
        return f"{self.account_id} -> {self.portal_token_id} ({self.status})"
