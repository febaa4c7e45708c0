"""
Portal access token services.

Implements:
- PortalTokenService: issue, validate, revoke and meter revocable portal
  tokens; PIN management and verification; the composed portal action check
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.core.exceptions import NotFoundError, ValidationError
from apps.core.logging import SecurityLogger
from apps.orgs.models import Project
from apps.portal.context import AccessContext, KIND_PORTAL
from apps.portal.models import PERMISSION_FLAGS, PortalAccessToken, hash_portal_token
from apps.rbac.models import User
from apps.rbac.scopes import as_uuid
from apps.rbac.services import AuthorizationService

logger = logging.getLogger(__name__)

MANAGE_PERMISSION = 'portal.access.manage'
PIN_PATTERN = re.compile(r'^\d{4,8}$')


@dataclass(frozen=True)
class PinCheckResult:
    valid: bool
    attempts_remaining: Optional[int] = None
    locked_until: Optional[datetime] = None


def _pin_max_attempts():
    return getattr(settings, 'PORTAL_PIN_MAX_ATTEMPTS', 5)


def _pin_lockout():
    return timedelta(minutes=getattr(settings, 'PORTAL_PIN_LOCKOUT_MINUTES', 15))


class PortalTokenService:
    """
    Service for revocable portal tokens.

    Management operations are gated on portal.access.manage at project
    scope. validate() is never cached, so a revocation takes effect on the
    next request.
    """

    @classmethod
    def _require_manage(cls, actor_id, project_id, resource_id=None, request_id=None):
        AuthorizationService.require_project_permission(
            actor_id, project_id, MANAGE_PERMISSION,
            resource_type='portal_access_token',
            resource_id=resource_id,
            request_id=request_id,
        )

    @classmethod
    def _get_token_for_management(cls, token_id, actor_id, request_id=None) -> PortalAccessToken:
        token = PortalAccessToken.objects.filter(id=token_id).first()
        if token is None:
            raise NotFoundError('Portal token not found')
        cls._require_manage(actor_id, token.project_id, resource_id=token.id, request_id=request_id)
        return token

    @classmethod
    def build_flags(cls, permissions: Optional[Dict[str, bool]] = None) -> Dict[str, bool]:
        """
        Merge caller overrides onto the flag defaults.

        Raises:
            ValidationError: on unknown flag names or non-boolean values
        """
        permissions = permissions or {}
        unknown = sorted(set(permissions) - set(PERMISSION_FLAGS))
        if unknown:
            raise ValidationError(
                'Unknown permission flags',
                details={'unknown_flags': unknown}
            )
        for flag, value in permissions.items():
            if not isinstance(value, bool):
                raise ValidationError(
                    'Permission flags must be booleans',
                    details={'flag': flag}
                )
        return dict(permissions)

    @classmethod
    def create_token(cls, actor_id, project_id, portal_type, permissions=None,
                     contact_id=None, company_id=None, expires_at=None,
                     require_account=False, name='', max_access_count=None,
                     request_id=None) -> PortalAccessToken:
        """
        Issue a new portal token for a project.

        Args:
            actor_id: Internal actor issuing the token
            project_id: Project the token grants access to
            portal_type: 'client', 'sub' or 'bid'
            permissions: Flag overrides, e.g. {'can_message': True}
            expires_at: Optional absolute expiry
            require_account: Mutating actions need a signed-in account
            max_access_count: Optional metering cap

        Returns:
            PortalAccessToken
        """
        project = Project.objects.filter(id=project_id).first()
        if project is None:
            raise NotFoundError('Project not found')

        cls._require_manage(actor_id, project.id, request_id=request_id)

        if portal_type not in dict(PortalAccessToken.PORTAL_TYPE_CHOICES):
            raise ValidationError('Invalid portal type', details={'portal_type': portal_type})
        if expires_at is not None and expires_at <= timezone.now():
            raise ValidationError('expires_at must be in the future')
        if max_access_count is not None and max_access_count < 1:
            raise ValidationError('max_access_count must be at least 1')

        flags = cls.build_flags(permissions)
        actor_uuid = as_uuid(actor_id)
        creator = User.objects.filter(id=actor_uuid).first() if actor_uuid else None

        token = PortalAccessToken.objects.create(
            org_id=project.org_id,
            project=project,
            portal_type=portal_type,
            contact_id=contact_id,
            company_id=company_id,
            name=name or '',
            expires_at=expires_at,
            require_account=require_account,
            max_access_count=max_access_count,
            created_by=creator,
            **flags
        )

        logger.info(
            f"Portal token created for project {project.id}",
            extra={
                'token_id': str(token.id),
                'portal_type': portal_type,
                'actor_id': str(actor_id),
            }
        )
        return token

    @classmethod
    def get_live_token(cls, raw_token, now=None) -> Optional[PortalAccessToken]:
        """The token row if it exists, is not revoked, expired or exhausted."""
        if not raw_token or not isinstance(raw_token, str):
            return None
        now = now or timezone.now()
        token = (
            PortalAccessToken.objects.filter(token_hash=hash_portal_token(raw_token))
            .select_related('org')
            .first()
        )
        if token is None or token.is_revoked or token.is_expired(now) or token.is_exhausted():
            return None
        return token

    @classmethod
    def to_context(cls, token: PortalAccessToken) -> AccessContext:
        return AccessContext(
            kind=KIND_PORTAL,
            org_id=str(token.org_id),
            project_id=str(token.project_id),
            company_id=str(token.company_id) if token.company_id else None,
            contact_id=str(token.contact_id) if token.contact_id else None,
            token_id=str(token.id),
            permissions=token.permissions,
            portal_type=token.portal_type,
            pin_required=token.pin_required,
            require_account=token.require_account,
        )

    @classmethod
    def validate(cls, raw_token, now=None) -> Optional[AccessContext]:
        """
        Resolve a raw token to its access context.

        Returns None for unknown, revoked, expired and exhausted tokens alike.
        """
        token = cls.get_live_token(raw_token, now=now)
        if token is None:
            return None
        return cls.to_context(token)

    @classmethod
    def revoke(cls, token_id, actor_id, request_id=None) -> PortalAccessToken:
        """Revoke a token. Revoking twice keeps the first revocation time."""
        token = cls._get_token_for_management(token_id, actor_id, request_id=request_id)
        if token.revoked_at is None:
            PortalAccessToken.objects.filter(id=token.id, revoked_at__isnull=True).update(
                revoked_at=timezone.now()
            )
            token.refresh_from_db(fields=['revoked_at'])
            logger.info(
                f"Portal token {token.id} revoked",
                extra={'token_id': str(token.id), 'actor_id': str(actor_id)}
            )
        return token

    @classmethod
    def record_access(cls, token_id) -> None:
        """
        Count one access. Best effort: failures are logged, never raised.
        """
        try:
            PortalAccessToken.objects.filter(id=token_id).update(
                access_count=F('access_count') + 1,
                last_accessed_at=timezone.now(),
            )
        except Exception:
            logger.error(
                f"Failed to record portal access for {token_id}",
                exc_info=True
            )

    @classmethod
    def list_tokens(cls, actor_id, project_id, request_id=None) -> List[PortalAccessToken]:
        cls._require_manage(actor_id, project_id, request_id=request_id)
        return list(PortalAccessToken.objects.for_project(project_id).order_by('-created_at'))

    @classmethod
    def set_pin(cls, token_id, pin, actor_id, request_id=None) -> PortalAccessToken:
        """
        Require a 4-8 digit PIN for mutating actions on this token.

        Setting a PIN clears any failed attempts and lockout.
        """
        if not isinstance(pin, str) or not PIN_PATTERN.match(pin):
            raise ValidationError('PIN must be 4 to 8 digits')

        token = cls._get_token_for_management(token_id, actor_id, request_id=request_id)
        token.pin_hash = make_password(pin)
        token.pin_required = True
        token.pin_attempts = 0
        token.pin_locked_until = None
        token.save(update_fields=['pin_hash', 'pin_required', 'pin_attempts', 'pin_locked_until', 'updated_at'])
        return token

    @classmethod
    def remove_pin(cls, token_id, actor_id, request_id=None) -> PortalAccessToken:
        token = cls._get_token_for_management(token_id, actor_id, request_id=request_id)
        token.pin_hash = None
        token.pin_required = False
        token.pin_attempts = 0
        token.pin_locked_until = None
        token.save(update_fields=['pin_hash', 'pin_required', 'pin_attempts', 'pin_locked_until', 'updated_at'])
        return token

    @classmethod
    def verify_pin(cls, raw_token, pin, ip_address=None, now=None) -> PinCheckResult:
        """
        Check a PIN against a live token.

        Each failure counts toward PORTAL_PIN_MAX_ATTEMPTS; reaching it
        locks the PIN for PORTAL_PIN_LOCKOUT_MINUTES. A success resets the
        counter. While locked, even the correct PIN is rejected.
        """
        now = now or timezone.now()
        max_attempts = _pin_max_attempts()

        with transaction.atomic():
            live = cls.get_live_token(raw_token, now=now)
            if live is None:
                return PinCheckResult(valid=False)
            token = PortalAccessToken.objects.select_for_update().get(id=live.id)

            if not token.pin_hash:
                return PinCheckResult(valid=False)

            if token.is_pin_locked(now):
                return PinCheckResult(valid=False, attempts_remaining=0, locked_until=token.pin_locked_until)

            # A lapsed lockout starts a fresh round of attempts
            attempts = 0 if token.pin_locked_until is not None else token.pin_attempts

            if isinstance(pin, str) and check_password(pin, token.pin_hash):
                token.pin_attempts = 0
                token.pin_locked_until = None
                token.save(update_fields=['pin_attempts', 'pin_locked_until', 'updated_at'])
                return PinCheckResult(valid=True, attempts_remaining=max_attempts)

            attempts += 1
            locked_until = now + _pin_lockout() if attempts >= max_attempts else None
            token.pin_attempts = attempts
            token.pin_locked_until = locked_until
            token.save(update_fields=['pin_attempts', 'pin_locked_until', 'updated_at'])

        if locked_until:
            SecurityLogger.log_pin_lockout(token.id, locked_until, ip_address=ip_address)

        return PinCheckResult(
            valid=False,
            attempts_remaining=max(0, max_attempts - attempts),
            locked_until=locked_until,
        )

    @classmethod
    def authorize_portal_action(cls, raw_token, flag, *, pin_verified=False,
                                account_id=None, mutating=True, now=None) -> Optional[AccessContext]:
        """
        Compose every gate for one external action.

        1. The token must validate.
        2. `flag` must be set on the token (no flag for liveness checks).
        3. An account-gated token needs account_id with an active grant on
           this token, for reads and writes alike.
        4. Mutating actions on a PIN-protected token need pin_verified.

        A liveness read (flag=None) that fails the account or PIN gate gets
        a minimal context with no flags, so the caller can prompt for sign
        in or PIN. A flagged read fails the account gate outright but only
        gets the minimal context on the PIN gate.

        Returns:
            AccessContext, or None when any gate fails
        """
        from apps.portal.accounts import ExternalAccountService

        context = cls.validate(raw_token, now=now)
        if context is None:
            return None

        if flag is not None:
            if flag not in PERMISSION_FLAGS:
                raise ValueError(f"Unknown portal permission flag: {flag}")
            if not context.can(flag):
                return None

        if context.require_account:
            granted = bool(account_id) and ExternalAccountService.has_active_grant(account_id, context.token_id)
            if not granted:
                if mutating or flag is not None:
                    return None
                return context.minimal()

        if context.pin_required and not pin_verified:
            return None if mutating else context.minimal()

        return context
