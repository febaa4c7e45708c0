"""
RBAC and authentication services.

Implements:
- AuthorizationService: the decision engine (catalog check, superadmin
  short-circuit, scope aggregation, audited allow/deny decisions)
- AuthService: JWT minting and validation for internal actors
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone as dt_timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import jwt
from django.conf import settings

from apps.core.exceptions import PermissionDeniedError
from apps.rbac.audit import AuditContext, AuthorizationAuditLogger
from apps.rbac.catalog import PermissionCatalog, get_permission_catalog
from apps.rbac.models import User, WILDCARD_PERMISSION
from apps.rbac.scopes import (
    DEFAULT_RESOLVERS, OrgScopeResolver, PlatformScopeResolver,
    ScopeRequest, as_uuid, platform_role_keys,
)

logger = logging.getLogger(__name__)

SCOPE_CATALOG = 'permission_catalog'
SCOPE_SUPERADMIN = 'superadmin'


class ReasonCode(str, Enum):
    """Why a decision came out the way it did. Exactly one per decision."""

    ALLOW_SUPERADMIN = 'allow_superadmin'
    ALLOW_PERMISSION = 'allow_permission'
    DENY_INVALID_CONTEXT = 'deny_invalid_context'
    DENY_UNKNOWN_PERMISSION = 'deny_unknown_permission'
    DENY_NO_PROJECT_MEMBERSHIP = 'deny_no_project_membership'
    DENY_NO_ORG_MEMBERSHIP = 'deny_no_org_membership'
    DENY_MISSING_PERMISSION = 'deny_missing_permission'


@dataclass(frozen=True)
class AuthorizationDecision:
    """Immutable outcome of one authorization request."""

    permission: str
    actor_id: Optional[str]
    org_id: Optional[Any]
    project_id: Optional[Any]
    allowed: bool
    reason_code: ReasonCode
    scopes_evaluated: Tuple[str, ...] = ()
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'permission': self.permission,
            'actor_id': str(self.actor_id) if self.actor_id else None,
            'org_id': str(self.org_id) if self.org_id else None,
            'project_id': str(self.project_id) if self.project_id else None,
            'allowed': self.allowed,
            'reason_code': self.reason_code.value,
            'scopes_evaluated': list(self.scopes_evaluated),
        }


class AuthorizationError(PermissionDeniedError):
    """Raised by the require_* helpers when a decision denies."""

    def __init__(self, decision: AuthorizationDecision, message=None):
        self.decision = decision
        self.reason_code = decision.reason_code.value
        self.permission = decision.permission
        self.scopes_evaluated = list(decision.scopes_evaluated)
        super().__init__(
            message or f"Missing permission: {decision.permission}",
            details={
                'permission': decision.permission,
                'scopes_evaluated': self.scopes_evaluated,
            },
        )


class AuthorizationService:
    """
    RBAC decision engine.

    Deny decisions are always written to the audit log. Allow decisions are
    written only when the caller passes log_decision=True; guards and the
    require_* helpers always do, advisory checks do not.
    """

    catalog: Optional[PermissionCatalog] = None
    resolvers = DEFAULT_RESOLVERS

    @classmethod
    def get_catalog(cls) -> PermissionCatalog:
        return cls.catalog or get_permission_catalog()

    @classmethod
    def is_superadmin(cls, actor_id, actor_email: Optional[str] = None) -> bool:
        """
        Check the operator allow-list by actor id, then by verified email.

        An explicit actor_email is trusted as verified (it comes from an
        authenticated token); otherwise the User row must have email_verified.
        """
        admin_ids = {str(i).strip() for i in getattr(settings, 'PLATFORM_ADMIN_USER_IDS', []) if i}
        if actor_id and str(actor_id) in admin_ids:
            return True

        admin_emails = {e.strip().lower() for e in getattr(settings, 'PLATFORM_ADMIN_EMAILS', []) if e}
        if not admin_emails:
            return False

        if actor_email:
            return actor_email.strip().lower() in admin_emails

        actor_uuid = as_uuid(actor_id)
        if actor_uuid is None:
            return False
        email = (
            User.objects.filter(id=actor_uuid, email_verified=True, is_active=True)
            .values_list('email', flat=True)
            .first()
        )
        return bool(email) and email.lower() in admin_emails

    @classmethod
    def authorize(cls, permission: str, actor_id, org_id=None, project_id=None, *,
                  log_decision: bool = False, resource_type: str = '', resource_id=None,
                  request_id: Optional[str] = None, policy_version: Optional[str] = None,
                  actor_email: Optional[str] = None) -> AuthorizationDecision:
        """
        Decide whether actor_id holds `permission` in the given scope.

        Args:
            permission: Permission key (e.g., 'project.manage')
            actor_id: Internal actor (User) id
            org_id: Organization scope, optional
            project_id: Project scope, optional
            log_decision: Persist allow decisions too
            resource_type, resource_id: Recorded on the audit row
            request_id: Correlation id recorded on the audit row
            policy_version: Overrides AUTHZ_POLICY_VERSION on the audit row
            actor_email: Verified email for the superadmin allow-list

        Returns:
            AuthorizationDecision
        """
        audit_context = AuditContext(
            resource_type=resource_type or '',
            resource_id=str(resource_id) if resource_id else '',
            request_id=request_id,
            policy_version=policy_version,
        )
        org_uuid = as_uuid(org_id)
        project_uuid = as_uuid(project_id)

        def decide(allowed, reason, scopes=(), permissions=frozenset(), resolved_org=org_uuid):
            decision = AuthorizationDecision(
                permission=permission,
                actor_id=str(actor_id) if actor_id else actor_id,
                org_id=resolved_org,
                project_id=project_uuid,
                allowed=allowed,
                reason_code=reason,
                scopes_evaluated=tuple(scopes),
                permissions=frozenset(permissions),
            )
            if not allowed or log_decision:
                AuthorizationAuditLogger.log(decision, audit_context)
            return decision

        if not actor_id or not permission:
            return decide(False, ReasonCode.DENY_INVALID_CONTEXT)

        if not cls.get_catalog().exists(permission):
            return decide(False, ReasonCode.DENY_UNKNOWN_PERMISSION, scopes=[SCOPE_CATALOG])

        if cls.is_superadmin(actor_id, actor_email):
            return decide(
                True, ReasonCode.ALLOW_SUPERADMIN,
                scopes=[SCOPE_SUPERADMIN], permissions={WILDCARD_PERMISSION},
            )

        # Malformed scope ids cannot match a membership row
        if (org_id and org_uuid is None) or (project_id and project_uuid is None):
            return decide(False, ReasonCode.DENY_INVALID_CONTEXT)

        request = ScopeRequest(actor_id=as_uuid(actor_id), org_id=org_uuid, project_id=project_uuid)
        scopes: List[str] = []
        permissions: Set[str] = set()
        found: Dict[str, bool] = {}

        for resolver in cls.resolvers:
            if not resolver.applies(request):
                continue
            result = resolver.resolve(request)
            found[resolver.name] = result.membership_found
            if result.membership_found or resolver.record_always:
                scopes.append(resolver.name)
            permissions |= result.permissions
            if request.org_id is None and result.derived_org_id is not None:
                request.org_id = result.derived_org_id

        allowed = permission in permissions or WILDCARD_PERMISSION in permissions
        if allowed:
            reason = ReasonCode.ALLOW_PERMISSION
        elif request.project_id is not None and not found.get('project'):
            reason = ReasonCode.DENY_NO_PROJECT_MEMBERSHIP
        elif request.org_id is not None and not found.get('org'):
            reason = ReasonCode.DENY_NO_ORG_MEMBERSHIP
        else:
            reason = ReasonCode.DENY_MISSING_PERMISSION

        return decide(allowed, reason, scopes=scopes, permissions=permissions,
                      resolved_org=request.org_id)

    @classmethod
    def require_authorization(cls, permission: str, actor_id, org_id=None, project_id=None,
                              **kwargs) -> AuthorizationDecision:
        """
        Authorize and raise AuthorizationError when denied.

        The decision is always audited.
        """
        kwargs['log_decision'] = True
        decision = cls.authorize(permission, actor_id, org_id, project_id, **kwargs)
        if not decision.allowed:
            raise AuthorizationError(decision)
        return decision

    @classmethod
    def has_permission(cls, actor_id, permission: str, org_id=None, project_id=None,
                       advisory: bool = False, **kwargs) -> bool:
        """
        Boolean check.

        advisory=True is for UI checks deciding what to show: allows are not
        written to the audit log.
        """
        kwargs['log_decision'] = not advisory
        return cls.authorize(permission, actor_id, org_id, project_id, **kwargs).allowed

    @classmethod
    def require_permission(cls, actor_id, permission: str, org_id=None, project_id=None,
                           **kwargs) -> AuthorizationDecision:
        return cls.require_authorization(permission, actor_id, org_id, project_id, **kwargs)

    @classmethod
    def has_any_permission(cls, actor_id, permissions: Iterable[str], org_id=None,
                           project_id=None, advisory: bool = False, **kwargs) -> bool:
        """True when at least one of `permissions` is allowed. Stops at the first allow."""
        return any(
            cls.has_permission(actor_id, perm, org_id, project_id, advisory=advisory, **kwargs)
            for perm in permissions
        )

    @classmethod
    def require_any_permission(cls, actor_id, permissions: Iterable[str], org_id=None,
                               project_id=None, **kwargs) -> AuthorizationDecision:
        """Return the first allowing decision, or raise with the last denial."""
        decision = None
        for perm in permissions:
            decision = cls.authorize(perm, actor_id, org_id, project_id, log_decision=True, **kwargs)
            if decision.allowed:
                return decision

        if decision is None:
            decision = cls.authorize('', actor_id, org_id, project_id, **kwargs)
        raise AuthorizationError(decision, message="Missing all of the required permissions")

    @classmethod
    def has_project_permission(cls, actor_id, project_id, permission: str, **kwargs) -> bool:
        return cls.has_permission(actor_id, permission, project_id=project_id, **kwargs)

    @classmethod
    def require_project_permission(cls, actor_id, project_id, permission: str,
                                   **kwargs) -> AuthorizationDecision:
        return cls.require_authorization(permission, actor_id, project_id=project_id, **kwargs)

    @classmethod
    def get_user_permissions(cls, actor_id, org_id=None, actor_email: Optional[str] = None) -> Set[str]:
        """
        Permission keys the actor holds at org and platform scope.

        Superadmins get {'*'}. Nothing is audited.
        """
        if not actor_id:
            return set()
        if cls.is_superadmin(actor_id, actor_email):
            return {WILDCARD_PERMISSION}

        request = ScopeRequest(actor_id=as_uuid(actor_id), org_id=as_uuid(org_id))
        permissions: Set[str] = set()
        for resolver in (OrgScopeResolver(), PlatformScopeResolver()):
            if resolver.applies(request):
                permissions |= resolver.resolve(request).permissions
        return permissions

    @classmethod
    def list_platform_role_keys(cls, actor_id) -> List[str]:
        return platform_role_keys(actor_id)

    @classmethod
    def has_platform_access(cls, actor_id, email: Optional[str] = None) -> bool:
        """Superadmins and actors with any effective platform membership."""
        if not actor_id:
            return False
        return cls.is_superadmin(actor_id, email) or bool(platform_role_keys(actor_id))


class AuthService:
    """
    JWT authentication for internal actors.
    """

    @classmethod
    def generate_jwt(cls, user: User, expires_in: Optional[timedelta] = None) -> str:
        """
        Generate JWT token for a user.

        Args:
            user: User instance
            expires_in: Lifetime, defaults to JWT_EXPIRATION_HOURS

        Returns:
            JWT token string
        """
        now = datetime.now(dt_timezone.utc)
        if expires_in is None:
            expires_in = timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24))
        payload = {
            'user_id': str(user.id),
            'email': user.email,
            'exp': now + expires_in,
            'iat': now,
        }

        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Validate JWT token and return payload.

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Rejected expired JWT")
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_user(cls, payload: Dict[str, Any]) -> Optional[User]:
        """Return the active user named by a validated payload."""
        user_id = as_uuid(payload.get('user_id'))
        if user_id is None:
            return None
        return User.objects.active().filter(id=user_id).first()
