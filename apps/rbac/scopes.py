"""
Scope permission aggregation.

Each resolver looks up the actor's membership at one scope (project, org,
platform) and returns the permission keys its role grants. The decision
engine runs them in order; the project resolver may supply the org id the
org resolver then uses.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, List, Optional

from django.utils import timezone

from apps.rbac.models import (
    OrgMembership, PlatformMembership, ProjectMembership, Role,
)

SCOPE_PROJECT = 'project'
SCOPE_ORG = 'org'
SCOPE_PLATFORM = 'platform'


def as_uuid(value) -> Optional[uuid.UUID]:
    """Coerce an id to UUID; anything unparsable resolves to no membership."""
    if value is None or value == '':
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


@dataclass(frozen=True)
class ResolvedRole:
    """A role with its permission keys materialized."""
    key: str
    permissions: FrozenSet[str] = frozenset()

    @classmethod
    def from_role(cls, role: Role) -> 'ResolvedRole':
        return cls(key=role.key, permissions=role.permission_keys())


@dataclass(frozen=True)
class ScopeResult:
    """What one resolver found for the actor."""
    permissions: FrozenSet[str] = frozenset()
    membership_found: bool = False
    derived_org_id: Optional[uuid.UUID] = None
    roles: tuple = ()


@dataclass
class ScopeRequest:
    """Inputs shared by every resolver for one authorization call."""
    actor_id: Optional[uuid.UUID]
    org_id: Optional[uuid.UUID] = None
    project_id: Optional[uuid.UUID] = None
    now: datetime = field(default_factory=timezone.now)


def _resolve_roles(memberships) -> ScopeResult:
    roles = tuple(ResolvedRole.from_role(m.role) for m in memberships)
    permissions = frozenset().union(*(r.permissions for r in roles)) if roles else frozenset()
    return ScopeResult(permissions=permissions, membership_found=bool(roles), roles=roles)


class ScopeResolver:
    """
    Base class for one scope.

    `record_always` controls whether the scope name is added to
    scopes_evaluated whenever the resolver runs, or only when it finds a
    membership.
    """

    name = ''
    record_always = True

    def applies(self, request: ScopeRequest) -> bool:
        raise NotImplementedError

    def resolve(self, request: ScopeRequest) -> ScopeResult:
        raise NotImplementedError


class ProjectScopeResolver(ScopeResolver):
    name = SCOPE_PROJECT

    def applies(self, request):
        return request.project_id is not None

    def resolve(self, request):
        if request.actor_id is None:
            return ScopeResult()
        membership = (
            ProjectMembership.objects.active()
            .filter(user_id=request.actor_id, project_id=request.project_id)
            .select_related('role')
            .first()
        )
        if membership is None:
            return ScopeResult()
        role = ResolvedRole.from_role(membership.role)
        return ScopeResult(
            permissions=role.permissions,
            membership_found=True,
            derived_org_id=membership.org_id,
            roles=(role,),
        )


class OrgScopeResolver(ScopeResolver):
    name = SCOPE_ORG

    def applies(self, request):
        return request.org_id is not None

    def resolve(self, request):
        if request.actor_id is None:
            return ScopeResult()
        memberships = (
            OrgMembership.objects.active()
            .filter(user_id=request.actor_id, org_id=request.org_id)
            .select_related('role')
        )
        return _resolve_roles(memberships)


class PlatformScopeResolver(ScopeResolver):
    """Active, unexpired platform memberships. Recorded only when found."""

    name = SCOPE_PLATFORM
    record_always = False

    def applies(self, request):
        return True

    def resolve(self, request):
        if request.actor_id is None:
            return ScopeResult()
        memberships = (
            PlatformMembership.objects.effective(now=request.now)
            .filter(user_id=request.actor_id)
            .select_related('role')
        )
        return _resolve_roles(memberships)


DEFAULT_RESOLVERS: List[ScopeResolver] = [
    ProjectScopeResolver(),
    OrgScopeResolver(),
    PlatformScopeResolver(),
]


def platform_role_keys(actor_id, now=None) -> List[str]:
    """Sorted role keys of the actor's effective platform memberships."""
    actor_uuid = as_uuid(actor_id)
    if actor_uuid is None:
        return []
    return sorted(set(
        PlatformMembership.objects.effective(now=now)
        .filter(user_id=actor_uuid)
        .values_list('role__key', flat=True)
    ))
