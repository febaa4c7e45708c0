"""
Result shape shared by both external credential families.

Portal tokens and signed capability tokens stay distinct types; callers
only see this value after a credential has been validated.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, Optional

KIND_PORTAL = 'portal'
KIND_SIGNED = 'signed'


@dataclass(frozen=True)
class AccessContext:
    kind: str
    org_id: Optional[str] = None
    project_id: Optional[str] = None
    company_id: Optional[str] = None
    contact_id: Optional[str] = None
    token_id: Optional[str] = None
    resource_id: Optional[str] = None
    permissions: Dict[str, bool] = field(default_factory=dict)
    portal_type: Optional[str] = None
    pin_required: bool = False
    require_account: bool = False

    def can(self, flag: str) -> bool:
        return bool(self.permissions.get(flag, False))

    def minimal(self) -> 'AccessContext':
        """Liveness-only view: identifies the token but exposes no grants."""
        return replace(self, permissions={}, company_id=None, contact_id=None)

    def to_dict(self):
        return {
            'kind': self.kind,
            'org_id': self.org_id,
            'project_id': self.project_id,
            'company_id': self.company_id,
            'contact_id': self.contact_id,
            'token_id': self.token_id,
            'resource_id': self.resource_id,
            'portal_type': self.portal_type,
            'permissions': dict(self.permissions),
            'pin_required': self.pin_required,
            'require_account': self.require_account,
        }
