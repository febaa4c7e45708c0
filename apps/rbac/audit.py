"""
Authorization audit logging.

Writes one AuthorizationAuditLog row per recorded decision. Logging runs
after the decision is final and can never change it: every failure here is
logged and swallowed.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.db import transaction

from apps.core.logging import SecurityLogger
from apps.rbac.models import AuthorizationAuditLog

logger = logging.getLogger(__name__)

DEFAULT_POLICY_VERSION = 'rbac-v1'


@dataclass(frozen=True)
class AuditContext:
    """Request details recorded alongside a decision."""
    resource_type: str = ''
    resource_id: str = ''
    request_id: Optional[str] = None
    policy_version: Optional[str] = None


class AuthorizationAuditLogger:
    """Persists authorization decisions to the append-only audit table."""

    @classmethod
    def default_policy_version(cls) -> str:
        return getattr(settings, 'AUTHZ_POLICY_VERSION', DEFAULT_POLICY_VERSION)

    @classmethod
    def log(cls, decision, context: Optional[AuditContext] = None) -> Optional[AuthorizationAuditLog]:
        """
        Record a decision.

        Args:
            decision: AuthorizationDecision to persist
            context: AuditContext with resource and correlation details

        Returns:
            The created row, or None when the write failed
        """
        context = context or AuditContext()
        try:
            # Savepoint so a failed insert does not poison the caller's transaction
            with transaction.atomic():
                entry = AuthorizationAuditLog.objects.create(
                    actor_id=str(decision.actor_id or ''),
                    org_id=decision.org_id,
                    project_id=decision.project_id,
                    permission_key=decision.permission or '',
                    resource_type=context.resource_type or '',
                    resource_id=str(context.resource_id or ''),
                    decision=(
                        AuthorizationAuditLog.DECISION_ALLOW if decision.allowed
                        else AuthorizationAuditLog.DECISION_DENY
                    ),
                    reason_code=decision.reason_code.value,
                    policy_version=context.policy_version or cls.default_policy_version(),
                    context={
                        'scopes_evaluated': list(decision.scopes_evaluated),
                        'permissions': sorted(decision.permissions),
                    },
                    request_id=context.request_id,
                )
        except Exception:
            logger.error(
                f"Failed to write authorization audit log for {decision.permission}",
                extra={
                    'actor_id': str(decision.actor_id),
                    'reason_code': decision.reason_code.value,
                },
                exc_info=True
            )
            return None

        if not decision.allowed:
            SecurityLogger.log_authorization_denied(
                actor_id=decision.actor_id,
                permission=decision.permission,
                reason_code=decision.reason_code.value,
                org_id=decision.org_id,
                project_id=decision.project_id,
                request_id=context.request_id,
            )
        return entry
