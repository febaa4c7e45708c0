"""
External portal accounts, sessions and grants.

An account-gated portal token only grants access when the caller
is signed in to an external account holding an active grant on that token.
"""
import hashlib
import logging
import secrets
from datetime import timedelta
from typing import List, Optional, Tuple

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from apps.core.exceptions import AuthenticationError, NotFoundError, ValidationError
from apps.core.logging import SecurityLogger
from apps.portal.models import (
    ExternalPortalAccount, ExternalPortalGrant, ExternalPortalSession,
    PortalAccessToken, normalize_email,
)
from apps.rbac.scopes import as_uuid
from apps.rbac.services import AuthorizationService

logger = logging.getLogger(__name__)

MANAGE_PERMISSION = 'portal.access.manage'
MIN_PASSWORD_LENGTH = 8
INVALID_LINK_MESSAGE = 'This access link is invalid or no longer active'
INVALID_CREDENTIALS_MESSAGE = 'Invalid email or password'


def hash_session_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode('utf-8')).hexdigest()


def _session_ttl():
    return timedelta(days=getattr(settings, 'EXTERNAL_SESSION_TTL_DAYS', 30))


class ExternalAccountService:
    """
    Service for external portal accounts.

    Claim and login failures raise AuthenticationError with generic
    messages; the specific reason only reaches the security log.
    """

    @classmethod
    def has_active_grant(cls, account_id, token_id) -> bool:
        """True when the grant is active and so is the account holding it."""
        account_uuid = as_uuid(account_id)
        token_uuid = as_uuid(token_id)
        if account_uuid is None or token_uuid is None:
            return False
        return ExternalPortalGrant.objects.active().filter(
            account_id=account_uuid,
            portal_token_id=token_uuid,
            account__status=ExternalPortalAccount.STATUS_ACTIVE,
        ).exists()

    @classmethod
    def _live_token(cls, raw_token) -> PortalAccessToken:
        from apps.portal.services import PortalTokenService

        token = PortalTokenService.get_live_token(raw_token)
        if token is None:
            raise NotFoundError(INVALID_LINK_MESSAGE)
        return token

    @classmethod
    def _fail(cls, email, org_id, reason):
        SecurityLogger.log_failed_external_login(email=email, org_id=org_id, reason=reason)
        raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)

    @classmethod
    def claim(cls, raw_token, email, password, full_name=None) -> Tuple[ExternalPortalAccount, str]:
        """
        Create or re-authenticate an account for the token's org, grant it
        this token when it has no grant yet and open a session. A paused or
        revoked grant fails like a wrong password.

        Returns:
            (account, raw_session_token)
        """
        token = cls._live_token(raw_token)
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError('Email and password are required')

        account = ExternalPortalAccount.objects.by_email(token.org_id, email)
        if account is None:
            if len(password) < MIN_PASSWORD_LENGTH:
                raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
            account = ExternalPortalAccount.objects.create(
                org_id=token.org_id,
                email=email,
                full_name=(full_name or '').strip(),
                password_hash=make_password(password),
            )
            logger.info(
                f"External account created for org {token.org_id}",
                extra={'account_id': str(account.id)}
            )
        else:
            if not check_password(password, account.password_hash):
                cls._fail(email, token.org_id, 'incorrect_password')
            if not account.full_name and full_name and full_name.strip():
                account.full_name = full_name.strip()
                account.save(update_fields=['full_name', 'updated_at'])

        return cls._open(account, token)

    @classmethod
    def login(cls, raw_token, email, password) -> Tuple[ExternalPortalAccount, str]:
        """Authenticate an existing account against the token's org."""
        token = cls._live_token(raw_token)
        email = normalize_email(email)

        account = ExternalPortalAccount.objects.by_email(token.org_id, email)
        if account is None:
            # Burn a hash so unknown emails take as long as wrong passwords
            make_password(password or '')
            cls._fail(email, token.org_id, 'unknown_account')
        if not check_password(password or '', account.password_hash):
            cls._fail(email, token.org_id, 'incorrect_password')

        return cls._open(account, token)

    @classmethod
    def _open(cls, account, token) -> Tuple[ExternalPortalAccount, str]:
        if not account.is_active:
            SecurityLogger.log_failed_external_login(
                email=account.email, org_id=token.org_id, reason=f'account_{account.status}'
            )
            raise AuthenticationError('This account is paused or revoked. Contact the builder.')

        # Only a manager resumes a paused or revoked grant
        grant = ExternalPortalGrant.objects.filter(account=account, portal_token=token).first()
        if grant is not None and grant.status != ExternalPortalGrant.STATUS_ACTIVE:
            cls._fail(account.email, token.org_id, f'grant_{grant.status}')

        now = timezone.now()
        raw_session = secrets.token_hex(32)

        with transaction.atomic():
            if grant is None:
                ExternalPortalGrant.objects.get_or_create(
                    account=account,
                    portal_token=token,
                    defaults={'org_id': token.org_id},
                )

            account.last_login_at = now
            account.save(update_fields=['last_login_at', 'updated_at'])

            ExternalPortalSession.objects.create(
                org_id=token.org_id,
                account=account,
                session_token_hash=hash_session_token(raw_session),
                expires_at=now + _session_ttl(),
                last_seen_at=now,
            )

        return account, raw_session

    @classmethod
    def resolve_session(cls, raw_session_token) -> Optional[ExternalPortalSession]:
        """
        The open session for a raw token, or None.

        Revoked, expired and paused-account sessions all resolve to None.
        """
        if not raw_session_token or not isinstance(raw_session_token, str):
            return None
        now = timezone.now()
        session = (
            ExternalPortalSession.objects.open(now)
            .filter(session_token_hash=hash_session_token(raw_session_token))
            .select_related('account')
            .first()
        )
        if session is None or not session.account.is_active:
            return None

        ExternalPortalSession.objects.filter(id=session.id).update(last_seen_at=now)
        return session

    @classmethod
    def sign_out(cls, raw_session_token) -> bool:
        if not raw_session_token or not isinstance(raw_session_token, str):
            return False
        updated = ExternalPortalSession.objects.filter(
            session_token_hash=hash_session_token(raw_session_token),
            revoked_at__isnull=True,
        ).update(revoked_at=timezone.now())
        return bool(updated)

    @classmethod
    def set_grant_status(cls, grant_id, status, actor_id, request_id=None) -> ExternalPortalGrant:
        """Pause, resume or revoke one account's grant. The token is untouched."""
        if status not in dict(ExternalPortalGrant.STATUS_CHOICES):
            raise ValidationError('Invalid grant status', details={'status': status})

        grant = ExternalPortalGrant.objects.select_related('portal_token').filter(id=grant_id).first()
        if grant is None:
            raise NotFoundError('Grant not found')

        AuthorizationService.require_project_permission(
            actor_id, grant.portal_token.project_id, MANAGE_PERMISSION,
            resource_type='external_portal_grant',
            resource_id=grant.id,
            request_id=request_id,
        )

        now = timezone.now()
        grant.status = status
        grant.paused_at = now if status == ExternalPortalGrant.STATUS_PAUSED else None
        grant.revoked_at = now if status == ExternalPortalGrant.STATUS_REVOKED else None
        grant.save(update_fields=['status', 'paused_at', 'revoked_at', 'updated_at'])

        logger.info(
            f"External grant {grant.id} set to {status}",
            extra={'grant_id': str(grant.id), 'actor_id': str(actor_id)}
        )
        return grant

    @classmethod
    def set_account_status(cls, account_id, status, actor_id, project_id,
                           request_id=None) -> ExternalPortalAccount:
        """
        Pause, resume or revoke an account. Non-active statuses close all of
        its open sessions.

        The actor must hold portal.access.manage on a project whose tokens
        the account has been granted.
        """
        if status not in dict(ExternalPortalAccount.STATUS_CHOICES):
            raise ValidationError('Invalid account status', details={'status': status})

        account = ExternalPortalAccount.objects.filter(
            id=account_id,
            grants__portal_token__project_id=project_id,
        ).distinct().first()
        if account is None:
            raise NotFoundError('Account not found')

        AuthorizationService.require_project_permission(
            actor_id, project_id, MANAGE_PERMISSION,
            resource_type='external_portal_account',
            resource_id=account.id,
            request_id=request_id,
        )

        now = timezone.now()
        with transaction.atomic():
            account.status = status
            account.paused_at = now if status == ExternalPortalAccount.STATUS_PAUSED else None
            account.revoked_at = now if status == ExternalPortalAccount.STATUS_REVOKED else None
            account.save(update_fields=['status', 'paused_at', 'revoked_at', 'updated_at'])

            if status != ExternalPortalAccount.STATUS_ACTIVE:
                ExternalPortalSession.objects.filter(
                    account=account, revoked_at__isnull=True
                ).update(revoked_at=now)

        return account

    @classmethod
    def list_project_accounts(cls, actor_id, project_id, request_id=None) -> List[ExternalPortalAccount]:
        """Accounts granted on any of the project's tokens, sorted by email."""
        AuthorizationService.require_project_permission(
            actor_id, project_id, MANAGE_PERMISSION,
            resource_type='external_portal_account',
            request_id=request_id,
        )
        return list(
            ExternalPortalAccount.objects.filter(grants__portal_token__project_id=project_id)
            .annotate(
                grant_count=Count('grants', filter=Q(grants__portal_token__project_id=project_id), distinct=True),
                active_grant_count=Count(
                    'grants',
                    filter=Q(
                        grants__portal_token__project_id=project_id,
                        grants__status=ExternalPortalGrant.STATUS_ACTIVE,
                    ),
                    distinct=True,
                ),
            )
            .order_by('email')
        )
