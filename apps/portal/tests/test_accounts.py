"""
Tests for external portal accounts, sessions and grants.
"""
import pytest
from datetime import timedelta
from django.utils import timezone

from apps.core.exceptions import AuthenticationError, NotFoundError, ValidationError
from apps.portal.accounts import ExternalAccountService, hash_session_token
from apps.portal.models import ExternalPortalAccount, ExternalPortalGrant, ExternalPortalSession
from apps.portal.services import PortalTokenService
from apps.rbac.services import AuthorizationError

PASSWORD = 'owner-pass-2026'


@pytest.fixture
def gated_token(manager, project):
    return PortalTokenService.create_token(
        manager.id, project.id, 'client',
        permissions={'can_approve_change_orders': True},
        require_account=True,
    )


@pytest.fixture
def claimed(gated_token):
    account, session = ExternalAccountService.claim(gated_token.raw_token, 'Owner@Client.test', PASSWORD, 'Olive Owner')
    return account, session


@pytest.mark.django_db
class TestClaim:

    def test_claim_creates_account_grant_and_session(self, gated_token, claimed, project):
        account, session = claimed

        assert account.email == 'owner@client.test'
        assert account.org_id == project.org_id
        assert account.full_name == 'Olive Owner'
        assert ExternalAccountService.has_active_grant(account.id, gated_token.id)
        stored = ExternalPortalSession.objects.get(account=account)
        assert stored.session_token_hash == hash_session_token(session)
        assert stored.session_token_hash != session

    def test_reclaim_with_same_password_reuses_account(self, gated_token, claimed):
        account, _ = claimed

        again, _ = ExternalAccountService.claim(gated_token.raw_token, 'owner@client.test', PASSWORD)

        assert again.id == account.id
        assert ExternalPortalGrant.objects.filter(account=account).count() == 1

    def test_reclaim_with_wrong_password(self, gated_token, claimed):
        with pytest.raises(AuthenticationError) as exc_info:
            ExternalAccountService.claim(gated_token.raw_token, 'owner@client.test', 'not-the-password')

        assert exc_info.value.message == 'Invalid email or password'

    def test_short_password(self, gated_token):
        with pytest.raises(ValidationError):
            ExternalAccountService.claim(gated_token.raw_token, 'new@client.test', 'short')

    def test_missing_email(self, gated_token):
        with pytest.raises(ValidationError):
            ExternalAccountService.claim(gated_token.raw_token, '  ', PASSWORD)

    def test_dead_link(self, gated_token, manager):
        PortalTokenService.revoke(gated_token.id, manager.id)

        with pytest.raises(NotFoundError):
            ExternalAccountService.claim(gated_token.raw_token, 'owner@client.test', PASSWORD)

    @pytest.mark.parametrize('status', ['paused', 'revoked'])
    def test_signing_in_again_keeps_grant_status(self, gated_token, claimed, manager, status):
        account, _ = claimed
        grant = ExternalPortalGrant.objects.get(account=account)
        ExternalAccountService.set_grant_status(grant.id, status, manager.id)
        sessions_before = ExternalPortalSession.objects.filter(account=account).count()

        for sign_in in (ExternalAccountService.claim, ExternalAccountService.login):
            with pytest.raises(AuthenticationError) as exc_info:
                sign_in(gated_token.raw_token, 'owner@client.test', PASSWORD)
            assert exc_info.value.message == 'Invalid email or password'

        grant.refresh_from_db()
        assert grant.status == status
        assert not ExternalAccountService.has_active_grant(account.id, gated_token.id)
        assert ExternalPortalSession.objects.filter(account=account).count() == sessions_before

    def test_resumed_grant_allows_sign_in(self, gated_token, claimed, manager):
        account, _ = claimed
        grant = ExternalPortalGrant.objects.get(account=account)
        ExternalAccountService.set_grant_status(grant.id, 'paused', manager.id)
        ExternalAccountService.set_grant_status(grant.id, 'active', manager.id)

        _, session = ExternalAccountService.login(gated_token.raw_token, 'owner@client.test', PASSWORD)

        assert ExternalAccountService.resolve_session(session).account_id == account.id


@pytest.mark.django_db
class TestLoginAndSessions:

    def test_login(self, gated_token, claimed):
        account, _ = claimed

        logged_in, session = ExternalAccountService.login(gated_token.raw_token, 'OWNER@client.test', PASSWORD)

        assert logged_in.id == account.id
        assert ExternalAccountService.resolve_session(session).account_id == account.id

    @pytest.mark.parametrize('email,password', [
        ('owner@client.test', 'wrong-password'),
        ('nobody@client.test', PASSWORD),
        ('owner@client.test', ''),
    ])
    def test_login_failures_are_generic(self, gated_token, claimed, email, password):
        with pytest.raises(AuthenticationError) as exc_info:
            ExternalAccountService.login(gated_token.raw_token, email, password)

        assert exc_info.value.message == 'Invalid email or password'

    def test_accounts_are_org_scoped(self, claimed, other_project, grant, make_user):
        outside_pm = make_user()
        grant.project(outside_pm, other_project, 'pm')
        other_token = PortalTokenService.create_token(outside_pm.id, other_project.id, 'client')

        with pytest.raises(AuthenticationError):
            ExternalAccountService.login(other_token.raw_token, 'owner@client.test', PASSWORD)

    def test_sign_out(self, claimed):
        _, session = claimed

        assert ExternalAccountService.sign_out(session) is True
        assert ExternalAccountService.resolve_session(session) is None
        assert ExternalAccountService.sign_out(session) is False

    def test_expired_session(self, claimed):
        account, session = claimed
        ExternalPortalSession.objects.filter(account=account).update(
            expires_at=timezone.now() - timedelta(seconds=1)
        )

        assert ExternalAccountService.resolve_session(session) is None

    @pytest.mark.parametrize('raw', [None, '', 'unknown-session'])
    def test_unknown_sessions(self, db, raw):
        assert ExternalAccountService.resolve_session(raw) is None


@pytest.mark.django_db
class TestGrantAndAccountStatus:

    def test_pausing_grant_flips_authorization(self, gated_token, claimed, manager):
        account, _ = claimed
        grant = ExternalPortalGrant.objects.get(account=account)

        def allowed():
            return PortalTokenService.authorize_portal_action(
                gated_token.raw_token, 'can_approve_change_orders', account_id=account.id
            ) is not None

        assert allowed()
        ExternalAccountService.set_grant_status(grant.id, 'paused', manager.id)
        assert not allowed()
        ExternalAccountService.set_grant_status(grant.id, 'active', manager.id)
        assert allowed()

    def test_paused_grant_hides_read_context(self, gated_token, claimed, manager):
        account, _ = claimed
        grant = ExternalPortalGrant.objects.get(account=account)
        ExternalAccountService.set_grant_status(grant.id, 'paused', manager.id)

        assert PortalTokenService.authorize_portal_action(
            gated_token.raw_token, 'can_approve_change_orders', account_id=account.id, mutating=False
        ) is None
        landing = PortalTokenService.authorize_portal_action(
            gated_token.raw_token, None, account_id=account.id, mutating=False
        )
        assert landing.permissions == {}

    def test_revoking_grant_leaves_token_live(self, gated_token, claimed, manager):
        account, _ = claimed
        grant = ExternalPortalGrant.objects.get(account=account)

        revoked = ExternalAccountService.set_grant_status(grant.id, 'revoked', manager.id)

        assert revoked.revoked_at is not None
        assert PortalTokenService.validate(gated_token.raw_token) is not None

    def test_grant_status_requires_permission(self, claimed, make_user):
        account, _ = claimed
        grant = ExternalPortalGrant.objects.get(account=account)

        with pytest.raises(AuthorizationError):
            ExternalAccountService.set_grant_status(grant.id, 'paused', make_user().id)

    def test_invalid_grant_status(self, claimed, manager):
        account, _ = claimed
        grant = ExternalPortalGrant.objects.get(account=account)

        with pytest.raises(ValidationError):
            ExternalAccountService.set_grant_status(grant.id, 'frozen', manager.id)

    def test_pausing_account_closes_sessions(self, gated_token, claimed, manager, project):
        account, session = claimed

        ExternalAccountService.set_account_status(account.id, 'paused', manager.id, project.id)

        assert ExternalAccountService.resolve_session(session) is None
        assert not ExternalAccountService.has_active_grant(account.id, gated_token.id)
        with pytest.raises(AuthenticationError):
            ExternalAccountService.login(gated_token.raw_token, 'owner@client.test', PASSWORD)

    def test_resumed_account_can_sign_in_again(self, gated_token, claimed, manager, project):
        account, _ = claimed
        ExternalAccountService.set_account_status(account.id, 'revoked', manager.id, project.id)
        ExternalAccountService.set_account_status(account.id, 'active', manager.id, project.id)

        _, session = ExternalAccountService.login(gated_token.raw_token, 'owner@client.test', PASSWORD)

        assert ExternalAccountService.resolve_session(session) is not None

    def test_account_must_belong_to_project(self, claimed, manager, other_project):
        account, _ = claimed

        with pytest.raises(NotFoundError):
            ExternalAccountService.set_account_status(account.id, 'paused', manager.id, other_project.id)

    def test_list_project_accounts(self, gated_token, claimed, manager, project):
        account, _ = claimed
        second = PortalTokenService.create_token(manager.id, project.id, 'client')
        ExternalAccountService.claim(second.raw_token, 'owner@client.test', PASSWORD)
        ExternalAccountService.claim(second.raw_token, 'architect@client.test', PASSWORD)
        grant = ExternalPortalGrant.objects.get(account=account, portal_token=gated_token)
        ExternalAccountService.set_grant_status(grant.id, 'paused', manager.id)

        accounts = ExternalAccountService.list_project_accounts(manager.id, project.id)

        assert [a.email for a in accounts] == ['architect@client.test', 'owner@client.test']
        owner = accounts[1]
        assert owner.grant_count == 2
        assert owner.active_grant_count == 1

    def test_list_requires_permission(self, project, make_user, seeded):
        with pytest.raises(AuthorizationError):
            ExternalAccountService.list_project_accounts(make_user().id, project.id)

    def test_email_lookup_is_normalized(self, claimed, org):
        assert ExternalPortalAccount.objects.by_email(org.id, ' OWNER@client.test ') is not None
