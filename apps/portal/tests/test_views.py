"""
Tests for portal API endpoints.
"""
import pytest
from django.test import override_settings
from django.urls import reverse
from unittest.mock import patch

from apps.portal.accounts import INVALID_LINK_MESSAGE, ExternalAccountService
from apps.portal.models import ExternalPortalGrant, PortalAccessToken, hash_portal_token
from apps.portal.services import PortalTokenService
from apps.portal.signing import get_link_codec
from apps.rbac.models import AuthorizationAuditLog

PASSWORD = 'sub-contractor-pass'


def _pin_session(api_client, token, pin='2468'):
    response = api_client.post(reverse('portal:portal-pin', args=[token.raw_token]), {'pin': pin}, format='json')
    assert response.status_code == 200
    return response.data['pin_session']


@pytest.mark.django_db
class TestSignedLinkView:

    def test_resolves_signed_link(self, api_client):
        link = get_link_codec().mint('drawing-set-7', ttl_seconds=60)

        response = api_client.get(reverse('portal:signed-link', args=[link]))

        assert response.status_code == 200
        assert response.data['kind'] == 'signed'
        assert response.data['resource_id'] == 'drawing-set-7'

    def test_bad_link_is_generic_404(self, api_client):
        with patch('apps.portal.views.SecurityLogger.log_invalid_credential') as log_invalid:
            response = api_client.get(reverse('portal:signed-link', args=['forged.link']))

        assert response.status_code == 404
        assert response.data['error']['message'] == INVALID_LINK_MESSAGE
        log_invalid.assert_called_once()
        # The credential itself never reaches the log
        assert 'forged.link' not in str(log_invalid.call_args)


@pytest.mark.django_db
class TestPortalView:

    def test_returns_context_and_counts_access(self, api_client, portal_token, project):
        response = api_client.get(reverse('portal:portal', args=[portal_token.raw_token]))

        assert response.status_code == 200
        assert response.data['project_id'] == str(project.id)
        assert response.data['permissions']['can_message'] is True
        assert response.data['pin_verified'] is True
        assert response.data['account_signed_in'] is False
        portal_token.refresh_from_db()
        assert portal_token.access_count == 1

    def test_jwt_not_required_or_used(self, api_client, portal_token):
        api_client.credentials(HTTP_AUTHORIZATION='Bearer garbage')

        response = api_client.get(reverse('portal:portal', args=[portal_token.raw_token]))

        assert response.status_code == 200

    def test_dead_tokens_are_indistinguishable(self, api_client, portal_token, manager, project):
        expired = PortalTokenService.create_token(manager.id, project.id, 'client', max_access_count=1)
        PortalTokenService.record_access(expired.id)
        PortalTokenService.revoke(portal_token.id, manager.id)

        responses = [
            api_client.get(reverse('portal:portal', args=[raw]))
            for raw in (portal_token.raw_token, expired.raw_token, 'never-issued')
        ]

        assert {r.status_code for r in responses} == {404}
        assert len({str(r.data['error']) for r in responses}) == 1

    def test_pin_protected_portal_is_minimal_until_verified(self, api_client, portal_token, manager):
        PortalTokenService.set_pin(portal_token.id, '2468', manager.id)

        locked = api_client.get(reverse('portal:portal', args=[portal_token.raw_token]))
        assert locked.data['permissions'] == {}
        assert locked.data['pin_verified'] is False

        pin_session = _pin_session(api_client, portal_token)
        unlocked = api_client.get(
            reverse('portal:portal', args=[portal_token.raw_token]),
            HTTP_X_PORTAL_PIN_SESSION=pin_session,
        )
        assert unlocked.data['permissions']['can_message'] is True
        assert unlocked.data['pin_verified'] is True


@pytest.mark.django_db
class TestPortalPinView:

    def test_wrong_pin(self, api_client, portal_token, manager):
        PortalTokenService.set_pin(portal_token.id, '2468', manager.id)

        response = api_client.post(
            reverse('portal:portal-pin', args=[portal_token.raw_token]), {'pin': '1111'}, format='json'
        )

        assert response.status_code == 401
        assert response.data['error']['details'] == {'attempts_remaining': 4}

    def test_lockout_is_403(self, api_client, portal_token, manager, settings):
        settings.PORTAL_PIN_MAX_ATTEMPTS = 2
        PortalTokenService.set_pin(portal_token.id, '2468', manager.id)
        url = reverse('portal:portal-pin', args=[portal_token.raw_token])

        api_client.post(url, {'pin': '1111'}, format='json')
        response = api_client.post(url, {'pin': '1111'}, format='json')

        assert response.status_code == 403
        assert 'locked_until' in response.data['error']['details']

    def test_token_without_pin_is_404(self, api_client, portal_token):
        response = api_client.post(
            reverse('portal:portal-pin', args=[portal_token.raw_token]), {'pin': '2468'}, format='json'
        )

        assert response.status_code == 404

    def test_pin_session_is_bound_to_its_token(self, api_client, portal_token, manager, project):
        other = PortalTokenService.create_token(manager.id, project.id, 'client', permissions={'can_message': True})
        PortalTokenService.set_pin(portal_token.id, '2468', manager.id)
        PortalTokenService.set_pin(other.id, '1357', manager.id)
        pin_session = _pin_session(api_client, portal_token)

        response = api_client.post(
            reverse('portal:portal-authorize', args=[other.raw_token]),
            {'flag': 'can_message'},
            format='json',
            HTTP_X_PORTAL_PIN_SESSION=pin_session,
        )

        assert response.status_code == 403

    @override_settings(RATELIMIT_ENABLE=True)
    def test_rate_limited(self, api_client, portal_token):
        url = reverse('portal:portal-pin', args=[portal_token.raw_token])

        statuses = [api_client.post(url, {'pin': '0000'}, format='json').status_code for _ in range(11)]

        assert statuses[-1] == 429
        assert 429 not in statuses[:10]


@pytest.mark.django_db
class TestPortalActionView:

    def test_allowed_flag(self, api_client, portal_token):
        response = api_client.post(
            reverse('portal:portal-authorize', args=[portal_token.raw_token]), {'flag': 'can_message'}, format='json'
        )

        assert response.status_code == 200
        assert response.data['allowed'] is True
        assert response.data['context']['token_id'] == str(portal_token.id)

    def test_missing_flag_is_403(self, api_client, portal_token):
        response = api_client.post(
            reverse('portal:portal-authorize', args=[portal_token.raw_token]), {'flag': 'can_pay_invoices'}, format='json'
        )

        assert response.status_code == 403

    def test_unknown_flag_is_400(self, api_client, portal_token):
        response = api_client.post(
            reverse('portal:portal-authorize', args=[portal_token.raw_token]), {'flag': 'can_fly'}, format='json'
        )

        assert response.status_code == 400

    def test_pin_gate_over_http(self, api_client, portal_token, manager):
        PortalTokenService.set_pin(portal_token.id, '2468', manager.id)
        url = reverse('portal:portal-authorize', args=[portal_token.raw_token])

        assert api_client.post(url, {'flag': 'can_message'}, format='json').status_code == 403

        pin_session = _pin_session(api_client, portal_token)
        response = api_client.post(url, {'flag': 'can_message'}, format='json', HTTP_X_PORTAL_PIN_SESSION=pin_session)
        assert response.status_code == 200


@pytest.mark.django_db
class TestExternalAccountViews:

    @pytest.fixture
    def gated_token(self, manager, project):
        return PortalTokenService.create_token(
            manager.id, project.id, 'sub',
            permissions={'can_submit_invoices': True},
            require_account=True,
        )

    def _claim(self, api_client, token, email='tiles@sub.test'):
        return api_client.post(
            reverse('portal:portal-claim', args=[token.raw_token]),
            {'email': email, 'password': PASSWORD, 'full_name': 'Tile Crew'},
            format='json'
        )

    def test_claim_then_authorize(self, api_client, gated_token):
        url = reverse('portal:portal-authorize', args=[gated_token.raw_token])
        assert api_client.post(url, {'flag': 'can_submit_invoices'}, format='json').status_code == 403

        claimed = self._claim(api_client, gated_token)
        assert claimed.status_code == 201
        assert claimed.data['account']['email'] == 'tiles@sub.test'

        response = api_client.post(
            url, {'flag': 'can_submit_invoices'}, format='json',
            HTTP_X_PORTAL_SESSION=claimed.data['session_token'],
        )
        assert response.status_code == 200

    def test_gated_portal_is_minimal_without_active_grant(self, api_client, gated_token, manager):
        url = reverse('portal:portal', args=[gated_token.raw_token])

        anonymous = api_client.get(url)
        assert anonymous.status_code == 200
        assert anonymous.data['permissions'] == {}

        session = self._claim(api_client, gated_token).data['session_token']
        signed_in = api_client.get(url, HTTP_X_PORTAL_SESSION=session)
        assert signed_in.data['permissions']['can_submit_invoices'] is True

        grant = ExternalPortalGrant.objects.get(portal_token=gated_token)
        ExternalAccountService.set_grant_status(grant.id, 'paused', manager.id)
        paused = api_client.get(url, HTTP_X_PORTAL_SESSION=session)
        assert paused.status_code == 200
        assert paused.data['permissions'] == {}

    def test_login_and_sign_out(self, api_client, gated_token):
        self._claim(api_client, gated_token)

        login = api_client.post(
            reverse('portal:portal-login', args=[gated_token.raw_token]),
            {'email': 'tiles@sub.test', 'password': PASSWORD},
            format='json'
        )
        assert login.status_code == 200
        session = login.data['session_token']

        signed_in = api_client.get(reverse('portal:portal', args=[gated_token.raw_token]), HTTP_X_PORTAL_SESSION=session)
        assert signed_in.data['account_signed_in'] is True

        assert api_client.delete(reverse('portal:portal-session'), HTTP_X_PORTAL_SESSION=session).status_code == 204
        signed_out = api_client.get(reverse('portal:portal', args=[gated_token.raw_token]), HTTP_X_PORTAL_SESSION=session)
        assert signed_out.data['account_signed_in'] is False

    def test_bad_login_is_401(self, api_client, gated_token):
        self._claim(api_client, gated_token)

        response = api_client.post(
            reverse('portal:portal-login', args=[gated_token.raw_token]),
            {'email': 'tiles@sub.test', 'password': 'wrong-password'},
            format='json'
        )

        assert response.status_code == 401
        assert response.data['error']['message'] == 'Invalid email or password'

    def test_claim_on_dead_link_is_404(self, api_client):
        response = api_client.post(
            reverse('portal:portal-claim', args=['never-issued']),
            {'email': 'tiles@sub.test', 'password': PASSWORD},
            format='json'
        )

        assert response.status_code == 404

    @override_settings(RATELIMIT_ENABLE=True)
    def test_login_rate_limited(self, api_client, gated_token):
        url = reverse('portal:portal-login', args=[gated_token.raw_token])

        statuses = [
            api_client.post(url, {'email': 'x@sub.test', 'password': 'nope-nope'}, format='json').status_code
            for _ in range(6)
        ]

        assert statuses[:5] == [401] * 5
        assert statuses[5] == 429


@pytest.mark.django_db
class TestPortalManagementViews:

    def test_create_returns_raw_token_once(self, manager_client, project):
        response = manager_client.post(
            reverse('portal:portal-token-list', args=[project.id]),
            {'portal_type': 'client', 'name': 'Owner', 'permissions': {'can_view_budget': True}},
            format='json'
        )

        assert response.status_code == 201
        raw = response.data['token']
        token = PortalAccessToken.objects.get(id=response.data['id'])
        assert token.token_hash == hash_portal_token(raw)
        assert PortalTokenService.validate(raw).token_id == str(token.id)
        assert response.data['permissions']['can_view_budget'] is True

        listing = manager_client.get(reverse('portal:portal-token-list', args=[project.id]))
        assert listing.status_code == 200
        assert 'token' not in listing.data['results'][0]
        assert listing.data['results'][0]['token_preview'] == f'{raw[:6]}...'

    def test_create_rejects_unknown_flags(self, manager_client, project):
        response = manager_client.post(
            reverse('portal:portal-token-list', args=[project.id]),
            {'portal_type': 'client', 'permissions': {'can_fly': True}},
            format='json'
        )

        assert response.status_code == 400

    def test_non_manager_is_forbidden(self, api_client, grant, make_user, project):
        field_user = make_user()
        grant.project(field_user, project, 'field')
        api_client.force_authenticate(user=field_user)

        response = api_client.get(reverse('portal:portal-token-list', args=[project.id]))

        assert response.status_code == 403
        assert response.data['error']['reason_code'] == 'deny_missing_permission'

    def test_anonymous_is_401(self, api_client, project):
        response = api_client.get(reverse('portal:portal-token-list', args=[project.id]))

        assert response.status_code == 401

    def test_revoke(self, manager_client, portal_token):
        response = manager_client.post(reverse('portal:portal-token-revoke', args=[portal_token.id]))

        assert response.status_code == 200
        assert response.data['revoked_at'] is not None
        assert PortalTokenService.validate(portal_token.raw_token) is None

    def test_set_and_remove_pin(self, manager_client, portal_token):
        url = reverse('portal:portal-token-pin', args=[portal_token.id])

        assert manager_client.post(url, {'pin': '12'}, format='json').status_code == 400
        response = manager_client.post(url, {'pin': '123456'}, format='json')
        assert response.status_code == 200
        assert response.data['pin_required'] is True
        assert 'pin_hash' not in response.data

        assert manager_client.delete(url).data['pin_required'] is False

    def test_account_and_grant_management(self, manager_client, manager, project):
        gated = PortalTokenService.create_token(manager.id, project.id, 'sub', require_account=True)
        account, _ = ExternalAccountService.claim(gated.raw_token, 'roof@sub.test', PASSWORD)

        listing = manager_client.get(reverse('portal:portal-account-list', args=[project.id]))
        assert listing.status_code == 200
        assert listing.data['results'][0]['email'] == 'roof@sub.test'
        assert listing.data['results'][0]['active_grant_count'] == 1

        grant = ExternalPortalGrant.objects.get(account=account)
        paused = manager_client.post(
            reverse('portal:portal-grant-status', args=[grant.id]), {'status': 'paused'}, format='json'
        )
        assert paused.status_code == 200
        assert paused.data['status'] == 'paused'

        revoked = manager_client.post(
            reverse('portal:portal-account-status', args=[project.id, account.id]),
            {'status': 'revoked'},
            format='json'
        )
        assert revoked.status_code == 200
        assert revoked.data['status'] == 'revoked'

    def test_management_calls_are_audited(self, manager_client, project):
        manager_client.get(reverse('portal:portal-token-list', args=[project.id]))

        entry = AuthorizationAuditLog.objects.get()
        assert entry.decision == 'allow'
        assert entry.project_id == project.id
