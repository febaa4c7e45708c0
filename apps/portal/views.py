"""
Portal REST API views.

External endpoints (no JWT, the link itself is the credential):
- GET  /v1/links/{token}                   signed capability link
- GET  /v1/portal/{token}                  portal landing context
- POST /v1/portal/{token}/pin              PIN verification
- POST /v1/portal/{token}/authorize        gate check for one action
- POST /v1/portal/{token}/claim|login      external account sign in
- DELETE /v1/portal-session                external account sign out

Every credential failure is a generic 404.

Internal endpoints require portal.access.manage on the project.
"""
import logging

from django.conf import settings
from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import (
    AuthenticationError, NotFoundError, PermissionDeniedError, ValidationError, get_client_ip,
)
from apps.core.logging import SecurityLogger
from apps.portal.accounts import INVALID_LINK_MESSAGE, ExternalAccountService
from apps.portal.serializers import (
    ClaimSerializer, ExternalPortalAccountSerializer, ExternalPortalGrantSerializer,
    LoginSerializer, PinSerializer, PinVerifySerializer, PortalActionSerializer,
    PortalTokenCreatedSerializer, PortalTokenCreateSerializer, PortalTokenSerializer,
    StatusSerializer,
)
from apps.portal.services import PortalTokenService
from apps.portal.signing import get_link_codec, get_pin_session_codec

logger = logging.getLogger(__name__)

PIN_SESSION_HEADER = 'HTTP_X_PORTAL_PIN_SESSION'
ACCOUNT_SESSION_HEADER = 'HTTP_X_PORTAL_SESSION'


def _request_id(request):
    return getattr(request, 'request_id', None)


def _invalid_credential(request, kind, route):
    # Log the route, not the path: the path holds the credential
    SecurityLogger.log_invalid_credential(kind, ip_address=get_client_ip(request), path=route)
    return NotFoundError(INVALID_LINK_MESSAGE)


def _pin_session_resource(token_id):
    return f"pin:{token_id}"


def _pin_verified(request, token_id):
    proof = request.META.get(PIN_SESSION_HEADER)
    if not proof:
        return False
    return get_pin_session_codec().verify(proof) == _pin_session_resource(token_id)


def _account_id(request):
    session = ExternalAccountService.resolve_session(request.META.get(ACCOUNT_SESSION_HEADER))
    return session.account_id if session else None


def _validated(serializer_class, request):
    serializer = serializer_class(data=request.data)
    if not serializer.is_valid():
        raise ValidationError('Invalid request', details=serializer.errors)
    return serializer.validated_data


class ExternalAPIView(APIView):
    """Base for endpoints where possession of a link is the credential."""

    authentication_classes = []
    permission_classes = [AllowAny]


class SignedLinkView(ExternalAPIView):
    """
    GET /v1/links/{token}

    Resolve a signed capability link to the resource it grants.
    """

    @extend_schema(summary="Resolve a signed link", tags=['External Access'])
    def get(self, request, token):
        context = get_link_codec().resolve(token)
        if context is None:
            raise _invalid_credential(request, 'signed_link', '/v1/links/{token}')
        return Response(context.to_dict())


class PortalView(ExternalAPIView):
    """
    GET /v1/portal/{token}

    Landing context for a portal link. PIN-protected links return only a
    minimal context until the PIN has been verified, and account-gated links
    until an account with an active grant signs in. Each successful call
    counts toward the token's access limit.
    """

    @extend_schema(summary="Resolve a portal link", tags=['External Access'])
    def get(self, request, token):
        live = PortalTokenService.validate(token)
        if live is None:
            raise _invalid_credential(request, 'portal_token', '/v1/portal/{token}')

        pin_verified = _pin_verified(request, live.token_id)
        account_id = _account_id(request)
        context = PortalTokenService.authorize_portal_action(
            token, None, pin_verified=pin_verified, account_id=account_id, mutating=False
        )
        if context is None:
            raise _invalid_credential(request, 'portal_token', '/v1/portal/{token}')

        PortalTokenService.record_access(context.token_id)

        payload = context.to_dict()
        payload['pin_verified'] = pin_verified or not context.pin_required
        payload['account_signed_in'] = account_id is not None
        return Response(payload)


@method_decorator(ratelimit(key='ip', rate='10/m', method='POST', block=True), name='post')
class PortalPinView(ExternalAPIView):
    """
    POST /v1/portal/{token}/pin

    Verify a portal PIN. On success returns a short-lived pin_session to be
    sent as X-Portal-Pin-Session on later requests.

    Rate limited to 10/min per IP on top of the per-token lockout.
    """

    @extend_schema(summary="Verify a portal PIN", request=PinVerifySerializer, tags=['External Access'])
    def post(self, request, token):
        data = _validated(PinVerifySerializer, request)

        live = PortalTokenService.validate(token)
        if live is None or not live.pin_required:
            raise _invalid_credential(request, 'portal_token', '/v1/portal/{token}/pin')

        result = PortalTokenService.verify_pin(token, data['pin'], ip_address=get_client_ip(request))
        if result.valid:
            ttl = getattr(settings, 'PORTAL_PIN_SESSION_TTL_SECONDS', 900)
            return Response({
                'pin_session': get_pin_session_codec().mint(_pin_session_resource(live.token_id), ttl),
                'expires_in': ttl,
            })

        if result.locked_until is not None:
            raise PermissionDeniedError(
                'Too many incorrect PIN attempts. Try again later.',
                details={'locked_until': result.locked_until.isoformat()}
            )
        raise AuthenticationError(
            'Incorrect PIN',
            details={'attempts_remaining': result.attempts_remaining}
        )


class PortalActionView(ExternalAPIView):
    """
    POST /v1/portal/{token}/authorize

    Check every gate (flag, PIN, account grant) for one mutating action.
    """

    @extend_schema(summary="Authorize a portal action", request=PortalActionSerializer, tags=['External Access'])
    def post(self, request, token):
        data = _validated(PortalActionSerializer, request)

        live = PortalTokenService.validate(token)
        if live is None:
            raise _invalid_credential(request, 'portal_token', '/v1/portal/{token}/authorize')

        context = PortalTokenService.authorize_portal_action(
            token,
            data['flag'],
            pin_verified=_pin_verified(request, live.token_id),
            account_id=_account_id(request),
            mutating=True,
        )
        if context is None:
            raise PermissionDeniedError('This link does not allow that action')

        return Response({'allowed': True, 'context': context.to_dict()})


@method_decorator(ratelimit(key='ip', rate='5/m', method='POST', block=True), name='post')
class PortalClaimView(ExternalAPIView):
    """
    POST /v1/portal/{token}/claim

    Create (or re-authenticate) an external account for the link's org and
    grant it access to this link.
    """

    @extend_schema(summary="Claim a portal link with an account", request=ClaimSerializer, tags=['External Access'])
    def post(self, request, token):
        data = _validated(ClaimSerializer, request)
        account, session_token = ExternalAccountService.claim(
            token, data['email'], data['password'], full_name=data.get('full_name')
        )
        return Response(
            {
                'account': ExternalPortalAccountSerializer(account).data,
                'session_token': session_token,
            },
            status=status.HTTP_201_CREATED
        )


@method_decorator(ratelimit(key='ip', rate='5/m', method='POST', block=True), name='post')
class PortalLoginView(ExternalAPIView):
    """
    POST /v1/portal/{token}/login

    Sign in to an existing external account through a portal link.
    """

    @extend_schema(summary="Sign in through a portal link", request=LoginSerializer, tags=['External Access'])
    def post(self, request, token):
        data = _validated(LoginSerializer, request)
        account, session_token = ExternalAccountService.login(token, data['email'], data['password'])
        return Response({
            'account': ExternalPortalAccountSerializer(account).data,
            'session_token': session_token,
        })


class PortalSessionView(ExternalAPIView):
    """DELETE /v1/portal-session - sign out the X-Portal-Session session."""

    @extend_schema(summary="Sign out of an external account", tags=['External Access'])
    def delete(self, request):
        ExternalAccountService.sign_out(request.META.get(ACCOUNT_SESSION_HEADER))
        return Response(status=status.HTTP_204_NO_CONTENT)


class ProjectPortalTokenListView(APIView):
    """
    GET  /v1/projects/{project_id}/portal-tokens
    POST /v1/projects/{project_id}/portal-tokens

    Required permission: portal.access.manage on the project.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="List portal tokens",
        responses={200: PortalTokenSerializer(many=True)},
        tags=['Portal Management'],
    )
    def get(self, request, project_id):
        tokens = PortalTokenService.list_tokens(request.user.id, project_id, request_id=_request_id(request))
        return Response({'results': PortalTokenSerializer(tokens, many=True).data})

    @extend_schema(
        summary="Create a portal token",
        request=PortalTokenCreateSerializer,
        responses={201: PortalTokenCreatedSerializer},
        tags=['Portal Management'],
    )
    def post(self, request, project_id):
        data = _validated(PortalTokenCreateSerializer, request)
        token = PortalTokenService.create_token(
            request.user.id,
            project_id,
            data['portal_type'],
            permissions=data.get('permissions'),
            contact_id=data.get('contact_id'),
            company_id=data.get('company_id'),
            expires_at=data.get('expires_at'),
            require_account=data.get('require_account', False),
            name=data.get('name', ''),
            max_access_count=data.get('max_access_count'),
            request_id=_request_id(request),
        )
        return Response(PortalTokenCreatedSerializer(token).data, status=status.HTTP_201_CREATED)


class PortalTokenRevokeView(APIView):
    """POST /v1/portal-tokens/{token_id}/revoke"""

    permission_classes = [IsAuthenticated]

    @extend_schema(summary="Revoke a portal token", responses={200: PortalTokenSerializer}, tags=['Portal Management'])
    def post(self, request, token_id):
        token = PortalTokenService.revoke(token_id, request.user.id, request_id=_request_id(request))
        return Response(PortalTokenSerializer(token).data)


class PortalTokenPinView(APIView):
    """
    POST   /v1/portal-tokens/{token_id}/pin   set or replace the PIN
    DELETE /v1/portal-tokens/{token_id}/pin   remove the PIN
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(summary="Set a portal PIN", request=PinSerializer, responses={200: PortalTokenSerializer},
                   tags=['Portal Management'])
    def post(self, request, token_id):
        data = _validated(PinSerializer, request)
        token = PortalTokenService.set_pin(token_id, data['pin'], request.user.id, request_id=_request_id(request))
        return Response(PortalTokenSerializer(token).data)

    @extend_schema(summary="Remove a portal PIN", responses={200: PortalTokenSerializer}, tags=['Portal Management'])
    def delete(self, request, token_id):
        token = PortalTokenService.remove_pin(token_id, request.user.id, request_id=_request_id(request))
        return Response(PortalTokenSerializer(token).data)


class ProjectPortalAccountListView(APIView):
    """GET /v1/projects/{project_id}/portal-accounts"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="List external accounts on a project",
        responses={200: ExternalPortalAccountSerializer(many=True)},
        tags=['Portal Management'],
    )
    def get(self, request, project_id):
        accounts = ExternalAccountService.list_project_accounts(
            request.user.id, project_id, request_id=_request_id(request)
        )
        return Response({'results': ExternalPortalAccountSerializer(accounts, many=True).data})


class PortalAccountStatusView(APIView):
    """POST /v1/projects/{project_id}/portal-accounts/{account_id}/status"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Pause, resume or revoke an external account",
        request=StatusSerializer,
        responses={200: ExternalPortalAccountSerializer},
        tags=['Portal Management'],
    )
    def post(self, request, project_id, account_id):
        data = _validated(StatusSerializer, request)
        account = ExternalAccountService.set_account_status(
            account_id, data['status'], request.user.id, project_id, request_id=_request_id(request)
        )
        return Response(ExternalPortalAccountSerializer(account).data)


class PortalGrantStatusView(APIView):
    """POST /v1/portal-grants/{grant_id}/status"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Pause, resume or revoke an external grant",
        request=StatusSerializer,
        responses={200: ExternalPortalGrantSerializer},
        tags=['Portal Management'],
    )
    def post(self, request, grant_id):
        data = _validated(StatusSerializer, request)
        grant = ExternalAccountService.set_grant_status(
            grant_id, data['status'], request.user.id, request_id=_request_id(request)
        )
        return Response(ExternalPortalGrantSerializer(grant).data)
