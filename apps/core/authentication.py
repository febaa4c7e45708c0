"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed


class JWTAuthentication(BaseAuthentication):
    """
    Authenticate internal actors with an `Authorization: Bearer <jwt>` header.

    Requests without a bearer header are left anonymous so that external
    portal endpoints, which use capability tokens instead, keep working.
    """

    keyword = b'bearer'

    def authenticate(self, request):
        """
        Returns:
            tuple: (user, payload) if the token is valid, None if no bearer
            header was sent.

        Raises:
            AuthenticationFailed: if a bearer header was sent but is invalid.
        """
        from apps.rbac.services import AuthService

        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword:
            return None

        if len(auth) != 2:
            raise AuthenticationFailed('Invalid authorization header')

        try:
            token = auth[1].decode('utf-8')
        except UnicodeError:
            raise AuthenticationFailed('Invalid authorization header')

        payload = AuthService.validate_jwt(token)
        if not payload:
            raise AuthenticationFailed('Invalid or expired token')

        user = AuthService.get_user(payload)
        if user is None:
            raise AuthenticationFailed('Invalid or expired token')

        return (user, payload)

    def authenticate_header(self, request):
        return 'Bearer'
