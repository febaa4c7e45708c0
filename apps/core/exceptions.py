"""
Exception hierarchy and DRF exception handling.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django_ratelimit.exceptions import Ratelimited
from django.http import JsonResponse

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_AFTER = 60


def get_client_ip(request):
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def ratelimit_view(request, exception):
    """
    View for django-ratelimit to return 429 instead of 403.

    Used for PIN verification and external account login, where
    rate limiting is enforced with block=True.
    """
    from apps.core.logging import SecurityLogger

    SecurityLogger.log_rate_limit_exceeded(
        endpoint=request.path,
        ip_address=get_client_ip(request),
        limit='Rate limit exceeded'
    )

    response = JsonResponse(
        {
            'error': {
                'code': 'RATE_LIMIT_EXCEEDED',
                'message': 'Rate limit exceeded. Please try again later.',
            },
            'retry_after': RATE_LIMIT_RETRY_AFTER,
        },
        status=429
    )
    # Retry-After header (RFC 6585)
    response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
    return response


def custom_exception_handler(exc, context):
    """
    Exception handler that logs errors and returns a consistent error envelope.

    Shape: {"error": {"code": ..., "message": ...}, "request_id": ...}
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, Ratelimited):
        from apps.core.logging import SecurityLogger

        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=get_client_ip(request) if request else 'unknown',
            limit='Rate limit exceeded'
        )
        response = Response(
            {
                'error': {
                    'code': 'RATE_LIMIT_EXCEEDED',
                    'message': 'Rate limit exceeded. Please try again later.',
                },
                'request_id': request_id,
                'retry_after': RATE_LIMIT_RETRY_AFTER,
            },
            status=status.HTTP_429_TOO_MANY_REQUESTS
        )
        response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
        return response

    if isinstance(exc, SiteGateException):
        error = {
            'code': exc.code,
            'message': exc.message,
        }
        reason_code = getattr(exc, 'reason_code', None)
        if reason_code:
            error['reason_code'] = reason_code
        if exc.details:
            error['details'] = exc.details
        logger.info(
            f"Handled {exc.__class__.__name__}: {exc.code}",
            extra={
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            }
        )
        return Response(
            {'error': error, 'request_id': request_id},
            status=exc.status_code
        )

    # Call DRF's default exception handler
    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'exception': str(exc),
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=True
        )
        return Response(
            {
                'error': {
                    'code': 'INTERNAL_ERROR',
                    'message': 'An unexpected error occurred',
                },
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response


class SiteGateException(Exception):
    """Base exception for SiteGate errors."""

    status_code = 400
    code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(SiteGateException):
    """Raised when authentication fails."""
    status_code = 401
    code = 'UNAUTHENTICATED'


class PermissionDeniedError(SiteGateException):
    """Raised when an actor lacks required permissions."""
    status_code = 403
    code = 'FORBIDDEN'


class ValidationError(SiteGateException):
    """Raised when input validation fails."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class NotFoundError(SiteGateException):
    """
    Raised for missing resources and for every external credential failure.

    Expired, revoked, tampered and unknown tokens all surface as this error so
    callers cannot tell the failure modes apart.
    """
    status_code = 404
    code = 'NOT_FOUND'

    def __init__(self, message='Not found', details=None):
        super().__init__(message, details)


class RateLimitExceeded(SiteGateException):
    """Raised when rate limit is exceeded."""
    status_code = 429
    code = 'RATE_LIMIT_EXCEEDED'
