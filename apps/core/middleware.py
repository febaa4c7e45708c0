"""
Core middleware for request processing.
"""
import uuid
import logging
import threading
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

MAX_REQUEST_ID_LENGTH = 64


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.

    The request_id is attached to the request, copied onto log records by
    LoggingFilter, stored on authorization audit rows as the correlation id,
    and echoed back in the X-Request-ID response header.
    """

    def process_request(self, request):
        """Generate and attach request_id to the request."""
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id[:MAX_REQUEST_ID_LENGTH]
        threading.current_thread().request_id = request.request_id

    def process_response(self, request, response):
        """Add request_id to response headers."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        thread = threading.current_thread()
        if hasattr(thread, 'request_id'):
            del thread.request_id
        return response


class LoggingFilter(logging.Filter):
    """
    Add request_id to log records from thread-local storage.
    """

    def filter(self, record):
        thread = threading.current_thread()
        if hasattr(thread, 'request_id') and not hasattr(record, 'request_id'):
            record.request_id = thread.request_id
        return True
