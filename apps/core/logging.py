"""
Structured logging: PII masking, JSON formatting and security event logging.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive data in logs.

    Bearer credentials (portal tokens, signed links, session tokens) and PINs
    are masked in addition to the usual contact details.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password|pin|authorization)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )

    SENSITIVE_FIELDS = {
        'password', 'password_hash', 'pin', 'pin_hash',
        'token', 'raw_token', 'session_token', 'access_token', 'bearer_token',
        'secret', 'secret_key', 'signature', 'authorization',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            if len(username) > 1:
                username = username[0] + '*' * (len(username) - 1)
            return f"{username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        """Mask tokens, secrets and PINs in key=value text."""
        if not isinstance(text, str):
            return text
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_secrets(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value
        return masked


class SanitizingFilter(logging.Filter):
    """Mask secrets in the formatted message of every record."""

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = PIIMasker.mask_text(record.msg)
        return True


_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'taskName', 'request_id', 'actor_id',
}


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and actor_id when present. Masks sensitive data.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'request_id'):
            log_data['request_id'] = record.request_id
        if hasattr(record, 'actor_id'):
            log_data['actor_id'] = str(record.actor_id)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            if isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            elif key.lower() in PIIMasker.SENSITIVE_FIELDS:
                value = '********'
            elif isinstance(value, str):
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized security event logging.

    Events go to the dedicated 'security' logger; critical events are also
    sent to Sentry for alerting.
    """

    CRITICAL_EVENTS = {
        'portal_pin_lockout',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Example:
            >>> SecurityLogger.log_event(
            ...     'authorization_denied',
            ...     actor_id='3f1c...',
            ...     permission='project.manage',
            ...     reason_code='deny_missing_permission',
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'event_at': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
            )

    @staticmethod
    def log_authorization_denied(actor_id, permission, reason_code, org_id=None,
                                 project_id=None, request_id=None):
        """Log an RBAC denial."""
        SecurityLogger.log_event(
            'authorization_denied',
            level='info',
            actor_id=str(actor_id) if actor_id else None,
            permission=permission,
            reason_code=reason_code,
            org_id=str(org_id) if org_id else None,
            project_id=str(project_id) if project_id else None,
            request_id=request_id,
        )

    @staticmethod
    def log_invalid_credential(kind: str, ip_address: str = None, path: str = None):
        """
        Log a rejected external credential.

        The reason is deliberately not recorded: expired, revoked, tampered
        and unknown credentials are indistinguishable to observers.
        """
        SecurityLogger.log_event(
            'invalid_external_credential',
            level='info',
            kind=kind,
            ip_address=ip_address,
            path=path,
        )

    @staticmethod
    def log_pin_lockout(token_id, locked_until, ip_address: str = None):
        """Log a portal PIN lockout after repeated failures."""
        SecurityLogger.log_event(
            'portal_pin_lockout',
            level='error',
            token_id=str(token_id),
            locked_until=locked_until.isoformat() if locked_until else None,
            ip_address=ip_address,
        )

    @staticmethod
    def log_failed_external_login(email: str, org_id=None, reason: str = None):
        """Log a failed external portal account claim or login."""
        SecurityLogger.log_event(
            'failed_external_login',
            level='warning',
            email=email,
            org_id=str(org_id) if org_id else None,
            reason=reason,
        )

    @staticmethod
    def log_rate_limit_exceeded(endpoint: str, ip_address: str, limit: str = None):
        """Log a rate limit violation."""
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            level='warning',
            endpoint=endpoint,
            ip_address=ip_address,
            limit=limit,
        )
