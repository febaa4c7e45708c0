from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 32
MIN_UNIQUE_CHARS = 16
KEYGEN_HINT = "python -c \"import secrets; print(secrets.token_urlsafe(32))\""


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        Both signing secrets are checked before the application starts
        accepting requests: a weak JWT key compromises every internal
        actor and a weak link secret lets anyone forge signed links.
        """
        import sys
        if 'runserver' not in sys.argv and 'gunicorn' not in sys.argv[0]:
            # Management commands (migrate, shell, seed_permissions) skip validation
            if len(sys.argv) > 1 and sys.argv[1] not in ['runserver', 'test']:
                return

        self.validate_secrets()
        logger.info("Startup security validations passed")

    def validate_secrets(self):
        self._validate_jwt_configuration()
        self._validate_signed_link_configuration()
        self._validate_security_settings()

    def _check_strength(self, name, value):
        if not value:
            raise ImproperlyConfigured(
                f"{name} must be set in environment variables. "
                f"Generate a strong key with: {KEYGEN_HINT}"
            )

        if len(value) < MIN_SECRET_LENGTH:
            raise ImproperlyConfigured(
                f"{name} must be at least {MIN_SECRET_LENGTH} characters long. "
                f"Current length: {len(value)}. "
                f"Generate a strong key with: {KEYGEN_HINT}"
            )

        unique_chars = len(set(value))
        if unique_chars < MIN_UNIQUE_CHARS:
            raise ImproperlyConfigured(
                f"{name} has insufficient entropy. "
                f"Found only {unique_chars} unique characters, need at least {MIN_UNIQUE_CHARS}. "
                f"Generate a strong key with: {KEYGEN_HINT}"
            )

    def _validate_jwt_configuration(self):
        """Validate the internal actor JWT secret."""
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)
        self._check_strength('JWT_SECRET_KEY', jwt_secret)

        if jwt_secret == getattr(settings, 'SECRET_KEY', None):
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be different from SECRET_KEY. "
                f"Generate a separate JWT key with: {KEYGEN_HINT}"
            )

    def _validate_signed_link_configuration(self):
        """Validate the HMAC secret used for signed capability links."""
        link_secret = getattr(settings, 'SIGNED_LINK_SECRET', None)
        self._check_strength('SIGNED_LINK_SECRET', link_secret)

        if link_secret == getattr(settings, 'JWT_SECRET_KEY', None):
            raise ImproperlyConfigured(
                "SIGNED_LINK_SECRET must be different from JWT_SECRET_KEY. "
                f"Generate a separate key with: {KEYGEN_HINT}"
            )

    def _validate_security_settings(self):
        """Validate general security settings."""
        secret_key = getattr(settings, 'SECRET_KEY', None)
        if not secret_key:
            raise ImproperlyConfigured(
                "SECRET_KEY must be set in environment variables. "
                f"Generate with: {KEYGEN_HINT}"
            )

        if getattr(settings, 'DEBUG', False):
            return

        weak_patterns = ['change-me', 'insecure', 'django-insecure', '12345', 'password']
        secret_lower = secret_key.lower()
        for pattern in weak_patterns:
            if pattern in secret_lower:
                raise ImproperlyConfigured(
                    f"SECRET_KEY appears to be a default or weak value (contains '{pattern}'). "
                    f"Generate a strong key with: {KEYGEN_HINT}"
                )

        if not getattr(settings, 'SECURE_SSL_REDIRECT', False):
            logger.warning(
                "SECURE_SSL_REDIRECT is not enabled in production. "
                "Portal links carry bearer tokens and must only travel over HTTPS."
            )
