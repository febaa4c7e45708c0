"""
Test settings: in-memory SQLite, local-memory cache, fast hashing.
"""
import os

os.environ.setdefault('SECRET_KEY', 'test-django-secret-9f3b2c7a1e4d8f6b0a5c3e7d9b1f4a2c')
os.environ.setdefault('JWT_SECRET_KEY', 'test-jwt-secret-4c8e2a6f0b3d7e1a9c5f2b8d4e6a0c3f')
os.environ.setdefault('SIGNED_LINK_SECRET', 'test-link-secret-7a1d5f9b3e2c6a0d8f4b1e7c3a9d5f2b')
os.environ.setdefault('DATABASE_URL', 'sqlite://:memory:')

from config.settings import *  # noqa: E402,F401,F403

DEBUG = False
SECURE_SSL_REDIRECT = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'sitegate-tests',
    }
}

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

RATE_LIMIT_ENABLED = False
RATELIMIT_ENABLE = False

PLATFORM_ADMIN_USER_IDS = []
PLATFORM_ADMIN_EMAILS = []

LOGGING['root']['level'] = 'WARNING'  # noqa: F405
SENTRY_DSN = None
