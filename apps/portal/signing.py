"""
Stateless signed capability tokens.

Format: base64url(json payload) + "." + base64url(HMAC-SHA256(payload_b64)),
both parts unpadded. The payload carries the resource id (`rid`) and the
expiry in unix seconds (`exp`). Nothing is stored server side, so these
tokens cannot be revoked; keep their TTL short.
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from typing import Callable, Optional

from django.conf import settings

from apps.portal.context import AccessContext, KIND_SIGNED

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 900


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b'=').decode('ascii')


def b64url_decode(value: str) -> bytes:
    padding = '=' * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode('ascii'))


class SignedCapabilityCodec:
    """
    Mint and verify signed capability tokens.

    Usage:
        codec = SignedCapabilityCodec(secret=settings.SIGNED_LINK_SECRET)
        token = codec.mint('file-123', ttl_seconds=300)
        codec.verify(token)  # 'file-123' until it expires, else None
    """

    def __init__(self, secret: str, clock: Optional[Callable[[], float]] = None):
        if not secret:
            raise ValueError("A signing secret is required")
        self._key = secret.encode('utf-8') if isinstance(secret, str) else secret
        self._clock = clock or time.time

    def _sign(self, payload_b64: str) -> str:
        digest = hmac.new(self._key, payload_b64.encode('ascii', 'replace'), hashlib.sha256).digest()
        return b64url_encode(digest)

    def mint(self, resource_id: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> str:
        """
        Issue a token for resource_id expiring ttl_seconds from now.

        Raises:
            ValueError: if ttl_seconds is negative or resource_id is empty
        """
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must not be negative")
        if not resource_id:
            raise ValueError("resource_id is required")

        payload = {'rid': str(resource_id), 'exp': int(self._clock()) + int(ttl_seconds)}
        payload_b64 = b64url_encode(
            json.dumps(payload, separators=(',', ':'), sort_keys=True).encode('utf-8')
        )
        return f"{payload_b64}.{self._sign(payload_b64)}"

    def verify(self, token) -> Optional[str]:
        """
        Return the resource id of a valid, unexpired token, else None.

        Never raises. The signature is computed on every path, including
        malformed input, so failures are indistinguishable by timing.
        """
        if not isinstance(token, str):
            token = ''
        parts = token.split('.')
        well_formed = len(parts) == 2
        payload_b64, signature = (parts[0], parts[1]) if well_formed else (token, '')

        expected = self._sign(payload_b64)
        if not hmac.compare_digest(expected.encode('ascii'), signature.encode('ascii', 'replace')):
            return None
        if not well_formed:
            return None

        try:
            payload = json.loads(b64url_decode(payload_b64))
        except (binascii.Error, ValueError, UnicodeDecodeError):
            return None

        if not isinstance(payload, dict):
            return None
        resource_id = payload.get('rid')
        expires_at = payload.get('exp')
        if not isinstance(resource_id, str) or not resource_id:
            return None
        if not isinstance(expires_at, int) or isinstance(expires_at, bool):
            return None
        if expires_at <= int(self._clock()):
            return None
        return resource_id

    def resolve(self, token) -> Optional[AccessContext]:
        """verify() wrapped in the shared AccessContext shape."""
        resource_id = self.verify(token)
        if resource_id is None:
            return None
        return AccessContext(kind=KIND_SIGNED, resource_id=resource_id)


def get_link_codec() -> SignedCapabilityCodec:
    return SignedCapabilityCodec(secret=settings.SIGNED_LINK_SECRET)


def get_pin_session_codec() -> SignedCapabilityCodec:
    """Codec for short-lived proof of a verified portal PIN. Keyed apart from links."""
    return SignedCapabilityCodec(secret=f"{settings.SIGNED_LINK_SECRET}:portal-pin-session")
