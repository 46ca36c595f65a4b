"""Request authentication helpers."""
import hashlib
import hmac
from typing import Optional

SIGNATURE_PREFIX = "sha256="


def compute_github_signature(secret: str, body: bytes) -> str:
    """The ``X-Hub-Signature-256`` value GitHub sends for ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_github_signature(secret: Optional[str], body: bytes, header: Optional[str]) -> bool:
    """
    Check a GitHub webhook signature in constant time.

    A missing secret or header never verifies.
    """
    if not secret or not header or not header.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(compute_github_signature(secret, body), header)


def verify_api_key(expected: Optional[str], provided: Optional[str]) -> bool:
    """Constant-time API key comparison. No configured key means nothing verifies."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))
