"""Verification of PayDunya IPN signatures.

The provider signs the raw request body with an HMAC keyed by the merchant
private key. Depending on the account the digest is SHA-256 or SHA-512 and
may carry a ``sha256=`` style prefix, so both are computed and either is
accepted. Verification always runs on the bytes exactly as received.
"""
import hashlib
import hmac
import logging
import re
from typing import Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

# Tried in this order, first non-empty value wins.
SIGNATURE_HEADERS = (
    "x-paydunya-signature",
    "paydunya-signature",
    "x-signature",
)

_PREFIX = re.compile(r"^sha(256|512)=", re.IGNORECASE)


def extract_signature(
    headers: Mapping[str, str], candidates: Sequence[str] = SIGNATURE_HEADERS
) -> Optional[str]:
    """Return the first non-empty signature header value, if any.

    ``headers`` may be a case-insensitive mapping (Starlette ``Headers``) or a
    plain dict; plain dicts are matched case-insensitively here.
    """
    lowered = {str(k).lower(): v for k, v in headers.items()}
    for name in candidates:
        value = lowered.get(name.lower())
        if value and value.strip():
            return value
    return None


def _normalize(signature: str) -> str:
    return _PREFIX.sub("", signature.strip()).lower()


class SignatureVerifier:
    def __init__(self, private_key: Optional[str]):
        self._key = (private_key or "").encode("utf-8")

    def digests(self, body: bytes):
        return (
            hmac.new(self._key, body, hashlib.sha256).hexdigest(),
            hmac.new(self._key, body, hashlib.sha512).hexdigest(),
        )

    def verify(self, body: bytes, signature: Optional[str]) -> bool:
        if not signature:
            logger.warning("PayDunya IPN: signature header missing")
            return False
        if not self._key:
            logger.error("PayDunya IPN: private key not configured, cannot verify signature")
            return False

        provided = _normalize(signature).encode("utf-8")
        expected256, expected512 = self.digests(body)

        # compare_digest is constant-time and returns False on length mismatch
        match256 = hmac.compare_digest(provided, expected256.encode("ascii"))
        match512 = hmac.compare_digest(provided, expected512.encode("ascii"))

        if not (match256 or match512):
            logger.warning(
                "PayDunya IPN invalid signature provided=%s...",
                signature.strip()[:16],
            )
            return False
        return True
