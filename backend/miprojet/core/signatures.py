import hmac
import hashlib
from typing import Optional


def compute_signature(raw_body: bytes, shared_secret: str) -> str:
    """Hex HMAC-SHA256 of the exact request body."""
    return hmac.new(shared_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, provided_signature: Optional[str], shared_secret: Optional[str]) -> bool:
    """
    True only when `provided_signature` is the HMAC-SHA256 of `raw_body`
    under `shared_secret`. Whether a missing secret is fatal is the
    caller's policy; here it simply fails verification.
    """
    if not shared_secret or not provided_signature:
        return False

    expected = compute_signature(raw_body, shared_secret)
    # bytes comparison: compare_digest rejects non-ASCII str
    return hmac.compare_digest(
        expected.encode("ascii"),
        provided_signature.strip().lower().encode("utf-8"),
    )
