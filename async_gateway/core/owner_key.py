"""Owner key derivation.

Request records are keyed by a derived, non-reversible token rather than
the raw identity of the caller, so a leaked store never exposes who made
which request.  The token is ``HMAC-SHA256(salt, subject)`` rendered as
64 lowercase hex characters.
"""

from __future__ import annotations

import hashlib
import hmac

from async_gateway.core.exceptions import ValidationError


def derive_owner_key(subject: str, salt: str) -> str:
    """Return the owner key for an authenticated *subject*.

    Args:
        subject: Principal identifier supplied by the authentication layer.
        salt: Environment-specific secret salt.

    Raises:
        ValidationError: If *subject* or *salt* is empty.
    """
    if not subject or not subject.strip():
        msg = "Cannot derive owner key: subject is empty"
        raise ValidationError(msg, stage="owner_key", code="MISSING_SUBJECT")
    if not salt:
        msg = "Cannot derive owner key: salt is not configured"
        raise ValidationError(msg, stage="owner_key", code="MISSING_SALT")

    return hmac.new(salt.encode("utf-8"), subject.encode("utf-8"), hashlib.sha256).hexdigest()
