"""
auth/hashing.py -- Password digests and constant-time verification.

Schemes:
  sha256 (default): base64(SHA-256(utf-8 password)). Deterministic and unsalted,
      which keeps digests byte-compatible with existing user rows. Identical
      passwords produce identical digests across users -- a known weakness that
      PASSWORD_SCHEME=bcrypt addresses.

  bcrypt: salted, cost-factored digest via the bcrypt library (no passlib
      wrapper). Not deterministic. Passwords longer than 72 bytes are truncated
      by bcrypt itself, so we truncate explicitly to avoid the 4.x error.

verify() recognizes bcrypt digests by their "$2" prefix regardless of the
configured scheme, so a database can hold both formats during a migration.

verify() never raises: any malformed digest or candidate yields False.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac

import bcrypt

_BCRYPT_PREFIX = "$2"
_BCRYPT_MAX_BYTES = 72
_SHA256_DIGEST_LEN = 32


def sha256_digest(plain: str) -> str:
    """Return the base64-encoded SHA-256 digest of plain."""
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest()).decode("ascii")


class PasswordHasher:
    """Hash and verify passwords under a configured scheme.

    Usage:
        hasher = PasswordHasher()             # sha256
        digest = hasher.hash("Admin123!")
        hasher.verify(digest, "Admin123!")    # True
    """

    def __init__(self, scheme: str = "sha256", bcrypt_rounds: int = 12) -> None:
        if scheme not in ("sha256", "bcrypt"):
            raise ValueError(f"Unsupported password scheme: {scheme!r}")
        self.scheme = scheme
        self._bcrypt_rounds = bcrypt_rounds
        # Timing equalization dummy. When a login names an unknown email the
        # gate still runs verify() against this digest, under the same scheme,
        # so the response time does not reveal whether the account exists.
        self.dummy_digest: str = self.hash("authapp_timing_dummy")

    def hash(self, plain: str) -> str:
        if self.scheme == "bcrypt":
            pw_bytes = plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]
            return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=self._bcrypt_rounds)).decode("utf-8")
        return sha256_digest(plain)

    def verify(self, digest: str | None, candidate: str | None) -> bool:
        """Return True if candidate matches digest.

        The sha256 path decodes the stored digest and compares raw bytes with
        hmac.compare_digest, so time taken does not depend on where the first
        mismatching byte sits.
        """
        if not digest or candidate is None:
            return False
        if digest.startswith(_BCRYPT_PREFIX):
            try:
                return bcrypt.checkpw(candidate.encode("utf-8")[:_BCRYPT_MAX_BYTES], digest.encode("utf-8"))
            except (ValueError, TypeError):
                return False
        try:
            stored = base64.b64decode(digest, validate=True)
        except (binascii.Error, ValueError):
            return False
        if len(stored) != _SHA256_DIGEST_LEN:
            return False
        try:
            encoded = candidate.encode("utf-8")
        except UnicodeEncodeError:
            # Lone surrogates survive JSON decoding but have no UTF-8 form.
            return False
        computed = hashlib.sha256(encoded).digest()
        return hmac.compare_digest(stored, computed)

