"""
auth/gate.py -- Turn inbound credential material into a verified Identity.

Two entry points, one verification path:

  login(email, password)          -- JSON login payload.
  authenticate_basic(header)      -- "Authorization: Basic base64(email:password)".

Both converge on _verify(), so a Basic request and a login request with the
same credentials always get the same answer.

Parsing is a pure function (parse_basic_header) with no framework imports;
auth/dependencies.py wraps it for FastAPI.

Security design:
  [T1] Timing equalization: when the email is unknown, verify() still runs
       against the hasher's dummy digest so response time does not reveal
       whether the account exists.
  [T2] Every failure after parsing collapses to INVALID_CREDENTIALS. Unknown
       email, wrong password and inactive account are indistinguishable to the
       caller; only the server log says which check failed.
  [T3] The decoded Basic payload is split on the FIRST colon only. Passwords
       may contain colons; usernames may not.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass

from auth.errors import AuthError
from auth.hashing import PasswordHasher
from auth.models import Identity, normalize_key
from auth.store import CredentialStore

logger = logging.getLogger("authapp.auth")

_BASIC_PREFIX = "basic "


@dataclass(frozen=True)
class BasicCredentials:
    username: str
    password: str


@dataclass(frozen=True)
class AuthResult:
    """Either an Identity or the reason there is none."""

    identity: Identity | None = None
    error: AuthError | None = None

    @property
    def ok(self) -> bool:
        return self.identity is not None

    @classmethod
    def success(cls, identity: Identity) -> "AuthResult":
        return cls(identity=identity)

    @classmethod
    def failure(cls, error: AuthError) -> "AuthResult":
        return cls(error=error)


def parse_basic_header(header: str | None) -> BasicCredentials | AuthError:
    """Parse an Authorization header value into credentials.

    Returns:
        BasicCredentials on success.
        AuthError.NO_CREDENTIALS if the header is missing, blank, or uses a
            different scheme (e.g. Bearer) -- the request is simply anonymous.
        AuthError.MALFORMED_CREDENTIALS if the base64 payload does not decode
            to UTF-8 text or has no colon.
    """
    if header is None or not header.strip():
        return AuthError.NO_CREDENTIALS
    if header[: len(_BASIC_PREFIX)].lower() != _BASIC_PREFIX:
        return AuthError.NO_CREDENTIALS

    token = header[len(_BASIC_PREFIX) :].strip()
    try:
        decoded = base64.b64decode(token, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        # UnicodeDecodeError is a ValueError subclass.
        return AuthError.MALFORMED_CREDENTIALS

    parts = decoded.split(":", 1)  # [T3]
    if len(parts) != 2:
        return AuthError.MALFORMED_CREDENTIALS
    return BasicCredentials(username=parts[0], password=parts[1])


class AuthenticationGate:
    """Verify credentials against the CredentialStore.

    Usage:
        gate = AuthenticationGate(store, hasher)
        result = gate.login("admin@task.com", "Admin123!")
        if result.ok:
            result.identity.roles   # ("Admin",)
    """

    def __init__(self, store: CredentialStore, hasher: PasswordHasher) -> None:
        self._store = store
        self._hasher = hasher

    def login(self, email: str | None, password: str | None) -> AuthResult:
        return self._verify(email, password)

    def authenticate_basic(self, header: str | None) -> AuthResult:
        parsed = parse_basic_header(header)
        if isinstance(parsed, AuthError):
            if parsed is AuthError.MALFORMED_CREDENTIALS:
                logger.info("Rejected malformed Basic authorization header")
            return AuthResult.failure(parsed)
        return self._verify(parsed.username, parsed.password)

    def _verify(self, email: str | None, password: str | None) -> AuthResult:
        key = normalize_key(email)
        if not key or password is None:
            return AuthResult.failure(AuthError.INVALID_CREDENTIALS)

        user = self._store.find_by_email(key)
        if user is None:
            self._hasher.verify(self._hasher.dummy_digest, password)  # [T1]
            logger.info("Failed login: unknown account")
            return AuthResult.failure(AuthError.INVALID_CREDENTIALS)

        if not self._hasher.verify(user.password_hash, password):
            logger.info("Failed login for user %s: bad password", user.id)
            return AuthResult.failure(AuthError.INVALID_CREDENTIALS)

        if not user.is_active:
            logger.info("Failed login for user %s: account inactive", user.id)
            return AuthResult.failure(AuthError.INVALID_CREDENTIALS)

        return AuthResult.success(Identity(user_id=user.id, name=email.strip(), roles=tuple(user.roles)))
