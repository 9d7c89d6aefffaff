"""
auth/errors.py -- Error taxonomy for the identity core.

Two kinds of failure live here:

  Exceptions -- input the caller should not have sent (ValidationError) or a
      typed conflict the caller must handle (DuplicateEmailError). Raised by
      IdentityService, mapped to 4xx by the route layer.

  Outcomes / AuthError -- expected results that are not exceptional: a user
      that does not exist, an optimistic-lock collision, bad credentials.
      Returned as values so nothing escapes to the transport layer.
"""

from __future__ import annotations

from enum import Enum


class AuthAppError(Exception):
    """Base class for all errors raised by the auth/ package."""


class ValidationError(AuthAppError):
    """Missing or malformed input (blank email, blank password, ...)."""


class DuplicateEmailError(AuthAppError):
    """A user with the same normalized email already exists."""


class DuplicateUsernameError(AuthAppError):
    """A user with the same normalized username already exists."""


class ConcurrencyConflict(AuthAppError):
    """The record changed between read and write; the whole batch was discarded."""


class Outcome(str, Enum):
    """Result of a transactional write."""

    COMMITTED = "committed"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


class AuthError(str, Enum):
    """Why an authentication attempt did not produce an Identity.

    NO_CREDENTIALS is not a failure: the request simply carries no Basic
    header and may proceed anonymously where the route allows it.
    """

    NO_CREDENTIALS = "no_credentials"
    MALFORMED_CREDENTIALS = "malformed_credentials"
    INVALID_CREDENTIALS = "invalid_credentials"
