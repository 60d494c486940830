"""
core/errors.py
--------------
Application error taxonomy.

Each AppError carries the HTTP status it maps to; main.py registers a single
handler that renders them as {"error": message}. Services raise these and
never build HTTP responses themselves.

  AuthInvalid          401  bad / missing / unrecoverable credential
  ValidationError      400  missing or malformed request fields
  NotFound             404  referenced entity absent
  UpstreamUnavailable  500  completion service failed or timed out (retryable)

Expired-but-recoverable credentials never leave the Credential Manager, a
safety block is a normal response path, and degraded best-effort writes are
only logged (see core/background.py).
"""

import random

from fastapi import status

UPSTREAM_FRIENDLY_MESSAGES = (
    "Something went wrong on my side. Give it a moment and try again?",
    "I lost my train of thought there. Mind sending that again?",
    "Looks like I'm having a little technical trouble. Try again in a bit!",
    "Oops, that didn't go through. Please try once more.",
)


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthInvalid(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class UpstreamUnavailable(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = True

    def __init__(self, detail: str | None = None) -> None:
        # detail is for server logs only; clients get a friendly message
        self.detail = detail
        super().__init__(random.choice(UPSTREAM_FRIENDLY_MESSAGES))
