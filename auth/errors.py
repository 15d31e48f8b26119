"""
auth/errors.py -- Expected-failure taxonomy of the auth core.

Each class carries the HTTP status, the internal code (what the server logs)
and the public code (what the client sees). The login failures that would
reveal whether an identity exists collapse to INVALID_CREDENTIALS publicly;
USER_INACTIVE stays distinct because it is only reachable after the password
has already matched.

negotiate=True marks the request-verification failures. For those the API
layer answers a browser navigation with a redirect to the login page instead
of a JSON body.

AuthServiceError is the one unexpected-failure class: the facade wraps any
non-AuthError exception in it after logging the original server-side.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    status_code: int = 400
    code: str = "AUTH_ERROR"
    public_code: Optional[str] = None
    message: str = "Authentication failed."
    negotiate: bool = False

    def __init__(self, message: Optional[str] = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    @property
    def client_code(self) -> str:
        return self.public_code or self.code


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class UserNotFound(AuthError):
    status_code = 401
    code = "USER_NOT_FOUND"
    public_code = "INVALID_CREDENTIALS"
    message = "Invalid username or password."


class InvalidPassword(AuthError):
    status_code = 401
    code = "INVALID_PASSWORD"
    public_code = "INVALID_CREDENTIALS"
    message = "Invalid username or password."


class UserInactive(AuthError):
    status_code = 403
    code = "USER_INACTIVE"
    message = "Your account has been disabled. Please contact your administrator to reactivate it."


# ---------------------------------------------------------------------------
# Request verification
# ---------------------------------------------------------------------------


class TokenMissing(AuthError):
    status_code = 401
    code = "TOKEN_MISSING"
    message = "Authentication token required."
    negotiate = True


class TokenInvalidOrExpired(AuthError):
    status_code = 403
    code = "TOKEN_INVALID_OR_EXPIRED"
    message = "Invalid or expired token."
    negotiate = True


class SessionNotFound(AuthError):
    status_code = 403
    code = "SESSION_NOT_FOUND"
    message = "Session expired or not found."
    negotiate = True


class FingerprintMismatch(AuthError):
    status_code = 403
    code = "FINGERPRINT_MISMATCH"
    message = "Device fingerprint does not match this session."
    negotiate = True


# ---------------------------------------------------------------------------
# Authorization, role switch, refresh, registration
# ---------------------------------------------------------------------------


class InsufficientRole(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Insufficient permissions."


class ForbiddenTransition(AuthError):
    status_code = 403
    code = "FORBIDDEN_TRANSITION"
    message = "This role switch is not permitted."


class IdentityGone(AuthError):
    """The identity behind a valid token no longer exists in its tenant."""

    status_code = 404
    code = "USER_NOT_FOUND"
    message = "User not found."


class RefreshInvalidOrExpired(AuthError):
    status_code = 401
    code = "REFRESH_INVALID_OR_EXPIRED"
    message = "Invalid or expired refresh token."


class InvalidRequest(AuthError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request."


class IdentityConflict(AuthError):
    status_code = 409
    code = "CONFLICT"
    message = "A user with that username or email already exists."


class AuthServiceError(AuthError):
    status_code = 500
    code = "SERVER_ERROR"
    message = "An internal error occurred. Please try again later."
