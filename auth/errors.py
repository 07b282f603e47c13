"""
auth/errors.py -- Exception taxonomy for the auth core.

Every error carries an HTTP status, a stable machine code and a client-safe
message. api/main.py renders them in the shared error envelope.

Credential and token errors use one fixed message each so a caller cannot
tell "unknown email" from "wrong password", or "expired" from "bad signature".
Validation errors are specific because they carry no security sensitivity.

Layer rule: no imports from api/, core/, or standards/.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code = 400
    code = "error"
    message = "Request failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class CredentialError(AuthError):
    status_code = 401
    code = "bad_credentials"
    message = "Invalid email or password."


class MissingTokenError(AuthError):
    status_code = 401
    code = "token_missing"
    message = "Authentication token not provided."


class InvalidTokenError(AuthError):
    status_code = 401
    code = "token_invalid"
    message = "Invalid or expired token."


class AuthorizationError(AuthError):
    status_code = 403
    code = "forbidden"
    message = "Permission denied."


class InputValidationError(AuthError):
    status_code = 400
    code = "validation_error"


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    message = "Not found."


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"
