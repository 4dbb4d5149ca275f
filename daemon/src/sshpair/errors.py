"""Exceptions for sshpair.

Every pairing failure carries a stable ``code`` and the HTTP status the
server answers with, so the transport never has to guess.
"""


class SshPairError(Exception):
    """Base exception for all sshpair errors."""

    code = "error"
    http_status = 500


class InvalidTokenError(SshPairError):
    """Token is not the live pairing token."""

    code = "invalid_token"
    http_status = 400


class TokenExpiredError(SshPairError):
    """Token is the live one but its TTL has elapsed."""

    code = "token_expired"
    http_status = 400


class InvalidFormatError(SshPairError):
    """Submitted value does not have the expected shape."""

    code = "invalid_format"
    http_status = 400


class MissingFieldError(SshPairError):
    """Required request field is absent."""

    code = "missing_field"
    http_status = 400


class MissingUsernameError(SshPairError):
    """No username supplied and no paired peer to fall back to."""

    code = "missing_username"
    http_status = 400


class NotFoundError(SshPairError):
    """Requested item does not exist (stale code, no local key)."""

    code = "not_found"
    http_status = 404


class ValidationFailedError(SshPairError):
    """External syntax check rejected a sudoers fragment."""

    code = "validation_failed"
    http_status = 500


class WriteFailedError(SshPairError):
    """Writing to the filesystem failed."""

    code = "write_failed"
    http_status = 500


class ConfigError(SshPairError):
    """Configuration file holds an unusable value."""

    pass


class ClientError(SshPairError):
    """Request to a remote sshpair service failed."""

    def __init__(self, message: str, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status = status
        if code:
            self.code = code
