"""
Exception types raised by awsm.

Every error derives from AwsmError so the CLI can report any failure with a
single handler. Per-profile errors (AuthError, NotFoundError, ConflictError)
are caught by batch operations and recorded instead of aborting the batch.
"""


class AwsmError(Exception):
    """Base class for all awsm errors."""


class ParseError(AwsmError):
    """Malformed section header or body in an INI document."""

    def __init__(self, message, line_number=None, path=None):
        self.line_number = line_number
        self.path = path
        location = ""
        if path:
            location = f"{path}:"
        if line_number is not None:
            location = f"{location}{line_number}: "
        elif location:
            location = f"{location} "
        super().__init__(f"{location}{message}")


class StoreIOError(AwsmError, OSError):
    """A configuration or credentials file could not be read or written."""


class NotFoundError(AwsmError):
    """A referenced profile, session or section does not exist."""


class ConflictError(AwsmError):
    """A naming collision that no strategy resolved."""


class ValidationError(AwsmError, ValueError):
    """User supplied input (region, URL, name) is not acceptable."""


class AuthError(AwsmError):
    """A refresh backend rejected the request."""


class InvalidTokenError(AuthError):
    """The MFA token was rejected. The caller may re-prompt once."""


class CredentialsExpiredError(AuthError):
    """Stored credentials are past their expiration and must not be used."""


class CredentialConfigError(AwsmError):
    """Credentials on file are inconsistent with the profile kind."""


class EncryptionError(AwsmError):
    """A value could not be encrypted or decrypted."""
