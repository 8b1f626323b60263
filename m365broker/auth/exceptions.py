"""
Authentication exceptions for m365broker.
"""

from typing import Any, Optional


class AuthError(Exception):
    """Base exception for broker errors."""

    def __init__(self, message: str, error_code: str = "AuthenticationFailed"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class AcquisitionError(AuthError):
    """Raised when the identity provider rejects a credential or flow."""

    def __init__(self, error: str, error_description: Optional[str] = None):
        self.error = error
        self.error_description = error_description
        super().__init__(error_description or error, error)

    @classmethod
    def from_result(cls, result: dict) -> "AcquisitionError":
        """Build from an MSAL error result dictionary."""
        return cls(result.get("error", "unknown_error"), result.get("error_description"))


class TokenRetrievalError(AuthError):
    """Raised when a strategy completes without producing a token."""

    def __init__(self, message: str = "Failed to retrieve an access token. Please try again"):
        super().__init__(message, "TokenRetrievalFailed")


class CertificateError(AuthError):
    """Raised when a certificate cannot be parsed, decrypted or used."""

    def __init__(self, message: str):
        super().__init__(message, "InvalidCertificate")


class ManagedIdentityError(AuthError):
    """Raised when a managed identity endpoint call fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[Any] = None,
        access_denied: bool = False,
    ):
        self.status_code = status_code
        self.body = body
        self.access_denied = access_denied
        super().__init__(message, "ManagedIdentityFailed")


class CloudShellUserIdentityError(AuthError):
    """Raised when a user-assigned identity is requested inside Cloud Shell."""

    def __init__(
        self,
        message: str = (
            "Azure Cloud Shell does not support user-managed identity. You can execute "
            "the command without the --user-name option to login with user identity"
        ),
    ):
        super().__init__(message, "UnsupportedIdentity")


class ManagedIdentityNotAssignedError(AuthError):
    """Raised when the metadata endpoint refuses access after the fallback."""

    def __init__(
        self,
        message: str = (
            "Error while logging with Managed Identity. Please check if a Managed "
            "Identity is assigned to the current Azure resource."
        ),
    ):
        super().__init__(message, "ManagedIdentityNotAssigned")


class AuthorizationCodeError(AuthError):
    """Raised when the browser flow returns an error instead of a code."""

    def __init__(self, error: str, error_description: Optional[str] = None):
        self.error = error
        self.error_description = error_description
        super().__init__(error_description or error, error)


class CommandError(AuthError):
    """Command-level error carrying only a user-facing message."""

    def __init__(self, message: str):
        super().__init__(message, "CommandFailed")
