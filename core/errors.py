"""
core/errors.py -- Exception hierarchy for proxyauth.

Exception Hierarchy:
    AccessControlError (base)
    ├── ScopeNotFound
    ├── ScopeDisabled
    ├── DuplicateUsername
    ├── CredentialNotFound
    ├── InvalidIP
    ├── WhitelistAlreadyExists
    ├── WhitelistEntryNotFound
    ├── HashingToolUnavailable
    ├── MaterializationError
    │   ├── CredentialWriteError
    │   └── ProxyReloadError
    └── PartiallyApplied

Everything above MaterializationError is a validation failure: it is raised
before the store changes, so the command had no effect. MaterializationError
is raised by writers and the reloader; the command layer re-raises it as
PartiallyApplied once the store mutation has already committed.

Error messages never include secrets.
"""

from typing import Any, Dict, Optional


class AccessControlError(Exception):
    """Base exception for all proxyauth operations.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        context: Additional context for debugging
        cause: Original exception if wrapping another error
    """

    error_code = "ACCESS_CONTROL_ERROR"

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


# =============================================================================
# Validation errors -- raised before any mutation
# =============================================================================


class ScopeNotFound(AccessControlError):
    error_code = "SCOPE_NOT_FOUND"

    def __init__(self, token: str):
        super().__init__(f"Site {token} does not exist.", context={"scope": token})


class ScopeDisabled(AccessControlError):
    error_code = "SCOPE_DISABLED"

    def __init__(self, token: str):
        super().__init__(f"Site {token} is not enabled.", context={"scope": token})


class DuplicateUsername(AccessControlError):
    """Raised when a username is already bound in another (or the same) scope."""

    error_code = "DUPLICATE_USERNAME"

    def __init__(self, username: str, existing_scope: str):
        super().__init__(
            f"Auth with username {username} already exists on {existing_scope}",
            context={"username": username, "existing_scope": existing_scope},
        )


class CredentialNotFound(AccessControlError):
    error_code = "CREDENTIAL_NOT_FOUND"

    def __init__(self, scope_key: str, username: Optional[str] = None):
        if username:
            message = f"Auth with username {username} does not exist on {scope_key}"
        else:
            message = f"No auth found on {scope_key}"
        super().__init__(message, context={"scope": scope_key, "username": username})


class InvalidIP(AccessControlError):
    error_code = "INVALID_IP"

    def __init__(self, ip: str, message: Optional[str] = None):
        super().__init__(message or f"Invalid IP address: {ip}", context={"ip": ip})


class WhitelistAlreadyExists(AccessControlError):
    error_code = "WHITELIST_ALREADY_EXISTS"

    def __init__(self, scope_key: str):
        super().__init__(
            f"Whitelist already exists on {scope_key}. Use append to add IPs.",
            context={"scope": scope_key},
        )


class WhitelistEntryNotFound(AccessControlError):
    error_code = "WHITELIST_ENTRY_NOT_FOUND"

    def __init__(self, scope_key: str, ips: Optional[list] = None):
        if ips:
            message = f"{','.join(ips)} IP's not found in whitelist of {scope_key}"
        else:
            message = f"No whitelisted IP's found for {scope_key}"
        super().__init__(message, context={"scope": scope_key, "ips": ips or []})


class HashingToolUnavailable(AccessControlError):
    error_code = "HASHING_TOOL_UNAVAILABLE"


# =============================================================================
# Post-mutation errors
# =============================================================================


class MaterializationError(AccessControlError):
    error_code = "MATERIALIZATION_ERROR"


class CredentialWriteError(MaterializationError):
    error_code = "CREDENTIAL_WRITE_ERROR"


class ProxyReloadError(MaterializationError):
    error_code = "PROXY_RELOAD_ERROR"


class PartiallyApplied(AccessControlError):
    """The store mutation committed but the external files or reload failed.

    result holds whatever the mutation returned, so the caller can still
    report what changed. Running `repair` for the scope re-derives the files.
    """

    error_code = "PARTIALLY_APPLIED"

    def __init__(self, scope_key: str, cause: BaseException, result: Any = None):
        super().__init__(
            f"Changes to {scope_key} were saved but the proxy files were not fully updated",
            context={"scope": scope_key},
            cause=cause,
        )
        self.result = result
