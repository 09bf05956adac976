"""Connector exception hierarchy.

- ConfigError: unknown or disabled entity type, invalid entity configuration.
  Not retryable; the configuration must be fixed.
- AuthError: inbound webhook failed signature verification.
- CredentialError: no usable Salesforce credential; blocks outbound calls.
- UpstreamError: Salesforce answered with a non-2xx status, an unreadable
  body, or could not be reached.
- MappingError: payload could not be mapped at all (not a JSON object).
"""

from __future__ import annotations


class ConnectorError(Exception):
    """Base class for all connector errors."""


class ConfigError(ConnectorError):
    """Entity type unknown, disabled, or misconfigured."""


class AuthError(ConnectorError):
    """Inbound request failed authenticity checks."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CredentialError(ConnectorError):
    """No usable Salesforce credential source exists."""


class UpstreamError(ConnectorError):
    """Salesforce call failed: non-2xx status, bad body, or transport error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MappingError(ConnectorError):
    """Source payload has a shape the field mapper cannot read."""
