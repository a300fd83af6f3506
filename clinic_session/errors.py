"""Client error types for clinic backend interactions."""

from __future__ import annotations


class ClinicClientError(Exception):
    """Base error for clinic client failures."""


class RequestError(ClinicClientError):
    """Non-success response from the clinic API."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ClinicConnectionError(RequestError):
    """Network connection to the backend failed."""


class ClinicHandshakeError(ClinicConnectionError):
    """WebSocket handshake failed."""


class ClinicTimeout(RequestError):
    """Timeout while communicating with the backend."""


class SessionExpiredError(ClinicClientError):
    """Credential was rejected and could not be refreshed."""


class AuthenticationError(ClinicClientError):
    """Login or registration was rejected."""


class ChannelParseError(ClinicClientError):
    """Inbound channel frame is not a valid envelope."""


class ConfigError(ClinicClientError):
    """Configuration file is missing or invalid."""
