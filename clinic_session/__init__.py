"""Resilient network session for the clinic front-ends."""

__version__ = "0.1.0"

from .api import ChiefApi, DoctorApi, ReceptionApi
from .auth import AuthFlow
from .channel import ChannelClient, ChannelState
from .client import ClinicClient
from .config import ClientConfig, load_config
from .errors import (
    AuthenticationError,
    ChannelParseError,
    ClinicClientError,
    ClinicConnectionError,
    ClinicHandshakeError,
    ClinicTimeout,
    ConfigError,
    RequestError,
    SessionExpiredError,
)
from .http import PendingRequest, RequestPipeline
from .protocol import ChannelEvent, ChannelMessageType, build_envelope, parse_envelope
from .state import SessionState
from .storage import FileHintStore, IdentityHintStore, MemoryHintStore

__all__ = [
    "AuthFlow",
    "AuthenticationError",
    "ChannelClient",
    "ChannelEvent",
    "ChannelMessageType",
    "ChannelParseError",
    "ChannelState",
    "ChiefApi",
    "ClientConfig",
    "ClinicClient",
    "ClinicClientError",
    "ClinicConnectionError",
    "ClinicHandshakeError",
    "ClinicTimeout",
    "ConfigError",
    "DoctorApi",
    "FileHintStore",
    "IdentityHintStore",
    "MemoryHintStore",
    "PendingRequest",
    "ReceptionApi",
    "RequestError",
    "RequestPipeline",
    "SessionExpiredError",
    "SessionState",
    "__version__",
    "build_envelope",
    "load_config",
    "parse_envelope",
]
