"""Client configuration loading.

Configuration is plain data: a YAML document mapped onto a frozen dataclass.
Every key is optional; omitted keys fall back to the defaults below, which
match the backend's development deployment.

Example:
    base_url: https://reception.local:8080
    channel_url: wss://reception.local:8080/ws
    reconnect_interval: 3
    hint_path: ~/.config/clinic/identity.yaml
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_RECONNECT_INTERVAL = 3.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 15.0
DEFAULT_PING_INTERVAL = 20


@dataclass(frozen=True)
class ClientConfig:
    """Addresses and timing for one front-end process.

    Attributes:
        base_url: Scheme and authority of the backend (e.g. http://host:8080).
        api_url: REST API prefix, resolved against base_url when relative.
        fhir_url: FHIR API prefix, resolved against base_url when relative.
        channel_url: Websocket address for live updates.
        reconnect_interval: Fixed delay between channel reconnect attempts.
        request_timeout: Total timeout for one HTTP request, None to disable.
        connect_timeout: Timeout for opening the websocket.
        ping_interval: Websocket keepalive ping interval, None to disable.
        hint_path: File holding the persisted identity hint, None for memory.
    """

    base_url: str = "http://localhost:8080"
    api_url: str = "/api"
    fhir_url: str = "/fhir"
    channel_url: str = "ws://localhost:8080/ws"
    reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL
    request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    ping_interval: int | None = DEFAULT_PING_INTERVAL
    hint_path: Path | None = None

    @property
    def api_base(self) -> str:
        """Absolute REST API prefix."""
        return _resolve(self.base_url, self.api_url)

    @property
    def fhir_base(self) -> str:
        """Absolute FHIR API prefix."""
        return _resolve(self.base_url, self.fhir_url)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        """Build a config from a parsed mapping.

        Raises:
            ConfigError: If a key is unknown or a value has the wrong type.
        """
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        values: dict[str, Any] = dict(data)
        try:
            for key in ("reconnect_interval", "connect_timeout"):
                if key in values:
                    values[key] = float(values[key])
            if values.get("request_timeout") is not None:
                values["request_timeout"] = float(values["request_timeout"])
            if values.get("ping_interval") is not None:
                values["ping_interval"] = int(values["ping_interval"])
        except (TypeError, ValueError) as err:
            raise ConfigError(f"Invalid config value: {err}") from err

        if values.get("hint_path") is not None:
            values["hint_path"] = Path(values["hint_path"]).expanduser()

        if values.get("reconnect_interval", DEFAULT_RECONNECT_INTERVAL) <= 0:
            raise ConfigError("reconnect_interval must be positive")

        return cls(**values)


def _resolve(base_url: str, prefix: str) -> str:
    if prefix.startswith(("http://", "https://")):
        return prefix.rstrip("/")
    return base_url.rstrip("/") + "/" + prefix.strip("/")


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file with error handling."""
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    with path.open() as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as err:
            raise ConfigError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}")
    return data


def load_config(path: Path) -> ClientConfig:
    """Load client configuration from a YAML file.

    Raises:
        ConfigError: If the file is missing, unparsable or invalid.
    """
    return ClientConfig.from_dict(_load_yaml(path))
