"""Durable storage for the identity hint.

The hint is the last-authenticated username. It carries no authorization by
itself; it only tells the client that a silent refresh is worth attempting
at startup.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import yaml

_LOGGER = logging.getLogger(__name__)

HINT_KEY = "username"


class IdentityHintStore(Protocol):
    """Persistence for the identity hint."""

    def load(self) -> str | None: ...

    def save(self, username: str) -> None: ...

    def delete(self) -> None: ...


class MemoryHintStore:
    """Hint store that lives only as long as the process."""

    def __init__(self, username: str | None = None) -> None:
        self._username = username

    def load(self) -> str | None:
        return self._username

    def save(self, username: str) -> None:
        self._username = username

    def delete(self) -> None:
        self._username = None


class FileHintStore:
    """Hint store backed by a small YAML document on disk."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> str | None:
        if not self._path.exists():
            return None
        try:
            with self._path.open() as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as err:
            # An unreadable hint only costs the startup refresh attempt
            _LOGGER.warning("Ignoring unreadable identity hint %s: %s", self._path, err)
            return None
        if not isinstance(data, dict):
            return None
        username = data.get(HINT_KEY)
        return username if isinstance(username, str) and username else None

    def save(self, username: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w") as f:
            yaml.safe_dump({HINT_KEY: username}, f)

    def delete(self) -> None:
        self._path.unlink(missing_ok=True)
