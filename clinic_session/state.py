"""In-memory session state shared by the request pipeline and auth flow."""

from __future__ import annotations

import logging

from .storage import IdentityHintStore, MemoryHintStore

_LOGGER = logging.getLogger(__name__)


class SessionState:
    """Current credential and identity for one client process.

    The credential is never written to durable storage. Only the identity
    hint is persisted, through the injected store. All access happens on a
    single event loop, so no locking is done.
    """

    def __init__(self, hint_store: IdentityHintStore | None = None) -> None:
        self._hint_store: IdentityHintStore = hint_store or MemoryHintStore()
        self._credential: str | None = None
        self._identity: str | None = None

    @property
    def hint_store(self) -> IdentityHintStore:
        return self._hint_store

    @property
    def identity(self) -> str | None:
        """Username of the authenticated user, if known."""
        return self._identity

    @property
    def authenticated(self) -> bool:
        return self._credential is not None

    def get(self) -> str | None:
        """Return the current credential."""
        return self._credential

    def set(self, credential: str) -> None:
        """Replace the credential, keeping the identity."""
        self._credential = credential

    def establish(self, credential: str, identity: str) -> None:
        """Install a credential for a user and persist the identity hint."""
        self._credential = credential
        self._identity = identity
        self._hint_store.save(identity)
        _LOGGER.debug("Session established for %s", identity)

    def clear(self) -> None:
        """Drop credential and identity, and delete the persisted hint."""
        self._credential = None
        self._identity = None
        self._hint_store.delete()
        _LOGGER.debug("Session cleared")
