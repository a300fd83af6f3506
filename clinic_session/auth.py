"""Login, logout, registration and credential refresh."""

from __future__ import annotations

import logging
from typing import Any

from .errors import AuthenticationError, ClinicClientError, RequestError
from .http import PendingRequest, RequestPipeline
from .state import SessionState

_LOGGER = logging.getLogger(__name__)

LOGIN_ENDPOINT = "/auth/login"
REGISTER_ENDPOINT = "/auth/register"
LOGOUT_ENDPOINT = "/auth/logout"
REFRESH_ENDPOINT = "/auth/refresh"


class AuthFlow:
    """Authentication operations against the backend.

    Binds itself as the pipeline's refresher so that expired credentials are
    renewed through ``refresh``.
    """

    def __init__(self, pipeline: RequestPipeline, state: SessionState) -> None:
        self._pipeline = pipeline
        self._state = state
        pipeline.bind_refresher(self.refresh)

    async def login(self, username: str, password: str) -> dict[str, Any]:
        """Authenticate and install the returned credential.

        Raises:
            AuthenticationError: If the backend rejects the credentials.
        """
        try:
            data = await self._pipeline.execute(
                LOGIN_ENDPOINT,
                "POST",
                {"username": username, "password": password},
            )
        except RequestError as err:
            raise AuthenticationError(str(err) or "Login failed") from err

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationError("Login response did not contain a token")

        self._state.establish(token, username)
        _LOGGER.info("Logged in as %s", username)
        return data

    async def register(self, username: str, password: str) -> Any:
        """Create an account. Does not log in.

        Raises:
            AuthenticationError: If the backend rejects the registration.
        """
        try:
            return await self._pipeline.execute(
                REGISTER_ENDPOINT,
                "POST",
                {"username": username, "password": password},
            )
        except RequestError as err:
            raise AuthenticationError(str(err) or "Registration failed") from err

    async def logout(self) -> None:
        """Notify the backend, then clear the session whatever the outcome."""
        try:
            await self._pipeline.execute(LOGOUT_ENDPOINT, "POST")
        finally:
            self._state.clear()
            _LOGGER.info("Logged out")

    async def silent_refresh(self) -> None:
        """Try to restore a session at startup from the ambient cookie.

        Only attempted when an identity hint is persisted. A failed attempt
        drops the hint and leaves in-memory state alone; nothing is raised.
        """
        hint_store = self._state.hint_store
        username = hint_store.load()
        if not username:
            return

        token = await self._request_token()
        try:
            if token is None:
                _LOGGER.info("Silent refresh failed, forgetting %s", username)
                hint_store.delete()
                return

            self._state.establish(token, username)
            _LOGGER.info("Session restored for %s", username)
        except OSError as err:
            _LOGGER.warning("Could not update identity hint: %s", err)

    async def refresh(self) -> bool:
        """Renew the credential mid-session.

        Returns:
            True if a new credential was installed, False otherwise.
        """
        token = await self._request_token()
        if token is None:
            return False
        self._state.set(token)
        return True

    async def _request_token(self) -> str | None:
        # No bearer header; the refresh cookie authorizes this call
        request = PendingRequest("POST", REFRESH_ENDPOINT)
        try:
            response = await self._pipeline.send(request)
        except ClinicClientError as err:
            _LOGGER.debug("Refresh request failed: %s", err)
            return None

        if not response.ok or not isinstance(response.payload, dict):
            _LOGGER.debug("Refresh rejected with status %s", response.status)
            return None
        token = response.payload.get("access_token")
        return token if isinstance(token, str) and token else None
