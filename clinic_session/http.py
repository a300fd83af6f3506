"""HTTP request pipeline for the clinic backend API."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Final

import aiohttp

from .config import DEFAULT_REQUEST_TIMEOUT
from .errors import (
    ClinicConnectionError,
    ClinicTimeout,
    RequestError,
    SessionExpiredError,
)
from .state import SessionState

_LOGGER = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Request failed"

# Sentinel for a response body that is not valid JSON
_UNPARSEABLE: Final = object()

Refresher = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class PendingRequest:
    """An outbound call, rebuilt rather than mutated when replayed."""

    method: str
    endpoint: str
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def build_headers(self, credential: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self.headers}
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        return headers


@dataclass(frozen=True, slots=True)
class PipelineResponse:
    """Status and decoded body of one HTTP exchange."""

    status: int
    payload: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def parsed(self) -> bool:
        return self.payload is not _UNPARSEABLE

    def error_message(self) -> str:
        """Server-supplied error message, or the generic fallback."""
        if isinstance(self.payload, dict):
            message = self.payload.get("error")
            if isinstance(message, str) and message:
                return message
        return GENERIC_ERROR_MESSAGE


class RequestPipeline:
    """Sends API calls with the session credential and recovers from expiry.

    A 401 on a call made with a credential triggers exactly one refresh
    through the bound refresher. If it succeeds the call is replayed once
    with the new credential, otherwise the session is cleared and
    SessionExpiredError is raised. Concurrent calls that hit 401 each
    refresh independently.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        state: SessionState,
        *,
        timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._state = state
        self._timeout = timeout
        self._refresher: Refresher | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    def bind_refresher(self, refresher: Refresher | None) -> None:
        """Set the coroutine used to obtain a new credential after a 401."""
        self._refresher = refresher

    def url(self, endpoint: str) -> str:
        return f"{self._base_url}{endpoint}"

    async def execute(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Send a call and return its decoded JSON body.

        Raises:
            SessionExpiredError: If the credential expired and refresh failed.
            RequestError: If the final response is not successful.
            ClinicConnectionError: If the backend is unreachable.
            ClinicTimeout: If the request timed out.
        """
        request = PendingRequest(method.upper(), endpoint, body, dict(headers or {}))
        credential = self._state.get()
        response = await self.send(request, credential)

        if response.status == 401 and credential is not None:
            _LOGGER.debug("Credential rejected for %s %s", request.method, endpoint)
            if not await self._refresh():
                _LOGGER.info("Session expired, refresh failed")
                self._state.clear()
                raise SessionExpiredError("Session expired")
            response = await self.send(request, self._state.get())

        if not response.ok:
            raise RequestError(response.error_message(), response.status)
        if not response.parsed:
            raise RequestError("Response body is not valid JSON", response.status)
        return response.payload

    async def send(
        self, request: PendingRequest, credential: str | None = None
    ) -> PipelineResponse:
        """Perform one HTTP exchange without any expiry handling."""
        url = self.url(request.endpoint)
        kwargs: dict[str, Any] = {
            "headers": request.build_headers(credential),
            "timeout": aiohttp.ClientTimeout(total=self._timeout),
        }
        if request.body is not None:
            kwargs["json"] = request.body

        try:
            async with self._session.request(request.method, url, **kwargs) as resp:
                try:
                    payload = await resp.json(content_type=None)
                except ValueError:
                    payload = _UNPARSEABLE
                return PipelineResponse(resp.status, payload)
        except TimeoutError as err:
            raise ClinicTimeout(
                f"{request.method} {request.endpoint} timed out"
            ) from err
        except aiohttp.ClientError as err:
            _LOGGER.warning("%s %s failed: %s", request.method, url, err)
            raise ClinicConnectionError(GENERIC_ERROR_MESSAGE) from err

    async def _refresh(self) -> bool:
        if self._refresher is None:
            return False
        return await self._refresher()
