"""Process-level composition of the clinic network session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import TracebackType

import aiohttp

from .api import ChiefApi, DoctorApi, ReceptionApi
from .auth import AuthFlow
from .channel import ChannelClient
from .config import ClientConfig
from .http import RequestPipeline
from .state import SessionState
from .storage import FileHintStore, IdentityHintStore, MemoryHintStore

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _HttpStack:
    session: aiohttp.ClientSession
    pipeline: RequestPipeline
    fhir_pipeline: RequestPipeline
    auth: AuthFlow


class ClinicClient:
    """Owns one HTTP session, session state, auth flow and live channel.

    The HTTP side is built on first use so the client can be constructed
    outside a running event loop.

    Usage:
        async with ClinicClient(load_config(path)) as client:
            await client.auth.login("reception", "secret")
            patients = await client.reception.get_patients()
            client.channel.subscribe("patient_created", on_patient_created)
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        hint_store: IdentityHintStore | None = None,
    ) -> None:
        self.config = config
        self._external_session = session

        if hint_store is None:
            hint_store = (
                FileHintStore(config.hint_path)
                if config.hint_path is not None
                else MemoryHintStore()
            )
        self.state = SessionState(hint_store)

        self.channel = ChannelClient(
            config.channel_url,
            reconnect_interval=config.reconnect_interval,
            ping_interval=config.ping_interval,
            connect_timeout=config.connect_timeout,
        )
        self._http: _HttpStack | None = None

    @property
    def pipeline(self) -> RequestPipeline:
        return self._stack().pipeline

    @property
    def fhir_pipeline(self) -> RequestPipeline:
        return self._stack().fhir_pipeline

    @property
    def auth(self) -> AuthFlow:
        return self._stack().auth

    @property
    def reception(self) -> ReceptionApi:
        return ReceptionApi(self.pipeline)

    @property
    def doctor(self) -> DoctorApi:
        return DoctorApi(self.pipeline)

    @property
    def chief(self) -> ChiefApi:
        return ChiefApi(self.pipeline, self.fhir_pipeline)

    async def start(self, *, connect_channel: bool = True) -> None:
        """Restore a previous session if possible, then open the channel."""
        await self.auth.silent_refresh()
        if connect_channel:
            await self.channel.connect()

    async def close(self) -> None:
        """Close the channel and, if owned, the HTTP session."""
        await self.channel.disconnect()
        http, self._http = self._http, None
        if http is not None and self._external_session is None:
            await http.session.close()

    async def __aenter__(self) -> ClinicClient:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _stack(self) -> _HttpStack:
        if self._http is not None:
            return self._http

        session = self._external_session
        if session is None:
            # Cookie jar carries the refresh cookie between calls
            session = aiohttp.ClientSession(cookie_jar=aiohttp.CookieJar())
            _LOGGER.debug("Created HTTP session for %s", self.config.api_base)

        timeout = self.config.request_timeout
        pipeline = RequestPipeline(
            session, self.config.api_base, self.state, timeout=timeout
        )
        fhir_pipeline = RequestPipeline(
            session, self.config.fhir_base, self.state, timeout=timeout
        )
        auth = AuthFlow(pipeline, self.state)
        fhir_pipeline.bind_refresher(auth.refresh)

        self._http = _HttpStack(session, pipeline, fhir_pipeline, auth)
        return self._http
