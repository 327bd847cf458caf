"""Single-connection lifecycle: connect, discover, stream, disconnect."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pulsectl.core.adapter import AdapterMonitor
from pulsectl.core.context import SessionContext
from pulsectl.core.errors import AdapterUnavailableError, ConnectionFailureError, RadioError
from pulsectl.core.model import NO_READING, AdapterState, ConnectionHandle, PeripheralRecord
from pulsectl.core.scan import ScanRegistry
from pulsectl.core.stream import NotificationStream
from pulsectl.transports.base import RadioStack

LOGGER = logging.getLogger(__name__)

ConnectFailureCallback = Callable[[PeripheralRecord, ConnectionFailureError], None]


class ConnectionManager:
    """Owns the session's only live connection.

    A connect request while a connection exists (or another request is still
    in flight) is rejected; callers disconnect first. Failures never raise:
    they are logged and handed to `on_connect_failure`, which is also where a
    caller may decide to retry.

    A disconnect or close that lands while a connect is still in flight
    abandons that attempt and cancels whatever link it produced.
    """

    def __init__(
        self,
        context: SessionContext,
        radio: RadioStack,
        adapter: AdapterMonitor,
        scan: ScanRegistry,
        stream: NotificationStream,
        *,
        timeout_s: float | None = None,
        on_connect_failure: ConnectFailureCallback | None = None,
    ) -> None:
        self._context = context
        self._radio = radio
        self._scan = scan
        self._stream = stream
        self._timeout_s = context.config.connect_timeout_s if timeout_s is None else timeout_s
        self._on_connect_failure = on_connect_failure
        self._connecting: PeripheralRecord | None = None
        # Bumped whenever teardown overtakes an in-flight connect.
        self._attempt = 0
        self._closed = False
        adapter.on_state_change(self._on_adapter_state)

    @property
    def connection(self) -> ConnectionHandle | None:
        return self._context.connection

    async def connect(self, peripheral: PeripheralRecord) -> bool:
        if self._closed:
            LOGGER.info("Connect to %s skipped: connection manager closed", peripheral.identity)
            return False
        if not self._context.initialized:
            LOGGER.info("Connect to %s skipped: adapter not initialized", peripheral.identity)
            return False
        connection = self._context.connection
        busy = connection.peripheral if connection is not None else self._connecting
        if busy is not None:
            LOGGER.warning(
                "Connect to %s rejected: %s is already connected or connecting",
                peripheral.identity,
                busy.identity,
            )
            return False

        self._connecting = peripheral
        attempt = self._attempt
        try:
            connection = await self._open(peripheral)
            if connection is None:
                return False
            if self._abandoned(attempt):
                await self._discard(connection)
                return False
            await self._scan.stop()
            if self._abandoned(attempt):
                await self._discard(connection)
                return False
        finally:
            self._connecting = None

        self._context.set_connection(connection)
        await self._stream.attach(connection)
        return True

    async def disconnect(self) -> None:
        if self._connecting is not None:
            LOGGER.info("Abandoning pending connect to %s", self._connecting.identity)
            self._attempt += 1

        connection = self._context.connection
        if connection is None:
            return

        LOGGER.info("Disconnecting from %s", connection.identity)
        self._context.set_connection(None)
        await self._stream.detach()
        self._context.set_reading(NO_READING)
        await self._cancel(connection.identity)

    async def close(self) -> None:
        """Tear down the live connection and refuse any further connects."""
        self._closed = True
        await self.disconnect()

    async def _open(self, peripheral: PeripheralRecord) -> ConnectionHandle | None:
        identity = peripheral.identity
        LOGGER.info("Attempting to connect to %s (%s)", peripheral.name or "<unnamed>", identity)
        try:
            client = await self._radio.connect(
                identity,
                timeout_s=self._timeout_s,
                on_disconnect=self._on_connection_lost,
            )
        except Exception as exc:
            self._report_failure(peripheral, "connect", exc)
            return None

        try:
            self._require_adapter()
            services = await self._radio.discover_services(client)
            self._require_adapter()
        except Exception as exc:
            await self._cancel(identity)
            self._report_failure(peripheral, "service discovery", exc)
            return None

        LOGGER.info("Connected to %s; %d services discovered", identity, len(services))
        return ConnectionHandle(peripheral=peripheral, client=client, services=tuple(services))

    def _abandoned(self, attempt: int) -> bool:
        return self._closed or attempt != self._attempt or not self._context.initialized

    async def _discard(self, connection: ConnectionHandle) -> None:
        LOGGER.info("Connect to %s abandoned; releasing the link", connection.identity)
        await self._cancel(connection.identity)

    def _require_adapter(self) -> None:
        if not self._context.initialized:
            raise AdapterUnavailableError(
                f"Adapter left PoweredOn ({self._context.adapter_state.value})"
            )

    async def _cancel(self, identity: str) -> None:
        try:
            await self._radio.cancel_connection(identity)
        except RadioError as exc:
            LOGGER.warning("Error cancelling connection to %s: %s", identity, exc)

    def _report_failure(self, peripheral: PeripheralRecord, step: str, exc: Exception) -> None:
        if isinstance(exc, ConnectionFailureError):
            error = exc
        else:
            error = ConnectionFailureError(f"{step} failed for {peripheral.identity}: {exc}")
            error.__cause__ = exc
        LOGGER.warning("Failed to connect: %s", error)
        if self._on_connect_failure is not None:
            self._on_connect_failure(peripheral, error)

    def _on_connection_lost(self, identity: str, *_: Any) -> None:
        connection = self._context.connection
        if connection is None or connection.identity != identity:
            return
        LOGGER.warning("Connection to %s lost", identity)
        self._context.set_connection(None)
        self._stream.release()
        self._context.set_reading(NO_READING)

    def _on_adapter_state(self, state: AdapterState) -> None:
        if state is AdapterState.POWERED_ON:
            return
        if self._connecting is not None:
            LOGGER.warning("Adapter reported %s; abandoning pending connect", state.value)
            self._attempt += 1
        if self._context.connection is None:
            return
        LOGGER.warning("Adapter reported %s; dropping connection", state.value)
        self._context.spawn(self.disconnect())
