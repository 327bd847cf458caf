"""Mutable state shared by the components of one BLE session."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

from pulsectl.core.model import (
    NO_READING,
    AdapterState,
    ConnectionHandle,
    DecodedReading,
    PeripheralRecord,
    SessionConfig,
)


ChangeListener = Callable[[str], None]


class SessionContext:
    """State for a single session, passed to every component constructor.

    Listeners receive the name of the field that changed: ``adapter_state``,
    ``devices``, ``connection`` or ``reading``.
    """

    def __init__(self, config: SessionConfig | None = None) -> None:
        self.config = config or SessionConfig()
        self.adapter_state = AdapterState.UNKNOWN
        self.initialized = False
        self.devices: tuple[PeripheralRecord, ...] = ()
        self.connection: ConnectionHandle | None = None
        self.reading: DecodedReading = NO_READING
        self._listeners: list[ChangeListener] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def set_adapter_state(self, state: AdapterState, initialized: bool) -> None:
        if state is self.adapter_state and initialized == self.initialized:
            return
        self.adapter_state = state
        self.initialized = initialized
        self._changed("adapter_state")

    def set_devices(self, devices: tuple[PeripheralRecord, ...]) -> None:
        if devices == self.devices:
            return
        self.devices = devices
        self._changed("devices")

    def set_connection(self, connection: ConnectionHandle | None) -> None:
        if connection is self.connection:
            return
        self.connection = connection
        self._changed("connection")

    def set_reading(self, reading: DecodedReading) -> None:
        self.reading = reading
        self._changed("reading")

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Run `coro` on the current loop, keeping a reference until it finishes."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for spawned background work to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _changed(self, field: str) -> None:
        for listener in list(self._listeners):
            listener(field)
