"""Scan session ownership and peripheral deduplication."""

from __future__ import annotations

import asyncio
import logging
from functools import partial

from pulsectl.core.adapter import AdapterMonitor
from pulsectl.core.context import SessionContext
from pulsectl.core.errors import RadioError
from pulsectl.core.model import AdapterState, PeripheralRecord
from pulsectl.core.permissions import PermissionGate
from pulsectl.core.reducers import merge_discovery
from pulsectl.transports.base import RadioStack

LOGGER = logging.getLogger(__name__)


class ScanRegistry:
    """Owns at most one broadcast discovery session.

    Every session gets a number; discovery callbacks carry the number they
    were registered with and are dropped once that session has ended, so a
    late advertisement never touches the device set of a stopped scan.
    """

    def __init__(
        self,
        context: SessionContext,
        radio: RadioStack,
        adapter: AdapterMonitor,
        gate: PermissionGate,
        *,
        timeout_s: float | None = None,
    ) -> None:
        self._context = context
        self._radio = radio
        self._adapter = adapter
        self._gate = gate
        self._timeout_s = context.config.scan_timeout_s if timeout_s is None else timeout_s
        self._session = 0
        self._active = False
        self._timeout_task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        adapter.on_state_change(self._on_adapter_state)

    @property
    def active(self) -> bool:
        return self._active

    @property
    def devices(self) -> tuple[PeripheralRecord, ...]:
        return self._context.devices

    async def start(self) -> bool:
        if not self._ready("Scan skipped"):
            return False

        if not await self._gate.request_permissions():
            LOGGER.info("Required permissions not granted; scan skipped")
            return False

        async with self._lock:
            # The adapter may have gone away while permissions were pending.
            if not self._ready("Scan aborted"):
                return False
            if self._active:
                LOGGER.info("Replacing active scan session %d", self._session)
                await self.stop()

            self._session += 1
            session = self._session
            self._active = True
            self._context.set_devices(())
            LOGGER.info("Starting device scan (session %d, timeout %.1fs)", session, self._timeout_s)

            try:
                await self._radio.start_scan(partial(self._on_discovery, session))
            except Exception as exc:
                LOGGER.warning("Scan failed to start: %s", exc)
                self._active = False
                self._session += 1
                return False

            if session != self._session:
                # stop() ran while the radio was still starting the scanner.
                LOGGER.info("Scan session %d was stopped while starting", session)
                try:
                    await self._radio.stop_scan()
                except RadioError as exc:
                    LOGGER.warning("Error stopping scan: %s", exc)
                return False

            self._timeout_task = asyncio.get_running_loop().create_task(self._expire(session))
            return True

    async def stop(self) -> None:
        timeout_task, self._timeout_task = self._timeout_task, None
        if timeout_task is not None and timeout_task is not asyncio.current_task():
            timeout_task.cancel()

        if not self._active:
            return
        self._active = False
        self._session += 1

        try:
            await self._radio.stop_scan()
        except RadioError as exc:
            LOGGER.warning("Error stopping scan: %s", exc)
        LOGGER.info("Stopped device scan")

    def _ready(self, action: str) -> bool:
        if not self._context.initialized:
            LOGGER.info("%s: adapter not initialized", action)
            return False
        state = self._adapter.current_state()
        if state is not AdapterState.POWERED_ON:
            LOGGER.info("%s: Bluetooth is not powered on (%s)", action, state.value)
            return False
        return True

    async def _expire(self, session: int) -> None:
        await asyncio.sleep(self._timeout_s)
        if session != self._session or not self._active:
            return
        LOGGER.info("Scan session %d reached its %.1fs limit", session, self._timeout_s)
        await self.stop()

    def _on_discovery(
        self,
        session: int,
        error: Exception | None,
        peripheral: PeripheralRecord | None,
    ) -> None:
        if session != self._session or not self._active:
            return
        if error is not None:
            LOGGER.warning("Scan error: %s", error)
            return
        if peripheral is None:
            return

        devices = merge_discovery(self._context.devices, peripheral)
        if len(devices) == len(self._context.devices):
            return
        LOGGER.debug(
            "Found device %s (%s) rssi=%d",
            peripheral.identity,
            peripheral.name or "<unnamed>",
            peripheral.rssi,
        )
        self._context.set_devices(devices)

    def _on_adapter_state(self, state: AdapterState) -> None:
        if not self._active or state is AdapterState.POWERED_ON:
            return
        LOGGER.warning("Adapter reported %s; stopping scan", state.value)
        self._context.spawn(self.stop())
