from __future__ import annotations

import asyncio
from dataclasses import dataclass

import pytest

from pulsectl.core.model import AdapterState, PeripheralRecord
from pulsectl.core.stream import HEART_RATE_SERVICE_UUID


@dataclass(frozen=True)
class FakeClient:
    identity: str


class FakeRadio:
    def __init__(self, state: AdapterState = AdapterState.POWERED_ON) -> None:
        self.state = state
        self.calls: list[str] = []
        self.adapter_callbacks: list = []
        self.scan_callback = None
        self.service_uuids = "unset"
        self.advertisements: list[PeripheralRecord] = []
        self.payloads: list[bytes | str | None] = []
        self.connect_error: Exception | None = None
        self.discover_error: Exception | None = None
        self.subscribe_error: Exception | None = None
        self.start_scan_error: Exception | None = None
        self.during_connect = None
        self.connect_gate: asyncio.Event | None = None
        self.start_scan_gate: asyncio.Event | None = None
        self.scanning = False
        self.disconnect_callbacks: dict = {}
        self.cancelled: list[str] = []
        self.subscriptions: list[tuple[str, str, str]] = []
        self.notify_callback = None
        self.unsubscribed = 0

    async def get_adapter_state(self) -> AdapterState:
        return self.state

    def subscribe_adapter_state(self, callback):
        self.adapter_callbacks.append(callback)

        def _remove() -> None:
            self.calls.append("unsubscribe_adapter")
            if callback in self.adapter_callbacks:
                self.adapter_callbacks.remove(callback)

        return _remove

    def emit_state(self, state: AdapterState) -> None:
        self.state = state
        for callback in list(self.adapter_callbacks):
            callback(state)

    async def start_scan(self, callback, *, service_uuids=None) -> None:
        self.calls.append("start_scan")
        if self.start_scan_gate is not None:
            await self.start_scan_gate.wait()
        if self.start_scan_error is not None:
            raise self.start_scan_error
        self.scan_callback = callback
        self.service_uuids = service_uuids
        self.scanning = True
        for record in self.advertisements:
            callback(None, record)

    async def stop_scan(self) -> None:
        self.calls.append("stop_scan")
        self.scanning = False

    def advertise(self, identity: str, name: str | None = None, rssi: int = -60) -> None:
        self.scan_callback(None, PeripheralRecord(identity=identity, name=name, rssi=rssi))

    async def connect(self, identity: str, *, timeout_s: float, on_disconnect=None) -> FakeClient:
        self.calls.append("connect")
        if self.during_connect is not None:
            self.during_connect()
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.disconnect_callbacks[identity] = on_disconnect
        return FakeClient(identity)

    async def discover_services(self, handle: FakeClient) -> list[str]:
        self.calls.append("discover_services")
        if self.discover_error is not None:
            raise self.discover_error
        return [HEART_RATE_SERVICE_UUID]

    async def cancel_connection(self, identity: str) -> None:
        self.calls.append("cancel_connection")
        self.cancelled.append(identity)

    async def subscribe_characteristic(self, handle, service_uuid, characteristic_uuid, callback):
        self.calls.append("subscribe")
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append((handle.identity, service_uuid, characteristic_uuid))
        self.notify_callback = callback
        loop = asyncio.get_running_loop()
        for payload in self.payloads:
            loop.call_soon(callback, None, payload)

        async def _unsubscribe() -> None:
            self.calls.append("unsubscribe")
            self.unsubscribed += 1

        return _unsubscribe

    def notify(self, raw: bytes | str | None = None, error: Exception | None = None) -> None:
        self.notify_callback(error, raw)

    def drop(self, identity: str) -> None:
        self.disconnect_callbacks[identity](identity)


@pytest.fixture
def radio() -> FakeRadio:
    return FakeRadio()
