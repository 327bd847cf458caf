"""Radio stack implementation on top of bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from types import ModuleType
from typing import Any

from pulsectl.core.errors import (
    AdapterUnavailableError,
    ConnectionFailureError,
    RadioError,
    ScanCallbackError,
)
from pulsectl.core.model import AdapterState, PeripheralRecord
from pulsectl.transports.base import (
    AdapterStateCallback,
    DisconnectCallback,
    NotificationCallback,
    ScanCallback,
    Unsubscribe,
)

LOGGER = logging.getLogger(__name__)

STOP_TIMEOUT_S = 10.0

_REASON_STATES = {
    "NO_BLUETOOTH": AdapterState.UNSUPPORTED,
    "POWERED_OFF": AdapterState.POWERED_OFF,
    "DENIED_BY_USER": AdapterState.UNAUTHORIZED,
    "DENIED_BY_SYSTEM": AdapterState.UNAUTHORIZED,
}

_MESSAGE_STATES = (
    ("notready", AdapterState.POWERED_OFF),
    ("not powered", AdapterState.POWERED_OFF),
    ("powered off", AdapterState.POWERED_OFF),
    ("no bluetooth adapters", AdapterState.UNSUPPORTED),
    ("bluetooth is not available", AdapterState.UNSUPPORTED),
    ("notauthorized", AdapterState.UNAUTHORIZED),
    ("not authorized", AdapterState.UNAUTHORIZED),
    ("unauthorized", AdapterState.UNAUTHORIZED),
    ("denied", AdapterState.UNAUTHORIZED),
    ("resetting", AdapterState.RESETTING),
)


def _import_bleak() -> ModuleType:
    try:
        import bleak  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise AdapterUnavailableError(
            "BLE radio requires 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


def adapter_state_from_error(exc: BaseException) -> AdapterState:
    """Map a failed adapter check onto the closest adapter state."""
    reason = getattr(getattr(exc, "reason", None), "name", None)
    if reason in _REASON_STATES:
        return _REASON_STATES[reason]

    message = str(exc).lower()
    for needle, state in _MESSAGE_STATES:
        if needle in message:
            return state

    # No D-Bus system bus / no CoreBluetooth: nothing to talk to.
    if isinstance(exc, (FileNotFoundError, ConnectionRefusedError)):
        return AdapterState.UNSUPPORTED
    return AdapterState.UNKNOWN


class BleakRadio:
    """bleak-backed radio.

    bleak has no portable adapter-state API, so state is read by briefly
    starting a scanner and classifying the failure, and transitions are found
    by polling.
    """

    def __init__(self, *, poll_interval_s: float = 5.0) -> None:
        self._poll_interval_s = poll_interval_s
        self._scanner: Any = None
        self._clients: dict[str, Any] = {}
        self._adapter_listeners: list[AdapterStateCallback] = []
        self._poll_task: asyncio.Task[None] | None = None
        self._last_state: AdapterState | None = None

    async def get_adapter_state(self) -> AdapterState:
        if self._scanner is not None or self._clients:
            # A running scan or live link already proves the adapter is up.
            state = AdapterState.POWERED_ON
        else:
            state = await self._check_adapter()
        self._last_state = state
        return state

    def subscribe_adapter_state(self, callback: AdapterStateCallback) -> Callable[[], None]:
        self._adapter_listeners.append(callback)
        if self._poll_task is None:
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_adapter())

        def _remove() -> None:
            if callback in self._adapter_listeners:
                self._adapter_listeners.remove(callback)
            if not self._adapter_listeners and self._poll_task is not None:
                self._poll_task.cancel()
                self._poll_task = None

        return _remove

    async def start_scan(
        self,
        callback: ScanCallback,
        *,
        service_uuids: Sequence[str] | None = None,
    ) -> None:
        bleak = _import_bleak()
        await self.stop_scan()

        def _detected(device: Any, advertisement_data: Any) -> None:
            try:
                record = PeripheralRecord(
                    identity=device.address,
                    name=device.name or advertisement_data.local_name,
                    rssi=int(advertisement_data.rssi),
                )
            except (AttributeError, TypeError, ValueError) as exc:
                callback(ScanCallbackError(f"Malformed advertisement: {exc}"), None)
                return
            callback(None, record)

        kwargs: dict[str, Any] = {"detection_callback": _detected}
        if service_uuids:
            kwargs["service_uuids"] = list(service_uuids)

        try:
            scanner = bleak.BleakScanner(**kwargs)
            await scanner.start()
        except Exception as exc:
            raise RadioError(f"BLE scan failed to start: {exc}") from exc
        self._scanner = scanner

    async def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await asyncio.wait_for(scanner.stop(), timeout=STOP_TIMEOUT_S)
        except asyncio.TimeoutError as exc:
            raise RadioError(f"Scanner stop() timed out after {STOP_TIMEOUT_S:.0f}s") from exc
        except Exception as exc:
            raise RadioError(f"BLE scan failed to stop: {exc}") from exc

    async def connect(
        self,
        identity: str,
        *,
        timeout_s: float,
        on_disconnect: DisconnectCallback | None = None,
    ) -> Any:
        bleak = _import_bleak()

        def _disconnected(client: Any) -> None:
            if self._clients.get(identity) is client:
                del self._clients[identity]
            if on_disconnect is not None:
                on_disconnect(identity)

        client = bleak.BleakClient(identity, timeout=timeout_s, disconnected_callback=_disconnected)
        try:
            await client.connect()
        except asyncio.TimeoutError as exc:
            raise ConnectionFailureError(f"BLE connect timed out for {identity}") from exc
        except Exception as exc:
            raise ConnectionFailureError(f"BLE connect failed for {identity}: {exc}") from exc

        if not client.is_connected:
            raise ConnectionFailureError(f"BLE connect failed for {identity}")
        self._clients[identity] = client
        return client

    async def discover_services(self, handle: Any) -> Sequence[str]:
        # bleak resolves services and characteristics while connecting.
        try:
            services = handle.services
        except Exception as exc:
            raise ConnectionFailureError(f"Service discovery failed: {exc}") from exc
        return tuple(service.uuid.lower() for service in services)

    async def cancel_connection(self, identity: str) -> None:
        client = self._clients.pop(identity, None)
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception as exc:
            raise RadioError(f"BLE disconnect failed for {identity}: {exc}") from exc

    async def subscribe_characteristic(
        self,
        handle: Any,
        service_uuid: str,
        characteristic_uuid: str,
        callback: NotificationCallback,
    ) -> Unsubscribe:
        service = handle.services.get_service(service_uuid)
        characteristic = service.get_characteristic(characteristic_uuid) if service else None
        if characteristic is None:
            raise RadioError(
                f"Characteristic {characteristic_uuid} not found in service {service_uuid}"
            )

        def _notified(_: Any, data: bytearray) -> None:
            callback(None, bytes(data))

        try:
            await handle.start_notify(characteristic, _notified)
        except Exception as exc:
            raise RadioError(f"Enabling notifications on {characteristic_uuid} failed: {exc}") from exc

        async def _unsubscribe() -> None:
            try:
                await handle.stop_notify(characteristic)
            except Exception as exc:
                raise RadioError(
                    f"Disabling notifications on {characteristic_uuid} failed: {exc}"
                ) from exc

        return _unsubscribe

    async def _check_adapter(self) -> AdapterState:
        bleak = _import_bleak()
        try:
            scanner = bleak.BleakScanner()
            await scanner.start()
        except Exception as exc:
            state = adapter_state_from_error(exc)
            LOGGER.debug("Adapter check failed (%s): %s", state.value, exc)
            return state

        try:
            await asyncio.wait_for(scanner.stop(), timeout=STOP_TIMEOUT_S)
        except Exception as exc:
            LOGGER.debug("Error stopping adapter check scanner: %s", exc)
        return AdapterState.POWERED_ON

    async def _poll_adapter(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval_s)
            previous = self._last_state
            try:
                state = await self.get_adapter_state()
            except RadioError as exc:
                LOGGER.debug("Adapter poll failed: %s", exc)
                continue
            if state is previous:
                continue
            for listener in list(self._adapter_listeners):
                listener(state)
