"""Stable public API for building tooling on top of pulsectl.

`Session` is the supported integration surface: it owns one adapter monitor,
one scan registry and one connection, and exposes their state read-only.
No operation raises across this boundary; failures show up as state (adapter
state, an empty device list, no connection, an invalid reading) and in logs.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pulsectl.core.adapter import AdapterMonitor
from pulsectl.core.connection import ConnectFailureCallback, ConnectionManager
from pulsectl.core.context import ChangeListener, SessionContext
from pulsectl.core.errors import (
    AdapterUnavailableError,
    ConfigError,
    ConfigLoadError,
    ConfigValidationError,
    ConnectionFailureError,
    DecodeFailureError,
    PermissionDeniedError,
    PulsectlError,
    RadioError,
    ScanCallbackError,
)
from pulsectl.core.model import (
    NO_READING,
    AdapterState,
    ConnectionHandle,
    DecodedReading,
    PeripheralRecord,
    PlatformInfo,
    ReadingValidity,
    SessionConfig,
)
from pulsectl.core.permissions import PermissionGate, detect_platform
from pulsectl.core.scan import ScanRegistry
from pulsectl.core.stream import (
    HEART_RATE_MEASUREMENT_UUID,
    HEART_RATE_SERVICE_UUID,
    NotificationStream,
)
from pulsectl.transports.base import PermissionStore, RadioStack
from pulsectl.transports.ble_gatt import BleakRadio
from pulsectl.transports.permissions import StaticPermissionStore

__all__ = [
    "PulsectlError",
    "ConfigError",
    "ConfigLoadError",
    "ConfigValidationError",
    "PermissionDeniedError",
    "RadioError",
    "AdapterUnavailableError",
    "ScanCallbackError",
    "ConnectionFailureError",
    "DecodeFailureError",
    "AdapterState",
    "ConnectionHandle",
    "DecodedReading",
    "NO_READING",
    "PeripheralRecord",
    "PlatformInfo",
    "ReadingValidity",
    "SessionConfig",
    "HEART_RATE_SERVICE_UUID",
    "HEART_RATE_MEASUREMENT_UUID",
    "BleakRadio",
    "StaticPermissionStore",
    "Session",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _contained(default: Any) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Log unexpected errors from a facade operation and return `default`."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except Exception:
                LOGGER.exception("Unexpected error in %s", func.__name__)
                return default

        return wrapper

    return decorator


class Session:
    """One BLE heart-rate session.

    Use as ``async with Session() as session:``; entering starts adapter
    monitoring and leaving releases the adapter subscription, stops the scan
    and cancels the connection.
    """

    def __init__(
        self,
        *,
        radio: RadioStack | None = None,
        permission_store: PermissionStore | None = None,
        config: SessionConfig | None = None,
        platform: PlatformInfo | None = None,
        on_connect_failure: ConnectFailureCallback | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self._context = SessionContext(self.config)
        self._radio = radio or BleakRadio(poll_interval_s=self.config.adapter_poll_interval_s)
        self.platform = platform or detect_platform(self.config.permissions)
        store = permission_store or StaticPermissionStore(self.config.permissions.granted)

        self.adapter = AdapterMonitor(self._context, self._radio)
        self.permissions = PermissionGate.for_platform(
            self.platform,
            store,
            threshold=self.config.permissions.threshold,
        )
        self.scanner = ScanRegistry(self._context, self._radio, self.adapter, self.permissions)
        self.stream = NotificationStream(self._context, self._radio)
        self.connections = ConnectionManager(
            self._context,
            self._radio,
            self.adapter,
            self.scanner,
            self.stream,
            on_connect_failure=on_connect_failure,
        )
        self._closed = False

    async def __aenter__(self) -> Session:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def adapter_state(self) -> AdapterState:
        return self._context.adapter_state

    @property
    def initialized(self) -> bool:
        return self._context.initialized

    @property
    def devices(self) -> list[PeripheralRecord]:
        return list(self._context.devices)

    @property
    def connection(self) -> ConnectionHandle | None:
        return self._context.connection

    @property
    def connected_device(self) -> PeripheralRecord | None:
        connection = self._context.connection
        return connection.peripheral if connection is not None else None

    @property
    def reading(self) -> DecodedReading:
        return self._context.reading

    @property
    def heart_rate(self) -> int:
        return self._context.reading.value

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        return self._context.add_listener(listener)

    @_contained(AdapterState.UNKNOWN)
    async def start(self) -> AdapterState:
        if self._closed:
            return self.adapter_state
        return await self.adapter.start()

    @_contained(False)
    async def request_permissions(self) -> bool:
        return await self.permissions.request_permissions()

    @_contained(None)
    async def scan_for_peripherals(self) -> None:
        if self._closed:
            return
        await self.scanner.start()

    @_contained(None)
    async def stop_scan(self) -> None:
        await self.scanner.stop()

    @_contained(None)
    async def connect_to_device(self, peripheral: PeripheralRecord) -> None:
        if self._closed:
            return
        await self.connections.connect(peripheral)

    @_contained(None)
    async def disconnect_from_device(self) -> None:
        await self.connections.disconnect()

    @_contained(None)
    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.adapter.dispose()
        await self.scanner.stop()
        await self.connections.close()
        await self._context.drain()
