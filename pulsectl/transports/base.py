"""Radio stack and permission store interfaces."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from pulsectl.core.model import AdapterState, Permission, PeripheralRecord, PermissionStatus

AdapterStateCallback = Callable[[AdapterState], None]
ScanCallback = Callable[[Exception | None, PeripheralRecord | None], None]
NotificationCallback = Callable[[Exception | None, bytes | str | None], None]
DisconnectCallback = Callable[[str], None]
Unsubscribe = Callable[[], Awaitable[None]]


class RadioStack(Protocol):
    async def get_adapter_state(self) -> AdapterState:
        """Return the adapter state as currently reported by the platform."""

    def subscribe_adapter_state(self, callback: AdapterStateCallback) -> Callable[[], None]:
        """Deliver adapter transitions to `callback`; returns a remover."""

    async def start_scan(
        self,
        callback: ScanCallback,
        *,
        service_uuids: Sequence[str] | None = None,
    ) -> None:
        """Begin broadcast discovery, reporting each advertisement to `callback`."""

    async def stop_scan(self) -> None:
        """Stop broadcast discovery if it is running."""

    async def connect(
        self,
        identity: str,
        *,
        timeout_s: float,
        on_disconnect: DisconnectCallback | None = None,
    ) -> Any:
        """Open a connection and return the transport handle."""

    async def discover_services(self, handle: Any) -> Sequence[str]:
        """Resolve services and characteristics; returns service UUIDs."""

    async def cancel_connection(self, identity: str) -> None:
        """Tear down the connection to `identity`."""

    async def subscribe_characteristic(
        self,
        handle: Any,
        service_uuid: str,
        characteristic_uuid: str,
        callback: NotificationCallback,
    ) -> Unsubscribe:
        """Enable notifications; returns a coroutine function that disables them."""


class PermissionStore(Protocol):
    async def request_permission(self, permission: Permission) -> PermissionStatus:
        """Ask the platform for `permission` and report the outcome."""
