"""Core data models shared by the session components."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class AdapterState(str, Enum):
    UNKNOWN = "Unknown"
    RESETTING = "Resetting"
    UNSUPPORTED = "Unsupported"
    UNAUTHORIZED = "Unauthorized"
    POWERED_OFF = "PoweredOff"
    POWERED_ON = "PoweredOn"


class Permission(str, Enum):
    BLUETOOTH_SCAN = "bluetooth_scan"
    BLUETOOTH_CONNECT = "bluetooth_connect"
    ACCESS_FINE_LOCATION = "access_fine_location"


class PermissionStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


class CapabilityTier(str, Enum):
    """How a platform gates BLE behind runtime permissions."""

    NO_RUNTIME_GRANT = "no_runtime_grant"
    LEGACY_LOCATION = "legacy_location"
    SPLIT_BLUETOOTH = "split_bluetooth"


class ReadingValidity(str, Enum):
    VALID = "valid"
    INVALID = "invalid"


@dataclass(frozen=True)
class PeripheralRecord:
    identity: str
    name: str | None = None
    rssi: int = 0


@dataclass(frozen=True)
class DecodedReading:
    value: int
    validity: ReadingValidity
    error: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.validity is ReadingValidity.VALID


NO_READING = DecodedReading(value=0, validity=ReadingValidity.INVALID)


@dataclass(frozen=True)
class ConnectionHandle:
    """A live radio connection; `client` is the transport's own handle."""

    peripheral: PeripheralRecord
    client: Any
    services: tuple[str, ...] = ()

    @property
    def identity(self) -> str:
        return self.peripheral.identity


@dataclass(frozen=True)
class SubscriptionHandle:
    identity: str
    service_uuid: str
    characteristic_uuid: str


@dataclass(frozen=True)
class PlatformInfo:
    platform: str
    api_level: int | None = None


@dataclass(frozen=True)
class PermissionSettings:
    platform: str = "auto"
    api_level: int | None = None
    threshold: int = 31
    granted: tuple[Permission, ...] = tuple(Permission)


@dataclass(frozen=True)
class SessionConfig:
    scan_timeout_s: float = 50.0
    connect_timeout_s: float = 10.0
    adapter_poll_interval_s: float = 5.0
    log_level: str = "WARNING"
    permissions: PermissionSettings = PermissionSettings()
