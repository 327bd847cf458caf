"""Runtime permission gating ahead of scanning.

Platforms differ in what they demand before an app may scan: desktop stacks
need nothing, older Android releases need a single location grant, and from
API level 31 on Android splits the requirement into scan, connect and precise
location grants. Each of those is a strategy keyed by `CapabilityTier`.
"""

from __future__ import annotations

import logging
import sys
from typing import Protocol

from pulsectl.core.errors import PermissionDeniedError
from pulsectl.core.model import (
    CapabilityTier,
    Permission,
    PermissionSettings,
    PermissionStatus,
    PlatformInfo,
)
from pulsectl.transports.base import PermissionStore

LOGGER = logging.getLogger(__name__)

DEFAULT_API_THRESHOLD = 31

_PLATFORM_NAMES = {
    "darwin": "macos",
    "ios": "ios",
    "win32": "windows",
    "cygwin": "windows",
    "android": "android",
}


class PermissionStrategy(Protocol):
    permissions: tuple[Permission, ...]

    async def request(self, store: PermissionStore | None) -> bool:
        """Return True when the tier's permissions are all granted."""


class NoRuntimeGrantStrategy:
    permissions: tuple[Permission, ...] = ()

    async def request(self, store: PermissionStore | None) -> bool:
        return True


class _AllGrantedStrategy:
    permissions: tuple[Permission, ...] = ()

    async def request(self, store: PermissionStore | None) -> bool:
        if store is None:
            needed = ", ".join(permission.value for permission in self.permissions)
            raise PermissionDeniedError(f"No permission store available to grant {needed}")

        statuses = []
        # Every permission is requested even after a denial so the platform
        # sees the full set in one pass.
        for permission in self.permissions:
            status = await store.request_permission(permission)
            statuses.append(status)
            if status is not PermissionStatus.GRANTED:
                LOGGER.info("Permission %s was not granted", permission.value)
        return all(status is PermissionStatus.GRANTED for status in statuses)


class LegacyLocationStrategy(_AllGrantedStrategy):
    permissions = (Permission.ACCESS_FINE_LOCATION,)


class SplitBluetoothStrategy(_AllGrantedStrategy):
    permissions = (
        Permission.BLUETOOTH_SCAN,
        Permission.BLUETOOTH_CONNECT,
        Permission.ACCESS_FINE_LOCATION,
    )


STRATEGIES: dict[CapabilityTier, PermissionStrategy] = {
    CapabilityTier.NO_RUNTIME_GRANT: NoRuntimeGrantStrategy(),
    CapabilityTier.LEGACY_LOCATION: LegacyLocationStrategy(),
    CapabilityTier.SPLIT_BLUETOOTH: SplitBluetoothStrategy(),
}


def detect_platform(settings: PermissionSettings | None = None) -> PlatformInfo:
    settings = settings or PermissionSettings()
    if settings.platform != "auto":
        return PlatformInfo(platform=settings.platform, api_level=settings.api_level)

    android_api_level = getattr(sys, "getandroidapilevel", None)
    if android_api_level is not None:
        api_level = settings.api_level if settings.api_level is not None else android_api_level()
        return PlatformInfo(platform="android", api_level=api_level)

    platform = _PLATFORM_NAMES.get(sys.platform)
    if platform is None:
        platform = "linux" if sys.platform.startswith("linux") else sys.platform
    return PlatformInfo(platform=platform, api_level=settings.api_level)


def select_tier(platform: PlatformInfo, threshold: int = DEFAULT_API_THRESHOLD) -> CapabilityTier:
    if platform.platform != "android":
        return CapabilityTier.NO_RUNTIME_GRANT
    api_level = platform.api_level if platform.api_level is not None else -1
    if api_level < threshold:
        return CapabilityTier.LEGACY_LOCATION
    return CapabilityTier.SPLIT_BLUETOOTH


class PermissionGate:
    def __init__(
        self,
        tier: CapabilityTier,
        store: PermissionStore | None = None,
    ) -> None:
        self.tier = tier
        self._store = store
        self._strategy = STRATEGIES[tier]

    @classmethod
    def for_platform(
        cls,
        platform: PlatformInfo,
        store: PermissionStore | None = None,
        *,
        threshold: int = DEFAULT_API_THRESHOLD,
    ) -> PermissionGate:
        return cls(select_tier(platform, threshold), store)

    async def request_permissions(self) -> bool:
        try:
            granted = await self._strategy.request(self._store)
        except PermissionDeniedError as exc:
            LOGGER.warning("Permission request rejected: %s", exc)
            return False
        LOGGER.debug("Permission verdict for %s: %s", self.tier.value, granted)
        return granted
