"""Permission store backed by a fixed set of grants."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pulsectl.core.model import Permission, PermissionStatus

LOGGER = logging.getLogger(__name__)


class StaticPermissionStore:
    """Answers permission requests from a configured grant list.

    Used on hosts without an interactive permission prompt, and by tests to
    simulate partial grants.
    """

    def __init__(self, granted: Iterable[Permission] = tuple(Permission)) -> None:
        self.granted = frozenset(granted)
        self.requests: list[Permission] = []

    async def request_permission(self, permission: Permission) -> PermissionStatus:
        self.requests.append(permission)
        status = PermissionStatus.GRANTED if permission in self.granted else PermissionStatus.DENIED
        LOGGER.debug("Permission %s -> %s", permission.value, status.value)
        return status
