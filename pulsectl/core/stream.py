"""Heart-rate notification subscription on a connected peripheral."""

from __future__ import annotations

import logging
from functools import partial

from pulsectl.core.context import SessionContext
from pulsectl.core.errors import RadioError
from pulsectl.core.model import ConnectionHandle, SubscriptionHandle
from pulsectl.core.reducers import reading_from_error, reading_from_payload
from pulsectl.transports.base import RadioStack, Unsubscribe

LOGGER = logging.getLogger(__name__)

HEART_RATE_SERVICE_UUID = "0000180d-0000-1000-8000-00805f9b34fb"
HEART_RATE_MEASUREMENT_UUID = "00002a37-0000-1000-8000-00805f9b34fb"


class NotificationStream:
    def __init__(self, context: SessionContext, radio: RadioStack) -> None:
        self._context = context
        self._radio = radio
        self._subscription: SubscriptionHandle | None = None
        self._unsubscribe: Unsubscribe | None = None

    @property
    def subscription(self) -> SubscriptionHandle | None:
        return self._subscription

    async def attach(self, connection: ConnectionHandle | None) -> bool:
        if connection is None:
            LOGGER.warning("No device connected; nothing to stream")
            return False

        await self.detach()
        handle = SubscriptionHandle(
            identity=connection.identity,
            service_uuid=HEART_RATE_SERVICE_UUID,
            characteristic_uuid=HEART_RATE_MEASUREMENT_UUID,
        )
        self._subscription = handle
        try:
            unsubscribe = await self._radio.subscribe_characteristic(
                connection.client,
                HEART_RATE_SERVICE_UUID,
                HEART_RATE_MEASUREMENT_UUID,
                partial(self._on_notification, handle),
            )
        except RadioError as exc:
            LOGGER.warning("Could not subscribe to heart rate on %s: %s", connection.identity, exc)
            if self._subscription is handle:
                self._subscription = None
                self._context.set_reading(reading_from_error(exc))
            return False

        if self._subscription is not handle:
            # Released while the subscription was being set up.
            await _call_unsubscribe(unsubscribe, handle.identity)
            return False

        self._unsubscribe = unsubscribe
        LOGGER.info("Streaming heart rate from %s", connection.identity)
        return True

    def release(self) -> Unsubscribe | None:
        """Forget the current subscription without touching the radio."""
        unsubscribe = self._unsubscribe
        self._subscription = None
        self._unsubscribe = None
        return unsubscribe

    async def detach(self) -> None:
        identity = self._subscription.identity if self._subscription else None
        unsubscribe = self.release()
        if unsubscribe is not None:
            await _call_unsubscribe(unsubscribe, identity)

    def _on_notification(
        self,
        handle: SubscriptionHandle,
        error: Exception | None,
        raw: bytes | str | None,
    ) -> None:
        if handle is not self._subscription:
            return

        if error is not None:
            LOGGER.warning("Notification error from %s: %s", handle.identity, error)
            reading = reading_from_error(error)
        else:
            reading = reading_from_payload(raw)
            if not reading.is_valid:
                LOGGER.warning("Invalid heart rate payload from %s: %s", handle.identity, reading.error)
        self._context.set_reading(reading)


async def _call_unsubscribe(unsubscribe: Unsubscribe, identity: str | None) -> None:
    try:
        await unsubscribe()
    except RadioError as exc:
        LOGGER.debug("Error disabling notifications on %s: %s", identity, exc)
