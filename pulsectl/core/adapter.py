"""Adapter power/availability tracking."""

from __future__ import annotations

import logging
from collections.abc import Callable

from pulsectl.core.context import SessionContext
from pulsectl.core.errors import RadioError
from pulsectl.core.model import AdapterState
from pulsectl.core.reducers import initialized_for
from pulsectl.transports.base import AdapterStateCallback, RadioStack

LOGGER = logging.getLogger(__name__)


class AdapterSubscription:
    def __init__(self, monitor: AdapterMonitor, listener: AdapterStateCallback) -> None:
        self._monitor = monitor
        self._listener = listener

    def remove(self) -> None:
        self._monitor._remove_listener(self._listener)


class AdapterMonitor:
    """Mirrors the platform adapter state into the session context.

    ``context.initialized`` is true only while the adapter reports PoweredOn;
    scanning and connecting check it before touching the radio.
    """

    def __init__(self, context: SessionContext, radio: RadioStack) -> None:
        self._context = context
        self._radio = radio
        self._listeners: list[AdapterStateCallback] = []
        self._unsubscribe_radio: Callable[[], None] | None = None
        self._disposed = False

    @property
    def initialized(self) -> bool:
        return self._context.initialized

    def current_state(self) -> AdapterState:
        return self._context.adapter_state

    async def start(self) -> AdapterState:
        if self._disposed:
            return self.current_state()
        if self._unsubscribe_radio is None:
            self._unsubscribe_radio = self._radio.subscribe_adapter_state(self._apply)

        try:
            state = await self._radio.get_adapter_state()
        except RadioError as exc:
            LOGGER.warning("Failed to read initial adapter state: %s", exc)
            return self.current_state()

        self._apply(state)
        return state

    def on_state_change(self, listener: AdapterStateCallback) -> AdapterSubscription:
        self._listeners.append(listener)
        listener(self.current_state())
        return AdapterSubscription(self, listener)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        unsubscribe, self._unsubscribe_radio = self._unsubscribe_radio, None
        if unsubscribe is not None:
            unsubscribe()
        self._listeners.clear()

    def _apply(self, state: AdapterState) -> None:
        if self._disposed:
            return
        if state is not self._context.adapter_state:
            LOGGER.info("Adapter state changed: %s", state.value)
        self._context.set_adapter_state(state, initialized_for(state))
        for listener in list(self._listeners):
            listener(state)

    def _remove_listener(self, listener: AdapterStateCallback) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
