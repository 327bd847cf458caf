from __future__ import annotations

import asyncio

from pulsectl.api import Session
from pulsectl.core.errors import ConnectionFailureError, RadioError
from pulsectl.core.model import (
    NO_READING,
    AdapterState,
    PeripheralRecord,
    PlatformInfo,
    ReadingValidity,
)
from pulsectl.core.stream import HEART_RATE_MEASUREMENT_UUID, HEART_RATE_SERVICE_UUID

STRAP = PeripheralRecord(identity="F0:13:C3:00:11:22", name="Polar H10", rssi=-55)


class FailureLog:
    def __init__(self) -> None:
        self.calls: list[tuple[PeripheralRecord, ConnectionFailureError]] = []

    def __call__(self, peripheral: PeripheralRecord, error: ConnectionFailureError) -> None:
        self.calls.append((peripheral, error))


def _session(radio, failures: FailureLog | None = None) -> Session:
    return Session(radio=radio, platform=PlatformInfo("linux"), on_connect_failure=failures)


def test_connect_stops_scan_and_streams(radio) -> None:
    session = _session(radio)

    async def scenario() -> None:
        await session.start()
        await session.scan_for_peripherals()
        radio.advertise(STRAP.identity, name=STRAP.name)
        await session.connect_to_device(session.devices[0])
        radio.notify(bytes([0x00, 0x4B]))

    asyncio.run(scenario())
    assert radio.calls == ["start_scan", "connect", "discover_services", "stop_scan", "subscribe"]
    assert radio.subscriptions == [(STRAP.identity, HEART_RATE_SERVICE_UUID, HEART_RATE_MEASUREMENT_UUID)]
    assert session.connected_device is not None
    assert session.connected_device.identity == STRAP.identity
    assert session.connection.services == (HEART_RATE_SERVICE_UUID,)
    assert session.heart_rate == 75
    assert session.reading.validity is ReadingValidity.VALID


def test_16bit_notification(radio) -> None:
    session = _session(radio)

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)
        radio.notify(bytes([0x01, 0x00, 0xC8]))

    asyncio.run(scenario())
    assert session.heart_rate == 200


def test_discovery_failure_leaves_no_connection(radio) -> None:
    radio.discover_error = RadioError("GATT discovery aborted")
    failures = FailureLog()
    session = _session(radio, failures)

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)

    asyncio.run(scenario())
    assert session.connection is None
    assert "subscribe" not in radio.calls
    assert radio.cancelled == [STRAP.identity]
    assert len(failures.calls) == 1
    peripheral, error = failures.calls[0]
    assert peripheral == STRAP
    assert isinstance(error, ConnectionFailureError)
    assert "service discovery" in str(error)


def test_connect_failure_is_not_raised(radio) -> None:
    radio.connect_error = TimeoutError("peripheral did not answer")
    failures = FailureLog()
    session = _session(radio, failures)

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)

    asyncio.run(scenario())
    assert session.connection is None
    assert radio.calls == ["connect"]
    assert len(failures.calls) == 1


def test_connect_skipped_when_adapter_not_ready(radio) -> None:
    radio.state = AdapterState.POWERED_OFF
    session = _session(radio)

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)

    asyncio.run(scenario())
    assert "connect" not in radio.calls
    assert session.connection is None


def test_adapter_lost_during_connect_aborts(radio) -> None:
    radio.during_connect = lambda: radio.emit_state(AdapterState.POWERED_OFF)
    failures = FailureLog()
    session = _session(radio, failures)

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)

    asyncio.run(scenario())
    assert session.connection is None
    assert "discover_services" not in radio.calls
    assert radio.cancelled == [STRAP.identity]
    assert len(failures.calls) == 1


def test_disconnect_resets_reading_and_ignores_late_notifications(radio) -> None:
    session = _session(radio)

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)
        radio.notify(bytes([0x00, 0x50]))
        assert session.heart_rate == 80
        stale = radio.notify_callback

        await session.disconnect_from_device()
        stale(None, bytes([0x00, 0x60]))

    asyncio.run(scenario())
    assert session.connection is None
    assert session.reading == NO_READING
    assert radio.cancelled == [STRAP.identity]
    assert radio.unsubscribed == 1
    assert radio.calls[-2:] == ["unsubscribe", "cancel_connection"]


def test_disconnect_without_connection_is_noop(radio) -> None:
    session = _session(radio)

    async def scenario() -> None:
        await session.disconnect_from_device()
        await session.start()
        await session.disconnect_from_device()

    asyncio.run(scenario())
    assert radio.cancelled == []


def test_second_connect_is_rejected(radio) -> None:
    session = _session(radio)
    other = PeripheralRecord(identity="11:22:33:44:55:66")

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)
        await session.connect_to_device(other)

    asyncio.run(scenario())
    assert radio.calls.count("connect") == 1
    assert session.connected_device == STRAP


def test_reconnect_after_disconnect(radio) -> None:
    session = _session(radio)

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)
        await session.disconnect_from_device()
        await session.connect_to_device(STRAP)
        radio.notify(bytes([0x00, 0x41]))

    asyncio.run(scenario())
    assert radio.calls.count("connect") == 2
    assert session.heart_rate == 65


def test_connection_loss_clears_state(radio) -> None:
    session = _session(radio)

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)
        radio.notify(bytes([0x00, 0x48]))
        stale = radio.notify_callback
        radio.drop(STRAP.identity)
        stale(None, bytes([0x00, 0x49]))

    asyncio.run(scenario())
    assert session.connection is None
    assert session.reading == NO_READING


def test_decode_failures_are_flagged_and_stream_continues(radio) -> None:
    session = _session(radio)
    readings = []

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)
        radio.notify(bytes([0x00, 0x48]))
        readings.append(session.reading)
        radio.notify(None)
        readings.append(session.reading)
        radio.notify(error=RadioError("notification timed out"))
        readings.append(session.reading)
        radio.notify(bytes([0x00, 0x4A]))
        readings.append(session.reading)

    asyncio.run(scenario())
    assert [r.validity for r in readings] == [
        ReadingValidity.VALID,
        ReadingValidity.INVALID,
        ReadingValidity.INVALID,
        ReadingValidity.VALID,
    ]
    assert readings[1].error == "No data was received"
    assert readings[2].error == "notification timed out"
    assert readings[3].value == 74


def test_subscribe_failure_keeps_connection_with_invalid_reading(radio) -> None:
    radio.subscribe_error = RadioError("Characteristic not found")
    session = _session(radio)

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)

    asyncio.run(scenario())
    assert session.connected_device == STRAP
    assert session.stream.subscription is None
    assert not session.reading.is_valid


def test_attach_without_connection_is_noop(radio) -> None:
    session = _session(radio)
    assert asyncio.run(session.stream.attach(None)) is False
    assert "subscribe" not in radio.calls


def test_adapter_power_off_drops_connection(radio) -> None:
    session = _session(radio)

    async def scenario() -> None:
        await session.start()
        await session.connect_to_device(STRAP)
        radio.notify(bytes([0x00, 0x48]))
        radio.emit_state(AdapterState.POWERED_OFF)
        await asyncio.sleep(0.01)

    asyncio.run(scenario())
    assert session.connection is None
    assert session.reading == NO_READING
    assert radio.cancelled == [STRAP.identity]


def test_close_during_pending_connect_releases_link(radio) -> None:
    session = _session(radio)

    async def scenario() -> None:
        radio.connect_gate = asyncio.Event()
        await session.start()
        pending = asyncio.create_task(session.connections.connect(STRAP))
        while "connect" not in radio.calls:
            await asyncio.sleep(0)
        await session.close()
        radio.connect_gate.set()
        assert await pending is False

    asyncio.run(scenario())
    assert session.connection is None
    assert "subscribe" not in radio.calls
    assert radio.cancelled == [STRAP.identity]


def test_disconnect_during_pending_connect_abandons_it(radio) -> None:
    session = _session(radio)

    async def scenario() -> None:
        radio.connect_gate = asyncio.Event()
        await session.start()
        pending = asyncio.create_task(session.connections.connect(STRAP))
        while "connect" not in radio.calls:
            await asyncio.sleep(0)
        await session.disconnect_from_device()
        radio.connect_gate.set()
        assert await pending is False
        assert session.connection is None

        assert await session.connections.connect(STRAP) is True

    asyncio.run(scenario())
    assert radio.cancelled == [STRAP.identity]
    assert session.connected_device == STRAP
    assert radio.calls.count("subscribe") == 1
