"""Pure state transitions applied by the session components.

Each function maps the current value plus one event to the next value, so a
recorded event sequence can be replayed deterministically.
"""

from __future__ import annotations

from collections.abc import Sequence

from pulsectl.core.codec import decode_heart_rate, decode_transport_encoding
from pulsectl.core.errors import DecodeFailureError
from pulsectl.core.model import (
    AdapterState,
    DecodedReading,
    PeripheralRecord,
    ReadingValidity,
)


def initialized_for(state: AdapterState) -> bool:
    return state is AdapterState.POWERED_ON


def merge_discovery(
    devices: Sequence[PeripheralRecord],
    record: PeripheralRecord,
) -> tuple[PeripheralRecord, ...]:
    # First advertisement per identity wins.
    if any(device.identity == record.identity for device in devices):
        return tuple(devices)
    return (*devices, record)


def reading_from_payload(raw: str | bytes | bytearray | None) -> DecodedReading:
    try:
        value = decode_heart_rate(decode_transport_encoding(raw))
    except DecodeFailureError as exc:
        return DecodedReading(value=0, validity=ReadingValidity.INVALID, error=str(exc))
    return DecodedReading(value=value, validity=ReadingValidity.VALID)


def reading_from_error(error: BaseException) -> DecodedReading:
    return DecodedReading(value=0, validity=ReadingValidity.INVALID, error=str(error) or type(error).__name__)
