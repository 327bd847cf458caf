"""Payload decoding for heart-rate measurement notifications."""

from __future__ import annotations

import base64
import binascii

from pulsectl.core.errors import DecodeFailureError

_FORMAT_16BIT = 0x01


def decode_transport_encoding(value: str | bytes | bytearray | None) -> bytes:
    """Return raw payload bytes.

    Radio stacks either hand over bytes directly or a base64 string; both are
    accepted here so the decoder does not care which one produced the value.
    """
    if value is None:
        raise DecodeFailureError("No data was received")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeFailureError(f"Payload is not valid base64: {exc}") from exc


def decode_heart_rate(payload: bytes) -> int:
    if len(payload) < 2:
        raise DecodeFailureError(f"Payload too short ({len(payload)} bytes)")

    if payload[0] & _FORMAT_16BIT == 0:
        return payload[1]

    if len(payload) < 3:
        raise DecodeFailureError("16-bit heart rate payload is missing its second byte")
    return (payload[1] << 8) | payload[2]
