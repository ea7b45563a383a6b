"""Heart rate payload decoding and heart rate device recognition.

BPM extraction follows the Bluetooth SIG Heart Rate Measurement
characteristic (0x2A37). Device recognition works on raw advertisement
records so it does not depend on how a BLE backend normalizes UUIDs.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum

from .errors import MalformedPayload

HR_SERVICE_SHORT = 0x180D
HR_SERVICE_UUID_BYTES = uuid.UUID("0000180d-0000-1000-8000-00805f9b34fb").bytes

# Name fragments used by HR straps that do not advertise the service UUID
HR_NAME_KEYWORDS = ("heart", "hr", "pulse", "cardiac", "心率")

_BLUETOOTH_BASE_SUFFIX = "-0000-1000-8000-00805f9b34fb"


class AdRecordType(IntEnum):
    """GAP advertisement data types relevant to service discovery."""

    UUIDS_INCOMPLETE_16BIT = 0x02
    UUIDS_COMPLETE_16BIT = 0x03
    UUIDS_INCOMPLETE_128BIT = 0x06
    UUIDS_COMPLETE_128BIT = 0x07
    SHORT_LOCAL_NAME = 0x08
    COMPLETE_LOCAL_NAME = 0x09
    MANUFACTURER_SPECIFIC_DATA = 0xFF


UUID16_RECORD_TYPES = {AdRecordType.UUIDS_INCOMPLETE_16BIT, AdRecordType.UUIDS_COMPLETE_16BIT}
UUID128_RECORD_TYPES = {AdRecordType.UUIDS_INCOMPLETE_128BIT, AdRecordType.UUIDS_COMPLETE_128BIT}


@dataclass(frozen=True)
class AdvertisementRecord:
    """One AD structure from an advertisement: type plus raw payload."""

    type: int
    data: bytes


def _require_length(data: bytes, min_len: int) -> None:
    if len(data) < min_len:
        raise MalformedPayload(f"HR data too short: {len(data)} bytes, need {min_len}")


def parse_bpm(data: bytes) -> int:
    """Extract only the BPM value from a heart rate measurement payload.

    Raises:
        MalformedPayload: If data is empty or too short for the flagged format
    """
    if not data:
        raise MalformedPayload("Empty HR data received")

    if data[0] & 0b1:
        _require_length(data, 3)
        return int.from_bytes(data[1:3], "little")

    _require_length(data, 2)
    return data[1]


def _has_hr_uuid16(data: bytes) -> bool:
    wanted = (HR_SERVICE_SHORT.to_bytes(2, "little"), HR_SERVICE_SHORT.to_bytes(2, "big"))
    pairs = (data[i : i + 2] for i in range(0, len(data) - 1, 2))
    return any(pair in wanted for pair in pairs)


def _has_hr_uuid128(data: bytes) -> bool:
    chunks = (data[i : i + 16] for i in range(0, len(data) - 15, 16))
    return any(HR_SERVICE_UUID_BYTES in (chunk, chunk[::-1]) for chunk in chunks)


def _name_matches(name: str | None) -> bool:
    if not name:
        return False
    lowered = name.lower()
    return any(keyword in lowered for keyword in HR_NAME_KEYWORDS)


def is_heart_rate_capable(records: Iterable[AdvertisementRecord], name: str | None) -> bool:
    """Decide whether an advertiser looks like a heart rate peripheral.

    A 16-bit or 128-bit service UUID list containing 0x180D (in either byte
    order) is a match, as is a device name containing one of HR_NAME_KEYWORDS.
    """
    for record in records:
        if record.type in UUID16_RECORD_TYPES and _has_hr_uuid16(record.data):
            return True
        if record.type in UUID128_RECORD_TYPES and _has_hr_uuid128(record.data):
            return True
    return _name_matches(name)


def records_from_service_uuids(service_uuids: Iterable[str]) -> list[AdvertisementRecord]:
    """Rebuild service UUID AD records from normalized UUID strings.

    UUIDs on the Bluetooth base are packed into a 16-bit list, everything else
    into a 128-bit list, both little-endian as sent over the air.
    """
    short = bytearray()
    full = bytearray()
    for value in service_uuids:
        parsed = uuid.UUID(value)
        text = str(parsed)
        if text.startswith("0000") and text.endswith(_BLUETOOTH_BASE_SUFFIX):
            short.extend(int(text[4:8], 16).to_bytes(2, "little"))
        else:
            full.extend(parsed.bytes[::-1])

    records = []
    if short:
        records.append(AdvertisementRecord(AdRecordType.UUIDS_COMPLETE_16BIT, bytes(short)))
    if full:
        records.append(AdvertisementRecord(AdRecordType.UUIDS_COMPLETE_128BIT, bytes(full)))
    return records
