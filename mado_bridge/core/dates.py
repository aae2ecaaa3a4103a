"""DICOM DA/TM/offset <-> FHIR date/dateTime conversion."""

from __future__ import annotations

import re
from datetime import date as date_type

_FHIR_DATETIME_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})"
    r"(?:T(\d{2}):(\d{2})(?::(\d{2})(?:\.(\d+))?)?)?"
    r"(Z|[+-]\d{2}:\d{2})?$"
)


def dicom_date_to_fhir(date: str | None) -> str | None:
    """Convert YYYYMMDD to YYYY-MM-DD; other shapes yield None."""
    if not date:
        return None
    date = date.strip()
    if len(date) != 8 or not date.isdigit():
        return None
    return f"{date[:4]}-{date[4:6]}-{date[6:]}"


def dicom_time_to_fhir(time: str | None) -> str | None:
    """Convert HH[MM[SS[.F]]] to HH:MM:SS (fractions dropped)."""
    if not time:
        return None
    digits = time.strip().split(".")[0]
    if not digits.isdigit() or len(digits) < 2:
        return None
    digits = digits.ljust(6, "0")[:6]
    return f"{digits[:2]}:{digits[2:4]}:{digits[4:6]}"


def dicom_offset_to_fhir(offset: str | None) -> str | None:
    """Convert a Timezone Offset From UTC (+HHMM) to +HH:MM."""
    if not offset:
        return None
    offset = offset.strip()
    if len(offset) != 5 or offset[0] not in "+-" or not offset[1:].isdigit():
        return None
    return f"{offset[:3]}:{offset[3:]}"


def to_fhir_datetime(
    date: str | None, time: str | None = None, offset: str | None = None
) -> str | None:
    """Combine DICOM DA, TM and offset into a FHIR dateTime.

    A FHIR dateTime with a time must carry a zone, so the time is only kept
    when the offset is known.

    Args:
        date: DICOM date (YYYYMMDD)
        time: DICOM time, optional
        offset: Timezone Offset From UTC (+HHMM), optional

    Returns:
        FHIR dateTime, a bare date when there is no time or no offset, or
        None without a date

    """
    fhir_date = dicom_date_to_fhir(date)
    if fhir_date is None:
        return None
    fhir_time = dicom_time_to_fhir(time)
    fhir_offset = dicom_offset_to_fhir(offset)
    if fhir_time is None or fhir_offset is None:
        return fhir_date
    return f"{fhir_date}T{fhir_time}{fhir_offset}"


def from_fhir_datetime(
    value: str | date_type | None,
) -> tuple[str | None, str | None, str | None]:
    """Split a FHIR date/dateTime into DICOM (DA, TM, offset).

    Accepts the ISO text or the date/datetime objects the FHIR models hold.

    Returns:
        Tuple of date, time and offset; members are None when not present

    """
    if not value:
        return None, None, None
    if isinstance(value, date_type):
        value = value.isoformat()
    match = _FHIR_DATETIME_RE.match(value.strip())
    if not match:
        return None, None, None
    year, month, day, hour, minute, second, _, zone = match.groups()
    date = f"{year}{month}{day}"
    time = f"{hour}{minute}{second or '00'}" if hour else None
    offset = None
    if zone == "Z":
        offset = "+0000"
    elif zone:
        offset = zone.replace(":", "")
    return date, time, offset
