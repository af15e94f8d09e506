"""Pure parsing helpers for map-search place payloads."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..observability import utc_now

_PRIVATE_USE = re.compile(r"[\uE000-\uF8FF]")
_US_STATE_ZIP = re.compile(r"^([A-Z]{2})\s+\d")
_CITY_STATE_ZIP = re.compile(r"^(.+?)\s+[A-Z]{2}\s+\d")
_ZIP = re.compile(r"\b(\d{5}(?:-\d{4})?)\b")
_TRAILING_ZIP = re.compile(r"\s+\d{5}(-\d{4})?$")
_COORDS = re.compile(r"@(-?\d+\.\d+),(-?\d+\.\d+)")
_PLACE_ID = re.compile(r"0x[0-9a-f]+:0x[0-9a-f]+")
_RELATIVE = re.compile(r"(\d+)\s*(day|week|month|year)s?\s*ago")


@dataclass
class AddressParts:
    address: str = ""
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None


def clean_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return _PRIVATE_USE.sub("", value).strip()


def parse_address_components(address: Optional[str]) -> AddressParts:
    """Split "Street, City, ST 98101, Country" style addresses.

    Non-US layouts fall back to "second-to-last part is the region".
    """
    cleaned = clean_text(address)
    out = AddressParts(address=cleaned)
    parts = [p.strip() for p in cleaned.split(",") if p.strip()]

    if len(parts) == 1:
        out.city = parts[0]
    elif len(parts) == 2:
        out.country = parts[-1]
        out.city = parts[-2]
    elif len(parts) >= 3:
        out.country = parts[-1]
        state_zip = parts[-2]
        m = _US_STATE_ZIP.match(state_zip)
        out.state = m.group(1) if m else state_zip
        zip_match = _ZIP.search(state_zip)
        if zip_match:
            out.postal_code = zip_match.group(1)
        if len(parts) >= 4:
            out.city = parts[-3]
        else:
            m = _CITY_STATE_ZIP.match(state_zip)
            out.city = m.group(1).strip() if m else state_zip

    if out.city:
        out.city = _TRAILING_ZIP.sub("", out.city).strip() or None
    return out


def coords_from_url(url: Optional[str]) -> tuple[Optional[float], Optional[float]]:
    if not url:
        return None, None
    m = _COORDS.search(url)
    if not m:
        return None, None
    return float(m.group(1)), float(m.group(2))


def place_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    m = _PLACE_ID.search(url)
    return m.group(0) if m else None


def _months_back(now: datetime, months: int) -> datetime:
    month_index = now.month - 1 - months
    year = now.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp the day for short months.
    for day in (now.day, 30, 29, 28):
        try:
            return now.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    return now.replace(year=year, month=month, day=28)


def parse_relative_date(text: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """'3 weeks ago' -> datetime; None when the text is not recognised."""
    if not text:
        return None
    now = now or utc_now()
    lowered = text.lower().strip()
    m = _RELATIVE.search(lowered)
    if m:
        n = int(m.group(1))
        unit = m.group(2)
        if unit == "day":
            return now - timedelta(days=n)
        if unit == "week":
            return now - timedelta(days=7 * n)
        if unit == "month":
            return _months_back(now, n)
        return _months_back(now, 12 * n)
    if "today" in lowered:
        return now
    if "yesterday" in lowered:
        return now - timedelta(days=1)
    return None
