# kingrent/utils/parsers.py
from __future__ import annotations

import enum
import math
import uuid
from datetime import date, datetime, timezone


def clean_str(value) -> str:
    return ("" if value is None else str(value)).strip()


def parse_float(val):
    """Finite float or None; "nan" and "inf" are rejected."""
    try:
        if val is None or str(val).strip() == "":
            return None
        v = float(val)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def parse_int(val):
    try:
        if val is None or str(val).strip() == "":
            return None
        return int(val)
    except (TypeError, ValueError):
        return None


def parse_bool(val) -> bool:
    if isinstance(val, bool):
        return val
    return clean_str(val).lower() in ("1", "true", "yes", "on")


def parse_date(val):
    try:
        if not val:
            return None
        if isinstance(val, date) and not isinstance(val, datetime):
            return val
        return date.fromisoformat(str(val)[:10])
    except (TypeError, ValueError):
        return None


def parse_datetime(val):
    """
    ISO-8601 to naive UTC. Aware values are converted; naive values are taken as UTC.
    """
    try:
        if not val:
            return None
        if isinstance(val, datetime):
            dt = val
        else:
            s = str(val).strip()
            if s.endswith("Z"):
                s = s[:-1] + "+00:00"
            dt = datetime.fromisoformat(s)
        if dt.tzinfo is not None:
            dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
        return dt
    except (TypeError, ValueError):
        return None


def parse_uuid(val):
    try:
        if val is None:
            return None
        s = str(val).strip()
        if not s:
            return None
        return uuid.UUID(s)
    except (TypeError, ValueError, AttributeError):
        return None


def parse_enum(enum_cls: type[enum.Enum], val):
    """Enum member from its value (case-insensitive); None if unknown."""
    if isinstance(val, enum_cls):
        return val
    s = clean_str(val).lower()
    if not s:
        return None
    for member in enum_cls:
        if member.value == s:
            return member
    return None


def safe_enum_value(v):
    try:
        return v.value
    except AttributeError:
        return v


def iso(dt):
    return dt.isoformat() if dt else None
