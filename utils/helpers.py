"""
Helper utility functions for the FabLab inventory and scheduling dashboard
"""

import random
import re
import string
import time
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

QR_CODE_PREFIX = "MAT"
QR_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def generate_qr_code(now_ms: Optional[int] = None) -> str:
    """
    Generate a QR identifier for a new material

    Format: MAT-<epoch milliseconds>-<9 random base36 characters>

    Args:
        now_ms (int, optional): Timestamp override in milliseconds

    Returns:
        str: QR identifier, e.g. "MAT-1718000000000-k3j9x0a1b"
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choices(QR_SUFFIX_ALPHABET, k=9))
    return f"{QR_CODE_PREFIX}-{now_ms}-{suffix}"


def is_below_threshold(material: Dict) -> bool:
    """A material is below threshold when available <= minimum"""
    return material["quantita_disponibile"] <= material["soglia_minima"]


def top_trainers(trainers: Iterable[Dict], limit: int = 5) -> List[Dict]:
    """
    Build the "most active trainers" leaderboard

    Args:
        trainers: Trainer dicts carrying nome, cognome and lezioni_concluse
        limit (int): Number of entries to keep

    Returns:
        list: [{"nome": full name, "lezioni": completed lessons}] sorted desc
    """
    board = [
        {
            "nome": f"{t.get('nome') or ''} {t.get('cognome') or ''}".strip(),
            "lezioni": t.get("lezioni_concluse") or 0,
        }
        for t in trainers
    ]
    board.sort(key=lambda entry: entry["lezioni"], reverse=True)
    return board[:limit]


def filter_activities_by_date(
    activities: Iterable[Dict], day: Optional[date]
) -> List[Dict]:
    """
    Keep only the activities scheduled on the given day

    Args:
        activities: Activity dicts with "data" as YYYY-MM-DD
        day: Selected calendar day, or None for no filter

    Returns:
        list: Matching activities in their original order
    """
    if day is None:
        return list(activities)
    key = day.strftime("%Y-%m-%d")
    return [a for a in activities if a["data"] == key]


def parse_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a YYYY-MM-DD string

    Raises:
        ValueError: If the value is not a valid date
    """
    if not value:
        return None
    return datetime.strptime(value.strip(), "%Y-%m-%d").date()


def parse_time(value: Optional[str]):
    """Parse HH:MM or HH:MM:SS into a time object (ValueError if invalid)"""
    if not value:
        return None
    value = value.strip()
    fmt = "%H:%M:%S" if value.count(":") == 2 else "%H:%M"
    return datetime.strptime(value, fmt).time()


def format_timestamp(timestamp, tz_name: Optional[str] = None) -> str:
    """
    Format a datetime timestamp to readable string

    Args:
        timestamp: naive UTC datetime
        tz_name: optional IANA zone to convert into before formatting

    Returns:
        str: Formatted timestamp string ("" for None)
    """
    if not isinstance(timestamp, datetime):
        return ""
    if tz_name:
        timestamp = (
            timestamp.replace(tzinfo=timezone.utc)
            .astimezone(ZoneInfo(tz_name))
            .replace(tzinfo=None)
        )
    return timestamp.strftime("%Y-%m-%d %H:%M:%S")


def serialize_timestamps(rows: List[Dict], *fields: str) -> List[Dict]:
    """Convert datetime fields in-place to strings for JSON responses"""
    for row in rows:
        for field in fields:
            if isinstance(row.get(field), datetime):
                row[field] = format_timestamp(row[field])
    return rows


def validate_email(email: Optional[str]) -> bool:
    if not email:
        return False
    return bool(EMAIL_PATTERN.match(email.strip()))


def validate_record_id(record_id):
    """
    Validate a database record ID (integer or string representation).

    Args:
        record_id: Record ID to validate (str or int)

    Returns:
        bool: True if valid, False otherwise
    """
    if record_id is None or isinstance(record_id, bool):
        return False

    record_id_str = str(record_id).strip()
    if not record_id_str:
        return False

    # Must be a positive integer
    try:
        return int(record_id_str) > 0
    except (ValueError, TypeError):
        return False


def parse_quantity(value, default: int = 1) -> int:
    """
    Parse a positive quantity from request data

    Raises:
        ValueError: If the quantity is not a positive integer
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValueError("Quantità non valida")
    try:
        quantity = int(value)
    except (ValueError, TypeError):
        raise ValueError("Quantità non valida")
    if quantity <= 0:
        raise ValueError("La quantità deve essere maggiore di zero")
    return quantity


def clean_text(text) -> str:
    """
    Normalize free-text input before storing it.
    Values are stored as typed; Jinja autoescaping handles HTML output.

    Args:
        text: Raw request value (str, number or None)

    Returns:
        str: Stripped text, "" for missing values
    """
    if text is None:
        return ""
    return str(text).strip()


def mask_email(email: Optional[str]) -> str:
    """Mask an email address for log lines"""
    if not email or "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


GIORNI = ["lunedì", "martedì", "mercoledì", "giovedì", "venerdì", "sabato", "domenica"]
MESI = [
    "gennaio", "febbraio", "marzo", "aprile", "maggio", "giugno",
    "luglio", "agosto", "settembre", "ottobre", "novembre", "dicembre",
]


def format_date_it(day: date) -> str:
    """Long Italian date, e.g. "lunedì 3 marzo 2025" """
    return f"{GIORNI[day.weekday()]} {day.day} {MESI[day.month - 1]} {day.year}"
