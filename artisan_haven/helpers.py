import math
import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from flask import jsonify

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_positive_int(value, default=0):
    try:
        numeric = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(default, numeric)


def parse_page_size(value, default: int, maximum: int) -> int:
    """Return a page size in ``[1, maximum]``, using ``default`` when unset or invalid."""
    requested = safe_positive_int(value, 0)
    if not requested:
        return default
    return min(requested, maximum)


def parse_quantity(value) -> Optional[int]:
    """Return a non-negative whole quantity, or None when the value is unusable."""
    if isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric) or numeric != int(numeric) or numeric < 0:
        return None
    return int(numeric)


def normalize_object_id_value(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def load_document(collection, identifier, label: str):
    """Fetch a document by id, returning ``(document, error_response)``."""
    object_id = normalize_object_id_value(identifier)
    if not object_id:
        return None, (jsonify({"message": f"Invalid {label} identifier."}), 400)

    document = collection.find_one({"_id": object_id})
    if not document:
        return None, (jsonify({"message": f"{label.capitalize()} not found."}), 404)

    return document, None


def sanitize_metadata(metadata: Optional[Dict]) -> Dict[str, str]:
    if not isinstance(metadata, dict):
        return {}
    sanitized: Dict[str, str] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        sanitized[str(key)] = str(value)
    return sanitized


def parse_iso_date(value: Optional[str], *, end_of_day: bool = False):
    if not value:
        return None
    candidate = str(value).strip()
    if not candidate:
        return None
    normalized = candidate.replace("Z", "+00:00")
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
        normalized = f"{candidate}T00:00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if end_of_day and re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
        return parsed + timedelta(days=1)
    return parsed


def isoformat(value) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat() + "Z"
    return None


def unique_preserve(items: List[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        ordered.append(item)
    return ordered
