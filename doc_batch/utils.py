"""
Utility functions for common patterns across the batch document processing system.
"""

import copy
import json
import math
import re

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from .models import Presence


_MISSING = object()


class DocumentUtils:
    """Utility methods for reading and comparing schema-less documents."""

    # Set by stores on rows whose stored body could not be decoded
    DECODE_ERROR_FIELD = '$decodeError'

    @staticmethod
    def lookup(document: Any, path: str) -> Any:
        """
        Resolve a dotted path, returning a private sentinel when absent.

        Numeric path segments index into lists (``requestedItems.0.qty``).
        """
        current = document
        for part in path.split('.'):
            if isinstance(current, dict):
                if part not in current:
                    return _MISSING
                current = current[part]
            elif isinstance(current, list) and part.isdigit():
                index = int(part)
                if index >= len(current):
                    return _MISSING
                current = current[index]
            else:
                return _MISSING
        return current

    @staticmethod
    def presence(document: Any, path: str) -> Presence:
        """
        Three-state presence check.

        Returns:
            PRESENT when the path holds a value, NULL when it holds None,
            ABSENT when the path does not exist
        """
        value = DocumentUtils.lookup(document, path)
        if value is _MISSING:
            return Presence.ABSENT
        if value is None:
            return Presence.NULL
        return Presence.PRESENT

    @staticmethod
    def get(document: Any, path: str, default: Any = None) -> Any:
        """Value at a dotted path, or default when absent."""
        value = DocumentUtils.lookup(document, path)
        return default if value is _MISSING else value

    @staticmethod
    def is_blank(document: Any, path: str) -> bool:
        """
        True when the field is absent, null or the empty string.

        Whitespace-only strings are not blank.
        """
        if DocumentUtils.presence(document, path) is not Presence.PRESENT:
            return True
        return DocumentUtils.get(document, path) == ''

    @staticmethod
    def normalize_for_compare(value: Any) -> Any:
        """Convert a value into a canonical JSON-comparable form."""
        if isinstance(value, datetime):
            return DateUtils.to_iso(value)
        if isinstance(value, Decimal):
            value = float(value)
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, (list, tuple)):
            return [DocumentUtils.normalize_for_compare(item) for item in value]
        if isinstance(value, dict):
            return {key: DocumentUtils.normalize_for_compare(val) for key, val in value.items()}
        return value

    @staticmethod
    def values_equal(current: Any, proposed: Any) -> bool:
        """Structural equality that treats datetimes and their ISO strings alike."""
        if current is proposed:
            return True
        left = DocumentUtils.normalize_for_compare(current)
        right = DocumentUtils.normalize_for_compare(proposed)
        return json.dumps(left, sort_keys=True, default=str) == json.dumps(right, sort_keys=True, default=str)

    @staticmethod
    def apply_mutation(document: dict, fields: dict, unset=()) -> dict:
        """Return a copy of a document with top-level $set/$unset applied."""
        updated = copy.deepcopy(document)
        for key, value in fields.items():
            updated[key] = copy.deepcopy(value)
        for key in unset:
            updated.pop(key, None)
        return updated

    @staticmethod
    def project(document: dict, fields) -> dict:
        """Keep ``_id`` plus the requested top-level fields (all when empty)."""
        if not fields:
            return document
        projected = {'_id': document.get('_id')}
        for key in fields:
            if key in document:
                projected[key] = document[key]
        return projected

    @staticmethod
    def json_default(o: Any) -> Any:
        """JSON serializer helper for Decimal and datetime values."""
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, datetime):
            return DateUtils.to_iso(o)
        if isinstance(o, date):
            return o.isoformat()
        return str(o)

    @staticmethod
    def to_json(document: Any) -> str:
        """Canonical JSON text for storage and change detection."""
        return json.dumps(document, sort_keys=True, separators=(',', ':'),
                          default=DocumentUtils.json_default)


class DateUtils:
    """Utility methods for date/time values stored inside documents."""

    _regex_cache = {
        'zulu': re.compile(r'[zZ]$'),
    }

    @staticmethod
    def parse(value: Any) -> Optional[datetime]:
        """
        Parse a stored date value.

        Accepts datetime instances, ISO-8601 strings (with optional trailing Z),
        epoch milliseconds and extended-JSON ``{"$date": ...}`` wrappers.
        Returns None when the value is unparseable.
        """
        if isinstance(value, dict) and set(value) == {'$date'}:
            value = value['$date']
        if isinstance(value, datetime):
            return value
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                return None
            try:
                return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            text = DateUtils._regex_cache['zulu'].sub('+00:00', text)
            try:
                return datetime.fromisoformat(text)
            except ValueError:
                return None
        return None

    @staticmethod
    def to_iso(value: datetime) -> str:
        """
        Format as UTC ISO-8601 with millisecond precision and a Z suffix.

        Naive datetimes are taken to be UTC.
        """
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return value.strftime('%Y-%m-%dT%H:%M:%S.') + f"{value.microsecond // 1000:03d}Z"

    @staticmethod
    def normalize(value: Any) -> Optional[str]:
        """Canonical ISO string for a date value, or None when absent/unparseable."""
        if value is None:
            return None
        parsed = DateUtils.parse(value)
        return DateUtils.to_iso(parsed) if parsed is not None else None


class NumberUtils:
    """Utility methods for numeric coercion."""

    @staticmethod
    def to_finite(value: Any) -> Optional[float]:
        """
        Coerce a value to a finite number.

        Numbers and numeric strings convert; booleans, None, empty strings
        and anything non-finite return None.
        """
        if isinstance(value, bool) or value is None:
            return None
        if isinstance(value, (int, float, Decimal)):
            number = float(value)
        elif isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            try:
                number = float(text)
            except ValueError:
                return None
        else:
            return None
        return number if math.isfinite(number) else None

    @staticmethod
    def non_negative(value: Any, fallback: float = 0) -> float:
        """Finite value clamped at zero, or fallback when not a number."""
        number = NumberUtils.to_finite(value)
        if number is None:
            return fallback
        return NumberUtils.tidy(max(0, number))

    @staticmethod
    def round_half_up(value: float) -> int:
        """Round to the nearest integer with halves rounded up."""
        return int(math.floor(value + 0.5))

    @staticmethod
    def tidy(value: float) -> Any:
        """Return an int for integral floats so stored numbers stay compact."""
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value
