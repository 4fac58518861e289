"""
Validation primitives composed by rule sets.

Every check is total and side-effect free: it inspects one document (or a
pair of values) and returns a Violation, or None when the check passes.
Absent and null fields are distinguished through DocumentUtils.presence.
"""

import math
import re

from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence

from ..models import Presence, Violation
from ..utils import DateUtils, DocumentUtils


_OBJECT_ID = re.compile(r'^[0-9a-fA-F]{24}$')


def identifier_key(value: Any) -> Optional[str]:
    """
    Canonical string form of a document identifier.

    Accepts 24-hex-digit strings and extended-JSON ``{"$oid": ...}`` wrappers.
    Returns None when the value is not a well-formed identifier.
    """
    if isinstance(value, dict) and set(value) == {'$oid'}:
        value = value['$oid']
    if isinstance(value, str) and _OBJECT_ID.match(value):
        return value.lower()
    return None


def is_valid_identifier(value: Any) -> bool:
    return identifier_key(value) is not None


def is_valid_real(value: Any) -> bool:
    """A real number is any finite int/float; booleans are not numbers."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    return math.isfinite(value)


def is_valid_integer(value: Any) -> bool:
    """An integer must be finite and integral (5.0 qualifies, 5.5 does not)."""
    if not is_valid_real(value):
        return False
    if isinstance(value, int):
        return True
    return float(value).is_integer()


def _describe_bounds(minimum, exclusive_minimum, maximum, exclusive_maximum) -> str:
    parts = []
    if minimum is not None:
        parts.append(f"{'>' if exclusive_minimum else '>='} {minimum}")
    if maximum is not None:
        parts.append(f"{'<' if exclusive_maximum else '<='} {maximum}")
    return " and ".join(parts)


def check_number(document: Any, path: str, *, integer: bool = False,
                 minimum: Optional[float] = None, exclusive_minimum: bool = False,
                 maximum: Optional[float] = None, exclusive_maximum: bool = False,
                 label: Optional[str] = None) -> Optional[Violation]:
    """
    Numeric-range check with explicit bounds.

    Examples:
        check_number(doc, 'amountMinor', integer=True, minimum=1)
            -> "amountMinor must be an integer >= 1."
        check_number(doc, 'qty', minimum=0)
            -> "qty must be a number >= 0."
    """
    label = label or path
    value = DocumentUtils.get(document, path)
    valid = is_valid_integer(value) if integer else is_valid_real(value)
    if valid and minimum is not None:
        valid = value > minimum if exclusive_minimum else value >= minimum
    if valid and maximum is not None:
        valid = value < maximum if exclusive_maximum else value <= maximum
    if valid:
        return None

    kind = "an integer" if integer else "a number"
    bounds = _describe_bounds(minimum, exclusive_minimum, maximum, exclusive_maximum)
    message = f"{label} must be {kind} {bounds}." if bounds else f"{label} must be {kind}."
    return Violation(path, message)


def check_enum(document: Any, path: str, allowed: Sequence[Any],
               label: Optional[str] = None) -> Optional[Violation]:
    """Enumerated-value membership check."""
    label = label or path
    if DocumentUtils.get(document, path) in allowed:
        return None
    return Violation(path, f"{label} must be one of {', '.join(str(a) for a in allowed)}.")


def check_identifier(document: Any, path: str, required: bool = True,
                     label: Optional[str] = None) -> Optional[Violation]:
    """
    Identifier well-formedness check.

    Required identifiers fail with "<field> is required."; optional ones may be
    absent or null but must be well formed when set.
    """
    label = label or path
    if not required and DocumentUtils.presence(document, path) is not Presence.PRESENT:
        return None
    if is_valid_identifier(DocumentUtils.get(document, path)):
        return None
    if required:
        return Violation(path, f"{label} is required.")
    return Violation(path, f"{label} must be a valid identifier if set.")


def check_required_string(document: Any, path: str,
                          label: Optional[str] = None) -> Optional[Violation]:
    """Required-field check: a string that is not empty after trimming."""
    value = DocumentUtils.get(document, path)
    if isinstance(value, str) and value.strip() != '':
        return None
    return Violation(path, f"{label or path} is required.")


def check_optional_type(document: Any, path: str, types: tuple, description: str,
                        label: Optional[str] = None) -> Optional[Violation]:
    """Optional-field check: absent or null is fine, otherwise the type must match."""
    if DocumentUtils.presence(document, path) is not Presence.PRESENT:
        return None
    value = DocumentUtils.get(document, path)
    if isinstance(value, types) and not (bool not in types and isinstance(value, bool)):
        return None
    return Violation(path, f"{label or path} must be a {description} if set.")


def check_absent(document: Any, path: str, entity: str) -> Optional[Violation]:
    """Deprecated-field check: the field must be absent (or null)."""
    if DocumentUtils.presence(document, path) is not Presence.PRESENT:
        return None
    return Violation(path, f"{path} must be removed from {entity}.")


def check_date(document: Any, path: str, required: bool = False,
               label: Optional[str] = None) -> Optional[Violation]:
    """
    Date/time well-formedness check.

    Optional dates may be absent or null; a present value must parse.
    """
    label = label or path
    if DocumentUtils.presence(document, path) is not Presence.PRESENT:
        if required:
            return Violation(path, f"{label} is required and must be a valid date.")
        return None
    if DateUtils.parse(DocumentUtils.get(document, path)) is not None:
        return None
    if required:
        return Violation(path, f"{label} is required and must be a valid date.")
    return Violation(path, f"{label} must be a valid date or null.")


def check_pattern(document: Any, path: str, pattern, message: str) -> Optional[Violation]:
    """String-format check; non-strings fail."""
    value = DocumentUtils.get(document, path)
    if isinstance(value, str) and re.search(pattern, value):
        return None
    return Violation(path, message)


def check_matches(field_path: str, value: Any, expected: Any, message: str) -> Optional[Violation]:
    """
    Cross-field consistency check.

    Skipped when either side is missing; identifiers compare by canonical key,
    everything else structurally.
    """
    if value is None or expected is None:
        return None
    left, right = identifier_key(value), identifier_key(expected)
    if left is not None and right is not None:
        equal = left == right
    else:
        equal = DocumentUtils.values_equal(value, expected)
    return None if equal else Violation(field_path, message)


class ViolationCollector:
    """Ordered accumulator that ignores passing (None) checks."""

    def __init__(self):
        self._violations: List[Violation] = []

    def add(self, violation: Optional[Violation]) -> None:
        if violation is not None:
            self._violations.append(violation)

    def extend(self, violations: Iterable[Optional[Violation]]) -> None:
        for violation in violations:
            self.add(violation)

    def error(self, field_path: str, message: str) -> None:
        self._violations.append(Violation(field_path, message))

    @property
    def violations(self) -> List[Violation]:
        return list(self._violations)

    def __bool__(self) -> bool:
        return bool(self._violations)

    def __len__(self) -> int:
        return len(self._violations)
