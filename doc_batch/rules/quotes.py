"""
Quote rule sets.

quotes-migrate rewrites requested items into their canonical shape, derives
the quote total and number, maps legacy statuses and moves the legacy
createdOrderId link to ``order``. quotes-validate checks the result.
"""

import logging
import math

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..models import Presence, RuleMode, Violation
from ..utils import DateUtils, DocumentUtils, NumberUtils
from ..validation.primitives import (
    ViolationCollector, check_date, check_enum, check_identifier, check_number,
    check_optional_type, check_required_string, is_valid_identifier,
)
from ..validation.rule_set import Outcome, RuleContext, RuleSet


STATUS_VALUES = ["Processing", "Quoted", "Confirmed", "Cancelled"]
STATUS_MAP = {
    "Requested": "Processing",
    "Rejected": "Cancelled",
}
AVAILABILITY_VALUES = ["AVAILABLE", "PARTIAL", "SHORTAGE", "NOT_AVAILABLE"]
_AVAILABILITY_ALIASES = {
    "available": "AVAILABLE",
    "partial": "PARTIAL",
    "shortage": "SHORTAGE",
    "not available": "NOT_AVAILABLE",
    "notavailable": "NOT_AVAILABLE",
    "not_available": "NOT_AVAILABLE",
    "not-available": "NOT_AVAILABLE",
}

ITEM_NUMBER_FIELDS = ["qty", "unitPrice", "availableNow", "shortage"]


def normalize_status(status: Any) -> str:
    if status in STATUS_VALUES:
        return status
    if isinstance(status, str) and status in STATUS_MAP:
        return STATUS_MAP[status]
    return "Processing"


def normalize_availability(status: Any) -> str:
    if isinstance(status, str):
        trimmed = status.strip()
        if trimmed in AVAILABILITY_VALUES:
            return trimmed
        return _AVAILABILITY_ALIASES.get(trimmed.lower(), "NOT_AVAILABLE")
    return "NOT_AVAILABLE"


def resolve_product(item: Any) -> Any:
    """First well-formed product reference among product, productId and nested ids."""
    if not isinstance(item, dict):
        return None
    product = item.get('product')
    candidates = [product, item.get('productId')]
    if isinstance(product, dict):
        candidates.extend([product.get('_id'), product.get('id')])

    for candidate in candidates:
        if candidate is None:
            continue
        if is_valid_identifier(candidate):
            return candidate
        if isinstance(candidate, dict):
            nested = candidate.get('_id') if candidate.get('_id') is not None else candidate.get('id')
            if nested is not None and is_valid_identifier(nested):
                return nested
    return None


def normalize_items(items: List[Any]) -> Tuple[List[Dict[str, Any]], List[str]]:
    """Canonical requested items plus messages for items dropped without a product."""
    normalized = []
    item_failures = []
    for index, item in enumerate(items):
        product = resolve_product(item)
        if product is None:
            item_failures.append(f"requestedItems[{index}].product is required.")
            continue
        normalized.append({
            'product': product,
            'productName': item.get('productName') if isinstance(item.get('productName'), str) else None,
            'qty': NumberUtils.non_negative(item.get('qty')),
            'unitPrice': NumberUtils.non_negative(item.get('unitPrice')),
            'priceRule': item.get('priceRule') if isinstance(item.get('priceRule'), str) else None,
            'availableNow': NumberUtils.non_negative(item.get('availableNow')),
            'shortage': NumberUtils.non_negative(item.get('shortage')),
            'availabilityStatus': normalize_availability(item.get('availabilityStatus')),
        })
    return normalized, item_failures


def build_quote_number(record: Dict[str, Any], now: datetime) -> str:
    """Existing quote number, or ``QTE-YYMMDD-<last six id chars>`` from createdAt."""
    current = record.get('quoteNumber')
    if isinstance(current, str) and current.strip() != '':
        return current

    created = DateUtils.parse(record.get('createdAt')) or now
    suffix = str(record.get('_id') or '')[-6:].upper().rjust(6, '0')
    return f"QTE-{created.strftime('%y%m%d')}-{suffix}"


def _truthy(value: Any) -> bool:
    if isinstance(value, float) and math.isnan(value):
        return False
    if isinstance(value, (list, dict)):
        return True
    return bool(value)


class QuotesMigrate(RuleSet):
    name = "quotes-migrate"
    description = "Normalize requested items, totals, statuses and order links on quotes"
    collection = "quotes"
    entity = "Quote"
    mode = RuleMode.NORMALIZE
    touch_field = "updatedAt"

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        items = record.get('requestedItems')
        if not isinstance(items, list) or not items:
            return self.verdict([Violation('requestedItems', "requestedItems must be a non-empty array.")])

        normalized, item_failures = normalize_items(items)
        if not normalized:
            violations = [Violation('requestedItems', message) for message in item_failures]
            violations.append(Violation('requestedItems',
                                        "requestedItems must be a non-empty array after normalization."))
            return self.verdict(violations)
        for message in item_failures:
            self.logger.warning(f"{self.entity} {record.get('_id')}: {message}")

        delivery_charge = NumberUtils.non_negative(record.get('deliveryCharge'))
        extra_fee = NumberUtils.non_negative(record.get('extraFee'))
        items_total = sum(item['qty'] * item['unitPrice'] for item in normalized)
        total_price = NumberUtils.non_negative(items_total + delivery_charge + extra_fee)

        set_fields = {
            'quoteNumber': build_quote_number(record, context.now),
            'requestedItems': normalized,
            'deliveryCharge': delivery_charge,
            'extraFee': extra_fee,
            'totalPrice': total_price,
            'status': normalize_status(record.get('status')),
            'availabilityCheckedAt': DateUtils.normalize(record.get('availabilityCheckedAt')),
            'clientQtyEditLocked': _truthy(record.get('clientQtyEditLocked')),
        }
        if record.get('order') is None and record.get('createdOrderId') is not None:
            set_fields['order'] = record['createdOrderId']

        return self.build_update(record, set_fields, unset=['isOrderCreated', 'createdOrderId'])


class QuotesValidate(RuleSet):
    name = "quotes-validate"
    description = "Check normalized quotes"
    collection = "quotes"
    entity = "Quote"
    mode = RuleMode.VALIDATE

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        collector = ViolationCollector()
        collector.add(check_identifier(record, 'user'))
        collector.add(check_required_string(record, 'quoteNumber'))

        items = record.get('requestedItems')
        if not isinstance(items, list) or not items:
            collector.error('requestedItems', "requestedItems must be a non-empty array.")
        else:
            for index in range(len(items)):
                collector.extend(self._item_violations(record, index))

        for field in ('deliveryCharge', 'extraFee', 'totalPrice'):
            collector.add(check_number(record, field, minimum=0))
        collector.add(check_enum(record, 'status', STATUS_VALUES))
        collector.add(check_date(record, 'availabilityCheckedAt'))
        collector.add(check_optional_type(record, 'clientQtyEditLocked', (bool,), "boolean"))
        collector.add(check_identifier(record, 'order', required=False))

        if any(DocumentUtils.presence(record, f) is Presence.PRESENT
               for f in ('isOrderCreated', 'createdOrderId')):
            collector.error('createdOrderId',
                            "legacy order fields (isOrderCreated/createdOrderId) must be removed.")
        return self.verdict(collector.violations)

    @staticmethod
    def _item_violations(record: Dict[str, Any], index: int) -> List[Optional[Violation]]:
        prefix = f"requestedItems.{index}"
        label = f"requestedItems[{index}]"
        item = record['requestedItems'][index]
        violations: List[Optional[Violation]] = []
        if not isinstance(item, dict) or not is_valid_identifier(item.get('product')):
            violations.append(Violation(f"{prefix}.product", f"{label}.product is required."))
        for field in ITEM_NUMBER_FIELDS:
            violations.append(check_number(record, f"{prefix}.{field}", minimum=0,
                                           label=f"{label}.{field}"))
        violations.append(check_enum(record, f"{prefix}.availabilityStatus", AVAILABILITY_VALUES,
                                     label=f"{label}.availabilityStatus"))
        return violations
