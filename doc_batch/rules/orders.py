"""
Order rule sets.

orders-migrate rewrites order items into their canonical shape (resolving
missing SKUs from the product), maps legacy statuses, normalizes dates and
detaches an invoice claimed by more than one order from all but the
earliest. orders-validate checks the result.
"""

import logging

from typing import Any, Dict, List, Optional, Tuple

from ..models import RuleMode, Violation
from ..utils import DateUtils, NumberUtils
from ..validation.primitives import (
    ViolationCollector, check_date, check_enum, check_identifier, check_number,
    check_optional_type, check_required_string, is_valid_identifier,
)
from ..validation.rule_set import Outcome, RuleContext, RuleSet
from .duplicates import find_duplicates, reference_key
from .quotes import resolve_product


STATUS_VALUES = ["Processing", "Shipping", "Delivered", "Cancelled"]
STATUS_MAP = {
    "Returned": "Cancelled",
}
ALLOCATION_VALUES = ["Unallocated", "PartiallyAllocated", "Allocated"]
LEGACY_FIELDS = ["isDelivered", "stockUpdated", "invoiceGenerated"]
UNKNOWN_SKU = "UNKNOWN"

INVOICE_CONFLICTS_KEY = "order_invoice_conflicts"


def normalize_status(status: Any) -> str:
    if status in STATUS_VALUES:
        return status
    if isinstance(status, str) and status in STATUS_MAP:
        return STATUS_MAP[status]
    return "Processing"


def normalize_allocation_status(status: Any) -> str:
    return status if status in ALLOCATION_VALUES else "Unallocated"


def _non_empty(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip() != '':
        return value.strip()
    return None


class OrdersMigrate(RuleSet):
    name = "orders-migrate"
    description = "Normalize order items, statuses, dates and invoice links on orders"
    collection = "orders"
    entity = "Order"
    mode = RuleMode.NORMALIZE
    touch_field = "updatedAt"

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def prepare(self, context: RuleContext) -> None:
        conflicts = find_duplicates(context.store, self.collection, 'invoice')
        context.data[INVOICE_CONFLICTS_KEY] = conflicts
        if conflicts:
            self.logger.info("Invoice conflicts detected:")
            for invoice_key, group in conflicts.items():
                self.logger.info(
                    f"Invoice {invoice_key}: keeping {group.keep_id} and clearing {', '.join(group.drop_ids)}")

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        items = record.get('orderItems')
        if not isinstance(items, list) or not items:
            return self.verdict([Violation('orderItems', "orderItems must be a non-empty array.")])

        normalized, item_failures = self._normalize_items(items, context)
        if not normalized:
            violations = [Violation('orderItems', message) for message in item_failures]
            violations.append(Violation('orderItems', "orderItems must be a non-empty array after normalization."))
            return self.verdict(violations)
        for message in item_failures:
            self.logger.error(f"{self.entity} {record.get('_id')}: {message}")

        status = normalize_status(record.get('status'))
        delivered_at = DateUtils.normalize(record.get('deliveredAt'))
        if status == "Delivered" and delivered_at is None:
            delivered_at = DateUtils.to_iso(context.now)

        set_fields = {
            'status': status,
            'allocationStatus': normalize_allocation_status(record.get('allocationStatus')),
            'orderItems': normalized,
            'totalPrice': NumberUtils.non_negative(record.get('totalPrice')),
            'deliveryCharge': NumberUtils.non_negative(record.get('deliveryCharge')),
            'extraFee': NumberUtils.non_negative(record.get('extraFee')),
            'deliveredAt': delivered_at,
            'allocatedAt': DateUtils.normalize(record.get('allocatedAt')),
            'stockFinalizedAt': DateUtils.normalize(record.get('stockFinalizedAt')),
            'invoice': self._invoice(record, context),
            'quote': record.get('quote'),
        }
        return self.build_update(record, set_fields, unset=LEGACY_FIELDS)

    def _normalize_items(self, items: List[Any], context: RuleContext) -> Tuple[List[Dict[str, Any]], List[str]]:
        normalized = []
        item_failures = []
        for index, item in enumerate(items):
            product = resolve_product(item)
            if product is None:
                item_failures.append(f"orderItems[{index}].product is required.")
                continue

            qty = NumberUtils.to_finite(item.get('qty'))
            qty = NumberUtils.tidy(max(1, qty)) if qty is not None else 1
            unit_price = NumberUtils.non_negative(item.get('unitPrice'))
            normalized.append({
                'product': product,
                'sku': _non_empty(item.get('sku')) or self._product_sku(product, context),
                'productName': item.get('productName') if isinstance(item.get('productName'), str) else None,
                'qty': qty,
                'unitPrice': unit_price,
                'lineTotal': NumberUtils.tidy(max(0, qty * unit_price)),
            })
        return normalized, item_failures

    @staticmethod
    def _product_sku(product: Any, context: RuleContext) -> str:
        found = context.resolve('products', product, ('sku',))
        if found is None:
            return UNKNOWN_SKU
        return _non_empty(found.get('sku')) or UNKNOWN_SKU

    def _invoice(self, record: Dict[str, Any], context: RuleContext) -> Any:
        invoice = record.get('invoice')
        group = context.data.get(INVOICE_CONFLICTS_KEY, {}).get(reference_key(invoice))
        if group is not None and group.is_dropped(record.get('_id')):
            self.logger.warning(
                f"{self.entity} {record.get('_id')}: invoice {reference_key(invoice)} "
                f"belongs to order {group.keep_id}; clearing")
            return None
        return invoice


class OrdersValidate(RuleSet):
    name = "orders-validate"
    description = "Check normalized orders"
    collection = "orders"
    entity = "Order"
    mode = RuleMode.VALIDATE

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        collector = ViolationCollector()
        collector.add(check_identifier(record, 'user'))
        collector.add(check_required_string(record, 'orderNumber'))

        items = record.get('orderItems')
        if not isinstance(items, list) or not items:
            collector.error('orderItems', "orderItems must be a non-empty array.")
        else:
            for index in range(len(items)):
                collector.extend(self._item_violations(record, index))

        for field in ('totalPrice', 'deliveryCharge', 'extraFee'):
            collector.add(check_number(record, field, minimum=0))
        collector.add(check_enum(record, 'status', STATUS_VALUES))
        collector.add(check_enum(record, 'allocationStatus', ALLOCATION_VALUES))

        collector.add(check_date(record, 'deliveredAt'))
        if record.get('status') == "Delivered" and not record.get('deliveredAt'):
            collector.error('deliveredAt', "deliveredAt is required when status is Delivered.")
        collector.add(check_date(record, 'allocatedAt'))
        collector.add(check_date(record, 'stockFinalizedAt'))

        collector.add(check_identifier(record, 'quote', required=False))
        collector.add(check_identifier(record, 'invoice', required=False))

        if any(record.get(field) is not None for field in LEGACY_FIELDS):
            collector.error('isDelivered',
                            "legacy fields (isDelivered/stockUpdated/invoiceGenerated) must be removed.")
        return self.verdict(collector.violations)

    @staticmethod
    def _item_violations(record: Dict[str, Any], index: int) -> List[Optional[Violation]]:
        prefix = f"orderItems.{index}"
        label = f"orderItems[{index}]"
        item = record['orderItems'][index]
        violations: List[Optional[Violation]] = []
        if not isinstance(item, dict) or not is_valid_identifier(item.get('product')):
            violations.append(Violation(f"{prefix}.product", f"{label}.product is required."))
        violations.append(check_required_string(record, f"{prefix}.sku", label=f"{label}.sku"))
        violations.append(check_number(record, f"{prefix}.qty", minimum=1, label=f"{label}.qty"))
        violations.append(check_number(record, f"{prefix}.unitPrice", minimum=0, label=f"{label}.unitPrice"))
        violations.append(check_number(record, f"{prefix}.lineTotal", minimum=0, label=f"{label}.lineTotal"))
        violations.append(check_optional_type(record, f"{prefix}.productName", (str,), "string",
                                              label=f"{label}.productName"))
        return violations
