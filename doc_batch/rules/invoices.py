"""
Invoice rule sets.

invoices-migrate back-fills integer minor amounts and cached payment state,
defaults missing due dates and cancels all but the earliest invoice of an
order. invoices-payment-cache recomputes the cached payment totals on every
invoice from the payments collection; it runs as the follow-up of
payments-migrate. invoices-validate checks invoice shape, cache consistency
and one-invoice-per-order.
"""

import logging

from datetime import timedelta
from typing import Any, Dict

from ..models import RuleMode, Violation
from ..utils import DateUtils, DocumentUtils, NumberUtils
from ..validation.primitives import (
    ViolationCollector, check_absent, check_date, check_enum, check_identifier, check_number,
    check_required_string, identifier_key, is_valid_integer, is_valid_real,
)
from ..validation.rule_set import Outcome, RuleContext, RuleSet
from .duplicates import find_duplicates, reference_key


PAYMENT_STATUS_VALUES = ["Unpaid", "PartiallyPaid", "Paid"]
STATUS_VALUES = ["Issued", "Cancelled"]
LEGACY_FIELDS = ["payments", "amountDue", "amountPaid", "paidAt"]

DEFAULT_CURRENCY = "AED"
DEFAULT_MINOR_UNIT_FACTOR = 100
DUE_DATE_DAYS = 30
DUPLICATE_CANCEL_REASON = "Duplicate invoice for order migration."

PAYMENT_TOTALS_KEY = "payment_totals"
DUPLICATE_ORDERS_KEY = "duplicate_invoice_orders"


def coerce_minor(value: Any) -> Any:
    """Non-negative minor amount; anything that is not a finite number counts as 0."""
    return NumberUtils.non_negative(value)


def compute_payment_status(amount_minor: Any, paid_total_minor: Any) -> str:
    amount = coerce_minor(amount_minor)
    paid = coerce_minor(paid_total_minor)
    if paid <= 0:
        return "Unpaid"
    if paid >= amount:
        return "Paid"
    return "PartiallyPaid"


def load_duplicate_orders(context: RuleContext, logger: logging.Logger, action: str) -> None:
    """Find invoices sharing an order and keep the map in the context."""
    duplicates = find_duplicates(context.store, 'invoices', 'order')
    context.data[DUPLICATE_ORDERS_KEY] = duplicates
    if duplicates:
        logger.info("Duplicate invoices detected per order:")
        for order_key, group in duplicates.items():
            logger.info(f"Order {order_key}: keeping {group.keep_id} and {action} {', '.join(group.drop_ids)}")


def is_duplicate_invoice(record: Dict[str, Any], context: RuleContext) -> bool:
    group = context.data.get(DUPLICATE_ORDERS_KEY, {}).get(reference_key(record.get('order')))
    return group is not None and group.is_dropped(record.get('_id'))


class InvoicesMigrate(RuleSet):
    name = "invoices-migrate"
    description = "Back-fill minor amounts, payment state and due dates; cancel duplicate invoices per order"
    collection = "invoices"
    entity = "Invoice"
    mode = RuleMode.NORMALIZE
    touch_field = "updatedAt"

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def prepare(self, context: RuleContext) -> None:
        load_duplicate_orders(context, self.logger, "cancelling")

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        if not record.get('order'):
            return self.verdict([Violation('order', "order is required.")])

        currency = record.get('currency')
        if isinstance(currency, str) and currency.strip() != '':
            currency = currency.strip().upper()
        else:
            currency = DEFAULT_CURRENCY

        factor = record.get('minorUnitFactor')
        minor_unit_factor = max(1, int(factor)) if is_valid_integer(factor) else DEFAULT_MINOR_UNIT_FACTOR

        amount_minor = self._minor_amount(record, 'amountMinor', 'amountDue')
        paid_total_minor = self._minor_amount(record, 'paidTotalMinor', 'amountPaid')

        status = "Cancelled" if record.get('status') == "Cancelled" else "Issued"
        if is_duplicate_invoice(record, context):
            status = "Cancelled"

        set_fields = {
            'amountMinor': amount_minor,
            'currency': currency,
            'minorUnitFactor': minor_unit_factor,
            'paidTotalMinor': paid_total_minor,
            'balanceDueMinor': max(0, amount_minor - paid_total_minor),
            'paymentStatus': compute_payment_status(amount_minor, paid_total_minor),
            'status': status,
            'dueDate': self._due_date(record, context),
        }
        if status == "Cancelled":
            if not record.get('cancelledAt'):
                set_fields['cancelledAt'] = DateUtils.to_iso(context.now)
            if not record.get('cancelReason'):
                set_fields['cancelReason'] = DUPLICATE_CANCEL_REASON

        return self.build_update(record, set_fields, unset=LEGACY_FIELDS)

    @staticmethod
    def _minor_amount(record: Dict[str, Any], field: str, legacy_field: str) -> int:
        """Current minor amount, else the legacy major amount times 100."""
        value = record.get(field)
        if is_valid_real(value):
            return max(0, NumberUtils.round_half_up(value))
        return max(0, NumberUtils.round_half_up(NumberUtils.non_negative(record.get(legacy_field)) * 100))

    def _due_date(self, record: Dict[str, Any], context: RuleContext) -> str:
        due_date = DateUtils.normalize(record.get('dueDate'))
        if due_date is not None:
            return due_date
        created = DateUtils.parse(record.get('createdAt')) or context.now
        due_date = DateUtils.to_iso(created + timedelta(days=DUE_DATE_DAYS))
        self.logger.warning(f"{self.entity} {record.get('_id')}: dueDate missing; set to {due_date}.")
        return due_date


class InvoicesPaymentCache(RuleSet):
    name = "invoices-payment-cache"
    description = "Recompute paidTotalMinor, balanceDueMinor and paymentStatus from payments"
    collection = "invoices"
    entity = "Invoice"
    mode = RuleMode.NORMALIZE
    touch_field = "updatedAt"

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def prepare(self, context: RuleContext) -> None:
        self.logger.info("Recomputing invoice payment caches...")
        totals = context.store.sum_by('payments', 'invoice', 'amountMinor')
        context.data[PAYMENT_TOTALS_KEY] = {key: max(0, int(total)) for key, total in totals.items()}
        self.logger.info(f"Loaded payment totals for {len(totals)} invoices")

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        amount_minor = coerce_minor(record.get('amountMinor'))
        totals = context.data.get(PAYMENT_TOTALS_KEY, {})
        key = identifier_key(record.get('_id')) or str(record.get('_id'))
        paid_total_minor = totals.get(key, 0)

        return self.build_update(record, {
            'paidTotalMinor': paid_total_minor,
            'balanceDueMinor': NumberUtils.tidy(max(0, amount_minor - paid_total_minor)),
            'paymentStatus': compute_payment_status(amount_minor, paid_total_minor),
        })


class InvoicesValidate(RuleSet):
    name = "invoices-validate"
    description = "Check invoice shape, payment cache consistency and one invoice per order"
    collection = "invoices"
    entity = "Invoice"
    mode = RuleMode.VALIDATE

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def prepare(self, context: RuleContext) -> None:
        load_duplicate_orders(context, self.logger, "flagging")

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        collector = ViolationCollector()
        collector.add(check_identifier(record, 'user'))
        collector.add(check_identifier(record, 'order'))
        collector.add(check_required_string(record, 'invoiceNumber'))
        for field in ('amountMinor', 'paidTotalMinor', 'balanceDueMinor'):
            collector.add(check_number(record, field, integer=True, minimum=0))

        amount_minor = record.get('amountMinor')
        paid_total_minor = record.get('paidTotalMinor')
        if is_valid_integer(amount_minor) and is_valid_integer(paid_total_minor):
            expected_balance = max(0, amount_minor - paid_total_minor)
            if not DocumentUtils.values_equal(record.get('balanceDueMinor'), expected_balance):
                collector.error('balanceDueMinor',
                                "balanceDueMinor does not match amountMinor - paidTotalMinor.")
            if record.get('paymentStatus') != compute_payment_status(amount_minor, paid_total_minor):
                collector.error('paymentStatus',
                                "paymentStatus does not match amountMinor/paidTotalMinor.")

        collector.add(check_enum(record, 'paymentStatus', PAYMENT_STATUS_VALUES))
        collector.add(check_enum(record, 'status', STATUS_VALUES))
        if check_required_string(record, 'currency') is not None:
            collector.error('currency', "currency must be a non-empty string.")
        collector.add(check_number(record, 'minorUnitFactor', integer=True, minimum=1))
        collector.add(check_date(record, 'dueDate', required=True))

        for field in LEGACY_FIELDS:
            collector.add(check_absent(record, field, "invoices"))

        if record.get('order') and is_duplicate_invoice(record, context):
            collector.error('order', "duplicate invoice for order detected.")
        return self.verdict(collector.violations)
