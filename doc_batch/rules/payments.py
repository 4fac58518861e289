"""
Payment rule sets.

payments-migrate back-fills integer minor amounts, the receiving account and
the owning user from the referenced invoice, and strips legacy fields.
payments-validate checks the migrated shape against its invoice.
"""

from typing import Any, Dict

from ..models import RuleMode
from ..utils import NumberUtils
from ..validation.primitives import (
    ViolationCollector, check_absent, check_enum, check_identifier, check_matches, check_number,
    identifier_key, is_valid_integer,
)
from ..validation.rule_set import Outcome, RuleContext, RuleSet


RECEIVED_BY_OPTIONS = ["Azad", "Momani", "Company Account", "Ahmad Emad", "Unknown"]
FALLBACK_RECEIVED_BY = "Unknown"

# Fields dropped by the migration
LEGACY_FIELDS = ["amount", "paidTo", "status"]
# Fields the validator rejects; a mirrored status is tolerated
DEPRECATED_FIELDS = ["amount", "paidTo"]

INVOICE_FIELDS = ("user", "status", "amountMinor")


def check_invoice(collector: ViolationCollector, invoice: Dict[str, Any]) -> bool:
    """Shared invoice-state checks. Returns False when evaluation must stop."""
    if invoice is None:
        collector.error('invoice', "invoice not found.")
        return False
    if invoice.get('status') == "Cancelled":
        collector.error('invoice', "Invoice is Cancelled")
        return False
    if invoice.get('status') != "Issued":
        collector.error('invoice', "invoice status must be Issued.")
    return True


class PaymentsMigrate(RuleSet):
    name = "payments-migrate"
    description = "Back-fill amountMinor, receivedBy and user; strip legacy payment fields"
    collection = "payments"
    entity = "Payment"
    mode = RuleMode.NORMALIZE
    touch_field = "updatedAt"
    follow_up = "invoices-payment-cache"

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        collector = ViolationCollector()

        if identifier_key(record.get('invoice')) is None:
            collector.error('invoice', "invoice is required.")
        invoice = context.resolve('invoices', record.get('invoice'), INVOICE_FIELDS)
        if not check_invoice(collector, invoice):
            return self.verdict(collector.violations)

        amount_minor = record.get('amountMinor')
        if not (is_valid_integer(amount_minor) and amount_minor >= 1):
            amount = NumberUtils.to_finite(record.get('amount'))
            if amount is None:
                collector.error('amount', "amount is invalid.")
            else:
                amount_minor = max(1, NumberUtils.round_half_up(amount * 100))

        received_by, note = self._received_by(record)
        if received_by not in RECEIVED_BY_OPTIONS:
            collector.error('receivedBy', "receivedBy is invalid.")

        if collector:
            return self.verdict(collector.violations)

        set_fields = {
            'amountMinor': NumberUtils.tidy(amount_minor),
            'receivedBy': received_by,
            'user': invoice.get('user'),
        }
        if note:
            set_fields['note'] = note
        return self.build_update(record, set_fields, unset=LEGACY_FIELDS)

    @staticmethod
    def _received_by(record: Dict[str, Any]):
        """Resolve receivedBy from the record or legacy paidTo, keeping a note of unknown payees."""
        received_by = record.get('receivedBy')
        paid_to = record.get('paidTo').strip() if isinstance(record.get('paidTo'), str) else ''
        note = record.get('note').strip() if isinstance(record.get('note'), str) else ''

        if received_by not in RECEIVED_BY_OPTIONS:
            if paid_to in RECEIVED_BY_OPTIONS:
                received_by = paid_to
            else:
                received_by = FALLBACK_RECEIVED_BY
                if paid_to:
                    legacy_note = f"Original paidTo: {paid_to}"
                    if legacy_note not in note:
                        note = f"{note} | {legacy_note}" if note else legacy_note
        return received_by, note


class PaymentsValidate(RuleSet):
    name = "payments-validate"
    description = "Check migrated payments against their invoices"
    collection = "payments"
    entity = "Payment"
    mode = RuleMode.VALIDATE

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        collector = ViolationCollector()
        collector.add(check_identifier(record, 'invoice'))
        collector.add(check_identifier(record, 'user'))
        collector.add(check_number(record, 'amountMinor', integer=True, minimum=1))
        collector.add(check_enum(record, 'receivedBy', RECEIVED_BY_OPTIONS))

        invoice = context.resolve('invoices', record.get('invoice'), INVOICE_FIELDS)
        if invoice is None:
            collector.error('invoice', "invoice not found.")
        else:
            if invoice.get('status') == "Cancelled":
                collector.error('invoice', "Invoice is Cancelled")
            if invoice.get('status') != "Issued":
                collector.error('invoice', "invoice status must be Issued.")
            collector.add(check_matches('user', record.get('user'), invoice.get('user'),
                                        "payment user must match invoice user."))

        for field in DEPRECATED_FIELDS:
            collector.add(check_absent(record, field, "payments"))
        return self.verdict(collector.violations)
