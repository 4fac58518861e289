"""
Unit tests for payment rule sets.

Invoice lookups go through an InMemoryDocumentStore so the lookup cache and
projection are exercised as in a real run.
"""

import pytest

from doc_batch.models import Invalid, NoAction, Update
from doc_batch.rules.payments import PaymentsMigrate, PaymentsValidate


USER = "65a1f0c2b3d4e5f6a7b8c9d0"
OTHER_USER = "65a1f0c2b3d4e5f6a7b8c9ff"
INVOICE = "65a1f0c2b3d4e5f6a7b8c901"
CANCELLED_INVOICE = "65a1f0c2b3d4e5f6a7b8c902"
DRAFT_INVOICE = "65a1f0c2b3d4e5f6a7b8c903"


@pytest.fixture
def invoices(store):
    store.insert_many("invoices", [
        {"_id": INVOICE, "user": USER, "status": "Issued", "amountMinor": 10000, "invoiceNumber": "INV-1"},
        {"_id": CANCELLED_INVOICE, "user": USER, "status": "Cancelled", "amountMinor": 500},
        {"_id": DRAFT_INVOICE, "user": USER, "status": "Draft", "amountMinor": 500},
    ])
    return store


def payment(**overrides):
    doc = {"_id": "65a1f0c2b3d4e5f6a7b8ca00", "invoice": INVOICE, "user": USER,
           "amountMinor": 500, "receivedBy": "Azad"}
    doc.update(overrides)
    return doc


class TestPaymentsValidate:

    def test_conforming_payment_passes(self, invoices, context):
        """A mirrored legacy status does not fail validation."""
        outcome = PaymentsValidate().apply(payment(status="Issued"), context)
        assert outcome == NoAction()

    def test_unknown_receiver(self, invoices, context):
        outcome = PaymentsValidate().apply(payment(receivedBy="Bob"), context)
        assert isinstance(outcome, Invalid)
        assert outcome.messages == [
            "receivedBy must be one of Azad, Momani, Company Account, Ahmad Emad, Unknown."]

    def test_invoice_lookup_failures(self, invoices, context):
        missing = PaymentsValidate().apply(payment(invoice="0" * 24), context)
        assert missing.messages == ["invoice not found."]

        cancelled = PaymentsValidate().apply(payment(invoice=CANCELLED_INVOICE), context)
        assert cancelled.messages == ["Invoice is Cancelled", "invoice status must be Issued."]

    def test_user_must_match_invoice(self, invoices, context):
        outcome = PaymentsValidate().apply(payment(user=OTHER_USER), context)
        assert outcome.messages == ["payment user must match invoice user."]

    def test_shape_errors_in_order(self, invoices, context):
        outcome = PaymentsValidate().apply(
            payment(invoice="bad", user=None, amountMinor=2.5, amount=2.5, paidTo="Azad"), context)
        assert outcome.messages == [
            "invoice is required.",
            "user is required.",
            "amountMinor must be an integer >= 1.",
            "invoice not found.",
            "amount must be removed from payments.",
            "paidTo must be removed from payments.",
        ]

    def test_invoice_fetched_once_for_many_payments(self, invoices, context):
        rules = PaymentsValidate()
        for _ in range(5):
            rules.apply(payment(), context)
        assert invoices.fetch_count == 1


class TestPaymentsMigrate:

    def test_legacy_payment_is_back_filled(self, invoices, context):
        record = {"_id": "p1", "invoice": INVOICE, "amount": 12.34, "paidTo": "Momani", "status": "Paid"}

        outcome = PaymentsMigrate().apply(record, context)

        assert isinstance(outcome, Update)
        assert outcome.intent.fields == {"amountMinor": 1234, "receivedBy": "Momani", "user": USER}
        assert set(outcome.intent.unset) == {"amount", "paidTo", "status"}

    def test_unknown_payee_recorded_in_note(self, invoices, context):
        record = {"_id": "p1", "invoice": INVOICE, "amountMinor": 700, "paidTo": "Bob", "note": "cash"}

        outcome = PaymentsMigrate().apply(record, context)

        assert outcome.intent.fields["receivedBy"] == "Unknown"
        assert outcome.intent.fields["note"] == "cash | Original paidTo: Bob"

    def test_note_not_duplicated(self, invoices, context):
        record = {"_id": "p1", "invoice": INVOICE, "amountMinor": 700, "receivedBy": "Ghost",
                  "paidTo": "Bob", "note": "Original paidTo: Bob"}

        outcome = PaymentsMigrate().apply(record, context)

        assert outcome.intent.fields["note"] == "Original paidTo: Bob"

    def test_tiny_amount_rounds_up_to_one(self, invoices, context):
        outcome = PaymentsMigrate().apply({"_id": "p1", "invoice": INVOICE, "amount": "0.001"}, context)
        assert outcome.intent.fields["amountMinor"] == 1

    def test_migrated_payment_is_no_action(self, invoices, context):
        outcome = PaymentsMigrate().apply(payment(), context)
        assert outcome == NoAction()

    def test_invalid_amount(self, invoices, context):
        outcome = PaymentsMigrate().apply({"_id": "p1", "invoice": INVOICE, "amount": "n/a",
                                           "receivedBy": "Azad"}, context)
        assert outcome.messages == ["amount is invalid."]

    def test_missing_invoice_stops_evaluation(self, invoices, context):
        outcome = PaymentsMigrate().apply({"_id": "p1", "amount": "n/a"}, context)
        assert outcome.messages == ["invoice is required.", "invoice not found."]

    def test_cancelled_invoice_stops_evaluation(self, invoices, context):
        outcome = PaymentsMigrate().apply(payment(invoice=CANCELLED_INVOICE, amountMinor=None), context)
        assert outcome.messages == ["Invoice is Cancelled"]

    def test_non_issued_invoice_fails(self, invoices, context):
        outcome = PaymentsMigrate().apply(payment(invoice=DRAFT_INVOICE), context)
        assert outcome.messages == ["invoice status must be Issued."]

    def test_declares_follow_up_and_touch_field(self):
        rules = PaymentsMigrate()
        assert rules.follow_up == "invoices-payment-cache"
        assert rules.touch_field == "updatedAt"
