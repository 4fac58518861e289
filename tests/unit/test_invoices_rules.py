"""Unit tests for invoice rule sets."""

import pytest

from doc_batch.models import NoAction, Update
from doc_batch.rules.invoices import (
    DUPLICATE_CANCEL_REASON, PAYMENT_TOTALS_KEY, InvoicesMigrate, InvoicesPaymentCache, InvoicesValidate,
    compute_payment_status,
)


INVOICE_1 = "65a1f0c2b3d4e5f6a7b8c901"
INVOICE_2 = "65a1f0c2b3d4e5f6a7b8c902"
INVOICE_3 = "65a1f0c2b3d4e5f6a7b8c903"
ORDER_A = "65a1f0c2b3d4e5f6a7b8c9c1"
ORDER_B = "65a1f0c2b3d4e5f6a7b8c9c2"


@pytest.fixture
def payments(store):
    store.insert_many("payments", [
        {"_id": "p1", "invoice": INVOICE_1, "amountMinor": 300},
        {"_id": "p2", "invoice": {"$oid": INVOICE_1}, "amountMinor": 200},
        {"_id": "p3", "invoice": INVOICE_2, "amountMinor": 50},
    ])
    return store


def valid_invoice(**overrides):
    doc = {
        "_id": INVOICE_1,
        "user": "65a1f0c2b3d4e5f6a7b8c9aa",
        "order": "65a1f0c2b3d4e5f6a7b8c9cc",
        "invoiceNumber": "INV-0001",
        "amountMinor": 1000,
        "paidTotalMinor": 400,
        "balanceDueMinor": 600,
        "paymentStatus": "PartiallyPaid",
        "status": "Issued",
        "currency": "JOD",
        "minorUnitFactor": 1000,
        "dueDate": "2024-04-01T00:00:00.000Z",
    }
    doc.update(overrides)
    return doc


@pytest.mark.parametrize("amount,paid,expected", [
    (1000, 0, "Unpaid"), (1000, 400, "PartiallyPaid"), (1000, 1000, "Paid"),
    (1000, 1500, "Paid"), (0, 0, "Unpaid"), (None, 10, "Paid"),
])
def test_compute_payment_status(amount, paid, expected):
    assert compute_payment_status(amount, paid) == expected


class TestInvoicesPaymentCache:

    def test_prepare_sums_payments_per_invoice(self, payments, context):
        InvoicesPaymentCache().prepare(context)
        assert context.data[PAYMENT_TOTALS_KEY] == {INVOICE_1: 500, INVOICE_2: 50}

    @pytest.mark.parametrize("invoice_id,amount,expected", [
        (INVOICE_1, 500, {"paidTotalMinor": 500, "balanceDueMinor": 0, "paymentStatus": "Paid"}),
        (INVOICE_2, 100, {"paidTotalMinor": 50, "balanceDueMinor": 50, "paymentStatus": "PartiallyPaid"}),
        (INVOICE_3, 1000, {"paidTotalMinor": 0, "balanceDueMinor": 1000, "paymentStatus": "Unpaid"}),
    ])
    def test_cache_fields_recomputed(self, payments, context, invoice_id, amount, expected):
        rules = InvoicesPaymentCache()
        rules.prepare(context)

        outcome = rules.apply({"_id": invoice_id, "amountMinor": amount}, context)

        assert isinstance(outcome, Update)
        assert outcome.intent.fields == expected

    def test_current_cache_is_no_action(self, payments, context):
        rules = InvoicesPaymentCache()
        rules.prepare(context)
        invoice = {"_id": INVOICE_2, "amountMinor": 100, "paidTotalMinor": 50,
                   "balanceDueMinor": 50, "paymentStatus": "PartiallyPaid"}
        assert rules.apply(invoice, context) == NoAction()

    @pytest.mark.parametrize("amount,expected", [
        (None, {"paidTotalMinor": 500, "balanceDueMinor": 0, "paymentStatus": "Paid"}),
        (-5, {"paidTotalMinor": 500, "balanceDueMinor": 0, "paymentStatus": "Paid"}),
        ("700", {"paidTotalMinor": 500, "balanceDueMinor": 200, "paymentStatus": "PartiallyPaid"}),
    ])
    def test_unusable_amount_counts_as_zero(self, payments, context, amount, expected):
        rules = InvoicesPaymentCache()
        rules.prepare(context)

        outcome = rules.apply({"_id": INVOICE_1, "amountMinor": amount}, context)

        assert isinstance(outcome, Update)
        assert outcome.intent.fields == expected


class TestInvoicesValidate:

    def test_valid_invoice(self, context):
        assert InvoicesValidate().apply(valid_invoice(), context) == NoAction()

    def test_cache_mismatch_and_legacy_fields(self, context):
        outcome = InvoicesValidate().apply(
            valid_invoice(balanceDueMinor=500, paymentStatus="Paid", currency="", amountPaid=400), context)
        assert outcome.messages == [
            "balanceDueMinor does not match amountMinor - paidTotalMinor.",
            "paymentStatus does not match amountMinor/paidTotalMinor.",
            "currency must be a non-empty string.",
            "amountPaid must be removed from invoices.",
        ]

    def test_shape_errors(self, context):
        invoice = valid_invoice(order=None, minorUnitFactor=0, status="Draft")
        del invoice["dueDate"]

        outcome = InvoicesValidate().apply(invoice, context)

        assert outcome.messages == [
            "order is required.",
            "status must be one of Issued, Cancelled.",
            "minorUnitFactor must be an integer >= 1.",
            "dueDate is required and must be a valid date.",
        ]


@pytest.fixture
def duplicated_orders(store):
    store.insert_many("invoices", [
        valid_invoice(_id=INVOICE_2, order=ORDER_A, createdAt="2024-01-05T00:00:00Z"),
        valid_invoice(_id=INVOICE_1, order=ORDER_A, createdAt="2024-01-01T00:00:00Z"),
        valid_invoice(_id=INVOICE_3, order=ORDER_B, createdAt="2024-01-02T00:00:00Z"),
    ])
    return store


class TestInvoicesMigrate:

    def test_legacy_invoice_normalized(self, context):
        invoice = {
            "_id": INVOICE_1, "order": ORDER_A, "status": "Draft", "currency": " jod ",
            "amountDue": 12.5, "amountPaid": 2, "payments": [{"amount": 2}],
            "createdAt": "2024-01-10T00:00:00Z",
        }

        outcome = InvoicesMigrate().apply(invoice, context)

        assert isinstance(outcome, Update)
        assert outcome.intent.fields == {
            "amountMinor": 1250,
            "currency": "JOD",
            "minorUnitFactor": 100,
            "paidTotalMinor": 200,
            "balanceDueMinor": 1050,
            "paymentStatus": "PartiallyPaid",
            "status": "Issued",
            "dueDate": "2024-02-09T00:00:00.000Z",
        }
        assert outcome.intent.unset == ("payments", "amountDue", "amountPaid")

    def test_order_is_required(self, context):
        outcome = InvoicesMigrate().apply({"_id": INVOICE_1, "amountMinor": 100}, context)
        assert outcome.messages == ["order is required."]

    def test_missing_due_date_without_created_at_uses_run_time(self, context):
        outcome = InvoicesMigrate().apply({"_id": INVOICE_1, "order": ORDER_A}, context)
        assert outcome.intent.fields["dueDate"] == "2024-04-04T12:00:00.000Z"
        assert outcome.intent.fields["currency"] == "AED"

    def test_later_duplicate_is_cancelled(self, duplicated_orders, context):
        rules = InvoicesMigrate()
        rules.prepare(context)

        kept = rules.apply(duplicated_orders.get("invoices", INVOICE_1), context)
        dropped = rules.apply(duplicated_orders.get("invoices", INVOICE_2), context)
        alone = rules.apply(duplicated_orders.get("invoices", INVOICE_3), context)

        assert kept == NoAction()
        assert alone == NoAction()
        assert dropped.intent.fields["status"] == "Cancelled"
        assert dropped.intent.fields["cancelledAt"] == "2024-03-05T12:00:00.000Z"
        assert dropped.intent.fields["cancelReason"] == DUPLICATE_CANCEL_REASON

    def test_second_pass_is_no_action(self, store, context):
        store.insert_many("invoices", [{"_id": INVOICE_1, "order": ORDER_A, "amountDue": 10, "paidAt": "x"}])
        rules = InvoicesMigrate()
        rules.prepare(context)
        store.bulk_mutate("invoices", [rules.apply(store.get("invoices", INVOICE_1), context).intent])

        assert rules.apply(store.get("invoices", INVOICE_1), context) == NoAction()


class TestInvoicesValidateDuplicates:

    def test_only_the_earliest_invoice_of_an_order_passes(self, duplicated_orders, context):
        rules = InvoicesValidate()
        rules.prepare(context)

        assert rules.apply(duplicated_orders.get("invoices", INVOICE_1), context) == NoAction()
        assert rules.apply(duplicated_orders.get("invoices", INVOICE_3), context) == NoAction()
        outcome = rules.apply(duplicated_orders.get("invoices", INVOICE_2), context)
        assert outcome.messages == ["duplicate invoice for order detected."]
