"""Unit tests for user rule sets."""

from unittest.mock import Mock

from doc_batch.models import BulkMutationResult, NoAction, RunTally, Update
from doc_batch.processing.batch_accumulator import BatchAccumulator
from doc_batch.rules.users import UsersMigrate, UsersValidate


def valid_user(**overrides):
    doc = {"_id": "u1", "name": "Ada", "email": "ada@example.com", "password": "hash",
           "isAdmin": False, "phoneNumber": "555-0100", "address": "1 Main St"}
    doc.update(overrides)
    return doc


class TestUsersMigrate:

    def test_missing_fields_defaulted(self, context):
        outcome = UsersMigrate().apply({"_id": "u1", "name": "Ada"}, context)

        assert isinstance(outcome, Update)
        assert outcome.intent.fields == {"phoneNumber": "Unknown", "approvalStatus": "Pending"}
        assert outcome.intent.unset == ()

    def test_update_counts_once_flushed(self, context):
        store = Mock()
        store.bulk_mutate.return_value = BulkMutationResult(matched_count=1, modified_count=1)
        tally = RunTally(scanned=1)
        accumulator = BatchAccumulator(store, "users", tally)

        accumulator.add(UsersMigrate().apply({"_id": "u1"}, context).intent)
        assert tally.updated == 0
        accumulator.flush()

        assert tally.updated == 1
        assert tally.is_balanced()

    def test_empty_and_null_count_as_blank(self, context):
        outcome = UsersMigrate().apply({"_id": "u1", "approvalStatus": "", "phoneNumber": None}, context)
        assert outcome.intent.fields == {"approvalStatus": "Pending", "phoneNumber": "Unknown"}

    def test_only_blank_fields_are_set(self, context):
        outcome = UsersMigrate().apply({"_id": "u1", "approvalStatus": "Approved"}, context)
        assert outcome.intent.fields == {"phoneNumber": "Unknown"}

    def test_second_pass_is_no_action(self, store, context):
        store.insert_many("users", [{"_id": "u1", "name": "Ada"}])
        rules = UsersMigrate()
        first = rules.apply(store.get("users", "u1"), context)
        store.bulk_mutate("users", [first.intent])

        assert rules.apply(store.get("users", "u1"), context) == NoAction()


class TestUsersValidate:

    def test_valid_user(self, context):
        assert UsersValidate().apply(valid_user(), context) == NoAction()

    def test_optional_fields_may_be_absent(self, context):
        user = valid_user()
        del user["phoneNumber"], user["address"], user["isAdmin"]
        assert UsersValidate().apply(user, context) == NoAction()

    def test_all_messages(self, context):
        outcome = UsersValidate().apply(
            {"_id": "u1", "name": "", "email": "not-an-email", "isAdmin": "yes",
             "phoneNumber": 5551234, "address": ["x"]}, context)

        assert outcome.messages == [
            "name is required.",
            "email must be a valid email address.",
            "password is required.",
            "isAdmin must be a boolean.",
            "phoneNumber must be a string if set.",
            "address must be a string if set.",
        ]

    def test_missing_email_reports_required_only(self, context):
        outcome = UsersValidate().apply(valid_user(email=None), context)
        assert outcome.messages == ["email is required."]
