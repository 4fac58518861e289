"""Unit tests for the rule set registry."""

import pytest

from doc_batch.exceptions import ConfigurationError
from doc_batch.models import RuleMode
from doc_batch.rules import RULE_SETS, get_rule_set, list_rule_sets
from doc_batch.rules.payments import PaymentsMigrate


def test_lookup_by_name():
    assert isinstance(get_rule_set("payments-migrate"), PaymentsMigrate)


def test_unknown_name_lists_available():
    with pytest.raises(ConfigurationError) as exc_info:
        get_rule_set("products-migrate")
    assert "products-migrate" in str(exc_info.value)
    assert "users-validate" in str(exc_info.value)


def test_every_rule_set_is_fully_declared():
    for name, cls in RULE_SETS.items():
        rule_set = cls()
        assert rule_set.name == name
        assert rule_set.collection
        assert isinstance(rule_set.mode, RuleMode)
        if rule_set.follow_up:
            assert rule_set.follow_up in RULE_SETS


def test_list_is_sorted():
    names = [r.name for r in list_rule_sets()]
    assert names == sorted(names)
    assert len(names) == 13
