"""Registry of the built-in rule sets."""

from typing import Dict, List, Type

from ..exceptions import ConfigurationError
from ..validation.rule_set import RuleSet
from .categories import CategoriesMigrate, CategoriesValidate
from .invoices import InvoicesMigrate, InvoicesPaymentCache, InvoicesValidate
from .orders import OrdersMigrate, OrdersValidate
from .payments import PaymentsMigrate, PaymentsValidate
from .quotes import QuotesMigrate, QuotesValidate
from .users import UsersMigrate, UsersValidate


RULE_SETS: Dict[str, Type[RuleSet]] = {
    cls.name: cls for cls in (
        UsersMigrate, UsersValidate,
        PaymentsMigrate, PaymentsValidate,
        QuotesMigrate, QuotesValidate,
        InvoicesMigrate, InvoicesPaymentCache, InvoicesValidate,
        OrdersMigrate, OrdersValidate,
        CategoriesMigrate, CategoriesValidate,
    )
}


def get_rule_set(name: str) -> RuleSet:
    """
    Instantiate a rule set by name.

    Raises:
        ConfigurationError: If no rule set has that name
    """
    try:
        return RULE_SETS[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown rule set '{name}'. Available: {', '.join(sorted(RULE_SETS))}")


def list_rule_sets() -> List[RuleSet]:
    return [RULE_SETS[name]() for name in sorted(RULE_SETS)]


__all__ = ['RULE_SETS', 'get_rule_set', 'list_rule_sets']
