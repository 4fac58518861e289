"""User rule sets."""

from typing import Any, Dict

from ..models import Presence, RuleMode
from ..utils import DocumentUtils
from ..validation.primitives import (
    ViolationCollector, check_optional_type, check_pattern, check_required_string,
)
from ..validation.rule_set import Outcome, RuleContext, RuleSet


DEFAULT_APPROVAL_STATUS = "Pending"
DEFAULT_PHONE_NUMBER = "Unknown"

EMAIL_PATTERN = r'^\S+@\S+\.\S+$'


class UsersMigrate(RuleSet):
    name = "users-migrate"
    description = "Default blank approvalStatus and phoneNumber"
    collection = "users"
    entity = "User"
    mode = RuleMode.NORMALIZE

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        updates = {}
        if DocumentUtils.is_blank(record, 'approvalStatus'):
            updates['approvalStatus'] = DEFAULT_APPROVAL_STATUS
        if DocumentUtils.is_blank(record, 'phoneNumber'):
            updates['phoneNumber'] = DEFAULT_PHONE_NUMBER
        return self.build_update(record, updates)


class UsersValidate(RuleSet):
    name = "users-validate"
    description = "Check user documents against the account schema"
    collection = "users"
    entity = "User"
    mode = RuleMode.VALIDATE

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        collector = ViolationCollector()
        collector.add(check_required_string(record, 'name'))

        email = check_required_string(record, 'email')
        collector.add(email)
        if email is None:
            collector.add(check_pattern(record, 'email', EMAIL_PATTERN,
                                        "email must be a valid email address."))

        collector.add(check_required_string(record, 'password'))

        if DocumentUtils.presence(record, 'isAdmin') is Presence.PRESENT \
                and not isinstance(record.get('isAdmin'), bool):
            collector.error('isAdmin', "isAdmin must be a boolean.")

        collector.add(check_optional_type(record, 'phoneNumber', (str,), "string"))
        collector.add(check_optional_type(record, 'address', (str,), "string"))
        return self.verdict(collector.violations)
