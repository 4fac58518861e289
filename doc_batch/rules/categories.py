"""
Category rule sets.

categories-migrate derives a unique ``key`` per product type from the
category name, fills ``label`` from displayName/name, moves legacy image and
position fields to imageUrl/sort and strips filters/description.
categories-validate checks the result, including key uniqueness.
"""

import logging
import re

from typing import Any, Dict, Optional, Set

from ..models import RuleMode, Violation
from ..validation.primitives import (
    ViolationCollector, check_optional_type, check_required_string, is_valid_real,
)
from ..validation.rule_set import Outcome, RuleContext, RuleSet
from .duplicates import reference_key


PRODUCT_TYPES = ["Ribbon", "Creasing Matrix", "Double Face Tape"]
LEGACY_FIELDS = ["filters", "description"]

KEY_REGISTRY_KEY = "category_keys"
FIRST_KEY_OWNER_KEY = "category_key_owners"

_WHITESPACE = re.compile(r'\s+')


def sanitize_key(name: str) -> str:
    return _WHITESPACE.sub('-', name.strip().lower())


def _trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ''


def check_product_type(record: Dict[str, Any]) -> Optional[Violation]:
    product_type = record.get('productType')
    if not _trimmed(product_type):
        return Violation('productType', "productType is required.")
    if product_type not in PRODUCT_TYPES:
        return Violation('productType',
                         f"productType must be one of {', '.join(PRODUCT_TYPES)} (received {product_type}).")
    return None


class CategoryKeyRegistry:
    """
    Keys in use per product type, with the categories using each key.

    Seeded from the collection before streaming and kept current as keys are
    reassigned, so every generated key is unique within its product type.
    """

    def __init__(self):
        self._keys: Dict[str, Dict[str, Set[str]]] = {}

    def add(self, product_type: str, key: str, record_id: Any) -> None:
        self._keys.setdefault(product_type, {}).setdefault(key, set()).add(reference_key(record_id))

    def remove(self, product_type: str, key: str, record_id: Any) -> None:
        keys = self._keys.get(product_type)
        if not keys or key not in keys:
            return
        keys[key].discard(reference_key(record_id))
        if not keys[key]:
            del keys[key]
        if not keys:
            del self._keys[product_type]

    def is_taken(self, product_type: str, key: str, record_id: Any) -> bool:
        owners = self._keys.get(product_type, {}).get(key)
        if not owners:
            return False
        return owners != {reference_key(record_id)}

    def unique_key(self, product_type: str, base_key: str, record_id: Any) -> str:
        """base_key, or the first free ``base_key-N``."""
        candidate = base_key
        suffix = 1
        while self.is_taken(product_type, candidate, record_id):
            candidate = f"{base_key}-{suffix}"
            suffix += 1
        return candidate

    def __len__(self) -> int:
        return sum(len(keys) for keys in self._keys.values())


class CategoriesMigrate(RuleSet):
    name = "categories-migrate"
    description = "Derive unique keys and labels on categories; move legacy image/position fields"
    collection = "categories"
    entity = "Category"
    mode = RuleMode.NORMALIZE
    touch_field = "updatedAt"

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def prepare(self, context: RuleContext) -> None:
        registry = CategoryKeyRegistry()
        for category in context.store.stream(self.collection):
            product_type, key = _trimmed(category.get('productType')), _trimmed(category.get('key'))
            if product_type and key:
                registry.add(category.get('productType'), key, category.get('_id'))
        context.data[KEY_REGISTRY_KEY] = registry
        self.logger.info(f"Loaded {len(registry)} existing category keys")

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        registry = context.data.setdefault(KEY_REGISTRY_KEY, CategoryKeyRegistry())
        record_id = record.get('_id')
        collector = ViolationCollector()

        name = _trimmed(record.get('name'))
        current_key = _trimmed(record.get('key'))
        base_key = sanitize_key(name) if name else current_key
        if not base_key:
            collector.error('key', "name is required to generate key.")

        label = _trimmed(record.get('displayName')) or name or _trimmed(record.get('label'))
        if not label:
            collector.error('label', "label is required (displayName or name missing).")

        collector.add(check_product_type(record))
        if collector:
            return self.verdict(collector.violations)

        product_type = record['productType']
        key = registry.unique_key(product_type, base_key, record_id)
        if key != base_key:
            self.logger.warning(
                f"{self.entity} {record_id}: key conflict for {product_type}, adjusted {base_key} -> {key}.")
        if current_key and current_key != key:
            registry.remove(product_type, current_key, record_id)
        registry.add(product_type, key, record_id)

        set_fields: Dict[str, Any] = {'key': key, 'label': label}
        image_url = _trimmed(record.get('imageUrl')) or _trimmed(record.get('image'))
        if image_url:
            set_fields['imageUrl'] = image_url
        for field in ('sort', 'position'):
            if is_valid_real(record.get(field)):
                set_fields['sort'] = record[field]
                break

        return self.build_update(record, set_fields, unset=LEGACY_FIELDS)


class CategoriesValidate(RuleSet):
    name = "categories-validate"
    description = "Check category keys, labels and product types"
    collection = "categories"
    entity = "Category"
    mode = RuleMode.VALIDATE

    def prepare(self, context: RuleContext) -> None:
        owners: Dict[str, str] = {}
        for category in context.store.stream(self.collection):
            product_key = self._product_key(category)
            if product_key is not None:
                owners.setdefault(product_key, reference_key(category.get('_id')))
        context.data[FIRST_KEY_OWNER_KEY] = owners

    def evaluate(self, record: Dict[str, Any], context: RuleContext) -> Outcome:
        collector = ViolationCollector()
        collector.add(check_required_string(record, 'key'))
        collector.add(check_required_string(record, 'label'))
        collector.add(check_product_type(record))

        if record.get('imageUrl') is not None and not _trimmed(record.get('imageUrl')):
            collector.error('imageUrl', "imageUrl must be a non-empty string if set.")
        if record.get('sort') is not None and not is_valid_real(record.get('sort')):
            collector.error('sort', "sort must be a number if set.")
        collector.add(check_optional_type(record, 'isActive', (bool,), "boolean"))

        if any(record.get(field) is not None for field in LEGACY_FIELDS):
            collector.error('filters', "legacy fields (filters/description) must be removed.")

        product_key = self._product_key(record)
        if product_key is not None:
            owner = context.data.get(FIRST_KEY_OWNER_KEY, {}).get(product_key)
            if owner is not None and owner != reference_key(record.get('_id')):
                collector.error('key', f"duplicate key for productType+key (also used by {owner}).")
        return self.verdict(collector.violations)

    @staticmethod
    def _product_key(record: Dict[str, Any]) -> Optional[str]:
        if not _trimmed(record.get('productType')) or not _trimmed(record.get('key')):
            return None
        return f"{record['productType']}::{record['key']}"
