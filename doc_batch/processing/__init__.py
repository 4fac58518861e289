"""
Processing module for batch document runs.

StreamProcessor and RunCoordinator are imported from their own submodules.
"""

from .batch_accumulator import BatchAccumulator
from .lookup_cache import ABSENT, LookupCache

__all__ = [
    'ABSENT',
    'BatchAccumulator',
    'LookupCache'
]
