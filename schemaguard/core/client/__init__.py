from .base import (
    FALSE_FILTER,
    TRUE_FILTER,
    Creator,
    DataClient,
    Deleter,
    Reader,
    Record,
    Transactional,
    Updater,
    and_filters,
    is_false_filter,
    is_true_filter,
    not_filter,
    or_filters,
)
from .memory import InMemoryClient
from .where import WhereMatcher

__all__ = [
    "Creator",
    "DataClient",
    "Deleter",
    "FALSE_FILTER",
    "InMemoryClient",
    "Reader",
    "Record",
    "TRUE_FILTER",
    "Transactional",
    "Updater",
    "WhereMatcher",
    "and_filters",
    "is_false_filter",
    "is_true_filter",
    "not_filter",
    "or_filters",
]
