"""
Boundary adapter for the stored subscription field.

Historical user documents hold the `subscription` field in three shapes:
- an ordered list of records (current format)
- a sparse mapping keyed by list indices ({"0": {...}, "2": {...}}), left
  behind by field-path updates against array elements
- a single legacy record ({"plan": ..., "endDate": ...})

normalize_subscriptions() folds all of them into the canonical ordered list
once, where the data enters the system. Everything downstream (resolver,
monitor, gates) only accepts List[SubscriptionRecord].
"""

from typing import Any, List, Mapping

from entitlement.models import SubscriptionRecord
from utils.logger import logger


def normalize_subscriptions(raw: Any) -> List[SubscriptionRecord]:
    """
    Convert a stored `subscription` value into an ordered record list.

    Args:
        raw: The field value as read from the user document (may be None)

    Returns:
        List of SubscriptionRecord in stored order. Unknown shapes and
        non-mapping entries are dropped rather than raising.
    """
    if not raw:
        return []

    if isinstance(raw, (list, tuple)):
        entries = list(raw)
    elif isinstance(raw, Mapping):
        entries = _entries_from_mapping(raw)
    else:
        logger.debug(f"Ignoring subscription field of type {type(raw).__name__}")
        return []

    records = []
    for entry in entries:
        if isinstance(entry, SubscriptionRecord):
            records.append(entry)
        elif isinstance(entry, Mapping):
            records.append(SubscriptionRecord.from_dict(entry))
    return records


def _entries_from_mapping(raw: Mapping) -> list:
    indexed = []
    for key, value in raw.items():
        index = _as_index(key)
        if index is not None:
            indexed.append((index, value))

    if indexed:
        logger.debug(f"Normalizing index-keyed subscription mapping ({len(indexed)} entries)")
        indexed.sort(key=lambda item: item[0])
        return [value for _, value in indexed]

    if raw.get("plan") or raw.get("endDate"):
        logger.debug("Normalizing legacy single-record subscription")
        return [raw]

    return []


def _as_index(key: Any):
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, str):
        try:
            return int(key.strip())
        except ValueError:
            return None
    return None
