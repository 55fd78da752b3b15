"""
Input validation for admin operations.
"""
import re
from typing import Tuple

# shard.realm.num, e.g. 0.0.12345
ENTITY_ID_PATTERN = re.compile(r'^\d+\.\d+\.\d+$')


def is_valid_entity_id(entity_id: str) -> Tuple[bool, str]:
    """Validate an account or collection id.

    Args:
        entity_id: Id in shard.realm.num form (e.g., "0.0.1001")

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not entity_id:
        return False, "Id is required"

    if not isinstance(entity_id, str):
        return False, "Id must be a string"

    if not ENTITY_ID_PATTERN.match(entity_id):
        return False, f"Invalid id format: {entity_id!r} (expected: shard.realm.num)"

    return True, ""


def is_valid_serial(serial: int) -> Tuple[bool, str]:
    """Validate a unit serial number (positive integer)."""
    if isinstance(serial, bool) or not isinstance(serial, int):
        return False, "Serial must be an integer"

    if serial < 1:
        return False, "Serial must be at least 1"

    return True, ""
