"""
Serialization utilities for handling MongoDB ObjectId and other data types.
"""

from typing import Any, Dict
from bson import ObjectId
from datetime import datetime


def convert_objectid_to_str(obj: Any) -> Any:
    """
    Recursively convert ObjectId instances to strings in a data structure.

    Args:
        obj: The object to convert (dict, list, or any other type)

    Returns:
        The object with ObjectId instances converted to strings
    """
    if isinstance(obj, ObjectId):
        return str(obj)
    elif isinstance(obj, dict):
        return {key: convert_objectid_to_str(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [convert_objectid_to_str(item) for item in obj]
    elif isinstance(obj, datetime):
        return obj.isoformat()
    else:
        return obj


def prepare_certificate_document(document: Dict[str, Any]) -> Dict[str, Any]:
    """
    Prepare a raw certificate document for model validation.

    Renames ``_id`` to ``id`` and converts ObjectIds to strings,
    keeping datetimes as datetimes.
    """
    def _convert(value: Any) -> Any:
        if isinstance(value, ObjectId):
            return str(value)
        if isinstance(value, dict):
            return {k: _convert(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_convert(v) for v in value]
        return value

    prepared = _convert(dict(document))
    if "_id" in prepared:
        prepared["id"] = prepared.pop("_id")
    return prepared
