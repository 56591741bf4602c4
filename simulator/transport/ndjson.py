from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict


def _default(obj: Any) -> Any:
    """
    JSON fallback for values the standard encoder does not handle.

    Datetimes become ISO-8601 strings; enums their value.
    """
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "value"):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def encode_record(record: Dict[str, Any]) -> str:
    """
    Encode one ingestion record into a JSON string (NDJSON payload).

    The caller is responsible for appending a trailing newline.

    Parameters
    ----------
    record
        Pod reading record as produced by the simulator engine.

    Returns
    -------
    str
        JSON string representing the record.

    Raises
    ------
    TypeError
        If the record is not a mapping or holds unserializable values.
    """
    if not isinstance(record, dict):
        raise TypeError(f"Unsupported record type: {type(record)}")
    return json.dumps(record, default=_default)
