"""Serialization utilities for Q-table exchange.

Tables travel as JSON documents:

    {"version": "1.0", "timestamp": "...", "model": {key: [q, ...]},
     "metadata": {"totalStates": n, "actionSpace": k, ...}}

Neither direction raises. A failure is logged and returns None, so
callers must check the result before use.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np

from ..tables import QTable, copy_table

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"


def _to_jsonable(obj: Any) -> Any:
    """Recursively convert numpy types for JSON."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.floating,)):
        return float(obj)
    if isinstance(obj, (np.bool_,)):
        return bool(obj)
    if isinstance(obj, dict):
        return {str(k): _to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_jsonable(v) for v in obj]
    return obj


def build_payload(
    model: Mapping[str, Sequence[float]],
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Wrap a table in the versioned checkpoint envelope."""
    model_json = {str(k): [float(x) for x in np.asarray(v).reshape(-1)] for k, v in model.items()}
    first_row = next(iter(model_json.values()), [])
    return {
        "version": FORMAT_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "model": model_json,
        "metadata": {
            "totalStates": len(model_json),
            "actionSpace": len(first_row),
            **_to_jsonable(metadata or {}),
        },
    }


def serialize_model(
    model: Mapping[str, Sequence[float]],
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Serialize a Q-table and metadata to a JSON string.

    Args:
        model: State key to action-value vector.
        metadata: Extra fields merged into the metadata block.

    Returns:
        JSON text, or None if the table could not be encoded.

    Example:
        >>> text = serialize_model({"0,0": [1.0, 0.0]})
        >>> json.loads(text)["metadata"]["totalStates"]
        1
    """
    try:
        return json.dumps(build_payload(model, metadata))
    except (TypeError, ValueError) as exc:
        logger.error("Failed to serialize model: %s", exc)
        return None


def parse_payload(data: Any) -> Optional[Dict[str, Any]]:
    """Validate a decoded payload and convert its table to arrays.

    Returns:
        Dict with "version", "timestamp", "model" (QTable) and "metadata",
        or None if the payload is not a checkpoint.
    """
    if not isinstance(data, dict):
        logger.error("Invalid model payload: expected an object")
        return None
    if "model" not in data or not data.get("version"):
        logger.error("Invalid model payload: missing 'model' or 'version'")
        return None
    if not isinstance(data["model"], dict):
        logger.error("Invalid model payload: 'model' must be an object")
        return None
    try:
        model: QTable = copy_table(data["model"])
    except (TypeError, ValueError) as exc:
        logger.error("Invalid model payload: %s", exc)
        return None
    metadata = data.get("metadata") or {}
    return {
        "version": data["version"],
        "timestamp": data.get("timestamp"),
        "model": model,
        "metadata": dict(metadata) if isinstance(metadata, dict) else {},
    }


def deserialize_model(text: str) -> Optional[Dict[str, Any]]:
    """Parse JSON produced by :func:`serialize_model`.

    Returns:
        Parsed checkpoint dict, or None for malformed input.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as exc:
        logger.error("Failed to deserialize model: %s", exc)
        return None
    return parse_payload(data)
