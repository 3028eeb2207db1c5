"""Loading of JSON reference datasets shipped with the validation service.

Field catalogues and sample ERP code lists are data, not code: they live
under ``resources/reference_data`` so new list-match fields or categories can
be added without touching the validation engine.  Datasets are read once per
process and cached by name.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_REFERENCE_CACHE: Dict[str, Dict[str, Any]] = {}
_CACHE_LOCK = threading.Lock()


def reference_base_path() -> Path:
    return Path(__file__).resolve().parent.parent / "resources" / "reference_data"


def load_reference_dataset(name: str, *, base_path: Optional[Path] = None) -> Dict[str, Any]:
    """Return the JSON object stored as ``{name}.json`` in the reference store.

    A missing file logs a warning and yields an empty dict; a file that is not
    valid JSON, or does not hold a JSON object, is logged and treated the same
    way.  Lookups against an explicit ``base_path`` are not cached.
    """

    key = str(name).strip()
    if not key:
        raise ValueError("reference dataset name must be a non-empty string")

    if base_path is None:
        with _CACHE_LOCK:
            cached = _REFERENCE_CACHE.get(key)
        if cached is not None:
            return cached

    path = (base_path or reference_base_path()) / f"{key}.json"

    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError:
        logger.warning("Reference dataset '%s' not found at %s", key, path)
        payload = {}
    except json.JSONDecodeError:
        logger.exception("Reference dataset '%s' could not be decoded", key)
        payload = {}

    if not isinstance(payload, dict):
        logger.warning("Reference dataset '%s' is not an object; using an empty dict", key)
        payload = {}

    if base_path is None:
        with _CACHE_LOCK:
            _REFERENCE_CACHE[key] = payload
    return payload


def clear_reference_cache() -> None:
    with _CACHE_LOCK:
        _REFERENCE_CACHE.clear()


__all__ = ["clear_reference_cache", "load_reference_dataset", "reference_base_path"]
