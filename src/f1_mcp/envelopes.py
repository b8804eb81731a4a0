"""Decoding of upstream response shapes.

Ergast-compatible responses nest the useful list several levels deep::

    {"MRData": {"RaceTable": {"season": "2023", "Races": [...]}}}

OpenF1 returns bare arrays. Both are checked here so that a malformed body
fails loudly with a parse error instead of surfacing as ``None`` further up.
"""
from typing import Any, Dict, List, Optional, Tuple

from f1_mcp.errors import not_found_error, parse_error

# Path from the root of an Ergast response to the result list, per result kind
ERGAST_PATHS: Dict[str, Tuple[str, ...]] = {
    "races": ("MRData", "RaceTable", "Races"),
    "standings": ("MRData", "StandingsTable", "StandingsLists"),
    "circuits": ("MRData", "CircuitTable", "Circuits"),
    "seasons": ("MRData", "SeasonTable", "Seasons"),
    "drivers": ("MRData", "DriverTable", "Drivers"),
    "constructors": ("MRData", "ConstructorTable", "Constructors"),
}


def unwrap_list(payload: Any, kind: str, label: str) -> List[Any]:
    """
    Walk an Ergast envelope down to its result list.

    Args:
        payload: Decoded JSON body
        kind: Key of ERGAST_PATHS
        label: Operation label for errors

    Returns:
        The result list (possibly empty)

    Raises:
        UpstreamPayloadError: If any level is missing or of the wrong type
    """
    node = payload
    walked = []
    for key in ERGAST_PATHS[kind]:
        walked.append(key)
        if not isinstance(node, dict) or key not in node:
            raise parse_error(label, f"missing {'.'.join(walked)}")
        node = node[key]

    if not isinstance(node, list):
        raise parse_error(label, f"{'.'.join(walked)} is not a list")
    return node


def unwrap_first(payload: Any, kind: str, label: str, query: str) -> Dict[str, Any]:
    """
    Return the first record of an Ergast result list.

    Raises:
        ResultNotFoundError: If the list is empty
        UpstreamPayloadError: If the envelope is malformed
    """
    items = unwrap_list(payload, kind, label)
    if not items:
        raise not_found_error(label, query)
    return items[0]


def first_or_none(payload: Any, kind: str, label: str) -> Optional[Dict[str, Any]]:
    """Return the first record of an Ergast result list, or None when empty."""
    items = unwrap_list(payload, kind, label)
    return items[0] if items else None


def expect_list(payload: Any, label: str) -> List[Any]:
    """Check that an OpenF1 response is a bare JSON array."""
    if not isinstance(payload, list):
        raise parse_error(label, f"expected a JSON array, got {type(payload).__name__}")
    return payload


def expect_object(payload: Any, label: str) -> Dict[str, Any]:
    """
    Check that an OpenF1 response is a single JSON object.

    Some OpenF1 endpoints answer with a one-element array; that element is
    returned. An empty array yields an empty dict.
    """
    if isinstance(payload, list):
        if not payload:
            return {}
        payload = payload[0]
    if not isinstance(payload, dict):
        raise parse_error(label, f"expected a JSON object, got {type(payload).__name__}")
    return payload
