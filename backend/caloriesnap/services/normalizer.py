"""
CalorieSnap Backend: Webhook Response Normalizer
=================================================

What:  Extracts the nutrition payload from the webhook's JSON response.
How:   An ordered list of extraction strategies; each is a pure function
       returning the payload or None. The first non-None result wins.

The n8n workflow has wrapped its answer in three ways over time:

    [{"output": {...}}]                     → array-wrapped
    {"output": {...}}                       → object-wrapped
    {"status": ..., "food": ..., "total": ...}  → direct

Strategies are tried in exactly that order.
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

from caloriesnap.exceptions import ExtractionError

logger = logging.getLogger(__name__)

Strategy = Callable[[Any], Optional[Any]]

DIRECT_FIELDS = ("status", "food", "total")


def from_array_output(raw: Any) -> Optional[Any]:
    if isinstance(raw, list) and raw:
        first = raw[0]
        if isinstance(first, dict) and "output" in first:
            return first["output"]
    return None


def from_output_field(raw: Any) -> Optional[Any]:
    if isinstance(raw, dict) and "output" in raw:
        return raw["output"]
    return None


def from_direct_payload(raw: Any) -> Optional[Any]:
    if isinstance(raw, dict) and all(name in raw for name in DIRECT_FIELDS):
        return raw
    return None


STRATEGIES: List[Tuple[str, Strategy]] = [
    ("array_output", from_array_output),
    ("output_field", from_output_field),
    ("direct", from_direct_payload),
]


def normalize(raw: Any, strategies: Optional[List[Tuple[str, Strategy]]] = None) -> Any:
    """
    Return the canonical payload embedded in a webhook response.

    Raises:
        ExtractionError: no strategy recognized the response shape
    """
    for name, strategy in strategies or STRATEGIES:
        extracted = strategy(raw)
        if extracted is not None:
            logger.debug("Webhook response matched the '%s' shape", name)
            return extracted

    logger.error("Unexpected webhook response format: %.500r", raw)
    raise ExtractionError(
        message=(
            "Unexpected response format from analysis workflow. "
            "Expected structured nutrition data."
        ),
        context={"response_type": type(raw).__name__},
    )
