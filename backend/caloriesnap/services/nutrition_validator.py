"""
CalorieSnap Backend: Nutrition Payload Validator
=================================================

What:  Checks a normalized payload against the NutritionPayload model.
How:   Pydantic strict-mode validation; the first error location becomes the
       dotted `path` of the raised ValidationError.

Not checked: that `total` equals the sum of the food items, and numeric
ranges (negative calories pass). Both are taken from the webhook as-is.
"""

import logging
from typing import Any

import pydantic

from caloriesnap.exceptions import ValidationError
from caloriesnap.schemas.meal import NutritionPayload

logger = logging.getLogger(__name__)


def error_path(loc) -> str:
    """('food', 0, 'calories') → 'food.0.calories'; () → '<root>'."""
    # Union members add their type name to the location; it is not a field
    parts = [str(part) for part in loc if part not in ("int", "float")]
    return ".".join(parts) or "<root>"


def validate(payload: Any) -> NutritionPayload:
    """
    Validate `payload` and return the typed model.

    Raises:
        ValidationError: missing field, wrong type, or a non-object payload
    """
    if not isinstance(payload, dict):
        raise ValidationError(
            message=f"Nutrition data must be an object, got {type(payload).__name__}",
            path="<root>",
        )

    try:
        return NutritionPayload.model_validate(payload)
    except pydantic.ValidationError as e:
        errors = e.errors(include_url=False, include_input=False)
        path = error_path(errors[0]["loc"])
        logger.warning("Nutrition payload rejected at %s (%d errors)", path, len(errors))
        raise ValidationError(
            message=f"Invalid nutrition data at '{path}': {errors[0]['msg']}",
            path=path,
            context={"errors": [{"path": error_path(err["loc"]), "msg": err["msg"]} for err in errors]},
        )
