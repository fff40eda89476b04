"""
CalorieSnap Backend: Pydantic Request/Response Schemas
=======================================================

What:  Pydantic models defining the API contract and the nutrition shape.
How:   FastAPI uses these to parse request bodies, serialize responses and
       generate the OpenAPI document. The nutrition models double as the
       validator for webhook output (see services/nutrition_validator.py).

JSON keys are camelCase on the wire (`imageUrl`, `analysisId`); Python
code uses snake_case field names. `populate_by_name` allows both.
"""

from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr
from pydantic.alias_generators import to_camel

# JSON number: ints stay ints, floats stay floats, bools and strings are rejected
Number = Union[StrictInt, StrictFloat]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ══════════════════════════════════════════════════════════════════════════
# Nutrition Payload
# ══════════════════════════════════════════════════════════════════════════


class Macros(BaseModel):
    calories: Number
    protein: Number
    carbs: Number
    fat: Number


class FoodItem(Macros):
    """One recognized food on the plate, e.g. "Rice", "1 cup (120g)"."""

    name: StrictStr
    quantity: StrictStr


class NutritionTotal(Macros):
    """
    Aggregate for the whole meal.

    Taken from the webhook as-is; it is not recomputed from the food items.
    """


class NutritionPayload(BaseModel):
    status: StrictStr
    food: List[FoodItem]
    total: NutritionTotal


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════
# Required fields are Optional here so the service layer can answer 400
# with a specific message instead of FastAPI's generic 422.


class AnalyzeMealRequest(CamelModel):
    image_url: Optional[str] = Field(default=None, description="Locator of an uploaded image")


class FeedbackRequest(CamelModel):
    image_url: Optional[str] = None
    rating: Optional[Any] = Field(default=None, description="Integer rating from 1 to 4")
    nutrition: Optional[Any] = Field(default=None, description="The NutritionPayload being rated")
    analysis_id: Optional[str] = Field(
        default=None,
        description="Analysis to attach the rating to; a new record is created when omitted or unknown",
    )


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UploadTargetResponse(BaseModel):
    upload_url: str = Field(alias="uploadURL", description="Where to send the raw image bytes")
    method: str = Field(default="PUT")
    object_url: Optional[str] = Field(
        default=None,
        alias="objectURL",
        description="Locator of the image once uploaded (cloud storage only)",
    )

    model_config = ConfigDict(populate_by_name=True)


class UploadImageResponse(CamelModel):
    success: bool = True
    image_url: str
    filename: str


class AnalyzeMealResponse(CamelModel):
    analysis_id: str
    nutrition: NutritionPayload
    image_url: str


class FeedbackResponse(CamelModel):
    success: bool = True
    feedback_id: str


class MealAnalysisResponse(CamelModel):
    id: str
    image_url: str
    nutrition: NutritionPayload
    feedback: Optional[int] = None
    created_at: datetime


class ErrorResponse(BaseModel):
    """
    Error body returned by every handler in main.py.

    `details` holds the stage-specific message for analysis failures.
    """

    error: str = Field(description="Short error description")
    details: Optional[str] = Field(default=None, description="Specific failure reason")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="healthy or degraded")
    version: str
    storage_mode: str
    storage: str = Field(description="available or unavailable")
    webhook_configured: bool
    analyses_stored: int
    uptime_seconds: float
