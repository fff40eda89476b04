"""
CalorieSnap Backend: Meal Service (Business Logic Orchestrator)
================================================================

What:  Coordinates analyze → store and the feedback flow.
How:   Composes the AnalysisGateway and a ResultStore, both passed in.
Who:   Called by the route handlers in routes/analysis.py.

Orchestration Flow (POST /api/analyze-meal):
    ┌──────────┐    ┌──────────────┐    ┌─────────────┐    ┌──────────┐
    │  Request │───▶│ Fetch image  │───▶│  Webhook +  │───▶│  Store   │
    │  (Route) │    │  (Gateway)   │    │  normalize/ │    │ (Result  │
    └──────────┘    └──────────────┘    │  validate   │    │  Store)  │
                                        └─────────────┘    └──────────┘

    A failure at any stage propagates before the store is touched, so a
    failed analysis leaves no record behind.
"""

import logging
from typing import Any, Optional

import pydantic
from fastapi import Depends

from caloriesnap.exceptions import InputError, NotFoundError
from caloriesnap.schemas.meal import (
    AnalyzeMealResponse,
    FeedbackResponse,
    MealAnalysisResponse,
    NutritionPayload,
)
from caloriesnap.services.analysis_gateway import AnalysisGateway, get_gateway
from caloriesnap.services.nutrition_validator import error_path
from caloriesnap.services.result_store import ResultStore, get_result_store

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 4


def is_valid_rating(rating: Any) -> bool:
    # bool is an int subclass; JSON true must not count as rating 1
    return (
        isinstance(rating, int)
        and not isinstance(rating, bool)
        and MIN_RATING <= rating <= MAX_RATING
    )


class MealService:
    def __init__(self, gateway: AnalysisGateway, store: ResultStore):
        self.gateway = gateway
        self.store = store

    async def analyze_meal(self, image_url: Optional[str]) -> AnalyzeMealResponse:
        """
        Analyze the image behind `image_url` and record the result.

        Raises:
            InputError: image_url missing or blank
            AnalysisError: any gateway stage failed (nothing is stored)
        """
        if not image_url or not image_url.strip():
            raise InputError(message="Image URL is required", field="imageUrl")

        image_url = image_url.strip()
        logger.info("Analyzing meal with image URL: %s", image_url)

        nutrition = await self.gateway.analyze(image_url)
        analysis = await self.store.create(image_url=image_url, nutrition=nutrition)

        return AnalyzeMealResponse(
            analysis_id=analysis.id,
            nutrition=analysis.nutrition,
            image_url=analysis.image_url,
        )

    async def submit_feedback(
        self,
        image_url: Optional[str],
        rating: Any,
        nutrition: Any,
        analysis_id: Optional[str] = None,
    ) -> FeedbackResponse:
        """
        Record a 1-4 rating.

        With a known `analysis_id` the rating is attached to that record.
        Otherwise a new record carrying the rating is created.

        Raises:
            InputError: rating outside 1..4, or a required field missing/malformed
        """
        if rating is not None and not is_valid_rating(rating):
            raise InputError(
                message=f"Rating must be between {MIN_RATING} and {MAX_RATING}",
                field="rating",
            )
        if not image_url or rating is None or nutrition is None:
            raise InputError(message="Missing required fields")

        try:
            payload = NutritionPayload.model_validate(nutrition)
        except pydantic.ValidationError as e:
            path = error_path(e.errors()[0]["loc"])
            raise InputError(
                message=f"Invalid nutrition data at 'nutrition.{path}'",
                field="nutrition",
            )

        if analysis_id:
            try:
                existing = await self.store.get(analysis_id)
            except NotFoundError:
                existing = None
            if existing is not None:
                await self.store.set_feedback(existing.id, rating)
                return FeedbackResponse(feedback_id=existing.id)
            logger.info("Feedback names unknown analysis %s; recording a new entry", analysis_id)

        analysis = await self.store.create(image_url=image_url, nutrition=payload, feedback=rating)
        logger.info("Feedback %d recorded as new analysis %s", rating, analysis.id)
        return FeedbackResponse(feedback_id=analysis.id)

    async def get_analysis(self, analysis_id: str) -> MealAnalysisResponse:
        """
        Raises:
            NotFoundError: unknown id
        """
        analysis = await self.store.get(analysis_id)
        return MealAnalysisResponse(
            id=analysis.id,
            image_url=analysis.image_url,
            nutrition=analysis.nutrition,
            feedback=analysis.feedback,
            created_at=analysis.created_at,
        )


def get_meal_service(
    gateway: AnalysisGateway = Depends(get_gateway),
    store: ResultStore = Depends(get_result_store),
) -> MealService:
    """FastAPI dependency: a MealService over the app's gateway and store."""
    return MealService(gateway=gateway, store=store)
