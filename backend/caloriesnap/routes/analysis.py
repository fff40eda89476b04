"""
CalorieSnap Backend: Analysis Route Handlers
=============================================

What:  POST /api/analyze-meal, POST /api/feedback, GET /api/analyses/{id}.
How:   Thin handlers; MealService does the work and raises application
       exceptions that the global handlers in main.py turn into responses.
"""

import logging

from fastapi import APIRouter, Depends

from caloriesnap.schemas.meal import (
    AnalyzeMealRequest,
    AnalyzeMealResponse,
    ErrorResponse,
    FeedbackRequest,
    FeedbackResponse,
    MealAnalysisResponse,
)
from caloriesnap.services.meal_service import MealService, get_meal_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Analysis"])


@router.post(
    "/analyze-meal",
    response_model=AnalyzeMealResponse,
    responses={
        400: {"description": "imageUrl missing", "model": ErrorResponse},
        500: {"description": "Image fetch, webhook, or payload validation failed", "model": ErrorResponse},
    },
    summary="Analyze a meal photo",
    description=(
        "Sends the uploaded image to the nutrition analysis workflow and returns "
        "the recognized food items with macronutrient totals."
    ),
)
async def analyze_meal(
    payload: AnalyzeMealRequest,
    meal_service: MealService = Depends(get_meal_service),
) -> AnalyzeMealResponse:
    return await meal_service.analyze_meal(payload.image_url)


@router.post(
    "/feedback",
    response_model=FeedbackResponse,
    responses={400: {"description": "Rating outside 1-4 or fields missing", "model": ErrorResponse}},
    summary="Rate an analysis result",
)
async def submit_feedback(
    payload: FeedbackRequest,
    meal_service: MealService = Depends(get_meal_service),
) -> FeedbackResponse:
    return await meal_service.submit_feedback(
        image_url=payload.image_url,
        rating=payload.rating,
        nutrition=payload.nutrition,
        analysis_id=payload.analysis_id,
    )


@router.get(
    "/analyses/{analysis_id}",
    response_model=MealAnalysisResponse,
    responses={404: {"description": "Unknown analysis", "model": ErrorResponse}},
    summary="Get a stored analysis",
)
async def get_analysis(
    analysis_id: str,
    meal_service: MealService = Depends(get_meal_service),
) -> MealAnalysisResponse:
    return await meal_service.get_analysis(analysis_id)
