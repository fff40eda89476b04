"""
CalorieSnap Backend: Result Store
==================================

What:  Keeps every completed MealAnalysis, keyed by its generated id.
How:   ResultStore is the contract; InMemoryResultStore is a dict guarded by
       a lock. One instance is created by the app factory and reached by
       route handlers through `get_result_store`.

Volatility:
    Records live for the lifetime of the process only. A durable backend
    can be swapped in behind the same create/get/set_feedback contract.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from fastapi import Request

from caloriesnap.exceptions import NotFoundError
from caloriesnap.models.meal_analysis import MealAnalysis
from caloriesnap.schemas.meal import NutritionPayload

logger = logging.getLogger(__name__)


class ResultStore(ABC):
    """
    Contract:
        - create() generates the id and created_at; ids are never reused
        - get() raises NotFoundError for unknown ids
        - set_feedback() is a silent no-op for unknown ids
        - only `feedback` may change after creation
    """

    @abstractmethod
    async def create(
        self,
        image_url: str,
        nutrition: NutritionPayload,
        feedback: Optional[int] = None,
    ) -> MealAnalysis:
        ...

    @abstractmethod
    async def get(self, analysis_id: str) -> MealAnalysis:
        ...

    @abstractmethod
    async def set_feedback(self, analysis_id: str, rating: int) -> None:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...


class InMemoryResultStore(ResultStore):
    def __init__(self):
        self._analyses: Dict[str, MealAnalysis] = {}
        # Critical sections never await, so a thread lock is enough for both
        # event-loop and threadpool callers
        self._lock = threading.Lock()

    async def create(
        self,
        image_url: str,
        nutrition: NutritionPayload,
        feedback: Optional[int] = None,
    ) -> MealAnalysis:
        with self._lock:
            analysis = MealAnalysis(image_url=image_url, nutrition=nutrition, feedback=feedback)
            while analysis.id in self._analyses:
                analysis = MealAnalysis(image_url=image_url, nutrition=nutrition, feedback=feedback)
            self._analyses[analysis.id] = analysis
        logger.info("Stored meal analysis %s", analysis.id)
        return analysis

    async def get(self, analysis_id: str) -> MealAnalysis:
        with self._lock:
            analysis = self._analyses.get(analysis_id)
        if analysis is None:
            raise NotFoundError(resource="analysis", resource_id=analysis_id)
        return analysis

    async def set_feedback(self, analysis_id: str, rating: int) -> None:
        with self._lock:
            analysis = self._analyses.get(analysis_id)
            if analysis is None:
                logger.debug("Feedback for unknown analysis %s ignored", analysis_id)
                return
            analysis.feedback = rating
        logger.info("Feedback %d recorded for analysis %s", rating, analysis_id)

    async def count(self) -> int:
        with self._lock:
            return len(self._analyses)


def get_result_store(request: Request) -> ResultStore:
    """FastAPI dependency: the store built by create_app()."""
    return request.app.state.result_store
