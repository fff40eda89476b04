"""
CalorieSnap Backend: MealAnalysis Record
=========================================

What:  The record kept by the result store for each completed analysis.
Who:   Created by ResultStore.create(); only `feedback` changes afterwards,
       through ResultStore.set_feedback().

Lifecycle:
    1. Created after the webhook result passed validation (feedback = None),
       or by a feedback submission that names no known analysis
    2. feedback may be set later (1-4)
    3. Never deleted; lost on process restart
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from caloriesnap.schemas.meal import NutritionPayload


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MealAnalysis:
    image_url: str
    nutrition: NutritionPayload
    feedback: Optional[int] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)

    def __repr__(self) -> str:
        return (
            f"<MealAnalysis(id={self.id}, "
            f"calories={self.nutrition.total.calories}, feedback={self.feedback})>"
        )
