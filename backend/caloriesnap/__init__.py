"""
CalorieSnap Backend: Application Package
=========================================

What: Meal-photo nutrition estimator backend.
How:  Images are uploaded to object storage, relayed to an external n8n
      webhook for analysis, and the validated nutrition result is kept in
      an in-process result store.

Layers:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← gateway, normalizer, validator
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← dataclasses + Pydantic
    ├─────────────────────────────────────┤
    │     Storage (blobs + result store)  │  ← local disk / S3, in-memory map
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
