"""
CalorieSnap Backend: Services Layer
====================================

Service Inventory:
    - ObjectStorage (abstract): byte storage keyed by object key
        - LocalObjectStorage: files under STORAGE_ROOT
        - S3ObjectStorage: objects in an S3 bucket, presigned uploads
    - FileService: upload validation (size, image sniffing) and locators
    - AnalysisGateway: fetch image → n8n webhook → normalize → validate
    - normalizer / nutrition_validator: pure functions over webhook JSON
    - ResultStore (abstract) / InMemoryResultStore: analyses and ratings
    - MealService: orchestrates analyze → store and the feedback flow

Services are injected into routes through FastAPI dependencies that read
the shared instances from app.state.
"""
