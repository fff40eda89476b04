"""
CalorieSnap Backend: API Routes Package
========================================

Route Inventory:
    - uploads.py:   POST   /api/objects/upload       (issue upload target)
                    PUT    /api/upload-image         (raw image upload)
                    POST   /api/upload-image         (multipart image upload)
                    GET    /uploads/{key}            (serve stored image)
                    DELETE /api/objects/{key}        (delete stored image)
    - analysis.py:  POST   /api/analyze-meal         (run analysis)
                    POST   /api/feedback             (rate a result)
                    GET    /api/analyses/{id}        (stored analysis)
    - health.py:    GET    /health                   (service health check)

Routes stay thin: extract request data, call a service, return the
response model. Errors are raised as application exceptions.
"""
