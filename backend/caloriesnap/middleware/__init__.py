"""
CalorieSnap Backend: Middleware Package
========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Request ID] → [Access Log] → [Rate Limit] → [GZip] → [CORS] → Route

    The request ID is assigned before anything logs, so rejected (429)
    requests are logged and carry an X-Request-ID like every other one.
"""
