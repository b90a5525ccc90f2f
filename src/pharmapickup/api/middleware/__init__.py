"""Pickup API middleware components.

This module provides middleware for:
- Request ID tracking for request correlation
- Consistent error response formatting
- Caller identity from gateway headers
"""

from pharmapickup.api.middleware.auth import (
    Actor,
    CurrentActor,
    CustomerActor,
    PharmacyActor,
    require_actor,
    require_role,
)
from pharmapickup.api.middleware.errors import ErrorHandlerMiddleware
from pharmapickup.api.middleware.request_id import RequestIDMiddleware

__all__ = [
    "Actor",
    "CurrentActor",
    "CustomerActor",
    "ErrorHandlerMiddleware",
    "PharmacyActor",
    "RequestIDMiddleware",
    "require_actor",
    "require_role",
]
