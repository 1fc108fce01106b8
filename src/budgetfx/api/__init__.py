"""
BudgetFX API Module
"""

from budgetfx.api.routes import router
from budgetfx.api.schemas import (
    ConversionListResponse,
    ErrorResponse,
    HealthResponse,
)

__all__ = [
    "router",
    "ConversionListResponse",
    "HealthResponse",
    "ErrorResponse",
]
