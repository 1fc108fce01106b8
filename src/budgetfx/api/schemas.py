"""
BudgetFX API Request/Response Schemas

JSON keys are camelCase to stay compatible with existing API clients.
"""

from decimal import Decimal
from typing import Any

from pydantic import Field, field_validator

from budgetfx.models import CamelModel, ConversionResult, ProjectBudget, normalize_currency_code


class BudgetCurrencyRequest(CamelModel):
    """Body of POST /api/project/budget/currency."""
    year: int = Field(ge=1900, le=2100)
    project_name: str = Field(min_length=1)
    currency: str

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_code(cls, v: Any) -> str:
        return normalize_currency_code(v)


class ConversionInfo(CamelModel):
    """How a budget figure was converted."""
    source_currency: str
    target_currency: str
    rate: Decimal
    converted_amount: Decimal
    used_fallback: bool

    @classmethod
    def from_result(cls, result: ConversionResult) -> "ConversionInfo":
        return cls(
            source_currency=result.source_currency,
            target_currency=result.target_currency,
            rate=result.rate,
            converted_amount=result.converted_amount,
            used_fallback=result.used_fallback,
        )


class ConvertedProject(ProjectBudget):
    """
    A project with its final budget converted.

    finalBudgetTtd keeps its historical name even when the target currency
    is not TTD; `conversion.targetCurrency` says what it actually is.
    """
    final_budget_ttd: float
    conversion: ConversionInfo


class ConversionListResponse(CamelModel):
    success: bool = True
    data: list[ConvertedProject]


class OkData(CamelModel):
    ok: bool = True


class OkResponse(CamelModel):
    success: bool = True
    data: OkData = Field(default_factory=OkData)
    ok: bool = True


class DeleteResponse(CamelModel):
    success: bool = True
    message: str = "Project deleted successfully"


class HealthResponse(CamelModel):
    """Health check response for /api/health"""
    status: str = Field(description="Service health status")
    version: str = Field(description="API version")
    database: str = Field(description="Database connection status")
    database_backend: str = Field(description="Selected storage backend")
    rate_provider: str = Field(description="Live rate provider status")


class ErrorResponse(CamelModel):
    """Uniform error body: {"success": false, "error": ..., "errorType": ...}"""
    success: bool = False
    error: str
    error_type: str

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": False,
                "error": "Project with ID 42 not found",
                "errorType": "NOT_FOUND"
            }
        }
    }
