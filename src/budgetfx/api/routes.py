"""
BudgetFX API Routes

Project budget CRUD plus the currency enrichment endpoints, under /api.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from budgetfx import __version__
from budgetfx.api.schemas import (
    BudgetCurrencyRequest,
    ConversionInfo,
    ConversionListResponse,
    ConvertedProject,
    DeleteResponse,
    ErrorResponse,
    HealthResponse,
    OkResponse,
)
from budgetfx.config import BatchProject, Settings
from budgetfx.conversion import CurrencyConversionService
from budgetfx.database import (
    DuplicateProjectError,
    InvalidRecordError,
    ProjectRepository,
    RepositoryError,
)
from budgetfx.models import ConversionErrorType, ProjectBudget, ProjectBudgetCreate
from budgetfx.providers.base import RateProviderError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["BudgetFX"])

CONVERSION_ERROR_STATUS = {
    ConversionErrorType.CURRENCY_NOT_FOUND: 422,
    ConversionErrorType.PROVIDER_ERROR: status.HTTP_502_BAD_GATEWAY,
    ConversionErrorType.PARSE_ERROR: status.HTTP_502_BAD_GATEWAY,
    ConversionErrorType.NETWORK_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation error"},
    404: {"model": ErrorResponse, "description": "Project not found"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
}


def api_error(status_code: int, error: str, error_type: str) -> HTTPException:
    """Build an HTTPException rendered as {"success": false, "error", "errorType"}."""
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(error=error, error_type=error_type).model_dump(by_alias=True)
    )


def get_repository(request: Request) -> ProjectRepository:
    return request.app.state.repository


def get_conversion_service(request: Request) -> CurrencyConversionService:
    return request.app.state.conversion_service


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _not_found(project_id: int) -> HTTPException:
    return api_error(
        status.HTTP_404_NOT_FOUND,
        f"Project with ID {project_id} not found",
        "NOT_FOUND"
    )


def _storage_error(e: RepositoryError) -> HTTPException:
    logger.error(f"Storage error: {e}")
    return api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e), "DATABASE_ERROR")


def _unconvertible(e: Exception) -> HTTPException:
    return api_error(422, f"Project budget cannot be converted: {e}", "VALIDATION_ERROR")


@router.get("/ok", response_model=OkResponse, summary="Liveness probe")
async def ok() -> OkResponse:
    return OkResponse()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    responses={503: {"model": ErrorResponse, "description": "Service unavailable"}}
)
async def health_check(
    repository: ProjectRepository = Depends(get_repository),
    service: CurrencyConversionService = Depends(get_conversion_service),
) -> HealthResponse:
    """
    Returns HTTP 200 when the database answers. The live rate provider is
    reported but never makes the service unhealthy, since conversions can
    still fall back to static rates.
    """
    db_connected = await repository.check_connection()
    provider_up = await service.fetcher.health_check()

    if not db_connected:
        raise api_error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Database is not reachable",
            "UNHEALTHY"
        )

    return HealthResponse(
        status="healthy",
        version=__version__,
        database="connected",
        database_backend=repository.BACKEND_NAME,
        rate_provider="reachable" if provider_up else "unreachable (fallback rates only)",
    )


@router.get(
    "/project/budget/{project_id}",
    response_model=ProjectBudget,
    summary="Get project budget by ID",
    responses=ERROR_RESPONSES
)
async def get_project(
    project_id: int,
    repository: ProjectRepository = Depends(get_repository),
) -> ProjectBudget:
    try:
        project = await repository.get(project_id)
    except RepositoryError as e:
        raise _storage_error(e) from e
    if project is None:
        raise _not_found(project_id)
    return project


@router.post(
    "/project/budget",
    response_model=ProjectBudget,
    status_code=status.HTTP_201_CREATED,
    summary="Create project budget",
    responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse, "description": "Duplicate project"}}
)
async def create_project(
    project: ProjectBudgetCreate,
    repository: ProjectRepository = Depends(get_repository),
) -> ProjectBudget:
    try:
        return await repository.create(project)
    except DuplicateProjectError as e:
        raise api_error(status.HTTP_409_CONFLICT, str(e), "CONFLICT") from e
    except RepositoryError as e:
        raise _storage_error(e) from e


@router.post(
    "/project/budget/currency",
    response_model=ConversionListResponse,
    summary="Convert a project's final budget into another currency",
    responses={
        **ERROR_RESPONSES,
        422: {"model": ErrorResponse, "description": "Currency not supported or budget not convertible"},
        502: {"model": ErrorResponse, "description": "Rate provider error"},
        503: {"model": ErrorResponse, "description": "Rate provider unreachable"},
    }
)
async def convert_project_budget(
    body: BudgetCurrencyRequest,
    repository: ProjectRepository = Depends(get_repository),
    service: CurrencyConversionService = Depends(get_conversion_service),
) -> ConversionListResponse:
    try:
        project = await repository.find_by_name_and_year(body.project_name, body.year)
    except InvalidRecordError as e:
        raise _unconvertible(e) from e
    if project is None:
        raise api_error(
            status.HTTP_404_NOT_FOUND,
            f'Project "{body.project_name}" for year {body.year} not found',
            "NOT_FOUND"
        )

    try:
        converted = await _convert_project(service, project, body.currency)
    except RateProviderError as e:
        raise api_error(
            CONVERSION_ERROR_STATUS.get(e.error_kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
            f"Currency conversion failed: {e}",
            e.error_kind.value
        ) from e
    except ValueError as e:
        raise _unconvertible(e) from e

    return ConversionListResponse(data=[converted])


@router.get(
    "/api-conversion",
    response_model=ConversionListResponse,
    summary="Convert the configured batch of projects to TTD"
)
async def convert_batch(
    repository: ProjectRepository = Depends(get_repository),
    service: CurrencyConversionService = Depends(get_conversion_service),
    settings: Settings = Depends(get_app_settings),
) -> ConversionListResponse:
    """Missing projects and failed conversions are logged and left out."""
    results = await asyncio.gather(*(
        _convert_batch_item(repository, service, item, settings.conversion_batch_currency)
        for item in settings.conversion_batch
    ))
    return ConversionListResponse(data=[r for r in results if r is not None])


@router.put(
    "/project/budget/{project_id}",
    response_model=ProjectBudget,
    summary="Update project budget",
    responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse, "description": "Duplicate project"}}
)
async def update_project(
    project_id: int,
    project: ProjectBudgetCreate,
    repository: ProjectRepository = Depends(get_repository),
) -> ProjectBudget:
    try:
        updated = await repository.update(project_id, project)
    except DuplicateProjectError as e:
        raise api_error(status.HTTP_409_CONFLICT, str(e), "CONFLICT") from e
    except RepositoryError as e:
        raise _storage_error(e) from e
    if updated is None:
        raise _not_found(project_id)
    return updated


@router.delete(
    "/project/budget/{project_id}",
    response_model=DeleteResponse,
    summary="Delete project budget",
    responses=ERROR_RESPONSES
)
async def delete_project(
    project_id: int,
    repository: ProjectRepository = Depends(get_repository),
) -> DeleteResponse:
    if not await repository.delete(project_id):
        raise _not_found(project_id)
    return DeleteResponse()


async def _convert_project(
    service: CurrencyConversionService,
    project: ProjectBudget,
    target_currency: str
) -> ConvertedProject:
    # finalBudgetUsd is denominated in USD whatever the local currency is
    result = await service.convert("USD", target_currency, project.final_budget_usd)
    return ConvertedProject(
        **project.model_dump(),
        final_budget_ttd=float(result.converted_amount),
        conversion=ConversionInfo.from_result(result),
    )


async def _convert_batch_item(
    repository: ProjectRepository,
    service: CurrencyConversionService,
    item: BatchProject,
    target_currency: str
) -> ConvertedProject | None:
    try:
        project = await repository.find_by_name_and_year(item.name, item.year)
    except InvalidRecordError as e:
        logger.error(f'Stored project "{item.name}" for year {item.year} is invalid: {e}')
        return None
    if project is None:
        logger.error(f'Project "{item.name}" for year {item.year} not found')
        return None
    try:
        return await _convert_project(service, project, target_currency)
    except RateProviderError as e:
        logger.error(f'Currency conversion error for "{item.name}": {e.error_type}: {e}')
        return None
    except ValueError as e:
        logger.error(f'Cannot convert budget of "{item.name}": {e}')
        return None
