"""API routes for the deployments module."""
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from heirloom.core.config import Settings
from heirloom.core.exceptions import LedgerError, ValidationError
from heirloom.modules.deployments.schemas import (
    ActiveDeploymentResponse,
    ApplicationResponse,
    DeploymentResponse,
    EnvironmentResponse,
    FrontendDeployment,
    PaginatedDeployments,
    Pagination,
    RegionResponse,
    ReleaseRequest,
    RollbackRequest,
)
from heirloom.modules.deployments.services import DeploymentLedger

router = APIRouter(tags=["Deployments"])


def get_ledger(request: Request) -> DeploymentLedger:
    return request.app.state.ledger


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _http_error(exc: LedgerError, status_code: int | None = None) -> HTTPException:
    return HTTPException(status_code=status_code or exc.status_code, detail=exc.message)


# =============================================================================
# Release / Rollback Routes
# =============================================================================

@router.post("/release", response_model=DeploymentResponse)
async def release(
    data: ReleaseRequest,
    ledger: DeploymentLedger = Depends(get_ledger),
):
    """Record a new active version for an application, environment and region."""
    try:
        deployment = await ledger.release(
            application=data.application,
            environment=data.environment,
            region=data.region,
            version=data.version,
            deployed_by=data.deployed_by,
        )
    except LedgerError as e:
        raise _http_error(e)
    return DeploymentResponse.from_model(deployment)


@router.post("/rollback", response_model=DeploymentResponse)
async def rollback(
    data: RollbackRequest,
    ledger: DeploymentLedger = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
):
    """
    Roll back to an earlier version.

    Without a version, the active deployment's rollback target (or the most
    recent other deployment) is activated.
    """
    try:
        deployment = await ledger.rollback(
            application=data.application,
            environment=data.environment,
            region=data.region,
            version=data.version or None,
            deployed_by=data.deployed_by,
        )
    except ValidationError as e:
        raise _http_error(e)
    except LedgerError as e:
        if settings.ROLLBACK_PRECISE_STATUS_CODES:
            raise _http_error(e)
        raise _http_error(e, status_code=500)
    return DeploymentResponse.from_model(deployment)


# =============================================================================
# Query Routes
# =============================================================================

@router.get("/deployments", response_model=list[ActiveDeploymentResponse])
async def get_active_deployments(
    application: str = "",
    ledger: DeploymentLedger = Depends(get_ledger),
):
    """Active deployments of an application, one per environment and region."""
    try:
        deployments = await ledger.active_deployments(application)
    except LedgerError as e:
        raise _http_error(e)
    return [ActiveDeploymentResponse.from_model(d) for d in deployments]


@router.get("/history", response_model=list[DeploymentResponse])
async def get_deployment_history(
    application: str = "",
    environment: str = "",
    region: str = "",
    ledger: DeploymentLedger = Depends(get_ledger),
):
    """Deployment history of an application in one environment and region, newest first."""
    try:
        deployments = await ledger.history(application, environment, region)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Missing required query parameters")
    except LedgerError as e:
        raise _http_error(e)
    return [DeploymentResponse.from_model(d) for d in deployments]


@router.get("/all-deployments", response_model=PaginatedDeployments)
async def get_all_deployments(
    limit: int | None = None,
    page: int = 1,
    page_size: int | None = Query(None, alias="pageSize"),
    ledger: DeploymentLedger = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
):
    """Recent deployments of every application, environment and region, paginated."""
    page = max(1, page)
    if not page_size or page_size < 1:
        page_size = settings.DEFAULT_PAGE_SIZE

    try:
        deployments, total = await ledger.summaries(page=page, page_size=page_size, limit=limit)
    except LedgerError as e:
        raise _http_error(e)

    return PaginatedDeployments(
        deployments=[FrontendDeployment.from_model(d) for d in deployments],
        pagination=Pagination.build(page=page, page_size=page_size, total_count=total),
    )


# =============================================================================
# Hierarchy Routes
# =============================================================================

@router.get("/applications", response_model=list[ApplicationResponse])
async def list_applications(ledger: DeploymentLedger = Depends(get_ledger)):
    """All applications."""
    try:
        applications = await ledger.list_applications()
    except LedgerError as e:
        raise _http_error(e)
    return [ApplicationResponse.model_validate(a) for a in applications]


@router.get("/applications/{application_id}/regions", response_model=list[RegionResponse])
async def list_regions_for_application(
    application_id: int,
    ledger: DeploymentLedger = Depends(get_ledger),
):
    """Regions an application has been deployed to."""
    try:
        regions = await ledger.regions_for_application(application_id)
    except LedgerError as e:
        raise _http_error(e)
    return [RegionResponse.model_validate(r) for r in regions]


@router.get(
    "/applications/{application_id}/regions/{region_id}/environments",
    response_model=list[EnvironmentResponse],
)
async def list_environments_for_application_and_region(
    application_id: int,
    region_id: int,
    ledger: DeploymentLedger = Depends(get_ledger),
):
    """Environments an application has been deployed to within a region."""
    try:
        environments = await ledger.environments_for(application_id, region_id)
    except LedgerError as e:
        raise _http_error(e)
    return [EnvironmentResponse.model_validate(env) for env in environments]


@router.get(
    "/applications/{application_id}/environments/{environment_id}/regions/{region_id}/versions",
    response_model=list[DeploymentResponse],
)
async def list_versions(
    application_id: int,
    environment_id: int,
    region_id: int,
    ledger: DeploymentLedger = Depends(get_ledger),
):
    """Versions deployed to an application, environment and region, newest first."""
    try:
        deployments = await ledger.versions_for(application_id, environment_id, region_id)
    except LedgerError as e:
        raise _http_error(e)
    return [DeploymentResponse.from_model(d) for d in deployments]
