"""Pydantic schemas for the deployments module."""
import math
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from heirloom.modules.deployments.models import Deployment


def to_rfc3339(value: datetime) -> str:
    """Format a timestamp as RFC3339; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Request Schemas
# =============================================================================

class ReleaseRequest(BaseModel):
    """Request to record a new release."""
    application: str = ""
    environment: str = ""
    region: str = ""
    version: str = ""
    deployed_by: str | None = None


class RollbackRequest(BaseModel):
    """Request to roll back to an earlier release.

    Without a version the active deployment's rollback target is used.
    """
    application: str = ""
    environment: str = ""
    region: str = ""
    version: str | None = None
    deployed_by: str | None = None


# =============================================================================
# Deployment Schemas
# =============================================================================

class DeploymentResponse(BaseModel):
    """A deployment record."""
    id: int
    application: str
    environment: str
    region: str
    region_name: str
    application_id: int
    environment_id: int
    region_id: int
    version: str
    status: str
    deployed_by: str
    deployed_at: str
    rollback_target_id: int | None = None

    @classmethod
    def from_model(cls, deployment: Deployment) -> "DeploymentResponse":
        return cls(
            id=deployment.id,
            application=deployment.application.name,
            environment=deployment.environment.name,
            region=deployment.region.code,
            region_name=deployment.region.name,
            application_id=deployment.application_id,
            environment_id=deployment.environment_id,
            region_id=deployment.region_id,
            version=deployment.version,
            status=deployment.status,
            deployed_by=deployment.deployed_by,
            deployed_at=to_rfc3339(deployment.deployed_at),
            rollback_target_id=deployment.rollback_target_id,
        )


class ActiveDeploymentResponse(BaseModel):
    """The active deployment of one environment and region."""
    application_name: str = Field(alias="applicationName")
    environment: str
    region_code: str = Field(alias="regionCode")
    region_name: str = Field(alias="regionName")
    version: str
    deployed_at: str = Field(alias="deployedAt")
    deployed_by: str = Field(alias="deployedBy")

    class Config:
        populate_by_name = True

    @classmethod
    def from_model(cls, deployment: Deployment) -> "ActiveDeploymentResponse":
        return cls(
            application_name=deployment.application.name,
            environment=deployment.environment.name,
            region_code=deployment.region.code,
            region_name=deployment.region.name,
            version=deployment.version,
            deployed_at=to_rfc3339(deployment.deployed_at),
            deployed_by=deployment.deployed_by,
        )


class FrontendDeployment(BaseModel):
    """Flattened deployment row for overview listings."""
    application_name: str = Field(alias="applicationName")
    environment: str
    region: str
    version: str
    timestamp: str
    status: str
    deployed_by: str = Field(alias="deployedBy")

    class Config:
        populate_by_name = True

    @classmethod
    def from_model(cls, deployment: Deployment) -> "FrontendDeployment":
        return cls(
            application_name=deployment.application.name,
            environment=deployment.environment.name,
            region=deployment.region.code,
            version=deployment.version,
            timestamp=to_rfc3339(deployment.deployed_at),
            status=deployment.status,
            deployed_by=deployment.deployed_by,
        )


class Pagination(BaseModel):
    """Pagination metadata."""
    page: int
    page_size: int = Field(alias="pageSize")
    total_count: int = Field(alias="totalCount")
    total_pages: int = Field(alias="totalPages")

    class Config:
        populate_by_name = True

    @classmethod
    def build(cls, page: int, page_size: int, total_count: int) -> "Pagination":
        return cls(
            page=page,
            page_size=page_size,
            total_count=total_count,
            total_pages=math.ceil(total_count / page_size) if page_size else 0,
        )


class PaginatedDeployments(BaseModel):
    """A page of overview rows."""
    deployments: list[FrontendDeployment]
    pagination: Pagination


# =============================================================================
# Hierarchy Schemas
# =============================================================================

class ApplicationResponse(BaseModel):
    id: int
    name: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EnvironmentResponse(BaseModel):
    id: int
    name: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RegionResponse(BaseModel):
    id: int
    code: str
    name: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

