"""Database models for the deployments module."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import relationship

from heirloom.core.database import Base

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Application(Base):
    """Applications, created on first release."""

    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Environment(Base):
    """Deployment environments, created on first release."""

    __tablename__ = "environments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Region(Base):
    """Deployment regions, created on first release."""

    __tablename__ = "regions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Deployment(Base):
    """A version released to one application/environment/region."""

    __tablename__ = "deployments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(Integer, ForeignKey("applications.id", ondelete="CASCADE"), nullable=False)
    environment_id = Column(Integer, ForeignKey("environments.id", ondelete="CASCADE"), nullable=False)
    region_id = Column(Integer, ForeignKey("regions.id", ondelete="CASCADE"), nullable=False)
    version = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_ACTIVE)  # active, inactive
    deployed_by = Column(String(255), nullable=False)
    deployed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    rollback_target_id = Column(Integer, ForeignKey("deployments.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    application = relationship("Application", lazy="joined", innerjoin=True)
    environment = relationship("Environment", lazy="joined", innerjoin=True)
    region = relationship("Region", lazy="joined", innerjoin=True)

    __table_args__ = (
        UniqueConstraint(
            "application_id", "environment_id", "region_id", "version",
            name="uq_deployments_triple_version",
        ),
        # At most one active row per application/environment/region
        Index(
            "uq_deployments_one_active",
            "application_id", "environment_id", "region_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_deployments_triple_deployed_at", "application_id", "environment_id", "region_id", "deployed_at"),
        Index("idx_deployments_status", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<Deployment id={self.id} version={self.version!r} status={self.status}>"
