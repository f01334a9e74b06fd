"""Storage access for the deployment ledger.

``DeploymentStore`` wraps one ``AsyncSession`` and is the only place that
builds SQL. Transactions are owned by the caller; the store never commits.
"""
from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from heirloom.modules.deployments.models import (
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    Application,
    Deployment,
    Environment,
    Region,
)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class DeploymentStore:
    """Queries and writes over applications, environments, regions and deployments."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def dialect(self) -> str:
        return self.session.bind.dialect.name

    # =========================================================================
    # Natural-key lookups
    # =========================================================================

    async def get_application(self, name: str) -> Application | None:
        result = await self.session.execute(select(Application).where(Application.name == name))
        return result.scalar_one_or_none()

    async def get_environment(self, name: str) -> Environment | None:
        result = await self.session.execute(select(Environment).where(Environment.name == name))
        return result.scalar_one_or_none()

    async def get_region(self, code: str) -> Region | None:
        result = await self.session.execute(select(Region).where(Region.code == code))
        return result.scalar_one_or_none()

    async def get_application_by_id(self, application_id: int) -> Application | None:
        return await self.session.get(Application, application_id)

    async def get_environment_by_id(self, environment_id: int) -> Environment | None:
        return await self.session.get(Environment, environment_id)

    async def get_region_by_id(self, region_id: int) -> Region | None:
        return await self.session.get(Region, region_id)

    # =========================================================================
    # Insert-or-fetch
    # =========================================================================

    async def _insert_ignore(self, model, key_column: str, values: dict) -> None:
        """Insert a row unless one with the same natural key already exists."""
        insert = _INSERT_BY_DIALECT.get(self.dialect)
        if insert is None:
            raise NotImplementedError(f"Upsert not supported for dialect {self.dialect}")
        stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=[key_column])
        await self.session.execute(stmt)

    async def upsert_application(self, name: str) -> Application:
        await self._insert_ignore(Application, "name", {"name": name})
        return await self.get_application(name)

    async def upsert_environment(self, name: str) -> Environment:
        await self._insert_ignore(Environment, "name", {"name": name})
        return await self.get_environment(name)

    async def upsert_region(self, code: str, name: str | None = None) -> Region:
        await self._insert_ignore(Region, "code", {"code": code, "name": name or code})
        return await self.get_region(code)

    # =========================================================================
    # Deployments of one triple
    # =========================================================================

    @staticmethod
    def _triple(application_id: int, environment_id: int, region_id: int):
        return (
            Deployment.application_id == application_id,
            Deployment.environment_id == environment_id,
            Deployment.region_id == region_id,
        )

    async def version_exists(self, application_id: int, environment_id: int, region_id: int, version: str) -> bool:
        query = (
            select(func.count())
            .select_from(Deployment)
            .where(*self._triple(application_id, environment_id, region_id), Deployment.version == version)
        )
        return (await self.session.scalar(query) or 0) > 0

    async def get_active(
        self, application_id: int, environment_id: int, region_id: int, for_update: bool = False
    ) -> Deployment | None:
        query = select(Deployment).where(
            *self._triple(application_id, environment_id, region_id),
            Deployment.status == STATUS_ACTIVE,
        )
        if for_update:
            query = query.with_for_update(of=Deployment)
        result = await self.session.execute(query)
        return result.unique().scalar_one_or_none()

    async def history(self, application_id: int, environment_id: int, region_id: int) -> list[Deployment]:
        """All deployments of a triple, newest first."""
        query = (
            select(Deployment)
            .where(*self._triple(application_id, environment_id, region_id))
            .order_by(Deployment.deployed_at.desc(), Deployment.id.desc())
        )
        result = await self.session.execute(query)
        return list(result.unique().scalars().all())

    async def add(self, deployment: Deployment) -> Deployment:
        self.session.add(deployment)
        await self.session.flush()
        return deployment

    async def set_status(self, deployment: Deployment, status: str, deployed_by: str | None = None) -> None:
        deployment.status = status
        if deployed_by is not None:
            deployment.deployed_by = deployed_by
        await self.session.flush()

    async def delete_ids(self, ids: list[int]) -> int:
        """Delete inactive deployments by id; active rows are never matched."""
        if not ids:
            return 0
        result = await self.session.execute(
            delete(Deployment)
            .where(Deployment.id.in_(ids), Deployment.status == STATUS_INACTIVE)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # =========================================================================
    # Cross-triple queries
    # =========================================================================

    async def active_for_application(self, application_id: int) -> list[Deployment]:
        query = (
            select(Deployment)
            .join(Deployment.region)
            .join(Deployment.environment)
            .where(Deployment.application_id == application_id, Deployment.status == STATUS_ACTIVE)
            .order_by(Region.code, Environment.name)
        )
        result = await self.session.execute(query)
        return list(result.unique().scalars().all())

    def _ranked_summary_query(self, per_group: int):
        row_num = (
            func.row_number()
            .over(
                partition_by=(Deployment.application_id, Deployment.environment_id, Deployment.region_id),
                order_by=(Deployment.deployed_at.desc(), Deployment.id.desc()),
            )
            .label("row_num")
        )
        ranked = select(Deployment.id.label("id"), row_num).subquery()
        return select(ranked.c.id).where(ranked.c.row_num <= per_group)

    async def count_summaries(self, per_group: int) -> int:
        ids = self._ranked_summary_query(per_group).subquery()
        return await self.session.scalar(select(func.count()).select_from(ids)) or 0

    async def summaries(self, per_group: int, offset: int, limit: int) -> list[Deployment]:
        """The ``per_group`` newest rows of every triple, grouped and sorted for display."""
        query = (
            select(Deployment)
            .join(Deployment.application)
            .join(Deployment.environment)
            .join(Deployment.region)
            .where(Deployment.id.in_(self._ranked_summary_query(per_group)))
            .order_by(
                Application.name,
                Environment.name,
                Region.code,
                Deployment.deployed_at.desc(),
                Deployment.id.desc(),
            )
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.unique().scalars().all())

    # =========================================================================
    # Hierarchy browsing
    # =========================================================================

    async def list_applications(self) -> list[Application]:
        result = await self.session.execute(select(Application).order_by(Application.name))
        return list(result.scalars().all())

    async def regions_for_application(self, application_id: int) -> list[Region]:
        region_ids = select(Deployment.region_id).where(Deployment.application_id == application_id)
        result = await self.session.execute(
            select(Region).where(Region.id.in_(region_ids)).order_by(Region.code)
        )
        return list(result.scalars().all())

    async def environments_for(self, application_id: int, region_id: int) -> list[Environment]:
        environment_ids = select(Deployment.environment_id).where(
            Deployment.application_id == application_id,
            Deployment.region_id == region_id,
        )
        result = await self.session.execute(
            select(Environment).where(Environment.id.in_(environment_ids)).order_by(Environment.name)
        )
        return list(result.scalars().all())
