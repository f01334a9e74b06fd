"""Deployment ledger: release, rollback and retention rules.

The ledger is the only writer of deployment status. Every release and
rollback runs in a single transaction; retention pruning runs after the
release commits, in a task of its own, and never fails the release.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from heirloom.core.events import EventBus, EventType
from heirloom.core.exceptions import (
    NoActiveDeploymentError,
    NoHistoryError,
    NotFoundError,
    RollbackTargetMissingError,
    StorageError,
    ValidationError,
    VersionExistsError,
    VersionNotFoundError,
)
from heirloom.core.logging import StructuredLogger, get_logger
from heirloom.modules.deployments.models import (
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    Application,
    Deployment,
    Environment,
    Region,
    utcnow,
)
from heirloom.modules.deployments.store import DeploymentStore

DEFAULT_DEPLOYED_BY = "system"


def _require(**fields: str | None) -> None:
    missing = [name for name, value in fields.items() if not value or not value.strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def select_rollback_target(
    history: list[Deployment], current: Deployment, version: str | None = None
) -> Deployment:
    """
    Choose the deployment a rollback should activate.

    Args:
        history: Deployments of the triple, newest first
        current: The active deployment
        version: Explicitly requested version, if any

    Returns:
        The target deployment (never ``current``)
    """
    if version:
        for deployment in history:
            if deployment.version == version and deployment.id != current.id:
                return deployment
        raise VersionNotFoundError(version)

    if current.rollback_target_id is not None:
        for deployment in history:
            if deployment.id == current.rollback_target_id:
                return deployment
        raise RollbackTargetMissingError(current.rollback_target_id)

    for deployment in history:
        if deployment.id != current.id:
            return deployment
    raise NoHistoryError()


def select_prunable(deployments: list[Deployment], max_versions: int) -> list[Deployment]:
    """
    Choose the deployments retention should delete.

    Only inactive rows are candidates. The ``max_versions`` newest inactive
    rows are kept; active rows are kept regardless of age.

    Args:
        deployments: Deployments of one triple, newest first
        max_versions: Number of inactive versions to keep

    Returns:
        Deployments to delete, newest first
    """
    if max_versions <= 0 or len(deployments) <= max_versions:
        return []
    inactive = [d for d in deployments if not d.is_active]
    return inactive[max_versions:]


class DeploymentLedger:
    """Records releases and rollbacks per application/environment/region."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_versions: int = 10,
        release_retries: int = 3,
        logger: StructuredLogger | None = None,
        event_bus: EventBus | None = None,
    ):
        self._session_factory = session_factory
        self.max_versions = max_versions
        self.release_retries = max(1, release_retries)
        self.logger = logger or get_logger(__name__)
        self.event_bus = event_bus
        self._prune_tasks: set[asyncio.Task] = set()

    @asynccontextmanager
    async def _store(self) -> AsyncIterator[DeploymentStore]:
        """Open a session and a transaction that commits when the block exits cleanly."""
        async with self._session_factory() as session, session.begin():
            yield DeploymentStore(session)

    async def _publish(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event_type, data)

    async def _resolve(
        self, store: DeploymentStore, application: str, environment: str, region: str
    ) -> tuple[Application, Environment, Region]:
        """Look up an existing triple without creating anything."""
        app = await store.get_application(application)
        if app is None:
            raise NotFoundError("application", application)
        env = await store.get_environment(environment)
        if env is None:
            raise NotFoundError("environment", environment)
        reg = await store.get_region(region)
        if reg is None:
            raise NotFoundError("region", region)
        return app, env, reg

    # =========================================================================
    # Release
    # =========================================================================

    async def release(
        self,
        application: str,
        environment: str,
        region: str,
        version: str,
        deployed_by: str | None = None,
    ) -> Deployment:
        """
        Record a new active deployment for a triple.

        The previously active deployment, if any, becomes inactive and is
        recorded as the new deployment's rollback target.

        Raises:
            ValidationError: A required field is blank
            VersionExistsError: The version was already released for the triple
            StorageError: The transaction failed
        """
        _require(application=application, environment=environment, region=region, version=version)
        deployed_by = deployed_by or DEFAULT_DEPLOYED_BY

        for attempt in range(1, self.release_retries + 1):
            try:
                deployment = await self._release_once(application, environment, region, version, deployed_by)
                break
            except IntegrityError as e:
                # Lost a race with a concurrent release of the same triple
                if await self._version_released(application, environment, region, version):
                    raise VersionExistsError(version) from e
                if attempt == self.release_retries:
                    raise StorageError(f"error creating deployment: {e.orig}") from e
                self.logger.warning(
                    "Release conflicted with a concurrent release, retrying",
                    application=application,
                    environment=environment,
                    region=region,
                    version=version,
                    attempt=attempt,
                )
            except SQLAlchemyError as e:
                raise StorageError(f"error creating deployment: {e}") from e

        self.logger.info(
            "Released deployment",
            application=application,
            environment=environment,
            region=region,
            version=version,
            deployment_id=deployment.id,
            rollback_target_id=deployment.rollback_target_id,
            deployed_by=deployed_by,
        )
        self._schedule_prune(deployment)
        await self._publish(EventType.DEPLOYMENT_RELEASED, {
            "deployment_id": deployment.id,
            "application": application,
            "environment": environment,
            "region": region,
            "version": version,
            "deployed_by": deployed_by,
            "rollback_target_id": deployment.rollback_target_id,
        })
        return deployment

    async def _release_once(
        self, application: str, environment: str, region: str, version: str, deployed_by: str
    ) -> Deployment:
        async with self._store() as store:
            app = await store.upsert_application(application)
            env = await store.upsert_environment(environment)
            reg = await store.upsert_region(region)

            if await store.version_exists(app.id, env.id, reg.id, version):
                raise VersionExistsError(version)

            current = await store.get_active(app.id, env.id, reg.id, for_update=True)

            deployment = Deployment(
                application=app,
                environment=env,
                region=reg,
                version=version,
                status=STATUS_ACTIVE,
                deployed_by=deployed_by,
                deployed_at=utcnow(),
            )
            if current is not None:
                # Deactivate first so the one-active index never sees two rows
                await store.set_status(current, STATUS_INACTIVE)
                deployment.rollback_target_id = current.id

            await store.add(deployment)
        return deployment

    async def _version_released(self, application: str, environment: str, region: str, version: str) -> bool:
        try:
            async with self._store() as store:
                try:
                    app, env, reg = await self._resolve(store, application, environment, region)
                except NotFoundError:
                    return False
                return await store.version_exists(app.id, env.id, reg.id, version)
        except SQLAlchemyError as e:
            raise StorageError(f"error checking if version exists: {e}") from e

    # =========================================================================
    # Rollback
    # =========================================================================

    async def rollback(
        self,
        application: str,
        environment: str,
        region: str,
        version: str | None = None,
        deployed_by: str | None = None,
    ) -> Deployment:
        """
        Swap the active deployment of a triple for an earlier one.

        No deployment row is created: the active row becomes inactive and
        the target row becomes active, attributed to ``deployed_by``.

        Raises:
            ValidationError: A required field is blank
            NotFoundError: Unknown application, environment or region
            NoActiveDeploymentError: Nothing is active for the triple
            NoHistoryError: The triple has a single deployment
            VersionNotFoundError: The requested version is not in the history
            RollbackTargetMissingError: The active row's rollback target is gone
            StorageError: The transaction failed
        """
        _require(application=application, environment=environment, region=region)
        deployed_by = deployed_by or DEFAULT_DEPLOYED_BY

        try:
            async with self._store() as store:
                app, env, reg = await self._resolve(store, application, environment, region)

                current = await store.get_active(app.id, env.id, reg.id, for_update=True)
                if current is None:
                    # The row we waited on may have been superseded by a concurrent release
                    current = await store.get_active(app.id, env.id, reg.id, for_update=True)
                if current is None:
                    raise NoActiveDeploymentError()

                history = await store.history(app.id, env.id, reg.id)
                if len(history) < 2:
                    raise NoHistoryError()

                self.logger.debug(
                    "Selecting rollback target",
                    application=application,
                    requested_version=version,
                    current_version=current.version,
                    history_size=len(history),
                )
                target = select_rollback_target(history, current, version)

                await store.set_status(current, STATUS_INACTIVE)
                await store.set_status(target, STATUS_ACTIVE, deployed_by=deployed_by)
        except SQLAlchemyError as e:
            raise StorageError(f"error updating deployment status: {e}") from e

        self.logger.info(
            "Rolled back deployment",
            application=application,
            environment=environment,
            region=region,
            from_version=current.version,
            to_version=target.version,
            deployment_id=target.id,
            deployed_by=deployed_by,
        )
        await self._publish(EventType.DEPLOYMENT_ROLLED_BACK, {
            "deployment_id": target.id,
            "application": application,
            "environment": environment,
            "region": region,
            "from_version": current.version,
            "version": target.version,
            "deployed_by": deployed_by,
        })
        return target

    # =========================================================================
    # Retention
    # =========================================================================

    async def prune(
        self, application_id: int, environment_id: int, region_id: int, max_versions: int | None = None
    ) -> int:
        """
        Delete old inactive deployments of a triple beyond the retention count.

        Returns:
            Number of deleted deployments
        """
        if max_versions is None:
            max_versions = self.max_versions
        if max_versions <= 0:
            return 0

        try:
            async with self._store() as store:
                deployments = await store.history(application_id, environment_id, region_id)
                doomed = select_prunable(deployments, max_versions)
                deleted = await store.delete_ids([d.id for d in doomed])
        except SQLAlchemyError as e:
            raise StorageError(f"error deleting deployments: {e}") from e

        if deleted:
            self.logger.info(
                "Pruned old deployments",
                application_id=application_id,
                environment_id=environment_id,
                region_id=region_id,
                deleted=deleted,
                versions=[d.version for d in doomed],
            )
            await self._publish(EventType.DEPLOYMENTS_PRUNED, {
                "application_id": application_id,
                "environment_id": environment_id,
                "region_id": region_id,
                "versions": [d.version for d in doomed],
            })
        return deleted

    def _schedule_prune(self, deployment: Deployment) -> None:
        if self.max_versions <= 0:
            return
        task = asyncio.create_task(
            self._prune_quietly(deployment.application_id, deployment.environment_id, deployment.region_id)
        )
        self._prune_tasks.add(task)
        task.add_done_callback(self._prune_tasks.discard)

    async def _prune_quietly(self, application_id: int, environment_id: int, region_id: int) -> None:
        """Best-effort pruning; failures are logged and dropped."""
        try:
            await self.prune(application_id, environment_id, region_id)
        except Exception:
            self.logger.exception(
                "Failed to clean up old versions",
                application_id=application_id,
                environment_id=environment_id,
                region_id=region_id,
            )

    async def wait_for_pruning(self) -> None:
        """Wait for every scheduled prune task to finish."""
        while self._prune_tasks:
            await asyncio.gather(*list(self._prune_tasks), return_exceptions=True)

    # =========================================================================
    # Queries
    # =========================================================================

    async def history(self, application: str, environment: str, region: str) -> list[Deployment]:
        """All deployments of a triple, newest first."""
        _require(application=application, environment=environment, region=region)
        try:
            async with self._store() as store:
                app, env, reg = await self._resolve(store, application, environment, region)
                return await store.history(app.id, env.id, reg.id)
        except SQLAlchemyError as e:
            raise StorageError(f"error getting deployment history: {e}") from e

    async def active_deployments(self, application: str) -> list[Deployment]:
        """The active deployment of every environment and region of an application."""
        try:
            async with self._store() as store:
                app = await store.get_application(application) if application else None
                if app is None:
                    raise NotFoundError("application", application)
                return await store.active_for_application(app.id)
        except SQLAlchemyError as e:
            raise StorageError(f"error getting active deployments: {e}") from e

    async def summaries(
        self, page: int = 1, page_size: int = 10, limit: int | None = None
    ) -> tuple[list[Deployment], int]:
        """
        Recent deployments of every triple, for overview listings.

        Each triple contributes its ``limit`` newest deployments (``page_size``
        when no limit is given). The combined rows are ordered by application,
        environment and region, newest first within a triple, then paginated.

        Returns:
            The page of deployments and the total number of rows across pages
        """
        page = max(1, page)
        page_size = max(1, page_size)
        per_group = limit if limit and limit > 0 else page_size
        try:
            async with self._store() as store:
                total = await store.count_summaries(per_group)
                rows = await store.summaries(per_group, offset=(page - 1) * page_size, limit=page_size)
        except SQLAlchemyError as e:
            raise StorageError(f"error getting deployments: {e}") from e
        return rows, total

    async def list_applications(self) -> list[Application]:
        try:
            async with self._store() as store:
                return await store.list_applications()
        except SQLAlchemyError as e:
            raise StorageError(f"error getting applications: {e}") from e

    async def regions_for_application(self, application_id: int) -> list[Region]:
        try:
            async with self._store() as store:
                if await store.get_application_by_id(application_id) is None:
                    raise NotFoundError("application", application_id)
                return await store.regions_for_application(application_id)
        except SQLAlchemyError as e:
            raise StorageError(f"error getting regions: {e}") from e

    async def environments_for(self, application_id: int, region_id: int) -> list[Environment]:
        try:
            async with self._store() as store:
                if await store.get_application_by_id(application_id) is None:
                    raise NotFoundError("application", application_id)
                if await store.get_region_by_id(region_id) is None:
                    raise NotFoundError("region", region_id)
                return await store.environments_for(application_id, region_id)
        except SQLAlchemyError as e:
            raise StorageError(f"error getting environments: {e}") from e

    async def versions_for(self, application_id: int, environment_id: int, region_id: int) -> list[Deployment]:
        try:
            async with self._store() as store:
                if await store.get_application_by_id(application_id) is None:
                    raise NotFoundError("application", application_id)
                if await store.get_environment_by_id(environment_id) is None:
                    raise NotFoundError("environment", environment_id)
                if await store.get_region_by_id(region_id) is None:
                    raise NotFoundError("region", region_id)
                return await store.history(application_id, environment_id, region_id)
        except SQLAlchemyError as e:
            raise StorageError(f"error getting versions: {e}") from e
