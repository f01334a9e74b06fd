"""
Tests for retention pruning of old deployments.
"""
import pytest

from heirloom.core.events import EventType
from heirloom.modules.deployments.models import Deployment
from heirloom.modules.deployments.services import select_prunable


async def _release_versions(ledger, count, application="svc", environment="prod", region="us-east"):
    deployment = None
    for n in range(1, count + 1):
        deployment = await ledger.release(application, environment, region, f"v{n}")
    return deployment


def _triple_ids(deployment):
    return deployment.application_id, deployment.environment_id, deployment.region_id


class TestPrune:
    """Pruning keeps the newest inactive versions and every active one."""

    @pytest.mark.asyncio
    async def test_prune_deletes_oldest_inactive(self, ledger, count_deployments):
        latest = await _release_versions(ledger, 5)

        deleted = await ledger.prune(*_triple_ids(latest), max_versions=2)

        assert deleted == 2
        history = await ledger.history("svc", "prod", "us-east")
        assert [d.version for d in history] == ["v5", "v4", "v3"]
        assert history[0].status == "active"
        assert await count_deployments() == 3

    @pytest.mark.asyncio
    async def test_old_active_deployment_is_never_pruned(self, ledger):
        latest = await _release_versions(ledger, 5)
        await ledger.rollback("svc", "prod", "us-east", version="v1")

        deleted = await ledger.prune(*_triple_ids(latest), max_versions=2)

        assert deleted == 2
        history = await ledger.history("svc", "prod", "us-east")
        assert [d.version for d in history] == ["v5", "v4", "v1"]
        assert [d.version for d in history if d.status == "active"] == ["v1"]

    @pytest.mark.asyncio
    async def test_prune_is_noop_within_limit(self, ledger, count_deployments):
        latest = await _release_versions(ledger, 3)

        assert await ledger.prune(*_triple_ids(latest), max_versions=3) == 0
        assert await ledger.prune(*_triple_ids(latest), max_versions=5) == 0
        assert await count_deployments() == 3

    @pytest.mark.asyncio
    async def test_non_positive_limit_disables_pruning(self, ledger, count_deployments):
        latest = await _release_versions(ledger, 4)

        assert await ledger.prune(*_triple_ids(latest), max_versions=0) == 0
        assert await ledger.prune(*_triple_ids(latest), max_versions=-1) == 0
        assert await count_deployments() == 4

    @pytest.mark.asyncio
    async def test_prune_only_touches_its_triple(self, ledger, count_deployments):
        latest = await _release_versions(ledger, 4)
        await _release_versions(ledger, 4, region="eu-west")

        await ledger.prune(*_triple_ids(latest), max_versions=1)

        assert len(await ledger.history("svc", "prod", "us-east")) == 2
        assert len(await ledger.history("svc", "prod", "eu-west")) == 4
        assert await count_deployments() == 6

    @pytest.mark.asyncio
    async def test_pruned_rollback_target_is_cleared(self, ledger):
        latest = await _release_versions(ledger, 3)

        await ledger.prune(*_triple_ids(latest), max_versions=1)

        history = await ledger.history("svc", "prod", "us-east")
        assert [d.version for d in history] == ["v3", "v2"]
        # v1 is gone, so v2 no longer points at it
        assert history[1].rollback_target_id is None
        assert history[0].rollback_target_id == history[1].id

    @pytest.mark.asyncio
    async def test_prune_publishes_event(self, ledger, event_bus):
        latest = await _release_versions(ledger, 4)

        await ledger.prune(*_triple_ids(latest), max_versions=2)

        events = await event_bus.get_history(event_types=[EventType.DEPLOYMENTS_PRUNED])
        assert len(events) == 1
        assert events[0].data["versions"] == ["v1"]

    @pytest.mark.asyncio
    async def test_noop_prune_publishes_nothing(self, ledger, event_bus):
        latest = await _release_versions(ledger, 2)

        await ledger.prune(*_triple_ids(latest), max_versions=2)

        assert await event_bus.get_history(event_types=[EventType.DEPLOYMENTS_PRUNED]) == []


class TestSelectPrunable:
    """Retention selection over an in-memory history."""

    @staticmethod
    def _deployments(active_version, count):
        return [
            Deployment(
                id=n,
                version=f"v{n}",
                status="active" if f"v{n}" == active_version else "inactive",
            )
            for n in range(count, 0, -1)
        ]

    def test_keeps_newest_inactive(self):
        deployments = self._deployments("v5", 5)
        assert [d.version for d in select_prunable(deployments, 2)] == ["v2", "v1"]

    def test_active_row_is_never_selected(self):
        deployments = self._deployments("v1", 5)
        assert [d.version for d in select_prunable(deployments, 2)] == ["v3", "v2"]

    def test_within_limit(self):
        deployments = self._deployments("v3", 3)
        assert select_prunable(deployments, 3) == []

    @pytest.mark.parametrize("max_versions", [0, -3])
    def test_disabled(self, max_versions):
        deployments = self._deployments("v5", 5)
        assert select_prunable(deployments, max_versions) == []
