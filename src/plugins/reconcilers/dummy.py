"""
Dummy Reconciler - keeps one nginx Pod per Dummy and mirrors its phase.

Each pass reads the Dummy, makes sure its Pod exists, and once the Pod is
known to exist from an earlier pass copies the Pod phase and the Dummy's
message into the Dummy status. The Pod spec is never updated after
creation.
"""

import logging

from plugins.reconcilers.base import (
    FetchResult,
    FetchStatus,
    ProjectResult,
    ReconcileResult,
    ReconcilerContext,
    ReconcilerPlugin,
    SyncResult,
    SyncStatus,
)
from resources import (
    DUMMY_KIND,
    POD_KIND,
    AlreadyOwnedError,
    Dummy,
    MalformedResourceError,
    NamespacedName,
    Pod,
    attach_owner,
    build_pod,
    dependent_pod_name,
)
from store import AlreadyExistsError, NotFoundError, StoreError

logger = logging.getLogger(__name__)


class DummyReconciler(ReconcilerPlugin):
    """Reconciler for the Dummy custom resource."""

    @property
    def name(self) -> str:
        return "dummy"

    @property
    def kind(self) -> str:
        return DUMMY_KIND

    @property
    def owns(self) -> list[str]:
        return [POD_KIND]

    async def fetch(
        self, identity: NamespacedName, ctx: ReconcilerContext
    ) -> FetchResult:
        """Read the Dummy. A missing Dummy is NOT_FOUND, not an error."""
        try:
            record = await ctx.get(DUMMY_KIND, identity.namespace, identity.name)
            return FetchResult(FetchStatus.FOUND, resource=Dummy.from_dict(record))
        except NotFoundError:
            logger.info(
                f"Dummy {identity} not found. "
                f"Ignoring since object must be deleted."
            )
            return FetchResult(FetchStatus.NOT_FOUND)
        except (StoreError, MalformedResourceError) as e:
            return FetchResult(FetchStatus.ERROR, error=e)

    async def ensure_pod(self, dummy: Dummy, ctx: ReconcilerContext) -> SyncResult:
        """
        Make sure the Dummy's Pod exists, creating it if needed.

        An existing Pod is returned as-is. A create that loses a race with a
        concurrent create counts as EXISTED.
        """
        pod_name = dependent_pod_name(dummy)
        try:
            record = await ctx.get(POD_KIND, dummy.namespace, pod_name)
            return SyncResult(SyncStatus.EXISTED, pod=Pod.from_dict(record))
        except NotFoundError:
            pass
        except (StoreError, MalformedResourceError) as e:
            return SyncResult(SyncStatus.ERROR, error=e)

        pod = build_pod(dummy)
        try:
            attach_owner(pod, dummy)
        except AlreadyOwnedError as e:
            return SyncResult(SyncStatus.ERROR, error=e)

        try:
            created = await ctx.create(pod.to_dict())
        except AlreadyExistsError:
            logger.info(
                f"Pod {dummy.namespace}/{pod_name} was created concurrently; "
                f"using the existing one"
            )
            return await self._read_existing_pod(dummy.namespace, pod_name, ctx)
        except StoreError as e:
            return SyncResult(SyncStatus.ERROR, error=e)

        logger.info(f"Created Pod {dummy.namespace}/{pod_name} for Dummy {dummy.name}")
        return SyncResult(SyncStatus.CREATED, pod=Pod.from_dict(created))

    async def _read_existing_pod(
        self, namespace: str, pod_name: str, ctx: ReconcilerContext
    ) -> SyncResult:
        try:
            record = await ctx.get(POD_KIND, namespace, pod_name)
            return SyncResult(SyncStatus.EXISTED, pod=Pod.from_dict(record))
        except (StoreError, MalformedResourceError) as e:
            return SyncResult(SyncStatus.ERROR, error=e)

    async def project_status(
        self, dummy: Dummy, pod: Pod, ctx: ReconcilerContext
    ) -> ProjectResult:
        """Write the Pod phase and the echoed message into the Dummy status."""
        dummy.status.pod_status = pod.phase
        dummy.status.spec_echo = dummy.spec.message
        try:
            await ctx.update_status(dummy.to_dict())
        except StoreError as e:
            return ProjectResult(success=False, error=e)
        return ProjectResult(success=True)

    async def reconcile(
        self, identity: NamespacedName, ctx: ReconcilerContext
    ) -> ReconcileResult:
        fetched = await self.fetch(identity, ctx)
        if fetched.status == FetchStatus.NOT_FOUND:
            return ReconcileResult.stop()
        if fetched.status == FetchStatus.ERROR:
            return ReconcileResult.fail(fetched.error)

        dummy = fetched.resource
        logger.info(f"Reconciling Dummy name={dummy.name} namespace={dummy.namespace}")

        synced = await self.ensure_pod(dummy, ctx)
        if synced.status == SyncStatus.CREATED:
            # A fresh Pod has no phase yet; report it on the next pass.
            return ReconcileResult.requeue()
        if synced.status == SyncStatus.ERROR:
            return ReconcileResult.fail(synced.error)

        projected = await self.project_status(dummy, synced.pod, ctx)
        if not projected.success:
            return ReconcileResult.fail(projected.error)
        return ReconcileResult.stop()
