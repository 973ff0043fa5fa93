"""
PoolProvisioner - create-or-reuse a pool and wait until it is usable.

Provisioning flow:
1. Reuse: an existing, active pool is resized to the requested node count
2. Create: otherwise a verified Linux image is resolved and the pool created
   (a concurrent PoolExists rejection falls back to the reuse path)
3. Wait for the allocation state to become steady
4. Optionally wait for at least one idle node
5. Return the pool's current descriptor

Provisioning never deletes anything and is safe to repeat with the same
pool id.
"""

import logging
import time
from typing import Iterable, Optional

from batchpilot.clients.base import IDLE_NODE_FILTER, ID_STATE_SELECT, RemoteClient
from batchpilot.errors import (
    NoMatchingImage,
    ProvisionError,
    ProvisionTimeout,
    RemoteServiceError,
)
from batchpilot.schemas import (
    ImageInfo,
    PoolDescriptor,
    PoolSpec,
    VirtualMachineConfiguration,
    pool_phase,
)
from batchpilot.waiting import Clock, Sleep, WaitOutcome, wait_until

logger = logging.getLogger(__name__)

POOL_EXISTS_CODE = "PoolExists"

DEFAULT_POOL_STEADY_TIMEOUT = 5 * 60
DEFAULT_VM_READY_TIMEOUT = 20 * 60
DEFAULT_POLL_INTERVAL = 10


def find_verified_image(
    images: Iterable[ImageInfo], publisher: str, offer: str
) -> Optional[ImageInfo]:
    """
    Return the first verified Linux image matching publisher and offer.

    Matching is case-insensitive on both fields.
    """
    for image in images:
        if image.is_verified_linux and image.matches(publisher, offer):
            return image
    return None


class PoolProvisioner:
    """Ensures a named pool exists and has reached a steady, usable state."""

    def __init__(
        self,
        client: RemoteClient,
        pool_steady_timeout: float = DEFAULT_POOL_STEADY_TIMEOUT,
        vm_ready_timeout: float = DEFAULT_VM_READY_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        wait_for_idle_node: bool = True,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
    ):
        self._client = client
        self.pool_steady_timeout = pool_steady_timeout
        self.vm_ready_timeout = vm_ready_timeout
        self.poll_interval = poll_interval
        self.wait_for_idle_node = wait_for_idle_node
        self._clock = clock
        self._sleep = sleep

    def ensure_pool(self, spec: PoolSpec) -> PoolDescriptor:
        """
        Create or reuse the pool described by spec and wait until it is usable.

        Args:
            spec: The requested pool

        Returns:
            The pool's descriptor after it reached a steady state

        Raises:
            NoMatchingImage: No verified Linux image matches the requested publisher and offer
            ProvisionError: The service rejected a pool operation
            ProvisionTimeout: The pool was not steady, or had no idle node, in time
        """
        try:
            if self._has_active_pool(spec.pool_id):
                self._resize(spec)
            else:
                self._create(spec)

            self._wait_for_steady(spec.pool_id)
            if self.wait_for_idle_node:
                self._wait_for_idle_node(spec.pool_id)

            pool = self._client.get_pool(spec.pool_id)
        except RemoteServiceError as e:
            raise ProvisionError(f"Provisioning pool {spec.pool_id} failed: {e}") from e

        logger.info(f"Pool {pool.id} ready ({pool_phase(pool).value})")
        return pool

    def _has_active_pool(self, pool_id: str) -> bool:
        if not self._client.pool_exists(pool_id):
            return False
        return self._client.get_pool(pool_id).is_active

    def _resize(self, spec: PoolSpec) -> None:
        logger.info(
            f"Pool {spec.pool_id} already exists: resizing to {spec.vm_count} dedicated node(s)"
        )
        self._client.resize_pool(spec.pool_id, spec.vm_count, 0)

    def _create(self, spec: PoolSpec) -> None:
        image = find_verified_image(
            self._client.list_supported_images(), spec.os_publisher, spec.os_offer
        )
        if image is None:
            raise NoMatchingImage(spec.os_publisher, spec.os_offer)

        configuration = VirtualMachineConfiguration(
            image=image.image,
            node_agent_sku_id=image.node_agent_sku_id,
        )
        logger.info(
            f"Creating pool {spec.pool_id} with {spec.vm_count} dedicated node(s) "
            f"({image.image.publisher}/{image.image.offer}/{image.image.sku})"
        )
        try:
            self._client.create_pool(spec.pool_id, spec.vm_size, configuration, spec.vm_count)
        except RemoteServiceError as e:
            if e.code != POOL_EXISTS_CODE:
                raise
            logger.info(f"Pool {spec.pool_id} was created concurrently")
            self._resize(spec)

    def _wait_for_steady(self, pool_id: str) -> None:
        logger.info(f"Waiting for pool {pool_id} to reach a steady state")

        def on_tick(elapsed: float) -> None:
            logger.info(f"  pool {pool_id} still resizing ({elapsed:.0f}s)")

        outcome = wait_until(
            lambda: self._client.get_pool(pool_id).is_steady,
            interval=self.poll_interval,
            timeout=self.pool_steady_timeout,
            clock=self._clock,
            sleep=self._sleep,
            on_tick=on_tick,
        )
        if outcome == WaitOutcome.TIMED_OUT:
            raise ProvisionTimeout("pool not steady", self.pool_steady_timeout)

    def _wait_for_idle_node(self, pool_id: str) -> None:
        # Nodes need not be idle to accept a job; this makes readiness observable.
        logger.info(f"Waiting for an idle node in pool {pool_id}")

        def on_tick(elapsed: float) -> None:
            logger.info(f"  no idle node in pool {pool_id} yet ({elapsed:.0f}s)")

        def has_idle_node() -> bool:
            nodes = self._client.list_nodes(
                pool_id, filter=IDLE_NODE_FILTER, select=ID_STATE_SELECT
            )
            return len(nodes) > 0

        outcome = wait_until(
            has_idle_node,
            interval=self.poll_interval,
            timeout=self.vm_ready_timeout,
            clock=self._clock,
            sleep=self._sleep,
            on_tick=on_tick,
        )
        if outcome == WaitOutcome.TIMED_OUT:
            raise ProvisionTimeout("no idle node", self.vm_ready_timeout)
