"""
Pool schemas - what batchpilot asks for and what the service reports back.

PoolSpec is the requested pool, keyed by pool_id.
PoolDescriptor is the service's view of a pool at one point in time.
PoolPhase is derived from a descriptor and never stored.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class PoolLifecycleState(str, Enum):
    """Lifecycle state reported by the service."""
    ACTIVE = "active"
    DELETING = "deleting"
    UPGRADING = "upgrading"


class AllocationState(str, Enum):
    """Allocation state reported by the service."""
    STEADY = "steady"
    RESIZING = "resizing"
    STOPPING = "stopping"


class PoolPhase(str, Enum):
    """Phase of a pool as seen by the provisioner."""
    ABSENT = "absent"
    CREATING = "creating"
    ACTIVE_RESIZING = "active_resizing"
    ACTIVE_STEADY = "active_steady"
    DELETING = "deleting"


class NodeState(str, Enum):
    """Compute node states that batchpilot cares about."""
    IDLE = "idle"
    RUNNING = "running"
    STARTING = "starting"
    CREATING = "creating"
    OTHER = "other"


@dataclass(frozen=True)
class PoolSpec:
    """
    The pool a run needs.

    Attributes:
        pool_id: Unique pool identifier, also the idempotency key
        vm_size: Virtual machine size, e.g. Standard_A1_v2
        vm_count: Number of dedicated nodes
        os_publisher: Image publisher, matched case-insensitively
        os_offer: Image offer, matched case-insensitively
    """
    pool_id: str
    vm_size: str
    vm_count: int
    os_publisher: str
    os_offer: str

    def __post_init__(self):
        if not self.pool_id:
            raise ValueError("pool_id is required")
        if self.vm_count < 1:
            raise ValueError(f"vm_count must be at least 1, got {self.vm_count}")


@dataclass(frozen=True)
class PoolDescriptor:
    """A snapshot of a pool as reported by the service."""
    id: str
    state: Optional[PoolLifecycleState] = None
    allocation_state: Optional[AllocationState] = None
    vm_size: Optional[str] = None
    target_dedicated_nodes: Optional[int] = None
    current_dedicated_nodes: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.state == PoolLifecycleState.ACTIVE

    @property
    def is_steady(self) -> bool:
        return self.allocation_state == AllocationState.STEADY

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for display."""
        return {
            "id": self.id,
            "state": self.state.value if self.state else None,
            "allocation_state": self.allocation_state.value if self.allocation_state else None,
            "vm_size": self.vm_size,
            "target_dedicated_nodes": self.target_dedicated_nodes,
            "current_dedicated_nodes": self.current_dedicated_nodes,
        }


def pool_phase(descriptor: Optional[PoolDescriptor]) -> PoolPhase:
    """
    Derive the phase of a pool from its descriptor.

    Args:
        descriptor: The pool snapshot, or None if the pool does not exist

    Returns:
        The PoolPhase for the snapshot
    """
    if descriptor is None:
        return PoolPhase.ABSENT
    if descriptor.state == PoolLifecycleState.DELETING:
        return PoolPhase.DELETING
    if descriptor.allocation_state is None:
        return PoolPhase.CREATING
    if descriptor.is_steady:
        return PoolPhase.ACTIVE_STEADY
    return PoolPhase.ACTIVE_RESIZING


@dataclass(frozen=True)
class ImageReference:
    """Marketplace image coordinates."""
    publisher: str
    offer: str
    sku: str
    version: str = "latest"


@dataclass(frozen=True)
class ImageInfo:
    """An image the service supports, with the node agent it needs."""
    image: ImageReference
    node_agent_sku_id: str
    os_type: str
    verification: str

    @property
    def is_verified_linux(self) -> bool:
        return self.os_type.lower() == "linux" and self.verification.lower() == "verified"

    def matches(self, publisher: str, offer: str) -> bool:
        """Case-insensitive match on publisher and offer."""
        return (
            self.image.publisher.lower() == publisher.lower()
            and self.image.offer.lower() == offer.lower()
        )


@dataclass(frozen=True)
class VirtualMachineConfiguration:
    """Image and node agent used to create a pool's nodes."""
    image: ImageReference
    node_agent_sku_id: str


@dataclass(frozen=True)
class NodeSummary:
    """Minimal projection of a compute node."""
    id: str
    state: NodeState
