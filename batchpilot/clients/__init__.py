"""
batchpilot.clients - Remote service boundaries.

The protocols live in base.py. The Azure implementations are imported from
their own modules so that the SDKs load only when they are used:

    from batchpilot.clients.azure_batch import AzureBatchClient
    from batchpilot.clients.blob_storage import BlobStorageService
"""

from .base import (
    ID_STATE_SELECT,
    IDLE_NODE_FILTER,
    RemoteClient,
    StorageService,
)

__all__ = [
    "ID_STATE_SELECT",
    "IDLE_NODE_FILTER",
    "RemoteClient",
    "StorageService",
]
