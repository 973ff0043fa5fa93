"""
Azure Blob Storage implementation of StorageService.

Stages resource files: uploads a local file to a container and hands back
a read-only SAS URL that compute nodes can fetch without credentials.

Storage rejections (HttpResponseError) and transport failures (AzureError)
are re-raised as RemoteServiceError so the orchestrator handles them like
batch service rejections.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContainerClient,
    generate_blob_sas,
)

from batchpilot.errors import RemoteServiceError

logger = logging.getLogger(__name__)

DEFAULT_SAS_EXPIRY = timedelta(days=1)


def account_url_for(account: str) -> str:
    return f"https://{account}.blob.core.windows.net"


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except HttpResponseError as exc:
        code = exc.error_code or (str(exc.status_code) if exc.status_code else "StorageError")
        raise RemoteServiceError(code, exc.message or str(exc)) from exc
    except AzureError as exc:
        # Transport failures: the request never got a response.
        raise RemoteServiceError(type(exc).__name__, exc.message or str(exc)) from exc


@dataclass
class BlobContainer:
    """Container handle returned by BlobStorageService."""
    client: ContainerClient
    account_name: str
    account_key: str

    @property
    def name(self) -> str:
        return self.client.container_name


class BlobStorageService:
    """StorageService backed by Azure Blob Storage with shared-key auth."""

    def __init__(self, sas_expiry: timedelta = DEFAULT_SAS_EXPIRY):
        self.sas_expiry = sas_expiry

    def create_container_if_not_exists(self, account: str, key: str, name: str) -> BlobContainer:
        service = BlobServiceClient(account_url=account_url_for(account), credential=key)
        client = service.get_container_client(name)
        with _translate_errors():
            try:
                client.create_container()
                logger.info(f"Created storage container {name}")
            except ResourceExistsError:
                logger.debug(f"Storage container {name} already exists")
        return BlobContainer(client=client, account_name=account, account_key=key)

    def upload_file(self, container: BlobContainer, local_path: Path) -> str:
        """
        Upload a file and return a read-only SAS URL for it.

        Args:
            container: Handle from create_container_if_not_exists
            local_path: File to upload; the blob takes its file name

        Returns:
            Blob URL with a SAS token valid for sas_expiry
        """
        local_path = Path(local_path)
        with open(local_path, "rb") as f, _translate_errors():
            blob = container.client.upload_blob(name=local_path.name, data=f, overwrite=True)

        sas = generate_blob_sas(
            account_name=container.account_name,
            container_name=container.name,
            blob_name=local_path.name,
            account_key=container.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + self.sas_expiry,
        )
        logger.info(f"Uploaded {local_path} to container {container.name}")
        return f"{blob.url}?{sas}"

    def delete_container(self, container: BlobContainer) -> None:
        with _translate_errors():
            try:
                container.client.delete_container()
            except ResourceNotFoundError:
                logger.debug(f"Storage container {container.name} already gone")
