"""Azure Blob Storage offset store.

Each checkpoint key is one block blob in the container (under an optional
prefix), holding the cursor as ASCII digits. A missing blob means the stream
has never been checkpointed.
"""

from azure.core.exceptions import (
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.storage.blob.aio import BlobServiceClient, ContainerClient

from logtail.offsets.base import BaseOffsetStore


class BlobOffsetStore(BaseOffsetStore):
    """Cursors stored as small blobs, one per checkpoint key."""

    backend = "blob"

    def __init__(
        self,
        container: str,
        connection_string: str = "",
        account_url: str = "",
        credential: str = "",
        prefix: str = "",
        **kwargs,
    ):
        super().__init__(**kwargs)
        if not connection_string and not account_url:
            raise ValueError("BlobOffsetStore requires connection_string or account_url")
        self.container = container
        self.prefix = prefix.strip("/")
        self._connection_string = connection_string
        self._account_url = account_url
        self._credential = credential or None
        self._service_client: BlobServiceClient | None = None
        self._container_client: ContainerClient | None = None

    async def start(self) -> None:
        if self._container_client is not None:
            return

        if self._connection_string:
            self._service_client = BlobServiceClient.from_connection_string(
                self._connection_string
            )
        else:
            self._service_client = BlobServiceClient(
                account_url=self._account_url, credential=self._credential
            )
        self._container_client = self._service_client.get_container_client(self.container)

        await self._call("create_container", self.container, self._ensure_container())

        self._logger.info(
            "Blob offset store ready",
            extra={"backend": self.backend, "container": self.container},
        )

    async def _ensure_container(self) -> None:
        try:
            await self._container_client.create_container()
        except ResourceExistsError:
            return
        except HttpResponseError as e:
            # Credentials scoped to blobs (SAS, data-plane RBAC) may not
            # create containers; reads and writes will surface a real problem
            self._logger.warning(
                "Could not create checkpoint container, assuming it exists",
                extra={
                    "backend": self.backend,
                    "container": self.container,
                    "http_status": e.status_code,
                    "error_code": e.error_code,
                },
            )
            return
        self._logger.info(
            "Created checkpoint container",
            extra={"backend": self.backend, "container": self.container},
        )

    async def close(self) -> None:
        if self._service_client is not None:
            await self._service_client.close()
        self._service_client = None
        self._container_client = None

    def blob_name(self, key: str) -> str:
        key = key.lstrip("/")
        return f"{self.prefix}/{key}" if self.prefix else key

    def _container(self) -> ContainerClient:
        if self._container_client is None:
            raise RuntimeError("BlobOffsetStore not started. Call start() first.")
        return self._container_client

    async def _read(self, key: str) -> bytes | None:
        blob_client = self._container().get_blob_client(self.blob_name(key))
        try:
            stream = await blob_client.download_blob()
        except ResourceNotFoundError:
            return None
        return await stream.readall()

    async def _write(self, key: str, data: bytes) -> None:
        blob_client = self._container().get_blob_client(self.blob_name(key))
        await blob_client.upload_blob(data, overwrite=True)
