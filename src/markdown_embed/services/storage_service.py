"""Azure Blob Storage service for crawled markdown."""

from typing import Optional

from azure.core.exceptions import ResourceNotFoundError
from azure.identity.aio import DefaultAzureCredential
from azure.storage.blob.aio import BlobServiceClient

from markdown_embed.config import Settings, get_settings
from markdown_embed.utils.errors import BlobFetchError, PipelineStage, stage_errors
from markdown_embed.utils.logging import get_logger

logger = get_logger("storage_service")


class StorageService:
    """
    Reads crawled markdown from Azure Blob Storage.

    Storage keys are blob names inside the configured container.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[BlobServiceClient] = None,
    ):
        self._settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> BlobServiceClient:
        """
        Get or create BlobServiceClient.

        Raises:
            BlobFetchError: If storage is not configured.
        """
        if self._client is not None:
            return self._client

        storage = self._settings.storage
        if storage.connection_string:
            self._client = BlobServiceClient.from_connection_string(storage.connection_string)
            logger.info("Created BlobServiceClient with connection string")
        elif storage.account_name and storage.use_managed_identity:
            account_url = f"https://{storage.account_name}.blob.core.windows.net"
            self._client = BlobServiceClient(
                account_url=account_url, credential=DefaultAzureCredential()
            )
            logger.info(f"Created BlobServiceClient with Managed Identity: {storage.account_name}")
        else:
            raise BlobFetchError(
                "Storage not configured. Set STORAGE_ACCOUNT_NAME and either "
                "STORAGE_USE_MANAGED_IDENTITY or STORAGE_CONNECTION_STRING"
            )
        return self._client

    async def fetch_markdown(self, storage_key: str) -> Optional[str]:
        """
        Download a markdown blob and decode it as UTF-8, replacing invalid bytes.

        Returns:
            The markdown text, or None when the blob does not exist.

        Raises:
            BlobFetchError: If the download fails for any other reason.
        """
        container_name = self._settings.storage.container_name
        async with stage_errors(PipelineStage.FETCH, storage_key=storage_key, container=container_name):
            blob_client = self._get_client().get_blob_client(
                container=container_name, blob=storage_key
            )
            try:
                download_stream = await blob_client.download_blob()
            except ResourceNotFoundError:
                logger.info(
                    "Markdown not found in blob storage",
                    extra={"extra_fields": {"storage_key": storage_key, "container": container_name}},
                )
                return None
            data = await download_stream.readall()
            if isinstance(data, bytes):
                markdown = data.decode("utf-8", errors="replace")
            else:
                markdown = str(data)

        logger.info(
            "Fetched markdown from blob storage",
            extra={"extra_fields": {"storage_key": storage_key, "size": len(markdown)}},
        )
        return markdown

    async def check_connection(self) -> bool:
        """Check that the markdown container is reachable."""
        try:
            container = self._get_client().get_container_client(
                self._settings.storage.container_name
            )
            return bool(await container.exists())
        except Exception as e:
            logger.warning(f"Storage connection check failed: {e}")
            return False

    async def close(self) -> None:
        """Close storage client."""
        if self._client:
            try:
                await self._client.close()
                logger.info("Storage client closed")
            except Exception as e:
                logger.error(f"Error closing storage client: {e}", exc_info=True)
            finally:
                self._client = None
