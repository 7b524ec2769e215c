from __future__ import annotations
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from urllib.parse import unquote, urlsplit

from azure.core.exceptions import ResourceNotFoundError
from azure.storage.blob import BlobSasPermissions, BlobServiceClient, ContentSettings, generate_blob_sas

logger = logging.getLogger(__name__)

COPY_POLL_ATTEMPTS = 20
COPY_POLL_INTERVAL_SEC = 0.5


class BlobStorage:
    """
    Thin adapter over one Azure Blob Storage container.

    This is the whole surface the rest of the app uses, so a test double only
    needs these methods.
    """

    def __init__(self, connection_string: str, container_name: str):
        self._service = BlobServiceClient.from_connection_string(connection_string)
        self._container = self._service.get_container_client(container_name)
        self.container_name = container_name

    def _blob(self, name: str):
        return self._container.get_blob_client(name)

    def url(self, name: str) -> str:
        return self._blob(name).url

    def upload(self, name: str, data: bytes, content_type: str, metadata: Optional[Dict[str, str]] = None) -> str:
        client = self._blob(name)
        client.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type),
            metadata=metadata or None,
        )
        logger.info("uploaded blob %s (%d bytes)", name, len(data))
        return client.url

    def exists(self, name: str) -> bool:
        return self._blob(name).exists()

    def size(self, name: str) -> Optional[int]:
        try:
            return self._blob(name).get_blob_properties().size
        except ResourceNotFoundError:
            return None

    def copy(self, source: str, target: str) -> None:
        dest = self._blob(target)
        dest.start_copy_from_url(self._blob(source).url)
        # same-account copies finish quickly; wait so callers can verify
        for _ in range(COPY_POLL_ATTEMPTS):
            status = dest.get_blob_properties().copy.status
            if status == "success":
                return
            if status in ("failed", "aborted"):
                raise RuntimeError(f"copy {source} -> {target} ended with status {status}")
            time.sleep(COPY_POLL_INTERVAL_SEC)
        raise RuntimeError(f"copy {source} -> {target} still pending")

    def set_metadata(self, name: str, metadata: Dict[str, str]) -> None:
        self._blob(name).set_blob_metadata(metadata)

    def delete(self, name: str) -> None:
        try:
            self._blob(name).delete_blob()
        except ResourceNotFoundError:
            logger.info("blob %s already gone", name)

    def sas_url(self, name: str, ttl_min: int) -> str:
        sas = generate_blob_sas(
            account_name=self._service.account_name,
            container_name=self.container_name,
            blob_name=name,
            account_key=self._service.credential.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(minutes=ttl_min),
        )
        return f"{self.url(name)}?{sas}"


def blob_name_from_url(blob_url: str, container_name: str) -> str:
    """Strip scheme, host, query and container from a blob URL."""
    parts = urlsplit(blob_url)
    path = unquote(parts.path if parts.scheme else blob_url.split("?", 1)[0]).lstrip("/")
    prefix = f"{container_name}/"
    return path[len(prefix):] if path.startswith(prefix) else path
