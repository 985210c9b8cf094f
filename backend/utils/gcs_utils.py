from __future__ import annotations

import json
import logging
from typing import Optional

from google.cloud import storage
from google.cloud.exceptions import NotFound
from google.oauth2 import service_account


logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


def _get_storage_client(credentials_raw: str = "") -> storage.Client:
    if not credentials_raw:
        return storage.Client()
    credentials_info = json.loads(credentials_raw)
    credentials = service_account.Credentials.from_service_account_info(
        credentials_info
    )
    return storage.Client(
        credentials=credentials, project=credentials_info.get("project_id")
    )


class GCSObjectStore:
    """Job artifact store on one bucket; every path is relative to it."""

    def __init__(
        self,
        bucket_name: str,
        client: storage.Client | None = None,
        credentials_raw: str = "",
    ):
        self.bucket_name = bucket_name
        self._client = client
        self._credentials_raw = credentials_raw

    def _bucket(self) -> storage.Bucket:
        if self._client is None:
            self._client = _get_storage_client(self._credentials_raw)
        return self._client.bucket(self.bucket_name)

    def uri(self, path: str) -> str:
        return f"gs://{self.bucket_name}/{path}"

    def put(self, path: str, data: bytes | str, content_type: str) -> str:
        try:
            blob = self._bucket().blob(path)
            blob.upload_from_string(data, content_type=content_type)
        except Exception as exc:
            logger.exception(
                "Error uploading file to bucket %s at %s", self.bucket_name, path
            )
            raise StorageError(f"Failed to write {self.uri(path)}") from exc
        return self.uri(path)

    def get(self, path: str) -> Optional[bytes]:
        try:
            return self._bucket().blob(path).download_as_bytes()
        except NotFound:
            return None
        except Exception as exc:
            logger.exception(
                "Error downloading file from bucket %s at %s", self.bucket_name, path
            )
            raise StorageError(f"Failed to read {self.uri(path)}") from exc

    def exists(self, path: str) -> bool:
        try:
            return bool(self._bucket().blob(path).exists())
        except Exception as exc:
            logger.exception(
                "Error checking file in bucket %s at %s", self.bucket_name, path
            )
            raise StorageError(f"Failed to check {self.uri(path)}") from exc

    def updated_at(self, path: str) -> str | None:
        try:
            blob = self._bucket().get_blob(path)
        except Exception as exc:
            logger.exception(
                "Error reading metadata from bucket %s at %s", self.bucket_name, path
            )
            raise StorageError(f"Failed to stat {self.uri(path)}") from exc
        if blob is None or blob.updated is None:
            return None
        return blob.updated.isoformat()
