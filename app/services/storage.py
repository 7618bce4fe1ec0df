"""S3-compatible object storage for submitted recordings."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from app.config.settings import StorageConfig
from app.errors import StorageUploadFailed
from app.services.aws import create_boto3_client

logger = logging.getLogger(__name__)


class ObjectUploader:
    """Push finished media files to the bucket and hand back their CDN URL."""

    def __init__(self, config: StorageConfig, client: Any | None = None) -> None:
        self._bucket = config.bucket_name
        self._cdn_host = config.cdn_host
        self._acl = config.acl
        if client is None:
            client = create_boto3_client(
                "s3",
                region_name=config.region,
                endpoint_url=config.endpoint_url,
                aws_access_key_id=config.access_key,
                aws_secret_access_key=(
                    config.secret_key.get_secret_value() if config.secret_key else None
                ),
            )
        self._client = client

    def public_url(self, remote_key: str) -> str:
        return f"https://{self._bucket}.{self._cdn_host}/{remote_key}"

    async def upload(self, local_path: Path, remote_key: str) -> str:
        """Stream `local_path` to `remote_key` with public-read ACL; return its URL."""

        if not self._bucket:
            raise StorageUploadFailed("Storage bucket name is not configured.")

        extra_args: dict[str, str] = {"ACL": self._acl}
        content_type, _ = mimetypes.guess_type(local_path.name)
        if content_type:
            extra_args["ContentType"] = content_type

        try:
            await run_in_threadpool(
                self._client.upload_file,
                str(local_path),
                self._bucket,
                remote_key,
                ExtraArgs=extra_args,
            )
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as exc:
            raise StorageUploadFailed(f"Failed to upload {remote_key}: {exc}") from exc

        url = self.public_url(remote_key)
        logger.info("Uploaded %s to %s", local_path.name, url)
        return url


__all__ = ["ObjectUploader"]
