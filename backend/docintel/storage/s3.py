"""
S3 Object Storage — read side used by the extraction stage.

Uploads happen outside this service; the pipeline only fetches the bytes of
an object by the key recorded on the Document (`file_path`). Works against
AWS S3, MinIO or LocalStack (set S3_ENDPOINT_URL for the latter two).

Raw bytes never travel through task payloads: events carry the key and the
worker downloads inside the extract-text step.
"""

from __future__ import annotations

import logging

import aioboto3
from botocore.exceptions import ClientError

from docintel.core.config import settings

logger = logging.getLogger(__name__)


class S3ObjectStorage:
    """Async fetch-by-key against a single bucket."""

    def __init__(self, bucket: str | None = None) -> None:
        self._bucket  = bucket or settings.s3_bucket
        self._session = aioboto3.Session(
            aws_access_key_id=settings.aws_access_key_id or None,
            aws_secret_access_key=settings.aws_secret_access_key or None,
            region_name=settings.aws_region,
        )

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url or None,
        )

    async def get_file_buffer(self, key: str) -> bytes:
        """
        Download an object's full body.

        Raises FileNotFoundError on a missing key; any other ClientError
        propagates so the orchestrator retries the step.
        """
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                body = await resp["Body"].read()
            except ClientError as exc:
                code = exc.response["Error"]["Code"]
                if code in ("NoSuchKey", "404"):
                    raise FileNotFoundError(f"Object not found: {key}") from exc
                raise

        logger.info("S3 download ok | bucket=%s key=%s size=%d", self._bucket, key, len(body))
        return body
