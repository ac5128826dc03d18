"""
S3-compatible object store access and the cache gate in front of the resolver.

boto3 is synchronous; every call runs in a worker thread so the event loop is never blocked.
"""

import asyncio
import logging
import os
from typing import Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from mediaflow_resolver.configs import StorageConfig, settings
from mediaflow_resolver.errors import StorageUnavailable
from mediaflow_resolver.schemas import CachedAsset

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def ascii_metadata(metadata: Dict[str, str]) -> Dict[str, str]:
    """S3 user metadata must be ASCII; replace anything else."""
    return {
        str(k).encode("ascii", "replace").decode("ascii"): str(v).encode("ascii", "replace").decode("ascii")
        for k, v in metadata.items()
    }


class S3ObjectStore:
    """HEAD and PUT against one bucket, with keys namespaced by a fixed prefix."""

    def __init__(self, config: Optional[StorageConfig] = None, client=None):
        self.config = config or settings.storage_config
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.config.endpoint_url,
                region_name=self.config.region,
                aws_access_key_id=self.config.access_key_id,
                aws_secret_access_key=self.config.secret_access_key,
                config=BotoConfig(signature_version="s3v4", retries={"max_attempts": 1}),
            )
        return self._client

    def key_for(self, video_id: str, extension: str) -> str:
        return f"{self.config.key_prefix}{video_id}.{extension.lstrip('.')}"

    def public_url(self, key: str) -> str:
        if self.config.public_base_url:
            return f"{self.config.public_base_url.rstrip('/')}/{key}"
        endpoint = (self.config.endpoint_url or f"https://s3.{self.config.region}.amazonaws.com").rstrip("/")
        return f"{endpoint}/{self.config.bucket}/{key}"

    async def head(self, key: str) -> Optional[CachedAsset]:
        """
        Return the object at key, or None when it does not exist.

        Raises:
            StorageUnavailable: Any failure other than a missing object.
        """
        try:
            response = await asyncio.to_thread(self.client.head_object, Bucket=self.config.bucket, Key=key)
        except ClientError as e:
            error = e.response.get("Error", {})
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if str(error.get("Code")) in NOT_FOUND_CODES or status == 404:
                return None
            raise StorageUnavailable(f"HEAD {key} failed: {error.get('Code')} {error.get('Message', '')}", key=key)
        except BotoCoreError as e:
            raise StorageUnavailable(f"HEAD {key} failed: {e}", key=key)

        return CachedAsset(
            key=key,
            url=self.public_url(key),
            etag=(response.get("ETag") or "").strip('"') or None,
            size_bytes=response.get("ContentLength"),
            content_type=response.get("ContentType"),
            metadata=dict(response.get("Metadata") or {}),
        )

    def _put_from_path(self, key: str, path: str, content_type: str, metadata: Dict[str, str]) -> dict:
        with open(path, "rb") as body:
            return self.client.put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                Metadata=metadata,
            )

    async def put_file(self, key: str, path: str, content_type: str, metadata: Dict[str, str]) -> CachedAsset:
        """
        Upload a local file with a single PUT, overwriting any existing object at key.

        Raises:
            StorageUnavailable: The upload was rejected or the store is unreachable.
        """
        metadata = ascii_metadata(metadata)
        try:
            response = await asyncio.to_thread(self._put_from_path, key, path, content_type, metadata)
        except ClientError as e:
            error = e.response.get("Error", {})
            raise StorageUnavailable(f"PUT {key} failed: {error.get('Code')} {error.get('Message', '')}", key=key)
        except (BotoCoreError, OSError) as e:
            raise StorageUnavailable(f"PUT {key} failed: {e}", key=key)

        url = self.public_url(key)
        logger.info(f"Uploaded {key} to bucket {self.config.bucket}")
        return CachedAsset(
            key=key,
            url=url,
            etag=(response.get("ETag") or "").strip('"') or None,
            content_type=content_type,
            size_bytes=os.path.getsize(path),
            metadata=metadata,
        )


class CacheGate:
    """Pre-flight lookup of previously materialized artifacts."""

    def __init__(self, store: S3ObjectStore, candidate_extensions: Optional[List[str]] = None):
        self.store = store
        self.candidate_extensions = list(candidate_extensions or store.config.candidate_extensions)

    async def lookup(self, video_id: str, candidate_extensions: Optional[List[str]] = None) -> Optional[CachedAsset]:
        """Probe keys in extension order and return the first hit. Later extensions are not probed."""
        for extension in candidate_extensions or self.candidate_extensions:
            key = self.store.key_for(video_id, extension)
            asset = await self.store.head(key)
            if asset is not None:
                logger.info(f"Cache hit for {video_id}: {key}")
                return asset
        logger.info(f"Cache miss for {video_id}")
        return None
