import asyncio
import logging
import os
import tempfile
from datetime import datetime
from typing import List, Optional, Tuple

from mediaflow_resolver.configs import settings
from mediaflow_resolver.const import CONTENT_TYPES
from mediaflow_resolver.errors import OperationTimeout
from mediaflow_resolver.extractors.ytdlp import YtDlpExtractor
from mediaflow_resolver.schemas import (
    CachedAsset,
    ExtractionAttempt,
    NetworkIdentity,
    ReferenceKind,
    SelectionPolicy,
    StreamVariant,
    summarize_provenance,
    utcnow,
)
from mediaflow_resolver.storage import S3ObjectStore
from mediaflow_resolver.utils.http_utils import DownloadError, create_httpx_client, download_to_file

logger = logging.getLogger(__name__)


def content_type_for(variant: StreamVariant) -> str:
    content_type = CONTENT_TYPES.get((variant.extension, variant.is_audio_only))
    if content_type:
        return content_type
    if variant.mime_type:
        return variant.mime_type.split(";")[0].strip()
    return "application/octet-stream"


def build_metadata(
    video_id: str,
    variant: StreamVariant,
    method: str,
    policy: Optional[SelectionPolicy] = None,
    provenance: Optional[List[ExtractionAttempt]] = None,
    extracted_at: Optional[datetime] = None,
) -> dict:
    """Descriptive object metadata. All values are strings."""
    return {
        "video-id": video_id,
        "format-id": variant.format_id,
        "container": variant.container,
        "codec": variant.codec_hint or "unknown",
        "bitrate": str(variant.bitrate_hint) if variant.bitrate_hint is not None else "unknown",
        "policy": (policy or SelectionPolicy()).describe(),
        "provenance": summarize_provenance(provenance or []),
        "extracted-at": (extracted_at or utcnow()).isoformat(),
        "method": method,
        "processing-status": "ready-for-transcription",
    }


class Materializer:
    """
    Turns a selected variant into an object in the store.

    Bytes are buffered to a temporary file and uploaded with a single PUT, so a failed transfer never
    leaves a partial object behind. The key depends only on the video id and the file extension; running
    it twice for the same id overwrites the same object.
    """

    def __init__(
        self,
        store: S3ObjectStore,
        delegate: Optional[YtDlpExtractor] = None,
        transfer_timeout: Optional[float] = None,
        temp_dir: Optional[str] = None,
        transport=None,
    ):
        self.store = store
        self.delegate = delegate
        self.transfer_timeout = transfer_timeout or settings.transport_config.transfer_timeout
        self.temp_dir = temp_dir
        self.transport = transport

    async def _fetch_direct(
        self, video_id: str, variant: StreamVariant, identity: Optional[NetworkIdentity]
    ) -> str:
        fd, path = tempfile.mkstemp(prefix=f"audio_{video_id}_", suffix=f".{variant.extension}", dir=self.temp_dir)
        os.close(fd)
        try:
            async with create_httpx_client(identity, transport=self.transport, timeout=self.transfer_timeout) as client:
                written = await download_to_file(client, variant.reference, path)
        except BaseException:
            self._cleanup(path)
            raise
        logger.info(f"Downloaded {written} bytes of {video_id} (format {variant.format_id})")
        return path

    async def _fetch(
        self, video_id: str, variant: StreamVariant, identity: Optional[NetworkIdentity]
    ) -> Tuple[StreamVariant, str, str]:
        """Return the variant actually stored, its local path and the retrieval method."""
        if variant.reference_kind == ReferenceKind.LOCAL_FILE:
            return variant, variant.reference, "ytdlp"
        if variant.reference_kind == ReferenceKind.CIPHER:
            raise ValueError(f"Variant {variant.format_id} has an unresolved cipher reference")

        try:
            return variant, await self._fetch_direct(video_id, variant, identity), "direct"
        except DownloadError as e:
            if self.delegate is None or not 400 <= e.status_code < 500:
                raise
            logger.warning(f"Direct fetch of {video_id} refused ({e.status_code}), downloading with yt-dlp")

        local = await self.delegate.download(video_id, identity)
        return local, local.reference, "ytdlp"

    def _cleanup(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete temporary file {path}: {e}")

    async def _materialize(
        self, video_id, variant, identity, policy, provenance, extracted_at, pending: dict
    ) -> CachedAsset:
        stored, path, method = await self._fetch(video_id, variant, identity)
        try:
            key = self.store.key_for(video_id, stored.extension)
            metadata = build_metadata(video_id, stored, method, policy, provenance, extracted_at)
            pending.update(key=key, metadata=metadata)
            return await self.store.put_file(key, path, content_type_for(stored), metadata)
        finally:
            self._cleanup(path)

    async def _late_upload(self, pending: dict) -> Optional[CachedAsset]:
        """The object written by a PUT that outlived the deadline, if it has landed."""
        key = pending.get("key")
        if key is None:
            return None
        asset = await self.store.head(key)
        if asset is None or asset.metadata.get("extracted-at") != pending["metadata"]["extracted-at"]:
            return None
        return asset

    async def materialize(
        self,
        video_id: str,
        variant: StreamVariant,
        policy: Optional[SelectionPolicy] = None,
        provenance: Optional[List[ExtractionAttempt]] = None,
        extracted_at: Optional[datetime] = None,
        identity: Optional[NetworkIdentity] = None,
    ) -> CachedAsset:
        """
        Download the variant and upload it to the object store.

        The deadline cannot stop a PUT already handed to a worker thread. When the deadline hits during
        the upload, the store is checked once: an object carrying this run's metadata is returned as the
        result, otherwise OperationTimeout is raised and the upload may still land later.

        Raises:
            OperationTimeout: Download plus upload exceeded the transfer timeout.
            StorageUnavailable: The upload failed.
            DownloadError: The bytes could not be fetched.
        """
        extracted_at = extracted_at or utcnow()
        pending = {}
        try:
            return await asyncio.wait_for(
                self._materialize(video_id, variant, identity, policy, provenance, extracted_at, pending),
                timeout=self.transfer_timeout,
            )
        except asyncio.TimeoutError:
            asset = await self._late_upload(pending)
            if asset is not None:
                logger.warning(f"Upload of {asset.key} completed after the {self.transfer_timeout:.0f}s deadline")
                return asset
            message = f"Materializing {video_id} exceeded {self.transfer_timeout:.0f} seconds"
            if pending.get("key"):
                message += f"; the upload of {pending['key']} may still complete"
            raise OperationTimeout(message)
