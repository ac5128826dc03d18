import json
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReferenceKind(str, Enum):
    DIRECT = "direct"
    CIPHER = "cipher"
    LOCAL_FILE = "local_file"


class VariantOrigin(str, Enum):
    COMBINED = "combined"
    ADAPTIVE = "adaptive"
    DELEGATE = "delegate"
    FALLBACK = "fallback"


class StreamVariant(BaseModel):
    """One retrievable encoding of the content. Never mutated; use ``model_copy(update=...)``."""

    model_config = ConfigDict(frozen=True)

    reference: str = Field(..., description="Direct URL, local file path or encoded cipher parameter set.")
    reference_kind: ReferenceKind = ReferenceKind.DIRECT
    container: str = Field("mp4", description="Container name, e.g. mp4 or webm.")
    is_audio_only: bool = False
    codec_hint: Optional[str] = None
    bitrate_hint: Optional[int] = None
    size_hint: Optional[int] = None
    quality_label: Optional[str] = None
    format_id: str
    origin: VariantOrigin = VariantOrigin.ADAPTIVE
    mime_type: Optional[str] = None

    @property
    def extension(self) -> str:
        """File extension used for storage keys."""
        if self.is_audio_only and self.container == "mp4":
            return "m4a"
        return self.container


class NetworkIdentity(BaseModel):
    """Headers and egress used for one attempt. Replaced, never mutated, on rotation."""

    model_config = ConfigDict(frozen=True)

    headers: Dict[str, str] = Field(default_factory=dict)
    egress_address: Optional[str] = None
    country_hint: Optional[str] = None
    profile_name: str = "default"
    device: str = "desktop"

    @property
    def masked_egress(self) -> str:
        if not self.egress_address:
            return "direct"
        parts = urlsplit(self.egress_address)
        if parts.username or parts.password:
            # netloc, not .port: a malformed port must not break logging
            host = parts.netloc.rsplit("@", 1)[-1]
            return f"{parts.scheme}://***@{host}"
        return self.egress_address


class ExtractionAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy_name: str
    outcome: Literal["success", "failure"]
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: float = 0.0
    profile_name: Optional[str] = None
    egress: Optional[str] = None


def summarize_provenance(provenance: List[ExtractionAttempt]) -> str:
    """Compact attempt log, e.g. ``embed:failure:UpstreamBlocked;mobile:success``."""
    return ";".join(
        f"{a.strategy_name}:{a.outcome}" + (f":{a.error_kind}" if a.error_kind else "") for a in provenance
    )


class CachedAsset(BaseModel):
    """A previously materialized artifact in the object store."""

    model_config = ConfigDict(frozen=True)

    key: str
    url: str
    etag: Optional[str] = None
    size_bytes: Optional[int] = None
    content_type: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class SelectionPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    prefer_audio_only: bool = False
    max_quality_label: Optional[str] = Field(None, description="Highest acceptable video quality label, e.g. 720p.")
    minimize_size: bool = False
    require_container_in: Optional[Tuple[str, ...]] = None

    def describe(self) -> str:
        """Compact, stable description used in storage metadata."""
        return json.dumps(self.model_dump(mode="json", exclude_none=True), sort_keys=True, separators=(",", ":"))


class StrategyResult(BaseModel):
    """What one strategy attempt produced: a list of variants or a single fallback URL."""

    variants: List[StreamVariant] = Field(default_factory=list)
    fallback_url: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.variants and not self.fallback_url


class ResolutionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    video_id: str
    selected_variant: Optional[StreamVariant] = None
    provenance: List[ExtractionAttempt] = Field(default_factory=list)
    extracted_at: datetime = Field(default_factory=utcnow)
    strategy_name: Optional[str] = None
    policy: Optional[SelectionPolicy] = None
    cached_asset: Optional[CachedAsset] = None

    @property
    def from_cache(self) -> bool:
        return self.cached_asset is not None and not self.provenance

    def provenance_summary(self) -> str:
        return summarize_provenance(self.provenance)
