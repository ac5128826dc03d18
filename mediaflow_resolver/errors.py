from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from mediaflow_resolver.schemas import ExtractionAttempt


class ResolverError(Exception):
    """Base exception for the resolution pipeline."""

    pass


class InvalidIdentifier(ResolverError, ValueError):
    """The input does not carry a well-formed content identifier."""

    pass


class ExtractorError(ResolverError):
    """Base exception for failures of a single extraction strategy attempt."""

    pass


class UpstreamBlocked(ExtractorError):
    """The upstream answered with a bot-detection page or a throttling status."""

    pass


class NoMetadataFound(ExtractorError):
    """No embedded stream metadata could be located in the upstream document."""

    pass


class NoUsableVariant(ExtractorError):
    """Metadata was found but no variant survived format selection."""

    pass


class ExtractorTimeout(ExtractorError):
    """A strategy attempt exceeded its deadline."""

    pass


class EgressUnavailable(ExtractorError):
    """Proxy-only operation was requested but no egress address could be provisioned."""

    pass


class CipherDecodeFailed(ResolverError):
    """An obfuscated variant reference could not be reconstructed."""

    pass


class AllStrategiesExhausted(ResolverError):
    """Every strategy of the chain failed. Carries the full attempt log."""

    def __init__(self, video_id: str, provenance: List["ExtractionAttempt"]):
        self.video_id = video_id
        self.provenance = list(provenance)
        summary = ", ".join(f"{a.strategy_name}={a.error_kind}" for a in self.provenance)
        super().__init__(f"All {len(self.provenance)} strategies failed for {video_id}: {summary}")


class StorageUnavailable(ResolverError):
    """The object store could not be reached or rejected the operation."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)


class OperationTimeout(ResolverError):
    """A bounded materialization step exceeded its deadline."""

    pass
