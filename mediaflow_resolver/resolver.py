"""
Strategy chain orchestration.

The resolver walks the configured strategies strictly in order. Every failed attempt is recorded in the
provenance log, the network identity is replaced and a jittered backoff delay is awaited before the next
strategy runs. The first attempt that yields a usable variant ends the run.
"""

import asyncio
import logging
import random
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional
from urllib.parse import parse_qs, urlsplit

from mediaflow_resolver.configs import ResolverConfig, settings
from mediaflow_resolver.errors import (
    AllStrategiesExhausted,
    EgressUnavailable,
    ExtractorTimeout,
    NoMetadataFound,
    NoUsableVariant,
    ResolverError,
)
from mediaflow_resolver.extractors.base import BaseExtractor
from mediaflow_resolver.extractors.ytdlp import discard_local_file
from mediaflow_resolver.schemas import (
    ExtractionAttempt,
    NetworkIdentity,
    ResolutionResult,
    SelectionPolicy,
    StreamVariant,
    VariantOrigin,
)
from mediaflow_resolver.utils.cipher import CipherResolver
from mediaflow_resolver.utils.format_selector import select_variant
from mediaflow_resolver.utils.http_utils import DownloadError
from mediaflow_resolver.utils.identity import IdentityRotator
from mediaflow_resolver.utils.rate_limit_handlers import get_rate_limit_handler

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class ResolverState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    ROTATING = "rotating"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


def error_kind(exc: BaseException) -> str:
    """Short, stable name of a failure for the provenance log."""
    if isinstance(exc, (asyncio.TimeoutError, ExtractorTimeout)):
        return "Timeout"
    if isinstance(exc, DownloadError):
        return "HttpStatus"
    if isinstance(exc, ResolverError):
        return type(exc).__name__
    return "UnexpectedError"


def variant_from_fallback_url(url: str) -> StreamVariant:
    """Describe a bare fallback URL as a variant, using the ``mime`` query parameter when present."""
    query = parse_qs(urlsplit(url).query)
    mime = (query.get("mime") or [""])[0]
    kind, _, container = mime.partition("/")
    return StreamVariant(
        reference=url,
        container=container or "mp4",
        is_audio_only=kind == "audio",
        format_id=(query.get("itag") or ["fallback"])[0],
        origin=VariantOrigin.FALLBACK,
        mime_type=mime or None,
    )


class Resolver:
    """
    Single-use state machine resolving one video identifier.

    IDLE -> ATTEMPTING(i) -> SUCCEEDED, or ATTEMPTING(i) -> ROTATING -> ATTEMPTING(i + 1), ending in
    EXHAUSTED when the last strategy fails. The resolver owns its identity and attempt log; create a new
    instance for every identifier.
    """

    def __init__(
        self,
        strategies: List[BaseExtractor],
        rotator: Optional[IdentityRotator] = None,
        policy: Optional[SelectionPolicy] = None,
        cipher_resolver: Optional[CipherResolver] = None,
        resolver_config: Optional[ResolverConfig] = None,
        attempt_timeout: Optional[float] = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        if not strategies:
            raise ValueError("Resolver needs at least one strategy")
        self.strategies = list(strategies)
        self.rotator = rotator or IdentityRotator()
        self.policy = policy or SelectionPolicy()
        self.cipher_resolver = cipher_resolver
        self.config = resolver_config or settings.resolver_config
        self.attempt_timeout = attempt_timeout or settings.transport_config.attempt_timeout
        self._sleep = sleep
        self.rng = rng or random.Random()

        self.state = ResolverState.IDLE
        self.current_index: Optional[int] = None
        self.identity: Optional[NetworkIdentity] = None
        self.provenance: List[ExtractionAttempt] = []
        self._identity_error: Optional[EgressUnavailable] = None

    async def _acquire_identity(self, strategy: BaseExtractor) -> None:
        try:
            self.identity = await self.rotator.new_identity(device=strategy.device, previous=self.identity)
            self._identity_error = None
        except EgressUnavailable as e:
            logger.warning(f"Identity rotation failed before {strategy.name}: {e}")
            self._identity_error = e

    async def _attempt(self, strategy: BaseExtractor, video_id: str) -> StreamVariant:
        if self._identity_error is not None:
            raise self._identity_error

        result = await strategy.attempt(video_id, self.identity)
        if result.is_empty:
            raise NoMetadataFound(f"{strategy.name} returned neither variants nor a fallback URL")
        if not result.variants:
            logger.info(f"{strategy.name}: using fallback URL for {video_id}")
            return variant_from_fallback_url(result.fallback_url)

        selected = None
        try:
            selected = select_variant(result.variants, self.policy, self.cipher_resolver)
        finally:
            # Downloaded files that were not selected have no other owner.
            kept = selected.reference if selected is not None else None
            for variant in result.variants:
                if variant.reference != kept:
                    discard_local_file(variant)
        if selected is None:
            raise NoUsableVariant(f"None of {len(result.variants)} variants from {strategy.name} is usable")
        return selected

    def _record(
        self, strategy: BaseExtractor, started: float, exc: Optional[BaseException] = None
    ) -> ExtractionAttempt:
        attempt = ExtractionAttempt(
            strategy_name=strategy.name,
            outcome="failure" if exc is not None else "success",
            error_kind=error_kind(exc) if exc is not None else None,
            error_message=str(exc)[:300] if exc is not None else None,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
            profile_name=self.identity.profile_name if self.identity else None,
            egress=self.identity.masked_egress if self.identity else None,
        )
        self.provenance.append(attempt)
        return attempt

    def _backoff_delay(self, strategy: BaseExtractor, video_id: str, failures: int) -> float:
        handler = get_rate_limit_handler(strategy.rate_limit_handler_id, strategy.surface_url(video_id))
        return handler.compute_delay(
            failures, self.config.backoff_base, self.config.backoff_max, self.config.jitter, rng=self.rng
        )

    async def resolve(self, video_id: str) -> ResolutionResult:
        """
        Run the strategy chain for one identifier.

        Returns:
            ResolutionResult with the selected variant and the provenance of every attempt made.

        Raises:
            AllStrategiesExhausted: Every strategy failed; carries one attempt record per strategy.
        """
        if self.state != ResolverState.IDLE:
            raise RuntimeError(f"Resolver already used (state {self.state.value})")

        await self._acquire_identity(self.strategies[0])
        last_index = len(self.strategies) - 1

        for index, strategy in enumerate(self.strategies):
            self.state = ResolverState.ATTEMPTING
            self.current_index = index
            timeout = strategy.attempt_timeout() or self.attempt_timeout
            started = time.monotonic()
            try:
                selected = await asyncio.wait_for(self._attempt(strategy, video_id), timeout=timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                attempt = self._record(strategy, started, e)
                if attempt.error_kind == "UnexpectedError":
                    logger.exception(f"Unexpected error in {strategy.name} for {video_id}")
                else:
                    logger.warning(f"{strategy.name} failed for {video_id}: {attempt.error_kind}: {e}")
            else:
                self._record(strategy, started)
                self.state = ResolverState.SUCCEEDED
                logger.info(f"Resolved {video_id} with {strategy.name} (format {selected.format_id})")
                return ResolutionResult(
                    video_id=video_id,
                    selected_variant=selected,
                    provenance=list(self.provenance),
                    strategy_name=strategy.name,
                    policy=self.policy,
                )

            if index == last_index:
                break

            self.state = ResolverState.ROTATING
            delay = self._backoff_delay(strategy, video_id, failures=len(self.provenance))
            await self._acquire_identity(self.strategies[index + 1])
            logger.info(f"Waiting {delay:.1f}s before {self.strategies[index + 1].name}")
            await self._sleep(delay)

        self.state = ResolverState.EXHAUSTED
        raise AllStrategiesExhausted(video_id, self.provenance)
