import logging
import random
from typing import List, Optional

from mediaflow_resolver.configs import ResolverConfig, settings
from mediaflow_resolver.extractors.base import BaseExtractor
from mediaflow_resolver.extractors.ytdlp import discard_local_file
from mediaflow_resolver.identifiers import parse_identifier
from mediaflow_resolver.materializer import Materializer
from mediaflow_resolver.resolver import Resolver, SleepFunc
from mediaflow_resolver.schemas import ReferenceKind, ResolutionResult, SelectionPolicy
from mediaflow_resolver.storage import CacheGate
from mediaflow_resolver.utils.cipher import CipherResolver
from mediaflow_resolver.utils.identity import IdentityRotator

logger = logging.getLogger(__name__)


def default_policy() -> SelectionPolicy:
    return SelectionPolicy(**settings.default_policy.model_dump())


class ResolutionPipeline:
    """
    URL in, resolved (and optionally stored) stream out.

    Order per run: identifier parsing, cache lookup, strategy chain with format selection, upload. A new
    Resolver is created for every run, so concurrent runs share only the rotator's provisioner and the
    object store.
    """

    def __init__(
        self,
        strategies: List[BaseExtractor],
        rotator: Optional[IdentityRotator] = None,
        cache_gate: Optional[CacheGate] = None,
        materializer: Optional[Materializer] = None,
        policy: Optional[SelectionPolicy] = None,
        cipher_resolver: Optional[CipherResolver] = None,
        resolver_config: Optional[ResolverConfig] = None,
        attempt_timeout: Optional[float] = None,
        sleep: Optional[SleepFunc] = None,
        rng: Optional[random.Random] = None,
    ):
        self.strategies = list(strategies)
        self.rotator = rotator or IdentityRotator()
        self.cache_gate = cache_gate
        self.materializer = materializer
        self.policy = policy or default_policy()
        self.cipher_resolver = cipher_resolver
        self.resolver_config = resolver_config
        self.attempt_timeout = attempt_timeout
        self.sleep = sleep
        self.rng = rng

    def new_resolver(self, policy: SelectionPolicy) -> Resolver:
        kwargs = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        return Resolver(
            self.strategies,
            rotator=self.rotator,
            policy=policy,
            cipher_resolver=self.cipher_resolver,
            resolver_config=self.resolver_config,
            attempt_timeout=self.attempt_timeout,
            rng=self.rng,
            **kwargs,
        )

    async def run(
        self, url: str, policy: Optional[SelectionPolicy] = None, materialize: bool = True
    ) -> Optional[ResolutionResult]:
        """
        Resolve one URL.

        Returns:
            None when the URL carries no valid identifier. A cached result (empty provenance) when the
            object store already holds the artifact. Otherwise the resolved result, with ``cached_asset``
            set when it was uploaded. A file downloaded by the delegate is deleted when the result is not
            uploaded, so its local reference is then only descriptive.

        Raises:
            AllStrategiesExhausted: No strategy produced a usable variant.
            StorageUnavailable: The object store failed during lookup or upload.
            OperationTimeout: The upload step exceeded its deadline.
        """
        video_id = parse_identifier(url)
        if video_id is None:
            logger.warning(f"No video identifier in {url[:200]!r}")
            return None

        policy = policy or self.policy

        if self.cache_gate is not None:
            asset = await self.cache_gate.lookup(video_id)
            if asset is not None:
                return ResolutionResult(video_id=video_id, cached_asset=asset, policy=policy)

        resolver = self.new_resolver(policy)
        result = await resolver.resolve(video_id)

        if materialize and self.materializer is not None:
            asset = await self.materializer.materialize(
                video_id,
                result.selected_variant,
                policy=policy,
                provenance=result.provenance,
                extracted_at=result.extracted_at,
                identity=resolver.identity,
            )
            result = result.model_copy(update={"cached_asset": asset})
        elif result.selected_variant.reference_kind == ReferenceKind.LOCAL_FILE:
            logger.info(f"Result for {video_id} is not stored, discarding the delegate download")
            discard_local_file(result.selected_variant)

        logger.info(f"Pipeline finished for {video_id}: {result.provenance_summary()}")
        return result
