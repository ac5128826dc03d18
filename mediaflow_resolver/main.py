import logging
from typing import Optional

import httpx

from mediaflow_resolver.configs import Settings, settings as default_settings
from mediaflow_resolver.extractors.factory import ExtractorFactory
from mediaflow_resolver.extractors.ytdlp import YtDlpExtractor
from mediaflow_resolver.materializer import Materializer
from mediaflow_resolver.pipeline import ResolutionPipeline, default_policy
from mediaflow_resolver.schemas import ResolutionResult, SelectionPolicy
from mediaflow_resolver.storage import CacheGate, S3ObjectStore
from mediaflow_resolver.utils.identity import IdentityRotator, build_proxy_provisioner

logger = logging.getLogger(__name__)


def setup_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=level or default_settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def build_pipeline(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    s3_client=None,
) -> ResolutionPipeline:
    """
    Wire a pipeline from settings.

    Caching and upload are enabled only when a bucket is configured.
    """
    settings = settings or default_settings
    strategies = ExtractorFactory.build_chain(settings.resolver_config.strategies, transport=transport)
    rotator = IdentityRotator(build_proxy_provisioner(settings.proxy_config), proxy_config=settings.proxy_config)

    cache_gate = materializer = None
    storage_config = settings.storage_config
    if storage_config.enabled:
        store = S3ObjectStore(storage_config, client=s3_client)
        if storage_config.enable_cache:
            cache_gate = CacheGate(store)
        delegate = next((s for s in strategies if isinstance(s, YtDlpExtractor)), None)
        materializer = Materializer(
            store,
            delegate=delegate or YtDlpExtractor(transport=transport, config=settings.ytdlp_config),
            transfer_timeout=settings.transport_config.transfer_timeout,
            transport=transport,
        )
    else:
        logger.info("No storage bucket configured, results will not be cached or uploaded")

    return ResolutionPipeline(
        strategies,
        rotator=rotator,
        cache_gate=cache_gate,
        materializer=materializer,
        policy=SelectionPolicy(**settings.default_policy.model_dump()),
        resolver_config=settings.resolver_config,
        attempt_timeout=settings.transport_config.attempt_timeout,
    )


async def resolve_url(
    url: str, policy: Optional[SelectionPolicy] = None, materialize: bool = True
) -> Optional[ResolutionResult]:
    """Resolve one URL with a pipeline built from the global settings."""
    pipeline = build_pipeline()
    return await pipeline.run(url, policy=policy or default_policy(), materialize=materialize)
