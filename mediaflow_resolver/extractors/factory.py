from typing import Dict, List, Optional, Type

import httpx

from mediaflow_resolver.errors import ExtractorError
from mediaflow_resolver.extractors.base import BaseExtractor
from mediaflow_resolver.extractors.embed import EmbedExtractor, TvEmbedExtractor
from mediaflow_resolver.extractors.innertube import InnertubeExtractor
from mediaflow_resolver.extractors.mobile import MobileExtractor
from mediaflow_resolver.extractors.watch_page import WatchPageExtractor
from mediaflow_resolver.extractors.ytdlp import YtDlpExtractor


class ExtractorFactory:
    """Factory for creating extraction strategies."""

    _extractors: Dict[str, Type[BaseExtractor]] = {
        "embed": EmbedExtractor,
        "tv_embed": TvEmbedExtractor,
        "mobile": MobileExtractor,
        "watch_page": WatchPageExtractor,
        "innertube": InnertubeExtractor,
        "ytdlp": YtDlpExtractor,
    }

    @classmethod
    def get_extractor(
        cls,
        name: str,
        request_headers: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> BaseExtractor:
        """Get the strategy instance registered under the given name."""
        extractor_class = cls._extractors.get(name)
        if not extractor_class:
            raise ExtractorError(f"Unsupported strategy: {name}")
        return extractor_class(request_headers, transport=transport)

    @classmethod
    def build_chain(
        cls, names: List[str], transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> List[BaseExtractor]:
        """Instantiate strategies in the given order. Unknown names fail before anything runs."""
        return [cls.get_extractor(name, transport=transport) for name in names]
