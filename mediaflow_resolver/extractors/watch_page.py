from types import MappingProxyType

from mediaflow_resolver.const import WATCH_URL
from mediaflow_resolver.extractors.base import HtmlPageExtractor


class WatchPageExtractor(HtmlPageExtractor):
    """Full desktop watch page. Richest metadata, most heavily protected surface."""

    name = "watch_page"
    device = "desktop"
    rate_limit_handler_id = "protected"
    url_template = WATCH_URL
    extra_headers = MappingProxyType(
        {
            "cache-control": "no-cache",
            "dnt": "1",
            "upgrade-insecure-requests": "1",
            "sec-fetch-dest": "document",
            "sec-fetch-mode": "navigate",
            "sec-fetch-site": "none",
            "sec-fetch-user": "?1",
        }
    )
