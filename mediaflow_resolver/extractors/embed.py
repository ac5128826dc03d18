from types import MappingProxyType

from mediaflow_resolver.const import EMBED_URL
from mediaflow_resolver.extractors.base import HtmlPageExtractor


class EmbedExtractor(HtmlPageExtractor):
    """Embedded player page. Light and rarely challenged, but some videos disable embedding."""

    name = "embed"
    device = "desktop"
    rate_limit_handler_id = "standard"
    url_template = EMBED_URL
    extra_headers = MappingProxyType({"referer": "https://www.youtube.com/"})


class TvEmbedExtractor(HtmlPageExtractor):
    """Embedded player as served to smart TV browsers."""

    name = "tv_embed"
    device = "tv"
    rate_limit_handler_id = "standard"
    url_template = EMBED_URL + "?html5=1"
