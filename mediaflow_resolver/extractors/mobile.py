from mediaflow_resolver.const import MOBILE_WATCH_URL
from mediaflow_resolver.extractors.base import HtmlPageExtractor


class MobileExtractor(HtmlPageExtractor):
    """Mobile watch page, requested with a mobile header profile."""

    name = "mobile"
    device = "mobile"
    rate_limit_handler_id = "standard"
    url_template = MOBILE_WATCH_URL
