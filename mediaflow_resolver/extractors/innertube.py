import logging

from mediaflow_resolver.const import INNERTUBE_ANDROID_CONTEXT, INNERTUBE_PLAYER_URL
from mediaflow_resolver.extractors.base import BaseExtractor
from mediaflow_resolver.schemas import NetworkIdentity, StrategyResult
from mediaflow_resolver.utils.player_response import SourceKind, parse_stream_metadata

logger = logging.getLogger(__name__)


class InnertubeExtractor(BaseExtractor):
    """
    Player metadata endpoint queried as the Android client.

    Returns the player response as a raw JSON document; Android client formats usually carry direct
    URLs instead of signature ciphers.
    """

    name = "innertube"
    device = "mobile"
    rate_limit_handler_id = "protected"

    def surface_url(self, video_id: str) -> str:
        return INNERTUBE_PLAYER_URL

    async def attempt(self, video_id: str, identity: NetworkIdentity) -> StrategyResult:
        logger.info(f"Trying innertube player extraction for {video_id}")
        client = INNERTUBE_ANDROID_CONTEXT["client"]
        payload = {
            "videoId": video_id,
            "context": INNERTUBE_ANDROID_CONTEXT,
            "contentCheckOk": True,
            "racyCheckOk": True,
        }
        headers = {
            "content-type": "application/json",
            "accept": "application/json",
            "user-agent": f"com.google.android.youtube/{client['clientVersion']} (Linux; U; Android 11) gzip",
            "x-youtube-client-name": "3",
            "x-youtube-client-version": client["clientVersion"],
            "origin": "https://www.youtube.com",
        }
        response = await self._make_request(
            INNERTUBE_PLAYER_URL,
            identity,
            method="POST",
            headers=headers,
            params={"prettyPrint": "false"},
            json=payload,
        )
        variants = parse_stream_metadata(response.content, SourceKind.JSON)
        logger.info(f"innertube: found {len(variants)} variants for {video_id}")
        return StrategyResult(variants=variants)
