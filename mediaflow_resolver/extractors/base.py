from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Dict, Mapping, Optional

import asyncio
import httpx
import logging

from mediaflow_resolver.configs import settings
from mediaflow_resolver.const import BLOCKING_STATUS_CODES
from mediaflow_resolver.errors import ExtractorError, UpstreamBlocked
from mediaflow_resolver.schemas import NetworkIdentity, StrategyResult
from mediaflow_resolver.utils.http_utils import create_httpx_client, DownloadError
from mediaflow_resolver.utils.player_response import SourceKind, detect_bot_page, parse_stream_metadata

logger = logging.getLogger(__name__)


class BaseExtractor(ABC):
    """Base class for all extraction strategies.

    A strategy reads one upstream surface for a video identifier and returns either stream variants or
    a single fallback URL. It never mutates the network identity it is given.

    - Built-in retry/backoff for transient network errors
    - Throttling statuses and bot-detection pages raise UpstreamBlocked
    - Better logging of non-200 responses and body previews for debugging
    """

    name: str = "base"
    # Device class of the header profile this surface expects ("desktop", "mobile" or "tv").
    device: str = "desktop"
    # Backoff profile used after this strategy fails; None auto-detects from surface_url().
    rate_limit_handler_id: Optional[str] = None

    def __init__(self, request_headers: Optional[dict] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        # extra headers merged over every identity's profile headers (e.g. Referer)
        self.base_headers = dict(request_headers or {})
        self.transport = transport

    def surface_url(self, video_id: str) -> Optional[str]:
        """URL of the upstream surface this strategy reads, if it has one."""
        return None

    def attempt_timeout(self) -> Optional[float]:
        """Deadline for one attempt in seconds. None uses the transport attempt timeout."""
        return None

    def _raise_if_blocked(self, response: httpx.Response) -> None:
        if "/sorry/" in response.url.path:
            raise UpstreamBlocked(f"Redirected to interstitial {response.url.path}")
        if "html" not in response.headers.get("content-type", ""):
            return
        text = response.text
        if "PlayerResponse" in text or "embedded_player_response" in text:
            return
        marker = detect_bot_page(text)
        if marker:
            raise UpstreamBlocked(f"Bot detection page ({marker}) at {response.url}")

    async def _make_request(
        self,
        url: str,
        identity: NetworkIdentity,
        method: str = "GET",
        headers: Optional[Dict] = None,
        timeout: Optional[float] = None,
        retries: int = 2,
        backoff_factor: float = 0.5,
        raise_on_status: bool = True,
        **kwargs,
    ) -> httpx.Response:
        """
        Make HTTP request through the given identity with retry and timeout support.

        Parameters
        ----------
        identity : NetworkIdentity
            Header profile and egress proxy for this request.
        timeout : float | None
            Seconds to wait for the request. Defaults to the transport timeout.
        retries : int
            Number of attempts for transient errors.
        backoff_factor : float
            Base for exponential backoff between retries.
        raise_on_status : bool
            If True, HTTP non-2xx raises DownloadError (preserves status code).
        """
        attempt = 0
        last_exc = None

        request_headers = dict(identity.headers)
        request_headers.update(self.base_headers)
        if headers:
            request_headers.update(headers)

        timeout_cfg = httpx.Timeout(timeout or settings.transport_config.timeout)

        while attempt < retries:
            try:
                async with create_httpx_client(identity, transport=self.transport, timeout=timeout_cfg) as client:
                    response = await client.request(method, url, headers=request_headers, **kwargs)

                if response.status_code in BLOCKING_STATUS_CODES:
                    raise UpstreamBlocked(f"HTTP {response.status_code} from {url}")

                if raise_on_status:
                    try:
                        response.raise_for_status()
                    except httpx.HTTPStatusError as e:
                        body_preview = e.response.text[:500]
                        logger.debug(
                            "HTTPStatusError for %s (status=%s) -- body preview: %s",
                            url,
                            e.response.status_code,
                            body_preview,
                        )
                        raise DownloadError(
                            e.response.status_code, f"HTTP error {e.response.status_code} while requesting {url}"
                        )

                self._raise_if_blocked(response)
                return response

            except (DownloadError, ExtractorError):
                # Do not retry on explicit HTTP status errors or blocking signals
                raise
            except (httpx.TimeoutException, httpx.NetworkError, httpx.TransportError) as e:
                last_exc = e
                attempt += 1
                if attempt >= retries:
                    break
                sleep_for = backoff_factor * (2 ** (attempt - 1))
                logger.warning(
                    "Transient network error (attempt %s/%s) for %s: %s, retrying in %.1fs",
                    attempt,
                    retries,
                    url,
                    e,
                    sleep_for,
                )
                await asyncio.sleep(sleep_for)

        logger.error("All retries failed for %s: %s", url, last_exc)
        raise ExtractorError(f"Request failed for URL {url}: {str(last_exc)}")

    @abstractmethod
    async def attempt(self, video_id: str, identity: NetworkIdentity) -> StrategyResult:
        """Read the surface for video_id and return variants or a fallback URL."""
        pass


class HtmlPageExtractor(BaseExtractor):
    """Strategy for surfaces that embed the player response in an HTML page."""

    url_template: str = ""
    extra_headers: Mapping[str, str] = MappingProxyType({})

    def surface_url(self, video_id: str) -> str:
        return self.url_template.format(video_id=video_id)

    async def attempt(self, video_id: str, identity: NetworkIdentity) -> StrategyResult:
        url = self.surface_url(video_id)
        logger.info(f"Trying {self.name} extraction for {video_id}")
        response = await self._make_request(url, identity, headers=dict(self.extra_headers))
        variants = parse_stream_metadata(response.content, SourceKind.HTML)
        logger.info(f"{self.name}: found {len(variants)} variants for {video_id}")
        return StrategyResult(variants=variants)
