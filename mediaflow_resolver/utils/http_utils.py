import logging
import ssl
from typing import Optional

import aiofiles
import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from mediaflow_resolver.configs import settings
from mediaflow_resolver.schemas import NetworkIdentity

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    def __init__(self, status_code, message):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


DEFAULT_SSL_CONTEXT = ssl.create_default_context()


def create_httpx_client(
    identity: Optional[NetworkIdentity] = None,
    follow_redirects: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs,
) -> httpx.AsyncClient:
    """
    Create an HTTPX AsyncClient bound to a network identity.

    Args:
        identity (NetworkIdentity | None): Identity whose headers and egress proxy the client uses.
        follow_redirects (bool): Whether to follow 3xx redirects automatically.
        transport (httpx.AsyncBaseTransport | None): Explicit transport. Replaces proxy mounts when given.
        **kwargs: Additional AsyncClient keyword arguments.

    Returns:
        httpx.AsyncClient: Configured client.
    """
    kwargs.setdefault("timeout", settings.transport_config.timeout)
    if identity is not None:
        kwargs.setdefault("headers", dict(identity.headers))

    if transport is not None:
        return httpx.AsyncClient(transport=transport, follow_redirects=follow_redirects, **kwargs)

    egress = identity.egress_address if identity else None
    mounts = settings.transport_config.get_mounts(proxy=egress)
    verify = False if settings.transport_config.disable_ssl_verification_globally else DEFAULT_SSL_CONTEXT
    return httpx.AsyncClient(mounts=mounts, follow_redirects=follow_redirects, verify=verify, **kwargs)


def _is_transient(exc: BaseException) -> bool:
    # 409 is used for timeouts below; 5xx are upstream hiccups. 4xx are deliberate refusals.
    return isinstance(exc, DownloadError) and (exc.status_code == 409 or exc.status_code >= 500)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)
async def download_to_file(client: httpx.AsyncClient, url: str, path: str, headers: Optional[dict] = None) -> int:
    """
    Stream a URL into a local file.

    Args:
        client (httpx.AsyncClient): HTTP client to use for the request.
        url (str): Source URL.
        path (str): Destination file path; truncated on every try.
        headers (dict | None): Extra request headers.

    Returns:
        int: Number of bytes written.

    Raises:
        DownloadError: If the transfer fails after retries.
    """
    written = 0
    try:
        async with client.stream("GET", url, headers=headers) as response:
            response.raise_for_status()
            async with aiofiles.open(path, "wb") as f:
                async for chunk in response.aiter_bytes():
                    await f.write(chunk)
                    written += len(chunk)
    except httpx.TimeoutException:
        logger.warning(f"Timeout while downloading {url[:120]}")
        raise DownloadError(409, f"Timeout while downloading {url[:120]}")
    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP error {e.response.status_code} while downloading {url[:120]}")
        raise DownloadError(e.response.status_code, f"HTTP error {e.response.status_code} while downloading")
    except httpx.RequestError as e:
        logger.error(f"Error downloading {url[:120]}: {e}")
        raise DownloadError(502, f"Error downloading: {e}")
    return written
