"""
Network identity rotation.

An identity bundles a header profile with an egress proxy address. Strategies never mutate it; the
resolver asks the rotator for a fresh one after every failed attempt.
"""

import logging
import random
from abc import ABC, abstractmethod
from typing import List, Optional
from urllib.parse import urlsplit

import httpx

from mediaflow_resolver.configs import ProxyConfig, settings
from mediaflow_resolver.const import HEADER_PROFILES
from mediaflow_resolver.errors import EgressUnavailable
from mediaflow_resolver.schemas import NetworkIdentity

logger = logging.getLogger(__name__)


class ProxyProvisioner(ABC):
    """Hands out egress proxy addresses. Must be safe for concurrent use."""

    @abstractmethod
    async def request_egress(
        self, country_hint: Optional[str] = None, group_hint: Optional[str] = None, exclude: Optional[str] = None
    ) -> Optional[str]:
        """
        Return a proxy URL, or None when no address is available.

        ``exclude`` names the address that just failed. Provisioners that know their alternatives must not
        return it while another address exists; opaque ones may ignore it.
        """
        pass


def is_valid_proxy_url(address: str) -> bool:
    parts = urlsplit(address)
    if not parts.scheme or not parts.hostname:
        return False
    try:
        parts.port
    except ValueError:
        return False
    return True


class StaticProxyPool(ProxyProvisioner):
    """Draws egress addresses at random from a fixed list."""

    def __init__(self, proxies: List[str], rng: Optional[random.Random] = None):
        self.proxies = list(proxies)
        self.rng = rng or random.Random()

    async def request_egress(
        self, country_hint: Optional[str] = None, group_hint: Optional[str] = None, exclude: Optional[str] = None
    ) -> Optional[str]:
        if not self.proxies:
            return None
        candidates = [p for p in self.proxies if p != exclude] or self.proxies
        return self.rng.choice(candidates)


class HttpProxyProvisioner(ProxyProvisioner):
    """
    Asks a provisioning endpoint for a fresh egress address.

    The endpoint is called with ``country`` and ``group`` query parameters and may answer either with
    JSON (``{"proxy": "http://..."}``) or with the proxy URL as plain text.
    """

    def __init__(self, endpoint: str, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 10.0):
        self.endpoint = endpoint
        self.transport = transport
        self.timeout = timeout

    async def request_egress(
        self, country_hint: Optional[str] = None, group_hint: Optional[str] = None, exclude: Optional[str] = None
    ) -> Optional[str]:
        params = {}
        if country_hint:
            params["country"] = country_hint
        if group_hint:
            params["group"] = group_hint

        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            response = await client.get(self.endpoint, params=params)
            response.raise_for_status()

        if "json" in response.headers.get("content-type", ""):
            data = response.json()
            proxy = (data.get("proxy") or data.get("url")) if isinstance(data, dict) else None
        else:
            proxy = response.text.strip()
        if proxy and not is_valid_proxy_url(proxy):
            logger.warning(f"Provisioning endpoint returned an unusable proxy address: {proxy[:80]!r}")
            return None
        return proxy or None


def build_proxy_provisioner(proxy_config: Optional[ProxyConfig] = None) -> Optional[ProxyProvisioner]:
    proxy_config = proxy_config or settings.proxy_config
    if proxy_config.provisioning_url:
        return HttpProxyProvisioner(proxy_config.provisioning_url)
    if proxy_config.pool:
        return StaticProxyPool(proxy_config.pool)
    if settings.transport_config.proxy_url:
        return StaticProxyPool([settings.transport_config.proxy_url])
    return None


class IdentityRotator:
    """Produces consistent network identities and rotates them on failure."""

    def __init__(
        self,
        provisioner: Optional[ProxyProvisioner] = None,
        proxy_config: Optional[ProxyConfig] = None,
        profiles: Optional[List[dict]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.provisioner = provisioner
        self.proxy_config = proxy_config or settings.proxy_config
        self.profiles = profiles or HEADER_PROFILES
        self.rng = rng or random.Random()

    def _pick_profile(self, device: str, previous: Optional[NetworkIdentity]) -> dict:
        candidates = [p for p in self.profiles if p["device"] == device] or [
            p for p in self.profiles if p["device"] == "desktop"
        ]
        if previous is not None and len(candidates) > 1:
            candidates = [p for p in candidates if p["name"] != previous.profile_name] or candidates
        return self.rng.choice(candidates)

    async def _draw_egress(self, country: Optional[str], previous: Optional[str]) -> Optional[str]:
        if self.provisioner is None:
            return None

        fallback = None
        for _ in range(max(1, self.proxy_config.max_draws)):
            try:
                address = await self.provisioner.request_egress(country, self.proxy_config.group, exclude=previous)
            except Exception as e:
                logger.warning(f"Egress provisioning failed ({country or 'any'}): {e}")
                continue
            if address and address != previous:
                return address
            fallback = fallback or address
        # Only the previous address (or nothing) was available.
        return fallback

    async def new_identity(self, device: str = "desktop", previous: Optional[NetworkIdentity] = None) -> NetworkIdentity:
        """
        Build a new identity for the given device class.

        Raises:
            EgressUnavailable: Only when proxy-only operation is configured and no address was provisioned.
        """
        profile = self._pick_profile(device, previous)
        country = self.rng.choice(self.proxy_config.countries) if self.proxy_config.countries else None
        egress = await self._draw_egress(country, previous.egress_address if previous else None)

        if egress is None:
            if self.proxy_config.proxy_only:
                raise EgressUnavailable(f"No egress address available for country {country}")
            if self.provisioner is not None:
                logger.warning("No egress address provisioned, continuing with direct egress")

        headers = dict(profile["headers"])
        headers.setdefault("user-agent", settings.user_agent)
        identity = NetworkIdentity(
            headers=headers,
            egress_address=egress,
            country_hint=country,
            profile_name=profile["name"],
            device=profile["device"],
        )
        logger.info(f"Network identity: profile={identity.profile_name} country={country} egress={identity.masked_egress}")
        return identity

    async def rotate(self, previous: NetworkIdentity, device: str = "desktop") -> NetworkIdentity:
        return await self.new_identity(device=device, previous=previous)
