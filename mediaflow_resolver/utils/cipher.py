"""
Best-effort reconstruction of obfuscated variant references.

A ciphered variant carries ``signatureCipher``: a query-string encoded parameter set with the base URL
(``url``), the signature (``s``) and the query parameter name the signature belongs in (``sp``). The
upstream scrambles ``s`` with a player-specific transform that changes frequently; this resolver does
not descramble it and only recombines the parts. Treat its output as a candidate, not a guarantee.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from mediaflow_resolver.errors import CipherDecodeFailed
from mediaflow_resolver.schemas import ReferenceKind, StreamVariant

logger = logging.getLogger(__name__)


class CipherResolver(ABC):
    """Turns a ciphered variant into a fetchable URL, or None when it cannot."""

    def resolve(self, variant: StreamVariant) -> Optional[str]:
        if variant.reference_kind != ReferenceKind.CIPHER:
            return variant.reference
        try:
            return self.decode(variant.reference)
        except CipherDecodeFailed as e:
            logger.debug(f"Cipher decode failed for format {variant.format_id}: {e}")
            return None

    def resolve_variant(self, variant: StreamVariant) -> Optional[StreamVariant]:
        """Return a new, directly fetchable variant, or None when the reference stays unusable."""
        if variant.reference_kind != ReferenceKind.CIPHER:
            return variant
        url = self.resolve(variant)
        if url is None:
            return None
        return variant.model_copy(update={"reference": url, "reference_kind": ReferenceKind.DIRECT})

    @abstractmethod
    def decode(self, cipher: str) -> str:
        """
        Decode a cipher blob.

        Raises:
            CipherDecodeFailed: The blob cannot be turned into a URL.
        """
        pass


class SignatureCipherResolver(CipherResolver):
    """Recombines ``url`` + ``sp`` + ``s`` into one URL without descrambling the signature."""

    def decode(self, cipher: str) -> str:
        params = parse_qs(cipher, keep_blank_values=False)
        base_url = (params.get("url") or [None])[0]
        signature = (params.get("s") or params.get("sig") or [None])[0]
        signature_param = (params.get("sp") or ["signature"])[0]

        if not base_url or not signature:
            raise CipherDecodeFailed("cipher lacks url or signature")

        parts = urlsplit(base_url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise CipherDecodeFailed(f"cipher url is not absolute: {base_url[:60]}")

        query = parts.query + ("&" if parts.query else "") + urlencode({signature_param: signature})
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


class NullCipherResolver(CipherResolver):
    """Treats every ciphered variant as unusable."""

    def decode(self, cipher: str) -> str:
        raise CipherDecodeFailed("cipher decoding disabled")
