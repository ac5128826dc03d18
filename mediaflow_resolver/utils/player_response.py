"""
Stream metadata parsing.

The upstream embeds its player response, a large JSON object, inside the watch/embed/mobile HTML. It is
not guaranteed to be standalone JSON where it sits (it is followed by ``;var ...``, ``</script>`` or more
object members), so the parser locates a start marker and lets ``json.JSONDecoder.raw_decode`` find the
end of the object. The player API returns the same object as a raw JSON document.
"""

import json
import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from bs4 import BeautifulSoup, SoupStrainer

from mediaflow_resolver.const import BOT_DETECTION_MARKERS
from mediaflow_resolver.errors import NoMetadataFound, UpstreamBlocked
from mediaflow_resolver.schemas import ReferenceKind, StreamVariant, VariantOrigin

logger = logging.getLogger(__name__)

_decoder = json.JSONDecoder()

# Tried in order. Each marker ends right before the JSON value.
PLAYER_RESPONSE_MARKERS = [
    re.compile(r"var\s+ytInitialPlayerResponse\s*=\s*"),
    re.compile(r"window\[[\"']ytInitialPlayerResponse[\"']\]\s*=\s*"),
    re.compile(r"[\"']ytInitialPlayerResponse[\"']\s*:\s*"),
    re.compile(r"ytInitialPlayerResponse\s*=\s*"),
    # Embed pages carry the response as a JSON encoded string inside ytcfg.
    re.compile(r"[\"']embedded_player_response[\"']\s*:\s*"),
]

MIME_RE = re.compile(r"^(?P<kind>audio|video)/(?P<container>[\w.+-]+)(?:;\s*codecs=\"(?P<codecs>[^\"]*)\")?")


class SourceKind(str, Enum):
    HTML = "html"
    JSON = "json"


def detect_bot_page(text: str) -> Optional[str]:
    """Return the first bot-detection marker found in the document, if any."""
    lowered = text.lower()
    for marker in BOT_DETECTION_MARKERS:
        if marker.lower() in lowered:
            return marker
    return None


def _decode_at(text: str, start: int) -> Optional[Dict[str, Any]]:
    try:
        value, _ = _decoder.raw_decode(text, start)
    except json.JSONDecodeError:
        return None
    if isinstance(value, str):
        # String-encoded JSON (embedded_player_response).
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return None
    return value if isinstance(value, dict) else None


def _search_markers(text: str) -> Optional[Dict[str, Any]]:
    for pattern in PLAYER_RESPONSE_MARKERS:
        for match in pattern.finditer(text):
            value = _decode_at(text, match.end())
            if value is not None and ("streamingData" in value or "playabilityStatus" in value):
                logger.debug(f"Found player response via pattern {pattern.pattern!r}")
                return value
    return None


def extract_player_response(html: str) -> Dict[str, Any]:
    """
    Locate and decode the embedded player response in an HTML document.

    Raises:
        UpstreamBlocked: The document is a bot-detection page.
        NoMetadataFound: No candidate pattern yielded a JSON object.
    """
    soup = BeautifulSoup(html, "lxml", parse_only=SoupStrainer("script"))
    for script in soup.find_all("script"):
        text = script.string or script.get_text()
        if text and ("PlayerResponse" in text or "embedded_player_response" in text):
            value = _search_markers(text)
            if value is not None:
                return value

    # Fragments without script tags, or markup lxml could not split cleanly.
    value = _search_markers(html)
    if value is not None:
        return value

    marker = detect_bot_page(html)
    if marker:
        raise UpstreamBlocked(f"Bot detection page ({marker})")
    raise NoMetadataFound("Could not extract player response from document")


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None and value != "" else None
    except (TypeError, ValueError):
        return None


def _variant_from_format(fmt: Dict[str, Any], origin: VariantOrigin) -> Optional[StreamVariant]:
    if fmt.get("url"):
        reference, kind = fmt["url"], ReferenceKind.DIRECT
    elif fmt.get("signatureCipher") or fmt.get("cipher"):
        reference, kind = fmt.get("signatureCipher") or fmt.get("cipher"), ReferenceKind.CIPHER
    else:
        return None

    mime_type = fmt.get("mimeType") or ""
    match = MIME_RE.match(mime_type)
    container = match.group("container") if match else "mp4"
    codecs = match.group("codecs") if match else None
    is_audio_only = origin == VariantOrigin.ADAPTIVE and bool(match) and match.group("kind") == "audio"

    return StreamVariant(
        reference=reference,
        reference_kind=kind,
        container=container,
        is_audio_only=is_audio_only,
        codec_hint=codecs,
        bitrate_hint=_to_int(fmt.get("bitrate")) or _to_int(fmt.get("averageBitrate")),
        size_hint=_to_int(fmt.get("contentLength")),
        quality_label=fmt.get("qualityLabel") or fmt.get("audioQuality") or fmt.get("quality"),
        format_id=str(fmt.get("itag", "")),
        origin=origin,
        mime_type=mime_type or None,
    )


def variants_from_player_response(player_response: Dict[str, Any]) -> List[StreamVariant]:
    """
    Flatten combined and adaptive formats of a decoded player response.

    Raises:
        UpstreamBlocked: The playability status asks to confirm the client is not a bot.
        NoMetadataFound: The content is unplayable or carries no streaming formats.
    """
    playability = player_response.get("playabilityStatus") or {}
    status = playability.get("status", "OK")
    reason = playability.get("reason") or ""
    streaming_data = player_response.get("streamingData") or {}

    if status != "OK" and not streaming_data:
        if detect_bot_page(reason):
            raise UpstreamBlocked(f"Playability {status}: {reason}")
        raise NoMetadataFound(f"Playability {status}: {reason or 'no reason given'}")

    combined = streaming_data.get("formats") or []
    adaptive = streaming_data.get("adaptiveFormats") or []
    logger.debug(f"Parsing streaming data - formats: {len(combined)}, adaptive: {len(adaptive)}")

    variants = []
    for fmt in combined:
        variant = _variant_from_format(fmt, VariantOrigin.COMBINED)
        if variant is not None:
            variants.append(variant)
    for fmt in adaptive:
        variant = _variant_from_format(fmt, VariantOrigin.ADAPTIVE)
        if variant is not None:
            variants.append(variant)

    if not variants:
        raise NoMetadataFound("Player response carries no streaming formats")
    return variants


def parse_stream_metadata(payload: Union[bytes, str], source_kind: SourceKind = SourceKind.HTML) -> List[StreamVariant]:
    """
    Turn an upstream document into a flat list of stream variants.

    Args:
        payload: Raw HTML page or JSON document.
        source_kind: Whether the payload is HTML with an embedded player response or raw JSON.

    Returns:
        Variants from the combined list followed by variants from the adaptive list.
    """
    text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload

    if source_kind == SourceKind.JSON:
        try:
            player_response = json.loads(text)
        except json.JSONDecodeError as e:
            raise NoMetadataFound(f"Player API answered with invalid JSON: {e}")
        if not isinstance(player_response, dict):
            raise NoMetadataFound("Player API answered with a non-object JSON document")
    else:
        player_response = extract_player_response(text)

    return variants_from_player_response(player_response)
