import logging
import re
from typing import List, Optional

from mediaflow_resolver.const import AUDIO_QUALITY_ORDER, VIDEO_QUALITY_ORDER
from mediaflow_resolver.schemas import SelectionPolicy, StreamVariant
from mediaflow_resolver.utils.cipher import CipherResolver, SignatureCipherResolver

logger = logging.getLogger(__name__)

HEIGHT_RE = re.compile(r"(\d{3,4})p")


def _height(label: Optional[str]) -> Optional[int]:
    match = HEIGHT_RE.search(label or "")
    return int(match.group(1)) if match else None


def _size_key(variant: StreamVariant):
    # Missing hints sort last; format_id and reference make the order total.
    return (
        variant.bitrate_hint is None,
        variant.bitrate_hint or 0,
        variant.size_hint is None,
        variant.size_hint or 0,
        variant.format_id,
        variant.reference,
    )


def _video_rank(variant: StreamVariant) -> Optional[int]:
    height = _height(variant.quality_label)
    label = f"{height}p" if height else None
    return VIDEO_QUALITY_ORDER.index(label) if label in VIDEO_QUALITY_ORDER else None


def _audio_rank(variant: StreamVariant) -> Optional[int]:
    label = variant.quality_label
    return AUDIO_QUALITY_ORDER.index(label) if label in AUDIO_QUALITY_ORDER else None


def _preference_key(rank: int, variant: StreamVariant):
    return (rank, variant.container != "mp4", -(variant.bitrate_hint or 0), variant.format_id, variant.reference)


def _within_max_quality(variant: StreamVariant, max_label: str) -> bool:
    if variant.is_audio_only:
        return True
    max_height = _height(max_label)
    height = _height(variant.quality_label)
    if max_height is None or height is None:
        return True
    return height <= max_height


def _pick_by_quality(candidates: List[StreamVariant]) -> StreamVariant:
    video = [(_video_rank(v), v) for v in candidates if not v.is_audio_only]
    video = [(rank, v) for rank, v in video if rank is not None]
    if video:
        return min(video, key=lambda item: _preference_key(*item))[1]

    audio = [(_audio_rank(v), v) for v in candidates if v.is_audio_only]
    audio = [(rank, v) for rank, v in audio if rank is not None]
    if audio:
        return min(audio, key=lambda item: _preference_key(*item))[1]

    return candidates[0]


def select_variant(
    variants: List[StreamVariant],
    policy: SelectionPolicy,
    cipher_resolver: Optional[CipherResolver] = None,
) -> Optional[StreamVariant]:
    """
    Pick at most one variant for a selection policy.

    Variants that are neither directly fetchable nor cipher-resolvable are dropped first. With
    ``prefer_audio_only`` the audio-only subset is used when it is non-empty. ``minimize_size`` picks
    the lowest bitrate (missing bitrates last); otherwise the highest known quality label wins and the
    first remaining variant is the fallback. Identical inputs always yield the same choice.

    Args:
        variants: Candidates in upstream order.
        policy: Selection policy.
        cipher_resolver: Resolver for ciphered references. Defaults to :class:`SignatureCipherResolver`.

    Returns:
        The selected variant, with a resolved reference, or None when nothing is usable.
    """
    cipher_resolver = cipher_resolver or SignatureCipherResolver()

    candidates = []
    for variant in variants:
        resolved = cipher_resolver.resolve_variant(variant)
        if resolved is not None:
            candidates.append(resolved)

    if policy.require_container_in:
        allowed = {c.lower() for c in policy.require_container_in}
        candidates = [v for v in candidates if v.container.lower() in allowed or v.extension in allowed]

    if policy.max_quality_label:
        candidates = [v for v in candidates if _within_max_quality(v, policy.max_quality_label)]

    if not candidates:
        logger.info(f"No usable variant among {len(variants)} candidates")
        return None

    if policy.prefer_audio_only:
        candidates = [v for v in candidates if v.is_audio_only] or candidates

    if policy.minimize_size:
        selected = min(candidates, key=_size_key)
    else:
        selected = _pick_by_quality(candidates)

    logger.info(
        f"Selected format {selected.format_id} ({selected.container}, "
        f"{'audio' if selected.is_audio_only else 'video'}, bitrate={selected.bitrate_hint})"
    )
    return selected
