import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from mediaflow_resolver.configs import YtDlpConfig, settings
from mediaflow_resolver.const import WATCH_URL
from mediaflow_resolver.errors import ExtractorError, ExtractorTimeout
from mediaflow_resolver.extractors.base import BaseExtractor
from mediaflow_resolver.schemas import NetworkIdentity, ReferenceKind, StrategyResult, StreamVariant, VariantOrigin

logger = logging.getLogger(__name__)

# Storyboards and manifests are not downloadable media variants.
SKIPPED_EXTENSIONS = {"mhtml"}
SKIPPED_PROTOCOLS = {"m3u8", "m3u8_native", "http_dash_segments"}


class YtDlpRunner:
    """Runs the yt-dlp binary as a subprocess with a hard deadline."""

    def __init__(self, binary: str = "yt-dlp"):
        self.binary = binary

    async def run(self, args: List[str], timeout: float) -> Tuple[str, str]:
        """
        Run yt-dlp and return (stdout, stderr).

        Raises:
            ExtractorTimeout: The process exceeded the deadline and was killed.
            ExtractorError: The binary is missing or exited with a non-zero code.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise ExtractorError(f"{self.binary} is not installed or not on PATH")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ExtractorTimeout(f"{self.binary} timed out after {timeout:.0f} seconds")
        except asyncio.CancelledError:
            process.kill()
            raise

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if process.returncode != 0:
            raise ExtractorError(f"{self.binary} exited with code {process.returncode}: {(err or out).strip()[:500]}")
        return out, err


def _bitrate(fmt: Dict[str, Any]) -> Optional[int]:
    for key in ("abr", "tbr"):
        value = fmt.get(key)
        if isinstance(value, (int, float)) and value > 0:
            return int(value * 1000)
    return None


def discard_local_file(variant: Optional[StreamVariant]) -> None:
    """Delete the file behind a local-file variant. Other variants are left alone."""
    if variant is None or variant.reference_kind != ReferenceKind.LOCAL_FILE:
        return
    try:
        os.remove(variant.reference)
    except FileNotFoundError:
        return
    except OSError as e:
        logger.warning(f"Could not delete downloaded file {variant.reference}: {e}")
        return
    logger.info(f"Removed unused download {variant.reference}")


def _variant_from_info(
    fmt: Dict[str, Any], reference: str, kind: ReferenceKind, origin: VariantOrigin
) -> StreamVariant:
    acodec = fmt.get("acodec")
    vcodec = fmt.get("vcodec")
    is_audio_only = vcodec == "none" and bool(acodec) and acodec != "none"
    codecs = [c for c in (vcodec, acodec) if c and c != "none"]
    size = fmt.get("filesize") or fmt.get("filesize_approx")
    return StreamVariant(
        reference=reference,
        reference_kind=kind,
        container=fmt.get("ext") or "mp4",
        is_audio_only=is_audio_only,
        codec_hint=", ".join(codecs) or None,
        bitrate_hint=_bitrate(fmt),
        size_hint=int(size) if isinstance(size, (int, float)) else None,
        quality_label=fmt.get("format_note") or (f"{fmt['height']}p" if fmt.get("height") else None),
        format_id=str(fmt.get("format_id") or "ytdlp"),
        origin=origin,
    )


class YtDlpExtractor(BaseExtractor):
    """
    External downloader delegate.

    Heaviest but most reliable strategy. In ``probe`` mode it asks yt-dlp for the format list and
    returns direct URLs; in ``download`` mode it downloads the configured format and returns the local
    file as a variant.
    """

    name = "ytdlp"
    device = "desktop"
    rate_limit_handler_id = "standard"

    def __init__(self, *args, runner: Optional[YtDlpRunner] = None, config: Optional[YtDlpConfig] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.config = config or settings.ytdlp_config
        self.runner = runner or YtDlpRunner(self.config.binary)

    def attempt_timeout(self) -> Optional[float]:
        # Slightly above the subprocess deadline so the runner kills the process itself.
        return self.config.timeout + 5

    def _base_args(self, identity: Optional[NetworkIdentity]) -> List[str]:
        args = ["--no-warnings", "--no-playlist"]
        if identity is not None:
            if identity.egress_address:
                args += ["--proxy", identity.egress_address]
            user_agent = identity.headers.get("user-agent")
            if user_agent:
                args += ["--user-agent", user_agent]
        return args

    async def probe(self, video_id: str, identity: Optional[NetworkIdentity] = None) -> Dict[str, Any]:
        args = ["-J", "--skip-download"] + self._base_args(identity) + [WATCH_URL.format(video_id=video_id)]
        stdout, _ = await self.runner.run(args, timeout=self.config.timeout)
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ExtractorError(f"yt-dlp returned invalid JSON: {e}")

    async def download(
        self, video_id: str, identity: Optional[NetworkIdentity] = None, format_selector: Optional[str] = None
    ) -> StreamVariant:
        """Download one format to the output directory and return it as a local-file variant."""
        output_dir = Path(self.config.output_dir)
        prefix = f"audio_{video_id}."
        args = [
            "--format",
            format_selector or self.config.format_selector,
            "--output",
            str(output_dir / f"audio_{video_id}.%(ext)s"),
            "--dump-json",
            "--no-simulate",
            "--no-check-certificate",
            "--socket-timeout",
            "15",
            "--retries",
            "2",
            "--fragment-retries",
            "2",
            "--no-continue",
        ] + self._base_args(identity) + [WATCH_URL.format(video_id=video_id)]

        logger.info(f"yt-dlp downloading {video_id} (format {format_selector or self.config.format_selector})")
        stdout, _ = await self.runner.run(args, timeout=self.config.timeout)

        info: Dict[str, Any] = {}
        for line in reversed(stdout.strip().splitlines()):
            try:
                info = json.loads(line)
                break
            except json.JSONDecodeError:
                continue

        file_path = None
        for download in info.get("requested_downloads") or []:
            if download.get("filepath"):
                file_path = download["filepath"]
                info = {**info, **download}
                break
        if not file_path or not Path(file_path).exists():
            matches = sorted(output_dir.glob(prefix + "*"))
            if not matches:
                raise ExtractorError("yt-dlp did not create expected output file")
            file_path = str(matches[0])
            info.setdefault("ext", matches[0].suffix.lstrip("."))

        size = Path(file_path).stat().st_size
        variant = _variant_from_info(info, file_path, ReferenceKind.LOCAL_FILE, VariantOrigin.DELEGATE)
        logger.info(f"yt-dlp downloaded {video_id} to {file_path} ({size} bytes)")
        return variant.model_copy(update={"size_hint": size})

    async def attempt(self, video_id: str, identity: NetworkIdentity) -> StrategyResult:
        logger.info(f"Trying yt-dlp {self.config.mode} for {video_id}")
        if self.config.mode == "download":
            return StrategyResult(variants=[await self.download(video_id, identity)])

        info = await self.probe(video_id, identity)
        variants = []
        for fmt in info.get("formats") or []:
            if not fmt.get("url") or fmt.get("ext") in SKIPPED_EXTENSIONS or fmt.get("protocol") in SKIPPED_PROTOCOLS:
                continue
            variants.append(_variant_from_info(fmt, fmt["url"], ReferenceKind.DIRECT, VariantOrigin.DELEGATE))

        if variants:
            logger.info(f"ytdlp: found {len(variants)} variants for {video_id}")
            return StrategyResult(variants=variants)
        return StrategyResult(fallback_url=info.get("url"))
