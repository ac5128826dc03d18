import asyncio
import json

import httpx
import pytest

from mediaflow_resolver.configs import YtDlpConfig
from mediaflow_resolver.errors import OperationTimeout, StorageUnavailable
from mediaflow_resolver.extractors.ytdlp import YtDlpExtractor
from mediaflow_resolver.materializer import Materializer, build_metadata, content_type_for
from mediaflow_resolver.schemas import ExtractionAttempt, ReferenceKind, SelectionPolicy, StreamVariant
from mediaflow_resolver.storage import S3ObjectStore
from mediaflow_resolver.utils.http_utils import DownloadError

VIDEO_ID = "dQw4w9WgXcQ"
AUDIO_URL = "https://rr1.googlevideo.com/videoplayback?itag=140"

AUDIO = StreamVariant(
    reference=AUDIO_URL,
    container="mp4",
    is_audio_only=True,
    codec_hint="mp4a.40.2",
    bitrate_hint=128000,
    format_id="140",
)

PROVENANCE = [
    ExtractionAttempt(strategy_name="embed", outcome="failure", error_kind="UpstreamBlocked"),
    ExtractionAttempt(strategy_name="mobile", outcome="success"),
]


class DelegateRunner:
    """Fake yt-dlp download that writes the output file it reports."""

    def __init__(self, output_dir):
        self.output_dir = output_dir
        self.calls = 0

    async def run(self, args, timeout):
        self.calls += 1
        path = self.output_dir / f"audio_{VIDEO_ID}.webm"
        path.write_bytes(b"delegate-bytes")
        info = {"ext": "webm", "format_id": "251", "vcodec": "none", "acodec": "opus", "abr": 160.0}
        info["requested_downloads"] = [{"filepath": str(path)}]
        return json.dumps(info), ""


def audio_transport(mock_transport, status=200, body=b"audio-bytes"):
    return mock_transport(lambda request: httpx.Response(status, content=body))


@pytest.mark.asyncio
async def test_direct_fetch_is_uploaded_with_metadata(storage_config, fake_s3, mock_transport, tmp_path):
    transport, requests = audio_transport(mock_transport)
    materializer = Materializer(
        S3ObjectStore(storage_config, client=fake_s3), transport=transport, temp_dir=str(tmp_path)
    )

    asset = await materializer.materialize(
        VIDEO_ID, AUDIO, policy=SelectionPolicy(prefer_audio_only=True), provenance=PROVENANCE
    )

    key = f"temp-audio/{VIDEO_ID}.m4a"
    assert asset.key == key
    assert asset.url == f"https://s3.example.com/media/{key}"
    assert asset.size_bytes == len(b"audio-bytes")
    assert asset.content_type == "audio/mp4"
    assert fake_s3.objects[key]["body"] == b"audio-bytes"
    metadata = fake_s3.objects[key]["metadata"]
    assert metadata["video-id"] == VIDEO_ID
    assert metadata["format-id"] == "140"
    assert metadata["codec"] == "mp4a.40.2"
    assert metadata["bitrate"] == "128000"
    assert metadata["provenance"] == "embed:failure:UpstreamBlocked;mobile:success"
    assert metadata["method"] == "direct"
    assert metadata["processing-status"] == "ready-for-transcription"
    assert json.loads(metadata["policy"])["prefer_audio_only"] is True
    assert str(requests[0].url) == AUDIO_URL
    # Temporary copy is gone.
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_materializing_twice_keeps_one_object(storage_config, fake_s3, mock_transport, tmp_path):
    transport, _ = audio_transport(mock_transport)
    materializer = Materializer(
        S3ObjectStore(storage_config, client=fake_s3), transport=transport, temp_dir=str(tmp_path)
    )

    await materializer.materialize(VIDEO_ID, AUDIO, provenance=PROVENANCE[:1])
    await materializer.materialize(VIDEO_ID, AUDIO, provenance=PROVENANCE)

    assert list(fake_s3.objects) == [f"temp-audio/{VIDEO_ID}.m4a"]
    stored = fake_s3.objects[f"temp-audio/{VIDEO_ID}.m4a"]
    assert stored["metadata"]["provenance"] == "embed:failure:UpstreamBlocked;mobile:success"


@pytest.mark.asyncio
async def test_upload_failure_raises_and_leaves_nothing(storage_config, make_s3_client, mock_transport, tmp_path):
    client = make_s3_client(fail_put=True)
    transport, _ = audio_transport(mock_transport)
    materializer = Materializer(S3ObjectStore(storage_config, client=client), transport=transport, temp_dir=str(tmp_path))

    with pytest.raises(StorageUnavailable):
        await materializer.materialize(VIDEO_ID, AUDIO)

    assert client.objects == {}
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_refused_direct_fetch_uses_delegate(storage_config, fake_s3, mock_transport, tmp_path):
    transport, _ = audio_transport(mock_transport, status=403)
    runner = DelegateRunner(tmp_path)
    delegate = YtDlpExtractor(runner=runner, config=YtDlpConfig(output_dir=str(tmp_path), mode="probe"))
    materializer = Materializer(
        S3ObjectStore(storage_config, client=fake_s3), delegate=delegate, transport=transport, temp_dir=str(tmp_path)
    )

    asset = await materializer.materialize(VIDEO_ID, AUDIO)

    assert runner.calls == 1
    assert asset.key == f"temp-audio/{VIDEO_ID}.webm"
    assert asset.content_type == "audio/webm"
    assert fake_s3.objects[asset.key]["body"] == b"delegate-bytes"
    assert fake_s3.objects[asset.key]["metadata"]["method"] == "ytdlp"
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_refused_direct_fetch_without_delegate(storage_config, fake_s3, mock_transport, tmp_path):
    transport, _ = audio_transport(mock_transport, status=404)
    materializer = Materializer(S3ObjectStore(storage_config, client=fake_s3), transport=transport, temp_dir=str(tmp_path))

    with pytest.raises(DownloadError):
        await materializer.materialize(VIDEO_ID, AUDIO)
    assert fake_s3.objects == {}
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_local_file_variant_is_uploaded_and_removed(storage_config, fake_s3, tmp_path):
    path = tmp_path / f"audio_{VIDEO_ID}.m4a"
    path.write_bytes(b"local")
    variant = StreamVariant(
        reference=str(path),
        reference_kind=ReferenceKind.LOCAL_FILE,
        container="m4a",
        is_audio_only=True,
        format_id="140",
    )
    materializer = Materializer(S3ObjectStore(storage_config, client=fake_s3))

    asset = await materializer.materialize(VIDEO_ID, variant)

    assert asset.key == f"temp-audio/{VIDEO_ID}.m4a"
    assert fake_s3.objects[asset.key]["metadata"]["method"] == "ytdlp"
    assert not path.exists()


@pytest.mark.asyncio
async def test_transfer_deadline(storage_config, fake_s3, mock_transport, tmp_path):
    async def slow(request):
        await asyncio.sleep(5)
        return httpx.Response(200, content=b"late")

    transport, _ = mock_transport(slow)
    materializer = Materializer(
        S3ObjectStore(storage_config, client=fake_s3), transport=transport, transfer_timeout=0.05, temp_dir=str(tmp_path)
    )

    with pytest.raises(OperationTimeout):
        await materializer.materialize(VIDEO_ID, AUDIO)
    assert fake_s3.objects == {}
    assert list(tmp_path.iterdir()) == []


def test_content_types():
    assert content_type_for(AUDIO) == "audio/mp4"
    video = StreamVariant(reference="x", container="webm", format_id="248")
    assert content_type_for(video) == "video/webm"
    odd = StreamVariant(reference="x", container="flv", format_id="5", mime_type="video/x-flv")
    assert content_type_for(odd) == "video/x-flv"
    assert content_type_for(StreamVariant(reference="x", container="bin", format_id="0")) == "application/octet-stream"


def test_metadata_defaults():
    metadata = build_metadata(VIDEO_ID, StreamVariant(reference="x", format_id="18"), "direct")
    assert metadata["codec"] == "unknown"
    assert metadata["bitrate"] == "unknown"
    assert metadata["provenance"] == ""
    assert all(isinstance(v, str) for v in metadata.values())


class SlowUploadStore(S3ObjectStore):
    """Upload whose response arrives after the deadline; ``lands`` decides whether the object is written."""

    def __init__(self, *args, lands=True, **kwargs):
        super().__init__(*args, **kwargs)
        self.lands = lands

    async def put_file(self, key, path, content_type, metadata):
        if self.lands:
            with open(path, "rb") as f:
                self.client.add(key, f.read(), content_type, metadata)
        await asyncio.sleep(5)


@pytest.mark.asyncio
async def test_upload_landing_after_deadline_is_returned(storage_config, fake_s3, mock_transport, tmp_path):
    transport, _ = audio_transport(mock_transport)
    materializer = Materializer(
        SlowUploadStore(storage_config, client=fake_s3),
        transport=transport,
        transfer_timeout=0.5,
        temp_dir=str(tmp_path),
    )

    asset = await materializer.materialize(VIDEO_ID, AUDIO)

    assert asset.key == f"temp-audio/{VIDEO_ID}.m4a"
    assert fake_s3.head_calls == [asset.key]
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_upload_still_running_at_deadline_raises(storage_config, fake_s3, mock_transport, tmp_path):
    transport, _ = audio_transport(mock_transport)
    materializer = Materializer(
        SlowUploadStore(storage_config, client=fake_s3, lands=False),
        transport=transport,
        transfer_timeout=0.5,
        temp_dir=str(tmp_path),
    )

    with pytest.raises(OperationTimeout, match="may still complete"):
        await materializer.materialize(VIDEO_ID, AUDIO)
    assert fake_s3.head_calls == [f"temp-audio/{VIDEO_ID}.m4a"]


@pytest.mark.asyncio
async def test_stale_object_is_not_mistaken_for_late_upload(storage_config, fake_s3, mock_transport, tmp_path):
    fake_s3.add(f"temp-audio/{VIDEO_ID}.m4a", metadata={"extracted-at": "2020-01-01T00:00:00+00:00"})
    transport, _ = audio_transport(mock_transport)
    materializer = Materializer(
        SlowUploadStore(storage_config, client=fake_s3, lands=False),
        transport=transport,
        transfer_timeout=0.5,
        temp_dir=str(tmp_path),
    )

    with pytest.raises(OperationTimeout):
        await materializer.materialize(VIDEO_ID, AUDIO)
