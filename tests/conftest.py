"""
Pytest configuration and shared fakes.

Live test URLs are loaded from environment variables for privacy.
Locally, add them to your .env file. For CI/CD, configure GitHub Secrets.
"""

import copy
import hashlib
import json
import os
from pathlib import Path

import httpx
import pytest
from botocore.exceptions import ClientError
from dotenv import load_dotenv

from mediaflow_resolver.configs import StorageConfig
from mediaflow_resolver.schemas import NetworkIdentity

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")

VIDEO_ID = "dQw4w9WgXcQ"

PLAYER_RESPONSE = {
    "playabilityStatus": {"status": "OK"},
    "videoDetails": {"videoId": VIDEO_ID, "title": "Test video"},
    "streamingData": {
        "formats": [
            {
                "itag": 18,
                "url": "https://rr1.googlevideo.com/videoplayback?itag=18&mime=video%2Fmp4",
                "mimeType": 'video/mp4; codecs="avc1.42001E, mp4a.40.2"',
                "bitrate": 256000,
                "qualityLabel": "360p",
                "contentLength": "9000000",
            }
        ],
        "adaptiveFormats": [
            {
                "itag": 137,
                "url": "https://rr1.googlevideo.com/videoplayback?itag=137&mime=video%2Fmp4",
                "mimeType": 'video/mp4; codecs="avc1.640028"',
                "bitrate": 4000000,
                "qualityLabel": "1080p",
            },
            {
                "itag": 140,
                "url": "https://rr1.googlevideo.com/videoplayback?itag=140&mime=audio%2Fmp4",
                "mimeType": 'audio/mp4; codecs="mp4a.40.2"',
                "bitrate": 128000,
                "audioQuality": "AUDIO_QUALITY_MEDIUM",
                "contentLength": "3400000",
            },
            {
                "itag": 251,
                "signatureCipher": "s=AOq0QJ8w&sp=sig&url=https%3A%2F%2Frr1.googlevideo.com%2Fvideoplayback%3Fitag%3D251",
                "mimeType": 'audio/webm; codecs="opus"',
                "bitrate": 160000,
                "audioQuality": "AUDIO_QUALITY_MEDIUM",
            },
        ],
    },
}


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture
def get_test_url():
    """
    Factory fixture that returns a function to get test URLs from environment.

    Usage:
        def test_something(get_test_url):
            url = get_test_url("youtube")
            if url is None:
                pytest.skip("TEST_URL_YOUTUBE not set")
    """

    def _get_url(name: str) -> str | None:
        env_var = f"TEST_URL_{name.upper()}"
        return os.environ.get(env_var)

    return _get_url


@pytest.fixture
def player_response():
    return copy.deepcopy(PLAYER_RESPONSE)


def html_page(player_response: dict, style: str = "var") -> str:
    """Wrap a player response the way the upstream embeds it in its pages."""
    payload = json.dumps(player_response)
    if style == "var":
        script = f"var ytInitialPlayerResponse = {payload};var meta = document.querySelector('meta');"
    elif style == "window":
        script = f'window["ytInitialPlayerResponse"] = {payload};\nwindow["ytInitialData"] = {{}};'
    elif style == "embedded":
        script = 'ytcfg.set({"PLAYER_VARS": {"embedded_player_response": ' + json.dumps(payload) + "}});"
    else:
        raise ValueError(style)
    return (
        "<!DOCTYPE html><html><head><title>Test video</title>"
        "<script>var ytcfg = {};</script>"
        f"<script nonce=\"abc\">{script}</script>"
        "</head><body><div id=\"player\"></div></body></html>"
    )


@pytest.fixture
def make_html():
    return html_page


@pytest.fixture
def identity():
    return NetworkIdentity(
        headers={"user-agent": "Mozilla/5.0 (Test)", "accept-language": "en-US,en;q=0.9"},
        profile_name="test-profile",
    )


@pytest.fixture
def mock_transport():
    """
    Factory for httpx.MockTransport instances that also record every request.

    Usage:
        transport, requests = mock_transport(lambda request: httpx.Response(200, text="ok"))
    """

    def _make(handler):
        requests = []

        async def _handler(request: httpx.Request):
            requests.append(request)
            response = handler(request)
            if hasattr(response, "__await__"):
                response = await response
            return response

        return httpx.MockTransport(_handler), requests

    return _make


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client (head_object / put_object only)."""

    def __init__(self, objects=None, fail_head: bool = False, fail_put: bool = False):
        self.objects = dict(objects or {})
        self.fail_head = fail_head
        self.fail_put = fail_put
        self.head_calls = []
        self.put_calls = []

    @staticmethod
    def _error(code: str, status: int, operation: str) -> ClientError:
        return ClientError(
            {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}}, operation
        )

    def add(self, key: str, body: bytes = b"data", content_type: str = "audio/mp4", metadata=None):
        self.objects[key] = {
            "body": body,
            "etag": hashlib.md5(body).hexdigest(),
            "content_type": content_type,
            "metadata": dict(metadata or {}),
        }

    def head_object(self, Bucket, Key):
        self.head_calls.append(Key)
        if self.fail_head:
            raise self._error("AccessDenied", 403, "HeadObject")
        obj = self.objects.get(Key)
        if obj is None:
            raise self._error("404", 404, "HeadObject")
        return {
            "ETag": f'"{obj["etag"]}"',
            "ContentLength": len(obj["body"]),
            "ContentType": obj["content_type"],
            "Metadata": dict(obj["metadata"]),
        }

    def put_object(self, Bucket, Key, Body, ContentType, Metadata):
        self.put_calls.append(Key)
        if self.fail_put:
            raise self._error("InternalError", 500, "PutObject")
        data = Body.read()
        self.add(Key, data, ContentType, Metadata)
        return {"ETag": f'"{self.objects[Key]["etag"]}"'}


@pytest.fixture
def fake_s3():
    return FakeS3Client()


@pytest.fixture
def make_s3_client():
    """The fake client class, for tests that need a failing or pre-filled store."""
    return FakeS3Client


@pytest.fixture
def storage_config():
    return StorageConfig(
        bucket="media",
        endpoint_url="https://s3.example.com",
        key_prefix="temp-audio/",
        public_base_url=None,
        candidate_extensions=["m4a", "webm", "mp4"],
        enable_cache=True,
    )


class RecordingSleep:
    """Replaces asyncio.sleep; records requested delays and returns immediately."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
