import json

import pytest

from mediaflow_resolver.errors import NoMetadataFound, UpstreamBlocked
from mediaflow_resolver.schemas import ReferenceKind, VariantOrigin
from mediaflow_resolver.utils.player_response import (
    SourceKind,
    detect_bot_page,
    extract_player_response,
    parse_stream_metadata,
)


@pytest.mark.parametrize("style", ["var", "window", "embedded"])
def test_embedded_object_is_located_for_every_marker(make_html, player_response, style):
    html = make_html(player_response, style=style)
    assert extract_player_response(html)["videoDetails"]["videoId"] == "dQw4w9WgXcQ"


def test_trailing_characters_after_object_are_ignored(player_response):
    html = "<script>var ytInitialPlayerResponse = " + json.dumps(player_response) + ";if (window.x) {x()}</script>"
    assert "streamingData" in extract_player_response(html)


def test_fragment_without_script_tags(player_response):
    text = "ytInitialPlayerResponse = " + json.dumps(player_response) + "; more"
    assert extract_player_response(text)["playabilityStatus"]["status"] == "OK"


def test_variants_flatten_combined_then_adaptive(make_html, player_response):
    variants = parse_stream_metadata(make_html(player_response).encode(), SourceKind.HTML)

    assert [v.format_id for v in variants] == ["18", "137", "140", "251"]
    assert [v.origin for v in variants] == [
        VariantOrigin.COMBINED,
        VariantOrigin.ADAPTIVE,
        VariantOrigin.ADAPTIVE,
        VariantOrigin.ADAPTIVE,
    ]

    combined, video, audio, ciphered = variants
    assert not combined.is_audio_only
    assert combined.quality_label == "360p"
    assert combined.size_hint == 9000000
    assert not video.is_audio_only
    assert audio.is_audio_only
    assert audio.container == "mp4"
    assert audio.extension == "m4a"
    assert audio.codec_hint == "mp4a.40.2"
    assert audio.bitrate_hint == 128000
    assert ciphered.reference_kind == ReferenceKind.CIPHER
    assert ciphered.container == "webm"
    assert ciphered.is_audio_only


def test_formats_without_reference_are_skipped(player_response):
    player_response["streamingData"]["adaptiveFormats"].append({"itag": 999, "mimeType": "audio/mp4"})
    variants = parse_stream_metadata(json.dumps(player_response), SourceKind.JSON)
    assert "999" not in [v.format_id for v in variants]


def test_json_source(player_response):
    variants = parse_stream_metadata(json.dumps(player_response).encode(), SourceKind.JSON)
    assert len(variants) == 4


def test_invalid_json_source():
    with pytest.raises(NoMetadataFound):
        parse_stream_metadata(b"<html>not json</html>", SourceKind.JSON)
    with pytest.raises(NoMetadataFound):
        parse_stream_metadata(b"[1, 2, 3]", SourceKind.JSON)


def test_page_without_marker_raises_no_metadata():
    with pytest.raises(NoMetadataFound):
        parse_stream_metadata(b"<html><script>var x = {};</script></html>")


def test_bot_detection_page_raises_blocked():
    html = (
        "<html><body><form action='/sorry/index'><div class='g-recaptcha'></div></form>"
        "<p>Our systems have detected unusual traffic from your computer network.</p></body></html>"
    )
    assert detect_bot_page(html) == "g-recaptcha"
    with pytest.raises(UpstreamBlocked):
        parse_stream_metadata(html)


def test_unplayable_content_raises_no_metadata():
    payload = {"playabilityStatus": {"status": "ERROR", "reason": "Video unavailable"}}
    with pytest.raises(NoMetadataFound, match="Video unavailable"):
        parse_stream_metadata(json.dumps(payload), SourceKind.JSON)


def test_login_required_bot_check_raises_blocked():
    payload = {"playabilityStatus": {"status": "LOGIN_REQUIRED", "reason": "Sign in to confirm you're not a bot"}}
    with pytest.raises(UpstreamBlocked):
        parse_stream_metadata(json.dumps(payload), SourceKind.JSON)


def test_empty_streaming_data_raises_no_metadata():
    payload = {"playabilityStatus": {"status": "OK"}, "streamingData": {"formats": [], "adaptiveFormats": []}}
    with pytest.raises(NoMetadataFound):
        parse_stream_metadata(json.dumps(payload), SourceKind.JSON)
