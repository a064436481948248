import subprocess

import pytest

from content_hub.core.errors import InputError, ToolTimeout, TransientProcessingError
from content_hub.media import probe as probe_module
from content_hub.media.ffmpeg import media_source, progress_fraction
from content_hub.media.probe import parse_frame_rate, parse_probe, run_ffprobe


@pytest.mark.parametrize(
    "value, expected",
    [
        ("24000/1001", 23.976),
        ("30/1", 30.0),
        ("25", 25.0),
        (29.97, 29.97),
        ("0/0", 0.0),
        ("30/0", 0.0),
        ("N/A", 0.0),
        ("abc", 0.0),
        ("1/2/3", 0.0),
        ("", 0.0),
        (None, 0.0),
        ("-30/1", 0.0),
        (float("nan"), 0.0),
    ],
)
def test_parse_frame_rate(value, expected):
    assert parse_frame_rate(value) == pytest.approx(expected, abs=1e-3)


def test_parse_probe_video_with_audio():
    raw = {
        "format": {"duration": "12.5", "format_name": "matroska,webm", "bit_rate": "900000"},
        "streams": [
            {"codec_type": "audio", "codec_name": "opus", "sample_rate": "48000", "channels": 2},
            {"codec_type": "video", "codec_name": "vp9", "width": 640, "height": 360, "r_frame_rate": "30/1"},
        ],
    }

    probe = parse_probe(raw)

    assert probe.has_video
    assert probe.duration_s == 12.5
    assert probe.container == "matroska,webm"
    assert probe.codec == "vp9"
    assert probe.resolution == "640x360"
    assert probe.frame_rate == 30.0
    assert probe.audio_codec == "opus"
    assert probe.sample_rate_hz == 48000
    assert probe.channels == 2


def test_parse_probe_falls_back_to_average_frame_rate():
    raw = {"streams": [{"codec_type": "video", "codec_name": "h264", "r_frame_rate": "0/0", "avg_frame_rate": "25/1"}]}
    assert parse_probe(raw).frame_rate == 25.0


def test_parse_probe_prefers_default_stream():
    raw = {
        "streams": [
            {"codec_type": "audio", "codec_name": "aac", "disposition": {"default": 0}},
            {"codec_type": "audio", "codec_name": "flac", "disposition": {"default": 1}},
        ]
    }
    assert parse_probe(raw).audio_codec == "flac"


def test_parse_probe_tolerates_missing_values():
    probe = parse_probe({"format": {"duration": "N/A", "bit_rate": "N/A"}, "streams": []})

    assert not probe.has_video
    assert probe.duration_s == 0.0
    assert probe.bit_rate is None
    assert probe.container == "unknown"
    assert probe.resolution is None
    assert probe.frame_rate == 0.0


def test_run_ffprobe_missing_binary_is_transient(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError("ffprobe")

    monkeypatch.setattr(probe_module.subprocess, "run", missing)
    with pytest.raises(TransientProcessingError) as excinfo:
        run_ffprobe("clip.mp4", timeout_s=5)
    assert excinfo.value.permanent is False


def test_run_ffprobe_timeout(monkeypatch):
    def hang(command, **kwargs):
        raise subprocess.TimeoutExpired(command, kwargs["timeout"])

    monkeypatch.setattr(probe_module.subprocess, "run", hang)
    with pytest.raises(ToolTimeout, match="timed out after 5s"):
        run_ffprobe("clip.mp4", timeout_s=5)


def test_run_ffprobe_failure_is_input_error(monkeypatch):
    def fail(command, **kwargs):
        raise subprocess.CalledProcessError(1, command, output="", stderr="moov atom not found")

    monkeypatch.setattr(probe_module.subprocess, "run", fail)
    with pytest.raises(InputError, match="moov atom not found"):
        run_ffprobe("clip.mp4", timeout_s=5)


def test_run_ffprobe_invalid_json(monkeypatch):
    def garbage(command, **kwargs):
        return subprocess.CompletedProcess(command, 0, stdout="not json", stderr="")

    monkeypatch.setattr(probe_module.subprocess, "run", garbage)
    with pytest.raises(InputError):
        run_ffprobe("clip.mp4", timeout_s=5)


@pytest.mark.parametrize(
    "line, expected",
    [
        ("out_time_us=6000000", 0.5),
        ("out_time_ms=12000000", 1.0),
        ("out_time_us=99000000", 1.0),
        ("progress=end", 1.0),
        ("progress=continue", None),
        ("frame=120", None),
        ("out_time_us=N/A", None),
    ],
)
def test_progress_fraction(line, expected):
    assert progress_fraction(line, 12.0) == expected


def test_progress_fraction_without_duration():
    assert progress_fraction("out_time_us=1000", 0) is None


def test_media_source_unwraps_file_urls():
    assert media_source("file:///srv/blobs/my%20clip.mp4") == "/srv/blobs/my clip.mp4"
    assert media_source("https://cdn.example.com/a.mp4?sig=1") == "https://cdn.example.com/a.mp4?sig=1"
