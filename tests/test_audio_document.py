from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from content_hub.core.errors import InputError
from content_hub.db.models import ProcessingStatus, VariantType
from content_hub.media import ffmpeg
from content_hub.media import probe as probe_module
from content_hub.processing import audio as audio_pipeline
from content_hub.workers.tasks import run_job
from tests.conftest import load_asset, register_asset, requires_ffmpeg


def _audio_probe(duration: str) -> dict:
    return {
        "format": {"duration": duration, "format_name": "mp3", "bit_rate": "192000"},
        "streams": [
            {"codec_type": "audio", "codec_name": "mp3", "sample_rate": "44100", "channels": 2, "bit_rate": "191000"}
        ],
    }


@pytest.fixture()
def fake_audio_tools(monkeypatch):
    calls: dict = {"probe": _audio_probe("184.2"), "transcode": []}

    def fake_transcode(source, output_path: Path, *, duration_s, profile, on_progress, timeout_s):
        calls["transcode"].append((duration_s, profile))
        output_path.write_bytes(b"m4a-bytes")
        return output_path

    monkeypatch.setattr(audio_pipeline, "run_ffprobe", lambda source, *, timeout_s: calls["probe"])
    monkeypatch.setattr(ffmpeg, "transcode_preview", fake_transcode)
    return calls


def _register(settings, blob_store, asset_id: str, file_key: str, mime_type: str, body: bytes) -> dict:
    register_asset(settings, asset_id=asset_id, file_key=file_key, mime_type=mime_type)
    blob_store.upload_bytes(file_key, body, mime_type)
    return {"asset_id": asset_id, "file_key": file_key, "mime_type": mime_type}


def test_audio_job_creates_capped_preview(settings, blob_store, fake_audio_tools):
    payload = _register(settings, blob_store, "song", "music/song.mp3", "audio/mpeg", b"ID3")

    result = run_job("process-audio", payload, job_id="job-song")

    assert result["status"] == "COMPLETED"
    duration, profile = fake_audio_tools["transcode"][0]
    assert duration == pytest.approx(30.0)
    assert profile is ffmpeg.AUDIO_PREVIEW

    asset, variants, metadata = load_asset(settings, "song")
    assert asset.processing_status == ProcessingStatus.COMPLETED
    assert asset.duration == pytest.approx(184.2)
    assert asset.thumbnail_key is None
    assert asset.preview_key == "music/previews/song.mp3"
    assert len(variants) == 1
    preview = variants[0]
    assert preview.variant_type == VariantType.PREVIEW
    assert (preview.width, preview.height) == (0, 0)
    assert preview.format == "m4a"
    assert preview.duration == pytest.approx(30.0)

    assert metadata.codec == "mp3"
    assert metadata.bit_rate == 191000
    assert metadata.custom_fields == {"container": "mp3", "sampleRate": 44100, "channels": 2}
    assert list(Path(settings.scratch_root).iterdir()) == []


def test_audio_without_audio_stream_fails(settings, blob_store, fake_audio_tools):
    fake_audio_tools["probe"] = {"format": {"duration": "3.0"}, "streams": [{"codec_type": "video", "codec_name": "png"}]}
    payload = _register(settings, blob_store, "mute", "music/mute.mp3", "audio/mpeg", b"ID3")

    with pytest.raises(InputError, match="No audio stream"):
        run_job("process-audio", payload, job_id="job-mute", attempt=1, max_attempts=3)

    asset, variants, _ = load_asset(settings, "mute")
    assert asset.processing_status == ProcessingStatus.FAILED
    assert variants == []


@requires_ffmpeg
def test_real_audio_preview(settings, blob_store, generated_audio_file):
    payload = _register(
        settings, blob_store, "tone", "music/tone.wav", "audio/wav", generated_audio_file.read_bytes()
    )

    run_job("process-audio", payload, job_id="job-tone")

    asset, variants, metadata = load_asset(settings, "tone")
    assert asset.processing_status == ProcessingStatus.COMPLETED, asset.processing_error
    assert asset.duration == pytest.approx(5.0, abs=0.1)
    assert variants[0].duration == pytest.approx(asset.duration)
    preview_path = Path(settings.blob_root) / variants[0].file_key
    probed = probe_module.parse_probe(probe_module.run_ffprobe(str(preview_path), timeout_s=30))
    assert probed.audio_codec == "aac"
    assert not probed.has_video
    assert metadata.custom_fields["channels"] == 1


def test_document_job_records_fingerprint(settings, blob_store):
    body = b"%PDF-1.7\n% fake but good enough\n"
    payload = _register(settings, blob_store, "doc", "docs/report.pdf", "application/pdf", body)

    result = run_job("process-document", payload, job_id="job-doc")

    assert result == {"asset_id": "doc", "status": "COMPLETED", "skipped": False, "variants": []}
    asset, variants, metadata = load_asset(settings, "doc")
    assert asset.processing_status == ProcessingStatus.COMPLETED
    assert variants == []
    assert metadata.custom_fields == {
        "mimeType": "application/pdf",
        "sizeBytes": len(body),
        "sha256": hashlib.sha256(body).hexdigest(),
    }


def test_document_with_missing_original_fails(settings):
    register_asset(settings, asset_id="lost", file_key="docs/lost.pdf", mime_type="application/pdf")

    with pytest.raises(InputError, match="not found"):
        run_job(
            "process-document",
            {"asset_id": "lost", "file_key": "docs/lost.pdf", "mime_type": "application/pdf"},
            job_id="job-lost",
            attempt=1,
            max_attempts=3,
        )

    asset, _, _ = load_asset(settings, "lost")
    assert asset.processing_status == ProcessingStatus.FAILED
