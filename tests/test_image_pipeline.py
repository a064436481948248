from __future__ import annotations

import pytest

from content_hub.core.errors import BlobWriteError, InputError, ProcessingError, TransientProcessingError
from content_hub.core.storage import LocalBlobStore
from content_hub.db.models import ProcessingStatus, VariantType
from content_hub.workers.tasks import run_job
from tests.conftest import load_asset, png_bytes, register_asset


def _payload(asset_id: str, file_key: str, mime_type: str = "image/png") -> dict:
    return {"asset_id": asset_id, "file_key": file_key, "mime_type": mime_type}


def test_successful_image_job(settings, blob_store):
    register_asset(settings, asset_id="a1", file_key="orig/a1.png", mime_type="image/png")
    blob_store.upload_bytes("orig/a1.png", png_bytes(3000, 2000, dpi=(300, 300)), "image/png")

    result = run_job("process-image", _payload("a1", "orig/a1.png"), job_id="job-a1", attempt=1, max_attempts=3)

    assert result["status"] == "COMPLETED"
    assert result["skipped"] is False

    asset, variants, metadata = load_asset(settings, "a1")
    assert asset.processing_status == ProcessingStatus.COMPLETED
    assert (asset.width, asset.height) == (3000, 2000)
    assert asset.thumbnail_key == "orig/thumbnails/a1.png"
    assert asset.preview_key == "orig/previews/a1.png"
    assert asset.processing_error is None

    by_type = {variant.variant_type: variant for variant in variants}
    assert len(variants) == 4
    assert set(by_type) == {VariantType.THUMBNAIL, VariantType.PREVIEW, VariantType.WEB_OPTIMIZED, VariantType.MOBILE}
    assert by_type[VariantType.WEB_OPTIMIZED].file_key == "orig/web/a1.png"
    assert by_type[VariantType.MOBILE].file_key == "orig/mobile/a1.png"
    assert by_type[VariantType.WEB_OPTIMIZED].format == "webp"
    assert by_type[VariantType.THUMBNAIL].format == "jpeg"
    assert by_type[VariantType.THUMBNAIL].quality == 80
    assert by_type[VariantType.PREVIEW].quality == 85

    for variant in variants:
        assert (blob_store.base_path / variant.file_key).stat().st_size == variant.file_size

    assert metadata is not None
    assert metadata.color_space == "srgb"
    assert metadata.dpi == 300
    assert metadata.bit_depth == 8
    assert metadata.custom_fields["channels"] == 3
    assert metadata.custom_fields["hasAlpha"] is False
    assert metadata.custom_fields["format"] == "png"


def test_variant_dimensions_follow_fit_rules(settings, blob_store):
    register_asset(settings, asset_id="fit", file_key="orig/fit.png", mime_type="image/png")
    blob_store.upload_bytes("orig/fit.png", png_bytes(3000, 2000), "image/png")

    run_job("process-image", _payload("fit", "orig/fit.png"), job_id="job-fit")

    _, variants, _ = load_asset(settings, "fit")
    sizes = {variant.variant_type: (variant.width, variant.height) for variant in variants}
    assert sizes[VariantType.THUMBNAIL] == (400, 225)
    assert sizes[VariantType.MOBILE] == (800, 450)
    for variant_type, (box_w, box_h) in ((VariantType.PREVIEW, (1200, 675)), (VariantType.WEB_OPTIMIZED, (1920, 1080))):
        width, height = sizes[variant_type]
        assert width <= box_w and height <= box_h
        assert width == box_w or height == box_h
        assert width / height == pytest.approx(3000 / 2000, abs=0.01)


def test_inside_variants_never_upscale(settings, blob_store):
    register_asset(settings, asset_id="small", file_key="small.png", mime_type="image/png")
    blob_store.upload_bytes("small.png", png_bytes(640, 480), "image/png")

    run_job("process-image", _payload("small", "small.png"), job_id="job-small")

    asset, variants, _ = load_asset(settings, "small")
    sizes = {variant.variant_type: (variant.width, variant.height) for variant in variants}
    assert sizes[VariantType.PREVIEW] == (640, 480)
    assert sizes[VariantType.WEB_OPTIMIZED] == (640, 480)
    # Cover variants always fill their box, upscaling if needed.
    assert sizes[VariantType.THUMBNAIL] == (400, 225)
    assert asset.thumbnail_key == "thumbnails/small.png"


def test_transparent_png_is_flattened_for_jpeg(settings, blob_store):
    register_asset(settings, asset_id="alpha", file_key="orig/alpha.png", mime_type="image/png")
    blob_store.upload_bytes("orig/alpha.png", png_bytes(500, 500, mode="RGBA", color=(0, 0, 0, 0)), "image/png")

    run_job("process-image", _payload("alpha", "orig/alpha.png"), job_id="job-alpha")

    asset, variants, metadata = load_asset(settings, "alpha")
    assert asset.processing_status == ProcessingStatus.COMPLETED
    assert len(variants) == 4
    assert metadata.custom_fields["hasAlpha"] is True
    assert metadata.custom_fields["channels"] == 4


def test_undecodable_image_fails_without_variants(settings, blob_store):
    register_asset(settings, asset_id="bad", file_key="orig/bad.png", mime_type="image/png")
    blob_store.upload_bytes("orig/bad.png", b"\x89PNG this is not really a png", "image/png")

    with pytest.raises(InputError):
        run_job("process-image", _payload("bad", "orig/bad.png"), job_id="job-bad", attempt=1, max_attempts=3)

    asset, variants, metadata = load_asset(settings, "bad")
    assert asset.processing_status == ProcessingStatus.FAILED
    assert asset.processing_error
    assert variants == []
    assert metadata is None


def test_missing_original_is_permanent(settings):
    register_asset(settings, asset_id="gone", file_key="orig/gone.png", mime_type="image/png")

    with pytest.raises(InputError):
        run_job("process-image", _payload("gone", "orig/gone.png"), job_id="job-gone", attempt=1, max_attempts=3)

    asset, _, _ = load_asset(settings, "gone")
    assert asset.processing_status == ProcessingStatus.FAILED
    assert "not found" in asset.processing_error


def test_partial_failure_keeps_earlier_variants(settings, blob_store, monkeypatch):
    register_asset(settings, asset_id="part", file_key="orig/part.png", mime_type="image/png")
    blob_store.upload_bytes("orig/part.png", png_bytes(1000, 800), "image/png")

    original_upload = LocalBlobStore.upload_bytes

    def flaky_upload(self, key, body, content_type):
        if "/previews/" in key:
            raise BlobWriteError(f"failed to write {key}: disk full")
        return original_upload(self, key, body, content_type)

    monkeypatch.setattr(LocalBlobStore, "upload_bytes", flaky_upload)

    with pytest.raises(TransientProcessingError):
        run_job("process-image", _payload("part", "orig/part.png"), job_id="job-part", attempt=3, max_attempts=3)

    asset, variants, _ = load_asset(settings, "part")
    assert asset.processing_status == ProcessingStatus.FAILED
    assert "disk full" in asset.processing_error
    # Dimensions were saved before variant generation started.
    assert (asset.width, asset.height) == (1000, 800)
    assert [variant.variant_type for variant in variants] == [VariantType.THUMBNAIL]


def test_transient_failure_waits_for_final_attempt(settings, blob_store, monkeypatch):
    register_asset(settings, asset_id="retry", file_key="orig/retry.png", mime_type="image/png")
    blob_store.upload_bytes("orig/retry.png", png_bytes(800, 600), "image/png")

    original_upload = LocalBlobStore.upload_bytes
    calls = {"fail": True}

    def flaky_upload(self, key, body, content_type):
        if calls["fail"]:
            raise BlobWriteError("blob store timeout")
        return original_upload(self, key, body, content_type)

    monkeypatch.setattr(LocalBlobStore, "upload_bytes", flaky_upload)
    payload = _payload("retry", "orig/retry.png")

    with pytest.raises(TransientProcessingError):
        run_job("process-image", payload, job_id="job-retry", attempt=1, max_attempts=3)
    asset, _, _ = load_asset(settings, "retry")
    assert asset.processing_status == ProcessingStatus.PROCESSING
    assert "blob store timeout" in asset.processing_error

    calls["fail"] = False
    run_job("process-image", payload, job_id="job-retry", attempt=2, max_attempts=3)
    asset, variants, _ = load_asset(settings, "retry")
    assert asset.processing_status == ProcessingStatus.COMPLETED
    assert asset.processing_error is None
    assert len(variants) == 4


def test_redelivery_after_completion_is_skipped(settings, blob_store):
    register_asset(settings, asset_id="twice", file_key="orig/twice.png", mime_type="image/png")
    blob_store.upload_bytes("orig/twice.png", png_bytes(900, 600), "image/png")
    payload = _payload("twice", "orig/twice.png")

    run_job("process-image", payload, job_id="job-twice")
    result = run_job("process-image", payload, job_id="job-twice")

    assert result["skipped"] is True
    asset, variants, _ = load_asset(settings, "twice")
    assert asset.processing_status == ProcessingStatus.COMPLETED
    assert len(variants) == 4


def test_redelivery_after_failure_raises(settings, blob_store):
    register_asset(settings, asset_id="dead", file_key="orig/dead.png", mime_type="image/png")
    blob_store.upload_bytes("orig/dead.png", b"garbage", "image/png")
    payload = _payload("dead", "orig/dead.png")

    with pytest.raises(InputError):
        run_job("process-image", payload, job_id="job-dead", attempt=1, max_attempts=3)
    with pytest.raises(ProcessingError) as excinfo:
        run_job("process-image", payload, job_id="job-dead", attempt=2, max_attempts=3)

    assert excinfo.value.permanent is True
    asset, _, _ = load_asset(settings, "dead")
    assert asset.processing_status == ProcessingStatus.FAILED
