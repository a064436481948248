import httpx
import pytest

from content_hub.core import storage
from content_hub.core.errors import BlobFetchError, BlobNotFound
from content_hub.core.storage import derive_variant_keys, fetch_url_bytes, get_blob_store
from content_hub.db.models import VariantType


def test_variant_keys_sit_beside_the_original():
    keys = derive_variant_keys("tenants/acme/2026/10/photo.final.png")

    assert keys == {
        VariantType.THUMBNAIL: "tenants/acme/2026/10/thumbnails/photo.final.png",
        VariantType.PREVIEW: "tenants/acme/2026/10/previews/photo.final.png",
        VariantType.WEB_OPTIMIZED: "tenants/acme/2026/10/web/photo.final.png",
        VariantType.MOBILE: "tenants/acme/2026/10/mobile/photo.final.png",
    }


def test_variant_keys_for_root_level_original():
    assert derive_variant_keys("clip.mp4")[VariantType.PREVIEW] == "previews/clip.mp4"


def test_variant_keys_need_a_filename():
    with pytest.raises(ValueError):
        derive_variant_keys("folder/")


def test_local_store_roundtrip(blob_store):
    blob_store.upload_bytes("a/b/c.bin", b"payload", "application/octet-stream")

    assert (blob_store.base_path / "a/b/c.bin").read_bytes() == b"payload"
    url = blob_store.get_retrieval_url("a/b/c.bin")
    assert url.startswith("file://")
    assert fetch_url_bytes(url, timeout_s=1) == b"payload"

    assert blob_store.exists("a/b/c.bin")
    blob_store.delete("a/b/c.bin")
    blob_store.delete("a/b/c.bin")
    assert not blob_store.exists("a/b/c.bin")


def test_local_store_missing_blob(blob_store):
    with pytest.raises(BlobNotFound) as excinfo:
        blob_store.get_retrieval_url("nope.png")
    assert excinfo.value.key == "nope.png"


def test_local_store_rejects_keys_outside_root(blob_store):
    with pytest.raises(ValueError):
        blob_store.upload_bytes("../escape.txt", b"x", "text/plain")


def test_get_blob_store_uses_configured_root(settings):
    store = get_blob_store(settings)
    assert store.base_path == settings.blob_root.resolve()


def test_fetch_unsupported_scheme():
    with pytest.raises(BlobFetchError, match="Unsupported"):
        fetch_url_bytes("ftp://example.com/a.png", timeout_s=1)


def test_fetch_missing_file_url(tmp_path):
    with pytest.raises(BlobNotFound):
        fetch_url_bytes((tmp_path / "gone.png").as_uri(), timeout_s=1)


def test_fetch_http_status_mapping(monkeypatch):
    responses = {
        "https://blobs.example.com/ok.png": httpx.Response(200, content=b"image-bytes"),
        "https://blobs.example.com/missing.png": httpx.Response(404),
        "https://blobs.example.com/broken.png": httpx.Response(503),
    }

    def fake_get(url, *, timeout, follow_redirects):
        return responses[url]

    monkeypatch.setattr(storage.httpx, "get", fake_get)

    assert fetch_url_bytes("https://blobs.example.com/ok.png", timeout_s=1) == b"image-bytes"
    with pytest.raises(BlobNotFound):
        fetch_url_bytes("https://blobs.example.com/missing.png", timeout_s=1)
    with pytest.raises(BlobFetchError, match="HTTP 503"):
        fetch_url_bytes("https://blobs.example.com/broken.png", timeout_s=1)


def test_fetch_http_transport_error(monkeypatch):
    def refuse(url, *, timeout, follow_redirects):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(storage.httpx, "get", refuse)
    with pytest.raises(BlobFetchError, match="connection refused"):
        fetch_url_bytes("http://blobs.example.com/a.png", timeout_s=1)
