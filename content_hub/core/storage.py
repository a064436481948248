from __future__ import annotations

import posixpath
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from content_hub.db.models import VariantType

from .config import Settings
from .errors import BlobFetchError, BlobNotFound, BlobWriteError

VARIANT_FOLDERS: dict[VariantType, str] = {
    VariantType.THUMBNAIL: "thumbnails",
    VariantType.PREVIEW: "previews",
    VariantType.WEB_OPTIMIZED: "web",
    VariantType.MOBILE: "mobile",
}


class BlobStore(ABC):
    @abstractmethod
    def upload_bytes(self, key: str, body: bytes, content_type: str) -> None: ...

    @abstractmethod
    def get_retrieval_url(self, key: str, expiry_s: int = 3600) -> str: ...

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...


class LocalBlobStore(BlobStore):
    """Filesystem-backed blob store. Retrieval URLs are file:// URIs and never expire."""

    def __init__(self, base_path: Path):
        self.base_path = base_path.resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        path = (self.base_path / key.lstrip("/")).resolve()
        if path != self.base_path and self.base_path not in path.parents:
            raise ValueError(f"Blob key escapes the store root: {key}")
        return path

    def upload_bytes(self, key: str, body: bytes, content_type: str) -> None:
        path = self._resolve(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except OSError as exc:
            raise BlobWriteError(f"failed to write {key}: {exc}") from exc

    def get_retrieval_url(self, key: str, expiry_s: int = 3600) -> str:
        path = self._resolve(key)
        if not path.is_file():
            raise BlobNotFound(key)
        return path.as_uri()

    def exists(self, key: str) -> bool:
        return self._resolve(key).is_file()

    def delete(self, key: str) -> None:
        self._resolve(key).unlink(missing_ok=True)


def get_blob_store(settings: Settings) -> BlobStore:
    if settings.storage_backend == "local":
        return LocalBlobStore(base_path=Path(settings.blob_root))
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")


def derive_variant_keys(original_key: str) -> dict[VariantType, str]:
    """Variant keys are a pure function of the original key so other services can predict them."""
    base_path, filename = posixpath.split(original_key)
    if not filename:
        raise ValueError(f"Blob key has no filename: {original_key!r}")
    keys: dict[VariantType, str] = {}
    for variant_type, folder in VARIANT_FOLDERS.items():
        keys[variant_type] = f"{base_path}/{folder}/{filename}" if base_path else f"{folder}/{filename}"
    return keys


def fetch_url_bytes(url: str, *, timeout_s: float) -> bytes:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        path = Path(unquote(parsed.path))
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise BlobNotFound(str(path)) from exc
        except OSError as exc:
            raise BlobFetchError(f"failed to read {path}: {exc}") from exc
    if parsed.scheme in {"http", "https"}:
        try:
            response = httpx.get(url, timeout=timeout_s, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise BlobFetchError(f"failed to fetch original: {exc}") from exc
        if response.status_code == 404:
            raise BlobNotFound(parsed.path)
        if response.is_error:
            raise BlobFetchError(f"failed to fetch original: HTTP {response.status_code}")
        return response.content
    raise BlobFetchError(f"Unsupported retrieval URL scheme: {parsed.scheme or '<none>'}")


__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "VARIANT_FOLDERS",
    "get_blob_store",
    "derive_variant_keys",
    "fetch_url_bytes",
]
