"""Error taxonomy for the processing core.

ContentHubError
├── QueueUnavailable
├── BlobStoreError
│   ├── BlobNotFound
│   ├── BlobWriteError
│   └── BlobFetchError
├── InvalidTransition
└── ProcessingError (carries ``permanent``)
    ├── InputError          permanent, bad media
    ├── AssetNotFound       permanent
    └── TransientProcessingError
        └── ToolTimeout

Permanent errors fail the asset on the attempt they occur. Transient ones fail it
only once the queue has no attempts left.
"""

from __future__ import annotations


class ContentHubError(Exception):
    """Base class for errors raised by the processing core."""


class QueueUnavailable(ContentHubError):
    """The queue backend could not be reached."""


class BlobStoreError(ContentHubError):
    pass


class BlobNotFound(BlobStoreError):
    def __init__(self, key: str):
        super().__init__(f"blob not found: {key}")
        self.key = key


class BlobWriteError(BlobStoreError):
    pass


class BlobFetchError(BlobStoreError):
    pass


class InvalidTransition(ContentHubError):
    def __init__(self, asset_id: str, current: object, target: object):
        super().__init__(f"asset {asset_id}: cannot move from {current} to {target}")
        self.asset_id = asset_id
        self.current = current
        self.target = target


class ProcessingError(ContentHubError):
    permanent = False

    def __init__(self, message: str, *, permanent: bool | None = None):
        super().__init__(message)
        self.message = message
        if permanent is not None:
            self.permanent = permanent


class InputError(ProcessingError):
    permanent = True


class AssetNotFound(ProcessingError):
    permanent = True

    def __init__(self, asset_id: str):
        super().__init__(f"asset not found: {asset_id}")
        self.asset_id = asset_id


class TransientProcessingError(ProcessingError):
    permanent = False


class ToolTimeout(TransientProcessingError):
    pass


__all__ = [
    "ContentHubError",
    "QueueUnavailable",
    "BlobStoreError",
    "BlobNotFound",
    "BlobWriteError",
    "BlobFetchError",
    "InvalidTransition",
    "ProcessingError",
    "InputError",
    "AssetNotFound",
    "TransientProcessingError",
    "ToolTimeout",
]
