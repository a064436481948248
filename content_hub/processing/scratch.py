from __future__ import annotations

import re
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from content_hub.core.logging import get_logger

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


@contextmanager
def job_scratch_dir(root: Path, job_id: str) -> Iterator[Path]:
    """Per-job temporary directory, removed on exit whatever the outcome."""
    root.mkdir(parents=True, exist_ok=True)
    prefix = _UNSAFE.sub("-", job_id)[:48] or "job"
    path = Path(tempfile.mkdtemp(prefix=f"{prefix}-", dir=root))
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as exc:
            get_logger(component="scratch").warning(
                "scratch_cleanup_failed", path=str(path), job_id=job_id, error=str(exc)
            )


__all__ = ["job_scratch_dir"]
