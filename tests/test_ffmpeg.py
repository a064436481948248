from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

from content_hub.core.errors import InputError
from content_hub.media import ffmpeg

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")


def _install_fake_ffmpeg(bin_dir: Path, monkeypatch, *, exit_code: int) -> None:
    """Put an ``ffmpeg`` on PATH that floods stderr before reporting progress."""
    bin_dir.mkdir()
    script = bin_dir / "ffmpeg"
    script.write_text(
        "#!/bin/sh\n"
        "for last; do :; done\n"
        "head -c 300000 /dev/zero | tr '\\0' 'w' >&2\n"
        "echo 'last decoder warning' >&2\n"
        "echo 'out_time_us=2000000'\n"
        "echo 'progress=end'\n"
        "printf 'preview' > \"$last\"\n"
        f"exit {exit_code}\n"
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")


def test_noisy_stderr_does_not_stall_transcode(tmp_path, monkeypatch):
    _install_fake_ffmpeg(tmp_path / "bin", monkeypatch, exit_code=0)
    output = tmp_path / "preview.mp4"
    progress: list[float] = []

    result = ffmpeg.transcode_preview(
        "input.mp4", output, duration_s=4.0, on_progress=progress.append, timeout_s=10
    )

    assert result == output
    assert output.read_bytes() == b"preview"
    assert progress == [0.5, 1.0]
    assert sorted(path.name for path in tmp_path.iterdir()) == ["bin", "preview.mp4"]


def test_failed_transcode_reports_stderr_tail(tmp_path, monkeypatch):
    _install_fake_ffmpeg(tmp_path / "bin", monkeypatch, exit_code=1)

    with pytest.raises(InputError) as excinfo:
        ffmpeg.transcode_preview("input.mp4", tmp_path / "preview.mp4", duration_s=4.0, timeout_s=10)

    message = str(excinfo.value)
    assert message.endswith("last decoder warning")
    assert len(message) < ffmpeg.STDERR_TAIL_CHARS + 100
