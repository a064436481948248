from __future__ import annotations

import subprocess
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from urllib.parse import unquote, urlparse

import cv2  # type: ignore

from content_hub.core.errors import InputError, ToolTimeout, TransientProcessingError

FRAME_GRAB_WIDTH = 640
STDERR_TAIL_CHARS = 2000

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True, slots=True)
class PreviewProfile:
    width: int = 1280
    height: int = 720
    video_codec: str = "libx264"
    video_bitrate: str = "1000k"
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    preset: str = "fast"
    include_video: bool = True
    format: str = "mp4"
    content_type: str = "video/mp4"


VIDEO_PREVIEW = PreviewProfile()
AUDIO_PREVIEW = PreviewProfile(width=0, height=0, include_video=False, format="m4a", content_type="audio/mp4")


def media_source(url: str) -> str:
    """ffmpeg reads http(s) URLs directly; file URLs are handed over as plain paths."""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return unquote(parsed.path)
    return url


def extract_frame(source: str, timestamp_s: float, output_path: Path, *, timeout_s: float) -> Path:
    command = [
        "ffmpeg",
        "-nostdin",
        "-v",
        "error",
        "-ss",
        f"{max(timestamp_s, 0.0):.3f}",
        "-i",
        source,
        "-frames:v",
        "1",
        "-vf",
        f"scale={FRAME_GRAB_WIDTH}:-2",
        "-q:v",
        "2",
        "-y",
        str(output_path),
    ]
    _run(command, timeout_s=timeout_s, action="Frame extraction")
    if not output_path.exists() or output_path.stat().st_size == 0:
        raise InputError(f"Frame extraction produced no image at {timestamp_s:.3f}s")
    return output_path


def square_thumbnail(frame_path: Path, *, size: int, quality: int) -> Tuple[bytes, int, int]:
    """Cover-crop a grabbed frame to a ``size`` square and encode it as JPEG."""
    image = cv2.imread(str(frame_path))
    if image is None:
        raise InputError(f"Failed to read extracted frame at {frame_path.name}")
    height, width = image.shape[:2]
    scale = max(size / width, size / height)
    scaled_width = max(size, int(round(width * scale)))
    scaled_height = max(size, int(round(height * scale)))
    interpolation = cv2.INTER_AREA if scale < 1 else cv2.INTER_CUBIC
    resized = cv2.resize(image, (scaled_width, scaled_height), interpolation=interpolation)
    top = (scaled_height - size) // 2
    left = (scaled_width - size) // 2
    cropped = resized[top : top + size, left : left + size]
    ok, encoded = cv2.imencode(".jpg", cropped, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise InputError("Failed to encode video thumbnail")
    return encoded.tobytes(), size, size


def transcode_preview(
    source: str,
    output_path: Path,
    *,
    duration_s: float,
    profile: PreviewProfile = VIDEO_PREVIEW,
    on_progress: Optional[ProgressCallback] = None,
    timeout_s: float,
) -> Path:
    """Transcode the first ``duration_s`` seconds of ``source`` into a streamable preview.

    Progress is read from ffmpeg's ``-progress`` feed and reported as a fraction in [0, 1].
    stderr goes to a file beside the output so a chatty decoder cannot stall the pipe;
    only its tail ends up in the error message.
    """
    command = _transcode_command(source, output_path, duration_s=duration_s, profile=profile)
    with tempfile.TemporaryFile(
        mode="w+", errors="replace", dir=output_path.parent, prefix="ffmpeg-", suffix=".log"
    ) as stderr_log:
        try:
            proc = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=stderr_log, text=True)
        except FileNotFoundError as exc:
            raise TransientProcessingError("ffmpeg is not installed") from exc

        timed_out = threading.Event()

        def _kill() -> None:
            timed_out.set()
            proc.kill()

        timer = threading.Timer(timeout_s, _kill)
        timer.start()
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                fraction = progress_fraction(line, duration_s)
                if fraction is not None and on_progress is not None:
                    on_progress(fraction)
            returncode = proc.wait()
        finally:
            timer.cancel()

        stderr_log.seek(0)
        stderr = _tail(stderr_log.read(), STDERR_TAIL_CHARS)

    if timed_out.is_set():
        raise ToolTimeout(f"Preview transcode timed out after {timeout_s:.0f}s")
    if returncode != 0:
        raise InputError(f"Preview transcode failed: {stderr or f'exit code {returncode}'}")
    if not output_path.exists():
        raise InputError("Preview transcode produced no output")
    return output_path


def _transcode_command(source: str, output_path: Path, *, duration_s: float, profile: PreviewProfile) -> List[str]:
    command = ["ffmpeg", "-nostdin", "-v", "error", "-y", "-i", source, "-t", f"{duration_s:.3f}"]
    if profile.include_video:
        command += [
            "-vf",
            f"scale={profile.width}:{profile.height}",
            "-c:v",
            profile.video_codec,
            "-b:v",
            profile.video_bitrate,
            "-preset",
            profile.preset,
            "-pix_fmt",
            "yuv420p",
        ]
    else:
        command += ["-vn"]
    command += [
        "-c:a",
        profile.audio_codec,
        "-b:a",
        profile.audio_bitrate,
        "-movflags",
        "+faststart",
        "-progress",
        "pipe:1",
        "-nostats",
        str(output_path),
    ]
    return command


def _tail(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return "..." + text[-limit:]


def progress_fraction(line: str, duration_s: float) -> Optional[float]:
    """Map one ``key=value`` line of ffmpeg's progress feed to a completion fraction."""
    key, _, value = line.strip().partition("=")
    if key == "progress" and value == "end":
        return 1.0
    if key not in {"out_time_us", "out_time_ms"} or duration_s <= 0:
        return None
    try:
        # out_time_ms is microseconds as well, despite its name.
        seconds = int(value) / 1_000_000
    except ValueError:
        return None
    return max(0.0, min(1.0, seconds / duration_s))


def _run(command: List[str], *, timeout_s: float, action: str) -> None:
    try:
        subprocess.run(command, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=timeout_s)
    except FileNotFoundError as exc:
        raise TransientProcessingError(f"{command[0]} is not installed") from exc
    except subprocess.TimeoutExpired as exc:
        raise ToolTimeout(f"{action} timed out after {timeout_s:.0f}s") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise InputError(f"{action} failed: {stderr or f'exit code {exc.returncode}'}") from exc


__all__ = [
    "PreviewProfile",
    "VIDEO_PREVIEW",
    "AUDIO_PREVIEW",
    "media_source",
    "extract_frame",
    "square_thumbnail",
    "transcode_preview",
    "progress_fraction",
]
