from __future__ import annotations

import json
import math
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from content_hub.core.errors import InputError, ToolTimeout, TransientProcessingError


@dataclass(slots=True)
class MediaProbe:
    """Technical facts about a media source, normalised from ffprobe output."""

    duration_s: float
    container: str
    bit_rate: Optional[int]
    codec: Optional[str]
    width: Optional[int]
    height: Optional[int]
    frame_rate: float
    video_bit_rate: Optional[int]
    audio_codec: Optional[str]
    audio_bit_rate: Optional[int]
    sample_rate_hz: Optional[int]
    channels: Optional[int]

    @property
    def has_video(self) -> bool:
        return self.codec is not None

    @property
    def resolution(self) -> Optional[str]:
        if self.width is None or self.height is None:
            return None
        return f"{self.width}x{self.height}"


def run_ffprobe(source: str, *, timeout_s: float) -> Dict[str, Any]:
    """Run ffprobe against a path or URL and return its JSON document.

    Args:
        source: Local path or URL ffprobe can stream from.
        timeout_s: Upper bound on the probe so a hung source cannot pin a worker.

    Returns:
        The parsed ffprobe JSON.
    """
    command = [
        "ffprobe",
        "-v",
        "error",
        "-show_format",
        "-show_streams",
        "-print_format",
        "json",
        source,
    ]
    try:
        proc = subprocess.run(
            command,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout_s,
        )
    except FileNotFoundError as exc:
        raise TransientProcessingError("ffprobe is not installed") from exc
    except subprocess.TimeoutExpired as exc:
        raise ToolTimeout(f"ffprobe timed out after {timeout_s:.0f}s") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise InputError(f"Unable to probe media: {stderr or 'ffprobe failed'}") from exc
    try:
        return json.loads(proc.stdout)
    except json.JSONDecodeError as exc:
        raise InputError("Unable to probe media: ffprobe returned invalid JSON") from exc


def parse_probe(raw: Dict[str, Any]) -> MediaProbe:
    """Normalise ffprobe JSON into a ``MediaProbe``.

    Args:
        raw: The raw ffprobe JSON.

    Returns:
        The normalised probe. Missing values become ``None`` (or 0 for duration
        and frame rate) rather than raising.
    """
    format_info = raw.get("format") or {}
    streams: List[Dict[str, Any]] = list(raw.get("streams") or [])
    video = _select_stream(streams, "video")
    audio = _select_stream(streams, "audio")

    frame_rate = 0.0
    if video is not None:
        frame_rate = parse_frame_rate(video.get("r_frame_rate"))
        if frame_rate == 0.0:
            frame_rate = parse_frame_rate(video.get("avg_frame_rate"))

    return MediaProbe(
        duration_s=_parse_duration(format_info.get("duration")),
        container=format_info.get("format_name") or format_info.get("format_long_name") or "unknown",
        bit_rate=_int_or_none(format_info.get("bit_rate")),
        codec=video.get("codec_name") if video else None,
        width=_int_or_none(video.get("width")) if video else None,
        height=_int_or_none(video.get("height")) if video else None,
        frame_rate=frame_rate,
        video_bit_rate=_int_or_none(video.get("bit_rate")) if video else None,
        audio_codec=audio.get("codec_name") if audio else None,
        audio_bit_rate=_int_or_none(audio.get("bit_rate")) if audio else None,
        sample_rate_hz=_int_or_none(audio.get("sample_rate")) if audio else None,
        channels=_int_or_none(audio.get("channels")) if audio else None,
    )


def parse_frame_rate(value: Any) -> float:
    """Turn an ffprobe rational such as ``"24000/1001"`` into frames per second.

    Plain numbers are accepted too. Missing, malformed, non-finite or zero-denominator
    input gives 0.0; this never raises.
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) and value > 0 else 0.0
    text = str(value).strip()
    if not text or text == "N/A":
        return 0.0
    if "/" not in text:
        try:
            rate = float(text)
        except ValueError:
            return 0.0
        return rate if math.isfinite(rate) and rate > 0 else 0.0
    parts = text.split("/")
    if len(parts) != 2:
        return 0.0
    try:
        numerator = float(parts[0])
        denominator = float(parts[1])
    except ValueError:
        return 0.0
    if denominator == 0 or not math.isfinite(numerator) or not math.isfinite(denominator):
        return 0.0
    rate = numerator / denominator
    return rate if rate > 0 else 0.0


def _select_stream(streams: List[Dict[str, Any]], codec_type: str) -> Optional[Dict[str, Any]]:
    """Pick the default-disposition stream of a type, else the first one."""
    candidates = [stream for stream in streams if stream.get("codec_type") == codec_type]
    if not candidates:
        return None
    for stream in candidates:
        disposition = stream.get("disposition")
        if isinstance(disposition, dict) and disposition.get("default"):
            return stream
    return candidates[0]


def _parse_duration(raw_value: Any) -> float:
    if raw_value in (None, "N/A", ""):
        return 0.0
    try:
        duration = float(raw_value)
    except (TypeError, ValueError):
        return 0.0
    return duration if math.isfinite(duration) and duration > 0 else 0.0


def _int_or_none(value: Any) -> Optional[int]:
    if value in (None, "N/A", ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = ["MediaProbe", "run_ffprobe", "parse_probe", "parse_frame_rate"]
