"""FFmpeg/ffprobe subprocess helpers."""

import logging
import math
import shutil
import subprocess
from pathlib import Path

from dubforge.models import Capabilities

logger = logging.getLogger(__name__)

SAMPLE_RATE = 44100
CHANNELS = 2

DEFAULT_SUBTITLE_STYLE = (
    "FontSize=24,PrimaryColour=&HFFFFFF,OutlineColour=&H000000,Outline=2,MarginV=30"
)


class FFmpegNotFoundError(RuntimeError):
    pass


class TransformFailure(RuntimeError):
    """Raised when an ffmpeg transform exits non-zero or runs out of time."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def detect_capabilities() -> Capabilities:
    """Ask ffmpeg which optional audio filters it was built with."""
    try:
        result = subprocess.run(
            ["ffmpeg", "-hide_banner", "-filters"],
            capture_output=True,
            text=True,
        )
    except OSError as e:
        logger.warning("Could not query ffmpeg filters: %s", e)
        return Capabilities(rubberband=False)

    output = (result.stdout or "") + (result.stderr or "")
    return Capabilities(rubberband="rubberband" in output)


def probe_duration(input_path: Path, timeout: float | None = None) -> float:
    """Return the playable duration of a media file in seconds.

    Never raises: an unreadable file, a malformed container or an ffprobe
    error all yield 0.0, which callers treat as "duration unknown".
    """
    cmd = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "csv=p=0",
        str(input_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("ffprobe failed for %s: %s", input_path, e)
        return 0.0

    if result.returncode != 0:
        logger.warning(
            "ffprobe exited with rc=%s for %s", result.returncode, input_path
        )
        return 0.0

    try:
        duration = float(result.stdout.strip())
    except ValueError:
        logger.warning("Unparsable duration %r for %s", result.stdout, input_path)
        return 0.0

    # ffprobe prints "nan" for some inputs
    if not math.isfinite(duration) or duration <= 0:
        return 0.0
    return duration


def run_ffmpeg(args: list[str], timeout: float | None = None) -> None:
    """Run ffmpeg with *args*, raising TransformFailure on any failure."""
    cmd = ["ffmpeg", "-hide_banner", "-y", *args]
    logger.debug("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise TransformFailure(f"ffmpeg timed out after {timeout:g}s") from e
    except FileNotFoundError as e:
        raise FFmpegNotFoundError("ffmpeg not found on PATH") from e

    if result.returncode != 0:
        stderr = result.stderr or ""
        raise TransformFailure(
            f"ffmpeg failed (rc={result.returncode}): {stderr[-500:]}", stderr=stderr
        )


def _format_args(sample_rate: int, channels: int) -> list[str]:
    return ["-ar", str(sample_rate), "-ac", str(channels)]


def normalize_audio(
    input_path: Path,
    output_path: Path,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    timeout: float | None = None,
) -> None:
    """Re-encode to the timeline's sample format without touching timing."""
    run_ffmpeg(
        ["-i", str(input_path), *_format_args(sample_rate, channels), str(output_path)],
        timeout=timeout,
    )


def pad_audio(
    input_path: Path,
    duration: float,
    output_path: Path,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    timeout: float | None = None,
) -> None:
    """Pad with trailing silence (and cut) to exactly *duration* seconds."""
    run_ffmpeg(
        [
            "-i", str(input_path),
            "-af", f"apad=whole_dur={duration}",
            "-t", str(duration),
            *_format_args(sample_rate, channels),
            str(output_path),
        ],
        timeout=timeout,
    )


def stretch_audio(
    input_path: Path,
    filter_expr: str,
    output_path: Path,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    timeout: float | None = None,
) -> None:
    """Apply a time-stretch filter such as ``atempo=1.2``."""
    run_ffmpeg(
        [
            "-i", str(input_path),
            "-filter:a", filter_expr,
            *_format_args(sample_rate, channels),
            str(output_path),
        ],
        timeout=timeout,
    )


def fade_out_audio(
    input_path: Path,
    duration: float,
    fade_start: float,
    fade_duration: float,
    output_path: Path,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    timeout: float | None = None,
) -> None:
    """Trim to *duration* seconds, fading out over the last *fade_duration*."""
    run_ffmpeg(
        [
            "-i", str(input_path),
            "-t", str(duration),
            "-af", f"afade=t=out:st={fade_start}:d={fade_duration}",
            *_format_args(sample_rate, channels),
            str(output_path),
        ],
        timeout=timeout,
    )


def create_silence(
    duration: float,
    output_path: Path,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    timeout: float | None = None,
) -> None:
    layout = "stereo" if channels == 2 else "mono" if channels == 1 else f"{channels}c"
    run_ffmpeg(
        [
            "-f", "lavfi",
            "-i", f"anullsrc=r={sample_rate}:cl={layout}",
            "-t", str(duration),
            str(output_path),
        ],
        timeout=timeout,
    )


def concat_audio(
    list_path: Path,
    output_path: Path,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    timeout: float | None = None,
) -> None:
    """Join the files named in a concat-demuxer list, in list order."""
    run_ffmpeg(
        [
            "-f", "concat",
            "-safe", "0",
            "-i", str(list_path),
            "-ac", str(channels),
            "-ar", str(sample_rate),
            str(output_path),
        ],
        timeout=timeout,
    )


def _escape_filter_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace(":", "\\:").replace("'", "\\'")


def mux_audio(
    video_path: Path,
    audio_path: Path,
    output_path: Path,
    subtitle_path: Path | None = None,
    subtitle_style: str = DEFAULT_SUBTITLE_STYLE,
    timeout: float | None = None,
) -> None:
    """Replace the video's audio track, optionally hard-burning subtitles."""
    args = ["-i", str(video_path), "-i", str(audio_path)]
    if subtitle_path is not None:
        args += [
            "-vf", f"subtitles={_escape_filter_value(str(subtitle_path))}:force_style='{subtitle_style}'",
            "-c:v", "libx264",
            "-preset", "fast",
            "-crf", "23",
        ]
    else:
        args += ["-c:v", "copy"]
    args += [
        "-c:a", "aac",
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-shortest",
        str(output_path),
    ]
    run_ffmpeg(args, timeout=timeout)
