"""Subtitle helpers for burning segment text into the video."""

from pathlib import Path

from dubforge.manifest import SubtitleConfig
from dubforge.models import Segment


def _format_srt_time(seconds: float) -> str:
    total_ms = int(round(seconds * 1000))
    h, rem = divmod(total_ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, ms = divmod(rem, 1000)
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def write_srt(segments: list[Segment], path: Path) -> Path:
    """Write one cue per segment that carries text."""
    lines: list[str] = []
    cue = 0
    for seg in segments:
        if not seg.text:
            continue
        cue += 1
        lines.append(str(cue))
        lines.append(f"{_format_srt_time(seg.start)} --> {_format_srt_time(seg.end)}")
        lines.append(seg.text.strip())
        lines.append("")
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def resolve_subtitles(
    config: SubtitleConfig, segments: list[Segment], scratch_dir: Path
) -> Path | None:
    """Return the subtitle file to burn in, generating one if configured."""
    if config.path is not None:
        return config.path
    if config.from_segments and any(seg.text for seg in segments):
        return write_srt(segments, scratch_dir / "subtitles.srt")
    return None
