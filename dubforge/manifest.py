"""Composition manifest: the JSON contract between the CLI, the HTTP API and the engine."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from dubforge.ffutil import CHANNELS, DEFAULT_SUBTITLE_STYLE, SAMPLE_RATE
from dubforge.models import Segment


@dataclass
class StretchConfig:
    """Limits and output format used when fitting clips into their windows."""

    fit_tolerance: float = 1.05
    rubberband_max_stretch: float = 1.3
    atempo_max_stretch: float = 2.0
    fade_duration: float = 0.15
    sample_rate: int = SAMPLE_RATE
    channels: int = CHANNELS
    segment_timeout: float | None = 300.0


@dataclass
class SubtitleConfig:
    """Optional subtitle burn-in."""

    path: Path | None = None
    from_segments: bool = False
    style: str = DEFAULT_SUBTITLE_STYLE

    @property
    def enabled(self) -> bool:
        return self.path is not None or self.from_segments


@dataclass
class Manifest:
    """Top-level composition manifest."""

    video: Path
    output: Path
    segments: list[Segment] = field(default_factory=list)
    clips: list[Path] = field(default_factory=list)
    duration: float | None = None
    version: str = "1"
    work_dir: Path | None = None
    subtitles: SubtitleConfig = field(default_factory=SubtitleConfig)
    stretch: StretchConfig = field(default_factory=StretchConfig)


def parse_segments(items: list[dict]) -> tuple[list[Segment], list[Path]]:
    """Split raw segment dicts into Segments and their clip paths.

    Segments without an ``audio`` key contribute no clip; the timeline
    rejects the resulting count mismatch.
    """
    segments: list[Segment] = []
    clips: list[Path] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValueError(f"Segment {i} must be an object, got {type(item).__name__}")
        if "start" not in item or "end" not in item:
            raise ValueError(f"Segment {i} must contain 'start' and 'end' fields")
        segments.append(
            Segment(
                start=float(item["start"]),
                end=float(item["end"]),
                text=item.get("text"),
                tts_speed=item.get("tts_speed", item.get("ttsSpeed")),
            )
        )
        if item.get("audio"):
            clips.append(Path(item["audio"]))
    return segments, clips


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file.

    Relative media paths are resolved against the manifest's directory.
    """
    path = Path(path)
    data = json.loads(path.read_text())

    if "video" not in data or "output" not in data:
        raise ValueError("Manifest must contain 'video' and 'output' fields")

    base = path.parent

    def _resolve(p: str) -> Path:
        p = Path(p)
        return p if p.is_absolute() else base / p

    segments, clips = parse_segments(data.get("segments", []))

    subtitles = SubtitleConfig()
    if "subtitles" in data:
        sub = dict(data["subtitles"])
        if sub.get("path"):
            sub["path"] = _resolve(sub["path"])
        subtitles = SubtitleConfig(**sub)

    stretch = StretchConfig(**data["stretch"]) if "stretch" in data else StretchConfig()
    duration = data.get("duration")

    return Manifest(
        version=data.get("version", "1"),
        video=_resolve(data["video"]),
        output=_resolve(data["output"]),
        segments=segments,
        clips=[_resolve(str(c)) for c in clips],
        duration=float(duration) if duration is not None else None,
        work_dir=_resolve(data["work_dir"]) if data.get("work_dir") else None,
        subtitles=subtitles,
        stretch=stretch,
    )
