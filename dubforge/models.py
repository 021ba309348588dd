"""Shared data types used across DubForge."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


@dataclass
class Segment:
    """A target window on the output timeline, optionally carrying its line of text."""

    start: float
    end: float
    text: str | None = None
    tts_speed: float | None = None

    @property
    def duration(self) -> float:
        return self.end - self.start


class StretchMode(str, Enum):
    NONE = "none"
    PAD = "pad"
    STRETCH_PAD = "stretch_pad"
    STRETCH_FADE = "stretch_fade"


@dataclass(frozen=True)
class StretchDecision:
    """How one clip is fitted into its window.

    ``final_duration`` is 0.0 in NONE mode: the clip length is unknown and the
    output is a plain format-normalizing copy.
    """

    mode: StretchMode
    factor: float
    actual_duration: float
    target_duration: float
    final_duration: float
    stretched_duration: float | None = None
    algorithm: str | None = None
    fade_start: float | None = None
    fade_duration: float | None = None

    @property
    def ratio(self) -> float | None:
        if self.actual_duration <= 0 or self.target_duration <= 0:
            return None
        return self.actual_duration / self.target_duration

    @property
    def adjusted(self) -> bool:
        return self.mode in (StretchMode.STRETCH_PAD, StretchMode.STRETCH_FADE)

    @property
    def exact(self) -> bool:
        """True when the output is guaranteed to last exactly ``final_duration``."""
        return self.mode is not StretchMode.NONE


@dataclass(frozen=True)
class SilenceChunk:
    path: Path
    duration: float
    exact: bool = True


@dataclass(frozen=True)
class AdjustedAudioChunk:
    path: Path
    duration: float
    segment_index: int
    exact: bool = True


TimelineChunk = SilenceChunk | AdjustedAudioChunk


@dataclass(frozen=True)
class Capabilities:
    """Media toolkit features detected once at startup."""

    rubberband: bool = False
