"""Lays fitted clips and silence fillers end to end on the target timeline."""

import logging
from pathlib import Path
from typing import Callable

from dubforge import ffutil
from dubforge.models import (
    AdjustedAudioChunk,
    Segment,
    SilenceChunk,
    TimelineChunk,
)
from dubforge.planner import StretchPlanner
from dubforge.stats import ProcessingStats

logger = logging.getLogger(__name__)

# Segments may overrun the total duration by rounding in the caller's timestamps.
DURATION_TOLERANCE = 0.01

# Gaps shorter than this are float noise, not silence worth rendering.
_MIN_GAP = 1e-6


class InputShapeError(ValueError):
    """Raised when segments and clips cannot form a valid timeline."""
    pass


def validate_segments(
    segments: list[Segment], clips: list[Path], total_duration: float
) -> None:
    """Reject malformed input before any media work starts."""
    if total_duration <= 0:
        raise InputShapeError(f"Total duration must be positive, got {total_duration}")

    if len(clips) != len(segments):
        raise InputShapeError(
            f"Expected one audio clip per segment: {len(segments)} segments, "
            f"{len(clips)} clips"
        )

    prev_end = 0.0
    for i, seg in enumerate(segments):
        if seg.start < 0:
            raise InputShapeError(f"Segment {i} starts before 0 ({seg.start})")
        if seg.end <= seg.start:
            raise InputShapeError(
                f"Segment {i} is empty or reversed ({seg.start} - {seg.end})"
            )
        if seg.start < prev_end:
            raise InputShapeError(
                f"Segment {i} starts at {seg.start}, before the previous segment "
                f"ends at {prev_end}; segments must be sorted and non-overlapping"
            )
        if seg.end > total_duration + DURATION_TOLERANCE:
            raise InputShapeError(
                f"Segment {i} ends at {seg.end}, past the total duration "
                f"{total_duration}"
            )
        prev_end = seg.end


class SegmentTimeline:
    """Builds the ordered chunk list for one composition request.

    All artifacts are written into *scratch_dir*, which belongs to a single
    request.
    """

    def __init__(
        self,
        planner: StretchPlanner,
        scratch_dir: Path,
        on_segment: Callable[[int, int], None] | None = None,
    ):
        self.planner = planner
        self.scratch_dir = scratch_dir
        self.on_segment = on_segment

    def build(
        self,
        segments: list[Segment],
        clips: list[Path],
        total_duration: float,
    ) -> tuple[list[TimelineChunk], list[ProcessingStats]]:
        validate_segments(segments, clips, total_duration)

        chunks: list[TimelineChunk] = []
        stats: list[ProcessingStats] = []
        current_time = 0.0

        for i, (seg, clip) in enumerate(zip(segments, clips)):
            if self.on_segment:
                self.on_segment(i, len(segments))

            target = seg.end - seg.start
            logger.info(
                "[Segment %d] %.2fs - %.2fs (target: %.2fs)",
                i, seg.start, seg.end, target,
            )
            if seg.tts_speed:
                logger.info("  TTS speed was: %sx", seg.tts_speed)

            if seg.start - current_time > _MIN_GAP:
                gap = seg.start - current_time
                logger.info("  Adding silence: %.2fs", gap)
                chunks.append(self._silence(gap, f"silence_{i}.wav"))

            adjusted_path = self.scratch_dir / f"adjusted_{i}.wav"
            decision = self.planner.apply(clip, target, adjusted_path, self.scratch_dir)
            chunks.append(
                AdjustedAudioChunk(
                    path=adjusted_path,
                    duration=target if decision.exact else decision.actual_duration,
                    segment_index=i,
                    exact=decision.exact,
                )
            )
            stats.append(ProcessingStats.from_decision(i, decision))

            current_time = seg.end

        if total_duration - current_time > _MIN_GAP:
            gap = total_duration - current_time
            logger.info("Adding trailing silence: %.2fs", gap)
            chunks.append(self._silence(gap, "silence_end.wav"))

        return chunks, stats

    def _silence(self, duration: float, name: str) -> SilenceChunk:
        path = self.scratch_dir / name
        config = self.planner.config
        ffutil.create_silence(
            duration,
            path,
            sample_rate=config.sample_rate,
            channels=config.channels,
            timeout=config.segment_timeout,
        )
        return SilenceChunk(path=path, duration=duration)
