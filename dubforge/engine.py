"""Orchestrator that composes a dubbed video from a Manifest."""

import logging
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator

from dubforge import ffutil
from dubforge.captions import resolve_subtitles
from dubforge.concat import concatenate
from dubforge.manifest import Manifest
from dubforge.models import Capabilities, Segment
from dubforge.planner import StretchPlanner, select_algorithm
from dubforge.stats import ProcessingStats, StatsSummary, log_summary, summarize
from dubforge.timeline import InputShapeError, SegmentTimeline, validate_segments

logger = logging.getLogger(__name__)

DEFAULT_WORK_DIR = Path(tempfile.gettempdir()) / "dubforge"


@dataclass
class EngineResult:
    output_path: Path
    algorithm: str = ""
    duration_total: float = 0.0
    subtitle_burned: bool = False
    stats: list[ProcessingStats] = field(default_factory=list)
    summary: StatsSummary | None = None


@contextmanager
def request_workspace(root: Path, request_id: str | None = None) -> Iterator[Path]:
    """Yield a scratch directory private to one request; remove it afterwards."""
    request_id = request_id or uuid.uuid4().hex[:12]
    scratch = Path(root) / request_id
    scratch.mkdir(parents=True, exist_ok=False)
    try:
        yield scratch
    finally:
        shutil.rmtree(scratch, ignore_errors=True)


def compose_audio(
    segments: list[Segment],
    clip_paths: list[Path],
    total_duration: float,
    output_path: Path,
    *,
    planner: StretchPlanner,
    scratch_dir: Path,
    on_progress: Callable[[float], None] | None = None,
) -> tuple[Path, list[ProcessingStats]]:
    """Fit every clip into its segment and write one gapless track.

    Either the full track is written to *output_path* or the error propagates
    and nothing is left there.
    """

    def on_segment(index: int, count: int) -> None:
        if on_progress:
            on_progress(index / count)

    timeline = SegmentTimeline(planner, scratch_dir, on_segment=on_segment)
    config = planner.config
    try:
        chunks, stats = timeline.build(segments, clip_paths, total_duration)
        logger.info("--- Concatenating %d audio chunks ---", len(chunks))
        concatenate(
            chunks,
            output_path,
            scratch_dir / "concat_list.txt",
            expected_duration=total_duration,
            sample_rate=config.sample_rate,
            channels=config.channels,
        )
    except Exception:
        Path(output_path).unlink(missing_ok=True)
        raise

    if on_progress:
        on_progress(1.0)
    return output_path, stats


def process(
    manifest: Manifest,
    on_progress: Callable[[str, float], None] | None = None,
    capabilities: Capabilities | None = None,
) -> EngineResult:
    """Execute the full composition pipeline.

    Args:
        manifest: Validated composition manifest.
        on_progress: Optional callback(stage_name, fraction_complete).
        capabilities: Toolkit features detected at startup; detected here
            when not supplied.
    """

    def _progress(stage: str, frac: float) -> None:
        if on_progress:
            on_progress(stage, frac)

    def _sub_progress(stage: str, base: float, span: float):
        """Return a callback that maps a step's [0,1] to [base, base+span]."""
        def cb(frac: float) -> None:
            _progress(stage, base + frac * span)
        return cb

    ffutil.check_ffmpeg()
    if capabilities is None:
        capabilities = ffutil.detect_capabilities()

    algorithm = select_algorithm(capabilities, manifest.stretch)
    planner = StretchPlanner(algorithm, manifest.stretch)
    logger.info(
        "Filter: %s (max stretch %.1fx)",
        "rubberband (pitch-preserving)" if algorithm.preserves_pitch else "atempo (fallback)",
        algorithm.max_stretch,
    )

    _progress("Probing video duration", 0.0)
    total_duration = manifest.duration
    if total_duration is None:
        total_duration = ffutil.probe_duration(manifest.video)
        if total_duration <= 0:
            raise InputShapeError(
                f"Could not determine the duration of {manifest.video}; "
                "pass it explicitly"
            )

    validate_segments(manifest.segments, manifest.clips, total_duration)
    logger.info(
        "Total segments: %d, video duration: %.2fs",
        len(manifest.segments), total_duration,
    )

    with request_workspace(manifest.work_dir or DEFAULT_WORK_DIR) as scratch:
        combined_path = scratch / "combined.wav"
        _progress("Fitting audio segments", 0.05)
        _, stats = compose_audio(
            manifest.segments,
            manifest.clips,
            total_duration,
            combined_path,
            planner=planner,
            scratch_dir=scratch,
            on_progress=_sub_progress("Fitting audio segments", 0.05, 0.70),
        )

        summary = summarize(stats)
        log_summary(summary)

        subtitle_path = resolve_subtitles(manifest.subtitles, manifest.segments, scratch)

        _progress("Merging with video", 0.80)
        manifest.output.parent.mkdir(parents=True, exist_ok=True)
        try:
            ffutil.mux_audio(
                manifest.video,
                combined_path,
                manifest.output,
                subtitle_path=subtitle_path,
                subtitle_style=manifest.subtitles.style,
            )
        except Exception:
            manifest.output.unlink(missing_ok=True)
            raise

    _progress("Done", 1.0)
    return EngineResult(
        output_path=manifest.output,
        algorithm=algorithm.name,
        duration_total=total_duration,
        subtitle_burned=subtitle_path is not None,
        stats=stats,
        summary=summary,
    )
