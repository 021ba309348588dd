"""Decides how a speech clip is fitted into its window.

The decision itself (:meth:`StretchPlanner.plan`) is a pure function of the
clip duration, the window duration and the algorithm chosen at construction.
:meth:`StretchPlanner.apply` carries the decision out with ffmpeg.

Policy, evaluated in order:

1. unknown clip or empty window: plain format-normalizing copy (NONE);
2. clip at most ``fit_tolerance`` over the window: pad to the window (PAD);
3. otherwise compress by ``min(ratio, max_stretch)``, then pad the result if
   it now fits (STRETCH_PAD) or cut it at the window edge with a short
   fade-out (STRETCH_FADE).
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from time import monotonic

from dubforge import ffutil
from dubforge.ffutil import TransformFailure
from dubforge.manifest import StretchConfig
from dubforge.models import Capabilities, StretchDecision, StretchMode

logger = logging.getLogger(__name__)

RUBBERBAND = "rubberband"
ATEMPO = "atempo"

# Float noise from actual/factor must not flip an exact fit into a fade.
_EPSILON = 1e-9


@dataclass(frozen=True)
class StretchAlgorithm:
    """A time-stretch filter and the largest tempo factor it may be given."""

    name: str
    max_stretch: float

    @property
    def preserves_pitch(self) -> bool:
        return self.name == RUBBERBAND

    def filter_expr(self, factor: float) -> str:
        if self.name == RUBBERBAND:
            return f"rubberband=tempo={factor:.6g}:pitch=1.0"
        return f"atempo={factor:.6g}"


def select_algorithm(
    capabilities: Capabilities, config: StretchConfig | None = None
) -> StretchAlgorithm:
    """Prefer pitch-preserving rubberband; fall back to atempo."""
    config = config or StretchConfig()
    if capabilities.rubberband:
        return StretchAlgorithm(RUBBERBAND, config.rubberband_max_stretch)
    return StretchAlgorithm(ATEMPO, config.atempo_max_stretch)


class StretchPlanner:
    def __init__(self, algorithm: StretchAlgorithm, config: StretchConfig | None = None):
        self.algorithm = algorithm
        self.config = config or StretchConfig()

    def plan(self, actual_duration: float, target_duration: float) -> StretchDecision:
        """Decide the mode and tempo factor for one clip."""
        if actual_duration <= 0 or target_duration <= 0:
            return StretchDecision(
                mode=StretchMode.NONE,
                factor=1.0,
                actual_duration=max(actual_duration, 0.0),
                target_duration=target_duration,
                final_duration=0.0,
            )

        ratio = actual_duration / target_duration
        if ratio <= self.config.fit_tolerance:
            return StretchDecision(
                mode=StretchMode.PAD,
                factor=1.0,
                actual_duration=actual_duration,
                target_duration=target_duration,
                final_duration=target_duration,
            )

        factor = min(ratio, self.algorithm.max_stretch)
        # An uncapped factor lands exactly on the window.
        estimate = target_duration if factor == ratio else actual_duration / factor
        return self.settle(actual_duration, target_duration, factor, estimate)

    def settle(
        self,
        actual_duration: float,
        target_duration: float,
        factor: float,
        stretched_duration: float,
    ) -> StretchDecision:
        """Pick pad or fade for a clip already stretched to *stretched_duration*."""
        if stretched_duration > target_duration + _EPSILON:
            fade = self.config.fade_duration
            return StretchDecision(
                mode=StretchMode.STRETCH_FADE,
                factor=factor,
                actual_duration=actual_duration,
                target_duration=target_duration,
                final_duration=target_duration,
                stretched_duration=stretched_duration,
                algorithm=self.algorithm.name,
                fade_start=max(0.0, target_duration - fade),
                fade_duration=fade,
            )
        return StretchDecision(
            mode=StretchMode.STRETCH_PAD,
            factor=factor,
            actual_duration=actual_duration,
            target_duration=target_duration,
            final_duration=min(stretched_duration, target_duration),
            stretched_duration=stretched_duration,
            algorithm=self.algorithm.name,
        )

    def apply(
        self,
        clip_path: Path,
        target_duration: float,
        output_path: Path,
        scratch_dir: Path,
    ) -> StretchDecision:
        """Probe *clip_path*, plan, and write the fitted clip to *output_path*.

        Every external call shares one time budget
        (``config.segment_timeout``); running out raises TransformFailure.
        """
        deadline = _Deadline(self.config.segment_timeout)
        fmt = {"sample_rate": self.config.sample_rate, "channels": self.config.channels}

        actual = ffutil.probe_duration(clip_path, timeout=deadline.remaining())
        decision = self.plan(actual, target_duration)

        if decision.mode is StretchMode.NONE:
            logger.warning(
                "  Unknown duration for %s; copying without timing adjustment",
                clip_path.name,
            )
            ffutil.normalize_audio(
                clip_path, output_path, **fmt, timeout=deadline.remaining()
            )
            return decision

        if decision.mode is StretchMode.PAD:
            ffutil.pad_audio(
                clip_path, target_duration, output_path, **fmt,
                timeout=deadline.remaining(),
            )
            logger.info(
                "  Duration OK: %.2fs fits in %.2fs", actual, target_duration
            )
            return decision

        logger.info(
            "  Original: %.2fs -> Target: %.2fs (ratio: %.2f)",
            actual, target_duration, decision.ratio,
        )
        logger.info("  Applying %s: %.2fx", self.algorithm.name, decision.factor)

        stretched_path = scratch_dir / f"{output_path.stem}_stretched.wav"
        try:
            ffutil.stretch_audio(
                clip_path,
                self.algorithm.filter_expr(decision.factor),
                stretched_path,
                **fmt,
                timeout=deadline.remaining(),
            )
            measured = ffutil.probe_duration(stretched_path, timeout=deadline.remaining())
            if measured <= 0:
                logger.warning(
                    "  Could not probe stretched clip; assuming %.2fs",
                    decision.stretched_duration,
                )
                measured = decision.stretched_duration
            decision = self.settle(actual, target_duration, decision.factor, measured)

            if decision.mode is StretchMode.STRETCH_FADE:
                ffutil.fade_out_audio(
                    stretched_path,
                    target_duration,
                    decision.fade_start,
                    decision.fade_duration,
                    output_path,
                    **fmt,
                    timeout=deadline.remaining(),
                )
                logger.info(
                    "  Applied fade-out: %.2fs -> %.2fs", measured, target_duration
                )
            else:
                ffutil.pad_audio(
                    stretched_path, target_duration, output_path, **fmt,
                    timeout=deadline.remaining(),
                )
        finally:
            stretched_path.unlink(missing_ok=True)

        return decision


class _Deadline:
    """Shared time budget for the external calls of one segment."""

    def __init__(self, seconds: float | None):
        self.seconds = seconds
        self._expires = None if seconds is None else monotonic() + seconds

    def remaining(self) -> float | None:
        if self._expires is None:
            return None
        left = self._expires - monotonic()
        if left <= 0:
            raise TransformFailure(
                f"segment processing exceeded its {self.seconds:g}s budget"
            )
        return left
