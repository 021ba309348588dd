"""Per-segment processing statistics and their summary."""

import logging
from dataclasses import asdict, dataclass

from dubforge.models import StretchDecision, StretchMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessingStats:
    index: int
    original: float
    target: float
    final: float
    stretch_factor: float
    was_adjusted: bool
    mode: StretchMode = StretchMode.NONE
    algorithm: str | None = None

    @classmethod
    def from_decision(cls, index: int, decision: StretchDecision) -> "ProcessingStats":
        return cls(
            index=index,
            original=decision.actual_duration,
            target=decision.target_duration,
            final=decision.final_duration or decision.target_duration,
            stretch_factor=decision.factor,
            was_adjusted=decision.adjusted,
            mode=decision.mode,
            algorithm=decision.algorithm,
        )


@dataclass(frozen=True)
class StatsSummary:
    total_segments: int
    adjusted_count: int
    total_original: float
    total_final: float
    compression_pct: float | None = None

    def as_dict(self) -> dict:
        return asdict(self)


def summarize(stats: list[ProcessingStats]) -> StatsSummary:
    """Aggregate per-segment stats. Reporting only; never drives processing."""
    total_original = sum(s.original for s in stats)
    total_final = sum(s.final for s in stats)

    compression_pct = None
    if total_original > total_final:
        compression_pct = (1 - total_final / total_original) * 100

    return StatsSummary(
        total_segments=len(stats),
        adjusted_count=sum(1 for s in stats if s.was_adjusted),
        total_original=total_original,
        total_final=total_final,
        compression_pct=compression_pct,
    )


def log_summary(summary: StatsSummary) -> None:
    logger.info("--- Processing summary ---")
    logger.info("Total segments: %d", summary.total_segments)
    logger.info(
        "Segments adjusted: %d/%d", summary.adjusted_count, summary.total_segments
    )
    logger.info("Total original audio: %.2fs", summary.total_original)
    logger.info("Total final audio: %.2fs", summary.total_final)
    if summary.compression_pct is not None:
        logger.info("Compression: %.1f%%", summary.compression_pct)
