"""Joins timeline chunks into one audio track."""

from pathlib import Path

from dubforge import ffutil
from dubforge.ffutil import CHANNELS, SAMPLE_RATE
from dubforge.models import TimelineChunk

DURATION_TOLERANCE = 0.01


def _quote(path: Path) -> str:
    # concat demuxer: single quotes are closed, escaped, and reopened
    return "'" + str(path).replace("'", "'\\''") + "'"


def write_concat_list(chunks: list[TimelineChunk], list_path: Path) -> Path:
    lines = [f"file {_quote(c.path.resolve())}" for c in chunks]
    list_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return list_path


def concatenate(
    chunks: list[TimelineChunk],
    output_path: Path,
    list_path: Path,
    expected_duration: float | None = None,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    timeout: float | None = None,
) -> Path:
    """Join *chunks* strictly in order into *output_path*.

    The timeline is responsible for the total length; when every chunk has an
    exact duration it is only asserted here.
    """
    if not chunks:
        raise ValueError("concatenate called with empty chunk list")

    if expected_duration is not None and all(c.exact for c in chunks):
        total = sum(c.duration for c in chunks)
        assert abs(total - expected_duration) <= DURATION_TOLERANCE, (
            f"chunks sum to {total:.3f}s, expected {expected_duration:.3f}s"
        )

    write_concat_list(chunks, list_path)
    ffutil.concat_audio(
        list_path,
        output_path,
        sample_rate=sample_rate,
        channels=channels,
        timeout=timeout,
    )
    return output_path
