"""Tests for processing statistics aggregation."""

import logging

import pytest

from dubforge.models import StretchDecision, StretchMode
from dubforge.stats import ProcessingStats, StatsSummary, log_summary, summarize


def _stat(index, original, target, final, factor=1.0, adjusted=False):
    return ProcessingStats(
        index=index,
        original=original,
        target=target,
        final=final,
        stretch_factor=factor,
        was_adjusted=adjusted,
    )


class TestSummarize:
    def test_empty(self):
        s = summarize([])
        assert s == StatsSummary(0, 0, 0, 0, None)

    def test_compression(self):
        s = summarize([
            _stat(0, 2.0, 3.0, 3.0),
            _stat(1, 10.0, 4.0, 4.0, factor=1.3, adjusted=True),
        ])
        assert s.total_segments == 2
        assert s.adjusted_count == 1
        assert s.total_original == 12.0
        assert s.total_final == 7.0
        assert s.compression_pct == pytest.approx((1 - 7 / 12) * 100)

    def test_no_compression_when_final_not_smaller(self):
        s = summarize([_stat(0, 2.0, 3.0, 3.0)])
        assert s.compression_pct is None

    def test_as_dict(self):
        d = summarize([_stat(0, 2.0, 3.0, 3.0)]).as_dict()
        assert d["total_segments"] == 1
        assert d["compression_pct"] is None


class TestFromDecision:
    def test_copies_decision_fields(self):
        decision = StretchDecision(
            mode=StretchMode.STRETCH_FADE,
            factor=1.3,
            actual_duration=10.0,
            target_duration=4.0,
            final_duration=4.0,
            stretched_duration=7.7,
            algorithm="rubberband",
        )
        st = ProcessingStats.from_decision(3, decision)
        assert st.index == 3
        assert st.original == 10.0
        assert st.target == 4.0
        assert st.final == 4.0
        assert st.stretch_factor == 1.3
        assert st.was_adjusted is True
        assert st.algorithm == "rubberband"

    def test_unknown_clip_reports_window_as_final(self):
        decision = StretchDecision(
            mode=StretchMode.NONE,
            factor=1.0,
            actual_duration=0.0,
            target_duration=3.0,
            final_duration=0.0,
        )
        st = ProcessingStats.from_decision(0, decision)
        assert st.final == 3.0
        assert st.was_adjusted is False
        assert summarize([st]).compression_pct is None


class TestLogSummary:
    def test_logs_compression(self, caplog):
        with caplog.at_level(logging.INFO, logger="dubforge.stats"):
            log_summary(StatsSummary(2, 1, 12.0, 7.0, 41.666))
        assert "Segments adjusted: 1/2" in caplog.text
        assert "Compression: 41.7%" in caplog.text
