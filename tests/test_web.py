"""Unit tests for the DubForge HTTP API."""

import io
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from dubforge.engine import EngineResult
from dubforge.ffutil import TransformFailure
from dubforge.models import Capabilities
from dubforge.stats import StatsSummary
from dubforge.web import create_app


@pytest.fixture
def app(tmp_path):
    app = create_app(work_dir=tmp_path, capabilities=Capabilities(rubberband=True))
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


SEGMENTS = [{"start": 1.0, "end": 3.0}, {"start": 4.0, "end": 6.5, "text": "hi"}]


def _form(segments=SEGMENTS, clips=None, **extra):
    data = {
        "video": (io.BytesIO(b"fake video"), "clip.mp4"),
        "segments": json.dumps(segments),
        "duration": "8.0",
    }
    n = len(segments) if clips is None else clips
    for i in range(n):
        data[f"audio_{i}"] = (io.BytesIO(b"fake mp3 %d" % i), f"line{i}.mp3")
    data.update(extra)
    return data


def _post(client, url, data):
    return client.post(url, data=data, content_type="multipart/form-data")


def _fake_process(manifest, on_progress=None, capabilities=None):
    """Stand-in for the engine: records the manifest and writes an output file."""
    _fake_process.manifest = manifest
    _fake_process.capabilities = capabilities
    if on_progress:
        on_progress("Fitting audio segments", 0.5)
    manifest.output.write_bytes(b"MP4 DATA")
    return EngineResult(
        output_path=manifest.output,
        algorithm="rubberband",
        duration_total=manifest.duration,
        summary=StatsSummary(2, 1, 5.0, 4.5, 10.0),
    )


class TestCors:
    def test_preflight(self, client):
        resp = client.options("/api/compose-segments")
        assert resp.status_code == 204
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    def test_headers_on_errors(self, client):
        resp = client.get("/api/jobs/nonexistent/status")
        assert resp.headers["Access-Control-Allow-Methods"] == "GET, POST, OPTIONS"


class TestComposeSegments:
    @patch("dubforge.web.routes.process", side_effect=_fake_process)
    def test_returns_video(self, mock_process, client, tmp_path):
        resp = _post(client, "/api/compose-segments", _form())

        assert resp.status_code == 200
        assert resp.mimetype == "video/mp4"
        assert resp.data == b"MP4 DATA"

        manifest = _fake_process.manifest
        assert [(s.start, s.end) for s in manifest.segments] == [(1.0, 3.0), (4.0, 6.5)]
        assert [c.name for c in manifest.clips] == ["audio_0.mp3", "audio_1.mp3"]
        assert manifest.duration == 8.0
        assert manifest.subtitles.path is None
        assert _fake_process.capabilities == Capabilities(rubberband=True)
        # uploads and output are cleaned up
        assert list(tmp_path.iterdir()) == []

    @patch("dubforge.web.routes.process", side_effect=_fake_process)
    def test_subtitle_text_field(self, mock_process, client):
        resp = _post(
            client, "/api/compose-segments",
            _form(subtitles="1\n00:00:01,000 --> 00:00:03,000\nHi\n"),
        )
        assert resp.status_code == 200
        assert _fake_process.manifest.subtitles.path.name == "subs.srt"

    @patch("dubforge.web.routes.process", side_effect=_fake_process)
    def test_subtitles_from_text_flag(self, mock_process, client):
        resp = _post(client, "/api/compose-segments", _form(subtitles_from_text="true"))
        assert resp.status_code == 200
        assert _fake_process.manifest.subtitles.from_segments is True

    @patch("dubforge.web.routes.process", side_effect=_fake_process)
    def test_missing_duration_is_probed_later(self, mock_process, client):
        form = _form()
        del form["duration"]
        resp = _post(client, "/api/compose-segments", form)
        assert resp.status_code == 200
        assert _fake_process.manifest.duration is None

    @patch("dubforge.web.routes.process")
    def test_missing_clip(self, mock_process, client, tmp_path):
        resp = _post(client, "/api/compose-segments", _form(clips=1))
        assert resp.status_code == 400
        assert "audio_1" in resp.get_json()["error"]
        mock_process.assert_not_called()
        assert list(tmp_path.iterdir()) == []

    @patch("dubforge.web.routes.process")
    def test_missing_video(self, mock_process, client):
        form = _form()
        del form["video"]
        resp = _post(client, "/api/compose-segments", form)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "No video provided"

    @patch("dubforge.web.routes.process")
    def test_bad_segments_json(self, mock_process, client):
        resp = _post(client, "/api/compose-segments", _form(segments=SEGMENTS) | {"segments": "[{"})
        assert resp.status_code == 400
        assert "Invalid segments JSON" in resp.get_json()["error"]

    @patch("dubforge.web.routes.process")
    def test_bad_duration(self, mock_process, client):
        resp = _post(client, "/api/compose-segments", _form(duration="soon"))
        assert resp.status_code == 400

    @patch("dubforge.web.routes.process", side_effect=TransformFailure("ffmpeg failed (rc=1): bad audio"))
    def test_transform_failure(self, mock_process, client, tmp_path):
        resp = _post(client, "/api/compose-segments", _form())
        assert resp.status_code == 500
        assert "bad audio" in resp.get_json()["error"]
        assert list(tmp_path.iterdir()) == []

    @patch("dubforge.web.routes.process")
    def test_non_object_segment(self, mock_process, client):
        resp = _post(client, "/api/compose-segments", _form(segments=[1]))
        assert resp.status_code == 400
        assert resp.is_json
        assert "Segment 0 must be an object" in resp.get_json()["error"]
        mock_process.assert_not_called()

    @patch("dubforge.web.routes.process", side_effect=OSError("No space left on device"))
    def test_unexpected_error_is_json(self, mock_process, client, tmp_path):
        resp = _post(client, "/api/compose-segments", _form())
        assert resp.status_code == 500
        assert resp.is_json
        assert resp.get_json()["error"] == "No space left on device"
        assert list(tmp_path.iterdir()) == []

    def test_unknown_route_stays_404(self, client):
        assert client.get("/api/nope").status_code == 404


class TestJobs:
    def _start(self, client):
        resp = _post(client, "/api/jobs", _form())
        assert resp.status_code == 200
        return resp.get_json()["job_id"]

    @patch("dubforge.web.routes.process", side_effect=_fake_process)
    def test_job_lifecycle(self, mock_process, client):
        job_id = self._start(client)

        stream = client.get(f"/api/jobs/{job_id}/progress").get_data(as_text=True)
        events = [json.loads(line[len("data: "):]) for line in stream.splitlines() if line]
        assert events[0] == {"stage": "Fitting audio segments", "progress": 0.5}
        assert events[-1]["stage"] == "complete"
        assert events[-1]["result"]["algorithm"] == "rubberband"
        assert events[-1]["result"]["summary"]["adjusted_count"] == 1

        status = client.get(f"/api/jobs/{job_id}/status").get_json()
        assert status["status"] == "done"
        assert status["stage"] == "Fitting audio segments"
        assert status["progress"] == 0.5
        assert status["segments"] == 2

        result = client.get(f"/api/jobs/{job_id}/result")
        assert result.status_code == 200
        assert result.data == b"MP4 DATA"
        assert f"dubbed_{job_id}.mp4" in result.headers["Content-Disposition"]
        result.close()

    @patch("dubforge.web.routes.process", side_effect=TransformFailure("ffmpeg failed (rc=1): nope"))
    def test_job_failure(self, mock_process, client, tmp_path):
        job_id = self._start(client)
        stream = client.get(f"/api/jobs/{job_id}/progress").get_data(as_text=True)
        assert "nope" in stream

        status = client.get(f"/api/jobs/{job_id}/status").get_json()
        assert status["status"] == "error"
        assert "nope" in status["error"]
        assert list(tmp_path.iterdir()) == []

        assert client.get(f"/api/jobs/{job_id}/result").status_code == 409

    def test_bad_upload_is_rejected(self, client, tmp_path):
        resp = _post(client, "/api/jobs", _form(clips=0))
        assert resp.status_code == 400
        assert list(tmp_path.iterdir()) == []

    def test_unknown_job(self, client):
        assert client.get("/api/jobs/nonexistent/status").status_code == 404
        assert client.get("/api/jobs/nonexistent/progress").status_code == 404
        assert client.get("/api/jobs/nonexistent/result").status_code == 404
