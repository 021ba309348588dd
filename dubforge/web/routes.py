"""HTTP routes for DubForge."""

import json
import logging
import queue
import shutil
import threading
import uuid
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    request,
    send_file,
)
from werkzeug.exceptions import HTTPException

from dubforge.engine import EngineResult, process
from dubforge.ffutil import FFmpegNotFoundError, TransformFailure
from dubforge.manifest import Manifest, StretchConfig, SubtitleConfig, parse_segments
from dubforge.timeline import InputShapeError

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}


@bp.before_app_request
def answer_preflight():
    if request.method == "OPTIONS":
        return Response(status=204)


@bp.after_app_request
def add_cors_headers(response: Response) -> Response:
    response.headers.update(CORS_HEADERS)
    return response


@bp.errorhandler(ValueError)
def bad_input(error: ValueError):
    return jsonify({"error": str(error)}), 400


@bp.errorhandler(TransformFailure)
@bp.errorhandler(FFmpegNotFoundError)
def media_failure(error: RuntimeError):
    logger.error("Compose error: %s", error)
    return jsonify({"error": str(error)}), 500


@bp.errorhandler(Exception)
def unexpected_failure(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected compose error")
    return jsonify({"error": str(error) or type(error).__name__}), 500


def _new_job_dir() -> tuple[str, Path]:
    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)
    return job_id, job_dir


def _parse_duration(raw: str | None) -> float | None:
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise InputShapeError(f"Invalid duration: {raw!r}") from e


def _manifest_from_request(job_dir: Path) -> Manifest:
    """Save the uploaded form parts into *job_dir* and describe them as a Manifest.

    Expected parts: ``video`` file, ``segments`` JSON, optional ``duration``,
    one ``audio_<i>`` file per segment, and optional ``subtitles`` given as
    either a file or plain text.
    """
    video = request.files.get("video")
    if video is None or not video.filename:
        raise InputShapeError("No video provided")
    video_path = job_dir / f"video{Path(video.filename).suffix or '.mp4'}"
    video.save(video_path)

    raw_segments = request.form.get("segments")
    if raw_segments is None:
        raise InputShapeError("Missing 'segments' field")
    try:
        items = json.loads(raw_segments)
    except json.JSONDecodeError as e:
        raise InputShapeError(f"Invalid segments JSON: {e}") from e
    if not isinstance(items, list):
        raise InputShapeError("'segments' must be a JSON list")
    segments, _ = parse_segments(items)

    clips: list[Path] = []
    for i in range(len(segments)):
        clip = request.files.get(f"audio_{i}")
        if clip is None:
            raise InputShapeError(f"Missing audio_{i} for segment {i}")
        clip_path = job_dir / f"audio_{i}{Path(clip.filename or '').suffix or '.mp3'}"
        clip.save(clip_path)
        clips.append(clip_path)

    subtitle_path = None
    if "subtitles" in request.files:
        subtitle_path = job_dir / "subs.srt"
        request.files["subtitles"].save(subtitle_path)
    elif request.form.get("subtitles"):
        subtitle_path = job_dir / "subs.srt"
        subtitle_path.write_text(request.form["subtitles"], encoding="utf-8")

    stretch: StretchConfig = current_app.config["STRETCH_CONFIG"]
    return Manifest(
        video=video_path,
        output=job_dir / "output.mp4",
        segments=segments,
        clips=clips,
        duration=_parse_duration(request.form.get("duration")),
        work_dir=job_dir,
        subtitles=SubtitleConfig(
            path=subtitle_path,
            from_segments=request.form.get("subtitles_from_text") in ("1", "true"),
        ),
        stretch=stretch,
    )


def _result_dict(result: EngineResult) -> dict:
    return {
        "output_path": str(result.output_path),
        "algorithm": result.algorithm,
        "duration": result.duration_total,
        "subtitles": result.subtitle_burned,
        "summary": result.summary.as_dict() if result.summary else None,
    }


@bp.route("/api/compose-segments", methods=["POST"])
def compose_segments():
    """Compose synchronously and answer with the finished MP4."""
    _, job_dir = _new_job_dir()
    try:
        manifest = _manifest_from_request(job_dir)
        logger.info("New composition request: %d segments", len(manifest.segments))
        result = process(manifest, capabilities=current_app.config["CAPABILITIES"])
        data = result.output_path.read_bytes()
    finally:
        shutil.rmtree(job_dir, ignore_errors=True)

    logger.info("Composition complete")
    return Response(data, mimetype="video/mp4")


@bp.route("/api/jobs", methods=["POST"])
def start_job():
    job_id, job_dir = _new_job_dir()
    try:
        manifest = _manifest_from_request(job_dir)
    except Exception:
        shutil.rmtree(job_dir, ignore_errors=True)
        raise

    capabilities = current_app.config["CAPABILITIES"]
    progress_queue: queue.Queue = queue.Queue()
    job = {
        "dir": job_dir,
        "status": "processing",
        "stage": None,
        "progress": 0.0,
        "segments": len(manifest.segments),
        "error": None,
        "progress_queue": progress_queue,
    }
    _jobs[job_id] = job

    def on_progress(stage: str, frac: float):
        job["stage"] = stage
        job["progress"] = round(frac, 3)
        progress_queue.put({"stage": stage, "progress": job["progress"]})

    def run():
        try:
            result = process(manifest, on_progress=on_progress, capabilities=capabilities)
            job["result"] = _result_dict(result)
            job["status"] = "done"
        except Exception as e:
            logger.exception("Job %s failed", job_id)
            job["status"] = "error"
            job["error"] = str(e) or type(e).__name__
            shutil.rmtree(job_dir, ignore_errors=True)
        finally:
            progress_queue.put(None)  # sentinel

    logger.info("Job %s started: %d segments", job_id, job["segments"])
    threading.Thread(target=run, daemon=True).start()
    return jsonify({"job_id": job_id, "status": "started"})


def _final_event(job: dict) -> dict:
    if job["status"] == "error":
        return {"stage": "error", "error": job["error"]}
    return {"stage": "complete", "progress": 1.0, "result": job.get("result")}


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    """Server-sent events: one per progress update, then a final event."""
    job = _jobs.get(job_id)
    if job is None:
        return jsonify({"error": "Job not found"}), 404

    def generate():
        q = job["progress_queue"]
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                return
            if msg is None:
                yield f"data: {json.dumps(_final_event(job))}\n\n"
                return
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    job = _jobs.get(job_id)
    if job is None:
        return jsonify({"error": "Job not found"}), 404

    resp = {
        "status": job["status"],
        "stage": job["stage"],
        "progress": job["progress"],
        "segments": job["segments"],
    }
    if job["status"] == "done":
        resp["result"] = job.get("result")
    elif job["status"] == "error":
        resp["error"] = job["error"]
    return jsonify(resp)


@bp.route("/api/jobs/<job_id>/result")
def download_result(job_id: str):
    job = _jobs.get(job_id)
    if job is None:
        return jsonify({"error": "Job not found"}), 404
    if job["status"] != "done":
        return jsonify({"error": f"Job is {job['status']}"}), 409

    return send_file(
        Path(job["result"]["output_path"]),
        mimetype="video/mp4",
        as_attachment=True,
        download_name=f"dubbed_{job_id}.mp4",
    )
