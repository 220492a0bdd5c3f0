"""Web UI routes for ClipTrim."""

import json
import logging
import queue
import threading
import uuid
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    render_template,
    request,
    send_file,
)

from cliptrim.errors import PipelineBusyError
from cliptrim.ffutil import probe_duration
from cliptrim.models import RunState, SourceFile
from cliptrim.pipeline import TrimSession
from cliptrim.sinks import DirectorySink

_log = logging.getLogger(__name__)

bp = Blueprint("web", __name__, template_folder="templates", static_folder="static")

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}


def _segments_json(session: TrimSession) -> list[dict]:
    return [{"index": s.index, "start": s.start, "end": s.end} for s in session.segments.specs()]


def _get_job(job_id: str):
    job = _jobs.get(job_id)
    if job is None:
        return None, (jsonify({"error": "Job not found"}), 404)
    return job, None


@bp.route("/")
def index():
    return render_template("index.html")


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)

    ext = Path(f.filename).suffix or ".mp4"
    input_path = job_dir / f"input{ext}"
    f.save(input_path)

    duration = probe_duration(input_path, current_app.config["ENGINE_CONFIG"].ffprobe_path)
    session = TrimSession(current_app.config["PIPELINE"])
    session.select_source(SourceFile(name=f.filename, data=input_path.read_bytes(), duration=duration))
    input_path.unlink()

    _jobs[job_id] = {
        "dir": job_dir,
        "session": session,
        "filename": f.filename,
        "status": "uploaded",
        "outputs": [],
    }

    return jsonify({
        "job_id": job_id,
        "filename": f.filename,
        "duration": duration,
        "segments": _segments_json(session),
    })


@bp.route("/api/jobs/<job_id>/duration", methods=["PUT"])
def set_duration(job_id: str):
    job, err = _get_job(job_id)
    if err:
        return err
    body = request.get_json() or {}
    try:
        duration = float(body["duration"])
    except (KeyError, TypeError, ValueError):
        return jsonify({"error": "duration must be a number"}), 400
    session: TrimSession = job["session"]
    session.set_duration(duration)
    return jsonify({"duration": duration, "segments": _segments_json(session)})


@bp.route("/api/jobs/<job_id>/segments", methods=["POST"])
def add_segment(job_id: str):
    job, err = _get_job(job_id)
    if err:
        return err
    body = request.get_json() or {}
    session: TrimSession = job["session"]
    session.segments.add(body.get("start", 0.0), body.get("end", 0.0))
    return jsonify({"segments": _segments_json(session)})


@bp.route("/api/jobs/<job_id>/segments/<int:index>", methods=["PUT"])
def update_segment(job_id: str, index: int):
    job, err = _get_job(job_id)
    if err:
        return err
    session: TrimSession = job["session"]
    if index >= len(session.segments):
        return jsonify({"error": "Segment not found"}), 404

    body = request.get_json() or {}
    try:
        spec = session.update_segment(index, body.get("field", ""), body.get("value"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"index": spec.index, "start": spec.start, "end": spec.end})


@bp.route("/api/jobs/<job_id>/process", methods=["POST"])
def start_process(job_id: str):
    job, err = _get_job(job_id)
    if err:
        return err
    if job["status"] == "processing":
        return jsonify({"error": "Job is already processing"}), 409

    session: TrimSession = job["session"]
    if session.source is None:
        return jsonify({"error": "No video selected"}), 409

    pipeline = session.pipeline
    if pipeline.busy:
        return jsonify({"error": "Another job is processing"}), 409

    progress_queue: queue.Queue = queue.Queue()
    job["progress_queue"] = progress_queue
    job["status"] = "processing"
    job["error"] = None
    sink = DirectorySink(job["dir"] / "outputs")

    def run():
        token = pipeline.subscribe(lambda state: progress_queue.put(state.to_dict()))
        try:
            state: RunState = session.trim_and_download(sink)
            job["outputs"] = list(state.outputs)
            job["result"] = state.to_dict()
            if state.succeeded:
                job["status"] = "done"
            else:
                job["status"] = "error"
                job["error"] = state.reason
        except PipelineBusyError as e:
            job["status"] = "error"
            job["error"] = str(e)
        except Exception as e:
            _log.exception("Job %s crashed", job_id)
            job["status"] = "error"
            job["error"] = str(e)
        finally:
            pipeline.unsubscribe(token)
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"status": "started"})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    job, err = _get_job(job_id)
    if err:
        return err
    q = job.get("progress_queue")

    if q is None:
        return jsonify({"error": "No processing in progress"}), 409

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "error":
                    data = json.dumps({"error": job["error"], "outputs": job["outputs"]})
                else:
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 1.0,
                        "outputs": job["outputs"],
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    job, err = _get_job(job_id)
    if err:
        return err
    session: TrimSession = job["session"]
    resp = {
        "status": job["status"],
        "filename": job.get("filename"),
        "segments": _segments_json(session),
        "outputs": job["outputs"],
    }
    if job["status"] == "error":
        resp["error"] = job.get("error")
    return jsonify(resp)


@bp.route("/api/jobs/<job_id>/outputs/<name>")
def download_output(job_id: str, name: str):
    job, err = _get_job(job_id)
    if err:
        return err
    if name not in job["outputs"]:
        return jsonify({"error": "Output not found"}), 404
    return send_file(job["dir"] / "outputs" / name, as_attachment=True, download_name=name)
