# sessionscribe/api/transcription.py
import os

from flask import Blueprint, current_app, jsonify, request

from ..exceptions import RecordNotFound, PersistenceError
from ..extensions import dispatcher
from ..jobs.transcribe import (
    bulk_reprocess_sweep,
    process_media_job,
    process_text_job,
    reprocess_subject,
)
from ..services.janitor import remove_path
from ..services.naming import build_record_name
from ..services.pipeline import Job, build_context, get_pipeline
from ..services.storage import allowed_file, file_extension, read_text_upload, save_upload

bp = Blueprint("transcription", __name__)


def _request_data():
    return request.get_json(silent=True) or request.form


def _accepted(job):
    return jsonify({
        "job_id": job.id,
        "status": "accepted",
        "original_name": job.original_name,
        "file_name": build_record_name(job.context),
    }), 202


@bp.post("/upload")
def upload_media():
    # "audio" is the field name older clients still send
    f = request.files.get("file") or request.files.get("audio")
    if f is None or not f.filename:
        return jsonify({"error": "file is required"}), 400
    allowed = current_app.config["ALLOWED_MEDIA_EXTENSIONS"]
    if not allowed_file(f.filename, allowed):
        return jsonify({
            "error": f"unsupported file type: .{file_extension(f.filename)}",
            "allowed": sorted(allowed),
        }), 400

    pipeline = get_pipeline()
    context = pipeline.tracker.enrich_context(build_context(request.form))

    path = save_upload(f, current_app.config["UPLOAD_DIR"])
    size = os.path.getsize(path)
    if size == 0:
        remove_path(path)
        return jsonify({"error": "uploaded file is empty"}), 400
    if size > int(current_app.config["MAX_UPLOAD_MB"]) * 1024 * 1024:
        remove_path(path)
        return jsonify({"error": f"file exceeds {current_app.config['MAX_UPLOAD_MB']} MB"}), 413

    job = Job(source_path=path, original_name=f.filename, context=context)
    current_app.logger.info("Accepted media job %s (%s, %d bytes)", job.id, f.filename, size)
    dispatcher.enqueue(process_media_job, job.to_dict())
    return _accepted(job)


@bp.post("/upload-text")
def upload_text():
    f = request.files.get("file")
    data = _request_data()
    if f is not None and f.filename:
        if not allowed_file(f.filename, current_app.config["ALLOWED_TEXT_EXTENSIONS"]):
            return jsonify({"error": f"unsupported file type: .{file_extension(f.filename)}"}), 400
        try:
            text = read_text_upload(f)
        except Exception:
            current_app.logger.exception("Could not read uploaded document %s", f.filename)
            return jsonify({"error": "could not read the uploaded document"}), 400
        original_name = f.filename
    else:
        text = data.get("text")
        original_name = "text"

    if not (text or "").strip():
        return jsonify({"error": "text is required"}), 400

    pipeline = get_pipeline()
    context = pipeline.tracker.enrich_context(build_context(data))
    job = Job(source_path=None, original_name=original_name, context=context)
    current_app.logger.info("Accepted text job %s (%d chars)", job.id, len(text))
    dispatcher.enqueue(process_text_job, job.to_dict(), text)
    return _accepted(job)


@bp.get("/health")
def health():
    pipeline = get_pipeline()
    return jsonify({
        "status": "ok",
        "dispatcher": dispatcher.mode,
        "bulk_reprocess_running": pipeline.registry.bulk_running,
    })


@bp.get("/list")
def list_transcriptions():
    return jsonify({"data": get_pipeline().store.get_all()})


@bp.get("/by-subject/<subject_id>")
def list_by_subject(subject_id):
    return jsonify({"data": get_pipeline().store.list_by_subject(subject_id)})


@bp.post("/analyze")
def analyze_text():
    text = _request_data().get("text")
    if not (text or "").strip():
        return jsonify({"error": "text is required"}), 400
    analysis = get_pipeline().analyze_text(text)
    return jsonify({"analysis": analysis, "original_text": text})


@bp.post("/reprocess")
def bulk_reprocess():
    data = _request_data()
    subject_id = data.get("subject_id") or None
    force = str(data.get("force", "")).lower() in ("1", "true", "yes")
    pipeline = get_pipeline()
    # flag is claimed here, synchronously; the sweep releases it
    if not pipeline.registry.begin_bulk():
        return jsonify({"error": "a bulk reprocess is already running"}), 409
    try:
        dispatcher.submit_local(bulk_reprocess_sweep, subject_id, force)
    except Exception:
        pipeline.registry.end_bulk()
        raise
    return jsonify({"status": "accepted", "subject_id": subject_id, "force": force}), 202


@bp.post("/reprocess/subject/<subject_id>")
def reprocess_for_subject(subject_id):
    force = str(_request_data().get("force", "")).lower() in ("1", "true", "yes")
    dispatcher.submit_local(reprocess_subject, subject_id, force)
    return jsonify({"status": "accepted", "subject_id": subject_id, "force": force}), 202


@bp.get("/<file_name>")
def get_transcription(file_name):
    found = get_pipeline().store.get(file_name)
    if found is None:
        return jsonify({"error": "transcription not found"}), 404
    return jsonify({"data": found})


@bp.delete("/<file_name>")
def delete_transcription(file_name):
    if not get_pipeline().store.delete(file_name):
        return jsonify({"error": "transcription not found"}), 404
    return jsonify({"deleted": file_name})


@bp.post("/<file_name>/reprocess")
def reprocess_one(file_name):
    try:
        result = get_pipeline().reprocess_record(file_name)
    except RecordNotFound:
        return jsonify({"error": "transcription not found"}), 404
    except PersistenceError as e:
        current_app.logger.exception("Reprocess of %s could not be stored", file_name)
        return jsonify({"error": str(e)}), 500
    return jsonify({"data": result})
